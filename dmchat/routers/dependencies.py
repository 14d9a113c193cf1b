from fastapi import HTTPException, status
from starlette.requests import HTTPConnection

from dmchat.services.chat_session import ChatSession


def get_session(connection: HTTPConnection) -> ChatSession:
    session = getattr(connection.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Chat session not started")
    return session
