import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from dmchat.config import Settings
from dmchat.database.connection import connect_backend
from dmchat.logging_config import configure_logging
from dmchat.routers.conversation import broadcast_store_event
from dmchat.routers.conversation import router as conversation_router
from dmchat.routers.roster import router as roster_router
from dmchat.services.chat_session import ChatSession

logger = logging.getLogger(__name__)


def create_app(session: Optional[ChatSession] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the local API. With ``session`` given, the backend connection is left to the caller."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if session is not None:
            session.store.add_listener(broadcast_store_event)
            app.state.session = session
            try:
                yield
            finally:
                session.store.remove_listener(broadcast_store_event)
            return
        if not settings.user_id:
            raise RuntimeError("DMCHAT_USER_ID is not set")
        backend = await connect_backend(settings)
        chat = ChatSession(backend, settings.user_id)
        chat.store.add_listener(broadcast_store_event)
        app.state.session = chat
        try:
            await chat.start()
            logger.info("session started for %s", settings.user_id)
            yield
        finally:
            await chat.aclose()
            await backend.close()

    app = FastAPI(title="dmchat", lifespan=lifespan)
    app.include_router(roster_router)
    app.include_router(conversation_router)

    @app.get("/")
    async def root():
        chat = getattr(app.state, "session", None)
        return {"user_id": chat.self_id if chat else None, "peer_id": chat.peer_id if chat else None}

    return app


def run() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)
    uvicorn.run(create_app(settings=settings), host="127.0.0.1", port=8000)


if __name__ == "__main__":
    run()
