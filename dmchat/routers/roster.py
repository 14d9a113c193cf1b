from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from dmchat.exceptions import BackendUnavailable
from dmchat.routers.dependencies import get_session
from dmchat.services.chat_session import ChatSession


router = APIRouter(prefix="/roster", tags=["roster"])


@router.get("")
async def list_roster(q: Optional[str] = None, session: ChatSession = Depends(get_session)):
    entries = session.store.search_roster(q or "")
    return {"items": [entry.model_dump(mode="json") for entry in entries]}


@router.post("/refresh")
async def refresh_roster(session: ChatSession = Depends(get_session)):
    try:
        entries = await session.store.refresh_roster(session.self_id)
    except BackendUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return {"items": [entry.model_dump(mode="json") for entry in entries]}
