import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from dmchat.exceptions import BackendUnavailable, WriteRejected
from dmchat.routers.dependencies import get_session
from dmchat.schemas.message import SendMessage
from dmchat.services.chat_session import ChatSession, NoConversationSelected
from dmchat.utils.formatting import group_by_day
from dmchat.utils.websocket_manager import ConnectionManager


router = APIRouter(prefix="/conversation", tags=["conversation"])
manager = ConnectionManager()


def _encode(payload: Any) -> Any:
    if payload is None:
        return None
    if isinstance(payload, list):
        return [item.model_dump(mode="json") for item in payload]
    return payload.model_dump(mode="json")


async def broadcast_store_event(kind: str, payload: Any) -> None:
    """Store listener forwarding every change to connected websocket clients."""
    if not manager.active_connections:
        return
    await manager.broadcast(json.dumps({"type": kind, "data": _encode(payload)}))


def _snapshot(session: ChatSession) -> dict:
    messages = session.store.messages
    return {
        "peer_id": session.peer_id,
        "loading": session.store.loading,
        "messages": _encode(messages),
        "days": [{"label": label, "message_ids": [m.id for m in group]} for label, group in group_by_day(messages)],
    }


@router.get("")
async def get_conversation(session: ChatSession = Depends(get_session)):
    return _snapshot(session)


@router.put("/{peer_id}")
async def select_peer(peer_id: str, session: ChatSession = Depends(get_session)):
    try:
        await session.select_peer(peer_id)
    except BackendUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return _snapshot(session)


@router.delete("")
async def close_conversation(session: ChatSession = Depends(get_session)):
    await session.close_conversation()
    return {"ok": True}


@router.post("/messages", status_code=status.HTTP_202_ACCEPTED)
async def send_message(body: SendMessage, session: ChatSession = Depends(get_session)):
    try:
        message = await session.send(body.content)
    except NoConversationSelected as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except WriteRejected as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    # pending until the realtime echo lands in the conversation
    return {"pending": message.model_dump(mode="json")}


@router.post("/messages/{message_id}/read")
async def mark_read(message_id: str, session: ChatSession = Depends(get_session)):
    if session.peer_id is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="no conversation is open")
    updated = await session.mark_read(message_id)
    return {"updated": updated}


@router.websocket("/ws")
async def conversation_feed(websocket: WebSocket, session: ChatSession = Depends(get_session)):
    await manager.connect(websocket)
    try:
        await websocket.send_text(json.dumps({"type": "snapshot", "data": _snapshot(session)}))
        while True:
            # clients only listen; anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
