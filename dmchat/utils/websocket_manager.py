import logging
from typing import List

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

logger = logging.getLogger(__name__)


class ConnectionManager:

    def __init__(self) -> None:
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        try:
            self.active_connections.remove(websocket)
        except ValueError:
            pass

    async def broadcast(self, message: str) -> None:
        for conn in list(self.active_connections):
            try:
                await conn.send_text(message)
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("dropping closed websocket")
                self.disconnect(conn)
