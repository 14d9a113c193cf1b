import asyncio
import logging
from typing import List, Optional

from dmchat.database.connection import Backend
from dmchat.exceptions import BackendUnavailable
from dmchat.repositories.message_repository import MessageRepository
from dmchat.repositories.profile_repository import ProfileRepository
from dmchat.schemas.message import Message
from dmchat.services.chat_service import ChatService
from dmchat.services.conversation_store import ConversationStore
from dmchat.services.realtime_subscriber import RealtimeSubscriber

logger = logging.getLogger(__name__)


class NoConversationSelected(RuntimeError):
    pass


class ChatSession:
    """Wires store, subscriber and command issuer for one authenticated user."""

    def __init__(
        self,
        backend: Backend,
        self_id: str,
        message_repo: Optional[MessageRepository] = None,
        profile_repo: Optional[ProfileRepository] = None,
    ) -> None:
        self.self_id = self_id
        message_repo = message_repo or MessageRepository(backend.db)
        profile_repo = profile_repo or ProfileRepository(backend.db)
        self.chat_service = ChatService(message_repo, backend.bus)
        self.store = ConversationStore(message_repo, profile_repo, self.chat_service)
        self.subscriber = RealtimeSubscriber(backend.bus, self.store)
        # held while the selection and its subscription change together; history loads run outside it
        self._switch_lock = asyncio.Lock()

    @property
    def peer_id(self) -> Optional[str]:
        selection = self.store.selection
        return selection.peer_id if selection else None

    async def start(self) -> None:
        await self.subscriber.open_roster(self.self_id)
        try:
            await self.store.refresh_roster(self.self_id)
        except BackendUnavailable as exc:
            # the roster subscription or an on-demand refresh fills it in later
            logger.warning("initial roster load failed: %s", exc)

    async def select_peer(self, peer_id: str) -> Optional[List[Message]]:
        async with self._switch_lock:
            # old subscription goes away before anything can append to the new sequence
            await self.subscriber.close_conversation()
            selection = self.store.select(self.self_id, peer_id)
            await self.subscriber.open_conversation(selection)
        logger.info("opened conversation with %s", peer_id)
        return await self.store.load_selection(selection)

    async def close_conversation(self) -> None:
        async with self._switch_lock:
            await self.subscriber.close_conversation()
            await self.store.close()

    async def send(self, content: str) -> Message:
        peer_id = self.peer_id
        if peer_id is None:
            raise NoConversationSelected("no conversation is open")
        return await self.chat_service.send_message(self.self_id, peer_id, content)

    async def mark_read(self, message_id: str) -> bool:
        return await self.store.mark_read(message_id)

    async def reconnect(self) -> Optional[List[Message]]:
        """Re-subscribe and reload history so anything missed while disconnected shows up."""
        await self.subscriber.close_roster()
        await self.subscriber.open_roster(self.self_id)
        await self.store.refresh_roster(self.self_id)
        async with self._switch_lock:
            selection = self.store.selection
            if selection is None:
                return None
            await self.subscriber.open_conversation(selection)
        return await self.store.load_selection(selection)

    async def aclose(self) -> None:
        await self.subscriber.aclose()
        await self.store.wait_read_receipts()
