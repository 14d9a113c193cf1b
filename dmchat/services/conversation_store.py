import asyncio
import bisect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from dmchat.exceptions import BackendUnavailable, WriteRejected
from dmchat.repositories.message_repository import MessageRepository
from dmchat.repositories.profile_repository import ProfileRepository
from dmchat.schemas.message import Message
from dmchat.schemas.profile import RosterEntry
from dmchat.services.chat_service import ChatService

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], Awaitable[None]]


@dataclass(frozen=True)
class Selection:

    self_id: str
    peer_id: str
    generation: int


class ConversationStore:
    """
    In-memory state of the open conversation and the roster.

    Holds the message sequence for exactly one selected peer, ordered by
    ``(created_at, id)``. Inserts are idempotent by message id, so history
    fetches and realtime deliveries can arrive in any order and any number of
    times without changing the visible result.
    """

    def __init__(self, message_repo: MessageRepository, profile_repo: ProfileRepository, chat_service: ChatService) -> None:
        self._message_repo = message_repo
        self._profile_repo = profile_repo
        self._chat_service = chat_service
        self._messages: List[Message] = []
        self._keys: List[Tuple[datetime, str]] = []
        self._by_id: Dict[str, Message] = {}
        self._selection: Optional[Selection] = None
        self._generation = 0
        self._receipts_queued: Set[str] = set()
        self._receipt_tasks: Set["asyncio.Task[None]"] = set()
        self._roster: List[RosterEntry] = []
        self._roster_version = 0
        self._listeners: List[Listener] = []
        self.loading = False

    @property
    def selection(self) -> Optional[Selection]:
        return self._selection

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def roster(self) -> List[RosterEntry]:
        return list(self._roster)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def _notify(self, kind: str, payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                await listener(kind, payload)
            except Exception:  # noqa: BLE001
                logger.exception("store listener failed on %s event", kind)

    # --- selection ---------------------------------------------------------

    def select(self, self_id: str, peer_id: str) -> Selection:
        self._generation += 1
        self._selection = Selection(self_id, peer_id, self._generation)
        self._clear()
        return self._selection

    def is_current(self, selection: Optional[Selection]) -> bool:
        return selection is not None and selection == self._selection

    async def close(self) -> None:
        self._generation += 1
        self._selection = None
        self._clear()
        await self._notify("closed", None)

    def _clear(self) -> None:
        self._messages = []
        self._keys = []
        self._by_id = {}
        self._receipts_queued = set()
        self.loading = False

    # --- messages ----------------------------------------------------------

    async def load_history(self, self_id: str, peer_id: str) -> Optional[List[Message]]:
        """
        Fetch the whole conversation between ``self_id`` and ``peer_id``.

        Selects the pair first when it is not the current selection. For the
        current pair the fetch is merged into what is already visible, which
        is how a gap after a reconnect gets filled. Returns None when the
        selection changed while the fetch was in flight.
        """
        selection = self._selection
        if selection is None or (selection.self_id, selection.peer_id) != (self_id, peer_id):
            selection = self.select(self_id, peer_id)
        return await self.load_selection(selection)

    async def load_selection(self, selection: Selection) -> Optional[List[Message]]:
        """Fetch history for ``selection`` only while it stays current. Never changes the selection."""
        if not self.is_current(selection):
            return None
        self.loading = True
        try:
            fetched = await self._message_repo.list_between(selection.self_id, selection.peer_id)
        except BackendUnavailable:
            if not self.is_current(selection):
                logger.debug("ignoring failed fetch for closed conversation with %s", selection.peer_id)
                return None
            self.loading = False
            raise
        if not self.is_current(selection):
            logger.debug("discarding history for stale selection %s -> %s", selection.self_id, selection.peer_id)
            return None
        self.loading = False
        for message in fetched:
            existing = self._by_id.get(message.id)
            if existing is None:
                self._insert(message)
            elif message.is_read and not existing.is_read:
                existing.is_read = True
        self._queue_receipts(selection, self._messages)
        snapshot = self.messages
        await self._notify("history", snapshot)
        return snapshot

    async def append_incoming(self, message: Message) -> bool:
        """Insert ``message`` at its sorted position. Returns False for a duplicate delivery."""
        if message.id in self._by_id:
            return False
        selection = self._selection
        if selection is not None and not message.involves(selection.self_id, selection.peer_id):
            logger.warning("dropping message %s outside the open conversation", message.id)
            return False
        self._insert(message)
        if selection is not None:
            self._queue_receipts(selection, [message])
        await self._notify("message", message)
        return True

    def _insert(self, message: Message) -> None:
        key = message.sort_key
        index = bisect.bisect_right(self._keys, key)
        self._keys.insert(index, key)
        self._messages.insert(index, message)
        self._by_id[message.id] = message

    async def mark_read(self, message_id: str) -> bool:
        """
        Flag a received message as read and write the receipt to the backend.

        No-op for unknown, already read or outgoing messages. When the backend
        write fails the local flag stays set; receipts are best-effort.
        """
        selection = self._selection
        message = self._by_id.get(message_id)
        if selection is None or message is None:
            return False
        if message.receiver_id != selection.self_id or message.is_read:
            return False
        message.is_read = True
        await self._notify("read", message)
        try:
            await self._chat_service.mark_read(message_id)
        except WriteRejected as exc:
            logger.warning("read receipt for %s failed: %s", message_id, exc)
            return False
        return True

    def _queue_receipts(self, selection: Selection, messages: Iterable[Message]) -> None:
        ids = []
        for message in messages:
            if message.receiver_id != selection.self_id or message.is_read:
                continue
            if message.id in self._receipts_queued:
                continue
            self._receipts_queued.add(message.id)
            ids.append(message.id)
        if not ids:
            return
        task = asyncio.create_task(self._send_receipts(selection, ids))
        self._receipt_tasks.add(task)
        task.add_done_callback(self._receipt_tasks.discard)

    async def _send_receipts(self, selection: Selection, ids: List[str]) -> None:
        for message_id in ids:
            if not self.is_current(selection):
                return
            await self.mark_read(message_id)

    async def wait_read_receipts(self) -> None:
        while self._receipt_tasks:
            await asyncio.gather(*list(self._receipt_tasks), return_exceptions=True)

    # --- roster ------------------------------------------------------------

    async def refresh_roster(self, self_id: str) -> List[RosterEntry]:
        self._roster_version += 1
        version = self._roster_version
        profiles = await self._profile_repo.list_others(self_id)
        if version != self._roster_version:
            # a newer refresh started meanwhile and owns the result
            return self.roster
        self._roster = [RosterEntry.from_profile(profile) for profile in profiles]
        await self._notify("roster", self.roster)
        return self.roster

    def search_roster(self, query: str = "") -> List[RosterEntry]:
        query = query.strip()
        if not query:
            return self.roster
        return [entry for entry in self._roster if entry.matches(query)]
