import asyncio
import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError

from dmchat.exceptions import BackendUnavailable
from dmchat.schemas.message import Message, RealtimeEvent
from dmchat.services.conversation_store import ConversationStore, Selection
from dmchat.utils.realtime_bus import PROFILES_CHANNEL, message_channel

logger = logging.getLogger(__name__)


class RealtimeSubscriber:
    """
    Keeps the store in step with backend inserts.

    Both directions of the open conversation feed one queue; a single consumer
    applies events in arrival order, so store mutations never interleave.
    Every queued event carries the selection it was subscribed under and is
    dropped if that selection is no longer current.
    """

    def __init__(self, bus, store: ConversationStore) -> None:
        self._bus = bus
        self._store = store
        self._queue: "asyncio.Queue[Tuple[Selection, str]]" = asyncio.Queue()
        self._consumer: Optional["asyncio.Task[None]"] = None
        self._selection: Optional[Selection] = None
        self._subs: List = []
        self._tasks: List["asyncio.Task[None]"] = []
        self._roster_sub = None
        self._roster_task: Optional["asyncio.Task[None]"] = None

    @property
    def active_selection(self) -> Optional[Selection]:
        return self._selection

    async def open_conversation(self, selection: Selection) -> None:
        await self.close_conversation()
        self._selection = selection
        channels = (
            message_channel(selection.peer_id, selection.self_id),
            message_channel(selection.self_id, selection.peer_id),
        )
        for channel in channels:
            sub = await self._bus.subscribe(channel, self._enqueuer(selection))
            self._subs.append(sub)
            self._tasks.append(asyncio.create_task(sub.run()))
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())
        logger.debug("subscribed to conversation %s <-> %s", selection.self_id, selection.peer_id)

    def _enqueuer(self, selection: Selection):
        async def on_message(raw: str) -> None:
            self._queue.put_nowait((selection, raw))
        return on_message

    async def close_conversation(self) -> None:
        subs, tasks = self._subs, self._tasks
        self._subs, self._tasks = [], []
        self._selection = None
        # readers stop before their connections are unsubscribed and closed
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for sub in subs:
            await sub.cancel()

    async def _consume(self) -> None:
        while True:
            selection, raw = await self._queue.get()
            try:
                await self._handle(selection, raw)
            finally:
                self._queue.task_done()

    async def _handle(self, selection: Selection, raw: str) -> None:
        if not self._store.is_current(selection):
            logger.debug("dropping event for closed conversation with %s", selection.peer_id)
            return
        try:
            event = RealtimeEvent.model_validate_json(raw)
            if event.table != "messages" or event.type != "INSERT":
                return
            message = Message.model_validate(event.record)
        except ValidationError as exc:
            logger.warning("skipping malformed realtime payload: %s", exc)
            return
        if not await self._store.append_incoming(message):
            logger.debug("duplicate delivery of message %s", message.id)

    async def open_roster(self, self_id: str) -> None:
        if self._roster_sub is not None:
            return

        async def on_change(_raw: str) -> None:
            try:
                await self._store.refresh_roster(self_id)
            except BackendUnavailable as exc:
                logger.warning("roster refresh failed: %s", exc)

        self._roster_sub = await self._bus.subscribe(PROFILES_CHANNEL, on_change)
        self._roster_task = asyncio.create_task(self._roster_sub.run())

    async def close_roster(self) -> None:
        sub, task = self._roster_sub, self._roster_task
        self._roster_sub, self._roster_task = None, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if sub is not None:
            await sub.cancel()

    async def drain(self) -> None:
        """Wait until every delivered notification has been applied."""
        for _ in range(5):
            await asyncio.sleep(0)
        await self._queue.join()

    async def aclose(self) -> None:
        await self.close_conversation()
        await self.close_roster()
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None
