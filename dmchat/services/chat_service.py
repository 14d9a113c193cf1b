import logging

from redis.exceptions import RedisError

from dmchat.repositories.message_repository import MessageRepository
from dmchat.schemas.message import Message, RealtimeEvent
from dmchat.utils.realtime_bus import message_channel

logger = logging.getLogger(__name__)


class ChatService:
    """Turns user intents into backend writes. Never touches the local message sequence."""

    def __init__(self, message_repo: MessageRepository, bus) -> None:
        self._message_repo = message_repo
        self._bus = bus

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
        if not content or not content.strip():
            raise ValueError("Message content cannot be empty")
        saved = await self._message_repo.insert(sender_id, receiver_id, content.strip())
        # the sender sees its own message through this echo, not through a local append
        event = RealtimeEvent(table="messages", type="INSERT", record=saved.model_dump(mode="json"))
        try:
            await self._bus.publish(message_channel(sender_id, receiver_id), event.model_dump_json())
        except (RedisError, OSError) as exc:
            logger.warning("message %s stored but not published: %s", saved.id, exc)
        return saved

    async def mark_read(self, message_id: str) -> bool:
        updated = await self._message_repo.mark_read(message_id)
        if not updated:
            logger.debug("message %s was already read", message_id)
        return updated
