from datetime import datetime, timezone
from typing import Any, Dict, Literal, Tuple

from pydantic import BaseModel, Field, field_validator

from dmchat.models.message import MessageDocument


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Message(BaseModel):

    id: str
    sender_id: str
    receiver_id: str
    content: str
    is_read: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        # creation time first, id breaks ties
        return (self.created_at, self.id)

    def involves(self, user_a: str, user_b: str) -> bool:
        return (self.sender_id, self.receiver_id) in ((user_a, user_b), (user_b, user_a))

    @classmethod
    def from_document(cls, doc: MessageDocument) -> "Message":
        return cls(
            id=str(doc["_id"]),
            sender_id=doc["sender_id"],
            receiver_id=doc["receiver_id"],
            content=doc["content"],
            is_read=bool(doc.get("is_read", False)),
            created_at=doc["created_at"],
        )


class SendMessage(BaseModel):

    content: str = Field(max_length=4000)


class RealtimeEvent(BaseModel):
    """Row-level change notification as carried on the realtime bus."""

    table: str
    type: Literal["INSERT", "UPDATE", "DELETE"]
    record: Dict[str, Any] = Field(default_factory=dict)
