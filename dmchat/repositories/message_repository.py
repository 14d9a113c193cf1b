from datetime import datetime, timezone
from typing import List

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from dmchat.exceptions import BackendUnavailable, WriteRejected
from dmchat.models.message import MessageDocument
from dmchat.schemas.message import Message


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("sender_id", ASCENDING), ("receiver_id", ASCENDING), ("created_at", ASCENDING)])

    async def list_between(self, user_a: str, user_b: str) -> List[Message]:
        query = {
            "$or": [
                {"sender_id": user_a, "receiver_id": user_b},
                {"sender_id": user_b, "receiver_id": user_a},
            ]
        }
        sort = [("created_at", ASCENDING), ("_id", ASCENDING)]
        try:
            items = await self.collection.find(query).sort(sort).to_list(length=None)
        except PyMongoError as exc:
            raise BackendUnavailable(f"could not load messages: {exc}") from exc
        return [Message.from_document(it) for it in items]

    async def insert(self, sender_id: str, receiver_id: str, content: str) -> Message:
        doc: MessageDocument = {
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "is_read": False,
            "created_at": datetime.now(timezone.utc),
        }
        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as exc:
            raise WriteRejected(f"message insert failed: {exc}") from exc
        doc["_id"] = str(result.inserted_id)
        return Message.from_document(doc)

    async def mark_read(self, message_id: str) -> bool:
        """Set ``is_read`` on an unread message. Returns False if it was already read."""
        try:
            oid = ObjectId(message_id)
        except InvalidId as exc:
            raise WriteRejected(f"invalid message id {message_id!r}") from exc
        try:
            result = await self.collection.update_one({"_id": oid, "is_read": False}, {"$set": {"is_read": True}})
        except PyMongoError as exc:
            raise WriteRejected(f"read receipt failed: {exc}") from exc
        return bool(result.modified_count)
