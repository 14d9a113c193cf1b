from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from dmchat.exceptions import BackendUnavailable
from dmchat.schemas.profile import Profile


class ProfileRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("profiles")

    async def list_others(self, user_id: str) -> List[Profile]:
        """Every profile except ``user_id``, ordered by name."""
        try:
            cursor = self._collection.find({"_id": {"$ne": user_id}}).sort("name", ASCENDING)
            items = await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise BackendUnavailable(f"could not load profiles: {exc}") from exc
        return [Profile.from_document(it) for it in items]
