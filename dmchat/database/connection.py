import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from dmchat.config import Settings
from dmchat.utils.realtime_bus import create_bus

logger = logging.getLogger(__name__)


class Backend:
    """Process-wide backend session: document store plus realtime bus.

    Created once at startup and passed to every component that talks to the backend.
    """

    def __init__(self, db: AsyncIOMotorDatabase, bus, client: Optional[AsyncIOMotorClient] = None) -> None:
        self.db = db
        self.bus = bus
        self._client = client

    async def close(self) -> None:
        close_bus = getattr(self.bus, "close", None)
        if close_bus is not None:
            await close_bus()
        if self._client is not None:
            self._client.close()
            self._client = None


async def connect_backend(settings: Settings) -> Backend:
    client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
    db = client[settings.mongo_db]
    bus = create_bus(settings.redis_url)
    logger.info("connected to mongo database %s", settings.mongo_db)
    return Backend(db, bus, client)
