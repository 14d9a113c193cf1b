import os
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):

    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "dmchat"
    redis_url: Optional[str] = None
    user_id: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mongo_url=os.getenv("MONGO_URL", "mongodb://localhost:27017"),
            mongo_db=os.getenv("MONGO_DB", "dmchat"),
            redis_url=os.getenv("REDIS_URL") or None,
            user_id=os.getenv("DMCHAT_USER_ID") or None,
            log_level=os.getenv("DMCHAT_LOG_LEVEL", "INFO"),
            log_file=os.getenv("DMCHAT_LOG_FILE") or None,
        )
