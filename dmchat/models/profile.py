from datetime import datetime
from typing import Optional, TypedDict


class ProfileDocument(TypedDict, total=False):

    _id: str
    name: str
    email: str
    avatar_url: Optional[str]
    # maintained by the presence mechanism, never written here
    is_online: bool
    last_seen: datetime
    created_at: datetime
