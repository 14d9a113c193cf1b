from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    sender_id: str
    receiver_id: str
    content: str
    # flips false -> true once, written by the receiver's client
    is_read: bool
    created_at: datetime
