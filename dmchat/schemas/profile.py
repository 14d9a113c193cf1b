from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr

from dmchat.models.profile import ProfileDocument
from dmchat.utils.formatting import presence_label


class Profile(BaseModel):

    id: str
    name: str
    email: EmailStr
    avatar_url: Optional[str] = None
    is_online: bool = False
    last_seen: datetime
    created_at: datetime

    @classmethod
    def from_document(cls, doc: ProfileDocument) -> "Profile":
        return cls(
            id=str(doc["_id"]),
            name=doc["name"],
            email=doc["email"],
            avatar_url=doc.get("avatar_url"),
            is_online=bool(doc.get("is_online", False)),
            last_seen=doc["last_seen"],
            created_at=doc["created_at"],
        )


class RosterEntry(BaseModel):

    profile: Profile
    status_label: str

    @classmethod
    def from_profile(cls, profile: Profile, now: Optional[datetime] = None) -> "RosterEntry":
        return cls(profile=profile, status_label=presence_label(profile.is_online, profile.last_seen, now))

    def matches(self, query: str) -> bool:
        needle = query.lower()
        return needle in self.profile.name.lower() or needle in self.profile.email.lower()
