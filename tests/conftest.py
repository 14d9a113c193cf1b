"""
Shared fixtures for chat client tests.

The backend is replaced by in-memory repositories and the in-process
realtime bus, so store, subscriber and session run against the same
contracts as in production without Mongo or Redis.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from dmchat.database.connection import Backend
from dmchat.exceptions import BackendUnavailable, WriteRejected
from dmchat.schemas.message import Message, RealtimeEvent
from dmchat.schemas.profile import Profile
from dmchat.services.chat_service import ChatService
from dmchat.services.chat_session import ChatSession
from dmchat.services.conversation_store import ConversationStore
from dmchat.utils.realtime_bus import LocalBus

T0 = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


def make_message(
    message_id: str,
    sender_id: str = "u2",
    receiver_id: str = "u1",
    content: str = "hi",
    minutes: int = 0,
    is_read: bool = False,
) -> Message:
    return Message(
        id=message_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        is_read=is_read,
        created_at=T0 + timedelta(minutes=minutes),
    )


def insert_event(message: Message) -> str:
    return RealtimeEvent(table="messages", type="INSERT", record=message.model_dump(mode="json")).model_dump_json()


def make_profile(user_id: str, name: str, is_online: bool = False) -> Profile:
    return Profile(
        id=user_id,
        name=name,
        email=f"{name.lower()}@chat.io",
        is_online=is_online,
        last_seen=T0,
        created_at=T0 - timedelta(days=30),
    )


# =============================================================================
# Fake backend collaborators
# =============================================================================


class FakeMessageRepository:

    def __init__(self) -> None:
        self.rows: Dict[str, Message] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.read_calls: List[str] = []
        self.insert_calls: List[Tuple[str, str, str]] = []
        self.list_calls = 0
        # peer id -> event the fetch waits on before answering
        self.gates: Dict[str, asyncio.Event] = {}
        self._seq = 0

    def add(self, message: Message) -> Message:
        self.rows[message.id] = message.model_copy()
        return message

    async def list_between(self, user_a: str, user_b: str) -> List[Message]:
        self.list_calls += 1
        gate = self.gates.get(user_b)
        if gate is not None:
            await gate.wait()
        if self.fail_reads:
            raise BackendUnavailable("mongo is down")
        rows = [m.model_copy() for m in self.rows.values() if m.involves(user_a, user_b)]
        return sorted(rows, key=lambda m: m.sort_key)

    async def insert(self, sender_id: str, receiver_id: str, content: str) -> Message:
        self.insert_calls.append((sender_id, receiver_id, content))
        if self.fail_writes:
            raise WriteRejected("insert denied")
        self._seq += 1
        message = Message(
            id=f"new{self._seq}",
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            created_at=T0 + timedelta(hours=1, seconds=self._seq),
        )
        self.rows[message.id] = message.model_copy()
        return message

    async def mark_read(self, message_id: str) -> bool:
        self.read_calls.append(message_id)
        if self.fail_writes:
            raise WriteRejected("update denied")
        row = self.rows.get(message_id)
        if row is None or row.is_read:
            return False
        row.is_read = True
        return True


class FakeProfileRepository:

    def __init__(self) -> None:
        self.profiles: List[Profile] = []
        self.fail = False
        self.calls = 0

    async def list_others(self, user_id: str) -> List[Profile]:
        self.calls += 1
        if self.fail:
            raise BackendUnavailable("mongo is down")
        return sorted((p for p in self.profiles if p.id != user_id), key=lambda p: p.name)


class RecordingBus:

    enabled = True

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.published: List[Tuple[str, str]] = []
        self._error = error

    async def publish(self, channel: str, message: str) -> None:
        if self._error is not None:
            raise self._error
        self.published.append((channel, message))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def message_repo():
    return FakeMessageRepository()


@pytest.fixture
def profile_repo():
    repo = FakeProfileRepository()
    repo.profiles = [
        make_profile("u1", "Alice", is_online=True),
        make_profile("u2", "Bob", is_online=True),
        make_profile("u3", "Carol"),
    ]
    return repo


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def chat_service(message_repo, bus):
    return ChatService(message_repo, bus)


@pytest.fixture
def store(message_repo, profile_repo, chat_service):
    return ConversationStore(message_repo, profile_repo, chat_service)


@pytest.fixture
async def session(bus, message_repo, profile_repo):
    chat = ChatSession(Backend(db=None, bus=bus), "u1", message_repo=message_repo, profile_repo=profile_repo)
    yield chat
    await chat.aclose()
