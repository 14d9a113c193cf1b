import asyncio

from conftest import insert_event, make_message
from dmchat.services.realtime_subscriber import RealtimeSubscriber
from dmchat.utils.realtime_bus import PROFILES_CHANNEL, message_channel


async def test_insert_on_either_direction_reaches_store(bus, store):
    subscriber = RealtimeSubscriber(bus, store)
    await subscriber.open_conversation(store.select("u1", "u2"))

    await bus.publish(message_channel("u2", "u1"), insert_event(make_message("in", minutes=1, is_read=True)))
    await bus.publish(message_channel("u1", "u2"), insert_event(make_message("out", sender_id="u1", receiver_id="u2")))
    await subscriber.drain()

    assert [m.id for m in store.messages] == ["out", "in"]
    await subscriber.aclose()


async def test_duplicate_and_reordered_deliveries_converge(bus, store):
    subscriber = RealtimeSubscriber(bus, store)
    await subscriber.open_conversation(store.select("u1", "u2"))
    channel = message_channel("u2", "u1")
    late = make_message("m2", minutes=5, is_read=True)
    early = make_message("m1", minutes=1, is_read=True)

    for message in (late, late, early, late, early):
        await bus.publish(channel, insert_event(message))
    await subscriber.drain()

    assert [m.id for m in store.messages] == ["m1", "m2"]
    await subscriber.aclose()


async def test_malformed_payload_is_skipped(bus, store):
    subscriber = RealtimeSubscriber(bus, store)
    await subscriber.open_conversation(store.select("u1", "u2"))
    channel = message_channel("u2", "u1")

    await bus.publish(channel, "not json")
    await bus.publish(channel, '{"table": "messages", "type": "INSERT", "record": {"id": "x"}}')
    await bus.publish(channel, insert_event(make_message("m1", is_read=True)))
    await subscriber.drain()

    assert [m.id for m in store.messages] == ["m1"]
    await subscriber.aclose()


async def test_one_subscription_per_selection(session, bus):
    await session.select_peer("u2")
    await session.select_peer("u3")
    await session.select_peer("u2")

    assert bus.subscriber_count(message_channel("u2", "u1")) == 1
    assert bus.subscriber_count(message_channel("u1", "u2")) == 1
    assert bus.subscriber_count(message_channel("u3", "u1")) == 0
    assert bus.subscriber_count(message_channel("u1", "u3")) == 0


async def test_late_notification_from_previous_peer_is_not_shown(session, bus, message_repo):
    message_repo.add(make_message("c1", sender_id="u3", is_read=True))
    await session.select_peer("u2")

    await bus.publish(message_channel("u2", "u1"), insert_event(make_message("late", minutes=3, is_read=True)))
    await asyncio.sleep(0)
    await session.select_peer("u3")
    await bus.publish(message_channel("u2", "u1"), insert_event(make_message("later", minutes=4, is_read=True)))
    await session.subscriber.drain()

    assert [m.id for m in session.store.messages] == ["c1"]


async def test_closing_conversation_unsubscribes(session, bus):
    await session.select_peer("u2")
    await session.close_conversation()

    assert bus.subscriber_count(message_channel("u2", "u1")) == 0
    assert session.store.selection is None
    assert session.subscriber.active_selection is None


async def test_roster_change_triggers_refresh(session, bus, profile_repo):
    await session.start()
    calls = profile_repo.calls

    await bus.publish(PROFILES_CHANNEL, '{"table": "profiles", "type": "UPDATE", "record": {}}')
    for _ in range(5):
        await asyncio.sleep(0)

    assert profile_repo.calls == calls + 1


async def test_roster_refresh_failure_keeps_subscription(session, bus, profile_repo):
    await session.start()
    profile_repo.fail = True

    await bus.publish(PROFILES_CHANNEL, "{}")
    for _ in range(5):
        await asyncio.sleep(0)

    assert bus.subscriber_count(PROFILES_CHANNEL) == 1
    assert [e.profile.id for e in session.store.roster] == ["u2", "u3"]


class OrderRecordingBus:
    """Subscriptions remember whether their reader had stopped when they were cancelled."""

    def __init__(self):
        self.subs = []

    async def subscribe(self, channel, on_message):
        sub = OrderRecordingSubscription(channel)
        self.subs.append(sub)
        return sub


class OrderRecordingSubscription:

    def __init__(self, channel):
        self.channel = channel
        self.reading = False
        self.reading_at_cancel = None

    async def run(self):
        self.reading = True
        try:
            await asyncio.Event().wait()
        finally:
            self.reading = False

    async def cancel(self):
        self.reading_at_cancel = self.reading


async def test_readers_stop_before_unsubscribe(store):
    bus = OrderRecordingBus()
    subscriber = RealtimeSubscriber(bus, store)
    await subscriber.open_conversation(store.select("u1", "u2"))
    await subscriber.open_roster("u1")
    await asyncio.sleep(0)
    assert all(sub.reading for sub in bus.subs)

    await subscriber.aclose()

    assert [sub.channel for sub in bus.subs] == [
        message_channel("u2", "u1"),
        message_channel("u1", "u2"),
        PROFILES_CHANNEL,
    ]
    assert [sub.reading_at_cancel for sub in bus.subs] == [False, False, False]
