# =============================================================================
# File: tests/test_broadcaster.py
# Description: ScopeBroadcaster - fan-out, unsubscribe, overflow, relay
# =============================================================================

import asyncio
from datetime import datetime, timezone

from app.messaging.broadcaster import ScopeBroadcaster
from app.messaging.events import MessageDeleted, MessageInserted
from app.messaging.models import Message


def inserted(message_id: str, scope_id: str = "s1") -> MessageInserted:
    message = Message(
        id=message_id,
        scope_id=scope_id,
        author_id="alice",
        body="hi",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    return MessageInserted(scope_id=scope_id, message=message)


class RecordingRelay:
    def __init__(self, fail: bool = False):
        self.relayed = []
        self.fail = fail

    async def relay(self, scope_id, event):
        if self.fail:
            raise ConnectionError("relay down")
        self.relayed.append((scope_id, event))


class TestFanOut:

    async def test_every_subscriber_of_scope_receives(self):
        broadcaster = ScopeBroadcaster()
        a = broadcaster.subscribe("s1")
        b = broadcaster.subscribe("s1")
        other = broadcaster.subscribe("s2")
        await broadcaster.publish("s1", inserted("1"))
        assert (await a.get()).message.id == "1"
        assert (await b.get()).message.id == "1"
        assert other._queue.empty()

    async def test_events_arrive_in_publish_order(self):
        broadcaster = ScopeBroadcaster()
        subscription = broadcaster.subscribe("s1")
        for i in range(1, 4):
            await broadcaster.publish("s1", inserted(str(i)))
        received = [(await subscription.get()).message.id for _ in range(3)]
        assert received == ["1", "2", "3"]

    async def test_subscriber_count(self):
        broadcaster = ScopeBroadcaster()
        a = broadcaster.subscribe("s1")
        broadcaster.subscribe("s1")
        assert broadcaster.subscriber_count("s1") == 2
        broadcaster.unsubscribe(a)
        assert broadcaster.subscriber_count("s1") == 1


class TestUnsubscribe:

    async def test_nothing_delivered_after_close(self):
        broadcaster = ScopeBroadcaster()
        subscription = broadcaster.subscribe("s1")
        await broadcaster.publish("s1", inserted("1"))
        subscription.close()
        await broadcaster.publish("s1", inserted("2"))
        assert await subscription.get() is None

    async def test_close_wakes_blocked_consumer(self):
        broadcaster = ScopeBroadcaster()
        subscription = broadcaster.subscribe("s1")
        waiter = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        subscription.close()
        assert await asyncio.wait_for(waiter, timeout=1) is None

    async def test_async_iteration_ends_on_close(self):
        broadcaster = ScopeBroadcaster()
        subscription = broadcaster.subscribe("s1")
        await broadcaster.publish("s1", MessageDeleted(scope_id="s1", message_id="9"))

        async def consume():
            return [event async for event in subscription]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        subscription.close()
        events = await asyncio.wait_for(task, timeout=1)
        assert len(events) == 1


class TestOverflow:

    async def test_slow_subscriber_is_closed_and_flagged(self):
        broadcaster = ScopeBroadcaster(queue_size=2)
        slow = broadcaster.subscribe("s1")
        for i in range(3):
            await broadcaster.publish("s1", inserted(str(i)))
        assert slow.closed
        assert slow.overflowed
        assert broadcaster.subscriber_count("s1") == 0
        assert await slow.get() is None

    async def test_overflow_does_not_affect_others(self):
        broadcaster = ScopeBroadcaster(queue_size=2)
        slow = broadcaster.subscribe("s1")
        fast = broadcaster.subscribe("s1")
        await broadcaster.publish("s1", inserted("1"))
        await fast.get()
        await broadcaster.publish("s1", inserted("2"))
        await fast.get()
        await broadcaster.publish("s1", inserted("3"))
        assert slow.overflowed
        assert not fast.closed
        assert (await fast.get()).message.id == "3"


class TestRelay:

    async def test_publish_relays_after_local_delivery(self):
        relay = RecordingRelay()
        broadcaster = ScopeBroadcaster(relay=relay)
        subscription = broadcaster.subscribe("s1")
        await broadcaster.publish("s1", inserted("1"))
        assert relay.relayed[0][0] == "s1"
        assert (await subscription.get()).message.id == "1"

    async def test_relay_failure_keeps_local_delivery(self):
        broadcaster = ScopeBroadcaster(relay=RecordingRelay(fail=True))
        subscription = broadcaster.subscribe("s1")
        await broadcaster.publish("s1", inserted("1"))
        assert (await subscription.get()).message.id == "1"

    async def test_deliver_local_does_not_relay(self):
        relay = RecordingRelay()
        broadcaster = ScopeBroadcaster(relay=relay)
        broadcaster.subscribe("s1")
        assert broadcaster.deliver_local("s1", inserted("1")) == 1
        assert relay.relayed == []
