"""Test the sync bus, pending-sync guard and presence tracking."""
import pytest
import asyncio

from board.models.records import User
from board.sync.bus import SyncBus, SyncClient
from board.sync.events import SyncEvent, SyncEventType
from board.sync.guard import SyncGuard
from board.sync.presence import PresenceRegistry, PresenceTracker
from tests.helpers import ORG, FakeClock
from workflow.config import PresenceConfig


def test_publish_reaches_every_listener():
    bus = SyncBus()
    received = []
    bus.subscribe(received.append)
    bus.subscribe(received.append)
    client = SyncClient(bus, "c1")
    event = client.publish(SyncEventType.TASKS_UPDATED, org_id=ORG, actor_id="alice")
    assert received == [event, event]
    assert event.client_id == "c1"
    assert bus.published == 1


def test_failing_listener_does_not_block_others(caplog):
    bus = SyncBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    event = SyncClient(bus).publish(SyncEventType.PROJECTS_UPDATED, org_id=ORG)
    assert len(received) == 1
    assert "sync listener failed" in caplog.text
    assert event.type == SyncEventType.PROJECTS_UPDATED


def test_unsubscribe():
    bus = SyncBus()
    received = []
    unsubscribe = bus.subscribe(received.append)
    unsubscribe()
    unsubscribe()
    SyncClient(bus).publish(SyncEventType.TASKS_UPDATED)
    assert received == []
    assert bus.listener_count == 0


def test_event_origin_filtering():
    event = SyncEvent(type=SyncEventType.TASKS_UPDATED, org_id=ORG, client_id="c1")
    assert not event.is_foreign_to("c1", ORG)
    assert event.is_foreign_to("c2", ORG)
    assert not event.is_foreign_to("c2", "other")
    broadcast = SyncEvent(type=SyncEventType.SETTINGS_UPDATED, client_id="c1")
    assert broadcast.is_foreign_to("c2", "other")


def test_guard_flags_offline_mutations():
    clock = FakeClock()
    guard = SyncGuard(clock=clock)
    assert guard.mark_local_mutation()
    assert not guard.has_pending

    guard.set_online(False)
    assert not guard.mark_local_mutation()
    first = guard.pending_since
    clock.advance(minutes=5)
    assert not guard.mark_local_mutation()
    assert guard.pending_since == first

    guard.set_online(True)
    assert not guard.has_pending


def test_presence_expires_after_ttl():
    clock = FakeClock()
    registry = PresenceRegistry(PresenceConfig(ttl_seconds=15), clock=clock)
    registry.touch(User(id="alice", org_id=ORG, display_name="Alice"))
    clock.advance(seconds=10)
    registry.touch(User(id="bob", org_id=ORG, display_name="Bob"))
    assert [e.user_id for e in registry.list_online(ORG)] == ["bob", "alice"]

    clock.advance(seconds=6)
    assert [e.user_id for e in registry.list_online(ORG)] == ["bob"]
    assert registry.list_online("other") == []


def test_tracker_announces_and_hears_peers():
    clock = FakeClock()
    bus = SyncBus()
    registry = PresenceRegistry(clock=clock)
    seen = []
    alice = PresenceTracker(User(id="alice", org_id=ORG), registry, SyncClient(bus, "a"), on_change=seen.append)
    bob = PresenceTracker(User(id="bob", org_id=ORG), registry, SyncClient(bus, "b"))

    alice.beat()
    bob.beat()
    assert alice.online_count == 2
    assert {e.user_id for e in seen[-1]} == {"alice", "bob"}


@pytest.mark.asyncio
async def test_tracker_loop_starts_and_stops():
    bus = SyncBus()
    registry = PresenceRegistry(PresenceConfig(heartbeat_interval_seconds=0.01))
    pings = []
    bus.subscribe(lambda e: pings.append(e) if e.type == SyncEventType.PRESENCE_PING else None)
    tracker = PresenceTracker(User(id="alice", org_id=ORG), registry, SyncClient(bus))

    task = tracker.start()
    assert tracker.start() is task
    await asyncio.sleep(0.05)
    await tracker.stop()

    assert task.cancelled() or task.done()
    assert len(pings) >= 2
    assert bus.listener_count == 1
