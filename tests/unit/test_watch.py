"""Unit tests for the watch feed."""

from __future__ import annotations

import threading

from controlmesh.core.entities import ChangeKind, DesiredSpec, ResourceIdentity, UnitTemplate
from controlmesh.core.store import StateStore
from controlmesh.core.watch import WatchFeed

SPEC = DesiredSpec(1, UnitTemplate(image="busybox"))


def _drain(subscription, timeout=0.05):
    events = []
    while True:
        event = subscription.next_event(timeout=timeout)
        if event is None:
            return events
        events.append(event)


def test_new_subscriber_replays_snapshot_then_live_events():
    """订阅者先收到快照，再收到实时事件"""
    feed = WatchFeed()
    store = StateStore(feed)
    store.put_desired("a", SPEC)
    store.put_desired("b", SPEC)

    with feed.subscribe() as sub:
        store.put_desired("c", SPEC)
        events = _drain(sub)

    assert [event.identity.name for event in events] == ["a", "b", "c"]
    assert [event.change_kind for event in events] == [ChangeKind.CREATED] * 3
    assert events[0].sequence < events[1].sequence < events[2].sequence


def test_restarted_watcher_sees_every_known_identity():
    feed = WatchFeed()
    store = StateStore(feed)
    first = feed.subscribe()
    store.put_desired("a", SPEC)
    store.put_desired("b", SPEC)
    first.close()

    store.remove_desired("b")
    with feed.subscribe() as second:
        events = _drain(second)
    assert {(event.identity.name, event.change_kind) for event in events} == {
        ("a", ChangeKind.CREATED),
        ("b", ChangeKind.DELETED),
    }


def test_events_for_one_identity_keep_order():
    feed = WatchFeed()
    identity = ResourceIdentity("prod", "api")
    with feed.subscribe() as sub:
        for kind in (ChangeKind.CREATED, ChangeKind.UPDATED, ChangeKind.UPDATED, ChangeKind.DELETED):
            feed.publish(identity, kind)
        events = _drain(sub)
    assert [event.change_kind for event in events] == [
        ChangeKind.CREATED,
        ChangeKind.UPDATED,
        ChangeKind.UPDATED,
        ChangeKind.DELETED,
    ]
    assert events[0].to_dict()["id"] == "prod/api"
    assert events[0].to_dict()["changeKind"] == "created"


def test_fan_out_to_all_subscribers():
    feed = WatchFeed()
    subs = [feed.subscribe() for _ in range(3)]
    feed.publish("web", ChangeKind.CREATED)
    assert all(sub.next_event(timeout=1).identity.name == "web" for sub in subs)
    feed.close()
    assert feed.subscriber_count() == 0


def test_close_unblocks_iterating_consumer():
    feed = WatchFeed()
    sub = feed.subscribe()
    received = []

    def consume():
        for event in sub:
            received.append(event)

    worker = threading.Thread(target=consume)
    worker.start()
    feed.publish("web", ChangeKind.CREATED)
    sub.close()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert sub.closed
    assert [event.identity.name for event in received] == ["web"]
    assert sub.next_event(timeout=0.01) is None


def test_closed_subscription_gets_no_new_events():
    feed = WatchFeed()
    sub = feed.subscribe()
    sub.close()
    feed.publish("web", ChangeKind.UPDATED)
    assert sub.next_event(timeout=0.01) is None
    assert feed.subscriber_count() == 0
