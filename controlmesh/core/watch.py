"""
Watch / event feed.

A :class:`Subscription` first replays a snapshot of every identity known at
subscription time and then delivers live events.  Delivery is at-least-once:
an identity may appear both in the snapshot and as a live event, so consumers
must treat events as "look at this identity again" hints.  Events for one
identity keep their publication order; nothing is promised across identities.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from controlmesh.core.entities import ChangeEvent, ChangeKind, IdentityLike, ResourceIdentity

logger = logging.getLogger(__name__)

SnapshotSource = Callable[[], Iterable[Tuple[ResourceIdentity, ChangeKind]]]

_CLOSED = object()


class Subscription:
    """Infinite, closable iterator over :class:`ChangeEvent` objects."""

    def __init__(self, feed: "WatchFeed"):
        self._feed = feed
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _offer(self, event: ChangeEvent) -> None:
        if not self._closed.is_set():
            self._queue.put(event)

    def next_event(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Block for the next event; ``None`` on timeout or once closed."""
        if self._closed.is_set() and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            # keep the sentinel for other waiters
            self._queue.put(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(_CLOSED)
        self._feed._discard(self)

    def __iter__(self) -> Iterator[ChangeEvent]:
        while True:
            event = self.next_event()
            if event is None:
                return
            yield event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class WatchFeed:
    """Fan-out of store changes to any number of subscribers."""

    def __init__(self, snapshot_source: Optional[SnapshotSource] = None):
        self._lock = threading.Lock()
        self._subscribers: List[Subscription] = []
        self._sequence = itertools.count(1)
        self._snapshot_source = snapshot_source

    def attach_snapshot_source(self, source: SnapshotSource) -> None:
        with self._lock:
            self._snapshot_source = source

    def _event(self, identity: ResourceIdentity, change_kind: ChangeKind) -> ChangeEvent:
        return ChangeEvent(
            identity=identity,
            change_kind=change_kind,
            sequence=next(self._sequence),
            timestamp=time.time(),
        )

    def publish(self, identity: IdentityLike, change_kind: ChangeKind) -> ChangeEvent:
        identity = ResourceIdentity.parse(identity)
        with self._lock:
            event = self._event(identity, ChangeKind(change_kind))
            for subscriber in self._subscribers:
                subscriber._offer(event)
        logger.debug("WatchFeed publish id=%s kind=%s seq=%s", identity, event.change_kind.value, event.sequence)
        return event

    def subscribe(self) -> Subscription:
        """Register a subscriber and queue a snapshot of known identities."""
        subscription = Subscription(self)
        with self._lock:
            if self._snapshot_source is not None:
                for identity, change_kind in self._snapshot_source():
                    subscription._offer(self._event(identity, change_kind))
            self._subscribers.append(subscription)
        logger.debug("WatchFeed subscriber registered snapshot=%s", subscription.pending())
        return subscription

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _discard(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def close(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.close()


__all__ = ["Subscription", "WatchFeed", "SnapshotSource"]
