"""
In-memory State Store.

The store is the only shared mutable resource of the control plane.  Each
record carries its own re-entrant lock that serialises writes to that
identity; the registry lock is only held to look up, insert or drop records,
so callers working on different identities never wait on each other.  Reads
of unknown identities leave nothing behind.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from controlmesh.core.entities import (
    ChangeKind,
    DesiredSpec,
    IdentityLike,
    ObservedStatus,
    ResourceIdentity,
)
from controlmesh.core.errors import NotFound
from controlmesh.core.watch import WatchFeed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreEntry:
    identity: ResourceIdentity
    desired: Optional[DesiredSpec]
    observed: Optional[ObservedStatus]
    generation: int


class _Record:
    __slots__ = ("lock", "desired", "observed", "generation", "removed")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.desired: Optional[DesiredSpec] = None
        self.observed: Optional[ObservedStatus] = None
        # 0 until the first put_desired lands; such records are invisible to readers
        self.generation = 0
        self.removed = False


class StateStore:
    """Mapping from resource identity to its desired spec and observed status."""

    def __init__(self, feed: Optional[WatchFeed] = None):
        self._registry_lock = threading.Lock()
        self._records: Dict[ResourceIdentity, _Record] = {}
        self.feed = feed
        if feed is not None:
            feed.attach_snapshot_source(self.snapshot_changes)

    def _lookup(self, identity: ResourceIdentity) -> Optional[_Record]:
        with self._registry_lock:
            return self._records.get(identity)

    def _lock_for_write(self, identity: ResourceIdentity) -> _Record:
        """Return the record of ``identity`` with its lock held, inserting it if needed."""
        while True:
            with self._registry_lock:
                record = self._records.get(identity)
                if record is None:
                    record = _Record()
                    record.lock.acquire()
                    self._records[identity] = record
                    return record
            record.lock.acquire()
            if not record.removed:
                return record
            # deleted while we waited; start over with a fresh record
            record.lock.release()

    def _publish(self, identity: ResourceIdentity, change_kind: ChangeKind) -> None:
        if self.feed is not None:
            self.feed.publish(identity, change_kind)

    def _visible(self) -> List[Tuple[ResourceIdentity, _Record]]:
        with self._registry_lock:
            records = list(self._records.items())
        return sorted(
            ((identity, record) for identity, record in records if record.generation > 0),
            key=lambda item: item[0],
        )

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, identity: IdentityLike) -> Tuple[Optional[DesiredSpec], Optional[ObservedStatus]]:
        """Return ``(desired, observed)``; ``(None, None)`` when unknown."""
        entry = self.read(identity)
        if entry is None:
            return None, None
        return entry.desired, entry.observed

    def read(self, identity: IdentityLike) -> Optional[StoreEntry]:
        identity = ResourceIdentity.parse(identity)
        record = self._lookup(identity)
        if record is None:
            return None
        with record.lock:
            if record.removed or record.generation == 0:
                return None
            return StoreEntry(identity, record.desired, record.observed, record.generation)

    def identities(self) -> List[ResourceIdentity]:
        return [identity for identity, _ in self._visible()]

    def snapshot_changes(self) -> List[Tuple[ResourceIdentity, ChangeKind]]:
        """Known identities with the change kind a fresh watcher should see."""
        return [
            (identity, ChangeKind.CREATED if record.desired is not None else ChangeKind.DELETED)
            for identity, record in self._visible()
        ]

    def __contains__(self, identity: object) -> bool:
        try:
            key = ResourceIdentity.parse(identity)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False
        record = self._lookup(key)
        return record is not None and record.generation > 0

    def __len__(self) -> int:
        return len(self._visible())

    def lock_count(self) -> int:
        """Number of records (and therefore locks) currently held."""
        with self._registry_lock:
            return len(self._records)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def put_desired(self, identity: IdentityLike, spec: DesiredSpec) -> int:
        """Replace the desired spec wholesale and return the new generation."""
        if not isinstance(spec, DesiredSpec):
            raise TypeError("spec must be a DesiredSpec")
        identity = ResourceIdentity.parse(identity)
        record = self._lock_for_write(identity)
        try:
            created = record.desired is None
            record.desired = spec
            record.generation += 1
            generation = record.generation
            logger.debug("Store put_desired id=%s generation=%s replicas=%s", identity, generation, spec.replica_count)
            self._publish(identity, ChangeKind.CREATED if created else ChangeKind.UPDATED)
        finally:
            record.lock.release()
        return generation

    def remove_desired(self, identity: IdentityLike) -> bool:
        """
        Clear the desired spec of an identity (caller-issued delete).

        The observed status is kept so the controller can tear down the
        remaining units.  Returns ``False`` when the identity is unknown.
        """
        identity = ResourceIdentity.parse(identity)
        record = self._lookup(identity)
        if record is None:
            return False
        with record.lock:
            if record.removed or record.generation == 0:
                return False
            record.desired = None
            record.generation += 1
            logger.debug("Store remove_desired id=%s generation=%s", identity, record.generation)
            self._publish(identity, ChangeKind.DELETED)
        return True

    def put_observed(self, identity: IdentityLike, status: ObservedStatus) -> None:
        identity = ResourceIdentity.parse(identity)
        record = self._lookup(identity)
        if record is None:
            raise NotFound(identity)
        with record.lock:
            if record.removed or record.generation == 0:
                raise NotFound(identity)
            record.observed = status

    def delete(self, identity: IdentityLike, *, expected_generation: Optional[int] = None) -> bool:
        """
        Destroy the entry together with its observed status.

        With ``expected_generation`` the entry is only removed when nobody
        re-registered a desired spec in the meantime.
        """
        identity = ResourceIdentity.parse(identity)
        record = self._lookup(identity)
        if record is None:
            return False
        with record.lock:
            if record.removed or record.generation == 0:
                return False
            if expected_generation is not None and record.generation != expected_generation:
                return False
            record.removed = True
            with self._registry_lock:
                if self._records.get(identity) is record:
                    del self._records[identity]
        logger.debug("Store delete id=%s", identity)
        return True


__all__ = ["StateStore", "StoreEntry"]
