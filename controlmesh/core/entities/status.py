"""
Observed state tracked by the controller loop.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from controlmesh.core.entities.resource import DesiredSpec, ResourceIdentity, UnitTemplate
from controlmesh.core.entities.types import ControllerPhase


@dataclass(frozen=True)
class Unit:
    """One running replica as recorded by the controller."""

    unit_id: str
    template: UnitTemplate
    sequence: int
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "template": self.template.to_dict(),
            "sequence": self.sequence,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ObservedStatus:
    """
    Last-known real-world state of a resource.

    ``units`` is kept in creation order (oldest first).  Instances are never
    mutated; every helper returns a new status.
    """

    units: Tuple[Unit, ...] = ()
    observed_generation: int = 0
    degraded: bool = False
    last_error: Optional[str] = None
    next_sequence: int = 0
    updated_at: float = field(default_factory=time.time)

    @property
    def count(self) -> int:
        return len(self.units)

    def unit(self, unit_id: str) -> Optional[Unit]:
        for unit in self.units:
            if unit.unit_id == unit_id:
                return unit
        return None

    def with_unit_added(self, unit_id: str, template: UnitTemplate) -> "ObservedStatus":
        unit = Unit(unit_id=unit_id, template=template, sequence=self.next_sequence)
        return replace(
            self,
            units=self.units + (unit,),
            next_sequence=self.next_sequence + 1,
            updated_at=time.time(),
        )

    def with_unit_removed(self, unit_id: str) -> "ObservedStatus":
        remaining = tuple(unit for unit in self.units if unit.unit_id != unit_id)
        return replace(self, units=remaining, updated_at=time.time())

    def with_unit_updated(self, unit_id: str, template: UnitTemplate) -> "ObservedStatus":
        units = tuple(
            replace(unit, template=template) if unit.unit_id == unit_id else unit for unit in self.units
        )
        return replace(self, units=units, updated_at=time.time())

    def mark_degraded(self, error: str) -> "ObservedStatus":
        return replace(self, degraded=True, last_error=error, updated_at=time.time())

    def mark_converged(self, generation: int) -> "ObservedStatus":
        return replace(
            self,
            degraded=False,
            last_error=None,
            observed_generation=generation,
            updated_at=time.time(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "units": [unit.to_dict() for unit in self.units],
            "count": self.count,
            "observed_generation": self.observed_generation,
            "degraded": self.degraded,
            "last_error": self.last_error,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class ResourceStatus:
    """Caller-facing view that joins the store entry with the controller phase."""

    identity: ResourceIdentity
    phase: ControllerPhase
    desired: Optional[DesiredSpec]
    observed: Optional[ObservedStatus]
    generation: int

    @property
    def degraded(self) -> bool:
        return bool(self.observed and self.observed.degraded)

    @property
    def last_error(self) -> Optional[str]:
        return self.observed.last_error if self.observed else None

    @property
    def ready(self) -> bool:
        if self.phase is not ControllerPhase.IDLE or self.degraded or self.desired is None:
            return False
        units = self.observed.units if self.observed else ()
        if len(units) != self.desired.replica_count:
            return False
        return all(unit.template == self.desired.template for unit in units)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.identity.key,
            "phase": self.phase.value,
            "generation": self.generation,
            "ready": self.ready,
            "degraded": self.degraded,
            "last_error": self.last_error,
            "desired": self.desired.to_dict() if self.desired else None,
            "observed": self.observed.to_dict() if self.observed else None,
        }
