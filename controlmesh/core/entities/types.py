"""
Common type definitions shared by the reconciler, store and controllers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Union

from controlmesh.core.entities.resource import ResourceIdentity, UnitTemplate


class ActionKind(str, Enum):
    CREATE = "create"
    DELETE = "delete"
    UPDATE = "update"


@dataclass(frozen=True)
class CreateAction:
    template: UnitTemplate
    kind: ActionKind = field(default=ActionKind.CREATE, init=False)


@dataclass(frozen=True)
class DeleteAction:
    unit_id: str
    kind: ActionKind = field(default=ActionKind.DELETE, init=False)


@dataclass(frozen=True)
class UpdateAction:
    unit_id: str
    template: UnitTemplate
    kind: ActionKind = field(default=ActionKind.UPDATE, init=False)


ReconcileAction = Union[CreateAction, DeleteAction, UpdateAction]


@dataclass(frozen=True)
class UnitSpec:
    """Everything an executor needs to materialise one unit."""

    owner: ResourceIdentity
    template: UnitTemplate
    sequence: int = 0


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    identity: ResourceIdentity
    change_kind: ChangeKind
    sequence: int = 0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.identity.key,
            "changeKind": self.change_kind.value,
            "timestamp": self.timestamp,
        }


class ControllerPhase(str, Enum):
    """Per-identity state of the controller loop."""

    IDLE = "idle"
    RECONCILING = "reconciling"
