"""
Domain entities used throughout the ControlMesh runtime.
"""

from .resource import DEFAULT_NAMESPACE, DesiredSpec, IdentityLike, ResourceIdentity, UnitTemplate  # noqa: F401
from .types import (  # noqa: F401
    ActionKind,
    ChangeEvent,
    ChangeKind,
    ControllerPhase,
    CreateAction,
    DeleteAction,
    ReconcileAction,
    UnitSpec,
    UpdateAction,
)
from .status import ObservedStatus, ResourceStatus, Unit  # noqa: F401

__all__ = [
    "DEFAULT_NAMESPACE",
    "DesiredSpec",
    "IdentityLike",
    "ResourceIdentity",
    "UnitTemplate",
    "ActionKind",
    "ChangeEvent",
    "ChangeKind",
    "ControllerPhase",
    "CreateAction",
    "DeleteAction",
    "ReconcileAction",
    "UnitSpec",
    "UpdateAction",
    "ObservedStatus",
    "ResourceStatus",
    "Unit",
]
