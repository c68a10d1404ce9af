"""
Core package bootstrap for the ControlMesh runtime.

Re-exports the primary façade classes so callers can simply do::

    from controlmesh.core import ControlPlane
"""

from __future__ import annotations

from controlmesh.core.controllers import ControllerLoop, ControlPlane
from controlmesh.core.reconciler import reconcile
from controlmesh.core.store import StateStore
from controlmesh.core.watch import WatchFeed

__all__ = ["ControlPlane", "ControllerLoop", "StateStore", "WatchFeed", "reconcile"]
