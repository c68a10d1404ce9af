"""
Error taxonomy shared by the store, executors and the controller loop.
"""

from __future__ import annotations

from typing import Optional


class ControlMeshError(Exception):
    """Base class for all ControlMesh errors."""


class NotFound(ControlMeshError):
    """The identity is unknown to the store."""

    def __init__(self, identity: object, message: Optional[str] = None):
        self.identity = identity
        super().__init__(message or f"Resource '{identity}' not found")


class UnitNotFound(NotFound):
    """The backend has no record of the unit."""

    def __init__(self, unit_id: str, message: Optional[str] = None):
        self.unit_id = unit_id
        super().__init__(unit_id, message or f"Unit '{unit_id}' not found")


class ExecutorError(ControlMeshError):
    """Raised by an :class:`ActionExecutor` when a platform operation fails."""

    retryable = False


class ExecutorTransient(ExecutorError):
    """Timeouts or temporary backend unavailability; retried with backoff."""

    retryable = True


class ExecutorPermanent(ExecutorError):
    """The backend rejected the request (e.g. an invalid template)."""


class ConflictingUpdate(ControlMeshError):
    """The desired spec changed while a reconciliation pass was running."""

    def __init__(self, identity: object, expected_generation: int, current_generation: Optional[int]):
        self.identity = identity
        self.expected_generation = expected_generation
        self.current_generation = current_generation
        super().__init__(
            f"Desired spec for '{identity}' changed mid-reconciliation "
            f"(generation {expected_generation} -> {current_generation})"
        )


__all__ = [
    "ControlMeshError",
    "NotFound",
    "UnitNotFound",
    "ExecutorError",
    "ExecutorTransient",
    "ExecutorPermanent",
    "ConflictingUpdate",
]
