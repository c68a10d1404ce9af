"""
Action executor interface.

An executor is the only boundary between the control plane and the platform
that actually runs units (a process manager, a container runtime, Ray
actors, or an in-memory fake).  Implementations report failures by raising
:class:`~controlmesh.core.errors.ExecutorTransient`,
:class:`~controlmesh.core.errors.ExecutorPermanent` or
:class:`~controlmesh.core.errors.UnitNotFound`; any other exception is
treated as transient by the controller loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from controlmesh.core.entities import UnitSpec, UnitTemplate


class ActionExecutor(ABC):
    """Base class for all unit backends."""

    name = "abstract"

    @abstractmethod
    def create(self, unit: UnitSpec) -> str:
        """Start a unit and return its backend-assigned id."""

    @abstractmethod
    def delete(self, unit_id: str) -> None:
        """Stop and forget a unit."""

    @abstractmethod
    def update(self, unit_id: str, template: UnitTemplate) -> None:
        """Move an existing unit to a new template."""

    def close(self) -> None:
        """Release backend resources (optional)."""


__all__ = ["ActionExecutor"]
