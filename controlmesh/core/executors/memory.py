"""
In-memory executor used by tests, demos and dry runs.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, List, Optional

from controlmesh.core.entities import ResourceIdentity, UnitSpec, UnitTemplate
from controlmesh.core.errors import ExecutorPermanent, UnitNotFound
from controlmesh.core.executors.base import ActionExecutor

logger = logging.getLogger(__name__)


class InMemoryExecutor(ActionExecutor):
    """Keeps units in a dict; templates without an image are rejected."""

    name = "memory"

    def __init__(self, id_prefix: str = "unit"):
        self._lock = threading.Lock()
        self._units: Dict[str, UnitSpec] = {}
        self._id_prefix = id_prefix
        self.history: List[tuple] = []

    @staticmethod
    def _validate(template: UnitTemplate) -> None:
        if not template.image or not template.image.strip():
            raise ExecutorPermanent("Unit template has an empty image")

    def create(self, unit: UnitSpec) -> str:
        self._validate(unit.template)
        unit_id = f"{unit.owner.name}-{self._id_prefix}-{uuid.uuid4().hex[:8]}"
        with self._lock:
            self._units[unit_id] = unit
            self.history.append(("create", unit_id))
        logger.debug("InMemoryExecutor created unit=%s owner=%s image=%s", unit_id, unit.owner, unit.template.reference)
        return unit_id

    def delete(self, unit_id: str) -> None:
        with self._lock:
            if self._units.pop(unit_id, None) is None:
                raise UnitNotFound(unit_id)
            self.history.append(("delete", unit_id))
        logger.debug("InMemoryExecutor deleted unit=%s", unit_id)

    def update(self, unit_id: str, template: UnitTemplate) -> None:
        self._validate(template)
        with self._lock:
            current = self._units.get(unit_id)
            if current is None:
                raise UnitNotFound(unit_id)
            self._units[unit_id] = UnitSpec(owner=current.owner, template=template, sequence=current.sequence)
            self.history.append(("update", unit_id))
        logger.debug("InMemoryExecutor updated unit=%s image=%s", unit_id, template.reference)

    def units(self, owner: Optional[ResourceIdentity] = None) -> Dict[str, UnitSpec]:
        with self._lock:
            return {
                unit_id: spec
                for unit_id, spec in self._units.items()
                if owner is None or spec.owner == owner
            }

    def close(self) -> None:
        with self._lock:
            self._units.clear()


__all__ = ["InMemoryExecutor"]
