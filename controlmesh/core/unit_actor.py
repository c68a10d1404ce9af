"""
UnitActor: the Ray actor that embodies one replica of a resource.

Each instance picks a random identifier at start-up, so callers can tell
replicas (and replacements after an update) apart.
"""

from __future__ import annotations

import logging
import random
import string
import time
from typing import Any, Dict

import ray

from controlmesh.core.entities import UnitTemplate
from controlmesh.core.utils import configure_runtime_logging

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits


def new_instance_id(length: int = 8) -> str:
    return "".join(random.choice(_ALPHABET) for _ in range(length))


@ray.remote
class UnitActor:
    """Placeholder workload actor，记录模板并暴露实例标识。"""

    def __init__(self, unit_id: str, owner: str, template: Dict[str, Any]):
        configure_runtime_logging()
        self.unit_id = unit_id
        self.owner = owner
        self.template = UnitTemplate.from_dict(template)
        self.instance_id = new_instance_id()
        self.revision = 1
        self.started_at = time.time()
        logger.info("UnitActor[%s] started owner=%s image=%s instance=%s", unit_id, owner, self.template.reference, self.instance_id)

    def ping(self) -> bool:
        return True

    def instance(self) -> str:
        return self.instance_id

    def apply_template(self, template: Dict[str, Any]) -> dict:
        """切换到新模板；实例标识随之刷新，模拟一次滚动替换。"""
        self.template = UnitTemplate.from_dict(template)
        self.instance_id = new_instance_id()
        self.revision += 1
        logger.info(
            "UnitActor[%s] updated image=%s revision=%s instance=%s",
            self.unit_id,
            self.template.reference,
            self.revision,
            self.instance_id,
        )
        return self.describe()

    def describe(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "owner": self.owner,
            "template": self.template.to_dict(),
            "instance_id": self.instance_id,
            "revision": self.revision,
            "started_at": self.started_at,
        }


__all__ = ["UnitActor", "new_instance_id"]
