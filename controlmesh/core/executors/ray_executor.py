"""
Ray-backed executor: every unit is a named :class:`UnitActor`.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, Optional

import ray
from ray.exceptions import GetTimeoutError, RayActorError, RayError

from controlmesh.core.entities import UnitSpec, UnitTemplate
from controlmesh.core.errors import ExecutorPermanent, ExecutorTransient, UnitNotFound
from controlmesh.core.executors.base import ActionExecutor
from controlmesh.core.unit_actor import UnitActor

logger = logging.getLogger(__name__)

_ACTOR_PREFIX = "controlmesh-unit"


class RayActorExecutor(ActionExecutor):
    """
    Creates, updates and kills :class:`UnitActor` instances.

    Args:
        namespace: Ray namespace for unit actors. ``None`` uses the caller's
            current namespace.
        startup_timeout: Seconds to wait for a new actor to answer ``ping``.
        call_timeout: Seconds to wait for ``apply_template``.
        actor_options: Extra options forwarded to ``UnitActor.options``.
        auto_init: Call ``ray.init`` when Ray is not initialised yet.
    """

    name = "ray"

    def __init__(
        self,
        *,
        namespace: Optional[str] = None,
        startup_timeout: float = 20.0,
        call_timeout: float = 20.0,
        actor_options: Optional[Dict[str, Any]] = None,
        auto_init: bool = True,
    ):
        self._namespace = namespace
        self._startup_timeout = startup_timeout
        self._call_timeout = call_timeout
        self._actor_options = dict(actor_options or {})
        self._auto_init = auto_init
        self._lock = threading.Lock()
        self._handles: Dict[str, ray.actor.ActorHandle] = {}

    def _ensure_ray(self) -> None:
        if ray.is_initialized():
            return
        if not self._auto_init:
            raise ExecutorTransient("Ray is not initialised")
        ray.init(ignore_reinit_error=True)

    @staticmethod
    def _validate(template: UnitTemplate) -> None:
        if not template.image or not template.image.strip():
            raise ExecutorPermanent("Unit template has an empty image")

    @staticmethod
    def actor_name(unit_id: str) -> str:
        return f"{_ACTOR_PREFIX}-{unit_id}"

    def _handle(self, unit_id: str) -> ray.actor.ActorHandle:
        with self._lock:
            handle = self._handles.get(unit_id)
        if handle is not None:
            return handle
        try:
            return ray.get_actor(self.actor_name(unit_id), namespace=self._namespace)
        except ValueError as exc:
            raise UnitNotFound(unit_id) from exc

    def create(self, unit: UnitSpec) -> str:
        self._validate(unit.template)
        self._ensure_ray()
        unit_id = f"{unit.owner.namespace}-{unit.owner.name}-{uuid.uuid4().hex[:8]}"
        options: Dict[str, Any] = dict(self._actor_options)
        options["name"] = self.actor_name(unit_id)
        if self._namespace is not None:
            options["namespace"] = self._namespace

        logger.debug("RayActorExecutor 创建 Ray actor unit=%s options=%s", unit_id, options)
        try:
            handle = UnitActor.options(**options).remote(unit_id, unit.owner.key, unit.template.to_dict())
        except ValueError as exc:
            raise ExecutorPermanent(f"Invalid actor options for unit '{unit_id}': {exc}") from exc

        try:
            ray.get(handle.ping.remote(), timeout=self._startup_timeout)
        except GetTimeoutError as exc:
            ray.kill(handle, no_restart=True)
            raise ExecutorTransient(f"Unit '{unit_id}' did not start within {self._startup_timeout}s") from exc
        except RayError as exc:
            ray.kill(handle, no_restart=True)
            raise ExecutorTransient(f"Unit '{unit_id}' failed to start: {exc}") from exc

        with self._lock:
            self._handles[unit_id] = handle
        logger.info("Unit %s 启动完成 owner=%s image=%s", unit_id, unit.owner, unit.template.reference)
        return unit_id

    def delete(self, unit_id: str) -> None:
        handle = self._handle(unit_id)
        try:
            ray.kill(handle, no_restart=True)
        except RayError as exc:
            raise ExecutorTransient(f"Failed to kill unit '{unit_id}': {exc}") from exc
        with self._lock:
            self._handles.pop(unit_id, None)
        logger.info("Unit %s 已删除", unit_id)

    def update(self, unit_id: str, template: UnitTemplate) -> None:
        self._validate(template)
        handle = self._handle(unit_id)
        try:
            ray.get(handle.apply_template.remote(template.to_dict()), timeout=self._call_timeout)
        except GetTimeoutError as exc:
            raise ExecutorTransient(f"Unit '{unit_id}' update timed out") from exc
        except RayActorError as exc:
            # the actor is gone; let the controller recreate it
            with self._lock:
                self._handles.pop(unit_id, None)
            raise UnitNotFound(unit_id) from exc
        except RayError as exc:
            raise ExecutorTransient(f"Unit '{unit_id}' update failed: {exc}") from exc

    def describe(self, unit_id: str) -> dict:
        handle = self._handle(unit_id)
        try:
            return ray.get(handle.describe.remote(), timeout=self._call_timeout)
        except RayActorError as exc:
            raise UnitNotFound(unit_id) from exc

    def unit_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._handles)

    def close(self) -> None:
        with self._lock:
            handles = list(self._handles.items())
            self._handles.clear()
        for unit_id, handle in handles:
            try:
                ray.kill(handle, no_restart=True)
            except RayError:
                logger.warning("关闭时终止 Unit %s 失败", unit_id, exc_info=True)


__all__ = ["RayActorExecutor"]
