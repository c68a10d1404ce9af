"""
SimpleController
----------------

Provides a thin, user-friendly wrapper around :class:`controlmesh.core.controllers.ControlPlane`.

The goal is to cover the Deployment-style flows (deploy, scale, roll out a
new image, delete) with plain keyword arguments and dictionary results,
while keeping the underlying control plane accessible for advanced use.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from controlmesh.core.config import get_controller_config
from controlmesh.core.controllers.control_plane import ControlPlane
from controlmesh.core.entities import DEFAULT_NAMESPACE, DesiredSpec, ResourceIdentity, UnitTemplate
from controlmesh.core.errors import NotFound
from controlmesh.core.executors.registry import ExecutorSpec


@dataclass
class SimpleDeploymentSpec:
    """
    Declarative description of a deployment submitted via :class:`SimpleController`.

    Attributes:
        name: Resource name, unique within ``namespace``.
        image: Image each replica runs.
        tag: Image tag.
        replicas: Desired replica count.
        env: Optional environment passed to every replica.
        max_surge: Extra replicas allowed during a rollout; ``None`` takes the
            configured default (``rollout.max_surge``).
        max_unavailable: Replicas allowed to be down during a rollout; ``None``
            takes the configured default (``rollout.max_unavailable``).
        namespace: Namespace of the resource.
    """

    name: str
    image: str
    tag: str = "latest"
    replicas: int = 1
    env: Optional[Mapping[str, str]] = None
    max_surge: Optional[int] = None
    max_unavailable: Optional[int] = None
    namespace: str = DEFAULT_NAMESPACE

    @property
    def identity(self) -> ResourceIdentity:
        return ResourceIdentity(self.namespace, self.name)

    def to_desired_spec(self) -> DesiredSpec:
        """Build the matching :class:`DesiredSpec`."""
        rollout = get_controller_config().rollout
        return DesiredSpec(
            replica_count=self.replicas,
            template=UnitTemplate(image=self.image, tag=self.tag, env=dict(self.env or {})),
            max_surge=rollout.max_surge if self.max_surge is None else self.max_surge,
            max_unavailable=rollout.max_unavailable if self.max_unavailable is None else self.max_unavailable,
        )


class SimpleController:
    """
    High-level façade focused on the most common deployment flows.

    Typical usage::

        simple = SimpleController()
        simple.deploy(SimpleDeploymentSpec(name="web", image="nginx", tag="1.25", replicas=3))
        simple.wait("web")
        simple.scale("web", 5)
        simple.rollout("web", image="nginx", tag="1.26")
        simple.delete("web")
    """

    def __init__(
        self,
        executor: Optional[ExecutorSpec] = None,
        *,
        plane: Optional[ControlPlane] = None,
        wait_timeout: float = 30.0,
    ) -> None:
        self._plane = plane or ControlPlane(executor)
        self._wait_timeout = wait_timeout

    # ---------------------------------------------------------------------
    # Desired state helpers
    # ---------------------------------------------------------------------

    def deploy(self, spec: SimpleDeploymentSpec) -> Dict[str, Any]:
        """Create or replace the deployment described by ``spec``."""
        try:
            desired = spec.to_desired_spec()
        except ValueError as exc:
            return {"success": False, "error": str(exc)}
        generation = self._plane.apply(spec.identity, desired)
        return {"success": True, "id": spec.identity.key, "generation": generation}

    def scale(self, name: str, replicas: int, *, namespace: str = DEFAULT_NAMESPACE) -> Dict[str, Any]:
        """调整副本数，模板保持不变。"""
        return self._modify(name, namespace, lambda desired: desired.with_replicas(replicas))

    def rollout(
        self,
        name: str,
        *,
        image: Optional[str] = None,
        tag: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> Dict[str, Any]:
        """
        Roll the deployment to a new template; unspecified fields are kept.
        """

        def _change(desired: DesiredSpec) -> DesiredSpec:
            current = desired.template
            template = UnitTemplate(
                image=current.image if image is None else image,
                tag=current.tag if tag is None else tag,
                env=dict(current.env if env is None else env),
                command=current.command,
            )
            return desired.with_template(template)

        return self._modify(name, namespace, _change)

    def _modify(self, name: str, namespace: str, change) -> Dict[str, Any]:
        identity = ResourceIdentity(namespace, name)
        try:
            status = self._plane.status(identity)
        except NotFound:
            return {"success": False, "error": f"Deployment '{identity}' not found"}
        if status.desired is None:
            return {"success": False, "error": f"Deployment '{identity}' is being deleted"}
        try:
            desired = change(status.desired)
        except ValueError as exc:
            return {"success": False, "error": str(exc)}
        generation = self._plane.apply(identity, desired)
        return {"success": True, "id": identity.key, "generation": generation}

    def delete(self, name: str, *, namespace: str = DEFAULT_NAMESPACE, wait: bool = False) -> Dict[str, Any]:
        """删除 deployment；``wait=True`` 时等待所有副本被清理。"""
        identity = ResourceIdentity(namespace, name)
        if not self._plane.delete(identity):
            return {"success": True, "id": identity.key, "already_absent": True}
        if wait and not self._plane.wait_until_gone(identity, self._wait_timeout):
            return {"success": False, "id": identity.key, "error": "teardown did not finish in time"}
        return {"success": True, "id": identity.key}

    # ---------------------------------------------------------------------
    # Introspection / lifecycle
    # ---------------------------------------------------------------------

    def describe(self, name: str, *, namespace: str = DEFAULT_NAMESPACE) -> Dict[str, Any]:
        identity = ResourceIdentity(namespace, name)
        try:
            status = self._plane.status(identity)
        except NotFound:
            return {"success": False, "error": f"Deployment '{identity}' not found"}
        return {"success": True, "status": status.to_dict()}

    def list(self) -> Dict[str, Any]:
        """列出所有 deployment 状态。"""
        return {"success": True, "statuses": [status.to_dict() for status in self._plane.list_statuses()]}

    def wait(self, name: str, *, namespace: str = DEFAULT_NAMESPACE, timeout: Optional[float] = None) -> Dict[str, Any]:
        identity = ResourceIdentity(namespace, name)
        try:
            status = self._plane.wait_until_converged(identity, timeout or self._wait_timeout)
        except NotFound:
            return {"success": False, "error": f"Deployment '{identity}' not found"}
        except TimeoutError as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "status": status.to_dict()}

    def shutdown(self) -> None:
        """Stop the control plane and release every unit."""
        self._plane.shutdown()

    @property
    def plane(self) -> ControlPlane:
        """Expose the underlying control plane for advanced scenarios."""
        return self._plane
