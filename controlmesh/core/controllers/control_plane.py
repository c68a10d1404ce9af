"""
Client-facing ControlPlane façade.

The façade wires the store, the watch feed, the controller loop and an
executor together while exposing a small synchronous API to library
consumers.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from controlmesh.config.policy import BackoffPolicy
from controlmesh.core.config import ControllerConfig, get_controller_config
from controlmesh.core.controllers.controller_loop import ControllerLoop
from controlmesh.core.entities import DesiredSpec, IdentityLike, ResourceIdentity, ResourceStatus
from controlmesh.core.errors import NotFound
from controlmesh.core.executors.registry import ExecutorSpec
from controlmesh.core.store import StateStore
from controlmesh.core.watch import WatchFeed

logger = logging.getLogger(__name__)


class ControlPlane:
    """Thin wrapper that owns one store/feed/loop triple."""

    def __init__(
        self,
        executor: Optional[ExecutorSpec] = None,
        *,
        config: Optional[ControllerConfig] = None,
        action_timeout: Optional[float] = None,
        backoff: Optional[BackoffPolicy] = None,
        autostart: bool = True,
    ):
        """
        Args:
            executor: Backend used for units. ``None`` uses the configured
                default (``controller.executor``).
            config: Controller configuration; defaults to the YAML-backed one.
            action_timeout: Per executor call timeout in seconds.
            backoff: Retry policy overriding the configured one.
            autostart: Start the controller loop immediately.
        """
        self.config = config or get_controller_config()
        self.feed = WatchFeed()
        self.store = StateStore(self.feed)
        self.loop = ControllerLoop(
            self.store,
            executor if executor is not None else self.config.executor,
            self.feed,
            config=self.config,
            action_timeout=action_timeout,
            backoff=backoff,
        )
        self._closed = False
        if autostart:
            self.start()

    @property
    def executor(self):
        return self.loop.executor

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("ControlPlane has been shut down")
        self.loop.start()

    def shutdown(self, *, close_executor: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        self.loop.stop()
        self.feed.close()
        if close_executor:
            self.loop.executor.close()
        logger.info("ControlPlane shut down")

    def __enter__(self) -> "ControlPlane":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------ #
    # Desired state
    # ------------------------------------------------------------------ #

    def apply(self, identity: IdentityLike, spec: DesiredSpec) -> int:
        """Declare (or replace) the desired spec; returns the new generation."""
        identity = ResourceIdentity.parse(identity)
        generation = self.store.put_desired(identity, spec)
        logger.info(
            "Applied %s generation=%s replicas=%s image=%s",
            identity,
            generation,
            spec.replica_count,
            spec.template.reference,
        )
        return generation

    def delete(self, identity: IdentityLike) -> bool:
        """
        Request teardown of ``identity``.

        Unknown identities are already converged and return ``False``.
        """
        identity = ResourceIdentity.parse(identity)
        removed = self.store.remove_desired(identity)
        if removed:
            logger.info("Delete requested for %s", identity)
        else:
            logger.debug("Delete for unknown identity %s treated as converged", identity)
        return removed

    def reconcile_now(self, identity: IdentityLike) -> bool:
        """Trigger a pass without waiting for a watch event."""
        return self.loop.enqueue(identity)

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def status(self, identity: IdentityLike) -> ResourceStatus:
        identity = ResourceIdentity.parse(identity)
        entry = self.store.read(identity)
        if entry is None:
            raise NotFound(identity)
        return ResourceStatus(
            identity=identity,
            phase=self.loop.phase(identity),
            desired=entry.desired,
            observed=entry.observed,
            generation=entry.generation,
        )

    def list_statuses(self) -> List[ResourceStatus]:
        statuses = []
        for identity in self.store.identities():
            try:
                statuses.append(self.status(identity))
            except NotFound:
                continue
        return statuses

    def _is_ready(self, identity: ResourceIdentity, generation: Optional[int]) -> bool:
        try:
            status = self.status(identity)
        except NotFound:
            return False
        if generation is not None and status.generation != generation:
            return False
        observed = status.observed
        if observed is None or observed.observed_generation != status.generation:
            return False
        return status.ready

    def wait_until_converged(self, identity: IdentityLike, timeout: Optional[float] = 10.0) -> ResourceStatus:
        """
        Block until the observed state matches the current desired spec.

        Raises:
            TimeoutError: the resource did not converge in time. A degraded
                resource never converges on its own, so this also covers
                terminal executor failures.
            NotFound: the identity is unknown.
        """
        identity = ResourceIdentity.parse(identity)
        self.status(identity)
        if not self.loop.wait_for(lambda: self._is_ready(identity, None), timeout):
            status = self.status(identity)
            raise TimeoutError(
                f"{identity} did not converge within {timeout}s "
                f"(phase={status.phase.value}, degraded={status.degraded}, last_error={status.last_error})"
            )
        return self.status(identity)

    def wait_until_degraded(self, identity: IdentityLike, timeout: Optional[float] = 10.0) -> ResourceStatus:
        identity = ResourceIdentity.parse(identity)

        def _degraded() -> bool:
            try:
                return self.status(identity).degraded
            except NotFound:
                return False

        if not self.loop.wait_for(_degraded, timeout):
            raise TimeoutError(f"{identity} did not become degraded within {timeout}s")
        return self.status(identity)

    def wait_until_gone(self, identity: IdentityLike, timeout: Optional[float] = 10.0) -> bool:
        identity = ResourceIdentity.parse(identity)
        return self.loop.wait_for(lambda: identity not in self.store, timeout)


__all__ = ["ControlPlane"]
