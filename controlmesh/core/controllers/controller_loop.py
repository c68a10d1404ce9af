"""
ControllerLoop - 核心收敛循环实现。

支持：
- 每个 identity 单飞（single-flight）：同一资源同时只有一个 reconcile pass
- 事件合并（coalescing）：pass 进行中到达的事件只打标记，不会丢失
- Create/Update 有界指数退避重试，Delete 无限重试
- 每次 executor 调用受 action_timeout 约束
- 期望状态在 pass 中途变化时中止当前 pass 并重新规划

Executor calls run on their own thread, at most one per identity.  A call
that exceeds ``action_timeout`` is reported as transient but is not forgotten:
the retry keeps waiting on the same call, and a Create that only finishes
after its pass gave up is recorded on the observed status by the next pass.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, wait as wait_futures
from typing import Any, Callable, Dict, List, Optional, Tuple

from controlmesh.config.policy import BackoffPolicy
from controlmesh.core.config import ControllerConfig, get_controller_config
from controlmesh.core.entities import (
    ControllerPhase,
    CreateAction,
    DeleteAction,
    IdentityLike,
    ObservedStatus,
    ReconcileAction,
    ResourceIdentity,
    UnitSpec,
    UnitTemplate,
    UpdateAction,
)
from controlmesh.core.errors import (
    ConflictingUpdate,
    ExecutorError,
    ExecutorPermanent,
    ExecutorTransient,
    NotFound,
    UnitNotFound,
)
from controlmesh.core.executors import ActionExecutor, create_executor
from controlmesh.core.executors.registry import ExecutorSpec
from controlmesh.core.reconciler import reconcile
from controlmesh.core.store import StateStore, StoreEntry
from controlmesh.core.watch import Subscription, WatchFeed

logger = logging.getLogger(__name__)


class _ActionFailed(Exception):
    """A Create/Update gave up (permanent error or retries exhausted)."""

    def __init__(self, action: ReconcileAction, error: BaseException, attempts: int):
        self.action = action
        self.error = error
        self.attempts = attempts
        super().__init__(f"{action.kind.value} failed after {attempts} attempt(s): {error}")


class _UnitVanished(Exception):
    """The backend lost a unit that the status still lists."""


class _Stopped(Exception):
    """The loop is shutting down."""


class _Call:
    """One executor call running on a dedicated thread."""

    __slots__ = ("future", "token", "template", "abandoned")

    def __init__(self, token: object, template: Optional[UnitTemplate]):
        self.future: Future = Future()
        self.token = token
        # set for creates, so a late unit id can still be recorded
        self.template = template
        self.abandoned = False


class _IdentityState:
    __slots__ = ("phase", "pending", "thread", "active", "passes", "call", "late_units")

    def __init__(self) -> None:
        self.phase = ControllerPhase.IDLE
        self.pending = False
        self.thread: Optional[threading.Thread] = None
        self.active = 0
        self.passes = 0
        self.call: Optional[_Call] = None
        self.late_units: List[Tuple[str, UnitTemplate]] = []

    @property
    def busy(self) -> bool:
        return self.call is not None or bool(self.late_units)


class ControllerLoop:
    """
    驱动 Reconciler 的控制循环。

    Args:
        store: Shared :class:`StateStore`; the only place observed status is written.
        executor: Backend name, instance, subclass or factory (see
            :func:`~controlmesh.core.executors.create_executor`).
        feed: Watch feed to consume in :meth:`start`. Defaults to ``store.feed``.
        config: Controller configuration; defaults to :func:`get_controller_config`.
        action_timeout: Per-call timeout in seconds, overrides the config.
        backoff: Retry policy, overrides the config.
    """

    def __init__(
        self,
        store: StateStore,
        executor: ExecutorSpec = "memory",
        feed: Optional[WatchFeed] = None,
        *,
        config: Optional[ControllerConfig] = None,
        action_timeout: Optional[float] = None,
        backoff: Optional[BackoffPolicy] = None,
    ):
        config = config or get_controller_config()
        self.store = store
        self.executor: ActionExecutor = create_executor(executor)
        self.feed = feed if feed is not None else store.feed
        self.backoff = backoff or config.backoff
        self.action_timeout = action_timeout if action_timeout is not None else config.action_timeout
        if self.action_timeout <= 0:
            raise ValueError("action_timeout must be positive")

        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._states: Dict[ResourceIdentity, _IdentityState] = {}
        self._stop_event = threading.Event()
        self._watch_thread: Optional[threading.Thread] = None
        self._subscription: Optional[Subscription] = None
        self._running = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Consume the watch feed on a background thread."""
        if self.feed is None:
            raise RuntimeError("ControllerLoop.start() requires a WatchFeed")
        with self._lock:
            if self._running:
                return
            if self._stop_event.is_set():
                self._stop_event.clear()
            self._running = True
            self._watch_thread = threading.Thread(target=self._watch_loop, name="controlmesh-watch", daemon=True)
        self._watch_thread.start()
        logger.info("ControllerLoop started executor=%s timeout=%.2fs", self.executor.name, self.action_timeout)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop watching, interrupt backoff sleeps and join worker threads."""
        self._stop_event.set()
        with self._lock:
            self._running = False
            subscription = self._subscription
            self._subscription = None
            watch_thread = self._watch_thread
            self._watch_thread = None
            workers = [state.thread for state in self._states.values() if state.thread is not None]
            self._changed.notify_all()
        if subscription is not None:
            subscription.close()
        if watch_thread is not None and watch_thread is not threading.current_thread():
            watch_thread.join(timeout)
        for worker in workers:
            if worker is not threading.current_thread():
                worker.join(timeout)
        logger.info("ControllerLoop stopped")

    def _watch_loop(self) -> None:
        while not self._stop_event.is_set():
            subscription = self.feed.subscribe()
            with self._lock:
                if self._stop_event.is_set():
                    subscription.close()
                    return
                self._subscription = subscription
            for event in subscription:
                if self._stop_event.is_set():
                    break
                logger.debug("Watch event id=%s kind=%s seq=%s", event.identity, event.change_kind.value, event.sequence)
                self.enqueue(event.identity)
            subscription.close()
            if not self._stop_event.is_set():
                logger.warning("Watch subscription ended unexpectedly, resubscribing")

    # ------------------------------------------------------------------ #
    # Scheduling
    # ------------------------------------------------------------------ #

    def enqueue(self, identity: IdentityLike) -> bool:
        """
        请求对 identity 做一次 reconcile。

        Returns:
            ``True`` when a new pass was started, ``False`` when the request was
            coalesced into the running pass (or the loop is stopped).
        """
        identity = ResourceIdentity.parse(identity)
        with self._lock:
            if self._stop_event.is_set():
                logger.debug("ControllerLoop stopped, ignoring request for %s", identity)
                return False
            state = self._states.get(identity)
            if state is None:
                state = _IdentityState()
                self._states[identity] = state
            if state.phase is ControllerPhase.RECONCILING:
                state.pending = True
                logger.debug("Coalesced request for %s into the running pass", identity)
                return False
            state.phase = ControllerPhase.RECONCILING
            worker = threading.Thread(
                target=self._worker,
                args=(identity, state),
                name=f"reconcile-{identity.key}",
                daemon=True,
            )
            state.thread = worker
        worker.start()
        return True

    def _worker(self, identity: ResourceIdentity, state: _IdentityState) -> None:
        while True:
            with self._lock:
                state.pending = False
                state.active += 1
                state.passes += 1
                pass_number = state.passes
            rerun = False
            try:
                logger.debug("Pass #%s for %s started", pass_number, identity)
                rerun = self._run_pass(identity, state)
            except _Stopped:
                logger.debug("Pass #%s for %s interrupted by shutdown", pass_number, identity)
            except Exception as exc:  # noqa: BLE001 - errors stay local to one identity
                logger.exception("Pass #%s for %s crashed", pass_number, identity)
                self._record_failure(identity, f"unexpected error: {exc}")
            finally:
                with self._lock:
                    state.active -= 1
                    self._release_call(identity, state)
                    if state.late_units:
                        rerun = True

            with self._lock:
                if (rerun or state.pending) and not self._stop_event.is_set():
                    continue
                state.phase = ControllerPhase.IDLE
                state.thread = None
                if self._states.get(identity) is state and identity not in self.store and not state.busy:
                    self._states.pop(identity, None)
                self._changed.notify_all()
                logger.debug("Pass #%s for %s finished, identity idle", pass_number, identity)
                return

    # ------------------------------------------------------------------ #
    # Reconciliation pass
    # ------------------------------------------------------------------ #

    def _run_pass(self, identity: ResourceIdentity, state: _IdentityState) -> bool:
        """Run one pass; return ``True`` when a fresh pass must follow."""
        with self._lock:
            late, state.late_units = state.late_units, []

        entry = self.store.read(identity)
        if entry is None:
            for unit_id, _template in late:
                logger.warning("Deleting late unit %s of %s: identity no longer in the store", unit_id, identity)
                self._delete_with_retry(identity, unit_id, state)
            if not late:
                logger.debug("Identity %s unknown to the store, nothing to do", identity)
            return False

        status = entry.observed if entry.observed is not None else ObservedStatus()
        if late:
            for unit_id, template in late:
                if status.unit(unit_id) is None:
                    logger.warning("Recording late unit %s of %s", unit_id, identity)
                    status = status.with_unit_added(unit_id, template)
            self._write_status(identity, status)

        actions = reconcile(entry.desired, status)
        if not actions:
            self._finish(identity, state, entry, status)
            return False

        logger.info(
            "Reconciling %s generation=%s: %s",
            identity,
            entry.generation,
            ", ".join(action.kind.value for action in actions),
        )
        for index, action in enumerate(actions):
            try:
                self._check_generation(identity, entry.generation)
                status = self._apply(identity, state, entry.generation, action, status)
            except ConflictingUpdate as conflict:
                logger.info("%s; aborting after %s/%s actions", conflict, index, len(actions))
                return True
            except _UnitVanished:
                return True
            except _ActionFailed as failure:
                status = status.mark_degraded(str(failure))
                self._write_status(identity, status)
                logger.error("Resource %s degraded: %s", identity, failure)
                return False

        latest = self.store.read(identity)
        if latest is None:
            return False
        if latest.generation != entry.generation:
            return True
        if reconcile(latest.desired, status):
            return True
        self._finish(identity, state, latest, status)
        return False

    def _check_generation(self, identity: ResourceIdentity, generation: int) -> None:
        current = self.store.read(identity)
        current_generation = current.generation if current is not None else None
        if current_generation != generation:
            raise ConflictingUpdate(identity, generation, current_generation)

    def _finish(
        self,
        identity: ResourceIdentity,
        state: _IdentityState,
        entry: StoreEntry,
        status: ObservedStatus,
    ) -> None:
        if entry.desired is None and status.count == 0:
            with self._lock:
                busy = state.busy
            if busy:
                # a late Create may still hand back a unit; its completion re-enqueues
                logger.debug("Keeping %s until its outstanding executor call returns", identity)
                return
            if self.store.delete(identity, expected_generation=entry.generation):
                logger.info("Resource %s torn down and removed", identity)
            return
        converged = status.mark_converged(entry.generation)
        previous = entry.observed
        if (
            previous is None
            or previous.degraded
            or previous.observed_generation != entry.generation
            or previous.units != status.units
        ):
            self._write_status(identity, converged)
        if previous is None or previous.observed_generation != entry.generation or previous.degraded:
            logger.info("Resource %s converged replicas=%s generation=%s", identity, status.count, entry.generation)

    def _write_status(self, identity: ResourceIdentity, status: ObservedStatus) -> None:
        try:
            self.store.put_observed(identity, status)
        except NotFound:
            logger.warning("Dropping status for %s: identity no longer in the store", identity)
        with self._lock:
            self._changed.notify_all()

    def _record_failure(self, identity: ResourceIdentity, message: str) -> None:
        entry = self.store.read(identity)
        if entry is None:
            return
        status = entry.observed if entry.observed is not None else ObservedStatus()
        self._write_status(identity, status.mark_degraded(message))

    # ------------------------------------------------------------------ #
    # Actions
    # ------------------------------------------------------------------ #

    def _apply(
        self,
        identity: ResourceIdentity,
        state: _IdentityState,
        generation: int,
        action: ReconcileAction,
        status: ObservedStatus,
    ) -> ObservedStatus:
        if isinstance(action, CreateAction):
            unit = UnitSpec(owner=identity, template=action.template, sequence=status.next_sequence)
            unit_id = self._call_with_retry(
                identity,
                state,
                generation,
                action,
                lambda: self.executor.create(unit),
                template=action.template,
            )
            status = status.with_unit_added(unit_id, action.template)
            logger.debug("Created unit %s for %s", unit_id, identity)
        elif isinstance(action, DeleteAction):
            self._delete_with_retry(identity, action.unit_id, state)
            status = status.with_unit_removed(action.unit_id)
            logger.debug("Deleted unit %s of %s", action.unit_id, identity)
        elif isinstance(action, UpdateAction):
            try:
                self._call_with_retry(
                    identity,
                    state,
                    generation,
                    action,
                    lambda: self.executor.update(action.unit_id, action.template),
                )
            except UnitNotFound:
                logger.warning("Unit %s of %s vanished during update, re-planning", action.unit_id, identity)
                self._write_status(identity, status.with_unit_removed(action.unit_id))
                raise _UnitVanished(action.unit_id)
            status = status.with_unit_updated(action.unit_id, action.template)
            logger.debug("Updated unit %s of %s to %s", action.unit_id, identity, action.template.reference)
        else:  # pragma: no cover - the reconciler only emits the three kinds
            raise TypeError(f"Unknown action {action!r}")

        self._write_status(identity, status)
        return status

    def _state_for(self, identity: ResourceIdentity) -> _IdentityState:
        with self._lock:
            return self._states.setdefault(identity, _IdentityState())

    def _wait_call(self, call: _Call) -> bool:
        wait_futures([call.future], timeout=self.action_timeout)
        return call.future.done()

    def _submit(
        self,
        identity: ResourceIdentity,
        state: _IdentityState,
        token: object,
        fn: Callable[[], Any],
        template: Optional[UnitTemplate],
    ) -> _Call:
        if self._stop_event.is_set():
            raise _Stopped()
        call = _Call(token, template)
        call.future.set_running_or_notify_cancel()

        def _run() -> None:
            try:
                result = fn()
            except BaseException as exc:  # noqa: BLE001 - handed to the waiting pass
                call.future.set_exception(exc)
            else:
                call.future.set_result(result)

        call.future.add_done_callback(lambda _future: self._on_call_done(identity, state, call))
        with self._lock:
            state.call = call
        threading.Thread(target=_run, name=f"action-{identity.key}", daemon=True).start()
        return call

    def _invoke(
        self,
        identity: ResourceIdentity,
        state: _IdentityState,
        token: object,
        fn: Callable[[], Any],
        template: Optional[UnitTemplate] = None,
    ) -> Any:
        """
        Run ``fn`` on the executor with at most one call in flight per identity.

        ``token`` names the logical action: a retry with the same token after a
        timeout waits on the call already running instead of starting another.
        """
        with self._lock:
            call = state.call
        if call is None or call.token is not token:
            if call is not None:
                if not self._wait_call(call):
                    raise ExecutorTransient(f"previous executor call for {identity} is still running")
                with self._lock:
                    if state.call is call:
                        state.call = None
                        self._adopt(state, call)
            call = self._submit(identity, state, token, fn, template)
        if not self._wait_call(call):
            # the call keeps running; the next attempt waits on it again
            raise ExecutorTransient(f"executor call timed out after {self.action_timeout:.2f}s")
        with self._lock:
            if state.call is call:
                state.call = None
        return call.future.result()

    def _release_call(self, identity: ResourceIdentity, state: _IdentityState) -> None:
        """Detach the call a finished pass left behind; the caller holds ``self._lock``."""
        call = state.call
        if call is None:
            return
        if not call.future.done():
            call.abandoned = True
            logger.warning("Executor call for %s still running after its pass ended", identity)
            return
        state.call = None
        self._adopt(state, call)

    @staticmethod
    def _adopt(state: _IdentityState, call: _Call) -> None:
        """Queue the unit a finished Create returned for the next pass."""
        if call.template is not None and call.future.exception() is None:
            state.late_units.append((call.future.result(), call.template))

    def _on_call_done(self, identity: ResourceIdentity, state: _IdentityState, call: _Call) -> None:
        with self._lock:
            if not call.abandoned or state.call is not call:
                return
            state.call = None
            self._adopt(state, call)
        logger.info("Abandoned executor call for %s returned, scheduling a pass", identity)
        self.enqueue(identity)

    def _call_with_retry(
        self,
        identity: ResourceIdentity,
        state: _IdentityState,
        generation: int,
        action: ReconcileAction,
        fn: Callable[[], Any],
        *,
        template: Optional[UnitTemplate] = None,
    ) -> Any:
        token = object()
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._invoke(identity, state, token, fn, template)
            except (UnitNotFound, _Stopped, ConflictingUpdate):
                raise
            except ExecutorPermanent as exc:
                raise _ActionFailed(action, exc, attempt) from exc
            except Exception as exc:  # noqa: BLE001 - unknown executor errors count as transient
                if not isinstance(exc, ExecutorError):
                    logger.warning("Executor raised %s, treating as transient", type(exc).__name__)
                if attempt >= self.backoff.max_attempts:
                    raise _ActionFailed(action, exc, attempt) from exc
                delay = self.backoff.delay(attempt)
                logger.warning(
                    "%s for %s failed (attempt %s/%s): %s; retrying in %.2fs",
                    action.kind.value,
                    identity,
                    attempt,
                    self.backoff.max_attempts,
                    exc,
                    delay,
                )
                if self._stop_event.wait(delay):
                    raise _Stopped()
                self._check_generation(identity, generation)

    def _delete_with_retry(self, identity: ResourceIdentity, unit_id: str, state: Optional[_IdentityState] = None) -> None:
        state = state or self._state_for(identity)
        token = object()
        attempt = 0
        while True:
            attempt += 1
            try:
                self._invoke(identity, state, token, lambda: self.executor.delete(unit_id))
                return
            except UnitNotFound:
                logger.debug("Unit %s of %s already gone", unit_id, identity)
                return
            except _Stopped:
                raise
            except Exception as exc:  # noqa: BLE001 - deletes are retried until they succeed
                delay = self.backoff.delay(attempt, for_delete=True)
                logger.warning(
                    "delete of unit %s for %s failed (attempt %s): %s; retrying in %.2fs",
                    unit_id,
                    identity,
                    attempt,
                    exc,
                    delay,
                )
                if self._stop_event.wait(delay):
                    raise _Stopped()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def phase(self, identity: IdentityLike) -> ControllerPhase:
        identity = ResourceIdentity.parse(identity)
        with self._lock:
            state = self._states.get(identity)
            return state.phase if state is not None else ControllerPhase.IDLE

    def active_passes(self, identity: IdentityLike) -> int:
        identity = ResourceIdentity.parse(identity)
        with self._lock:
            state = self._states.get(identity)
            return state.active if state is not None else 0

    def pass_count(self, identity: IdentityLike) -> int:
        identity = ResourceIdentity.parse(identity)
        with self._lock:
            state = self._states.get(identity)
            return state.passes if state is not None else 0

    def _all_idle(self, identity: Optional[ResourceIdentity]) -> bool:
        if identity is not None:
            state = self._states.get(identity)
            return state is None or state.phase is ControllerPhase.IDLE
        return all(state.phase is ControllerPhase.IDLE for state in self._states.values())

    def wait_idle(self, identity: Optional[IdentityLike] = None, timeout: Optional[float] = None) -> bool:
        """Block until ``identity`` (or every identity) is idle."""
        key = ResourceIdentity.parse(identity) if identity is not None else None
        with self._changed:
            return self._changed.wait_for(lambda: self._all_idle(key), timeout)

    def wait_for(self, predicate: Callable[[], bool], timeout: Optional[float] = None, *, poll: float = 0.05) -> bool:
        """
        Block until ``predicate()`` holds.

        The predicate is re-checked whenever a status is written or a pass
        ends, and at least every ``poll`` seconds.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if predicate():
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            with self._changed:
                self._changed.wait(poll if remaining is None else min(poll, remaining))


__all__ = ["ControllerLoop"]
