"""
Shared pytest fixtures.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import defaultdict, deque
from typing import Deque, Dict, Optional, Set

import pytest

from controlmesh.config.policy import BackoffPolicy
from controlmesh.core.config import ControllerConfig, reset_controller_config
from controlmesh.core.controllers import ControlPlane, ControllerLoop
from controlmesh.core.entities import UnitSpec, UnitTemplate
from controlmesh.core.executors import InMemoryExecutor
from controlmesh.core.store import StateStore

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] [%(threadName)s] %(message)s", force=True)
logging.getLogger("controlmesh").setLevel(logging.DEBUG)


class ScriptedExecutor(InMemoryExecutor):
    """
    InMemoryExecutor whose calls can be made to fail or block on demand.

    ``fail_next("create", err1, err2)`` makes the next two creates raise the
    given errors; ``always_fail("delete", err)`` keeps raising until
    ``clear_failures`` is called.  ``gate`` blocks every call while cleared.
    ``hang("delete", "stuck")`` blocks only the deletes of units owned by
    ``stuck`` until ``hang_release`` is set; ``delay("create", 0.3)`` makes
    every create take that long before it reaches the backend.
    """

    def __init__(self) -> None:
        super().__init__()
        self._script_lock = threading.Lock()
        self._queued: Dict[str, Deque[BaseException]] = defaultdict(deque)
        self._sticky: Dict[str, Optional[BaseException]] = {}
        self.calls: Dict[str, int] = defaultdict(int)
        self.gate = threading.Event()
        self.gate.set()
        self.entered = threading.Event()
        self.in_flight = 0
        self.max_in_flight = 0
        self.hang_release = threading.Event()
        self._hangs: Dict[str, Set[str]] = defaultdict(set)
        self._delays: Dict[str, float] = {}

    def fail_next(self, op: str, *errors: BaseException) -> None:
        with self._script_lock:
            self._queued[op].extend(errors)

    def always_fail(self, op: str, error: BaseException) -> None:
        with self._script_lock:
            self._sticky[op] = error

    def hang(self, op: str, owner: str) -> None:
        with self._script_lock:
            self._hangs[op].add(owner)

    def delay(self, op: str, seconds: float) -> None:
        with self._script_lock:
            self._delays[op] = seconds

    def _hangs_on(self, op: str, key: str) -> bool:
        with self._script_lock:
            return any(key == owner or key.startswith(f"{owner}-") for owner in self._hangs[op])

    def clear_failures(self) -> None:
        with self._script_lock:
            self._queued.clear()
            self._sticky.clear()

    def _enter(self, op: str, key: str) -> None:
        with self._script_lock:
            self.calls[op] += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.entered.set()
        try:
            self.gate.wait()
            if self._hangs_on(op, key):
                self.hang_release.wait()
            seconds = self._delays.get(op)
            if seconds:
                time.sleep(seconds)
            with self._script_lock:
                error = self._queued[op].popleft() if self._queued[op] else self._sticky.get(op)
            if error is not None:
                raise error
        except BaseException:
            self._leave()
            raise

    def _leave(self) -> None:
        with self._script_lock:
            self.in_flight -= 1

    def create(self, unit: UnitSpec) -> str:
        self._enter("create", unit.owner.name)
        try:
            return super().create(unit)
        finally:
            self._leave()

    def delete(self, unit_id: str) -> None:
        self._enter("delete", unit_id)
        try:
            super().delete(unit_id)
        finally:
            self._leave()

    def update(self, unit_id: str, template: UnitTemplate) -> None:
        self._enter("update", unit_id)
        try:
            super().update(unit_id, template)
        finally:
            self._leave()


FAST_BACKOFF = BackoffPolicy(max_attempts=3, base_delay=0.001, multiplier=2.0, max_delay=0.01, delete_max_delay=0.01)


@pytest.fixture(autouse=True)
def clear_config(monkeypatch, tmp_path):
    """Keep every test on the bundled defaults regardless of the working directory."""
    monkeypatch.delenv("CONTROLMESH_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    reset_controller_config()
    yield
    reset_controller_config()


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig(action_timeout=2.0, backoff=FAST_BACKOFF)


@pytest.fixture
def scripted_executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def loop(store, scripted_executor, controller_config):
    """A controller loop driven manually through ``enqueue`` (no watch thread)."""
    instance = ControllerLoop(store, scripted_executor, config=controller_config)
    try:
        yield instance
    finally:
        scripted_executor.gate.set()
        scripted_executor.hang_release.set()
        instance.stop()


@pytest.fixture
def plane(scripted_executor, controller_config):
    """A running control plane wired to the scripted in-memory executor."""
    instance = ControlPlane(scripted_executor, config=controller_config)
    try:
        yield instance
    finally:
        scripted_executor.gate.set()
        scripted_executor.hang_release.set()
        instance.shutdown()


@pytest.fixture
def ray_runtime():
    """Spin up a local Ray runtime for tests and mirror worker logs to the driver."""
    ray = pytest.importorskip("ray")
    try:
        ray.init(
            ignore_reinit_error=True,
            num_cpus=4,
            include_dashboard=False,
            logging_level=logging.INFO,
            namespace=f"controlmesh-test-{uuid.uuid4().hex[:6]}",
        )
    except PermissionError as exc:
        pytest.skip(f"Ray init requires system permissions not available in this environment: {exc}")
    except Exception as exc:  # pragma: no cover - restricted sandboxes
        if "Operation not permitted" in str(exc):
            pytest.skip(f"Ray init skipped due to restricted environment: {exc}")
        raise
    try:
        yield
    finally:
        ray.shutdown()
