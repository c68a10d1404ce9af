"""Unit tests for the ControlPlane façade driven by the watch feed."""

from __future__ import annotations

import pytest

from controlmesh.core.controllers import ControlPlane
from controlmesh.core.entities import ControllerPhase, DesiredSpec, UnitTemplate
from controlmesh.core.errors import ExecutorTransient, NotFound

V1 = UnitTemplate(image="nginx", tag="1.25")
V2 = UnitTemplate(image="nginx", tag="1.26")


def test_apply_converges_through_watch(plane, scripted_executor):
    """apply 之后无需手动触发，watch 事件驱动收敛"""
    generation = plane.apply("web", DesiredSpec(3, V1))
    status = plane.wait_until_converged("web", timeout=5)

    assert status.generation == generation
    assert status.phase is ControllerPhase.IDLE
    assert status.ready
    assert status.observed.count == 3
    assert len(scripted_executor.units()) == 3


def test_scale_up_creates_only_missing(plane, scripted_executor):
    plane.apply("web", DesiredSpec(3, V1))
    plane.wait_until_converged("web", timeout=5)
    plane.apply("web", DesiredSpec(5, V1))
    plane.wait_until_converged("web", timeout=5)
    assert scripted_executor.calls["create"] == 5


def test_rollout_then_delete(plane, scripted_executor):
    plane.apply("prod/api", DesiredSpec(2, V1))
    plane.wait_until_converged("prod/api", timeout=5)
    plane.apply("prod/api", DesiredSpec(2, V2))
    status = plane.wait_until_converged("prod/api", timeout=5)
    assert all(unit.template == V2 for unit in status.observed.units)

    assert plane.delete("prod/api") is True
    assert plane.wait_until_gone("prod/api", timeout=5)
    assert scripted_executor.units() == {}
    with pytest.raises(NotFound):
        plane.status("prod/api")


def test_delete_unknown_identity_is_converged(plane):
    assert plane.delete("nothing-here") is False
    assert plane.list_statuses() == []


def test_status_of_unknown_identity(plane):
    with pytest.raises(NotFound):
        plane.status("ghost")
    with pytest.raises(NotFound):
        plane.wait_until_converged("ghost", timeout=0.1)


def test_degraded_resource_surfaces_error(plane, scripted_executor):
    scripted_executor.always_fail("create", ExecutorTransient("registry offline"))
    plane.apply("web", DesiredSpec(1, V1))
    status = plane.wait_until_degraded("web", timeout=5)
    assert "registry offline" in status.last_error

    with pytest.raises(TimeoutError):
        plane.wait_until_converged("web", timeout=0.3)

    scripted_executor.clear_failures()
    plane.reconcile_now("web")
    status = plane.wait_until_converged("web", timeout=5)
    assert not status.degraded


def test_list_statuses_reports_every_resource(plane):
    plane.apply("a", DesiredSpec(1, V1))
    plane.apply("b", DesiredSpec(2, V1))
    plane.wait_until_converged("a", timeout=5)
    plane.wait_until_converged("b", timeout=5)
    assert [status.identity.name for status in plane.list_statuses()] == ["a", "b"]


def test_restart_picks_up_existing_desired_state(scripted_executor, controller_config):
    """重启后的 watcher 先看到快照，已有期望状态继续收敛"""
    plane = ControlPlane(scripted_executor, config=controller_config, autostart=False)
    try:
        plane.apply("web", DesiredSpec(2, V1))
        assert scripted_executor.calls["create"] == 0
        plane.start()
        plane.wait_until_converged("web", timeout=5)
        assert scripted_executor.calls["create"] == 2
    finally:
        plane.shutdown()


def test_shutdown_is_idempotent_and_final(scripted_executor, controller_config):
    with ControlPlane(scripted_executor, config=controller_config) as plane:
        plane.apply("web", DesiredSpec(1, V1))
        plane.wait_until_converged("web", timeout=5)
    plane.shutdown()
    assert scripted_executor.units() == {}
    with pytest.raises(RuntimeError):
        plane.start()


def test_default_executor_comes_from_config(controller_config):
    plane = ControlPlane(config=controller_config)
    try:
        assert plane.executor.name == "memory"
    finally:
        plane.shutdown()
