"""Unit tests for the SimpleController façade."""

from __future__ import annotations

import pytest

from controlmesh.core.executors import InMemoryExecutor
from controlmesh.simple import SimpleController, SimpleDeploymentSpec
from controlmesh.simple.utils import describe_status


@pytest.fixture
def simple(plane):
    return SimpleController(plane=plane, wait_timeout=5.0)


def test_deploy_scale_rollout_delete(simple, scripted_executor):
    """部署 -> 扩容 -> 升级镜像 -> 删除 的完整流程"""
    result = simple.deploy(SimpleDeploymentSpec(name="web", image="nginx", tag="1.25", replicas=2))
    assert result == {"success": True, "id": "default/web", "generation": 1}
    assert simple.wait("web")["success"]

    assert simple.scale("web", 4)["generation"] == 2
    status = simple.wait("web")["status"]
    assert status["observed"]["count"] == 4

    assert simple.rollout("web", tag="1.26")["success"]
    status = simple.wait("web")["status"]
    assert {unit["template"]["tag"] for unit in status["observed"]["units"]} == {"1.26"}
    assert status["desired"]["template"]["image"] == "nginx"
    assert "ready" in describe_status(status)

    assert simple.delete("web", wait=True) == {"success": True, "id": "default/web"}
    assert scripted_executor.units() == {}
    assert simple.list() == {"success": True, "statuses": []}


def test_rollout_defaults_come_from_config(simple):
    spec = SimpleDeploymentSpec(name="api", image="redis", replicas=1).to_desired_spec()
    assert (spec.max_surge, spec.max_unavailable) == (1, 0)
    spec = SimpleDeploymentSpec(name="api", image="redis", max_surge=0, max_unavailable=1).to_desired_spec()
    assert (spec.max_surge, spec.max_unavailable) == (0, 1)


def test_invalid_requests_return_errors(simple):
    assert not simple.deploy(SimpleDeploymentSpec(name="bad", image="x", replicas=-1))["success"]
    assert not simple.scale("missing", 2)["success"]
    assert not simple.rollout("missing", tag="2")["success"]
    assert not simple.describe("missing")["success"]
    assert not simple.wait("missing")["success"]

    simple.deploy(SimpleDeploymentSpec(name="web", image="nginx"))
    assert not simple.scale("web", -3)["success"]


def test_delete_unknown_is_already_absent(simple):
    result = simple.delete("ghost")
    assert result["success"] and result["already_absent"]


def test_degraded_deployment_reports_failure(simple):
    simple.deploy(SimpleDeploymentSpec(name="web", image="", replicas=1))
    simple.plane.wait_until_degraded("web", timeout=5)
    result = simple.wait("web", timeout=0.5)
    assert not result["success"]
    assert "degraded=True" in result["error"]
    described = simple.describe("web")["status"]
    assert described["degraded"]
    assert "DEGRADED" in describe_status(described)


def test_default_plane_uses_memory_executor():
    simple = SimpleController()
    try:
        assert isinstance(simple.plane.executor, InMemoryExecutor)
        simple.deploy(SimpleDeploymentSpec(name="solo", image="busybox", namespace="jobs"))
        assert simple.wait("solo", namespace="jobs")["success"]
    finally:
        simple.shutdown()
