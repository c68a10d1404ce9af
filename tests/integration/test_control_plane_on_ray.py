"""End-to-end reconciliation against Ray actors."""

from __future__ import annotations

import pytest
import ray

from controlmesh.config.policy import BackoffPolicy
from controlmesh.core.config import ControllerConfig
from controlmesh.core.controllers import ControlPlane
from controlmesh.core.entities import DesiredSpec, UnitTemplate
from controlmesh.core.executors.ray_executor import RayActorExecutor


@pytest.fixture
def ray_plane(ray_runtime):
    config = ControllerConfig(
        executor="ray",
        action_timeout=60.0,
        backoff=BackoffPolicy(max_attempts=3, base_delay=0.05, max_delay=0.5, delete_max_delay=0.5),
    )
    plane = ControlPlane(RayActorExecutor(auto_init=False), config=config)
    try:
        yield plane
    finally:
        plane.shutdown()


def _live_units(plane: ControlPlane, identity: str):
    status = plane.status(identity)
    return [plane.executor.describe(unit.unit_id) for unit in status.observed.units]


def test_deployment_lifecycle_on_ray(ray_plane):
    """Ray actor 作为副本：部署、扩容、滚动升级、删除"""
    v1 = UnitTemplate(image="nginx", tag="1.25")
    ray_plane.apply("web", DesiredSpec(2, v1))
    ray_plane.wait_until_converged("web", timeout=120)
    assert len(ray_plane.executor.unit_ids()) == 2

    ray_plane.apply("web", DesiredSpec(3, v1))
    ray_plane.wait_until_converged("web", timeout=120)
    assert len(_live_units(ray_plane, "web")) == 3

    v2 = UnitTemplate(image="nginx", tag="1.26")
    ray_plane.apply("web", DesiredSpec(3, v2, max_surge=0, max_unavailable=1))
    ray_plane.wait_until_converged("web", timeout=120)
    units = _live_units(ray_plane, "web")
    assert {unit["template"]["tag"] for unit in units} == {"1.26"}
    assert all(unit["revision"] == 2 for unit in units)

    ray_plane.delete("web")
    assert ray_plane.wait_until_gone("web", timeout=120)
    assert ray_plane.executor.unit_ids() == []


def test_killed_actor_is_replaced_during_update(ray_plane):
    v1 = UnitTemplate(image="redis", tag="7.0")
    spec = DesiredSpec(2, v1, max_surge=0, max_unavailable=1)
    ray_plane.apply("cache", spec)
    status = ray_plane.wait_until_converged("cache", timeout=120)
    victim = status.observed.units[0].unit_id
    ray.kill(ray.get_actor(RayActorExecutor.actor_name(victim)), no_restart=True)

    ray_plane.apply("cache", spec.with_template(UnitTemplate(image="redis", tag="7.2")))
    status = ray_plane.wait_until_converged("cache", timeout=120)
    assert victim not in {unit.unit_id for unit in status.observed.units}
    assert status.observed.count == 2
