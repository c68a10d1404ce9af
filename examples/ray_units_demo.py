#!/usr/bin/env python3
"""
Ray Actor 副本演示

每个副本是一个具名的 UnitActor；原地升级（max_unavailable=1）后
actor 的 instance_id 会刷新，可以直观看到滚动过程。
"""

import sys
from pathlib import Path

import ray

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from controlmesh.core.controllers import ControlPlane
from controlmesh.core.entities import DesiredSpec, UnitTemplate
from controlmesh.simple.utils import configure_demo_logging, demote_ray_logging


def print_units(plane: ControlPlane, identity: str, title: str) -> None:
    print(title)
    for unit in plane.status(identity).observed.units:
        info = plane.executor.describe(unit.unit_id)
        template = info["template"]
        print(
            f"  - {info['unit_id']} instance={info['instance_id']} "
            f"rev={info['revision']} image={template['image']}:{template['tag']}"
        )
    print()


def main():
    configure_demo_logging()
    demote_ray_logging()

    if not ray.is_initialized():
        try:
            ray.init(address="auto", ignore_reinit_error=True)
            print("✅ 连接到现有 Ray 集群")
        except Exception:
            ray.init(ignore_reinit_error=True, include_dashboard=False)
            print("📋 创建新的本地 Ray 集群")

    with ControlPlane("ray") as plane:
        spec = DesiredSpec(3, UnitTemplate(image="api", tag="v1"), max_surge=0, max_unavailable=1)
        plane.apply("prod/api", spec)
        plane.wait_until_converged("prod/api", timeout=120)
        print_units(plane, "prod/api", "v1 副本:")

        plane.apply("prod/api", spec.with_template(UnitTemplate(image="api", tag="v2")))
        plane.wait_until_converged("prod/api", timeout=120)
        print_units(plane, "prod/api", "原地升级到 v2 后:")

        plane.delete("prod/api")
        plane.wait_until_gone("prod/api", timeout=120)
        print("所有副本已清理")

    ray.shutdown()


if __name__ == "__main__":
    main()
