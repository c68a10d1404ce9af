#!/usr/bin/env python3
"""
滚动升级演示（内存 executor）

展示：
1. 声明 3 个副本并等待收敛
2. 扩容到 5 个副本
3. 以 surge 方式升级镜像
4. 缩容时最老的副本先被删除
5. 删除 deployment，副本按创建逆序清理
"""

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from controlmesh.simple import SimpleController, SimpleDeploymentSpec
from controlmesh.simple.utils import configure_demo_logging, pretty_print_statuses


def main():
    logger = configure_demo_logging()
    simple = SimpleController("memory", wait_timeout=10.0)

    try:
        print("=== 滚动升级演示 ===\n")

        print("1. 部署 web (nginx:1.25 x3)")
        simple.deploy(SimpleDeploymentSpec(name="web", image="nginx", tag="1.25", replicas=3))
        simple.wait("web")
        pretty_print_statuses(simple.list()["statuses"], "当前状态:")

        print("2. 扩容到 5 个副本")
        simple.scale("web", 5)
        simple.wait("web")
        pretty_print_statuses(simple.list()["statuses"], "扩容后:")

        print("3. 升级到 nginx:1.26 (max_surge=1)")
        simple.rollout("web", tag="1.26")
        result = simple.wait("web")
        if not result["success"]:
            logger.error("升级失败: %s", result["error"])
            return
        pretty_print_statuses(simple.list()["statuses"], "升级后:")

        print("4. 缩容到 2 个副本（最老的先删除）")
        simple.scale("web", 2)
        simple.wait("web")
        pretty_print_statuses(simple.list()["statuses"], "缩容后:")

        print("5. 删除 web")
        simple.delete("web", wait=True)
        pretty_print_statuses(simple.list()["statuses"], "删除后:")
    finally:
        simple.shutdown()


if __name__ == "__main__":
    main()
