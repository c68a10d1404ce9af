"""
ControlMesh 项目构建配置

声明式副本控制平面（desired state -> observed state 收敛引擎）
"""

from setuptools import setup, find_packages
import os

# 读取 README 文件
def read_readme():
    if not os.path.exists("README.md"):
        return ""
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()

# 读取版本信息
def read_version():
    with open("controlmesh/__init__.py", "r", encoding="utf-8") as fh:
        for line in fh:
            if line.startswith("__version__"):
                return line.split("=")[1].strip().strip('"').strip("'")
    return "0.1.0"

# 读取依赖文件
def read_requirements():
    requirements = []
    if os.path.exists("requirements.txt"):
        with open("requirements.txt", "r", encoding="utf-8") as fh:
            requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]
    return requirements

# 读取开发依赖
def read_dev_requirements():
    dev_requirements = []
    if os.path.exists("requirements-dev.txt"):
        with open("requirements-dev.txt", "r", encoding="utf-8") as fh:
            dev_requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]
    return dev_requirements

setup(
    name="controlmesh-core",
    version=read_version(),
    author="Arsenal Team",
    author_email="liugaosheng@kanzhun.com",
    description="声明式收敛控制平面 - ControlMesh",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=("tests", "tests.*", "examples", "examples.*")),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Distributed Computing",
    ],
    python_requires=">=3.9",
    install_requires=read_requirements(),
    extras_require={
        "dev": read_dev_requirements(),
        "test": read_dev_requirements(),
    },
    include_package_data=True,
    package_data={
        "controlmesh": [
            "config/*.yaml",
        ],
    },
    zip_safe=False,
    keywords=[
        "reconciliation",
        "controller",
        "ray",
        "orchestration",
        "replicas",
        "rolling-update",
    ],
)
