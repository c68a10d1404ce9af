"""
High-level, user-friendly façade for ControlMesh.

This package exposes convenience wrappers that streamline the common
deployment flows: deploy, scale, roll out, delete.
"""

from .client import SimpleController, SimpleDeploymentSpec  # noqa: F401

__all__ = ["SimpleController", "SimpleDeploymentSpec"]
