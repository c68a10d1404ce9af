"""
Action executors: the seam where a real backend plugs into the control plane.
"""

from __future__ import annotations

from .base import ActionExecutor
from .memory import InMemoryExecutor
from .registry import (
    available_executors,
    create_executor,
    register_executor,
    unregister_executor,
)

__all__ = [
    "ActionExecutor",
    "InMemoryExecutor",
    "available_executors",
    "create_executor",
    "register_executor",
    "unregister_executor",
]
