"""Utility helpers for ControlMesh."""

from .logging import configure_runtime_logging, resolve_log_level  # noqa: F401

__all__ = [
    "configure_runtime_logging",
    "resolve_log_level",
]
