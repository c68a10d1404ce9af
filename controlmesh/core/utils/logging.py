"""Logging utilities for ControlMesh runtime components."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union


_HANDLER_NAME = "_controlmesh_stream_handler"
_LEVEL_ENV_VAR = "CONTROLMESH_LOG_LEVEL"

# Reconciliation passes run on one thread per identity; the thread name
# carries the identity, so it is part of the default format.
RUNTIME_FORMAT = "[%(levelname)s] [%(threadName)s] %(name)s: %(message)s"


def resolve_log_level(level: Union[int, str, None] = None, *, default: int = logging.INFO) -> int:
    """Resolve an int / level name, falling back to ``$CONTROLMESH_LOG_LEVEL``."""
    if level is None:
        level = os.environ.get(_LEVEL_ENV_VAR)
    if level is None or level == "":
        return default
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else default


def configure_runtime_logging(
    level: Union[int, str, None] = None,
    formatter: Optional[logging.Formatter] = None,
) -> None:
    """Attach a single stdout handler to the ``controlmesh`` logger tree."""
    resolved = resolve_log_level(level)
    package_logger = logging.getLogger("controlmesh")
    if formatter is None:
        formatter = logging.Formatter(RUNTIME_FORMAT)

    existing = next((h for h in package_logger.handlers if getattr(h, _HANDLER_NAME, False)), None)
    if existing is None:
        existing = logging.StreamHandler(sys.stdout)
        setattr(existing, _HANDLER_NAME, True)
        package_logger.addHandler(existing)
    existing.setFormatter(formatter)
    existing.setLevel(resolved)

    if package_logger.level == logging.NOTSET or package_logger.level > resolved:
        package_logger.setLevel(resolved)

