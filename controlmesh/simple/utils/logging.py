"""Helper logging configuration for simple demos."""

from __future__ import annotations

import logging


DEMO_LOGGER_NAME = "ControlMeshDemo"


def configure_demo_logging(*, include_timestamp: bool = True, level: int = logging.INFO) -> logging.Logger:
    """Return the demo logger and route ``controlmesh`` records through the same handler."""
    fmt = "%(asctime)s [%(name)s] %(levelname)s %(message)s" if include_timestamp else "[%(name)s] %(levelname)s %(message)s"
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt, datefmt="%H:%M:%S"))
    for name in (DEMO_LOGGER_NAME, "controlmesh"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False
    return logging.getLogger(DEMO_LOGGER_NAME)


def demote_ray_logging(level: int = logging.ERROR) -> None:
    for name in ("ray", "ray.ray_logger", "aiogrpc"):
        logging.getLogger(name).setLevel(level)
