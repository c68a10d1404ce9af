"""Helper utilities for high-level demos and scripts."""

from .render import describe_status, pretty_print_statuses  # noqa: F401
from .logging import configure_demo_logging, demote_ray_logging  # noqa: F401

__all__ = [
    "configure_demo_logging",
    "demote_ray_logging",
    "describe_status",
    "pretty_print_statuses",
]
