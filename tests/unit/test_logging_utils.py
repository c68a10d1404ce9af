"""Unit tests for runtime logging helpers."""

from __future__ import annotations

import logging

import pytest

from controlmesh.core.utils import configure_runtime_logging, resolve_log_level


@pytest.fixture
def package_logger():
    logger = logging.getLogger("controlmesh")
    handlers, level = list(logger.handlers), logger.level
    try:
        yield logger
    finally:
        logger.handlers[:] = handlers
        logger.setLevel(level)


def test_resolve_log_level(monkeypatch):
    monkeypatch.delenv("CONTROLMESH_LOG_LEVEL", raising=False)
    assert resolve_log_level() == logging.INFO
    assert resolve_log_level("debug") == logging.DEBUG
    assert resolve_log_level(logging.WARNING) == logging.WARNING
    assert resolve_log_level("chatty", default=logging.ERROR) == logging.ERROR

    monkeypatch.setenv("CONTROLMESH_LOG_LEVEL", "warning")
    assert resolve_log_level() == logging.WARNING


def test_configure_runtime_logging_installs_one_handler(package_logger):
    """重复调用只保留一个 handler，并更新级别"""
    package_logger.setLevel(logging.NOTSET)
    configure_runtime_logging("INFO")
    configure_runtime_logging("DEBUG")

    marked = [h for h in package_logger.handlers if getattr(h, "_controlmesh_stream_handler", False)]
    assert len(marked) == 1
    assert marked[0].level == logging.DEBUG
    assert package_logger.level == logging.DEBUG
