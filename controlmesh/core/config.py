"""Configuration helpers for ControlMesh.

This module loads optional YAML configuration files to customize runtime
behaviour such as the action executor and retry policy.  Configuration
precedence:

1. Environment variable ``CONTROLMESH_CONFIG`` pointing to a YAML file.
2. ``controlmesh.yaml`` in the current working directory.
3. Built-in defaults bundled with the package (``config/default.yaml``).
"""

from __future__ import annotations

import importlib
import inspect
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

from controlmesh.config.policy import BackoffPolicy, RetryProfile, resolve_retry_profile
from controlmesh.core.executors.base import ActionExecutor
from controlmesh.core.executors.registry import (
    available_executors as _available_executors,
    register_executor,
    unregister_executor,
)

__all__ = [
    "ControllerConfig",
    "ExecutorConfigEntry",
    "RolloutDefaults",
    "get_controller_config",
    "load_controller_config",
    "reset_controller_config",
]

logger = logging.getLogger(__name__)

_ENV_VAR = "CONTROLMESH_CONFIG"
_CWD_FILE = "controlmesh.yaml"


@dataclass
class ExecutorConfigEntry:
    name: str
    import_path: Optional[str] = None
    enabled: bool = True


@dataclass
class RolloutDefaults:
    max_surge: int = 1
    max_unavailable: int = 0


@dataclass
class ControllerConfig:
    executor: str = "memory"
    action_timeout: float = 30.0
    retry_profile: RetryProfile = RetryProfile.STANDARD
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    rollout: RolloutDefaults = field(default_factory=RolloutDefaults)
    executors: List[ExecutorConfigEntry] = field(default_factory=list)


_controller_config: Optional[ControllerConfig] = None


def _resolve_config_path() -> Optional[Path]:
    env_path = os.environ.get(_ENV_VAR)
    if env_path:
        candidate = Path(env_path).expanduser()
        if candidate.is_file():
            return candidate
        logger.warning("%s points to a missing file: %s", _ENV_VAR, candidate)

    cwd_file = Path.cwd() / _CWD_FILE
    if cwd_file.is_file():
        return cwd_file
    return None


def _load_yaml_dict() -> Dict[str, object]:
    path = _resolve_config_path()
    if path is not None:
        with path.open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh) or {}

    # Fallback to bundled default configuration
    from importlib import resources

    with resources.files("controlmesh.config").joinpath("default.yaml").open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _coerce_executor_entry(raw: Dict[str, object]) -> ExecutorConfigEntry:
    name = str(raw.get("name", "")).strip()
    if not name:
        raise ValueError("Executor entry requires a non-empty 'name'")
    import_path = raw.get("import")
    if import_path is not None:
        import_path = str(import_path).strip()
    enabled = bool(raw.get("enabled", True))
    return ExecutorConfigEntry(name=name, import_path=import_path, enabled=enabled)


def _float(node: Dict[str, object], key: str, default: Optional[float]) -> Optional[float]:
    value = node.get(key, default)
    if value is None:
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{key}' must be a number, got {value!r}") from exc


def _int(node: Dict[str, object], key: str, default: Optional[int]) -> Optional[int]:
    value = node.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{key}' must be an integer, got {value!r}") from exc


def _mapping(data: Dict[str, object], key: str) -> Dict[str, object]:
    node = data.get(key) or {}
    if not isinstance(node, dict):
        raise ValueError(f"'{key}' section must be a mapping")
    return node


def _build_controller_config(data: Dict[str, object]) -> ControllerConfig:
    controller = _mapping(data, "controller")
    retry = _mapping(controller, "retry")
    rollout = _mapping(data, "rollout")

    raw_profile = retry.get("profile", RetryProfile.STANDARD.value)
    profile, hint = resolve_retry_profile(raw_profile)  # type: ignore[arg-type]
    if profile is None:
        raise ValueError(f"Unknown retry profile ({hint or raw_profile!r})")

    backoff = BackoffPolicy.from_profile(profile).with_overrides(
        max_attempts=_int(retry, "max_attempts", None),
        base_delay=_float(retry, "base_delay", None),
        multiplier=_float(retry, "multiplier", None),
        max_delay=_float(retry, "max_delay", None),
        delete_max_delay=_float(retry, "delete_max_delay", None),
    )

    action_timeout = _float(controller, "action_timeout", 30.0)
    if action_timeout is None or action_timeout <= 0:
        raise ValueError("'action_timeout' must be positive")

    max_surge = _int(rollout, "max_surge", 1) or 0
    max_unavailable = _int(rollout, "max_unavailable", 0) or 0
    if max_surge < 0 or max_unavailable < 0:
        raise ValueError("rollout budgets must be non-negative")
    if max_surge == 0 and max_unavailable == 0:
        raise ValueError("rollout.max_surge and rollout.max_unavailable cannot both be 0")

    raw_entries = data.get("executors", [])
    entries: List[ExecutorConfigEntry] = []
    if isinstance(raw_entries, list):
        for item in raw_entries:
            if not isinstance(item, dict):
                raise ValueError("Each executor definition must be a mapping")
            entries.append(_coerce_executor_entry(item))
    elif raw_entries:
        raise ValueError("'executors' must be a list of mappings")

    return ControllerConfig(
        executor=str(controller.get("executor", "memory")).strip().lower() or "memory",
        action_timeout=action_timeout,
        retry_profile=profile,
        backoff=backoff,
        rollout=RolloutDefaults(
            max_surge=max_surge,
            max_unavailable=max_unavailable,
        ),
        executors=entries,
    )


def _coerce_executor_factory(obj: object) -> Callable[[], ActionExecutor]:
    if inspect.isclass(obj) and issubclass(obj, ActionExecutor):
        return obj  # type: ignore[return-value]

    if callable(obj):
        def _call() -> ActionExecutor:
            instance = obj()
            if isinstance(instance, ActionExecutor):
                return instance
            raise TypeError("Executor factory must return an ActionExecutor")

        return _call

    raise TypeError("Unsupported executor factory type")


def _apply_controller_config(config: ControllerConfig) -> None:
    for entry in config.executors:
        if not entry.enabled:
            unregister_executor(entry.name)
            continue
        if entry.import_path:
            module_name, sep, attr = entry.import_path.partition(":")
            if not sep:
                raise ValueError(
                    f"Invalid import path '{entry.import_path}'. Expected format 'module:attr'."
                )
            module = importlib.import_module(module_name)
            obj = getattr(module, attr)
            register_executor(entry.name, _coerce_executor_factory(obj), replace=True)

    # Validate default executor is available
    if config.executor not in _available_executors():
        raise ValueError(
            f"Default executor '{config.executor}' is not registered. Available: {', '.join(_available_executors())}"
        )


def load_controller_config(data: Optional[Dict[str, object]] = None) -> ControllerConfig:
    """Build (and apply) a configuration from ``data`` or the resolved YAML file."""
    raw = _load_yaml_dict() if data is None else data
    config = _build_controller_config(raw)
    _apply_controller_config(config)
    return config


def get_controller_config() -> ControllerConfig:
    global _controller_config
    if _controller_config is None:
        _controller_config = load_controller_config()
    return _controller_config


def reset_controller_config() -> None:
    """Reset cached controller configuration (intended for tests)."""
    global _controller_config
    _controller_config = None
