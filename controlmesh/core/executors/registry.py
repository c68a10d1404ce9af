"""
Executor registry.

Backends are chosen by name when the control plane is composed; the
controller loop only ever sees the :class:`ActionExecutor` interface.
"""

from __future__ import annotations

from typing import Callable, Type, Union

from controlmesh.core.executors.base import ActionExecutor
from controlmesh.core.executors.memory import InMemoryExecutor

ExecutorFactory = Callable[[], ActionExecutor]
ExecutorSpec = Union[str, ActionExecutor, Type[ActionExecutor], ExecutorFactory]


_EXECUTOR_REGISTRY: dict[str, ExecutorFactory] = {}


def register_executor(name: str, factory: ExecutorFactory, *, replace: bool = False) -> None:
    """
    Register an executor factory under ``name``.

    Args:
        name: Executor name, normalised to lower case.
        factory: Zero-argument callable returning an :class:`ActionExecutor`.
        replace: Whether an existing registration may be overwritten.
    """
    key = name.strip().lower()
    if not key:
        raise ValueError("Executor name must be a non-empty string.")
    if key in _EXECUTOR_REGISTRY and not replace:
        raise ValueError(f"Executor '{key}' already registered.")
    _EXECUTOR_REGISTRY[key] = factory


def unregister_executor(name: str) -> None:
    """Remove an executor registration; unknown names are ignored."""
    _EXECUTOR_REGISTRY.pop(name.strip().lower(), None)


def available_executors() -> tuple[str, ...]:
    return tuple(sorted(_EXECUTOR_REGISTRY))


def _coerce_executor_instance(candidate: object) -> ActionExecutor:
    if isinstance(candidate, ActionExecutor):
        return candidate
    raise TypeError("Factory did not return an ActionExecutor instance.")


def create_executor(executor: ExecutorSpec) -> ActionExecutor:
    """
    Build or validate an executor.

    Accepts a registered name, an :class:`ActionExecutor` instance (returned
    as is), a subclass, or a zero-argument factory.
    """
    if isinstance(executor, ActionExecutor):
        return executor

    if isinstance(executor, str):
        key = executor.strip().lower()
        try:
            factory = _EXECUTOR_REGISTRY[key]
        except KeyError as exc:
            raise ValueError(
                f"Unknown executor '{executor}'. "
                f"Available executors: {', '.join(sorted(_EXECUTOR_REGISTRY)) or '<none>'}"
            ) from exc
        return _coerce_executor_instance(factory())

    if isinstance(executor, type) and issubclass(executor, ActionExecutor):
        return executor()

    if callable(executor):
        return _coerce_executor_instance(executor())

    raise TypeError(
        "Executor must be provided as a name, ActionExecutor subclass, "
        "callable factory, or ActionExecutor instance."
    )


def _ray_executor() -> ActionExecutor:
    from controlmesh.core.executors.ray_executor import RayActorExecutor

    return RayActorExecutor()


register_executor("memory", InMemoryExecutor)
register_executor("ray", _ray_executor)


__all__ = [
    "ExecutorFactory",
    "ExecutorSpec",
    "available_executors",
    "create_executor",
    "register_executor",
    "unregister_executor",
]
