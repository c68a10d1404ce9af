"""
Retry policy definitions and presets.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple, TypedDict


class RetryParameters(TypedDict):
    """A dictionary defining backoff parameters."""
    max_attempts: int
    base_delay: float
    multiplier: float
    max_delay: float
    delete_max_delay: float


class RetryProfile(str, Enum):
    """
    Semantic levels for how hard the controller retries failed actions.

    Using ``str`` as a mixin keeps the enum comparable to plain strings read
    from YAML and makes it JSON-serialisable.
    """

    AGGRESSIVE = "aggressive"
    STANDARD = "standard"
    PATIENT = "patient"


# Semantic levels translated into concrete backoff parameters.
RETRY_PROFILE_LEVELS: Dict[RetryProfile, RetryParameters] = {
    RetryProfile.AGGRESSIVE: {
        "max_attempts": 8,
        "base_delay": 0.05,
        "multiplier": 2.0,
        "max_delay": 2.0,
        "delete_max_delay": 2.0,
    },
    RetryProfile.STANDARD: {
        "max_attempts": 5,
        "base_delay": 0.1,
        "multiplier": 2.0,
        "max_delay": 5.0,
        "delete_max_delay": 10.0,
    },
    RetryProfile.PATIENT: {
        "max_attempts": 10,
        "base_delay": 0.5,
        "multiplier": 2.0,
        "max_delay": 30.0,
        "delete_max_delay": 60.0,
    },
}


RETRY_PROFILE_ALIASES: Dict[str, str] = {
    "fast": RetryProfile.AGGRESSIVE.value,
    "eager": RetryProfile.AGGRESSIVE.value,
    "quick": RetryProfile.AGGRESSIVE.value,
    "test": RetryProfile.AGGRESSIVE.value,
    "default": RetryProfile.STANDARD.value,
    "normal": RetryProfile.STANDARD.value,
    "slow": RetryProfile.PATIENT.value,
    "conservative": RetryProfile.PATIENT.value,
    "background": RetryProfile.PATIENT.value,
}


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff used by the controller loop.

    ``delay(attempt)`` returns ``base_delay * multiplier ** (attempt - 1)``
    capped at ``max_delay`` (``delete_max_delay`` for deletions, which are
    retried forever).
    """

    max_attempts: int = 5
    base_delay: float = 0.1
    multiplier: float = 2.0
    max_delay: float = 5.0
    delete_max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0 or self.delete_max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")

    def delay(self, attempt: int, *, for_delete: bool = False) -> float:
        if attempt < 1:
            return 0.0
        cap = self.delete_max_delay if for_delete else self.max_delay
        # exponent capped so huge attempt counts on deletes cannot overflow
        exponent = min(attempt - 1, 64)
        return min(self.base_delay * (self.multiplier ** exponent), cap)

    def with_overrides(self, **overrides) -> "BackoffPolicy":
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)

    @classmethod
    def from_profile(cls, profile: RetryProfile) -> "BackoffPolicy":
        return cls(**RETRY_PROFILE_LEVELS[profile])


def resolve_retry_profile(
    value: str | RetryProfile | None,
) -> Tuple[RetryProfile | None, str | None]:
    """
    Resolve user input (enum, string, environment indirection) to a profile.

    Supports the following forms:
        - Enum members (:class:`RetryProfile`)
        - String equivalents, case-insensitive (``"aggressive"``, ``"standard"``, ``"patient"``)
        - Semantic aliases (``"fast"``, ``"background"``, etc.)
        - Environment indirection: ``"env:CONTROLMESH_RETRY_PROFILE"``

    Returns:
        A tuple of ``(profile, hint)`` where ``hint`` describes the resolution source.
        If resolution fails, returns ``(None, error_hint)``.
    """
    if value is None:
        return None, None

    if isinstance(value, RetryProfile):
        return value, f"enum:{value.name}"

    if not isinstance(value, str):
        return None, None

    raw = value.strip()
    if not raw:
        return None, None

    if raw.lower().startswith("env:"):
        env_key = raw[4:].strip()
        if not env_key:
            return None, "environment variable name is empty"
        env_val = os.getenv(env_key)
        if env_val is None:
            return None, f"environment variable {env_key} is not set"
        raw = env_val.strip()
        if not raw:
            return None, f"environment variable {env_key} is empty"
        hint_prefix: Optional[str] = f'env:{env_key}="{env_val}"'
    else:
        hint_prefix = None

    alias = RETRY_PROFILE_ALIASES.get(raw.lower(), raw.lower())
    try:
        profile = RetryProfile(alias)
    except ValueError:
        return None, hint_prefix or f'value="{raw}"'

    return profile, hint_prefix or f'value="{raw}"'


def normalize_retry_profile(value: str | RetryProfile) -> RetryProfile | None:
    """
    Convert user input into :class:`RetryProfile`.

    Returns ``None`` if the input is invalid.
    """
    profile, _ = resolve_retry_profile(value)
    return profile
