"""Unit tests for YAML-backed controller configuration."""

from __future__ import annotations

import textwrap

import pytest

from controlmesh.config.policy import BackoffPolicy, RetryProfile, normalize_retry_profile, resolve_retry_profile
from controlmesh.core.config import get_controller_config, load_controller_config, reset_controller_config
from controlmesh.core.executors import InMemoryExecutor, available_executors, create_executor
from controlmesh.core.executors import registry


@pytest.fixture(autouse=True)
def isolated_registry(monkeypatch):
    """配置会修改全局注册表，测试之间相互隔离"""
    monkeypatch.setattr(registry, "_EXECUTOR_REGISTRY", dict(registry._EXECUTOR_REGISTRY))


def _write(path, body: str):
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


class LabelledExecutor(InMemoryExecutor):
    name = "labelled"


def test_bundled_defaults():
    config = get_controller_config()
    assert config.executor == "memory"
    assert config.action_timeout == pytest.approx(30.0)
    assert config.retry_profile is RetryProfile.STANDARD
    assert config.backoff == BackoffPolicy.from_profile(RetryProfile.STANDARD)
    assert config.rollout.max_surge == 1
    assert config.rollout.max_unavailable == 0
    assert config.executors == []


def test_config_is_cached_until_reset(tmp_path, monkeypatch):
    first = get_controller_config()
    assert get_controller_config() is first

    cfg = _write(tmp_path / "custom.yaml", """
        controller:
          action_timeout: 3
    """)
    monkeypatch.setenv("CONTROLMESH_CONFIG", str(cfg))
    assert get_controller_config() is first
    reset_controller_config()
    assert get_controller_config().action_timeout == pytest.approx(3.0)


def test_env_var_takes_precedence_over_cwd(tmp_path, monkeypatch):
    _write(tmp_path / "controlmesh.yaml", """
        controller:
          action_timeout: 7
    """)
    assert load_controller_config().action_timeout == pytest.approx(7.0)

    env_file = _write(tmp_path / "env.yaml", """
        controller:
          action_timeout: 11
    """)
    monkeypatch.setenv("CONTROLMESH_CONFIG", str(env_file))
    assert load_controller_config().action_timeout == pytest.approx(11.0)


def test_missing_env_file_falls_back(tmp_path, monkeypatch):
    monkeypatch.setenv("CONTROLMESH_CONFIG", str(tmp_path / "nope.yaml"))
    assert load_controller_config().executor == "memory"


def test_retry_profile_and_overrides():
    config = load_controller_config({
        "controller": {"retry": {"profile": "fast", "max_attempts": 2, "max_delay": 0.5}},
    })
    assert config.retry_profile is RetryProfile.AGGRESSIVE
    assert config.backoff.max_attempts == 2
    assert config.backoff.max_delay == pytest.approx(0.5)
    assert config.backoff.base_delay == pytest.approx(0.05)


def test_retry_profile_from_environment(monkeypatch):
    monkeypatch.setenv("CM_TEST_PROFILE", "background")
    config = load_controller_config({"controller": {"retry": {"profile": "env:CM_TEST_PROFILE"}}})
    assert config.retry_profile is RetryProfile.PATIENT

    profile, hint = resolve_retry_profile("env:CM_MISSING_PROFILE")
    assert profile is None
    assert "CM_MISSING_PROFILE" in hint


@pytest.mark.parametrize(
    "value,expected",
    [
        ("aggressive", RetryProfile.AGGRESSIVE),
        ("Standard", RetryProfile.STANDARD),
        ("slow", RetryProfile.PATIENT),
        (RetryProfile.PATIENT, RetryProfile.PATIENT),
        ("unknown", None),
        ("", None),
    ],
)
def test_normalize_retry_profile(value, expected):
    assert normalize_retry_profile(value) is expected


def test_backoff_delay_growth_and_caps():
    policy = BackoffPolicy(max_attempts=5, base_delay=0.1, multiplier=2.0, max_delay=0.3, delete_max_delay=1.0)
    assert policy.delay(1) == pytest.approx(0.1)
    assert policy.delay(2) == pytest.approx(0.2)
    assert policy.delay(3) == pytest.approx(0.3)
    assert policy.delay(5, for_delete=True) == pytest.approx(1.0)
    assert policy.delay(10_000, for_delete=True) == pytest.approx(1.0)
    with pytest.raises(ValueError):
        BackoffPolicy(max_attempts=0)


def test_import_executor_entry():
    config = load_controller_config({
        "controller": {"executor": "labelled"},
        "executors": [{"name": "labelled", "import": f"{__name__}:LabelledExecutor"}],
    })
    assert config.executor == "labelled"
    assert "labelled" in available_executors()
    assert isinstance(create_executor("labelled"), LabelledExecutor)


def test_disabled_executor_is_unregistered():
    load_controller_config({"executors": [{"name": "ray", "enabled": False}]})
    assert "ray" not in available_executors()
    assert "memory" in available_executors()


@pytest.mark.parametrize(
    "data",
    [
        {"controller": {"executor": "missing"}},
        {"controller": {"action_timeout": 0}},
        {"controller": {"action_timeout": "soon"}},
        {"controller": {"retry": {"profile": "reckless"}}},
        {"controller": {"retry": {"max_attempts": True}}},
        {"controller": ["not", "a", "mapping"]},
        {"rollout": {"max_surge": 0, "max_unavailable": 0}},
        {"executors": {"name": "memory"}},
        {"executors": ["memory"]},
        {"executors": [{"import": "controlmesh.core.executors.memory:InMemoryExecutor"}]},
        {"executors": [{"name": "odd", "import": "controlmesh.core.executors.memory.InMemoryExecutor"}]},
    ],
)
def test_invalid_configuration_is_rejected(data):
    with pytest.raises(ValueError):
        load_controller_config(data)
