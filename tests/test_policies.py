"""Tests for buildstudio.policies."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from buildstudio.core.errors import PolicyValidationError
from buildstudio.policies import DEFAULT_POLICY, load_policy


def test_missing_file_returns_defaults(tmp_path: Path) -> None:
    policy = load_policy(str(tmp_path / "nope.toml"))

    assert list(policy.allowed_paths) == DEFAULT_POLICY["allowed_paths"]
    assert list(policy.blocked_commands) == DEFAULT_POLICY["blocked_commands"]


def test_security_table_overrides_defaults(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text(
        '[security]\nallowed_paths = ["./src", "./assets"]\nmax_build_time_seconds = 120\n'
    )

    policy = load_policy(str(path))

    assert policy.allowed_paths == ("./src", "./assets")
    assert policy.max_build_time_seconds == 120
    # Untouched keys keep their defaults
    assert policy.blocked_commands == tuple(DEFAULT_POLICY["blocked_commands"])


def test_top_level_keys_accepted(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text("enable_sandbox = false\n")

    assert load_policy(str(path)).enable_sandbox is False


def test_zero_timeout_means_unlimited(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text("[security]\nmax_build_time_seconds = 0\n")

    assert load_policy(str(path)).max_build_time_seconds is None


def test_invalid_values_raise(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text('[security]\nblocked_commands = "rm"\n')

    with pytest.raises(PolicyValidationError):
        load_policy(str(path))


def test_malformed_toml_raises(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text("[security\n")

    with pytest.raises(tomllib.TOMLDecodeError):
        load_policy(str(path))


def test_default_policy_not_mutated(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text("[security]\nmax_build_time_seconds = 0\n")
    load_policy(str(path))

    assert DEFAULT_POLICY["max_build_time_seconds"] == 3600
