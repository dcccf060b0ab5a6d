"""Tests for tool server configuration and its command line."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from buildstudio_mcp.__main__ import load_config, parse_args
from buildstudio_mcp.config import HTTPTransportConfig, StudioConfig

CONFIG_TOML = """
[server]
name = "ci-studio"

[transport_http]
port = 9090
cors_origins = ["http://localhost:3000"]

[builds]
max_output_lines = 500

[builds.security]
enable_sandbox = true
allowed_paths = ["./src", "./Cargo.toml"]
blocked_commands = ["rm", "curl"]
max_build_time_seconds = 600

[builds.toolchain_overrides]
riscv = "riscv64-linux-gnu-"

[nodes]
workspace_root = "/var/lib/build-studio"

[logging]
level = "DEBUG"
"""


class TestStudioConfig:
    """Test configuration models and TOML loading."""

    def test_defaults(self) -> None:
        config = StudioConfig()

        assert config.server.name == "build-studio"
        assert config.transport_http == HTTPTransportConfig()
        assert config.transport_http.port == 8080
        assert config.builds.security.allowed_paths == ("./src", "./builds", "./packages")
        assert config.builds.max_output_lines == 2000
        assert config.nodes.workspace_root is None
        assert config.logging.level == "INFO"

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "studio.toml"
        path.write_text(CONFIG_TOML)

        config = StudioConfig.from_file(path)

        assert config.server.name == "ci-studio"
        assert config.transport_http.port == 9090
        assert config.transport_http.cors_origins == ["http://localhost:3000"]
        assert config.builds.security.blocked_commands == ("rm", "curl")
        assert config.builds.security.max_build_time_seconds == 600
        assert config.builds.toolchain_overrides == {"riscv": "riscv64-linux-gnu-"}
        assert config.nodes.workspace_root == Path("/var/lib/build-studio")
        assert config.logging.level == "DEBUG"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            StudioConfig.from_file(tmp_path / "absent.toml")

    def test_invalid_values(self) -> None:
        with pytest.raises(ValidationError):
            HTTPTransportConfig(port=70000)
        with pytest.raises(ValidationError):
            StudioConfig.model_validate({"logging": {"level": "LOUD"}})


class TestServerCommandLine:
    def test_defaults(self) -> None:
        args = parse_args([])

        assert args.transport == "stdio"
        assert args.config is None

    def test_overrides(self, tmp_path: Path) -> None:
        path = tmp_path / "studio.toml"
        path.write_text(CONFIG_TOML)

        config = load_config(parse_args(["--config", str(path), "--transport", "http", "--port", "7000"]))

        assert config.transport_http.port == 7000
        assert config.transport_http.host == "127.0.0.1"
        assert config.server.name == "ci-studio"

    def test_rejects_unknown_transport(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--transport", "carrier-pigeon"])
