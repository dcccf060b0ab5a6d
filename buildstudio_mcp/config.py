"""
Tool server configuration.

Configuration models for the Build Studio MCP server, loadable from TOML.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

from buildstudio.core.models import SecurityPolicy


def _get_package_version() -> str:
    """Get package version from metadata."""
    try:
        import importlib.metadata

        return importlib.metadata.version("build-studio")
    except importlib.metadata.PackageNotFoundError:
        return "0.4.0"


class ServerConfig(BaseModel):
    """Server identification and metadata."""

    name: str = "build-studio"
    version: str = Field(default_factory=_get_package_version)
    instructions: str = (
        "This server runs project builds in a scratch sandbox and manages local "
        "build nodes (Docker containers).\n\n"
        "BUILDS:\n"
        "- run_build(command, cwd, platform) copies the project's allowed paths "
        "(default ./src, ./builds, ./packages) into a sandbox, runs the command "
        "there and returns its output. The sandbox is deleted afterwards, so "
        "artifacts must be written outside it by the build itself.\n"
        "- platform selects a toolchain prefix: windows -> x86_64-w64-mingw32-, "
        "android -> NDK bin dir, wasm/webassembly -> wasm-pack, emscripten -> emcc.\n"
        "- Commands containing blocked tokens (rm, rmdir, mv, cp, chmod, chown) "
        "are rejected. Use validate_command to check first.\n\n"
        "NODES:\n"
        "- detect_virtualization shows which technologies the host supports.\n"
        "- create_node provisions a node (virtualization='auto' picks Docker).\n"
        "- start_node / stop_node / remove_node / list_nodes manage them.\n"
        "- scan_nodes lists existing build-studio containers; pass reconcile=true "
        "to merge them into the node list."
    )


class HTTPTransportConfig(BaseModel):
    """Configuration for HTTP transport."""

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    path: str = "/mcp"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class BuildsConfig(BaseModel):
    """Build execution settings."""

    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    toolchain_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="platform -> command prefix, takes precedence over built-in toolchains",
    )
    max_output_lines: int = Field(
        default=2000,
        ge=1,
        description="Output lines returned by run_build (most recent kept)",
    )


class NodesConfig(BaseModel):
    """Local build node settings."""

    workspace_root: Path | None = Field(
        default=None,
        description="Host directory for per-node workspace mounts (system temp dir if unset)",
    )


class LoggingConfig(BaseModel):
    """Configuration for server logging."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    structured: bool = True


class StudioConfig(BaseModel):
    """Main tool server configuration."""

    server: ServerConfig = ServerConfig()
    transport_http: HTTPTransportConfig = HTTPTransportConfig()
    builds: BuildsConfig = BuildsConfig()
    nodes: NodesConfig = NodesConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def from_file(cls, path: Path | str) -> StudioConfig:
        """Load configuration from a TOML file."""
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        return cls.model_validate(data)
