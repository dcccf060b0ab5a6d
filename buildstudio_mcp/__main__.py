#!/usr/bin/env python3
"""
MCP Server CLI for Build Studio.

Runs the tool server over stdio (default) or HTTP.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib.metadata
import logging
import sys
from pathlib import Path

from buildstudio.core.logging import configure_structlog

from .config import StudioConfig
from .server import create_mcp_server

try:
    __version__ = importlib.metadata.version("build-studio")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="buildstudio-mcp",
        description="Build Studio MCP Server - sandboxed builds and build nodes via Model Context Protocol",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="Server configuration TOML",
    )
    parser.add_argument(
        "--transport",
        choices=("stdio", "http"),
        default="stdio",
        help="Transport to serve on (default: stdio)",
    )
    parser.add_argument("--host", default=None, help="HTTP host (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="HTTP port (overrides config)")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> StudioConfig:
    config = StudioConfig.from_file(args.config) if args.config else StudioConfig()
    updates = {}
    if args.host is not None:
        updates["host"] = args.host
    if args.port is not None:
        updates["port"] = args.port
    if updates:
        config.transport_http = config.transport_http.model_copy(update=updates)
    return config


async def async_main(config: StudioConfig, transport: str) -> None:
    """Async main entry point."""
    server = create_mcp_server(config)

    try:
        if transport == "http":
            await server.start_http()
        else:
            await server.start_stdio()
    except asyncio.CancelledError:
        print("\nShutting down MCP server...", file=sys.stderr)


def main() -> None:
    """Main CLI entry point."""
    args = parse_args()

    try:
        config = load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
        sys.exit(1)

    configure_structlog(
        level=logging.getLevelName(config.logging.level),
        use_json=config.logging.structured,
    )

    print(f"Build Studio MCP Server v{__version__}", file=sys.stderr)
    print(f"Transport: {args.transport}", file=sys.stderr)

    try:
        asyncio.run(async_main(config, args.transport))
    except KeyboardInterrupt:
        print("\nGraceful shutdown complete.", file=sys.stderr)


if __name__ == "__main__":
    main()
