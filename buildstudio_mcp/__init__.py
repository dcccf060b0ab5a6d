"""
Model Context Protocol server for Build Studio.

Exposes sandboxed builds, the sandbox primitives and local build node
management as MCP tools.
"""

__version__ = "0.4.0"

from .config import StudioConfig
from .metrics import StudioMetricsCollector
from .server import MCPServer, MCPToolResult, create_mcp_server

__all__ = [
    "MCPServer",
    "MCPToolResult",
    "StudioConfig",
    "StudioMetricsCollector",
    "create_mcp_server",
]
