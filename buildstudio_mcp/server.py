"""
MCP Server for Build Studio.

This module implements a Model Context Protocol (MCP) server that exposes
sandboxed builds, the sandbox primitives and local build node management
to MCP clients.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from pydantic import BaseModel
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from buildstudio.build import BuildEngine, CollectingObserver
from buildstudio.capabilities import detect_capabilities, get_system_info
from buildstudio.core.factory import create_backend_table
from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import NodeConfig, OutputStream
from buildstudio.discovery import discover
from buildstudio.nodes import NodeRegistry
from buildstudio.security import cleanup_sandbox, create_sandbox, find_blocked_token

from .config import StudioConfig
from .metrics import StudioMetricsCollector


class MCPToolResult(BaseModel):
    """Result from an MCP tool execution."""

    content: str
    structured_content: dict[str, Any] | None = None
    execution_time_ms: float | None = None
    success: bool = True


class MCPServer:
    """
    MCP Server for Build Studio.

    Owns one BuildEngine and one NodeRegistry for its lifetime; both can be
    injected for tests or embedding.
    """

    def __init__(
        self,
        config: StudioConfig | None = None,
        engine: BuildEngine | None = None,
        registry: NodeRegistry | None = None,
    ):
        self.config = config or StudioConfig()
        self.logger = BuildLogger("buildstudio.mcp")
        self.metrics = StudioMetricsCollector()
        self.engine = engine or BuildEngine(
            policy=self.config.builds.security,
            toolchain_overrides=self.config.builds.toolchain_overrides,
        )
        self.registry = registry or NodeRegistry(
            backends=create_backend_table(workspace_root=self.config.nodes.workspace_root),
        )

        self.app = FastMCP(
            name=self.config.server.name,
            version=self.config.server.version,
            instructions=self.config.server.instructions,
            lifespan=lambda _mcp: self._lifespan(),
        )

        self._register_tools()

        self.logger._emit(logging.INFO, "MCP server initialized", config=self.config.model_dump(mode="json"))

    def _failure(self, tool: str, action: str, error: Exception) -> MCPToolResult:
        self.metrics.record_tool_failure(tool)
        self.logger._emit(
            logging.ERROR,
            "Tool execution failed",
            tool=tool,
            error=str(error),
            error_type=type(error).__name__,
        )
        return MCPToolResult(
            content=f"Failed to {action}: {error!s}",
            structured_content={"error": str(error), "error_type": type(error).__name__},
            success=False,
        )

    def _register_tools(self) -> None:
        """Register all MCP tools."""

        @self.app.tool(
            name="run_build",
            description=(
                "Run a build command for a project directory. The command is checked "
                "against the blocked-command list, the project's allowed paths are copied "
                "into a fresh sandbox, the command runs there with the platform's toolchain "
                "prefix, and the sandbox is removed afterwards. Returns the build output "
                "tagged by stream and the outcome (exit code, error kind, duration)."
            ),
        )
        async def run_build(command: str, cwd: str, platform: str | None = None) -> MCPToolResult:
            """Run a sandboxed build."""
            with self.metrics.time_tool_execution("run_build"):
                try:
                    observer = CollectingObserver()
                    outcome = await self.engine.run(command, cwd, platform, observer=observer)
                    self.metrics.record_build(outcome)

                    limit = self.config.builds.max_output_lines
                    lines = observer.lines[-limit:]
                    output = "\n".join(
                        line.text if line.stream is OutputStream.STDOUT else f"[stderr] {line.text}"
                        for line in lines
                    )
                    if outcome.success:
                        summary = f"Build succeeded ({outcome.toolchain}, {outcome.duration_ms:.0f} ms)"
                    else:
                        summary = f"Build failed: {outcome.error}"

                    structured = outcome.model_dump(mode="json")
                    structured["output"] = [line.model_dump(mode="json") for line in lines]
                    structured["output_truncated"] = len(observer.lines) > limit

                    return MCPToolResult(
                        content=f"{summary}\n{output}" if output else summary,
                        structured_content=structured,
                        execution_time_ms=outcome.duration_ms,
                        success=outcome.success,
                    )
                except Exception as e:
                    return self._failure("run_build", "run build", e)

        @self.app.tool(
            name="validate_command",
            description=(
                "Check whether a command would be accepted by the security policy. "
                "This is a literal substring filter, not an isolation mechanism."
            ),
        )
        async def validate_command(command: str) -> MCPToolResult:
            """Check a command against blocked tokens."""
            with self.metrics.time_tool_execution("validate_command"):
                token = find_blocked_token(command, self.engine.policy)
                allowed = token is None
                return MCPToolResult(
                    content="Command allowed" if allowed else f"Command blocked: contains '{token}'",
                    structured_content={"allowed": allowed, "blocked_token": token},
                )

        @self.app.tool(
            name="create_sandbox",
            description=(
                "Create a build sandbox under a project directory containing copies of "
                "the allowed paths. Returns the sandbox path. Remove it with cleanup_sandbox."
            ),
        )
        async def create_sandbox_tool(project_dir: str) -> MCPToolResult:
            """Create a sandbox directory."""
            with self.metrics.time_tool_execution("create_sandbox"):
                try:
                    path = await create_sandbox(project_dir, self.engine.policy, self.logger)
                    return MCPToolResult(
                        content=f"Created sandbox {path}",
                        structured_content={"sandbox_path": str(path)},
                    )
                except Exception as e:
                    return self._failure("create_sandbox", "create sandbox", e)

        @self.app.tool(
            name="cleanup_sandbox",
            description="Remove a sandbox directory created by create_sandbox. Idempotent.",
        )
        async def cleanup_sandbox_tool(sandbox_path: str) -> MCPToolResult:
            """Remove a sandbox directory."""
            with self.metrics.time_tool_execution("cleanup_sandbox"):
                try:
                    await cleanup_sandbox(sandbox_path, self.logger)
                    return MCPToolResult(
                        content=f"Removed sandbox {sandbox_path}",
                        structured_content={"sandbox_path": sandbox_path},
                    )
                except Exception as e:
                    return self._failure("cleanup_sandbox", "clean up sandbox", e)

        @self.app.tool(
            name="detect_virtualization",
            description="Probe the host for Docker, WSL, KVM, QEMU, Hyper-V, VMware, VirtualBox and macOS virtualization.",
        )
        async def detect_virtualization() -> MCPToolResult:
            """Report available virtualization technologies."""
            with self.metrics.time_tool_execution("detect_virtualization"):
                try:
                    capability = await detect_capabilities()
                    available = [tech.value for tech in capability.available()]
                    return MCPToolResult(
                        content=f"Available: {', '.join(available) or 'none'}",
                        structured_content={**capability.model_dump(), "available": available},
                    )
                except Exception as e:
                    return self._failure("detect_virtualization", "detect virtualization", e)

        @self.app.tool(
            name="get_system_info",
            description="Report host OS, architecture, memory, CPU cores and virtualization support.",
        )
        async def get_system_info_tool() -> MCPToolResult:
            """Report host information."""
            with self.metrics.time_tool_execution("get_system_info"):
                try:
                    info = await get_system_info()
                    return MCPToolResult(
                        content=f"{info.os}/{info.arch}, {info.cpu_cores} cores, {info.memory_mb} MB",
                        structured_content=info.model_dump(mode="json"),
                    )
                except Exception as e:
                    return self._failure("get_system_info", "get system info", e)

        @self.app.tool(
            name="create_node",
            description=(
                "Create a local build node. virtualization='auto' selects Docker when available. "
                "Docker nodes run platform images (ubuntu-22.04, ubuntu-20.04, debian-11, "
                "alpine-3.18, centos-8). With install_build_tools, build-essential, git, curl "
                "and wget are installed plus toolchains for the listed languages "
                "(rust, node, python, java, go)."
            ),
        )
        async def create_node(
            name: str,
            platform: str = "ubuntu-22.04",
            memory_mb: int = 2048,
            cpu_cores: int = 2,
            disk_size_gb: int = 20,
            virtualization: str = "auto",
            capabilities: list[str] | None = None,
            languages: list[str] | None = None,
            install_build_tools: bool = False,
        ) -> MCPToolResult:
            """Create a build node."""
            with self.metrics.time_tool_execution("create_node"):
                try:
                    config = NodeConfig(
                        name=name,
                        platform=platform,
                        memory_mb=memory_mb,
                        cpu_cores=cpu_cores,
                        disk_size_gb=disk_size_gb,
                        virtualization=virtualization,
                        capabilities=capabilities or [],
                        languages=languages or [],
                        install_build_tools=install_build_tools,
                    )
                    node_id = await self.registry.create(config)
                    self.metrics.record_node_operation("create")
                    node = await self.registry.get(node_id)
                    return MCPToolResult(
                        content=f"Created node {node_id} ({node.technology.value})",
                        structured_content=node.model_dump(mode="json"),
                    )
                except Exception as e:
                    return self._failure("create_node", "create node", e)

        @self.app.tool(name="list_nodes", description="List registered build nodes.")
        async def list_nodes() -> MCPToolResult:
            """List build nodes."""
            with self.metrics.time_tool_execution("list_nodes"):
                nodes = await self.registry.list()
                return MCPToolResult(
                    content=f"{len(nodes)} node(s)",
                    structured_content={"nodes": [node.model_dump(mode="json") for node in nodes]},
                )

        @self.app.tool(name="start_node", description="Start a build node.")
        async def start_node(node_id: str) -> MCPToolResult:
            """Start a build node."""
            with self.metrics.time_tool_execution("start_node"):
                try:
                    node = await self.registry.start(node_id)
                    self.metrics.record_node_operation("start")
                    return MCPToolResult(
                        content=f"Node {node_id} is {node.state.value}",
                        structured_content=node.model_dump(mode="json"),
                    )
                except Exception as e:
                    return self._failure("start_node", "start node", e)

        @self.app.tool(name="stop_node", description="Stop a build node.")
        async def stop_node(node_id: str) -> MCPToolResult:
            """Stop a build node."""
            with self.metrics.time_tool_execution("stop_node"):
                try:
                    node = await self.registry.stop(node_id)
                    self.metrics.record_node_operation("stop")
                    return MCPToolResult(
                        content=f"Node {node_id} is {node.state.value}",
                        structured_content=node.model_dump(mode="json"),
                    )
                except Exception as e:
                    return self._failure("stop_node", "stop node", e)

        @self.app.tool(
            name="remove_node",
            description="Remove a build node and tear down its container or VM.",
        )
        async def remove_node(node_id: str) -> MCPToolResult:
            """Remove a build node."""
            with self.metrics.time_tool_execution("remove_node"):
                try:
                    await self.registry.remove(node_id)
                    self.metrics.record_node_operation("remove")
                    return MCPToolResult(
                        content=f"Removed node {node_id}",
                        structured_content={"node_id": node_id},
                    )
                except Exception as e:
                    return self._failure("remove_node", "remove node", e)

        @self.app.tool(
            name="scan_nodes",
            description=(
                "Find existing build nodes on the host (build-studio-* containers and VMs). "
                "Read-only unless reconcile=true, which merges the results into the node list."
            ),
        )
        async def scan_nodes(reconcile: bool = False) -> MCPToolResult:
            """Scan backends for existing nodes."""
            with self.metrics.time_tool_execution("scan_nodes"):
                try:
                    result = await discover(self.registry.backends, self.logger)
                    structured: dict[str, Any] = result.model_dump(mode="json")
                    content = f"Found {len(result.nodes)} node(s)"
                    if reconcile:
                        report = await self.registry.reconcile(result)
                        self.metrics.record_node_operation("reconcile")
                        structured["reconcile"] = report.model_dump(mode="json")
                        content += (
                            f"; adopted {len(report.adopted)}, updated {len(report.updated)}, "
                            f"missing {len(report.missing)}"
                        )
                    return MCPToolResult(content=content, structured_content=structured)
                except Exception as e:
                    return self._failure("scan_nodes", "scan nodes", e)

        @self.app.tool(
            name="get_metrics",
            description="Get performance metrics and monitoring data for the server",
        )
        async def get_metrics() -> MCPToolResult:
            """Get server metrics."""
            with self.metrics.time_tool_execution("get_metrics"):
                summary = self.metrics.get_summary()
                summary["server"] = {
                    "version": self.config.server.version,
                    "name": self.config.server.name,
                }
                return MCPToolResult(
                    content=(
                        f"Build Studio v{self.config.server.version}: "
                        f"{summary['tool_executions']['total_count']} tool executions, "
                        f"{summary['builds']['total_count']} builds"
                    ),
                    structured_content=summary,
                )

    async def start_stdio(self) -> None:
        """Start the MCP server with stdio transport."""
        self.logger._emit(logging.INFO, "Starting MCP server with stdio transport")
        await self.app.run_stdio_async()

    async def start_http(self) -> None:
        """Start the MCP server with HTTP transport."""
        http_config = self.config.transport_http
        self.logger._emit(
            logging.INFO,
            "Starting MCP server with HTTP transport",
            host=http_config.host,
            port=http_config.port,
        )
        await self.app.run_http_async(
            host=http_config.host,
            port=http_config.port,
            path=http_config.path,
            middleware=[
                Middleware(
                    CORSMiddleware,
                    allow_origins=http_config.cors_origins,
                    allow_credentials=True,
                    allow_methods=["POST", "GET", "OPTIONS"],
                    allow_headers=["*"],
                )
            ],
        )

    @asynccontextmanager
    async def _lifespan(self) -> AsyncGenerator[None, None]:
        """FastMCP lifespan: logs final metrics when the server stops."""
        self.logger._emit(logging.DEBUG, "Starting MCP server lifespan")
        try:
            yield
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Shutdown the MCP server."""
        self.logger._emit(logging.INFO, "Shutting down MCP server")
        self.logger._emit(logging.INFO, "Final MCP metrics", metrics=self.metrics.get_summary())


def create_mcp_server(
    config: StudioConfig | None = None,
    engine: BuildEngine | None = None,
    registry: NodeRegistry | None = None,
) -> MCPServer:
    """Create and configure an MCP server instance.

    Args:
        config: Server configuration. If None, uses defaults.
        engine: Optional BuildEngine (built from config.builds if None)
        registry: Optional NodeRegistry (built-in backends if None)

    Returns:
        Configured MCPServer instance.
    """
    return MCPServer(config, engine=engine, registry=registry)
