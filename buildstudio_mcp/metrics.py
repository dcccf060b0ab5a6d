"""
Tool server metrics.

Collects tool execution times and error rates, build outcomes by error
kind and node lifecycle operations for monitoring the Build Studio server.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import BuildOutcome

MAX_SAMPLES = 1000


@dataclass
class StudioMetrics:
    """Metrics collected while the tool server runs."""

    # Tool execution metrics
    tool_execution_count: int = 0
    tool_execution_total_time: float = 0.0
    tool_execution_times: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))
    tool_error_count: int = 0
    tool_errors: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Build metrics
    build_count: int = 0
    build_success_count: int = 0
    build_failures: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    build_total_time: float = 0.0
    build_cleanup_error_count: int = 0

    # Node metrics
    node_operations: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_tool_execution(self, tool_name: str, duration: float, success: bool) -> None:
        self.tool_execution_count += 1
        self.tool_execution_total_time += duration
        self.tool_execution_times[tool_name].append(duration)

        if not success:
            self.tool_error_count += 1
            self.tool_errors[tool_name] += 1

        if len(self.tool_execution_times[tool_name]) > MAX_SAMPLES:
            self.tool_execution_times[tool_name] = self.tool_execution_times[tool_name][-MAX_SAMPLES:]

    def record_build(self, outcome: BuildOutcome) -> None:
        self.build_count += 1
        self.build_total_time += outcome.duration_ms / 1000
        if outcome.success:
            self.build_success_count += 1
        elif outcome.error_kind is not None:
            self.build_failures[outcome.error_kind.value] += 1
        if outcome.cleanup_error is not None:
            self.build_cleanup_error_count += 1

    def record_node_operation(self, verb: str) -> None:
        self.node_operations[verb] += 1

    def get_tool_execution_percentiles(self) -> dict[str, dict[str, float]]:
        """Execution time percentiles per tool, in seconds."""
        percentiles: dict[str, dict[str, float]] = {}
        for tool_name, times in self.tool_execution_times.items():
            if not times:
                continue
            sorted_times = sorted(times)
            n = len(sorted_times)
            percentiles[tool_name] = {
                "p50": sorted_times[n // 2],
                "p95": sorted_times[min(int(n * 0.95), n - 1)],
                "min": sorted_times[0],
                "max": sorted_times[-1],
                "avg": sum(sorted_times) / n,
                "count": n,
            }
        return percentiles

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of all metrics."""
        avg_tool_time = (
            self.tool_execution_total_time / self.tool_execution_count
            if self.tool_execution_count > 0
            else 0.0
        )
        avg_build_time = self.build_total_time / self.build_count if self.build_count > 0 else 0.0

        return {
            "tool_executions": {
                "total_count": self.tool_execution_count,
                "error_count": self.tool_error_count,
                "error_rate": self.tool_error_count / self.tool_execution_count if self.tool_execution_count > 0 else 0.0,
                "average_time_ms": avg_tool_time * 1000,
                "errors_by_tool": dict(self.tool_errors),
            },
            "builds": {
                "total_count": self.build_count,
                "success_count": self.build_success_count,
                "failures_by_kind": dict(self.build_failures),
                "cleanup_error_count": self.build_cleanup_error_count,
                "average_time_seconds": avg_build_time,
            },
            "nodes": {
                "operations": dict(self.node_operations),
            },
            "tool_percentiles": self.get_tool_execution_percentiles(),
        }


class StudioMetricsCollector:
    """Collector for tool server metrics with timing utilities."""

    def __init__(self) -> None:
        self.metrics = StudioMetrics()
        self.logger = BuildLogger("buildstudio-metrics")

    @contextmanager
    def time_tool_execution(self, tool_name: str) -> Generator[None, None, None]:
        """Context manager to time tool execution."""
        start_time = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            duration = time.perf_counter() - start_time
            self.metrics.record_tool_execution(tool_name, duration, success)
            self.logger._emit(
                logging.INFO,
                "mcp.tool.executed",
                tool_name=tool_name,
                duration_ms=duration * 1000,
                success=success,
            )

    def record_tool_failure(self, tool_name: str) -> None:
        """Count a tool call that returned an error result without raising."""
        self.metrics.tool_error_count += 1
        self.metrics.tool_errors[tool_name] += 1

    def record_build(self, outcome: BuildOutcome) -> None:
        self.metrics.record_build(outcome)

    def record_node_operation(self, verb: str) -> None:
        self.metrics.record_node_operation(verb)
        self.logger._emit(logging.DEBUG, "mcp.node.operation", verb=verb)

    def get_summary(self) -> dict[str, Any]:
        return self.metrics.get_summary()

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        self.metrics = StudioMetrics()
        self.logger._emit(logging.INFO, "mcp.metrics.reset")
