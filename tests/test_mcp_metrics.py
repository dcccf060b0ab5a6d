"""Tests for tool server metrics collection."""

from __future__ import annotations

import pytest

from buildstudio.core.models import BuildErrorKind, BuildOutcome
from buildstudio_mcp.metrics import MAX_SAMPLES, StudioMetrics, StudioMetricsCollector


def outcome(success: bool, kind: BuildErrorKind | None = None, cleanup_error: str | None = None) -> BuildOutcome:
    return BuildOutcome(
        success=success,
        command="make",
        error_kind=kind,
        cleanup_error=cleanup_error,
        duration_ms=2000.0,
    )


class TestStudioMetrics:
    def test_empty_summary(self) -> None:
        summary = StudioMetrics().get_summary()

        assert summary["tool_executions"]["total_count"] == 0
        assert summary["tool_executions"]["error_rate"] == 0.0
        assert summary["builds"]["average_time_seconds"] == 0.0
        assert summary["tool_percentiles"] == {}

    def test_build_outcomes(self) -> None:
        metrics = StudioMetrics()
        metrics.record_build(outcome(True, cleanup_error="busy"))
        metrics.record_build(outcome(False, BuildErrorKind.TIMEOUT))
        metrics.record_build(outcome(False, BuildErrorKind.TIMEOUT))
        metrics.record_build(outcome(False, BuildErrorKind.POLICY_VIOLATION))

        builds = metrics.get_summary()["builds"]
        assert builds["total_count"] == 4
        assert builds["success_count"] == 1
        assert builds["failures_by_kind"] == {"timeout": 2, "policy_violation": 1}
        assert builds["cleanup_error_count"] == 1
        assert builds["average_time_seconds"] == pytest.approx(2.0)

    def test_percentiles(self) -> None:
        metrics = StudioMetrics()
        for duration in (0.1, 0.2, 0.3, 0.4):
            metrics.record_tool_execution("run_build", duration, success=True)

        stats = metrics.get_tool_execution_percentiles()["run_build"]
        assert stats["count"] == 4
        assert stats["min"] == 0.1
        assert stats["max"] == 0.4
        assert stats["p50"] == 0.3

    def test_samples_are_bounded(self) -> None:
        metrics = StudioMetrics()
        for _ in range(MAX_SAMPLES + 10):
            metrics.record_tool_execution("list_nodes", 0.001, success=True)

        assert len(metrics.tool_execution_times["list_nodes"]) == MAX_SAMPLES
        assert metrics.tool_execution_count == MAX_SAMPLES + 10


class TestStudioMetricsCollector:
    def test_time_tool_execution(self) -> None:
        collector = StudioMetricsCollector()

        with collector.time_tool_execution("list_nodes"):
            pass
        with pytest.raises(RuntimeError):
            with collector.time_tool_execution("start_node"):
                raise RuntimeError("boom")

        summary = collector.get_summary()["tool_executions"]
        assert summary["total_count"] == 2
        assert summary["errors_by_tool"] == {"start_node": 1}

    def test_failures_and_nodes(self) -> None:
        collector = StudioMetricsCollector()
        collector.record_tool_failure("create_node")
        collector.record_node_operation("create")
        collector.record_node_operation("create")

        summary = collector.get_summary()
        assert summary["tool_executions"]["errors_by_tool"] == {"create_node": 1}
        assert summary["nodes"]["operations"] == {"create": 2}

        collector.reset()
        assert collector.get_summary()["nodes"]["operations"] == {}
