"""Tests for buildstudio.core.logging.

Verifies BuildLogger event names, levels and fields for builds, security
events, node lifecycle and tolerated failures.
"""

from __future__ import annotations

import logging

import structlog

from buildstudio.core.logging import BuildLogger, configure_structlog
from buildstudio.core.models import BuildErrorKind, BuildOutcome, BuildPhase, SecurityPolicy


def test_configure_structlog_renderers() -> None:
    """Test structlog configuration with both renderers."""
    configure_structlog(use_json=True)
    assert structlog.get_logger() is not None
    configure_structlog(level=logging.DEBUG, use_json=False)
    assert structlog.get_logger() is not None
    structlog.reset_defaults()


class TestBuildEvents:
    def test_build_start_records_policy(self, build_logger: BuildLogger, log_capture) -> None:
        policy = SecurityPolicy(allowed_paths=["./src"], max_build_time_seconds=None)

        build_logger.log_build_start("run-1", "make", "/work/project", "linux", policy)

        (event,) = log_capture.named("build.start")
        assert event["level"] == "info"
        assert event["run_id"] == "run-1"
        assert event["command"] == "make"
        assert event["platform"] == "linux"
        assert event["policy"]["allowed_paths"] == ["./src"]
        assert event["policy"]["max_build_time_seconds"] is None

    def test_build_phase_is_debug(self, build_logger: BuildLogger, log_capture) -> None:
        build_logger.log_build_phase("run-1", BuildPhase.RUNNING)

        (event,) = log_capture.named("build.phase")
        assert event["level"] == "debug"
        assert event["phase"] == "running"

    def test_successful_build_complete(self, build_logger: BuildLogger, log_capture) -> None:
        outcome = BuildOutcome(success=True, command="make", full_command="make", exit_code=0, stdout_lines=3)

        build_logger.log_build_complete("run-1", outcome)

        (event,) = log_capture.named("build.complete")
        assert event["level"] == "info"
        assert event["success"] is True
        assert event["stdout_lines"] == 3
        assert "error" not in event

    def test_failed_build_complete_is_warning(self, build_logger: BuildLogger, log_capture) -> None:
        outcome = BuildOutcome(
            success=False,
            command="make",
            full_command="make",
            exit_code=2,
            error_kind=BuildErrorKind.PROCESS_EXIT,
            error="Command exited with status: 2",
            cleanup_error="permission denied",
        )

        build_logger.log_build_complete("run-1", outcome)

        (event,) = log_capture.named("build.complete")
        assert event["level"] == "warning"
        assert event["error_kind"] == "process_exit"
        assert event["error"] == "Command exited with status: 2"
        assert event["cleanup_error"] == "permission denied"

    def test_long_paths_are_truncated(self, build_logger: BuildLogger, log_capture) -> None:
        build_logger.log_sandbox_created("/" + "a" * 300, ["src"])

        (event,) = log_capture.named("sandbox.created")
        assert len(event["sandbox_path"]) == 140
        assert event["sandbox_path"].endswith("...[truncated]")


class TestOtherEvents:
    def test_security_event(self, build_logger: BuildLogger, log_capture) -> None:
        build_logger.log_security_event("command_blocked", {"token": "rm", "command": "rm -rf /"})

        (event,) = log_capture.named("security.command_blocked")
        assert event["level"] == "warning"
        assert event["token"] == "rm"

    def test_node_event(self, build_logger: BuildLogger, log_capture) -> None:
        build_logger.log_node_event("started", "n1", technology="docker")

        (event,) = log_capture.named("node.started")
        assert event["node_id"] == "n1"
        assert event["technology"] == "docker"

    def test_best_effort_failure(self, build_logger: BuildLogger, log_capture) -> None:
        build_logger.log_best_effort_failure("node.tools.language", "exit status 100", language="java")

        (event,) = log_capture.named("node.tools.language.failed")
        assert event["level"] == "warning"
        assert event["error"] == "exit status 100"
        assert event["language"] == "java"
        assert event["log_message"] == "buildstudio.node.tools.language.failed"


def test_stdlib_logger_backend(caplog) -> None:
    """BuildLogger also accepts a standard library logger."""
    std_logger = logging.getLogger("buildstudio-test-logger")
    caplog.set_level(logging.INFO, logger="buildstudio-test-logger")

    BuildLogger(std_logger).log_node_event("removed", "n1")

    assert [record.getMessage() for record in caplog.records] == ["buildstudio.node.removed"]
    assert caplog.records[0].node_id == "n1"
