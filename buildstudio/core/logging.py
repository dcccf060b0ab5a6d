"""Structured logging for builds, sandboxes and node lifecycle events.

Provides the BuildLogger class, which uses structlog for structured event
emission (build.start, build.complete, security events, node lifecycle).
Configures structlog with console rendering by default but allows custom
configuration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from buildstudio.core.models import BuildOutcome, BuildPhase, SecurityPolicy


def configure_structlog(level: int = logging.INFO, use_json: bool = False) -> None:
    """Configure structlog for Build Studio logging.

    Args:
        level: Minimum log level (default: logging.INFO)
        use_json: If True, use JSON renderer; otherwise use console renderer
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class BuildLogger:
    """Wrapper for structured logging of build and node events.

    Accepts either structlog or standard logging.Logger instances and normalizes
    emission so callers do not need to care which backend is in use.
    """

    _PATH_TRUNCATION_SUFFIX = "...[truncated]"
    _MAX_PATH_LENGTH = 140

    def __init__(self, logger: Any = None) -> None:
        """Initialize BuildLogger with an optional custom logger.

        Args:
            logger: Optional structlog BoundLogger, logging.Logger, or string name.
                    If None, a structlog logger named 'buildstudio' is created.
        """
        if logger is None:
            self._logger = structlog.get_logger("buildstudio")
        elif isinstance(logger, str):
            self._logger = structlog.get_logger(logger)
        else:
            self._logger = logger

    @property
    def logger(self) -> Any:
        """Expose the underlying logger instance (structlog or logging.Logger)."""
        return self._logger

    def _emit(self, level: int, message: str, **fields: Any) -> None:
        """Emit a log record regardless of logger backend."""
        extra = dict(fields)
        extra.setdefault("log_message", message)
        extra.setdefault("event", message.split(".", 1)[-1] if "." in message else message)
        extra.setdefault("event_type", extra.get("event"))

        if isinstance(self._logger, logging.Logger):
            self._logger.log(level, message, extra=extra)
            return

        method_name = logging.getLevelName(level).lower()
        log_method = getattr(self._logger, method_name, None)
        if not callable(log_method):
            log_method = self._logger.info

        log_kwargs = dict(extra)
        event_value = log_kwargs.pop("event", None)
        log_method(event_value if event_value is not None else message, **log_kwargs)

    def _truncate_path(self, path: str) -> str:
        if len(path) <= self._MAX_PATH_LENGTH:
            return path
        keep = self._MAX_PATH_LENGTH - len(self._PATH_TRUNCATION_SUFFIX)
        return f"{path[:keep]}{self._PATH_TRUNCATION_SUFFIX}"

    def log_build_start(
        self, run_id: str, command: str, cwd: str, platform: str | None, policy: SecurityPolicy
    ) -> None:
        """Log the start of a build with the policy it runs under.

        Args:
            run_id: Identifier of this build invocation
            command: Build command as submitted (without toolchain prefix)
            cwd: Project directory
            platform: Target platform identifier, if any
            policy: SecurityPolicy applied to the build
        """
        policy_snapshot = {
            "enable_sandbox": policy.enable_sandbox,
            "allowed_paths": list(policy.allowed_paths),
            "blocked_commands": list(policy.blocked_commands),
            "network_isolation": policy.network_isolation,
            "max_build_time_seconds": policy.max_build_time_seconds,
        }
        self._emit(
            logging.INFO,
            "buildstudio.build.start",
            event="build.start",
            run_id=run_id,
            command=command,
            cwd=self._truncate_path(cwd),
            platform=platform,
            policy=policy_snapshot,
        )

    def log_build_phase(self, run_id: str, phase: BuildPhase) -> None:
        self._emit(
            logging.DEBUG,
            "buildstudio.build.phase",
            event="build.phase",
            run_id=run_id,
            phase=phase.value,
        )

    def log_build_complete(self, run_id: str, outcome: BuildOutcome) -> None:
        """Log the terminal outcome of a build.

        Emits at INFO for successful builds and WARNING for failed ones.
        """
        log_kwargs: dict[str, Any] = {
            "event": "build.complete",
            "run_id": run_id,
            "success": outcome.success,
            "exit_code": outcome.exit_code,
            "error_kind": outcome.error_kind.value if outcome.error_kind else None,
            "toolchain": outcome.toolchain,
            "duration_ms": outcome.duration_ms,
            "stdout_lines": outcome.stdout_lines,
            "stderr_lines": outcome.stderr_lines,
            "timed_out": outcome.timed_out,
        }
        if outcome.error is not None:
            log_kwargs["error"] = outcome.error
        if outcome.cleanup_error is not None:
            log_kwargs["cleanup_error"] = outcome.cleanup_error

        level = logging.INFO if outcome.success else logging.WARNING
        self._emit(level, "buildstudio.build.complete", **log_kwargs)

    def log_security_event(self, event_type: str, details: dict[str, Any]) -> None:
        """Log a security-relevant event at WARNING level.

        Args:
            event_type: Type of security event (e.g., "command_blocked",
                       "path_rejected", "build_timeout")
            details: Dict containing event-specific details
        """
        event = f"security.{event_type}"
        self._emit(logging.WARNING, f"buildstudio.{event}", event=event, **details)

    def log_sandbox_created(self, sandbox_path: str, copied: list[str]) -> None:
        self._emit(
            logging.INFO,
            "buildstudio.sandbox.created",
            event="sandbox.created",
            sandbox_path=self._truncate_path(sandbox_path),
            copied=copied,
        )

    def log_sandbox_cleaned(self, sandbox_path: str, existed: bool) -> None:
        self._emit(
            logging.INFO,
            "buildstudio.sandbox.cleaned",
            event="sandbox.cleaned",
            sandbox_path=self._truncate_path(sandbox_path),
            existed=existed,
        )

    def log_node_event(self, verb: str, node_id: str, **details: Any) -> None:
        """Log a node lifecycle event (created, started, stopped, removed).

        Args:
            verb: Lifecycle verb in past tense
            node_id: Registry identifier of the node
            **details: Technology, state and other event-specific fields
        """
        event = f"node.{verb}"
        self._emit(logging.INFO, f"buildstudio.{event}", event=event, node_id=node_id, **details)

    def log_backend_command(self, args: list[str], returncode: int | None, **details: Any) -> None:
        self._emit(
            logging.DEBUG,
            "buildstudio.backend.command",
            event="backend.command",
            args=args,
            returncode=returncode,
            **details,
        )

    def log_best_effort_failure(self, step: str, error: str, **details: Any) -> None:
        """Log a step whose failure was deliberately tolerated.

        Used for language tool installation, per-backend discovery and
        capability probes. These steps never abort their caller, but the
        failure is always recorded here.
        """
        self._emit(
            logging.WARNING,
            f"buildstudio.{step}.failed",
            event=f"{step}.failed",
            error=error,
            **details,
        )

    def log_discovery_complete(self, node_count: int, scanned: list[str], failed: list[str]) -> None:
        self._emit(
            logging.INFO,
            "buildstudio.discovery.complete",
            event="discovery.complete",
            node_count=node_count,
            scanned=scanned,
            failed=failed,
        )
