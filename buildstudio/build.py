"""Build execution engine.

Runs one shell command per build under a SecurityPolicy:

    pending -> validating -> sandboxing -> running -> succeeded|failed
            -> cleaning_up -> done

A rejected command goes straight from validating to done without touching
the filesystem. A sandbox that fails to populate is removed and the build
ends without spawning a process. Every other path removes the sandbox before
the single finished notification is delivered.

Output is streamed line by line to a BuildObserver while the process runs.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
import uuid
from collections.abc import AsyncIterator, Mapping, Sequence
from pathlib import Path
from typing import Protocol

from buildstudio.core.errors import SandboxIOError
from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import (
    BuildErrorKind,
    BuildOutcome,
    BuildPhase,
    OutputLine,
    OutputStream,
    SecurityPolicy,
)
from buildstudio.security import cleanup_sandbox, create_sandbox, find_blocked_token
from buildstudio.toolchain import apply_prefix, resolve

# asyncio's default is 64 KiB; compilers can print longer lines than that.
STREAM_LIMIT = 1024 * 1024

if sys.platform == "win32":
    DEFAULT_SHELL: tuple[str, ...] = ("cmd", "/C")
else:
    DEFAULT_SHELL = ("sh", "-c")


class BuildObserver(Protocol):
    """Receives build output as it is produced and the final outcome."""

    def on_output(self, line: OutputLine) -> None: ...

    def on_finished(self, outcome: BuildOutcome) -> None: ...


class NullObserver:
    def on_output(self, line: OutputLine) -> None:
        pass

    def on_finished(self, outcome: BuildOutcome) -> None:
        pass


class CollectingObserver:
    """Keeps every output line and the outcome in memory."""

    def __init__(self) -> None:
        self.lines: list[OutputLine] = []
        self.outcome: BuildOutcome | None = None
        self.finished_calls = 0

    def on_output(self, line: OutputLine) -> None:
        self.lines.append(line)

    def on_finished(self, outcome: BuildOutcome) -> None:
        self.outcome = outcome
        self.finished_calls += 1

    def text(self, stream: OutputStream | None = None) -> list[str]:
        return [line.text for line in self.lines if stream is None or line.stream is stream]


class QueueObserver:
    """Exposes a running build as an async iterator of output lines.

    Usage:
        observer = QueueObserver()
        task = asyncio.create_task(engine.run(cmd, cwd, observer=observer))
        async for line in observer:
            print(line.text)
        outcome = observer.outcome
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[OutputLine | BuildOutcome] = asyncio.Queue()
        self.outcome: BuildOutcome | None = None

    def on_output(self, line: OutputLine) -> None:
        self._queue.put_nowait(line)

    def on_finished(self, outcome: BuildOutcome) -> None:
        self._queue.put_nowait(outcome)

    async def __aiter__(self) -> AsyncIterator[OutputLine]:
        while True:
            item = await self._queue.get()
            if isinstance(item, BuildOutcome):
                self.outcome = item
                return
            yield item


def _kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


class BuildRun:
    """State of a single build invocation.

    Not reusable: construct one per build. The engine keeps no state
    between runs, so concurrent builds never share a BuildRun.
    """

    def __init__(
        self,
        command: str,
        cwd: str | Path,
        platform: str | None,
        policy: SecurityPolicy,
        observer: BuildObserver,
        logger: BuildLogger,
        toolchain_overrides: Mapping[str, str] | None = None,
        shell: Sequence[str] = DEFAULT_SHELL,
    ) -> None:
        self.run_id = uuid.uuid4().hex
        self.command = command
        self.cwd = Path(cwd)
        self.platform = platform
        self.policy = policy
        self.observer = observer
        self.logger = logger
        self.toolchain = resolve(platform, toolchain_overrides)
        self.full_command = apply_prefix(self.toolchain, command)
        self.shell = tuple(shell)

        self.phase = BuildPhase.PENDING
        self.sandbox_path: Path | None = None
        self.line_counts = {OutputStream.STDOUT: 0, OutputStream.STDERR: 0}
        self._started = 0.0

    def _transition(self, phase: BuildPhase) -> None:
        self.phase = phase
        self.logger.log_build_phase(self.run_id, phase)

    def _deliver(self, line: OutputLine) -> None:
        self.line_counts[line.stream] += 1
        try:
            self.observer.on_output(line)
        except Exception as e:
            self.logger.log_best_effort_failure("build.observer", str(e), run_id=self.run_id)

    async def execute(self) -> BuildOutcome:
        self._started = time.perf_counter()
        self.logger.log_build_start(
            self.run_id, self.command, str(self.cwd), self.platform, self.policy
        )

        self._transition(BuildPhase.VALIDATING)
        token = find_blocked_token(self.command, self.policy)
        if token is not None:
            self.logger.log_security_event(
                "command_blocked",
                {"run_id": self.run_id, "command": self.command, "token": token},
            )
            return self._finish(
                success=False,
                error_kind=BuildErrorKind.POLICY_VIOLATION,
                error=f"Command blocked by security policy: contains '{token}'",
            )

        self._transition(BuildPhase.SANDBOXING)
        try:
            self.sandbox_path = await create_sandbox(self.cwd, self.policy, self.logger)
        except SandboxIOError as e:
            self.sandbox_path = e.sandbox_path
            cleanup_error = await self._cleanup()
            return self._finish(
                success=False,
                error_kind=BuildErrorKind.SANDBOX_IO,
                error=str(e),
                cleanup_error=cleanup_error,
            )

        try:
            self._transition(BuildPhase.RUNNING)
            exit_code, error_kind, error = await self._run_process(self.sandbox_path)
            self._transition(BuildPhase.SUCCEEDED if error_kind is None else BuildPhase.FAILED)
        finally:
            # Also reached when the caller cancels the build.
            self._transition(BuildPhase.CLEANING_UP)
            cleanup_error = await self._cleanup()

        return self._finish(
            success=error_kind is None,
            exit_code=exit_code,
            error_kind=error_kind,
            error=error,
            cleanup_error=cleanup_error,
        )

    async def _run_process(
        self, workdir: Path
    ) -> tuple[int | None, BuildErrorKind | None, str | None]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.shell,
                self.full_command,
                cwd=str(workdir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            return None, BuildErrorKind.PROCESS_SPAWN, f"Failed to execute command: {e}"

        assert proc.stdout is not None and proc.stderr is not None

        async def drain_and_wait() -> int:
            await asyncio.gather(
                self._drain(proc.stdout, OutputStream.STDOUT),
                self._drain(proc.stderr, OutputStream.STDERR),
            )
            return await proc.wait()

        timeout = self.policy.max_build_time_seconds
        try:
            exit_code = await asyncio.wait_for(drain_and_wait(), timeout=timeout)
        except TimeoutError:
            _kill_process_tree(proc)
            await proc.wait()
            self.logger.log_security_event(
                "build_timeout",
                {"run_id": self.run_id, "max_build_time_seconds": timeout},
            )
            return (
                proc.returncode,
                BuildErrorKind.TIMEOUT,
                f"Build exceeded maximum build time of {timeout:g}s",
            )
        finally:
            _kill_process_tree(proc)

        if exit_code != 0:
            return exit_code, BuildErrorKind.PROCESS_EXIT, f"Command exited with status: {exit_code}"
        return exit_code, None, None

    async def _drain(self, stream: asyncio.StreamReader, origin: OutputStream) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                # Oversized line: the reader discards it and keeps going.
                self._deliver(
                    OutputLine(stream=OutputStream.STDERR, text=f"Error reading {origin.value}: {e}")
                )
                continue
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            self._deliver(OutputLine(stream=origin, text=text))

    async def _cleanup(self) -> str | None:
        # With sandboxing disabled the build ran in the project itself.
        if self.sandbox_path is None or not self.policy.enable_sandbox:
            return None
        try:
            await cleanup_sandbox(self.sandbox_path, self.logger)
        except SandboxIOError as e:
            self._deliver(OutputLine(stream=OutputStream.STDERR, text=f"Sandbox cleanup failed: {e}"))
            self.logger._emit(
                logging.ERROR,
                "buildstudio.sandbox.cleanup_failed",
                run_id=self.run_id,
                sandbox_path=str(self.sandbox_path),
                error=str(e),
            )
            return str(e)
        return None

    def _finish(
        self,
        *,
        success: bool,
        exit_code: int | None = None,
        error_kind: BuildErrorKind | None = None,
        error: str | None = None,
        cleanup_error: str | None = None,
    ) -> BuildOutcome:
        outcome = BuildOutcome(
            success=success,
            command=self.command,
            full_command=self.full_command,
            platform=self.platform,
            toolchain=self.toolchain.kind.value,
            exit_code=exit_code,
            error_kind=error_kind,
            error=error,
            sandbox_path=str(self.sandbox_path) if self.sandbox_path is not None else None,
            cleanup_error=cleanup_error,
            stdout_lines=self.line_counts[OutputStream.STDOUT],
            stderr_lines=self.line_counts[OutputStream.STDERR],
            timed_out=error_kind is BuildErrorKind.TIMEOUT,
            duration_ms=(time.perf_counter() - self._started) * 1000,
        )
        self._transition(BuildPhase.DONE)
        self.logger.log_build_complete(self.run_id, outcome)
        try:
            self.observer.on_finished(outcome)
        except Exception as e:
            self.logger.log_best_effort_failure("build.observer", str(e), run_id=self.run_id)
        return outcome


class BuildEngine:
    """Runs build commands under a security policy.

    The engine is stateless between builds and safe to share; any number of
    builds may run concurrently, each in its own sandbox.

    Args:
        policy: Default SecurityPolicy (a fresh default policy if None)
        logger: BuildLogger for build events
        toolchain_overrides: platform -> command prefix mapping that takes
            precedence over the built-in toolchain table
        shell: Shell argv prefix; the full command is appended as the last
            argument. Defaults to ("sh", "-c") or ("cmd", "/C") on Windows.
    """

    def __init__(
        self,
        policy: SecurityPolicy | None = None,
        logger: BuildLogger | None = None,
        toolchain_overrides: Mapping[str, str] | None = None,
        shell: Sequence[str] | None = None,
    ) -> None:
        self.policy = policy or SecurityPolicy()
        self.logger = logger or BuildLogger("buildstudio.build")
        self.toolchain_overrides = dict(toolchain_overrides or {})
        self.shell = tuple(shell) if shell is not None else DEFAULT_SHELL

    async def run(
        self,
        command: str,
        cwd: str | Path,
        platform: str | None = None,
        *,
        policy: SecurityPolicy | None = None,
        observer: BuildObserver | None = None,
    ) -> BuildOutcome:
        """Run a build command and return its outcome.

        Build failures (blocked command, sandbox I/O, spawn failure, non-zero
        exit, timeout) are reported in the returned BuildOutcome, never
        raised. Use BuildOutcome.raise_for_status() to convert to exceptions.

        Args:
            command: Shell command line, before toolchain prefixing
            cwd: Project directory
            platform: Target platform used to pick the toolchain
            policy: Per-call override of the engine's policy
            observer: Receives output lines and the final outcome
        """
        build_run = BuildRun(
            command,
            cwd,
            platform,
            policy or self.policy,
            observer or NullObserver(),
            self.logger,
            toolchain_overrides=self.toolchain_overrides,
            shell=self.shell,
        )
        return await build_run.execute()


async def run_build(
    command: str,
    cwd: str | Path,
    platform: str | None = None,
    observer: BuildObserver | None = None,
    policy: SecurityPolicy | None = None,
) -> BuildOutcome:
    """Run a single build with a default engine."""
    return await BuildEngine(policy=policy).run(command, cwd, platform, observer=observer)
