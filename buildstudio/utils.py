"""Helpers for running host tools and preparing directories.

Virtualization backends and capability probes shell out through an injectable
CommandRunner so that tests can substitute recorded responses for docker,
VBoxManage and friends.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class CommandOutput:
    """Captured result of a finished host command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


# Async callable: runner("docker", "ps", timeout=10.0) -> CommandOutput.
# Raises OSError when the executable cannot be spawned and TimeoutError
# when the timeout expires.
CommandRunner = Callable[..., Awaitable[CommandOutput]]


async def run_command(*args: str, timeout: float | None = None) -> CommandOutput:
    """Run a host command to completion and capture its output.

    Args:
        *args: Executable and arguments (no shell is involved).
        timeout: Seconds to wait before the process is killed.

    Returns:
        CommandOutput with decoded stdout/stderr.

    Raises:
        OSError: If the executable cannot be spawned (e.g. not installed).
        TimeoutError: If the command does not finish within timeout.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise

    return CommandOutput(
        args=tuple(args),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def ensure_dir_exists(path: str | Path) -> Path:
    """Ensure a directory exists, creating parent directories as needed.

    Idempotent; used for per-node workspace directories that are bind
    mounted into build containers.

    Raises:
        OSError: If directory creation fails.
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p
