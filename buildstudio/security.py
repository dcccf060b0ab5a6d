"""Command filtering and build sandbox management.

A build runs in a scratch directory under the project root that holds a copy
of the policy's allowed paths, so that a misbehaving build cannot damage the
rest of the project tree. The directory is created fresh for every build and
removed when the build finishes.

Command filtering is a literal substring check against the policy's blocked
tokens. It catches accidental use of destructive utilities; it does not stop
a determined command (``r""m``, ``$(printf rm)``, scripts) and is not an
isolation boundary.
"""

from __future__ import annotations

import asyncio
import shutil
import uuid
from pathlib import Path, PurePath

from buildstudio.core.errors import SandboxIOError
from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import SecurityPolicy

SANDBOX_PREFIX = ".sandbox"

_logger = BuildLogger("buildstudio.security")


def find_blocked_token(command: str, policy: SecurityPolicy) -> str | None:
    """Return the first blocked token contained in command, if any."""
    if not policy.enable_sandbox:
        return None
    for token in policy.blocked_commands:
        if token in command:
            return token
    return None


def validate_command(command: str, policy: SecurityPolicy) -> bool:
    """Check a command against the policy's blocked tokens.

    Always True when sandboxing is disabled. Otherwise False iff any blocked
    token occurs as a case-sensitive substring anywhere in the command, so
    "rm" also rejects "npm run format" and "cp" rejects "g++ -o app main.cpp".
    """
    return find_blocked_token(command, policy) is None


def is_sandbox_dir(path: str | Path) -> bool:
    return Path(path).name.startswith(f"{SANDBOX_PREFIX}-")


def _relative_allowed_path(entry: str) -> PurePath | None:
    """Normalize an allowed path entry; None if it escapes the project."""
    candidate = PurePath(entry)
    if candidate.is_absolute() or candidate.anchor or ".." in candidate.parts:
        return None
    return PurePath(*[part for part in candidate.parts if part != "."])


def _populate_sandbox(project: Path, sandbox: Path, policy: SecurityPolicy, logger: BuildLogger) -> Path:
    try:
        sandbox.mkdir(parents=True, exist_ok=False)
    except OSError as e:
        raise SandboxIOError(f"Failed to create sandbox directory {sandbox}: {e}") from e

    copied: list[str] = []
    for entry in policy.allowed_paths:
        relative = _relative_allowed_path(entry)
        if relative is None:
            logger.log_security_event(
                "path_rejected", {"allowed_path": entry, "reason": "outside project directory"}
            )
            continue

        source = project / relative
        if not source.exists():
            continue

        destination = sandbox / relative
        # Other builds' sandboxes only ever sit directly under the project root.
        ignore = _skip_sibling_sandboxes if source == project else None
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, destination, ignore=ignore, dirs_exist_ok=True)
            else:
                shutil.copy2(source, destination)
        except OSError as e:
            raise SandboxIOError(
                f"Failed to copy '{entry}' into sandbox: {e}", sandbox_path=sandbox
            ) from e
        copied.append(entry)

    logger.log_sandbox_created(str(sandbox), copied)
    return sandbox


def _skip_sibling_sandboxes(directory: str, names: list[str]) -> list[str]:
    return [name for name in names if name.startswith(f"{SANDBOX_PREFIX}-")]


async def create_sandbox(
    project_dir: str | Path, policy: SecurityPolicy, logger: BuildLogger | None = None
) -> Path:
    """Create the working directory for one build.

    With sandboxing disabled the project directory itself is returned and
    nothing is copied. Otherwise a fresh ``.sandbox-<hex>`` directory is
    created under the project and every allowed path that exists is copied
    into the same relative location. Symbolic links are followed, so the
    sandbox holds the content they point to. Allowed paths that are missing
    are skipped; absolute paths and paths containing ``..`` are skipped and
    logged as security events.

    If the caller is cancelled while the copy is running, the copy is
    allowed to finish and its directory is removed before the cancellation
    propagates.

    Args:
        project_dir: Project root the build was requested for
        policy: Policy supplying enable_sandbox and allowed_paths
        logger: Optional BuildLogger (defaults to the module logger)

    Returns:
        Path: Directory the build process should run in.

    Raises:
        SandboxIOError: If the directory cannot be created or a copy fails.
            sandbox_path is set when a partial sandbox was left behind.
    """
    project = Path(project_dir).resolve()
    if not policy.enable_sandbox:
        return project

    if not project.is_dir():
        raise SandboxIOError(f"Project directory does not exist: {project}")

    log = logger or _logger
    sandbox = project / f"{SANDBOX_PREFIX}-{uuid.uuid4().hex[:12]}"
    copy = asyncio.ensure_future(asyncio.to_thread(_populate_sandbox, project, sandbox, policy, log))
    try:
        return await asyncio.shield(copy)
    except asyncio.CancelledError:
        # The worker thread cannot be interrupted; wait for it, then discard its output.
        await asyncio.wait([copy])
        if not copy.cancelled():
            copy.exception()
        try:
            await asyncio.to_thread(_remove_tree, sandbox)
        except OSError as e:
            log.log_best_effort_failure("sandbox.cancel_cleanup", str(e), sandbox_path=str(sandbox))
        raise


def _remove_tree(path: Path) -> bool:
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


async def cleanup_sandbox(sandbox_path: str | Path, logger: BuildLogger | None = None) -> None:
    """Recursively remove a sandbox directory.

    Removing a sandbox that no longer exists is a no-op, so cleanup may be
    called more than once.

    Raises:
        SandboxIOError: If the path is not a sandbox directory or removal fails.
    """
    path = Path(sandbox_path)
    if not is_sandbox_dir(path):
        raise SandboxIOError(f"Refusing to remove non-sandbox directory: {path}")

    try:
        existed = await asyncio.to_thread(_remove_tree, path)
    except OSError as e:
        raise SandboxIOError(f"Failed to remove sandbox {path}: {e}", sandbox_path=path) from e

    (logger or _logger).log_sandbox_cleaned(str(path), existed)
