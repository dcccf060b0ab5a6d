"""Exception classes for build, sandbox and node orchestration failures.

Every error raised by the library derives from BuildStudioError so callers
can catch the whole family with one clause. Build failures are normally
reported through BuildOutcome rather than raised; the build-related classes
here are what BuildOutcome.raise_for_status() produces.
"""

from __future__ import annotations

from pathlib import Path


class BuildStudioError(Exception):
    """Base exception for all Build Studio failures."""

    pass


class PolicyValidationError(BuildStudioError):
    """Raised when a security policy or configuration record is invalid.

    Wraps Pydantic ValidationError with a domain-specific name, e.g. when a
    policy TOML file declares a negative build timeout or a non-list of
    blocked commands.
    """

    pass


class PolicyViolation(BuildStudioError):
    """Raised when a build command contains a blocked token.

    The check is a literal substring match against the policy's blocked
    command list. It is a coarse filter, not an isolation boundary.
    """

    def __init__(self, message: str, token: str | None = None) -> None:
        super().__init__(message)
        self.token = token


class SandboxIOError(BuildStudioError):
    """Raised when the build sandbox cannot be created, populated or removed.

    Attributes:
        sandbox_path: The sandbox directory that was (partially) created, if
            any. Callers use it to clean up after a failed copy.
    """

    def __init__(self, message: str, sandbox_path: Path | None = None) -> None:
        super().__init__(message)
        self.sandbox_path = sandbox_path


class ProcessSpawnError(BuildStudioError):
    """Raised when the build shell process could not be started."""

    pass


class ProcessExitError(BuildStudioError):
    """Raised when a build command finished with a non-zero exit status."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class BuildTimeoutError(BuildStudioError):
    """Raised when a build exceeded the policy's maximum build time.

    The process group is killed before this is reported.
    """

    pass


class BackendUnavailable(BuildStudioError):
    """Raised when a virtualization backend is not usable on this host."""

    pass


class BackendNotImplemented(BuildStudioError):
    """Raised when a backend does not implement a lifecycle verb.

    Attributes:
        technology: Virtualization technology name (e.g. "kvm")
        verb: Lifecycle verb that was requested (create, start, stop, remove)
    """

    def __init__(self, technology: str, verb: str) -> None:
        super().__init__(f"{technology} {verb} not yet implemented")
        self.technology = technology
        self.verb = verb


class BackendCommandError(BuildStudioError):
    """Raised when an external virtualization tool fails.

    Covers both a tool that could not be executed and a tool that exited
    with a failure status, e.g. `docker pull` for an unknown image.
    """

    pass


class NodeNotFound(BuildStudioError):
    """Raised when a node identifier is not present in the registry."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node {node_id} not found")
        self.node_id = node_id


class NoSuitableBackend(BuildStudioError):
    """Raised when automatic backend selection finds nothing usable."""

    pass


class ManifestError(BuildStudioError):
    """Raised when a build manifest is missing or malformed."""

    pass
