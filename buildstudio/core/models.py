"""Pydantic models for build policy, build results and local build nodes.

Provides validated data models for the security policy, the build state
machine and its outcome, streamed output lines, virtualization capability
reports and the node records owned by the node registry. All models
serialize field-for-field with model_dump(mode="json").
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from buildstudio.core.errors import (
    BuildStudioError,
    BuildTimeoutError,
    PolicyValidationError,
    PolicyViolation,
    ProcessExitError,
    ProcessSpawnError,
    SandboxIOError,
)


def utc_now() -> datetime:
    return datetime.now(UTC)


class ValidatedModel(BaseModel):
    """BaseModel that reports validation failures as PolicyValidationError."""

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise PolicyValidationError(f"Invalid {type(self).__name__}: {e}") from e

    @classmethod
    def model_validate(
        cls, obj: Any, *, strict: bool | None = None, context: dict[str, Any] | None = None, **kwargs: Any
    ) -> Any:
        try:
            return super().model_validate(obj, strict=strict, context=context, **kwargs)
        except ValidationError as e:
            raise PolicyValidationError(f"Invalid {cls.__name__}: {e}") from e


def _dedupe(values: Any) -> Any:
    if isinstance(values, str):
        raise ValueError("expected a list of strings, got a single string")
    if not isinstance(values, (list, tuple, set, frozenset)):
        return values
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


class SecurityPolicy(ValidatedModel):
    """Security policy applied to a single build invocation.

    The policy is immutable; callers that need different rules for one build
    construct (or model_copy) a new policy and pass it to the engine.

    Attributes:
        enable_sandbox: Run builds in a scratch copy of the allowed paths.
            When False, commands are never filtered and run in place.
        allowed_paths: Project-relative paths copied into the sandbox, in
            order. Duplicates are dropped.
        blocked_commands: Literal substrings that reject a command.
        network_isolation: Requested network isolation. Recorded and logged
            with each build; not enforced by the process runner.
        max_build_time_seconds: Wall-clock limit for the build process, or
            None for no limit.
    """

    model_config = ConfigDict(frozen=True)

    enable_sandbox: bool = Field(default=True, description="Copy allowed paths into a scratch sandbox")

    allowed_paths: tuple[str, ...] = Field(
        default=("./src", "./builds", "./packages"),
        description="Project-relative paths copied into the sandbox",
    )

    blocked_commands: tuple[str, ...] = Field(
        default=("rm", "rmdir", "mv", "cp", "chmod", "chown"),
        description="Substrings that cause a command to be rejected",
    )

    network_isolation: bool = Field(default=True, description="Requested network isolation (advisory)")

    max_build_time_seconds: float | None = Field(
        default=3600,
        gt=0,
        description="Maximum build wall-clock time (None = unlimited)",
    )

    @field_validator("allowed_paths", "blocked_commands", mode="before")
    @classmethod
    def dedupe_entries(cls, value: Any) -> Any:
        return _dedupe(value)

    @field_validator("blocked_commands")
    @classmethod
    def reject_empty_tokens(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        # An empty token is a substring of every command.
        if any(token == "" for token in value):
            raise ValueError("blocked command tokens must be non-empty")
        return value


class OutputStream(str, Enum):
    """Origin of a build output line."""

    STDOUT = "stdout"
    STDERR = "stderr"


class OutputLine(BaseModel):
    """One line of build output with its stream tag (line terminator stripped)."""

    model_config = ConfigDict(frozen=True)

    stream: OutputStream
    text: str


class BuildPhase(str, Enum):
    """States of a single build invocation."""

    PENDING = "pending"
    VALIDATING = "validating"
    SANDBOXING = "sandboxing"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


class BuildErrorKind(str, Enum):
    """Why a build failed."""

    POLICY_VIOLATION = "policy_violation"
    SANDBOX_IO = "sandbox_io"
    PROCESS_SPAWN = "process_spawn"
    PROCESS_EXIT = "process_exit"
    TIMEOUT = "timeout"


_ERROR_TYPES: dict[BuildErrorKind, type[BuildStudioError]] = {
    BuildErrorKind.POLICY_VIOLATION: PolicyViolation,
    BuildErrorKind.SANDBOX_IO: SandboxIOError,
    BuildErrorKind.PROCESS_SPAWN: ProcessSpawnError,
    BuildErrorKind.PROCESS_EXIT: ProcessExitError,
    BuildErrorKind.TIMEOUT: BuildTimeoutError,
}


class BuildOutcome(BaseModel):
    """Terminal result of a build invocation.

    Exactly one outcome is produced per build. A failed sandbox cleanup is
    reported in cleanup_error but never turns a successful build into a
    failed one.
    """

    success: bool
    command: str
    full_command: str | None = None
    platform: str | None = None
    toolchain: str = "native"
    exit_code: int | None = None
    error_kind: BuildErrorKind | None = None
    error: str | None = None
    sandbox_path: str | None = None
    cleanup_error: str | None = None
    stdout_lines: int = 0
    stderr_lines: int = 0
    timed_out: bool = False
    duration_ms: float = 0.0

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "command": "cargo build --release",
                "full_command": "cargo build --release",
                "platform": "linux",
                "toolchain": "native",
                "exit_code": 0,
                "error_kind": None,
                "error": None,
                "sandbox_path": "/work/app/.sandbox-4f2a9c1d0b7e",
                "cleanup_error": None,
                "stdout_lines": 42,
                "stderr_lines": 3,
                "timed_out": False,
                "duration_ms": 5321.7,
            }
        }
    )

    def raise_for_status(self) -> None:
        """Raise the exception matching error_kind if the build failed."""
        if self.success:
            return
        kind = self.error_kind or BuildErrorKind.PROCESS_EXIT
        message = self.error or "Build failed"
        if kind is BuildErrorKind.PROCESS_EXIT:
            raise ProcessExitError(message, exit_code=self.exit_code)
        raise _ERROR_TYPES[kind](message)


class VirtualizationTechnology(str, Enum):
    """Virtualization technologies a node can be hosted on.

    AUTO is only valid in a NodeConfig; a stored Node always records the
    concrete technology that was selected.
    """

    DOCKER = "docker"
    WSL = "wsl"
    KVM = "kvm"
    QEMU = "qemu"
    HYPERV = "hyperv"
    VMWARE = "vmware"
    VIRTUALBOX = "virtualbox"
    MACOS_VM = "macos-vm"
    AUTO = "auto"

    @property
    def capability_field(self) -> str:
        return self.value.replace("-", "_")


class VirtualizationCapability(BaseModel):
    """Per-technology availability flags reported by host probing."""

    docker: bool = False
    wsl: bool = False
    kvm: bool = False
    qemu: bool = False
    hyperv: bool = False
    vmware: bool = False
    virtualbox: bool = False
    macos_vm: bool = False

    def supports(self, technology: VirtualizationTechnology) -> bool:
        if technology is VirtualizationTechnology.AUTO:
            return any(self.available())
        return bool(getattr(self, technology.capability_field))

    def available(self) -> list[VirtualizationTechnology]:
        return [
            tech
            for tech in VirtualizationTechnology
            if tech is not VirtualizationTechnology.AUTO and getattr(self, tech.capability_field)
        ]


class SystemInfo(BaseModel):
    """Host description used when planning local nodes."""

    os: str
    arch: str
    memory_mb: int
    cpu_cores: int
    virtualization_support: VirtualizationCapability


class NodeKind(str, Enum):
    CONTAINER = "local-docker"
    VM = "local-vm"


class NodeState(str, Enum):
    INSTALLING = "installing"
    ONLINE = "online"
    OFFLINE = "offline"


class NodeConfig(ValidatedModel):
    """Request to create a local build node."""

    name: str = Field(min_length=1)
    platform: str = Field(default="ubuntu-22.04", description="Platform/image identifier")
    memory_mb: int = Field(default=2048, gt=0)
    cpu_cores: int = Field(default=2, gt=0)
    disk_size_gb: int = Field(default=20, ge=0)
    virtualization: VirtualizationTechnology = VirtualizationTechnology.AUTO
    capabilities: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    install_build_tools: bool = False


class Node(BaseModel):
    """A local build node as recorded by the node registry.

    Nodes are immutable snapshots; the registry replaces a record with an
    updated copy on every state change, so values handed to callers never
    change underneath them.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: NodeKind
    state: NodeState = NodeState.INSTALLING
    platform: str
    memory_mb: int = 0
    cpu_cores: int = 0
    disk_size_gb: int = 0
    technology: VirtualizationTechnology
    capabilities: list[str] = Field(default_factory=list)
    container_id: str | None = None
    vm_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    last_seen: datetime | None = None

    @model_validator(mode="after")
    def check_handles(self) -> Node:
        if self.container_id is not None and self.vm_id is not None:
            raise ValueError("a node has either a container handle or a VM handle, not both")
        if self.technology is VirtualizationTechnology.AUTO:
            raise ValueError("a stored node must record a concrete technology")
        return self


class DiscoveryResult(BaseModel):
    """Outcome of scanning every backend for existing nodes."""

    nodes: list[Node] = Field(default_factory=list)
    scanned: list[VirtualizationTechnology] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)


class ReconcileReport(BaseModel):
    """Changes applied to the registry from a discovery result."""

    updated: list[str] = Field(default_factory=list)
    adopted: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
