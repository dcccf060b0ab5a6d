"""Core Build Studio abstractions and models.

Provides the Pydantic models for policies, build outcomes and nodes, the
NodeBackend interface, structured logging and the error hierarchy.
"""

from __future__ import annotations

from .base import NodeBackend
from .errors import (
    BackendCommandError,
    BackendNotImplemented,
    BackendUnavailable,
    BuildStudioError,
    BuildTimeoutError,
    ManifestError,
    NodeNotFound,
    NoSuitableBackend,
    PolicyValidationError,
    PolicyViolation,
    ProcessExitError,
    ProcessSpawnError,
    SandboxIOError,
)
from .models import (
    BuildErrorKind,
    BuildOutcome,
    BuildPhase,
    DiscoveryResult,
    Node,
    NodeConfig,
    NodeKind,
    NodeState,
    OutputLine,
    OutputStream,
    ReconcileReport,
    SecurityPolicy,
    SystemInfo,
    VirtualizationCapability,
    VirtualizationTechnology,
)

__all__ = [
    "BackendCommandError",
    "BackendNotImplemented",
    "BackendUnavailable",
    "BuildErrorKind",
    "BuildOutcome",
    "BuildPhase",
    "BuildStudioError",
    "BuildTimeoutError",
    "DiscoveryResult",
    "ManifestError",
    "Node",
    "NodeBackend",
    "NodeConfig",
    "NodeKind",
    "NodeNotFound",
    "NodeState",
    "NoSuitableBackend",
    "OutputLine",
    "OutputStream",
    "PolicyValidationError",
    "PolicyViolation",
    "ProcessExitError",
    "ProcessSpawnError",
    "ReconcileReport",
    "SandboxIOError",
    "SecurityPolicy",
    "SystemInfo",
    "VirtualizationCapability",
    "VirtualizationTechnology",
]
