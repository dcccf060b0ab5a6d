"""Build Studio: sandboxed multi-platform builds and local build nodes.

Public API:

    from buildstudio import BuildEngine, SecurityPolicy, NodeRegistry

    engine = BuildEngine(SecurityPolicy(allowed_paths=["./src"]))
    outcome = await engine.run("make", "/path/to/project", platform="windows")
"""

from __future__ import annotations

from buildstudio.build import (
    BuildEngine,
    BuildObserver,
    CollectingObserver,
    NullObserver,
    QueueObserver,
    run_build,
)
from buildstudio.capabilities import detect_capabilities, get_system_info
from buildstudio.core.errors import (
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
from buildstudio.core.factory import BackendTable, create_backend_table
from buildstudio.core.logging import BuildLogger, configure_structlog
from buildstudio.core.models import (
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
from buildstudio.discovery import discover, scan_nodes
from buildstudio.manifest import BuildManifest, load_manifest, run_manifest
from buildstudio.nodes import NodeRegistry
from buildstudio.policies import DEFAULT_POLICY, load_policy
from buildstudio.security import cleanup_sandbox, create_sandbox, validate_command
from buildstudio.toolchain import Toolchain, ToolchainKind, command_prefix, resolve

__all__ = [
    "DEFAULT_POLICY",
    "BackendCommandError",
    "BackendNotImplemented",
    "BackendTable",
    "BackendUnavailable",
    "BuildEngine",
    "BuildErrorKind",
    "BuildLogger",
    "BuildManifest",
    "BuildObserver",
    "BuildOutcome",
    "BuildPhase",
    "BuildStudioError",
    "BuildTimeoutError",
    "CollectingObserver",
    "DiscoveryResult",
    "ManifestError",
    "Node",
    "NodeConfig",
    "NodeKind",
    "NodeNotFound",
    "NodeRegistry",
    "NodeState",
    "NoSuitableBackend",
    "NullObserver",
    "OutputLine",
    "OutputStream",
    "PolicyValidationError",
    "PolicyViolation",
    "ProcessExitError",
    "ProcessSpawnError",
    "QueueObserver",
    "ReconcileReport",
    "SandboxIOError",
    "SecurityPolicy",
    "SystemInfo",
    "Toolchain",
    "ToolchainKind",
    "VirtualizationCapability",
    "VirtualizationTechnology",
    "cleanup_sandbox",
    "command_prefix",
    "configure_structlog",
    "create_backend_table",
    "create_sandbox",
    "detect_capabilities",
    "discover",
    "get_system_info",
    "load_manifest",
    "load_policy",
    "resolve",
    "run_build",
    "run_manifest",
    "scan_nodes",
    "validate_command",
]

__version__ = "0.4.0"
