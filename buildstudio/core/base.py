"""Base class for virtualization backends.

Provides NodeBackend, the capability interface every virtualization
technology implements. The registry dispatches lifecycle verbs through a
table of NodeBackend instances keyed by technology, so adding a technology
means adding one subclass and one table entry.

Verbs a backend does not override raise BackendNotImplemented naming the
technology and verb, scan() included, so discovery can tell "nothing found"
apart from "cannot look".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from buildstudio.core.errors import BackendNotImplemented
from buildstudio.core.models import NodeKind, VirtualizationTechnology

if TYPE_CHECKING:
    from buildstudio.core.logging import BuildLogger
    from buildstudio.core.models import Node, NodeConfig
    from buildstudio.utils import CommandRunner


class NodeBackend:
    """Lifecycle operations for nodes hosted on one virtualization technology.

    Attributes:
        technology: Technology this backend handles
        kind: Kind of node records the backend produces
        runner: Async command runner used to invoke host tools
        logger: BuildLogger for backend events
    """

    technology: ClassVar[VirtualizationTechnology]
    kind: ClassVar[NodeKind] = NodeKind.VM

    def __init__(self, runner: CommandRunner | None = None, logger: BuildLogger | None = None) -> None:
        if runner is None:
            from buildstudio.utils import run_command

            runner = run_command
        if logger is None:
            from buildstudio.core.logging import BuildLogger

            logger = BuildLogger(f"buildstudio.backends.{self.technology.value}")
        self.runner = runner
        self.logger = logger

    async def create(self, node_id: str, config: NodeConfig) -> str | None:
        """Provision a node and return its container/VM handle (or None)."""
        raise BackendNotImplemented(self.technology.value, "create")

    async def start(self, node: Node) -> None:
        raise BackendNotImplemented(self.technology.value, "start")

    async def stop(self, node: Node) -> None:
        raise BackendNotImplemented(self.technology.value, "stop")

    async def remove(self, node: Node) -> None:
        raise BackendNotImplemented(self.technology.value, "remove")

    async def scan(self) -> list[Node]:
        """Report existing nodes managed by this tool on the host."""
        raise BackendNotImplemented(self.technology.value, "scan")
