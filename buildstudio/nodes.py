"""Registry of local build nodes and their lifecycle.

Node states:

    create -> installing --start--> online --stop--> offline --start--> online
    remove from any state deletes the record

The registry is an ordinary object owned by whoever constructs it (the CLI,
the tool server, a test). All record access goes through one asyncio.Lock.
start and stop hold the lock across lookup, backend call and state update,
so state transitions of one registry are serialized. create runs the
(possibly minutes long) provisioning outside the lock and inserts the record
afterwards; a node is therefore invisible until its backend create returned.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable

from buildstudio.capabilities import detect_capabilities, select_technology
from buildstudio.core.errors import BackendNotImplemented, NodeNotFound
from buildstudio.core.factory import BackendTable, create_backend_table
from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import (
    DiscoveryResult,
    Node,
    NodeConfig,
    NodeKind,
    NodeState,
    ReconcileReport,
    VirtualizationCapability,
    VirtualizationTechnology,
    utc_now,
)

CapabilityDetector = Callable[[], Awaitable[VirtualizationCapability]]


class NodeRegistry:
    """Owns the node records and dispatches lifecycle verbs to backends.

    Args:
        backends: Technology -> backend table (built-in backends if None)
        capability_detector: Async callable used to resolve virtualization=auto
        logger: BuildLogger for node lifecycle events
    """

    def __init__(
        self,
        backends: BackendTable | None = None,
        capability_detector: CapabilityDetector | None = None,
        logger: BuildLogger | None = None,
    ) -> None:
        self.backends = backends if backends is not None else create_backend_table()
        self._detect = capability_detector or detect_capabilities
        self.logger = logger or BuildLogger("buildstudio.nodes")
        self._nodes: dict[str, Node] = {}
        self._lock = asyncio.Lock()

    async def _resolve_technology(self, requested: VirtualizationTechnology) -> VirtualizationTechnology:
        if requested is not VirtualizationTechnology.AUTO:
            return requested
        return select_technology(await self._detect())

    async def create(self, config: NodeConfig) -> str:
        """Provision a node and register it in state installing.

        Returns:
            The new node identifier.

        Raises:
            NoSuitableBackend: virtualization=auto and nothing usable found
            BackendNotImplemented: The technology cannot create nodes
            BackendCommandError: The backend's host tooling failed
        """
        technology = await self._resolve_technology(config.virtualization)
        backend = self.backends.get(technology)
        node_id = str(uuid.uuid4())

        handle = await backend.create(node_id, config)

        node = Node(
            id=node_id,
            name=config.name,
            kind=backend.kind,
            state=NodeState.INSTALLING,
            platform=config.platform,
            memory_mb=config.memory_mb,
            cpu_cores=config.cpu_cores,
            disk_size_gb=config.disk_size_gb,
            technology=technology,
            capabilities=list(config.capabilities),
            container_id=handle if backend.kind is NodeKind.CONTAINER else None,
            vm_id=handle if backend.kind is NodeKind.VM else None,
        )
        async with self._lock:
            self._nodes[node_id] = node

        self.logger.log_node_event(
            "created", node_id, technology=technology.value, name=config.name, platform=config.platform
        )
        return node_id

    async def start(self, node_id: str) -> Node:
        """Start a node; on success it is online with last_seen refreshed."""
        async with self._lock:
            node = self._require(node_id)
            await self.backends.get(node.technology).start(node)
            node = node.model_copy(update={"state": NodeState.ONLINE, "last_seen": utc_now()})
            self._nodes[node_id] = node
        self.logger.log_node_event("started", node_id, technology=node.technology.value)
        return node

    async def stop(self, node_id: str) -> Node:
        """Stop a node; on success it is offline."""
        async with self._lock:
            node = self._require(node_id)
            await self.backends.get(node.technology).stop(node)
            node = node.model_copy(update={"state": NodeState.OFFLINE})
            self._nodes[node_id] = node
        self.logger.log_node_event("stopped", node_id, technology=node.technology.value)
        return node

    async def remove(self, node_id: str) -> None:
        """Remove a node record, then tear down its backing resource.

        The record is gone even if teardown fails; in that case the teardown
        error is raised after removal. A backend without teardown support
        counts as a successful removal.
        """
        async with self._lock:
            node = self._require(node_id)
            del self._nodes[node_id]

        self.logger.log_node_event("removed", node_id, technology=node.technology.value)
        try:
            await self.backends.get(node.technology).remove(node)
        except BackendNotImplemented:
            self.logger.log_node_event(
                "teardown_skipped", node_id, technology=node.technology.value, reason="not implemented"
            )

    async def list(self) -> list[Node]:
        """Point-in-time snapshot of every node, in creation order."""
        async with self._lock:
            return list(self._nodes.values())

    async def get(self, node_id: str) -> Node:
        async with self._lock:
            return self._require(node_id)

    def _require(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFound(node_id) from None

    async def reconcile(self, discovery: DiscoveryResult) -> ReconcileReport:
        """Merge observed nodes from a discovery scan into the registry.

        - Known nodes that were observed take the observed state and handle.
        - Observed nodes the registry does not know are adopted.
        - Known nodes of a technology that scanned successfully but were not
          observed are marked offline (their backing resource is gone).
        """
        report = ReconcileReport()
        observed = {node.id: node for node in discovery.nodes}
        scanned = set(discovery.scanned)

        async with self._lock:
            for node_id, seen in observed.items():
                known = self._nodes.get(node_id)
                if known is None:
                    self._nodes[node_id] = seen
                    report.adopted.append(node_id)
                    continue
                self._nodes[node_id] = known.model_copy(
                    update={
                        "state": seen.state,
                        "container_id": seen.container_id or known.container_id,
                        "vm_id": seen.vm_id or known.vm_id,
                        "last_seen": seen.last_seen or known.last_seen,
                    }
                )
                report.updated.append(node_id)

            for node_id, known in list(self._nodes.items()):
                if node_id in observed or known.technology not in scanned:
                    continue
                if known.state is not NodeState.OFFLINE:
                    self._nodes[node_id] = known.model_copy(update={"state": NodeState.OFFLINE})
                report.missing.append(node_id)

        self.logger.log_node_event(
            "reconciled",
            "*",
            updated=len(report.updated),
            adopted=len(report.adopted),
            missing=len(report.missing),
        )
        return report
