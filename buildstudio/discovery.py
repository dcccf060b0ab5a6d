"""Discovery of build nodes that already exist on the host.

Scanning is read-only: it reports what every backend can see and never
modifies a registry. Feed the result to NodeRegistry.reconcile() to merge
it explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from buildstudio.core.base import NodeBackend
from buildstudio.core.errors import BackendNotImplemented
from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import DiscoveryResult, Node

_logger = BuildLogger("buildstudio.discovery")


async def discover(backends: Iterable[NodeBackend], logger: BuildLogger | None = None) -> DiscoveryResult:
    """Scan every backend concurrently.

    A backend whose scan raises contributes no nodes; the failure is logged
    and recorded in DiscoveryResult.failures. Backends that cannot scan at
    all are skipped and appear in neither scanned nor failures, so
    reconciliation never treats their nodes as vanished.
    """
    log = logger or _logger
    backends = list(backends)
    results = await asyncio.gather(*(backend.scan() for backend in backends), return_exceptions=True)

    discovery = DiscoveryResult()
    for backend, result in zip(backends, results):
        if isinstance(result, BackendNotImplemented):
            log._emit(
                logging.DEBUG,
                "buildstudio.discovery.backend.skipped",
                technology=backend.technology.value,
            )
            continue
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            log.log_best_effort_failure(
                "discovery.backend", f"{type(result).__name__}: {result}", technology=backend.technology.value
            )
            discovery.failures[backend.technology.value] = str(result)
            continue
        discovery.scanned.append(backend.technology)
        discovery.nodes.extend(result)

    log.log_discovery_complete(
        len(discovery.nodes),
        [tech.value for tech in discovery.scanned],
        sorted(discovery.failures),
    )
    return discovery


async def scan_nodes(backends: Iterable[NodeBackend], logger: BuildLogger | None = None) -> list[Node]:
    """Observed nodes from every backend that could be scanned."""
    return (await discover(backends, logger)).nodes
