"""Backend lookup table keyed by virtualization technology.

Provides BackendTable, the dispatch structure the node registry and
discovery use instead of matching on technology names, and
create_backend_table() which wires one backend per concrete technology.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from buildstudio.core.errors import BackendUnavailable
from buildstudio.core.models import VirtualizationTechnology

if TYPE_CHECKING:
    from buildstudio.core.base import NodeBackend
    from buildstudio.core.logging import BuildLogger
    from buildstudio.utils import CommandRunner


class BackendTable:
    """Immutable mapping of technology -> NodeBackend."""

    def __init__(self, backends: Mapping[VirtualizationTechnology, NodeBackend]) -> None:
        if VirtualizationTechnology.AUTO in backends:
            raise ValueError("'auto' is a selection mode, not a backend")
        self._backends = dict(backends)

    def get(self, technology: VirtualizationTechnology) -> NodeBackend:
        """Return the backend for technology.

        Raises:
            BackendUnavailable: If no backend is registered for it.
        """
        try:
            return self._backends[technology]
        except KeyError:
            raise BackendUnavailable(f"No backend registered for {technology.value}") from None

    def __contains__(self, technology: object) -> bool:
        return technology in self._backends

    def __iter__(self) -> Iterator[NodeBackend]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def technologies(self) -> list[VirtualizationTechnology]:
        return list(self._backends)


def create_backend_table(
    runner: CommandRunner | None = None,
    logger: BuildLogger | None = None,
    workspace_root: Path | None = None,
) -> BackendTable:
    """Create a BackendTable with the built-in backend for every technology.

    Args:
        runner: Async command runner shared by all backends
        logger: Optional BuildLogger shared by all backends
        workspace_root: Host directory for Docker node workspaces
    """
    from buildstudio.backends import (
        DockerBackend,
        HyperVBackend,
        KVMBackend,
        MacOSVMBackend,
        QEMUBackend,
        VirtualBoxBackend,
        VMwareBackend,
        WSLBackend,
    )

    backends: list[NodeBackend] = [
        DockerBackend(runner, logger, workspace_root=workspace_root),
        WSLBackend(runner, logger),
        KVMBackend(runner, logger),
        QEMUBackend(runner, logger),
        HyperVBackend(runner, logger),
        VMwareBackend(runner, logger),
        VirtualBoxBackend(runner, logger),
        MacOSVMBackend(runner, logger),
    ]
    return BackendTable({backend.technology: backend for backend in backends})
