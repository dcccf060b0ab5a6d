"""Backends for hypervisors without lifecycle support yet.

They exist so every technology has a table entry: create/start/stop raise
BackendNotImplemented, remove is treated by the registry as a no-op
teardown, and discovery skips them because scan is not implemented either.
"""

from __future__ import annotations

from buildstudio.core.base import NodeBackend
from buildstudio.core.models import VirtualizationTechnology


class WSLBackend(NodeBackend):
    technology = VirtualizationTechnology.WSL


class KVMBackend(NodeBackend):
    technology = VirtualizationTechnology.KVM


class QEMUBackend(NodeBackend):
    technology = VirtualizationTechnology.QEMU


class HyperVBackend(NodeBackend):
    technology = VirtualizationTechnology.HYPERV


class VMwareBackend(NodeBackend):
    technology = VirtualizationTechnology.VMWARE


class MacOSVMBackend(NodeBackend):
    technology = VirtualizationTechnology.MACOS_VM
