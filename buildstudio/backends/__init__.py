"""Virtualization backend implementations."""

from __future__ import annotations

from .docker import DockerBackend
from .hypervisors import HyperVBackend, KVMBackend, MacOSVMBackend, QEMUBackend, VMwareBackend, WSLBackend
from .virtualbox import VirtualBoxBackend

__all__ = [
    "DockerBackend",
    "HyperVBackend",
    "KVMBackend",
    "MacOSVMBackend",
    "QEMUBackend",
    "VMwareBackend",
    "VirtualBoxBackend",
    "WSLBackend",
]
