"""Host virtualization probing and system information.

Each technology is probed independently and concurrently. A probe that
cannot run (tool not installed, timeout, unexpected error) reports the
technology as unavailable without affecting the others. Probes that only
make sense on another operating system report False without running
anything.
"""

from __future__ import annotations

import asyncio
import os
import platform as _platform
from collections.abc import Callable
from dataclasses import dataclass

from buildstudio.core.errors import NoSuitableBackend
from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import SystemInfo, VirtualizationCapability, VirtualizationTechnology
from buildstudio.utils import CommandRunner, run_command

PROBE_TIMEOUT_SECONDS = 10.0
FALLBACK_MEMORY_MB = 8192

# Technologies that automatic selection may pick, in preference order.
AUTO_CANDIDATES: tuple[VirtualizationTechnology, ...] = (VirtualizationTechnology.DOCKER,)

_logger = BuildLogger("buildstudio.capabilities")


@dataclass(frozen=True)
class Probe:
    """How to check for one virtualization technology."""

    technology: VirtualizationTechnology
    command: tuple[str, ...] | None = None
    path: str | None = None
    host_os: str | None = None
    expect_stdout: str | None = None


PROBES: tuple[Probe, ...] = (
    Probe(VirtualizationTechnology.DOCKER, command=("docker", "--version")),
    Probe(VirtualizationTechnology.WSL, command=("wsl", "--status"), host_os="windows"),
    Probe(VirtualizationTechnology.KVM, path="/dev/kvm", host_os="linux"),
    Probe(VirtualizationTechnology.QEMU, command=("qemu-system-x86_64", "--version")),
    Probe(
        VirtualizationTechnology.HYPERV,
        command=(
            "powershell",
            "-Command",
            "Get-WindowsOptionalFeature -Online -FeatureName Microsoft-Hyper-V-All",
        ),
        host_os="windows",
        expect_stdout="Enabled",
    ),
    Probe(VirtualizationTechnology.VMWARE, command=("vmrun", "-T", "ws", "list")),
    Probe(VirtualizationTechnology.VIRTUALBOX, command=("VBoxManage", "--version")),
    Probe(
        VirtualizationTechnology.MACOS_VM,
        path="/System/Library/Frameworks/Virtualization.framework",
        host_os="macos",
    ),
)


def host_os() -> str:
    """Normalized host OS name: "linux", "windows", "macos" or platform.system()."""
    system = _platform.system()
    return {"Linux": "linux", "Windows": "windows", "Darwin": "macos"}.get(system, system.lower())


def host_arch() -> str:
    machine = _platform.machine().lower()
    return {"amd64": "x86_64", "x64": "x86_64", "arm64": "aarch64"}.get(machine, machine)


async def _run_probe(
    probe: Probe,
    os_name: str,
    runner: CommandRunner,
    path_exists: Callable[[str], bool],
    logger: BuildLogger,
) -> bool:
    if probe.host_os is not None and probe.host_os != os_name:
        return False

    try:
        if probe.path is not None:
            return bool(await asyncio.to_thread(path_exists, probe.path))

        assert probe.command is not None
        output = await runner(*probe.command, timeout=PROBE_TIMEOUT_SECONDS)
    except Exception as e:
        logger.log_best_effort_failure(
            "capabilities.probe", f"{type(e).__name__}: {e}", technology=probe.technology.value
        )
        return False

    # Any successful spawn counts as present unless a marker is required.
    if probe.expect_stdout is not None:
        return probe.expect_stdout in output.stdout
    return True


async def detect_capabilities(
    runner: CommandRunner | None = None,
    current_os: str | None = None,
    path_exists: Callable[[str], bool] | None = None,
    logger: BuildLogger | None = None,
) -> VirtualizationCapability:
    """Probe the host for every supported virtualization technology.

    Args:
        runner: Async command runner (defaults to utils.run_command)
        current_os: Host OS override ("linux", "windows", "macos")
        path_exists: Filesystem check used by path-based probes
        logger: BuildLogger receiving probe failures

    Returns:
        VirtualizationCapability with one flag per technology.
    """
    os_name = current_os or host_os()
    results = await asyncio.gather(
        *(
            _run_probe(
                probe,
                os_name,
                runner or run_command,
                path_exists or os.path.exists,
                logger or _logger,
            )
            for probe in PROBES
        )
    )
    return VirtualizationCapability(
        **{probe.technology.capability_field: found for probe, found in zip(PROBES, results)}
    )


def select_technology(capability: VirtualizationCapability) -> VirtualizationTechnology:
    """Pick a backend for a node requested with virtualization=auto.

    Raises:
        NoSuitableBackend: If none of AUTO_CANDIDATES is available.
    """
    for technology in AUTO_CANDIDATES:
        if capability.supports(technology):
            return technology
    raise NoSuitableBackend("No suitable virtualization technology available")


def system_memory_mb() -> int:
    """Total physical memory in MB, or FALLBACK_MEMORY_MB if unknown."""
    try:
        with open("/proc/meminfo", encoding="utf-8") as f:
            for line in f:
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) // 1024
    except (OSError, ValueError, IndexError):
        pass

    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES") // (1024 * 1024)
    except (AttributeError, ValueError, OSError):
        return FALLBACK_MEMORY_MB


async def get_system_info(
    runner: CommandRunner | None = None,
    current_os: str | None = None,
    path_exists: Callable[[str], bool] | None = None,
) -> SystemInfo:
    capability = await detect_capabilities(runner, current_os, path_exists)
    return SystemInfo(
        os=current_os or host_os(),
        arch=host_arch(),
        memory_mb=system_memory_mb(),
        cpu_cores=os.cpu_count() or 1,
        virtualization_support=capability,
    )
