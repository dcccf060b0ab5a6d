"""Docker container backend for local build nodes.

Each node is a long-running container named ``build-studio-<node id>`` that
idles on ``sleep infinity`` with the node's memory and CPU limits and a
per-node host directory mounted at /workspace. Tool installation runs
inside the container with ``docker exec``.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from buildstudio.core.base import NodeBackend
from buildstudio.core.errors import BackendCommandError
from buildstudio.core.models import Node, NodeKind, NodeState, VirtualizationTechnology, utc_now
from buildstudio.utils import CommandOutput, ensure_dir_exists

if TYPE_CHECKING:
    from buildstudio.core.logging import BuildLogger
    from buildstudio.core.models import NodeConfig
    from buildstudio.utils import CommandRunner

CONTAINER_PREFIX = "build-studio-"

PLATFORM_IMAGES: dict[str, str] = {
    "ubuntu-22.04": "ubuntu:22.04",
    "ubuntu-20.04": "ubuntu:20.04",
    "debian-11": "debian:11",
    "alpine-3.18": "alpine:3.18",
    "centos-8": "centos:8",
}
FALLBACK_IMAGE = "ubuntu:22.04"

BASELINE_PACKAGES: tuple[str, ...] = ("build-essential", "git", "curl", "wget")

LANGUAGE_INSTALL_COMMANDS: dict[str, tuple[str, ...]] = {
    "rust": ("sh", "-c", "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y"),
    "node": ("apt", "install", "-y", "nodejs", "npm"),
    "python": ("apt", "install", "-y", "python3", "python3-pip"),
    "java": ("apt", "install", "-y", "openjdk-11-jdk"),
    "go": ("apt", "install", "-y", "golang-go"),
}

PS_FORMAT = "{{.ID}}\t{{.Names}}\t{{.Image}}\t{{.Status}}"


def container_name(node_id: str) -> str:
    return f"{CONTAINER_PREFIX}{node_id}"


def image_for_platform(platform: str) -> str:
    return PLATFORM_IMAGES.get(platform, FALLBACK_IMAGE)


def platform_for_image(image: str) -> str:
    for platform, known_image in PLATFORM_IMAGES.items():
        if known_image == image:
            return platform
    return "unknown"


@dataclass(frozen=True)
class LanguageInstallResult:
    """Result of one best-effort language toolchain install."""

    language: str
    installed: bool
    detail: str = ""


class DockerBackend(NodeBackend):
    """Creates and manages build nodes as Docker containers.

    Args:
        runner: Async command runner used for every docker invocation
        logger: BuildLogger for backend events
        workspace_root: Host directory holding per-node workspace mounts
            (defaults to the system temp directory)
    """

    technology = VirtualizationTechnology.DOCKER
    kind = NodeKind.CONTAINER

    def __init__(
        self,
        runner: CommandRunner | None = None,
        logger: BuildLogger | None = None,
        workspace_root: Path | None = None,
    ) -> None:
        super().__init__(runner, logger)
        self.workspace_root = Path(workspace_root or tempfile.gettempdir())

    async def _docker(self, *args: str, error: str) -> CommandOutput:
        try:
            output = await self.runner("docker", *args)
        except OSError as e:
            raise BackendCommandError(f"{error}: {e}") from e

        self.logger.log_backend_command(["docker", *args], output.returncode)
        if not output.ok:
            detail = output.stderr.strip() or f"exit status {output.returncode}"
            raise BackendCommandError(f"{error}: {detail}")
        return output

    async def _exec(self, container: str, *command: str) -> CommandOutput:
        try:
            output = await self.runner("docker", "exec", container, *command)
        except OSError as e:
            raise BackendCommandError(f"Failed to run {command[0]} in {container}: {e}") from e
        self.logger.log_backend_command(["docker", "exec", container, *command], output.returncode)
        return output

    async def create(self, node_id: str, config: NodeConfig) -> str | None:
        image = image_for_platform(config.platform)
        name = container_name(node_id)

        await self._docker("pull", image, error=f"Failed to pull Docker image {image}")

        workspace = ensure_dir_exists(self.workspace_root / name)
        output = await self._docker(
            "run",
            "-d",
            "--name",
            name,
            "--memory",
            f"{config.memory_mb}m",
            "--cpus",
            str(config.cpu_cores),
            "-v",
            f"{workspace}:/workspace",
            image,
            "sleep",
            "infinity",
            error="Failed to create Docker container",
        )

        if config.install_build_tools:
            await self.install_build_tools(name, config.languages)

        return output.stdout.strip() or None

    async def install_build_tools(
        self, container: str, languages: list[str]
    ) -> list[LanguageInstallResult]:
        """Install baseline build tools and per-language toolchains.

        Failing to spawn docker raises BackendCommandError. Package manager
        failures are logged; each language is attempted independently and
        its result returned.
        """
        for step in (("apt", "update"), ("apt", "install", "-y", *BASELINE_PACKAGES)):
            output = await self._exec(container, *step)
            if not output.ok:
                self.logger._emit(
                    logging.WARNING,
                    "buildstudio.node.tools.baseline_failed",
                    container=container,
                    step=" ".join(step),
                    returncode=output.returncode,
                    stderr=output.stderr.strip()[-500:],
                )

        results = [await self._install_language(container, language) for language in languages]
        for result in results:
            if not result.installed:
                self.logger.log_best_effort_failure(
                    "node.tools.language", result.detail, container=container, language=result.language
                )
        return results

    async def _install_language(self, container: str, language: str) -> LanguageInstallResult:
        command = LANGUAGE_INSTALL_COMMANDS.get(language)
        if command is None:
            return LanguageInstallResult(language, False, f"no installer for language '{language}'")
        try:
            output = await self._exec(container, *command)
        except BackendCommandError as e:
            return LanguageInstallResult(language, False, str(e))
        if not output.ok:
            return LanguageInstallResult(
                language, False, output.stderr.strip()[-500:] or f"exit status {output.returncode}"
            )
        return LanguageInstallResult(language, True)

    async def start(self, node: Node) -> None:
        await self._docker("start", container_name(node.id), error="Failed to start Docker container")

    async def stop(self, node: Node) -> None:
        await self._docker("stop", container_name(node.id), error="Failed to stop Docker container")

    async def remove(self, node: Node) -> None:
        """Force-remove the container; a container that is already gone is fine."""
        name = container_name(node.id)
        try:
            output = await self.runner("docker", "rm", "-f", name)
        except OSError as e:
            raise BackendCommandError(f"Failed to remove Docker container: {e}") from e
        self.logger.log_backend_command(["docker", "rm", "-f", name], output.returncode)

    async def scan(self) -> list[Node]:
        """List Build Studio containers, running or not.

        Raises:
            BackendCommandError: If docker cannot be executed or ps fails.
        """
        output = await self._docker("ps", "-a", "--format", PS_FORMAT, error="Failed to list Docker containers")
        now = utc_now()
        nodes: list[Node] = []
        for line in output.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 4 or not parts[1].startswith(CONTAINER_PREFIX):
                continue
            container_id, name, image, status = parts[:4]
            online = status.startswith("Up")
            nodes.append(
                Node(
                    id=name[len(CONTAINER_PREFIX):],
                    name=name,
                    kind=NodeKind.CONTAINER,
                    state=NodeState.ONLINE if online else NodeState.OFFLINE,
                    platform=platform_for_image(image),
                    technology=VirtualizationTechnology.DOCKER,
                    container_id=container_id,
                    created_at=now,
                    last_seen=now if online else None,
                )
            )
        return nodes
