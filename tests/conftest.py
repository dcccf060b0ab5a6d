"""Shared pytest fixtures for all tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog

from buildstudio.core.base import NodeBackend
from buildstudio.core.factory import BackendTable
from buildstudio.core.logging import BuildLogger
from buildstudio.core.models import (
    Node,
    NodeConfig,
    NodeKind,
    SecurityPolicy,
    VirtualizationCapability,
    VirtualizationTechnology,
)
from buildstudio.utils import CommandOutput


class FakeRunner:
    """Records host commands and answers them from canned responses.

    Responses are matched by argv prefix; the longest matching prefix wins.
    A response may be a CommandOutput, an exception instance to raise, or a
    callable taking the argv tuple.
    """

    def __init__(self, default: CommandOutput | BaseException | None = None) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.responses: dict[tuple[str, ...], Any] = {}
        self.default = default

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.responses[prefix] = CommandOutput(prefix, returncode, stdout, stderr)

    def fail(self, *prefix: str, error: BaseException) -> None:
        self.responses[prefix] = error

    async def __call__(self, *args: str, timeout: float | None = None) -> CommandOutput:
        self.calls.append(args)
        matches = [p for p in self.responses if args[: len(p)] == p]
        response: Any = self.responses[max(matches, key=len)] if matches else self.default
        if response is None:
            return CommandOutput(args, 0, "", "")
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(args)
        return CommandOutput(args, response.returncode, response.stdout, response.stderr)

    def called_with(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)


class FakeBackend(NodeBackend):
    """In-memory backend recording lifecycle calls."""

    technology = VirtualizationTechnology.DOCKER
    kind = NodeKind.CONTAINER

    def __init__(self, handle: str | None = "container-abc123", delay: float = 0.0) -> None:
        super().__init__(runner=FakeRunner())
        self.handle = handle
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[str, Exception] = {}
        self.scan_result: list[Node] = []
        self.active = 0
        self.max_active = 0

    async def _call(self, verb: str, node_id: str) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.calls.append((verb, node_id))
            if verb in self.fail_on:
                raise self.fail_on[verb]
        finally:
            self.active -= 1

    async def create(self, node_id: str, config: NodeConfig) -> str | None:
        await self._call("create", node_id)
        return self.handle

    async def start(self, node: Node) -> None:
        await self._call("start", node.id)

    async def stop(self, node: Node) -> None:
        await self._call("stop", node.id)

    async def remove(self, node: Node) -> None:
        await self._call("remove", node.id)

    async def scan(self) -> list[Node]:
        if "scan" in self.fail_on:
            raise self.fail_on["scan"]
        return list(self.scan_result)


class FakeVMBackend(NodeBackend):
    """Backend without any lifecycle support, like the unimplemented hypervisors."""

    technology = VirtualizationTechnology.KVM
    kind = NodeKind.VM


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend_table(fake_backend: FakeBackend) -> BackendTable:
    return BackendTable(
        {
            VirtualizationTechnology.DOCKER: fake_backend,
            VirtualizationTechnology.KVM: FakeVMBackend(runner=FakeRunner()),
        }
    )


@pytest.fixture
def make_detector() -> Callable[..., Callable[[], Any]]:
    """Factory for capability detectors reporting fixed flags."""

    def factory(**flags: bool) -> Callable[[], Any]:
        async def detect() -> VirtualizationCapability:
            return VirtualizationCapability(**flags)

        return detect

    return factory


@pytest.fixture
def make_runner() -> type[FakeRunner]:
    return FakeRunner


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    return FakeBackend


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A small project with a src tree, a build script and an unrelated file."""
    project = tmp_path / "project"
    (project / "src" / "lib").mkdir(parents=True)
    (project / "src" / "main.c").write_text("int main(void) { return 0; }\n")
    (project / "src" / "lib" / "util.h").write_text("#pragma once\n")
    (project / "build.sh").write_text("echo building\n")
    (project / "secrets.env").write_text("TOKEN=hunter2\n")
    return project


@pytest.fixture
def src_only_policy() -> SecurityPolicy:
    return SecurityPolicy(
        allowed_paths=["./src", "./build.sh"],
        blocked_commands=["rm", "chmod"],
        max_build_time_seconds=30,
    )


class StructlogCapture:
    """Helper to capture structlog events."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        """Capture event dict (structlog processor signature)."""
        self.events.append(event_dict.copy())
        return event_dict

    def named(self, event: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e.get("event") == event]


@pytest.fixture
def log_capture() -> StructlogCapture:
    """Fixture providing structlog event capture."""
    return StructlogCapture()


@pytest.fixture
def build_logger(log_capture: StructlogCapture) -> Iterator[BuildLogger]:
    """BuildLogger whose events land in log_capture."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            log_capture,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.BoundLogger,
        context_class=dict,
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield BuildLogger(structlog.get_logger("test_buildstudio"))
    structlog.reset_defaults()
