"""Command-line interface for Build Studio.

    buildstudio build <project_dir>        run every build in the project manifest
    buildstudio run "<command>" --cwd DIR  run a single build command
    buildstudio validate "<command>"       check a command against the policy
    buildstudio caps                       show available virtualization
    buildstudio sysinfo                    show host information
    buildstudio scan                       list existing build nodes

Build output is streamed as it arrives: stdout to the console, stderr to
the error console.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from rich import box
from rich.console import Console
from rich.table import Table

from buildstudio.build import BuildEngine
from buildstudio.capabilities import detect_capabilities, get_system_info
from buildstudio.core.errors import BuildStudioError
from buildstudio.core.factory import create_backend_table
from buildstudio.core.logging import configure_structlog
from buildstudio.core.models import BuildOutcome, OutputLine, OutputStream, SecurityPolicy
from buildstudio.discovery import discover
from buildstudio.manifest import BuildStep, find_manifest, load_manifest, run_manifest
from buildstudio.policies import load_policy
from buildstudio.security import validate_command

console = Console()
err_console = Console(stderr=True)


class ConsoleObserver:
    """Prints build output lines as they arrive."""

    def __init__(self, label: str | None = None) -> None:
        self.label = label

    def on_output(self, line: OutputLine) -> None:
        text = f"[{self.label}] {line.text}" if self.label else line.text
        target = err_console if line.stream is OutputStream.STDERR else console
        target.print(text, markup=False, highlight=False)

    def on_finished(self, outcome: BuildOutcome) -> None:
        if outcome.success:
            console.print(f"[green]Build finished[/green] in {outcome.duration_ms / 1000:.1f}s")
        else:
            err_console.print(f"[red]Build failed:[/red] {outcome.error}")
        if outcome.cleanup_error:
            err_console.print(f"[yellow]Sandbox cleanup failed:[/yellow] {outcome.cleanup_error}")


def _policy_from_args(args: argparse.Namespace) -> SecurityPolicy:
    policy = load_policy(args.policy)
    if args.no_sandbox:
        policy = policy.model_copy(update={"enable_sandbox": False})
    if args.timeout is not None:
        policy = policy.model_copy(update={"max_build_time_seconds": args.timeout or None})
    return policy


async def cmd_build(args: argparse.Namespace) -> int:
    project_dir = Path(args.project_dir)
    manifest = load_manifest(args.config or find_manifest(project_dir))
    if not manifest.builds:
        err_console.print("[yellow]No builds defined in manifest[/yellow]")
        return 0

    engine = BuildEngine(policy=_policy_from_args(args))

    def observer_for(step: BuildStep) -> ConsoleObserver:
        console.print(f"\n[bold cyan]Building {step.name}[/bold cyan] ({step.platform})")
        return ConsoleObserver(step.name)

    results = await run_manifest(engine, manifest, project_dir, observer_for)

    table = Table(title="Build summary", box=box.SIMPLE)
    table.add_column("Build")
    table.add_column("Platform")
    table.add_column("Toolchain")
    table.add_column("Result")
    table.add_column("Time", justify="right")
    for step, outcome in results:
        result = "[green]ok[/green]" if outcome.success else f"[red]{outcome.error_kind.value}[/red]"
        table.add_row(step.name, step.platform, outcome.toolchain, result, f"{outcome.duration_ms / 1000:.1f}s")
    console.print(table)

    return 0 if all(outcome.success for _, outcome in results) else 1


async def cmd_run(args: argparse.Namespace) -> int:
    engine = BuildEngine(policy=_policy_from_args(args))
    outcome = await engine.run(args.command, args.cwd, args.platform, observer=ConsoleObserver())
    return 0 if outcome.success else 1


async def cmd_validate(args: argparse.Namespace) -> int:
    policy = load_policy(args.policy)
    if validate_command(args.command, policy):
        console.print("[green]allowed[/green]")
        return 0
    console.print("[red]blocked[/red]")
    return 1


async def cmd_caps(args: argparse.Namespace) -> int:
    capability = await detect_capabilities()
    table = Table(title="Virtualization support", box=box.SIMPLE)
    table.add_column("Technology")
    table.add_column("Available")
    for name, available in capability.model_dump().items():
        table.add_row(name, "[green]yes[/green]" if available else "[dim]no[/dim]")
    console.print(table)
    return 0


async def cmd_sysinfo(args: argparse.Namespace) -> int:
    info = await get_system_info()
    console.print(f"OS:        {info.os}")
    console.print(f"Arch:      {info.arch}")
    console.print(f"Memory:    {info.memory_mb} MB")
    console.print(f"CPU cores: {info.cpu_cores}")
    available = [tech.value for tech in info.virtualization_support.available()]
    console.print(f"Virtualization: {', '.join(available) or 'none'}")
    return 0


async def cmd_scan(args: argparse.Namespace) -> int:
    result = await discover(create_backend_table())
    table = Table(title="Build nodes", box=box.SIMPLE)
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Technology")
    table.add_column("Platform")
    table.add_column("State")
    for node in result.nodes:
        table.add_row(node.id, node.name, node.technology.value, node.platform, node.state.value)
    console.print(table)
    for technology, error in result.failures.items():
        err_console.print(f"[dim]{technology}: {error}[/dim]")
    return 0


COMMANDS = {
    "build": cmd_build,
    "run": cmd_run,
    "validate": cmd_validate,
    "caps": cmd_caps,
    "sysinfo": cmd_sysinfo,
    "scan": cmd_scan,
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="buildstudio",
        description="Build Studio - sandboxed multi-platform builds and local build nodes",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")
    sub = parser.add_subparsers(dest="command_name", required=True)

    def add_policy_options(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--policy",
            default="config/policy.toml",
            metavar="FILE",
            help="Security policy TOML (default: config/policy.toml)",
        )
        p.add_argument("--no-sandbox", action="store_true", help="Run in the project directory")
        p.add_argument(
            "--timeout",
            type=float,
            default=None,
            metavar="SECONDS",
            help="Maximum build time (0 = unlimited)",
        )

    build = sub.add_parser("build", help="Run every build in the project manifest")
    build.add_argument("project_dir", nargs="?", default=".", help="Project directory")
    build.add_argument("--config", default=None, metavar="FILE", help="Manifest path")
    add_policy_options(build)

    run = sub.add_parser("run", help="Run a single build command")
    run.add_argument("command", help="Build command")
    run.add_argument("--cwd", default=".", help="Project directory")
    run.add_argument("--platform", default=None, help="Target platform")
    add_policy_options(run)

    validate = sub.add_parser("validate", help="Check a command against the policy")
    validate.add_argument("command", help="Command to check")
    validate.add_argument("--policy", default="config/policy.toml", metavar="FILE")

    sub.add_parser("caps", help="Show available virtualization technologies")
    sub.add_parser("sysinfo", help="Show host information")
    sub.add_parser("scan", help="List existing build nodes")

    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)
    configure_structlog(
        level=logging.DEBUG if args.verbose else logging.WARNING, use_json=args.json_logs
    )

    try:
        return asyncio.run(COMMANDS[args.command_name](args))
    except BuildStudioError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 2
    except KeyboardInterrupt:
        err_console.print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
