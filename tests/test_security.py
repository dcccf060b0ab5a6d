"""Tests for command filtering and sandbox management."""

from __future__ import annotations

import asyncio
import shutil
import sys
import threading
import time
from pathlib import Path

import pytest

from buildstudio import security
from buildstudio.core.errors import SandboxIOError
from buildstudio.core.models import SecurityPolicy
from buildstudio.security import (
    cleanup_sandbox,
    create_sandbox,
    find_blocked_token,
    is_sandbox_dir,
    validate_command,
)


def tree(root: Path) -> dict[str, str]:
    return {
        str(p.relative_to(root)): p.read_text()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class TestValidateCommand:
    """Test the literal substring command filter."""

    def test_clean_command_allowed(self) -> None:
        assert validate_command("make all", SecurityPolicy())

    def test_blocked_token_rejected(self) -> None:
        assert not validate_command("rm -rf /", SecurityPolicy())
        assert find_blocked_token("rm -rf /", SecurityPolicy()) == "rm"

    def test_substring_match_rejects_innocent_commands(self) -> None:
        # Matching is naive substring search, so tokens inside other words count.
        policy = SecurityPolicy()

        assert not validate_command("npm run format", policy)
        assert not validate_command("g++ -o app main.cpp", policy)

    def test_match_is_case_sensitive(self) -> None:
        assert validate_command("RM -rf build", SecurityPolicy())

    def test_trivially_evaded(self) -> None:
        # Quoting splits the token; this filter is not an isolation boundary.
        assert validate_command("r''m -rf build", SecurityPolicy())

    def test_disabled_sandbox_allows_everything(self) -> None:
        policy = SecurityPolicy(enable_sandbox=False)

        assert validate_command("rm -rf /", policy)
        assert find_blocked_token("rm -rf /", policy) is None

    def test_empty_blocklist_allows_everything(self) -> None:
        assert validate_command("rm -rf /", SecurityPolicy(blocked_commands=[]))


class TestCreateSandbox:
    """Test sandbox creation and population."""

    @pytest.mark.asyncio
    async def test_copies_only_existing_allowed_paths(
        self, project_dir: Path, src_only_policy: SecurityPolicy
    ) -> None:
        sandbox = await create_sandbox(project_dir, src_only_policy)

        try:
            assert sandbox.parent == project_dir.resolve()
            assert is_sandbox_dir(sandbox)
            expected = {k: v for k, v in tree(project_dir).items() if k.startswith("src") or k == "build.sh"}
            assert tree(sandbox) == expected
            assert not (sandbox / "secrets.env").exists()
        finally:
            shutil.rmtree(sandbox)

    @pytest.mark.asyncio
    async def test_missing_allowed_paths_skipped(self, project_dir: Path) -> None:
        policy = SecurityPolicy(allowed_paths=["./does-not-exist", "./src"])

        sandbox = await create_sandbox(project_dir, policy)

        try:
            assert sorted(p.name for p in sandbox.iterdir()) == ["src"]
        finally:
            shutil.rmtree(sandbox)

    @pytest.mark.asyncio
    async def test_nested_allowed_path_keeps_relative_location(self, project_dir: Path) -> None:
        policy = SecurityPolicy(allowed_paths=["./src/lib"])

        sandbox = await create_sandbox(project_dir, policy)

        try:
            assert (sandbox / "src" / "lib" / "util.h").read_text() == "#pragma once\n"
            assert not (sandbox / "src" / "main.c").exists()
        finally:
            shutil.rmtree(sandbox)

    @pytest.mark.asyncio
    async def test_escaping_paths_rejected(self, project_dir: Path, tmp_path: Path) -> None:
        (tmp_path / "outside.txt").write_text("outside")
        policy = SecurityPolicy(allowed_paths=["../outside.txt", str(tmp_path / "outside.txt"), "./src"])

        sandbox = await create_sandbox(project_dir, policy)

        try:
            assert sorted(p.name for p in sandbox.iterdir()) == ["src"]
        finally:
            shutil.rmtree(sandbox)

    @pytest.mark.asyncio
    async def test_whole_project_excludes_other_sandboxes(self, project_dir: Path) -> None:
        policy = SecurityPolicy(allowed_paths=["."])
        first = await create_sandbox(project_dir, policy)
        second = await create_sandbox(project_dir, policy)

        try:
            assert first != second
            assert not any(is_sandbox_dir(p) for p in second.iterdir())
            assert (second / "secrets.env").exists()
        finally:
            shutil.rmtree(first)
            shutil.rmtree(second)

    @pytest.mark.asyncio
    async def test_nested_sandbox_named_entries_are_copied(self, project_dir: Path) -> None:
        (project_dir / "src" / ".sandbox-notes.txt").write_text("keep me\n")
        (project_dir / "src" / "lib" / ".sandbox-fixtures").mkdir()
        (project_dir / "src" / "lib" / ".sandbox-fixtures" / "case.txt").write_text("case\n")

        sandbox = await create_sandbox(project_dir, SecurityPolicy(allowed_paths=["./src"]))

        try:
            assert (sandbox / "src" / ".sandbox-notes.txt").read_text() == "keep me\n"
            assert (sandbox / "src" / "lib" / ".sandbox-fixtures" / "case.txt").read_text() == "case\n"
        finally:
            shutil.rmtree(sandbox)

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges on Windows")
    @pytest.mark.asyncio
    async def test_symlinks_are_copied_as_content(self, project_dir: Path) -> None:
        (project_dir / "shared.h").write_text("#define SHARED 1\n")
        (project_dir / "src" / "shared.h").symlink_to(Path("..") / "shared.h")
        (project_dir / "src" / "vendor").symlink_to(project_dir / "src" / "lib", target_is_directory=True)

        sandbox = await create_sandbox(project_dir, SecurityPolicy(allowed_paths=["src"]))

        try:
            copied = sandbox / "src" / "shared.h"
            assert not copied.is_symlink()
            assert copied.read_text() == (project_dir / "src" / "shared.h").read_text()
            assert not (sandbox / "src" / "vendor").is_symlink()
            assert (sandbox / "src" / "vendor" / "util.h").read_text() == "#pragma once\n"
            assert not (sandbox / "shared.h").exists()
        finally:
            shutil.rmtree(sandbox)

    @pytest.mark.asyncio
    async def test_cancelled_copy_is_removed(
        self, project_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        populate = security._populate_sandbox
        copy_started = threading.Event()

        def slow_populate(*args: object) -> Path:
            copy_started.set()
            time.sleep(0.3)
            return populate(*args)

        monkeypatch.setattr(security, "_populate_sandbox", slow_populate)
        task = asyncio.create_task(create_sandbox(project_dir, SecurityPolicy(allowed_paths=["./src"])))
        await asyncio.to_thread(copy_started.wait, 5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert list(project_dir.glob(".sandbox-*")) == []

    @pytest.mark.asyncio
    async def test_disabled_sandbox_returns_project(self, project_dir: Path) -> None:
        path = await create_sandbox(project_dir, SecurityPolicy(enable_sandbox=False))

        assert path == project_dir.resolve()
        assert not list(project_dir.glob(".sandbox-*"))

    @pytest.mark.asyncio
    async def test_missing_project_raises(self, tmp_path: Path) -> None:
        with pytest.raises(SandboxIOError):
            await create_sandbox(tmp_path / "missing", SecurityPolicy())

    @pytest.mark.asyncio
    async def test_copy_failure_reports_partial_sandbox(
        self, project_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_copy(*args: object, **kwargs: object) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(security.shutil, "copy2", broken_copy)
        policy = SecurityPolicy(allowed_paths=["./build.sh"])

        with pytest.raises(SandboxIOError, match="disk full") as exc_info:
            await create_sandbox(project_dir, policy)

        partial = exc_info.value.sandbox_path
        assert partial is not None and partial.exists()
        await cleanup_sandbox(partial)
        assert not partial.exists()


class TestCleanupSandbox:
    """Test sandbox removal."""

    @pytest.mark.asyncio
    async def test_removes_tree_and_is_idempotent(self, project_dir: Path) -> None:
        sandbox = await create_sandbox(project_dir, SecurityPolicy(allowed_paths=["./src"]))

        await cleanup_sandbox(sandbox)
        assert not sandbox.exists()

        await cleanup_sandbox(sandbox)

    @pytest.mark.asyncio
    async def test_refuses_non_sandbox_directory(self, project_dir: Path) -> None:
        with pytest.raises(SandboxIOError, match="non-sandbox"):
            await cleanup_sandbox(project_dir)

        assert (project_dir / "src" / "main.c").exists()
