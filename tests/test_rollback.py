"""
Tests for rollback archive management.

Tests cover:
- Creating the rollback archive
- get_info read-only behavior
- Restoring the archive (preserve list, dependency installer, consumption)
- Failure handling
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from conftest import snapshot
from gh_update.archive import ZipArchiveCodec
from gh_update.errors import DependencyInstallError, FileSystemError, NoRollbackAvailableError
from gh_update.installer import DependencyInstaller
from gh_update.rollback import RollbackManager

PRESERVE = [".env", ".git", ".gh-update"]


@pytest.fixture
def manager(project_root: Path, noop_installer: DependencyInstaller) -> RollbackManager:
    return RollbackManager(
        project_root / ".gh-update" / "rollback",
        project_root,
        PRESERVE,
        ZipArchiveCodec(),
        noop_installer,
    )


def replace_tree(root: Path) -> None:
    """Simulate an install of version 2.0.0."""
    (root / "app.py").write_text("VERSION = '2.0.0'\n")
    (root / "version.json").write_text(json.dumps({"version": "2.0.0"}))
    (root / "old_module.py").unlink()
    (root / "new_module.py").write_text("added\n")


# =============================================================================
# create_archive / get_info Tests
# =============================================================================


class TestCreateArchive:
    """Tests for RollbackManager.create_archive."""

    def test_creates_archive_and_record(self, manager: RollbackManager) -> None:
        info = manager.create_archive("1.0.0")

        assert info.version == "1.0.0"
        assert Path(info.path) == manager.archive_path
        assert info.size_bytes == manager.archive_path.stat().st_size
        assert manager.get_info() == info

    def test_excludes_preserved_paths(self, manager: RollbackManager) -> None:
        import zipfile

        manager.create_archive("1.0.0")

        with zipfile.ZipFile(manager.archive_path) as zf:
            names = zf.namelist()
        assert ".env" not in names
        assert not any(name.startswith(".gh-update") for name in names)
        assert "app.py" in names

    def test_overwrites_previous_archive(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")
        info = manager.create_archive("1.1.0")

        assert manager.get_info() == info
        assert manager.get_info().version == "1.1.0"


class TestGetInfo:
    """Tests for RollbackManager.get_info."""

    def test_none_without_archive(self, manager: RollbackManager) -> None:
        assert manager.get_info() is None
        assert not manager.rollback_dir.exists()

    def test_none_when_archive_missing(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")
        manager.archive_path.unlink()

        assert manager.get_info() is None
        assert manager.record_path.exists()

    def test_corrupt_record(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")
        manager.record_path.write_text("not json")

        assert manager.get_info() is None


# =============================================================================
# restore Tests
# =============================================================================


class TestRestore:
    """Tests for RollbackManager.restore."""

    @pytest.mark.asyncio
    async def test_restores_previous_tree(
        self, manager: RollbackManager, project_root: Path
    ) -> None:
        before = snapshot(project_root)
        manager.create_archive("1.0.0")
        replace_tree(project_root)

        version = await manager.restore()

        assert version == "1.0.0"
        assert snapshot(project_root) == before
        assert not (project_root / "new_module.py").exists()

    @pytest.mark.asyncio
    async def test_preserved_paths_untouched(
        self, manager: RollbackManager, project_root: Path
    ) -> None:
        manager.create_archive("1.0.0")
        (project_root / ".env").write_text("SECRET=rotated\n")
        (project_root / ".git").mkdir()
        (project_root / ".git" / "HEAD").write_text("ref: main\n")

        await manager.restore()

        assert (project_root / ".env").read_text() == "SECRET=rotated\n"
        assert (project_root / ".git" / "HEAD").read_text() == "ref: main\n"

    @pytest.mark.asyncio
    async def test_archive_consumed(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")

        await manager.restore()

        assert manager.get_info() is None
        with pytest.raises(NoRollbackAvailableError):
            await manager.restore()

    @pytest.mark.asyncio
    async def test_runs_dependency_installer(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")

        with patch.object(manager.installer, "install", new=AsyncMock(return_value=True)) as m:
            await manager.restore()

        m.assert_awaited_once_with(manager.project_root)

    @pytest.mark.asyncio
    async def test_installer_failure_keeps_archive(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")
        failing = AsyncMock(side_effect=DependencyInstallError("pip failed", returncode=1))

        with patch.object(manager.installer, "install", new=failing):
            with pytest.raises(DependencyInstallError):
                await manager.restore()

        assert manager.get_info() is not None

    @pytest.mark.asyncio
    async def test_corrupt_archive_keeps_archive(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")
        manager.archive_path.write_bytes(b"corrupted")

        with pytest.raises(FileSystemError):
            await manager.restore()

        assert manager.get_info() is not None

    @pytest.mark.asyncio
    async def test_no_archive(self, manager: RollbackManager) -> None:
        with pytest.raises(NoRollbackAvailableError):
            await manager.restore()


class TestClear:
    """Tests for RollbackManager.clear."""

    def test_clear(self, manager: RollbackManager) -> None:
        manager.create_archive("1.0.0")

        assert manager.clear() is True
        assert manager.get_info() is None
        assert manager.clear() is False
