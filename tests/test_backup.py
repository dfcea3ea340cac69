"""
Tests for pre-install backups.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from gh_update.backup import MANIFEST_FILE, BackupManager


@pytest.fixture
def manager(project_root: Path) -> BackupManager:
    return BackupManager(project_root / ".gh-update" / "backups", project_root)


class TestCreateBackup:
    """Tests for BackupManager.create."""

    def test_copies_listed_files(self, manager: BackupManager, project_root: Path) -> None:
        record = manager.create("1.0.0", ["version.json", "lib"])

        backup_dir = Path(record.path)
        assert backup_dir.parent == manager.backups_dir
        assert backup_dir.name.endswith("_v1.0.0")
        assert record.version == "1.0.0"
        assert record.contained_files == ["version.json", "lib"]
        assert (backup_dir / "version.json").read_text() == (
            project_root / "version.json"
        ).read_text()
        assert (backup_dir / "lib" / "helpers.py").exists()

    def test_writes_manifest(self, manager: BackupManager) -> None:
        record = manager.create("1.0.0", ["version.json"])

        data = json.loads((Path(record.path) / MANIFEST_FILE).read_text())

        assert data["version"] == "1.0.0"
        assert data["contained_files"] == ["version.json"]
        assert data["timestamp"] == record.timestamp

    def test_missing_files_skipped(
        self, manager: BackupManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="gh_update"):
            record = manager.create("1.0.0", ["version.json", "missing.cfg"])

        assert record.contained_files == ["version.json"]
        assert "not found" in caplog.text

    def test_each_backup_gets_its_own_directory(self, manager: BackupManager) -> None:
        first = manager.create("1.0.0", ["version.json"])
        second = manager.create("1.1.0", ["version.json"])

        assert first.path != second.path
        assert Path(first.path).is_dir()


class TestListAndClear:
    """Tests for listing and clearing backups."""

    def test_list_newest_first(self, manager: BackupManager) -> None:
        manager.create("1.0.0", ["version.json"])
        manager.create("1.1.0", ["version.json"])

        versions = [record.version for record in manager.list_backups()]

        assert versions == ["1.1.0", "1.0.0"]

    def test_list_ignores_foreign_directories(self, manager: BackupManager) -> None:
        manager.create("1.0.0", ["version.json"])
        (manager.backups_dir / "random").mkdir()
        broken = manager.backups_dir / "broken"
        broken.mkdir()
        (broken / MANIFEST_FILE).write_text("{")

        assert len(manager.list_backups()) == 1

    def test_list_without_directory(self, manager: BackupManager) -> None:
        assert manager.list_backups() == []

    def test_clear(self, manager: BackupManager) -> None:
        manager.create("1.0.0", ["version.json"])
        manager.create("1.1.0", ["version.json"])

        assert manager.clear() == 2
        assert manager.list_backups() == []

    def test_clear_without_directory(self, manager: BackupManager) -> None:
        assert manager.clear() == 0
