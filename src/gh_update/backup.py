"""
Pre-install backups.

Before every install, a fixed list of project paths (by default only the
manifest) is copied into a new timestamped directory. Backups accumulate
until explicitly cleared; they are never restored automatically.
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from gh_update.errors import FileSystemError
from gh_update.logging import get_logger
from gh_update.operations import ensure_directory, remove_path, write_json_atomic

logger = get_logger(__name__)

MANIFEST_FILE = "backup.json"


class BackupRecord(BaseModel):
    """
    A timestamped pre-install backup.

    Attributes:
        version: Installed version at the time of the backup.
        timestamp: ISO 8601 creation time.
        path: Backup directory.
        contained_files: Relative paths copied into the backup.
    """

    version: str
    timestamp: str
    path: str
    contained_files: list[str] = Field(default_factory=list)


class BackupManager:
    """Creates and enumerates pre-install backups."""

    def __init__(self, backups_dir: Path, project_root: Path) -> None:
        self.backups_dir = backups_dir
        self.project_root = project_root

    def create(self, version: str, files: Sequence[str]) -> BackupRecord:
        """
        Copy `files` into a new backup directory.

        Missing paths are skipped with a warning.

        Args:
            version: Currently installed version.
            files: Paths relative to the project root (files or directories).

        Returns:
            Record of the new backup.

        Raises:
            FileSystemError: If the backup cannot be written.
        """
        now = datetime.now(UTC)
        name = f"{now:%Y%m%dT%H%M%S%fZ}_v{version}"
        backup_dir = self.backups_dir / name
        suffix = 1
        while backup_dir.exists():
            backup_dir = self.backups_dir / f"{name}-{suffix}"
            suffix += 1
        ensure_directory(backup_dir)

        contained: list[str] = []
        try:
            for rel in files:
                source = self.project_root / rel
                if not source.exists() and not source.is_symlink():
                    logger.warning(
                        "Backup path not found, skipping",
                        extra={"path": rel},
                    )
                    continue
                target = backup_dir / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                if source.is_dir() and not source.is_symlink():
                    shutil.copytree(source, target, symlinks=True)
                else:
                    shutil.copy2(source, target, follow_symlinks=False)
                contained.append(rel)
        except OSError as e:
            raise FileSystemError(
                f"Failed to create backup in {backup_dir}: {e}",
                details={"path": str(backup_dir), "error": str(e)},
            ) from e

        record = BackupRecord(
            version=version,
            timestamp=now.isoformat(),
            path=str(backup_dir),
            contained_files=contained,
        )
        write_json_atomic(backup_dir / MANIFEST_FILE, record.model_dump())

        logger.info(
            "Created backup",
            extra={"path": record.path, "version": version, "files": contained},
        )
        return record

    def list_backups(self) -> list[BackupRecord]:
        """Return all backups, newest first."""
        if not self.backups_dir.is_dir():
            return []

        records = []
        for entry in self.backups_dir.iterdir():
            manifest = entry / MANIFEST_FILE
            if not manifest.is_file():
                continue
            try:
                data = json.loads(manifest.read_text(encoding="utf-8"))
                records.append(BackupRecord.model_validate(data))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning(
                    "Ignoring unreadable backup manifest",
                    extra={"path": str(manifest), "error": str(e)},
                )
        records.sort(key=lambda record: record.timestamp, reverse=True)
        return records

    def clear(self) -> int:
        """
        Delete every backup directory.

        Returns:
            Number of backups removed.
        """
        if not self.backups_dir.is_dir():
            return 0
        removed = 0
        for entry in sorted(self.backups_dir.iterdir()):
            remove_path(entry)
            removed += 1
        logger.info("Cleared backups", extra={"removed": removed})
        return removed
