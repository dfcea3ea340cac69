"""
Rollback archive management.

Every install packs the project tree (minus the preserve list) into a
single rollback archive before anything destructive happens. Restoring
the archive is the rollback primitive used both by the explicit rollback
operation and by automatic recovery of a failed install.

Restore procedure:
1. Delete the project tree, keeping preserved paths
2. Extract the archive into the project root
3. Run the dependency installer
4. Delete the consumed archive

A failed restore keeps the archive so the caller can retry.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

from gh_update.archive import ZipArchiveCodec
from gh_update.errors import FileSystemError, NoRollbackAvailableError
from gh_update.installer import DependencyInstaller
from gh_update.logging import get_logger
from gh_update.operations import (
    clean_tree,
    ensure_directory,
    is_preserved,
    write_json_atomic,
)

logger = get_logger(__name__)

ARCHIVE_FILE = "rollback.zip"
RECORD_FILE = "rollback.json"


class RollbackArchive(BaseModel):
    """
    Metadata of the current rollback archive.

    Attributes:
        version: Version the archive restores (the version an install replaced).
        path: Archive path.
        size_bytes: Archive size.
        created_at: ISO 8601 creation time.
    """

    version: str
    path: str
    size_bytes: int
    created_at: str


class RollbackManager:
    """Creates and restores the rollback archive."""

    def __init__(
        self,
        rollback_dir: Path,
        project_root: Path,
        preserve: Sequence[str],
        codec: ZipArchiveCodec,
        installer: DependencyInstaller,
    ) -> None:
        """
        Initialize the rollback manager.

        Args:
            rollback_dir: Directory holding the archive and its record.
            project_root: Project tree to archive and restore.
            preserve: Preserve patterns relative to project_root.
            codec: Archive codec.
            installer: Dependency installer run after a restore.
        """
        self.rollback_dir = rollback_dir
        self.project_root = project_root
        self.preserve = list(preserve)
        self.codec = codec
        self.installer = installer

    @property
    def archive_path(self) -> Path:
        return self.rollback_dir / ARCHIVE_FILE

    @property
    def record_path(self) -> Path:
        return self.rollback_dir / RECORD_FILE

    def _exclude(self, rel_path: str) -> bool:
        return is_preserved(rel_path, self.preserve)

    def create_archive(self, version: str) -> RollbackArchive:
        """
        Pack the project tree into the rollback archive.

        Any previous archive is overwritten.

        Args:
            version: Currently installed version.

        Returns:
            Metadata of the new archive.

        Raises:
            FileSystemError: If the archive cannot be written.
        """
        ensure_directory(self.rollback_dir)
        # Drop the old record first so a failed pack never pairs it with a new archive
        self.record_path.unlink(missing_ok=True)
        files = self.codec.pack(self.project_root, self.archive_path, exclude=self._exclude)

        info = RollbackArchive(
            version=version,
            path=str(self.archive_path),
            size_bytes=self.archive_path.stat().st_size,
            created_at=datetime.now(UTC).isoformat(),
        )
        write_json_atomic(self.record_path, info.model_dump())

        logger.info(
            "Created rollback archive",
            extra={"version": version, "path": info.path, "files": files},
        )
        return info

    def get_info(self) -> RollbackArchive | None:
        """
        Return metadata of the rollback archive, or None if there is none.

        Never modifies anything on disk.
        """
        if not self.record_path.is_file() or not self.archive_path.is_file():
            return None
        try:
            data = json.loads(self.record_path.read_text(encoding="utf-8"))
            return RollbackArchive.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(
                "Ignoring unreadable rollback record",
                extra={"path": str(self.record_path), "error": str(e)},
            )
            return None

    async def restore(self) -> str:
        """
        Restore the project tree from the rollback archive.

        Returns:
            The restored version.

        Raises:
            NoRollbackAvailableError: If there is no rollback archive.
            FileSystemError: If the tree cannot be cleaned or extracted.
            DependencyInstallError: If the dependency installer fails.
        """
        info = self.get_info()
        if info is None:
            raise NoRollbackAvailableError(
                details={"rollback_dir": str(self.rollback_dir)},
            )

        logger.info(
            f"Starting rollback to version {info.version}",
            extra={"version": info.version, "archive": info.path},
        )
        await asyncio.to_thread(clean_tree, self.project_root, self.preserve)
        await asyncio.to_thread(
            self.codec.unpack,
            self.archive_path,
            self.project_root,
            exclude=self._exclude,
        )
        await self.installer.install(self.project_root)
        await asyncio.to_thread(self.clear)

        logger.info(f"Rollback to version {info.version} complete")
        return info.version

    def clear(self) -> bool:
        """
        Delete the rollback archive and its record.

        Returns:
            True if an archive was removed.
        """
        existed = self.archive_path.exists()
        try:
            self.record_path.unlink(missing_ok=True)
            self.archive_path.unlink(missing_ok=True)
        except OSError as e:
            raise FileSystemError(
                f"Failed to remove rollback archive: {e}",
                details={"path": str(self.archive_path), "error": str(e)},
            ) from e
        if existed:
            logger.info("Removed rollback archive", extra={"path": str(self.archive_path)})
        return existed
