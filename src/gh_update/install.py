"""
Clean-install transaction.

Installing a downloaded release replaces the whole project tree. The
procedure is a sequence of steps, each recorded on an InstallTransaction
when it begins and when it commits:

1. EXTRACT: unpack the downloaded archive into the staging directory
2. VERIFY: check the staged manifest's minimum version against the
   installed version
3. BACKUP: copy the backup list into a timestamped backup directory
4. ARCHIVE: pack the current tree into the rollback archive
5. REPLACE: delete the tree (keeping preserved paths) and copy the staged
   files in
6. DEPENDENCIES: run the dependency installer
7. CLEANUP: discard the consumed download

If anything fails after REPLACE has begun and before CLEANUP, the rollback
archive is restored automatically and the original error is re-raised. A
failed CLEANUP is only logged; the install has already succeeded. If the
restore fails too, RecoveryFailedError carries both errors. The staging
directory is removed in every case.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from gh_update.archive import ZipArchiveCodec
from gh_update.backup import BackupManager, BackupRecord
from gh_update.download import DownloadManager, DownloadRecord
from gh_update.errors import FileSystemError, RecoveryFailedError, VersionMismatchError
from gh_update.installer import DependencyInstaller
from gh_update.logging import get_logger
from gh_update.manifest import ProjectManifest, read_manifest
from gh_update.operations import (
    clean_tree,
    copy_tree,
    ensure_directory,
    safe_remove_directory,
)
from gh_update.rollback import RollbackArchive, RollbackManager
from gh_update.version import Version, satisfies

logger = get_logger(__name__)


class InstallStep(str, Enum):
    """Ordered steps of the install transaction."""

    EXTRACT = "extract"
    VERIFY = "verify"
    BACKUP = "backup"
    ARCHIVE = "archive"
    REPLACE = "replace"
    DEPENDENCIES = "dependencies"
    CLEANUP = "cleanup"


@dataclass
class InstallTransaction:
    """
    Records how far an install progressed.

    Attributes:
        begun: Steps that were started, in order.
        committed: Steps that completed, in order.
    """

    begun: list[InstallStep] = field(default_factory=list)
    committed: list[InstallStep] = field(default_factory=list)

    def begin(self, step: InstallStep) -> None:
        logger.info(f"Install step started: {step.value}", extra={"step": step.value})
        self.begun.append(step)

    def commit(self, step: InstallStep) -> None:
        logger.info(f"Install step committed: {step.value}", extra={"step": step.value})
        self.committed.append(step)

    @property
    def current_step(self) -> InstallStep | None:
        """The step that was started but not committed, if any."""
        for step in self.begun:
            if step not in self.committed:
                return step
        return None

    @property
    def destructive_started(self) -> bool:
        """True once the project tree may have been modified."""
        return InstallStep.REPLACE in self.begun


@dataclass
class InstallOutcome:
    """Result of a successful install."""

    old_version: str
    new_version: str
    backup: BackupRecord
    rollback: RollbackArchive
    transaction: InstallTransaction


class InstallManager:
    """Runs the install transaction against the project tree."""

    def __init__(
        self,
        *,
        project_root: Path,
        staging_dir: Path,
        manifest_file: str,
        preserve: list[str],
        backup_files: list[str],
        codec: ZipArchiveCodec,
        installer: DependencyInstaller,
        downloads: DownloadManager,
        backups: BackupManager,
        rollback: RollbackManager,
    ) -> None:
        self.project_root = project_root
        self.staging_dir = staging_dir
        self.manifest_file = manifest_file
        self.preserve = preserve
        self.backup_files = backup_files
        self.codec = codec
        self.installer = installer
        self.downloads = downloads
        self.backups = backups
        self.rollback = rollback

    async def install(
        self,
        record: DownloadRecord,
        current_version: Version,
    ) -> InstallOutcome:
        """
        Install a downloaded release.

        Args:
            record: The download to install.
            current_version: Installed version.

        Returns:
            Outcome with the old and new versions, backup and rollback archive.

        Raises:
            VersionMismatchError: If the release requires a newer installed version.
            FileSystemError: If a filesystem step fails (after recovery).
            DependencyInstallError: If the dependency installer fails (after recovery).
            RecoveryFailedError: If the automatic recovery failed as well.
        """
        transaction = InstallTransaction()
        old_version = str(current_version)
        logger.info(
            f"Installing version {record.version} over {old_version}",
            extra={"old_version": old_version, "new_version": record.version},
        )

        try:
            transaction.begin(InstallStep.EXTRACT)
            source_root = await asyncio.to_thread(self._stage, record)
            transaction.commit(InstallStep.EXTRACT)

            transaction.begin(InstallStep.VERIFY)
            new_version = await asyncio.to_thread(
                self._verify, source_root, record, current_version
            )
            transaction.commit(InstallStep.VERIFY)

            transaction.begin(InstallStep.BACKUP)
            backup = await asyncio.to_thread(
                self.backups.create, old_version, self.backup_files
            )
            transaction.commit(InstallStep.BACKUP)

            transaction.begin(InstallStep.ARCHIVE)
            archive = await asyncio.to_thread(self.rollback.create_archive, old_version)
            transaction.commit(InstallStep.ARCHIVE)

            transaction.begin(InstallStep.REPLACE)
            await asyncio.to_thread(self._replace, source_root)
            transaction.commit(InstallStep.REPLACE)

            transaction.begin(InstallStep.DEPENDENCIES)
            await self.installer.install(self.project_root)
            transaction.commit(InstallStep.DEPENDENCIES)
        except Exception as error:
            failed_step = transaction.current_step
            logger.error(
                "Install failed",
                extra={
                    "step": failed_step.value if failed_step else None,
                    "error": str(error),
                },
            )
            if transaction.destructive_started:
                await self._recover(error)
            raise
        finally:
            await asyncio.to_thread(safe_remove_directory, self.staging_dir)

        # The new tree is complete; a stale download must not undo it
        transaction.begin(InstallStep.CLEANUP)
        try:
            await asyncio.to_thread(self.downloads.discard)
        except FileSystemError as e:
            logger.warning(
                "Failed to discard the installed download",
                extra={"version": record.version, "error": e.message},
            )
        else:
            transaction.commit(InstallStep.CLEANUP)

        logger.info(
            f"Installed version {new_version}",
            extra={"old_version": old_version, "new_version": new_version},
        )
        return InstallOutcome(
            old_version=old_version,
            new_version=new_version,
            backup=backup,
            rollback=archive,
            transaction=transaction,
        )

    async def _recover(self, error: Exception) -> None:
        """Restore the rollback archive after a failed destructive step."""
        logger.warning("Restoring previous version after failed install")
        try:
            await self.rollback.restore()
        except Exception as recovery_error:
            logger.critical(
                "Automatic recovery failed",
                extra={"error": str(error), "recovery_error": str(recovery_error)},
            )
            raise RecoveryFailedError(error, recovery_error) from error
        logger.info("Automatic recovery complete")

    def _stage(self, record: DownloadRecord) -> Path:
        """Extract the download into a fresh staging directory."""
        safe_remove_directory(self.staging_dir)
        ensure_directory(self.staging_dir)
        self.codec.unpack(record.path, self.staging_dir)
        return self._find_source_root()

    def _find_source_root(self) -> Path:
        """Strip a single wrapping directory that holds the manifest."""
        if (self.staging_dir / self.manifest_file).exists():
            return self.staging_dir
        entries = list(self.staging_dir.iterdir())
        if (
            len(entries) == 1
            and entries[0].is_dir()
            and (entries[0] / self.manifest_file).exists()
        ):
            logger.debug(
                "Stripping wrapping directory from release archive",
                extra={"directory": entries[0].name},
            )
            return entries[0]
        return self.staging_dir

    def _verify(
        self,
        source_root: Path,
        record: DownloadRecord,
        current_version: Version,
    ) -> str:
        """
        Check the staged release may be installed over current_version.

        Returns:
            Version string of the staged release.
        """
        manifest_path = source_root / self.manifest_file
        if not manifest_path.exists():
            logger.warning(
                "Release archive has no manifest, trusting the download record",
                extra={"manifest": self.manifest_file, "version": record.version},
            )
            return record.version

        staged: ProjectManifest = read_manifest(manifest_path)
        minimum = staged.minimum_version
        if not satisfies(current_version, minimum):
            raise VersionMismatchError(
                f"Version {staged.version} requires {minimum} or newer, "
                f"installed version is {current_version}",
                details={
                    "current_version": str(current_version),
                    "target_version": staged.version,
                    "minimum_version_required": str(minimum),
                },
            )
        new_version = str(staged.parsed_version)
        if new_version != record.version:
            logger.warning(
                "Staged manifest version differs from the release version",
                extra={"manifest_version": new_version, "release_version": record.version},
            )
        return new_version

    def _replace(self, source_root: Path) -> None:
        """Swap the project tree for the staged tree."""
        clean_tree(self.project_root, self.preserve)
        copied = copy_tree(source_root, self.project_root, self.preserve)
        if copied == 0:
            raise FileSystemError(
                "Release archive contained no files",
                details={"staging_dir": str(source_root)},
            )
