"""
Update lifecycle engine.

UpdateLifecycleEngine is the facade an application embeds to update itself
from GitHub Releases:

    check    → resolve the next safe target version
    download → fetch the target's release asset
    install  → clean-install the download (restart required afterwards)
    rollback → restore the tree replaced by the most recent install

One engine exists per process. It is created explicitly with
create_updater() (or by constructing UpdateLifecycleEngine) and torn down
with reset_updater() or close().
"""

from __future__ import annotations

import asyncio
from typing import Any, ClassVar

from pydantic import BaseModel

from gh_update.archive import ZipArchiveCodec
from gh_update.backup import BackupManager, BackupRecord
from gh_update.config import UpdaterConfig
from gh_update.download import DownloadManager
from gh_update.errors import ConfigError, DownloadMissingError, ResolutionError
from gh_update.install import InstallManager
from gh_update.installer import DependencyInstaller
from gh_update.logging import get_logger
from gh_update.manifest import read_manifest
from gh_update.metadata import parse_release_metadata
from gh_update.releases import GitHubReleaseSource, Release, ReleaseSource
from gh_update.resolver import UpgradePlan, resolve_upgrade_path, select_latest_release
from gh_update.rollback import RollbackArchive, RollbackManager
from gh_update.state_machine import Operation, OperationState, OperationStateMachine
from gh_update.version import Version

logger = get_logger(__name__)

DOWNLOADS_DIR = "downloads"
BACKUPS_DIR = "backups"
ROLLBACK_DIR = "rollback"
STAGING_DIR = "staging"


# =============================================================================
# Result models
# =============================================================================


class OperationResult(BaseModel):
    """Base class for facade results."""

    def to_dict(self) -> dict[str, Any]:
        """Convert the result to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")


class CheckResult(OperationResult):
    """Outcome of a check: the upgrade plan plus release details of the target."""

    current_version: str
    latest_version: str
    target_version: str
    update_available: bool
    is_latest_compatible: bool
    minimum_version_required: str | None = None
    download_ready: bool = False
    release_name: str = ""
    release_notes: str = ""
    published_at: str | None = None
    changelog: dict[str, list[str]] | None = None


class DownloadResult(OperationResult):
    version: str
    path: str
    size_bytes: int
    is_latest: bool
    is_intermediate: bool
    latest_version: str


class InstallResult(OperationResult):
    """
    Outcome of a successful install.

    The new version only runs after the caller restarts the process.
    """

    old_version: str
    new_version: str
    backup_path: str
    rollback_available: bool
    rollback_path: str | None = None
    restart_required: bool = True


class RollbackResult(OperationResult):
    version: str
    restart_required: bool = True


class ClearDownloadsResult(OperationResult):
    removed: int


class ClearBackupsResult(OperationResult):
    removed_backups: int
    rollback_removed: bool
    warning: str = (
        "Backups and the rollback archive were deleted; rollback is no longer possible"
    )


# =============================================================================
# Engine
# =============================================================================


class UpdateLifecycleEngine:
    """
    Orchestrates check, download, install and rollback.

    Only one engine may be active per process; constructing a second one
    raises ConfigError until the first is closed.

    Example:
        >>> engine = create_updater(load_config())
        >>> plan = await engine.check()
        >>> if plan.update_available:
        ...     await engine.download()
        ...     result = await engine.install()
    """

    _active: ClassVar[UpdateLifecycleEngine | None] = None

    def __init__(
        self,
        config: UpdaterConfig,
        *,
        release_source: ReleaseSource | None = None,
        archive_codec: ZipArchiveCodec | None = None,
        dependency_installer: DependencyInstaller | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Updater configuration.
            release_source: Release host; defaults to GitHub built from config.
            archive_codec: Archive codec; defaults to ZipArchiveCodec.
            dependency_installer: Installer; defaults to one built from config.

        Raises:
            ConfigError: If the repository owner or name is missing, or an
                engine is already active.
        """
        if not config.repository.owner or not config.repository.repo:
            raise ConfigError(
                "Repository owner and name are required",
                details={
                    "owner": config.repository.owner,
                    "repo": config.repository.repo,
                },
            )
        if UpdateLifecycleEngine._active is not None:
            raise ConfigError(
                "An update engine is already active in this process",
                details={"project_root": str(UpdateLifecycleEngine._active.project_root)},
            )

        self.config = config
        self.project_root = config.project_root
        self.state_dir = config.state_dir
        self.preserve = config.effective_preserve_list()

        self._source = release_source or GitHubReleaseSource.from_config(config.repository)
        self._codec = archive_codec or ZipArchiveCodec()
        self._installer = dependency_installer or DependencyInstaller.from_config(
            config.dependencies
        )
        self._state_machine = OperationStateMachine()

        self._downloads = DownloadManager(self.state_dir / DOWNLOADS_DIR, self._source)
        self._backups = BackupManager(self.state_dir / BACKUPS_DIR, self.project_root)
        self._rollback = RollbackManager(
            self.state_dir / ROLLBACK_DIR,
            self.project_root,
            self.preserve,
            self._codec,
            self._installer,
        )
        self._install = InstallManager(
            project_root=self.project_root,
            staging_dir=self.state_dir / STAGING_DIR,
            manifest_file=config.paths.manifest_file,
            preserve=self.preserve,
            backup_files=list(config.backup_files),
            codec=self._codec,
            installer=self._installer,
            downloads=self._downloads,
            backups=self._backups,
            rollback=self._rollback,
        )

        # Session plan from the most recent successful check
        self._plan: UpgradePlan | None = None
        self._target: Release | None = None

        UpdateLifecycleEngine._active = self
        logger.info(
            "Update engine initialized",
            extra={
                "repository": f"{config.repository.owner}/{config.repository.repo}",
                "project_root": str(self.project_root),
                "state_dir": str(self.state_dir),
            },
        )

    def close(self) -> None:
        """Release the process-wide slot so a new engine may be created."""
        if UpdateLifecycleEngine._active is self:
            UpdateLifecycleEngine._active = None
            logger.debug("Update engine closed")

    @property
    def state_machine(self) -> OperationStateMachine:
        return self._state_machine

    @property
    def plan(self) -> UpgradePlan | None:
        """The plan resolved by the most recent successful check."""
        return self._plan

    def get_state(self) -> OperationState:
        """Return the current operation state."""
        return self._state_machine.state

    def get_current_version(self) -> Version:
        """
        Read the installed version from the project manifest.

        Raises:
            FileSystemError: If the manifest is missing or unreadable.
            InvalidVersionError: If the manifest version is invalid.
        """
        return read_manifest(self.config.manifest_path).parsed_version

    # -------------------------------------------------------------------------
    # Primary operations
    # -------------------------------------------------------------------------

    async def check(self) -> CheckResult:
        """
        Resolve the next safe upgrade target.

        Returns:
            CheckResult describing the plan.

        Raises:
            StateConflictError: If another operation is in progress.
            NetworkError: If releases cannot be listed.
            ResolutionError: If no stable release exists, or the required
                intermediate release is missing.
        """
        with self._state_machine.guard(Operation.CHECK):
            current = await asyncio.to_thread(self.get_current_version)
            releases = await self._source.list_releases()

            latest = select_latest_release(releases)
            plan, target = resolve_upgrade_path(
                current, releases, parse_release_metadata(latest.notes)
            )
            plan.download_ready = await asyncio.to_thread(
                self._downloads.matches, plan.target_version
            )
            self._plan = plan
            self._target = target

        changelog = parse_release_metadata(target.notes).changelog
        return CheckResult(
            **plan.model_dump(),
            release_name=target.name,
            release_notes=target.notes,
            published_at=target.published_at,
            changelog=changelog.model_dump() if changelog is not None else None,
        )

    async def download(self) -> DownloadResult:
        """
        Download the target resolved by the last check.

        Raises:
            StateConflictError: If another operation is in progress.
            ResolutionError: If no check ran in this session or no update
                is available.
            NetworkError: If the asset cannot be fetched.
            FileSystemError: If the archive cannot be written.
        """
        with self._state_machine.guard(Operation.DOWNLOAD):
            plan, target = self._plan, self._target
            if plan is None or target is None:
                raise ResolutionError(
                    "No upgrade plan; run check before download",
                )
            if not plan.update_available:
                raise ResolutionError(
                    f"No update available: version {plan.current_version} is current",
                    details={
                        "current_version": plan.current_version,
                        "target_version": plan.target_version,
                    },
                )

            record = await self._downloads.download(target)
            self._plan = plan.model_copy(update={"download_ready": True})

        return DownloadResult(
            version=record.version,
            path=record.local_path,
            size_bytes=record.size_bytes,
            is_latest=not plan.is_intermediate,
            is_intermediate=plan.is_intermediate,
            latest_version=plan.latest_version,
        )

    async def install(self) -> InstallResult:
        """
        Install the downloaded release.

        Raises:
            StateConflictError: If another operation is in progress.
            DownloadMissingError: If there is no download, or it does not
                match the target of the last check.
            VersionMismatchError: If the installed version is too old.
            FileSystemError: If a filesystem step fails.
            DependencyInstallError: If the dependency installer fails.
            RecoveryFailedError: If the automatic recovery failed as well.
        """
        with self._state_machine.guard(Operation.INSTALL):
            record = await asyncio.to_thread(self._downloads.get_record)
            if record is None:
                raise DownloadMissingError(
                    "No downloaded release to install; run download first",
                )
            if self._plan is not None and self._plan.target_version != record.version:
                raise DownloadMissingError(
                    f"Downloaded version {record.version} does not match the "
                    f"resolved target {self._plan.target_version}",
                    details={
                        "downloaded_version": record.version,
                        "target_version": self._plan.target_version,
                    },
                )

            current = await asyncio.to_thread(self.get_current_version)
            outcome = await self._install.install(record, current)
            self._plan = None
            self._target = None

        return InstallResult(
            old_version=outcome.old_version,
            new_version=outcome.new_version,
            backup_path=outcome.backup.path,
            rollback_available=True,
            rollback_path=outcome.rollback.path,
        )

    async def rollback(self) -> RollbackResult:
        """
        Restore the tree replaced by the most recent install.

        Raises:
            StateConflictError: If another operation is in progress.
            NoRollbackAvailableError: If there is no rollback archive.
            FileSystemError: If the restore fails (the archive is kept).
            DependencyInstallError: If the dependency installer fails.
        """
        with self._state_machine.guard(Operation.ROLLBACK):
            version = await self._rollback.restore()
            self._plan = None
            self._target = None

        return RollbackResult(version=version)

    # -------------------------------------------------------------------------
    # Read-only queries
    # -------------------------------------------------------------------------

    def get_rollback_info(self) -> RollbackArchive | None:
        """Return the rollback archive metadata, or None if rollback is unavailable."""
        return self._rollback.get_info()

    def list_backups(self) -> list[BackupRecord]:
        """Return all pre-install backups, newest first."""
        return self._backups.list_backups()

    # -------------------------------------------------------------------------
    # Maintenance operations
    # -------------------------------------------------------------------------

    async def clear_downloads(self) -> ClearDownloadsResult:
        """
        Delete the download cache.

        Raises:
            StateConflictError: While downloading or installing.
        """
        self._state_machine.ensure_permitted(Operation.CLEAR_DOWNLOADS)
        removed = self._downloads.clear()
        if self._plan is not None:
            self._plan = self._plan.model_copy(update={"download_ready": False})
        return ClearDownloadsResult(removed=removed)

    async def clear_backups(self) -> ClearBackupsResult:
        """
        Delete all backups and the rollback archive.

        Raises:
            StateConflictError: While installing.
        """
        self._state_machine.ensure_permitted(Operation.CLEAR_BACKUPS)
        removed = self._backups.clear()
        rollback_removed = self._rollback.clear()
        result = ClearBackupsResult(
            removed_backups=removed,
            rollback_removed=rollback_removed,
        )
        logger.warning(result.warning)
        return result


# =============================================================================
# Process-wide registry
# =============================================================================


def create_updater(config: UpdaterConfig, **kwargs: Any) -> UpdateLifecycleEngine:
    """
    Create the process-wide update engine.

    Args:
        config: Updater configuration.
        **kwargs: Collaborator overrides passed to UpdateLifecycleEngine.

    Raises:
        ConfigError: If an engine already exists or the config is incomplete.
    """
    return UpdateLifecycleEngine(config, **kwargs)


def get_updater() -> UpdateLifecycleEngine | None:
    """Return the process-wide engine, or None if none was created."""
    return UpdateLifecycleEngine._active


def reset_updater() -> None:
    """Tear down the process-wide engine (useful for testing)."""
    engine = UpdateLifecycleEngine._active
    if engine is not None:
        engine.close()
