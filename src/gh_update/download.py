"""
Download cache for release assets.

At most one downloaded release is kept. The asset is streamed to a
temporary file and renamed on completion, so a failed download never
leaves a partial archive behind. A JSON sidecar records which version the
cached archive belongs to.
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

from gh_update.errors import FileSystemError
from gh_update.logging import get_logger
from gh_update.operations import clear_directory, ensure_directory, write_json_atomic
from gh_update.releases import Release, ReleaseSource

logger = get_logger(__name__)

RECORD_FILE = "download.json"


class DownloadRecord(BaseModel):
    """
    A release archive cached on disk.

    Attributes:
        version: Version of the downloaded release.
        local_path: Absolute path of the archive.
        size_bytes: Archive size.
        downloaded_at: ISO 8601 completion timestamp.
        tag: Git tag of the release.
    """

    version: str
    local_path: str
    size_bytes: int
    downloaded_at: str
    tag: str = ""

    @property
    def path(self) -> Path:
        return Path(self.local_path)


class DownloadManager:
    """Fetches release assets into the download cache."""

    def __init__(self, downloads_dir: Path, source: ReleaseSource) -> None:
        """
        Initialize the download manager.

        Args:
            downloads_dir: Cache directory (created on first download).
            source: Release source that streams assets.
        """
        self.downloads_dir = downloads_dir
        self.source = source

    @property
    def record_path(self) -> Path:
        return self.downloads_dir / RECORD_FILE

    def get_record(self) -> DownloadRecord | None:
        """
        Return the cached download, or None.

        A sidecar that is unreadable or points at a missing archive counts
        as no download.
        """
        if not self.record_path.is_file():
            return None
        try:
            data = json.loads(self.record_path.read_text(encoding="utf-8"))
            record = DownloadRecord.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(
                "Ignoring unreadable download record",
                extra={"path": str(self.record_path), "error": str(e)},
            )
            return None
        if not record.path.is_file():
            logger.warning(
                "Download record points at a missing archive",
                extra={"path": record.local_path},
            )
            return None
        return record

    def matches(self, version: str) -> bool:
        """Check whether the cached download is for `version`."""
        record = self.get_record()
        return record is not None and record.version == version

    async def download(self, release: Release) -> DownloadRecord:
        """
        Download a release asset, replacing any previous download.

        Args:
            release: Release to fetch.

        Returns:
            Record of the new download.

        Raises:
            NetworkError: If the asset cannot be fetched.
            FileSystemError: If the archive cannot be written.
        """
        await asyncio.to_thread(ensure_directory, self.downloads_dir)
        final_path = self.downloads_dir / f"release-{release.version}.zip"
        temp_path = self.downloads_dir / f".{final_path.name}.partial"

        size = 0
        try:
            handle = await asyncio.to_thread(open, temp_path, "wb")
            try:
                async for chunk in self.source.iter_asset(release):
                    await asyncio.to_thread(handle.write, chunk)
                    size += len(chunk)
            finally:
                await asyncio.to_thread(handle.close)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise FileSystemError(
                f"Failed to write download {final_path}: {e}",
                details={"path": str(final_path), "error": str(e)},
            ) from e
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        record = DownloadRecord(
            version=release.version,
            local_path=str(final_path),
            size_bytes=size,
            downloaded_at=datetime.now(UTC).isoformat(),
            tag=release.tag,
        )
        await asyncio.to_thread(self._commit, temp_path, record)

        logger.info(
            "Download complete",
            extra={"version": record.version, "path": record.local_path, "size_bytes": size},
        )
        return record

    def _commit(self, temp_path: Path, record: DownloadRecord) -> None:
        """Replace the previous download with the finished one."""
        previous = self.get_record()
        try:
            os.replace(temp_path, record.path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise FileSystemError(
                f"Failed to store download {record.local_path}: {e}",
                details={"path": record.local_path, "error": str(e)},
            ) from e
        if previous is not None and previous.path != record.path:
            previous.path.unlink(missing_ok=True)
        write_json_atomic(self.record_path, record.model_dump())

    def discard(self) -> None:
        """Remove the cached download and its record."""
        record = self.get_record()
        try:
            self.record_path.unlink(missing_ok=True)
            if record is not None:
                record.path.unlink(missing_ok=True)
        except OSError as e:
            raise FileSystemError(
                f"Failed to discard download: {e}",
                details={"path": str(self.downloads_dir), "error": str(e)},
            ) from e
        logger.debug("Discarded download", extra={"path": str(self.downloads_dir)})

    def clear(self) -> int:
        """
        Delete everything in the download cache.

        Returns:
            Number of cached archives removed (the record file is not counted).
        """
        if not self.downloads_dir.is_dir():
            return 0
        archives = sum(
            1 for entry in self.downloads_dir.iterdir() if entry.name != RECORD_FILE
        )
        clear_directory(self.downloads_dir)
        logger.info("Cleared download cache", extra={"removed": archives})
        return archives
