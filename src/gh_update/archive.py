"""
ZIP archive codec.

Packs and unpacks project trees with exact fidelity: POSIX permission bits,
empty directories and symlinks survive a round trip. Entries that would
escape the destination directory are rejected.

Methods are synchronous; the engine runs them through asyncio.to_thread.
"""

from __future__ import annotations

import os
import shutil
import stat
import zipfile
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from gh_update.errors import FileSystemError
from gh_update.logging import get_logger

logger = get_logger(__name__)

ExcludeFunc = Callable[[str], bool]


class ZipArchiveCodec:
    """Pack and unpack ZIP archives."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self._compression = compression

    def pack(
        self,
        source_dir: Path,
        destination: Path,
        *,
        exclude: ExcludeFunc | None = None,
    ) -> int:
        """
        Archive a directory tree.

        The archive is written under a temporary name and renamed into
        place, so an existing archive at `destination` is only replaced
        once the new one is complete.

        Args:
            source_dir: Directory to archive.
            destination: Archive path.
            exclude: Predicate on POSIX paths relative to source_dir;
                excluded directories are not descended into.

        Returns:
            Number of files and symlinks archived.

        Raises:
            FileSystemError: If the archive cannot be written.
        """
        temp_path = destination.with_name(f".{destination.name}.partial")
        count = 0
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(temp_path, "w", compression=self._compression) as zf:
                for dirpath, dirnames, filenames in os.walk(source_dir):
                    current = Path(dirpath)
                    rel_dir = current.relative_to(source_dir).as_posix()

                    kept = []
                    for name in sorted(dirnames):
                        rel = _join(rel_dir, name)
                        if exclude is not None and exclude(rel):
                            continue
                        path = current / name
                        if path.is_symlink():
                            # os.walk lists symlinked directories without following them
                            self._write_symlink(zf, path, rel)
                            count += 1
                            continue
                        zf.write(path, f"{rel}/")
                        kept.append(name)
                    dirnames[:] = kept

                    for name in sorted(filenames):
                        rel = _join(rel_dir, name)
                        if exclude is not None and exclude(rel):
                            continue
                        path = current / name
                        if path.is_symlink():
                            self._write_symlink(zf, path, rel)
                        else:
                            zf.write(path, rel)
                        count += 1
            os.replace(temp_path, destination)
        except (OSError, zipfile.BadZipFile) as e:
            temp_path.unlink(missing_ok=True)
            raise FileSystemError(
                f"Failed to create archive {destination}: {e}",
                details={
                    "source": str(source_dir),
                    "destination": str(destination),
                    "error": str(e),
                },
            ) from e

        logger.debug(
            "Packed archive",
            extra={"source": str(source_dir), "archive": str(destination), "files": count},
        )
        return count

    def unpack(
        self,
        archive: Path,
        destination: Path,
        *,
        exclude: ExcludeFunc | None = None,
    ) -> list[str]:
        """
        Extract an archive into a directory.

        Args:
            archive: Archive path.
            destination: Directory to extract into (created if missing).
            exclude: Predicate on member paths; matching members are skipped.

        Returns:
            Relative paths of the extracted files.

        Raises:
            FileSystemError: If the archive is corrupt, contains unsafe
                paths, or cannot be extracted.
        """
        extracted: list[str] = []
        try:
            destination.mkdir(parents=True, exist_ok=True)
            root = destination.resolve()
            with zipfile.ZipFile(archive) as zf:
                members = zf.infolist()
                for info in members:
                    _check_member_name(info.filename, archive)

                for info in members:
                    rel = info.filename.rstrip("/")
                    if not rel or (exclude is not None and exclude(rel)):
                        continue
                    target = root / rel
                    mode = (info.external_attr >> 16) & 0xFFFF

                    if info.is_dir():
                        _check_contained(root, target, rel, archive)
                        target.mkdir(parents=True, exist_ok=True)
                        _apply_mode(target, mode)
                        continue

                    # Symlinks extracted earlier must not redirect later members
                    _check_contained(root, target.parent, rel, archive)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    if target.is_symlink() or target.is_file():
                        target.unlink()
                    if stat.S_ISLNK(mode):
                        link_target = zf.read(info).decode("utf-8")
                        os.symlink(link_target, target)
                    else:
                        with zf.open(info) as src, open(target, "wb") as dst:
                            shutil.copyfileobj(src, dst)
                        _apply_mode(target, mode)
                    extracted.append(rel)
        except zipfile.BadZipFile as e:
            raise FileSystemError(
                f"Corrupt archive {archive}: {e}",
                details={"archive": str(archive), "error": str(e)},
            ) from e
        except OSError as e:
            raise FileSystemError(
                f"Failed to extract {archive}: {e}",
                details={
                    "archive": str(archive),
                    "destination": str(destination),
                    "error": str(e),
                },
            ) from e

        logger.debug(
            "Unpacked archive",
            extra={
                "archive": str(archive),
                "destination": str(destination),
                "files": len(extracted),
            },
        )
        return extracted

    def _write_symlink(self, zf: zipfile.ZipFile, path: Path, rel: str) -> None:
        info = zipfile.ZipInfo(rel)
        info.create_system = 3  # Unix, so external_attr carries the mode
        info.external_attr = (stat.S_IFLNK | 0o777) << 16
        zf.writestr(info, os.readlink(path))


def _join(rel_dir: str, name: str) -> str:
    return name if rel_dir == "." else f"{rel_dir}/{name}"


def _check_member_name(name: str, archive: Path) -> None:
    path = PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts or (path.parts and ":" in path.parts[0]):
        raise FileSystemError(
            f"Unsafe path in archive: {name}",
            details={"archive": str(archive), "member": name},
        )


def _check_contained(root: Path, path: Path, member: str, archive: Path) -> None:
    """Reject a member whose resolved location leaves the extraction root."""
    if not path.resolve().is_relative_to(root):
        raise FileSystemError(
            f"Unsafe path in archive: {member} escapes the destination through a symlink",
            details={"archive": str(archive), "member": member},
        )


def _apply_mode(path: Path, mode: int) -> None:
    permissions = stat.S_IMODE(mode)
    if permissions:
        os.chmod(path, permissions)
