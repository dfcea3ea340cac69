"""
Filesystem operations for clean installs and rollbacks.

This module implements:
- Preserve-list matching (paths a clean install must never touch)
- Deleting a project tree while keeping preserved paths
- Copying a staged tree into the project root
- Safe directory creation/removal and atomic JSON writes

Preserve patterns are POSIX paths relative to the project root and may use
fnmatch wildcards. Matching is done on the whole relative path, so `*`
also spans `/` (`*.log` preserves `logs/app.log`). A pattern preserves the
matching path and everything below it. Directories that may contain
preserved paths are descended into rather than removed, and are removed
afterwards if nothing inside them was kept.

All OSErrors are converted to FileSystemError.
"""

from __future__ import annotations

import fnmatch
import json
import os
import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from gh_update.errors import FileSystemError
from gh_update.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Preserve-list matching
# =============================================================================


def is_preserved(rel_path: str, patterns: Sequence[str]) -> bool:
    """
    Check whether a relative path is covered by the preserve list.

    A path is preserved when it, or any of its ancestors, matches a pattern.

    Args:
        rel_path: POSIX path relative to the project root.
        patterns: Preserve patterns.

    Returns:
        True if the path must not be touched.
    """
    parts = rel_path.split("/")
    for depth in range(1, len(parts) + 1):
        prefix = "/".join(parts[:depth])
        if any(fnmatch.fnmatchcase(prefix, pattern) for pattern in patterns):
            return True
    return False


def has_preserved_descendant(rel_dir: str, patterns: Sequence[str]) -> bool:
    """
    Check whether a pattern may match something strictly inside a directory.

    Literal patterns match below `rel_dir` only when they start with
    `rel_dir/`. A pattern with wildcards may match below `rel_dir` whenever
    its literal prefix agrees with `rel_dir/`, since the wildcards can span
    `/`. The answer errs towards True; clean_tree removes directories it
    descended into but left empty.

    Args:
        rel_dir: POSIX directory path relative to the project root.
        patterns: Preserve patterns.

    Returns:
        True if the directory must be descended into instead of removed.
    """
    dir_prefix = f"{rel_dir}/"
    for pattern in patterns:
        literal = _literal_prefix(pattern)
        if literal == pattern:
            if pattern.startswith(dir_prefix):
                return True
        elif dir_prefix.startswith(literal) or literal.startswith(dir_prefix):
            return True
    return False


def _literal_prefix(pattern: str) -> str:
    """Return the part of a pattern before its first wildcard character."""
    for index, char in enumerate(pattern):
        if char in "*?[":
            return pattern[:index]
    return pattern


# =============================================================================
# Directory helpers
# =============================================================================


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        FileSystemError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise FileSystemError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def safe_remove_directory(path: Path, *, ignore_errors: bool = True) -> bool:
    """
    Safely remove a directory and its contents.

    Args:
        path: Path to the directory to remove.
        ignore_errors: If True, ignore errors during removal.

    Returns:
        True if directory was removed, False if it didn't exist.

    Raises:
        FileSystemError: If removal fails and ignore_errors is False.
    """
    if not path.exists():
        return False

    try:
        shutil.rmtree(path, ignore_errors=ignore_errors)
        logger.debug("Removed directory", extra={"path": str(path)})
        return True
    except OSError as e:
        if not ignore_errors:
            raise FileSystemError(
                f"Failed to remove directory: {path}",
                details={"path": str(path), "error": str(e)},
            ) from e
        return False


def remove_path(path: Path) -> None:
    """
    Remove a file, symlink or directory tree.

    Raises:
        FileSystemError: If removal fails.
    """
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        raise FileSystemError(
            f"Failed to remove {path}: {e}",
            details={"path": str(path), "error": str(e)},
        ) from e


def clear_directory(path: Path) -> int:
    """
    Remove every entry inside a directory, keeping the directory itself.

    Returns:
        Number of top-level entries removed.

    Raises:
        FileSystemError: If an entry cannot be removed.
    """
    if not path.is_dir():
        return 0
    removed = 0
    for entry in sorted(path.iterdir()):
        remove_path(entry)
        removed += 1
    return removed


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """
    Write JSON with an atomic rename so readers never see a partial file.

    Raises:
        FileSystemError: If the file cannot be written.
    """
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise FileSystemError(
            f"Failed to write {path}: {e}",
            details={"path": str(path), "error": str(e)},
        ) from e


# =============================================================================
# Clean install primitives
# =============================================================================


def clean_tree(root: Path, preserve: Sequence[str]) -> int:
    """
    Delete everything under `root` except preserved paths.

    Args:
        root: Project root.
        preserve: Preserve patterns relative to root.

    Returns:
        Number of files, symlinks and directories removed (a removed
        directory counts once).

    Raises:
        FileSystemError: If an entry cannot be removed.
    """
    try:
        removed = _clean_children(root, root, preserve)
    except OSError as e:
        raise FileSystemError(
            f"Failed to clean {root}: {e}",
            details={"path": str(root), "error": str(e)},
        ) from e

    logger.info(
        "Cleaned project tree",
        extra={"root": str(root), "removed": removed, "preserved": list(preserve)},
    )
    return removed


def _clean_children(root: Path, directory: Path, preserve: Sequence[str]) -> int:
    removed = 0
    for entry in sorted(directory.iterdir()):
        rel = entry.relative_to(root).as_posix()
        if is_preserved(rel, preserve):
            continue
        if (
            entry.is_dir()
            and not entry.is_symlink()
            and has_preserved_descendant(rel, preserve)
        ):
            removed += _clean_children(root, entry, preserve)
            if not any(entry.iterdir()):
                entry.rmdir()
                removed += 1
            continue
        remove_path(entry)
        removed += 1
    return removed


def copy_tree(source: Path, destination: Path, preserve: Sequence[str] = ()) -> int:
    """
    Copy every file from `source` into `destination`.

    Paths matching the preserve list are skipped so that preserved files in
    the destination are never overwritten. Empty directories are recreated.

    Args:
        source: Staged tree.
        destination: Project root.
        preserve: Preserve patterns relative to destination.

    Returns:
        Number of files copied.

    Raises:
        FileSystemError: If a file cannot be copied.
    """
    copied = 0
    try:
        for dirpath, dirnames, filenames in os.walk(source):
            current = Path(dirpath)
            rel_dir = current.relative_to(source).as_posix()

            kept_dirs = []
            for name in sorted(dirnames):
                rel = name if rel_dir == "." else f"{rel_dir}/{name}"
                if is_preserved(rel, preserve):
                    continue
                (destination / rel).mkdir(parents=True, exist_ok=True)
                kept_dirs.append(name)
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                rel = name if rel_dir == "." else f"{rel_dir}/{name}"
                if is_preserved(rel, preserve):
                    continue
                target = destination / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(current / name, target, follow_symlinks=False)
                copied += 1
    except OSError as e:
        raise FileSystemError(
            f"Failed to copy {source} to {destination}: {e}",
            details={
                "source": str(source),
                "destination": str(destination),
                "error": str(e),
            },
        ) from e

    logger.info(
        "Copied tree",
        extra={"source": str(source), "destination": str(destination), "files": copied},
    )
    return copied
