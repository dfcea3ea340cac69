"""
Semantic version handling for the GitHub update service.

Versions are compared on (major, minor, patch) only. Release tags may
carry a leading "v" and a pre-release or build suffix; the suffix is kept
for classification (pre-release releases are never picked as "latest")
but takes no part in ordering.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from gh_update.errors import InvalidVersionError

# Accepts: 1.0.0, v1.2.3, 2.0.0-beta.1, 1.0.0-alpha+build.123
SEMVER_PATTERN = re.compile(
    r"^[vV]?"
    r"(?P<major>0|[1-9]\d*)"
    r"\.(?P<minor>0|[1-9]\d*)"
    r"\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<buildmetadata>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


def parse_semantic_version(version: str) -> dict[str, Any]:
    """
    Parse and validate a semantic version string.

    Args:
        version: Version string (e.g., "1.0.0", "v1.2.3-beta.1").

    Returns:
        Dictionary with parsed version components:
        - major, minor, patch: integers
        - prerelease: Pre-release identifier (optional)
        - buildmetadata: Build metadata (optional)

    Raises:
        InvalidVersionError: If version string is invalid.
    """
    if not version or not version.strip():
        raise InvalidVersionError(
            "Version string cannot be empty",
            details={"version": version},
        )

    match = SEMVER_PATTERN.match(version.strip())
    if not match:
        raise InvalidVersionError(
            f"Invalid semantic version: {version}",
            details={
                "version": version,
                "format": "[v]MAJOR.MINOR.PATCH[-PRERELEASE][+BUILDMETADATA]",
                "examples": ["1.0.0", "v1.2.3", "2.0.0-beta.1"],
            },
        )

    return {
        "major": int(match.group("major")),
        "minor": int(match.group("minor")),
        "patch": int(match.group("patch")),
        "prerelease": match.group("prerelease"),
        "buildmetadata": match.group("buildmetadata"),
    }


@dataclass(frozen=True, order=True)
class Version:
    """
    Immutable (major, minor, patch) version value.

    Dataclass ordering compares the fields as a tuple, which gives the
    lexicographic total order on (major, minor, patch).
    """

    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        for name in ("major", "minor", "patch"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise InvalidVersionError(
                    f"Version component {name} must be a non-negative integer",
                    details={name: value},
                )

    @classmethod
    def parse(cls, version: str) -> Version:
        """Parse a version string or release tag, ignoring any suffix."""
        parsed = parse_semantic_version(version)
        return cls(parsed["major"], parsed["minor"], parsed["patch"])

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def is_prerelease_tag(version: str) -> bool:
    """Return True if a version string carries a pre-release suffix."""
    return parse_semantic_version(version)["prerelease"] is not None


def compare_versions(v1: Version | str, v2: Version | str) -> int:
    """
    Compare two versions.

    Args:
        v1: First version (Version or string).
        v2: Second version (Version or string).

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        InvalidVersionError: If either version string is invalid.
    """
    a = v1 if isinstance(v1, Version) else Version.parse(v1)
    b = v2 if isinstance(v2, Version) else Version.parse(v2)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def satisfies(version: Version | str, minimum: Version | str | None) -> bool:
    """
    Check a version against an optional minimum bound.

    Args:
        version: The version to test.
        minimum: Minimum required version; None means no constraint.

    Returns:
        True if minimum is None or version >= minimum.
    """
    if minimum is None:
        return True
    return compare_versions(version, minimum) >= 0
