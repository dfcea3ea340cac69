"""
Release-notes metadata parsing.

Release notes may embed a machine-readable block inside an HTML comment,
which GitHub does not render:

    <!-- update-metadata
    minimumVersionRequired: 1.5.0
    changelog:
      added:
        - Dark mode
      fixed:
        - Crash on startup
    -->

The body is YAML, so a JSON object works too. A missing block, a malformed
body or unknown keys never fail a check; they mean "no constraint".
"""

from __future__ import annotations

import re
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from gh_update.errors import InvalidVersionError
from gh_update.logging import get_logger
from gh_update.version import Version

logger = get_logger(__name__)

METADATA_MARKER = "update-metadata"

_BLOCK_PATTERN = re.compile(
    r"<!--\s*" + re.escape(METADATA_MARKER) + r"\b(?P<body>.*?)-->",
    re.DOTALL | re.IGNORECASE,
)

CHANGELOG_CATEGORIES = ("fixed", "added", "changed", "removed", "security")

_MINIMUM_KEYS = ("minimumVersionRequired", "minimum_version_required")


class Changelog(BaseModel):
    """Categorized changelog entries declared by a release."""

    fixed: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    changed: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    security: list[str] = Field(default_factory=list)

    @field_validator(*CHANGELOG_CATEGORIES, mode="before")
    @classmethod
    def coerce_entries(cls, v: Any) -> list[str]:
        """Accept a single string or a list of scalars."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            return [str(item) for item in v if item is not None]
        raise ValueError("changelog entries must be a string or a list")

    def is_empty(self) -> bool:
        return not any(getattr(self, category) for category in CHANGELOG_CATEGORIES)


class ReleaseMetadata(BaseModel):
    """
    Structured metadata parsed from a release's notes.

    Attributes:
        minimum_version_required: Oldest installed version allowed to
            upgrade directly to this release, or None for no constraint.
        changelog: Categorized changelog, or None if not declared.
    """

    minimum_version_required: str | None = Field(
        default=None,
        description="Minimum installed version required to upgrade to this release",
    )
    changelog: Changelog | None = Field(
        default=None,
        description="Categorized changelog entries",
    )

    @property
    def minimum_version(self) -> Version | None:
        """The minimum version as a Version value."""
        if self.minimum_version_required is None:
            return None
        return Version.parse(self.minimum_version_required)


def extract_metadata_block(notes: str | None) -> str | None:
    """
    Return the raw body of the first metadata block in release notes.

    Args:
        notes: Release notes text (may be None).

    Returns:
        The block body, or None when the notes contain no block.
    """
    if not notes:
        return None
    match = _BLOCK_PATTERN.search(notes)
    if match is None:
        return None
    return match.group("body")


def parse_release_metadata(notes: str | None) -> ReleaseMetadata:
    """
    Parse the metadata block embedded in release notes.

    Args:
        notes: Release notes text.

    Returns:
        ReleaseMetadata; empty when no usable block is present.
    """
    body = extract_metadata_block(notes)
    if body is None:
        return ReleaseMetadata()

    try:
        data = yaml.safe_load(body)
    except yaml.YAMLError as e:
        logger.warning(
            "Ignoring malformed release metadata block",
            extra={"error": str(e)},
        )
        return ReleaseMetadata()

    if data is None:
        return ReleaseMetadata()
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring release metadata block that is not a mapping",
            extra={"type": type(data).__name__},
        )
        return ReleaseMetadata()

    return ReleaseMetadata(
        minimum_version_required=_read_minimum_version(data),
        changelog=_read_changelog(data.get("changelog")),
    )


def _read_minimum_version(data: dict[str, Any]) -> str | None:
    for key in _MINIMUM_KEYS:
        raw = data.get(key)
        if raw is None:
            continue
        try:
            return str(Version.parse(str(raw)))
        except InvalidVersionError:
            logger.warning(
                "Ignoring invalid minimum version in release metadata",
                extra={"value": str(raw)},
            )
            return None
    return None


def _read_changelog(raw: Any) -> Changelog | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Ignoring changelog that is not a mapping")
        return None

    known = {
        str(key).lower(): value
        for key, value in raw.items()
        if str(key).lower() in CHANGELOG_CATEGORIES
    }
    try:
        changelog = Changelog(**known)
    except ValueError as e:
        logger.warning("Ignoring malformed changelog", extra={"error": str(e)})
        return None
    return None if changelog.is_empty() else changelog
