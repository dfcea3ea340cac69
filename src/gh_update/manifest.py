"""
Project manifest handling.

The manifest is a JSON file at the project root (version.json by default)
with the installed version and, optionally, the oldest version allowed to
upgrade to it:

    {"version": "1.5.0", "minimumVersionRequired": "1.2.0"}
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gh_update.errors import FileSystemError, InvalidVersionError
from gh_update.version import Version, parse_semantic_version


class ProjectManifest(BaseModel):
    """
    Version information shipped with the application.

    Attributes:
        version: Version of the application tree.
        minimum_version_required: Oldest installed version allowed to
            upgrade to this tree (optional).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: str = Field(
        ...,
        description="Semantic version of the application tree",
    )
    minimum_version_required: str | None = Field(
        default=None,
        alias="minimumVersionRequired",
        description="Oldest installed version allowed to upgrade to this tree",
    )

    @field_validator("version", "minimum_version_required")
    @classmethod
    def validate_version(cls, v: str | None) -> str | None:
        """Validate the field is a semantic version."""
        if v is not None:
            parse_semantic_version(v)
        return v

    @property
    def parsed_version(self) -> Version:
        return Version.parse(self.version)

    @property
    def minimum_version(self) -> Version | None:
        if self.minimum_version_required is None:
            return None
        return Version.parse(self.minimum_version_required)


def read_manifest(path: Path) -> ProjectManifest:
    """
    Load a project manifest.

    Args:
        path: Path to the manifest file.

    Returns:
        Parsed ProjectManifest.

    Raises:
        FileSystemError: If the file is missing, unreadable or not JSON.
        InvalidVersionError: If a version field is not a semantic version.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise FileSystemError(
            f"Manifest not found: {path}",
            details={"path": str(path)},
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise FileSystemError(
            f"Cannot read manifest {path}: {e}",
            details={"path": str(path), "error": str(e)},
        ) from e

    if not isinstance(data, dict):
        raise FileSystemError(
            f"Manifest must contain a JSON object: {path}",
            details={"path": str(path)},
        )

    try:
        return ProjectManifest.model_validate(data)
    except ValidationError as e:
        raise InvalidVersionError(
            f"Invalid manifest {path}: {e.errors()[0]['msg']}",
            details={"path": str(path), "errors": e.errors(include_url=False)},
        ) from e
