"""
Upgrade path resolution.

Given the installed version and the published releases, decide which
version to install next. A release may declare the oldest version allowed
to upgrade directly to it; installations older than that must first step
through the release matching the declared minimum. Only one hop is
resolved per check; callers re-check after each install.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, Field

from gh_update.errors import ResolutionError
from gh_update.logging import get_logger
from gh_update.metadata import ReleaseMetadata, parse_release_metadata
from gh_update.releases import Release
from gh_update.version import Version, satisfies

logger = get_logger(__name__)


class UpgradePlan(BaseModel):
    """
    The resolved decision of which version to install next.

    Attributes:
        current_version: Installed version.
        latest_version: Newest stable release.
        target_version: Version to install next.
        is_latest_compatible: Whether the installed version may upgrade
            straight to the latest release.
        minimum_version_required: Minimum declared by the latest release.
        update_available: Whether target_version is newer than current.
        download_ready: Whether a cached download matches target_version.
    """

    current_version: str
    latest_version: str
    target_version: str
    is_latest_compatible: bool
    minimum_version_required: str | None = None
    update_available: bool
    download_ready: bool = Field(default=False)

    @property
    def is_intermediate(self) -> bool:
        """True when the target is a stepping stone rather than the latest release."""
        return self.target_version != self.latest_version


def select_latest_release(releases: Sequence[Release]) -> Release:
    """
    Pick the newest stable release.

    Args:
        releases: Releases from the release source.

    Returns:
        The stable release with the highest version.

    Raises:
        ResolutionError: If there is no stable release.
    """
    stable = [release for release in releases if release.is_stable]
    if not stable:
        raise ResolutionError(
            "No published stable release found",
            details={"release_count": len(releases)},
        )
    return max(stable, key=lambda release: release.parsed_version)


def find_release(releases: Sequence[Release], version: Version) -> Release | None:
    """Return the published release whose version equals `version`."""
    matches = [
        release
        for release in releases
        if not release.draft and release.parsed_version == version
    ]
    if not matches:
        return None
    # Prefer a stable build when a pre-release shares the same number
    matches.sort(key=lambda release: release.prerelease)
    return matches[0]


def resolve_upgrade_path(
    current: Version,
    releases: Sequence[Release],
    latest_metadata: ReleaseMetadata | None = None,
) -> tuple[UpgradePlan, Release]:
    """
    Compute the next safe upgrade target.

    Args:
        current: Installed version.
        releases: All releases from the release source.
        latest_metadata: Metadata of the latest release; parsed from its
            notes when not given.

    Returns:
        Tuple of (plan, target release).

    Raises:
        ResolutionError: If there is no stable release, or the release
            required as an intermediate step does not exist.
    """
    latest = select_latest_release(releases)
    if latest_metadata is None:
        latest_metadata = parse_release_metadata(latest.notes)
    minimum = latest_metadata.minimum_version
    latest_version = latest.parsed_version

    if minimum is None or satisfies(current, minimum):
        target = latest
        is_latest_compatible = True
    else:
        is_latest_compatible = False
        stepping_stone = find_release(releases, minimum)
        if stepping_stone is None:
            raise ResolutionError(
                f"Version {latest_version} requires {minimum} or newer, but no "
                f"release {minimum} exists to upgrade through",
                details={
                    "current_version": str(current),
                    "latest_version": str(latest_version),
                    "minimum_version_required": str(minimum),
                },
            )
        target = stepping_stone

    target_version = target.parsed_version
    plan = UpgradePlan(
        current_version=str(current),
        latest_version=str(latest_version),
        target_version=str(target_version),
        is_latest_compatible=is_latest_compatible,
        minimum_version_required=str(minimum) if minimum is not None else None,
        update_available=target_version > current,
    )

    logger.info(
        "Resolved upgrade path",
        extra={
            "current_version": plan.current_version,
            "latest_version": plan.latest_version,
            "target_version": plan.target_version,
            "is_latest_compatible": plan.is_latest_compatible,
        },
    )
    return plan, target
