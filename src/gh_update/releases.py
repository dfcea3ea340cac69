"""
Release source abstraction and the GitHub Releases implementation.

The engine only needs two things from a release host: the list of
published releases and a byte stream for a release's asset. ReleaseSource
captures that boundary; GitHubReleaseSource implements it on top of the
GitHub REST API with httpx.
"""

from __future__ import annotations

import fnmatch
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, Field

from gh_update import __version__
from gh_update.errors import InvalidVersionError, NetworkError
from gh_update.logging import get_logger
from gh_update.version import Version, parse_semantic_version

if TYPE_CHECKING:
    from gh_update.config import RepositoryConfig

logger = get_logger(__name__)

PER_PAGE = 100
MAX_PAGES = 10
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class Release(BaseModel):
    """
    A published release, read-only to the engine.

    Attributes:
        tag: Git tag of the release (e.g., "v1.2.0").
        version: Normalized version string derived from the tag ("1.2.0").
        name: Release title.
        notes: Release notes text (may embed a metadata block).
        published_at: ISO 8601 publication timestamp.
        prerelease: Whether the release is a pre-release.
        draft: Whether the release is an unpublished draft.
        asset_name: File name of the downloadable asset.
        asset_url: Public download URL of the asset.
        asset_api_url: API URL of the asset (needed for private repositories).
    """

    tag: str
    version: str
    name: str = ""
    notes: str = ""
    published_at: str | None = None
    prerelease: bool = False
    draft: bool = False
    asset_name: str | None = None
    asset_url: str | None = None
    asset_api_url: str | None = None

    @property
    def parsed_version(self) -> Version:
        return Version.parse(self.version)

    @property
    def is_stable(self) -> bool:
        """A published release that is not a pre-release."""
        return not (self.draft or self.prerelease)

    @classmethod
    def from_github(
        cls,
        data: dict[str, Any],
        asset_pattern: str = "*.zip",
    ) -> Release | None:
        """
        Build a Release from a GitHub API release object.

        Args:
            data: Release object returned by the GitHub API.
            asset_pattern: Glob selecting the asset; the zipball is used
                when no asset matches.

        Returns:
            Release, or None if the tag is not a semantic version.
        """
        tag = data.get("tag_name") or ""
        try:
            parsed = parse_semantic_version(tag)
        except InvalidVersionError:
            logger.debug("Skipping release with non-semver tag", extra={"tag": tag})
            return None

        asset_name = None
        asset_url = data.get("zipball_url")
        asset_api_url = None
        for asset in data.get("assets") or []:
            if fnmatch.fnmatch(asset.get("name", ""), asset_pattern):
                asset_name = asset["name"]
                asset_url = asset.get("browser_download_url")
                asset_api_url = asset.get("url")
                break
        if asset_name is None and asset_url:
            asset_name = f"{tag}.zip"

        return cls(
            tag=tag,
            version=f"{parsed['major']}.{parsed['minor']}.{parsed['patch']}",
            name=data.get("name") or "",
            notes=data.get("body") or "",
            published_at=data.get("published_at"),
            prerelease=bool(data.get("prerelease")) or parsed["prerelease"] is not None,
            draft=bool(data.get("draft")),
            asset_name=asset_name,
            asset_url=asset_url,
            asset_api_url=asset_api_url,
        )


class ReleaseSource(ABC):
    """
    Abstract base class for release hosts.

    Implementations translate transport failures into NetworkError.
    """

    @abstractmethod
    async def list_releases(self) -> list[Release]:
        """
        List published releases, newest first.

        Raises:
            NetworkError: If the release host cannot be reached.
        """

    @abstractmethod
    def iter_asset(self, release: Release) -> AsyncIterator[bytes]:
        """
        Stream the asset of a release.

        Args:
            release: Release whose asset is fetched.

        Returns:
            Async iterator over the asset bytes.

        Raises:
            NetworkError: If the asset cannot be fetched.
        """


class GitHubReleaseSource(ReleaseSource):
    """
    Release source backed by the GitHub Releases REST API.

    Example:
        >>> source = GitHubReleaseSource("acme", "widget", token="ghp_...")
        >>> releases = await source.list_releases()
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None = None,
        *,
        api_url: str = "https://api.github.com",
        asset_pattern: str = "*.zip",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the GitHub release source.

        Args:
            owner: Repository owner.
            repo: Repository name.
            token: Optional bearer token for private repositories.
            api_url: Base URL of the GitHub REST API.
            asset_pattern: Glob selecting the release asset.
            timeout: HTTP timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._owner = owner
        self._repo = repo
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._asset_pattern = asset_pattern
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: RepositoryConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GitHubReleaseSource:
        """Create a GitHubReleaseSource from repository configuration."""
        return cls(
            owner=config.owner,
            repo=config.repo,
            token=config.token,
            api_url=config.api_url,
            asset_pattern=config.asset_pattern,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    @property
    def releases_url(self) -> str:
        return f"{self._api_url}/repos/{self._owner}/{self._repo}/releases"

    def _headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        headers = {
            "Accept": accept,
            "User-Agent": f"gh-update-service/{__version__}",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def list_releases(self) -> list[Release]:
        """
        List releases of the repository, newest first.

        Releases whose tag is not a semantic version are skipped.

        Raises:
            NetworkError: On transport failure or an error response.
        """
        releases: list[Release] = []
        try:
            async with self._client() as client:
                for page in range(1, MAX_PAGES + 1):
                    response = await client.get(
                        self.releases_url,
                        params={"per_page": PER_PAGE, "page": page},
                        headers=self._headers(),
                    )
                    _raise_for_status(response, "list releases")
                    batch = response.json()
                    if not isinstance(batch, list):
                        raise NetworkError(
                            "Unexpected response from release listing",
                            details={"url": self.releases_url},
                            status_code=response.status_code,
                        )
                    for data in batch:
                        release = Release.from_github(data, self._asset_pattern)
                        if release is not None:
                            releases.append(release)
                    if len(batch) < PER_PAGE:
                        break
        except httpx.HTTPError as e:
            logger.error("Release listing failed", extra={"error": str(e)})
            raise NetworkError(
                f"Failed to list releases: {e}",
                details={"url": self.releases_url},
            ) from e
        except ValueError as e:
            raise NetworkError(
                f"Invalid release listing response: {e}",
                details={"url": self.releases_url},
            ) from e

        logger.info(
            "Listed releases",
            extra={"repository": f"{self._owner}/{self._repo}", "count": len(releases)},
        )
        return releases

    async def iter_asset(self, release: Release) -> AsyncIterator[bytes]:
        """
        Stream a release's asset.

        Private repositories need the API asset URL with an octet-stream
        Accept header; public assets use the browser download URL.

        Raises:
            NetworkError: If the release has no asset or the download fails.
        """
        if self._token and release.asset_api_url:
            url = release.asset_api_url
            headers = self._headers(accept="application/octet-stream")
        elif release.asset_url:
            url = release.asset_url
            headers = self._headers()
        else:
            raise NetworkError(
                f"Release {release.tag} has no downloadable asset",
                details={"tag": release.tag},
            )

        logger.info(
            "Downloading release asset",
            extra={"tag": release.tag, "asset": release.asset_name},
        )
        try:
            async with self._client() as client:
                async with client.stream("GET", url, headers=headers) as response:
                    if response.is_error:
                        await response.aread()
                    _raise_for_status(response, f"download {release.asset_name}")
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        yield chunk
        except httpx.HTTPError as e:
            logger.error(
                "Asset download failed",
                extra={"tag": release.tag, "error": str(e)},
            )
            raise NetworkError(
                f"Failed to download {release.tag}: {e}",
                details={"tag": release.tag, "url": url},
            ) from e


def _raise_for_status(response: httpx.Response, action: str) -> None:
    """
    Translate an error response into a NetworkError.

    Raises:
        NetworkError: If the response status is 4xx or 5xx.
    """
    if not response.is_error:
        return

    status = response.status_code
    if status == 401:
        reason = "authentication failed (check the token)"
    elif status == 429 or (
        status == 403 and response.headers.get("x-ratelimit-remaining") == "0"
    ):
        reason = "GitHub API rate limit exceeded"
    elif status == 403:
        reason = "access forbidden"
    elif status == 404:
        reason = "not found (or the token lacks access)"
    else:
        reason = f"HTTP {status}"

    details: dict[str, Any] = {"url": str(response.request.url)}
    reset = response.headers.get("x-ratelimit-reset")
    if reset:
        details["rate_limit_reset"] = reset

    raise NetworkError(
        f"Failed to {action}: {reason}",
        details=details,
        status_code=status,
    )
