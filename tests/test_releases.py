"""
Tests for the release source.

Tests cover:
- Release.from_github conversion
- GitHubReleaseSource.list_releases (pagination, headers, error mapping)
- GitHubReleaseSource.iter_asset (public and private assets)
"""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from gh_update.config import RepositoryConfig
from gh_update.errors import NetworkError
from gh_update.releases import PER_PAGE, GitHubReleaseSource, Release

API = "https://api.github.com"
RELEASES_URL = f"{API}/repos/acme/widget/releases"


def github_release(tag: str, **overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "tag_name": tag,
        "name": f"Release {tag}",
        "body": "notes",
        "published_at": "2024-05-01T12:00:00Z",
        "prerelease": False,
        "draft": False,
        "zipball_url": f"{API}/repos/acme/widget/zipball/{tag}",
        "assets": [],
    }
    data.update(overrides)
    return data


def make_source(handler: Any, token: str | None = None) -> GitHubReleaseSource:
    return GitHubReleaseSource(
        "acme",
        "widget",
        token=token,
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# Release.from_github Tests
# =============================================================================


class TestReleaseFromGithub:
    """Tests for Release.from_github."""

    def test_basic_fields(self) -> None:
        release = Release.from_github(github_release("v1.2.0"))

        assert release is not None
        assert release.tag == "v1.2.0"
        assert release.version == "1.2.0"
        assert release.name == "Release v1.2.0"
        assert release.notes == "notes"
        assert release.is_stable is True

    def test_zipball_fallback(self) -> None:
        release = Release.from_github(github_release("v1.2.0"))

        assert release is not None
        assert release.asset_name == "v1.2.0.zip"
        assert release.asset_url == f"{API}/repos/acme/widget/zipball/v1.2.0"
        assert release.asset_api_url is None

    def test_matching_asset_preferred(self) -> None:
        data = github_release(
            "v1.2.0",
            assets=[
                {"name": "checksums.txt", "url": "u1", "browser_download_url": "b1"},
                {"name": "widget-1.2.0.zip", "url": "u2", "browser_download_url": "b2"},
            ],
        )

        release = Release.from_github(data)

        assert release is not None
        assert release.asset_name == "widget-1.2.0.zip"
        assert release.asset_url == "b2"
        assert release.asset_api_url == "u2"

    def test_custom_asset_pattern(self) -> None:
        data = github_release(
            "v1.2.0",
            assets=[
                {"name": "widget-linux.zip", "url": "u1", "browser_download_url": "b1"},
                {"name": "widget-src.zip", "url": "u2", "browser_download_url": "b2"},
            ],
        )

        release = Release.from_github(data, asset_pattern="*-src.zip")

        assert release is not None
        assert release.asset_name == "widget-src.zip"

    def test_non_semver_tag_skipped(self) -> None:
        assert Release.from_github(github_release("nightly")) is None

    def test_prerelease_suffix_marks_prerelease(self) -> None:
        release = Release.from_github(github_release("v2.0.0-beta.1"))

        assert release is not None
        assert release.version == "2.0.0"
        assert release.prerelease is True
        assert release.is_stable is False

    def test_draft_is_not_stable(self) -> None:
        release = Release.from_github(github_release("v2.0.0", draft=True))
        assert release is not None and release.is_stable is False

    def test_null_body(self) -> None:
        release = Release.from_github(github_release("v1.0.0", body=None))
        assert release is not None and release.notes == ""


# =============================================================================
# list_releases Tests
# =============================================================================


class TestListReleases:
    """Tests for GitHubReleaseSource.list_releases."""

    @pytest.mark.asyncio
    async def test_lists_releases(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json=[github_release("v1.1.0"), github_release("v1.0.0")]
            )

        releases = await make_source(handler).list_releases()

        assert [r.version for r in releases] == ["1.1.0", "1.0.0"]
        assert len(seen) == 1
        assert str(seen[0].url).startswith(RELEASES_URL)
        assert seen[0].url.params["per_page"] == str(PER_PAGE)
        assert seen[0].headers["Accept"] == "application/vnd.github+json"
        assert seen[0].headers["User-Agent"].startswith("gh-update-service/")
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        await make_source(handler, token="ghp_secret").list_releases()

        assert seen[0].headers["Authorization"] == "Bearer ghp_secret"

    @pytest.mark.asyncio
    async def test_paginates(self) -> None:
        full_page = [github_release(f"v1.0.{i}") for i in range(PER_PAGE)]
        pages = {"1": full_page, "2": [github_release("v0.9.0"), github_release("junk")]}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=pages[request.url.params["page"]])

        releases = await make_source(handler).list_releases()

        assert len(releases) == PER_PAGE + 1
        assert releases[-1].version == "0.9.0"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "headers", "fragment"),
        [
            (401, {}, "authentication failed"),
            (403, {"x-ratelimit-remaining": "0"}, "rate limit"),
            (429, {}, "rate limit"),
            (403, {}, "forbidden"),
            (404, {}, "not found"),
            (502, {}, "HTTP 502"),
        ],
    )
    async def test_error_statuses(
        self, status: int, headers: dict[str, str], fragment: str
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, headers=headers, json={"message": "nope"})

        with pytest.raises(NetworkError) as exc_info:
            await make_source(handler).list_releases()

        assert exc_info.value.status_code == status
        assert fragment in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError) as exc_info:
            await make_source(handler).list_releases()

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_unexpected_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"message": "not a list"})

        with pytest.raises(NetworkError):
            await make_source(handler).list_releases()

    def test_from_config(self) -> None:
        config = RepositoryConfig(
            owner="acme", repo="widget", api_url="https://ghe.example.com/api/v3/"
        )

        source = GitHubReleaseSource.from_config(config)

        assert source.releases_url == "https://ghe.example.com/api/v3/repos/acme/widget/releases"


# =============================================================================
# iter_asset Tests
# =============================================================================


class TestIterAsset:
    """Tests for GitHubReleaseSource.iter_asset."""

    @pytest.mark.asyncio
    async def test_streams_public_asset(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"zip-bytes")

        release = Release(
            tag="v1.0.0",
            version="1.0.0",
            asset_name="widget.zip",
            asset_url="https://github.com/acme/widget/releases/download/v1.0.0/widget.zip",
            asset_api_url=f"{API}/repos/acme/widget/releases/assets/1",
        )

        chunks = [chunk async for chunk in make_source(handler).iter_asset(release)]

        assert b"".join(chunks) == b"zip-bytes"
        assert seen[0].url.host == "github.com"

    @pytest.mark.asyncio
    async def test_private_asset_uses_api_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"private")

        release = Release(
            tag="v1.0.0",
            version="1.0.0",
            asset_name="widget.zip",
            asset_url="https://github.com/acme/widget/releases/download/v1.0.0/widget.zip",
            asset_api_url=f"{API}/repos/acme/widget/releases/assets/1",
        )

        source = make_source(handler, token="ghp_secret")
        chunks = [chunk async for chunk in source.iter_asset(release)]

        assert b"".join(chunks) == b"private"
        assert str(seen[0].url) == f"{API}/repos/acme/widget/releases/assets/1"
        assert seen[0].headers["Accept"] == "application/octet-stream"
        assert seen[0].headers["Authorization"] == "Bearer ghp_secret"

    @pytest.mark.asyncio
    async def test_missing_asset(self) -> None:
        release = Release(tag="v1.0.0", version="1.0.0")

        with pytest.raises(NetworkError):
            async for _ in make_source(lambda r: httpx.Response(200)).iter_asset(release):
                pass

    @pytest.mark.asyncio
    async def test_download_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="Not Found")

        release = Release(tag="v1.0.0", version="1.0.0", asset_url=f"{API}/zipball/v1.0.0")

        with pytest.raises(NetworkError) as exc_info:
            async for _ in make_source(handler).iter_asset(release):
                pass

        assert exc_info.value.status_code == 404
