"""
Pytest configuration for the GitHub update service tests.

Provides an in-memory release source, release archive builders and a
sample project tree so engine tests run without network access.
"""

from __future__ import annotations

import io
import json
import zipfile
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path

import pytest

from gh_update.config import UpdaterConfig
from gh_update.engine import reset_updater
from gh_update.errors import NetworkError
from gh_update.installer import DependencyInstaller
from gh_update.releases import Release, ReleaseSource

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


# =============================================================================
# Helpers
# =============================================================================


def make_release(
    version: str,
    *,
    notes: str = "",
    prerelease: bool = False,
    draft: bool = False,
) -> Release:
    """Build a Release as the GitHub source would report it."""
    return Release(
        tag=f"v{version}",
        version=version,
        name=f"Release {version}",
        notes=notes,
        published_at="2024-01-01T00:00:00Z",
        prerelease=prerelease,
        draft=draft,
        asset_name=f"app-{version}.zip",
        asset_url=f"https://example.invalid/app-{version}.zip",
    )


def build_zip(files: dict[str, str | bytes], *, wrap: str | None = None) -> bytes:
    """Build a release archive in memory, optionally inside a wrapping directory."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            arcname = f"{wrap}/{name}" if wrap else name
            zf.writestr(arcname, content)
    return buffer.getvalue()


def release_files(version: str, minimum: str | None = None, **extra: str) -> dict[str, str]:
    """Files of a release tree with a manifest for `version`."""
    manifest: dict[str, str] = {"version": version}
    if minimum is not None:
        manifest["minimumVersionRequired"] = minimum
    files = {
        "version.json": json.dumps(manifest),
        "app.py": f"VERSION = {version!r}\n",
    }
    files.update(extra)
    return files


def snapshot(root: Path, *, skip: tuple[str, ...] = (".gh-update",)) -> dict[str, bytes]:
    """Map relative paths under root to file contents."""
    result = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        if rel.split("/")[0] in skip or not path.is_file():
            continue
        result[rel] = path.read_bytes()
    return result


class FakeReleaseSource(ReleaseSource):
    """In-memory release source."""

    def __init__(self) -> None:
        self.releases: list[Release] = []
        self.assets: dict[str, bytes] = {}
        self.list_error: Exception | None = None
        self.asset_error: Exception | None = None
        self.list_calls = 0

    def publish(self, release: Release, asset: bytes | None = None) -> Release:
        self.releases.append(release)
        if asset is not None:
            self.assets[release.version] = asset
        return release

    async def list_releases(self) -> list[Release]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.releases)

    async def iter_asset(self, release: Release) -> AsyncIterator[bytes]:
        data = self.assets.get(release.version)
        if data is None:
            raise NetworkError(f"No asset for {release.tag}", status_code=404)
        half = len(data) // 2
        yield data[:half]
        if self.asset_error is not None:
            raise self.asset_error
        yield data[half:]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_updater() -> Iterator[None]:
    """Tear down the process-wide engine around every test."""
    reset_updater()
    yield
    reset_updater()


@pytest.fixture
def fake_source() -> FakeReleaseSource:
    return FakeReleaseSource()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A deployed application at version 1.0.0."""
    root = tmp_path / "app"
    root.mkdir()
    (root / "version.json").write_text(json.dumps({"version": "1.0.0"}))
    (root / "app.py").write_text("VERSION = '1.0.0'\n")
    (root / "old_module.py").write_text("removed in later releases\n")
    (root / "lib").mkdir()
    (root / "lib" / "helpers.py").write_text("def helper():\n    return 1\n")
    (root / ".env").write_text("SECRET=keep-me\n")
    return root


@pytest.fixture
def updater_config(project_root: Path) -> UpdaterConfig:
    return UpdaterConfig(
        repository={"owner": "acme", "repo": "widget"},
        paths={"project_root": str(project_root)},
        dependencies={"enabled": False},
    )


@pytest.fixture
def noop_installer() -> DependencyInstaller:
    return DependencyInstaller([], enabled=False)


@pytest.fixture
def zip_factory() -> Callable[..., bytes]:
    return build_zip
