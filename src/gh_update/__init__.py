"""
GitHub Update Service - self-update engine for applications deployed from GitHub Releases.

The engine checks for new releases, resolves a safe upgrade path, downloads
release archives, performs clean installs with automatic recovery, and
rolls back to the previously installed version on request.
"""

__version__ = "0.1.0"

from gh_update.config import UpdaterConfig, load_config  # noqa: E402
from gh_update.engine import (  # noqa: E402
    UpdateLifecycleEngine,
    create_updater,
    get_updater,
    reset_updater,
)
from gh_update.errors import UpdateError  # noqa: E402

__all__ = [
    "UpdateError",
    "UpdateLifecycleEngine",
    "UpdaterConfig",
    "__version__",
    "create_updater",
    "get_updater",
    "load_config",
    "reset_updater",
]
