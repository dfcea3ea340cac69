"""
Dependency installer.

Runs the project's dependency install command (pip by default) inside the
project root after an install or a rollback has replaced the source tree.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from gh_update.errors import DependencyInstallError
from gh_update.logging import get_logger

if TYPE_CHECKING:
    from gh_update.config import DependencyConfig

logger = get_logger(__name__)

# Keep the tail of installer output in error details
MAX_OUTPUT_CHARS = 8000


class DependencyInstaller:
    """
    Runs an external dependency install command.

    Example:
        >>> installer = DependencyInstaller(["pip", "install", "-r", "requirements.txt"])
        >>> ran = await installer.install(Path("/srv/app"))
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        requirements_file: str | None = "requirements.txt",
        timeout: float | None = None,
        enabled: bool = True,
    ) -> None:
        """
        Initialize the installer.

        Args:
            command: Command and arguments, run with the project root as cwd.
            requirements_file: The command is skipped when this file does not
                exist in the project root. None always runs the command.
            timeout: Optional timeout in seconds.
            enabled: When False, install() is a no-op.
        """
        self.command = list(command)
        self.requirements_file = requirements_file
        self.timeout = timeout
        self.enabled = enabled

    @classmethod
    def from_config(cls, config: DependencyConfig) -> DependencyInstaller:
        """Create an installer from dependency configuration."""
        return cls(
            config.command,
            requirements_file=config.requirements_file,
            timeout=config.timeout_seconds,
            enabled=config.enabled,
        )

    def should_run(self, cwd: Path) -> bool:
        """Check whether install() would run the command in `cwd`."""
        if not self.enabled or not self.command:
            return False
        if self.requirements_file is None:
            return True
        return (cwd / self.requirements_file).is_file()

    async def install(self, cwd: Path) -> bool:
        """
        Run the install command.

        Args:
            cwd: Project root.

        Returns:
            True if the command ran, False if it was skipped.

        Raises:
            DependencyInstallError: If the command cannot be started, times
                out, or exits with a non-zero status.
        """
        if not self.should_run(cwd):
            logger.info(
                "Skipping dependency install",
                extra={"cwd": str(cwd), "requirements_file": self.requirements_file},
            )
            return False

        logger.info(
            "Installing dependencies",
            extra={"cwd": str(cwd), "command": self.command},
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise DependencyInstallError(
                f"Failed to execute dependency installer: {e}",
                details={"command": self.command},
            ) from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise DependencyInstallError(
                f"Dependency installer timed out after {self.timeout}s",
                details={"command": self.command},
            ) from e

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            logger.error(
                "Dependency install failed",
                extra={"returncode": process.returncode, "command": self.command},
            )
            raise DependencyInstallError(
                f"Dependency installer exited with status {process.returncode}",
                details={"command": self.command},
                returncode=process.returncode,
                output=output[-MAX_OUTPUT_CHARS:],
            )

        logger.info("Dependencies installed", extra={"cwd": str(cwd)})
        return True
