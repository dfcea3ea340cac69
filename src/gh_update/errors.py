"""
Error types for the GitHub update service.

Every failure raised by the update engine is an UpdateError (or subclass).
Each error carries a machine-readable error code and structured details so
that an HTTP or CLI wrapper can serialize it without inspecting the type.
"""

from __future__ import annotations

from typing import Any


class UpdateError(Exception):
    """
    Base exception class for update engine errors.

    Attributes:
        error_code: Internal error code string (e.g., "state_conflict",
            "network_error", "resolution_error").
        message: Human-readable error message.
        details: Optional structured details (e.g., versions, paths).

    Example:
        >>> raise UpdateError(
        ...     error_code="state_conflict",
        ...     message="Cannot download while check is in progress",
        ...     details={"operation": "check"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(UpdateError):
    """
    Error raised for invalid or incomplete configuration.

    Covers a missing repository owner/name and a second attempt to create
    the process-wide update engine.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConfigError."""
        super().__init__(error_code="config_error", message=message, details=details)


class InvalidVersionError(UpdateError):
    """Error raised when a version string cannot be parsed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidVersionError."""
        super().__init__(
            error_code="invalid_version", message=message, details=details
        )


class StateConflictError(UpdateError):
    """
    Error raised when an operation is attempted while another is running.

    The message names the operation that is blocking the request.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a StateConflictError."""
        super().__init__(
            error_code="state_conflict", message=message, details=details
        )


class NetworkError(UpdateError):
    """
    Error raised when the release source cannot be reached or refuses a request.

    Attributes:
        status_code: Upstream HTTP status code, if a response was received.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        """Initialize a NetworkError."""
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(error_code="network_error", message=message, details=details)
        self.status_code = status_code


class ResolutionError(UpdateError):
    """
    Error raised when no safe upgrade target can be resolved.

    Raised when the release required as an intermediate step does not exist,
    when there are no published releases, or when download is requested
    without a resolved plan.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ResolutionError."""
        super().__init__(
            error_code="resolution_error", message=message, details=details
        )


class VersionMismatchError(UpdateError):
    """Error raised when the installed version is too old for a downloaded release."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a VersionMismatchError."""
        super().__init__(
            error_code="version_mismatch", message=message, details=details
        )


class DownloadMissingError(UpdateError):
    """Error raised when install is attempted without a matching download."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a DownloadMissingError."""
        super().__init__(
            error_code="download_missing", message=message, details=details
        )


class NoRollbackAvailableError(UpdateError):
    """Error raised when rollback is requested but no rollback archive exists."""

    def __init__(
        self,
        message: str = "No rollback available",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a NoRollbackAvailableError."""
        super().__init__(
            error_code="no_rollback_available", message=message, details=details
        )


class FileSystemError(UpdateError):
    """Error raised when copying, deleting or archiving files fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FileSystemError."""
        super().__init__(
            error_code="filesystem_error", message=message, details=details
        )


class DependencyInstallError(UpdateError):
    """
    Error raised when the dependency installer fails.

    Attributes:
        returncode: Exit status of the installer, or None if it never started.
        output: Captured stdout and stderr.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        """Initialize a DependencyInstallError."""
        details = dict(details or {})
        details.setdefault("returncode", returncode)
        details.setdefault("output", output)
        super().__init__(
            error_code="dependency_install_error", message=message, details=details
        )
        self.returncode = returncode
        self.output = output


class RecoveryFailedError(UpdateError):
    """
    Error raised when an install failed and the automatic restore failed too.

    The project tree is in an unknown state. Both the original failure and
    the recovery failure are attached.

    Attributes:
        original_error: The error that aborted the install.
        recovery_error: The error raised while restoring the rollback archive.
    """

    def __init__(
        self,
        original_error: BaseException,
        recovery_error: BaseException,
    ) -> None:
        """Initialize a RecoveryFailedError."""
        super().__init__(
            error_code="recovery_failed",
            message=(
                f"Install failed ({original_error}) and automatic recovery also "
                f"failed ({recovery_error}); the project tree is in an unknown state"
            ),
            details={
                "original_error": _describe(original_error),
                "recovery_error": _describe(recovery_error),
            },
        )
        self.original_error = original_error
        self.recovery_error = recovery_error


def _describe(error: BaseException) -> dict[str, Any]:
    """Serialize an arbitrary exception for error details."""
    if isinstance(error, UpdateError):
        return error.to_dict()
    return {"error_code": "internal", "message": str(error), "details": {}}
