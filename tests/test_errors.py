"""
Tests for the errors module.

This test module validates:
- UpdateError base class functionality
- Error subclasses and their codes
- Error serialization (to_dict)
"""

from __future__ import annotations

import pytest

from gh_update.errors import (
    ConfigError,
    DependencyInstallError,
    DownloadMissingError,
    FileSystemError,
    InvalidVersionError,
    NetworkError,
    NoRollbackAvailableError,
    RecoveryFailedError,
    ResolutionError,
    StateConflictError,
    UpdateError,
    VersionMismatchError,
)

# =============================================================================
# Tests for UpdateError Base Class
# =============================================================================


class TestUpdateError:
    """Tests for UpdateError base class."""

    def test_init_with_all_args(self) -> None:
        error = UpdateError(
            error_code="test_error",
            message="Test error message",
            details={"key": "value"},
        )

        assert error.error_code == "test_error"
        assert error.message == "Test error message"
        assert error.details == {"key": "value"}

    def test_init_with_minimal_args(self) -> None:
        error = UpdateError(error_code="test_error", message="Test message")
        assert error.details == {}

    def test_str_representation(self) -> None:
        error = UpdateError(error_code="test_error", message="Test error message")
        assert str(error) == "Test error message"

    def test_repr_representation(self) -> None:
        error = UpdateError(error_code="test_error", message="msg", details={"a": 1})
        assert repr(error) == (
            "UpdateError(error_code='test_error', message='msg', details={'a': 1})"
        )

    def test_to_dict(self) -> None:
        error = UpdateError(error_code="test_error", message="msg", details={"a": 1})
        assert error.to_dict() == {
            "error_code": "test_error",
            "message": "msg",
            "details": {"a": 1},
        }

    def test_can_be_raised_and_caught(self) -> None:
        with pytest.raises(UpdateError) as exc_info:
            raise UpdateError(error_code="boom", message="Boom")
        assert exc_info.value.error_code == "boom"


# =============================================================================
# Tests for Error Subclasses
# =============================================================================


class TestErrorSubclasses:
    """Tests for the error taxonomy."""

    @pytest.mark.parametrize(
        ("error_class", "expected_code"),
        [
            (ConfigError, "config_error"),
            (InvalidVersionError, "invalid_version"),
            (StateConflictError, "state_conflict"),
            (ResolutionError, "resolution_error"),
            (VersionMismatchError, "version_mismatch"),
            (DownloadMissingError, "download_missing"),
            (FileSystemError, "filesystem_error"),
            (NetworkError, "network_error"),
        ],
    )
    def test_error_codes(self, error_class: type[UpdateError], expected_code: str) -> None:
        error = error_class("Something went wrong", details={"x": 1})

        assert isinstance(error, UpdateError)
        assert error.error_code == expected_code
        assert error.message == "Something went wrong"
        assert error.details["x"] == 1

    def test_network_error_keeps_status_code(self) -> None:
        error = NetworkError("Rate limited", status_code=429)

        assert error.status_code == 429
        assert error.details["status_code"] == 429

    def test_network_error_without_status(self) -> None:
        error = NetworkError("Connection refused")

        assert error.status_code is None
        assert "status_code" not in error.details

    def test_no_rollback_default_message(self) -> None:
        error = NoRollbackAvailableError()

        assert error.error_code == "no_rollback_available"
        assert error.message == "No rollback available"

    def test_dependency_install_error_carries_output(self) -> None:
        error = DependencyInstallError(
            "Installer failed",
            returncode=2,
            output="ERROR: no matching distribution",
        )

        assert error.error_code == "dependency_install_error"
        assert error.returncode == 2
        assert error.output == "ERROR: no matching distribution"
        assert error.details["returncode"] == 2
        assert error.details["output"] == "ERROR: no matching distribution"


class TestRecoveryFailedError:
    """Tests for RecoveryFailedError."""

    def test_carries_both_errors(self) -> None:
        original = FileSystemError("disk full")
        recovery = FileSystemError("archive corrupt")

        error = RecoveryFailedError(original, recovery)

        assert error.error_code == "recovery_failed"
        assert error.original_error is original
        assert error.recovery_error is recovery
        assert "unknown state" in error.message
        assert error.details["original_error"]["message"] == "disk full"
        assert error.details["recovery_error"]["message"] == "archive corrupt"

    def test_describes_plain_exceptions(self) -> None:
        error = RecoveryFailedError(RuntimeError("boom"), OSError("gone"))

        assert error.details["original_error"] == {
            "error_code": "internal",
            "message": "boom",
            "details": {},
        }
        assert error.details["recovery_error"]["message"] == "gone"
