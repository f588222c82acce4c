"""Tests for custom exceptions and error handling."""

from fastapi import status

from api.exceptions import (
    AuditError,
    ExternalServiceError,
    InvalidTargetError,
    NotFoundError,
    ValidationError,
)


def test_audit_error_base() -> None:
    """Test base AuditError."""
    error = AuditError(message="Test error", code="test_error")
    assert error.message == "Test error"
    assert error.code == "test_error"
    assert error.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert error.details == {}


def test_not_found_error() -> None:
    """Test NotFoundError."""
    error = NotFoundError()
    assert error.message == "Audit not found."
    assert error.code == "not_found"
    assert error.status_code == status.HTTP_404_NOT_FOUND


def test_validation_error() -> None:
    """Test ValidationError."""
    error = ValidationError("Invalid contact", field="contactValue")
    assert error.message == "Invalid contact"
    assert error.code == "validation_error"
    assert error.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert error.details == {"field": "contactValue"}


def test_invalid_target_error() -> None:
    """Test InvalidTargetError carries its rejection reason."""
    error = InvalidTargetError("Website hostname is not allowed.", reason="blocked_hostname")
    assert error.reason == "blocked_hostname"
    assert error.code == "invalid_target"
    assert error.status_code == status.HTTP_400_BAD_REQUEST
    assert error.details == {"reason": "blocked_hostname"}


def test_external_service_error() -> None:
    """Test ExternalServiceError."""
    error = ExternalServiceError("SendGrid", "timeout")
    assert error.message == "SendGrid: timeout"
    assert error.status_code == status.HTTP_502_BAD_GATEWAY
    assert error.details == {"service": "SendGrid"}
