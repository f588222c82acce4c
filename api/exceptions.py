"""Application exceptions rendered by the API error handlers."""

from typing import Any

from fastapi import status


class AuditError(Exception):
    """Base exception for the audit service."""

    def __init__(
        self,
        message: str,
        code: str = "error",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(AuditError):
    """Resource not found."""

    def __init__(self, message: str = "Audit not found."):
        super().__init__(
            message=message,
            code="not_found",
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ValidationError(AuditError):
    """Validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="validation_error",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InvalidTargetError(AuditError):
    """Audit target rejected before any network activity.

    Raised for malformed website input as well as SSRF rejections
    (blocked hostnames, private or reserved resolved addresses).
    """

    def __init__(self, message: str, reason: str = "invalid_url"):
        super().__init__(
            message=message,
            code="invalid_target",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"reason": reason},
        )
        self.reason = reason


class ExternalServiceError(AuditError):
    """External service error."""

    def __init__(self, service: str, message: str):
        super().__init__(
            message=f"{service}: {message}",
            code="external_service_error",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"service": service},
        )
