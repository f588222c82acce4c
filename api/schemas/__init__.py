"""Pydantic schemas package."""

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Standard error detail."""

    code: str
    message: str
    field: str | None = None
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail
