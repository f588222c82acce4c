"""Audit request schemas."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from api.models import ContactMethod


class CamelSchema(BaseModel):
    """Base schema exposing camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuditCreateRequest(CamelSchema):
    """Schema for requesting a new audit."""

    website_name: str = Field(..., min_length=2, max_length=200)
    contact_method: ContactMethod
    contact_value: str = Field(..., min_length=6, max_length=200)
    locale: Literal["fr", "en"] | None = None

    @field_validator("website_name", "contact_value", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("locale", mode="before")
    @classmethod
    def normalize_locale(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v


class AuditCreateResponse(CamelSchema):
    """Schema returned once an audit is registered."""

    message: str
    http_code: int
    audit_id: str
    status: str


class AuditSummaryResponse(CamelSchema):
    """Public summary projection of an audit."""

    audit_id: str
    ready: bool
    status: str
    progress: int
    summary_text: str | None = None
    key_checks: dict[str, Any] = Field(default_factory=dict)
    quick_wins: list[str] = Field(default_factory=list)
    pillar_scores: dict[str, int] = Field(default_factory=dict)
