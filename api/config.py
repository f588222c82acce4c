"""Application configuration using pydantic-settings."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_LOCALES = ("fr", "en")


@dataclass(frozen=True)
class AuditAutomationConfig:
    """Immutable snapshot of the audit engine tunables.

    Worker components receive this object explicitly instead of reading
    the environment, so tests can build one with plain keyword arguments.
    """

    queue_enabled: bool = True
    queue_name: str = "audit_requests"
    queue_concurrency: int = 2
    queue_attempts: int = 3
    queue_backoff_ms: int = 2000
    job_timeout_ms: int = 180_000
    fetch_timeout_ms: int = 8000
    max_redirects: int = 5
    html_max_bytes: int = 1_000_000
    text_max_bytes: int = 1_000_000
    sitemap_sample_size: int = 10
    sitemap_max_urls: int = 50_000
    sitemap_analyze_limit: int = 150
    url_analyze_concurrency: int = 6
    page_analyze_limit: int = 30
    page_ai_concurrency: int = 3
    page_ai_timeout_ms: int = 8000
    llm_api_key: str | None = None
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_timeout_ms: int = 60_000
    llm_summary_timeout_ms: int = 20_000
    llm_expert_timeout_ms: int = 60_000
    llm_retries: int = 2
    llm_inflight_max: int = 8
    circuit_breaker_min_samples: int = 6
    circuit_breaker_failure_ratio: float = 0.5
    llm_language: str = "fr"
    hourly_rate_min: float = 80.0
    hourly_rate_max: float = 120.0
    currency: str = "EUR"
    report_recipient: str = "contact@asilidesign.fr"
    user_agent: str = "AsiliAuditBot/1.0 (+https://asilidesign.fr; contact=admin@asilidesign.fr)"

    @property
    def llm_enabled(self) -> bool:
        """Check if a generative backend is configured."""
        return bool(self.llm_api_key)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: Literal["development", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Database
    database_url: PostgresDsn

    # Redis
    redis_url: RedisDsn

    # Audit queue
    audit_queue_enabled: bool = True
    audit_queue_name: str = "audit_requests"
    audit_queue_concurrency: int = Field(default=2, ge=1)
    audit_queue_attempts: int = Field(default=3, ge=1)
    audit_queue_backoff_ms: int = Field(default=2000, ge=0)
    audit_job_timeout_ms: int = Field(default=180_000, ge=1000)

    # Crawler
    audit_fetch_timeout_ms: int = Field(default=8000, ge=100)
    audit_max_redirects: int = Field(default=5, ge=0)
    audit_html_max_bytes: int = Field(default=1_000_000, ge=1024)
    audit_text_max_bytes: int = Field(default=1_000_000, ge=1024)
    audit_sitemap_sample_size: int = Field(default=10, ge=0)
    audit_sitemap_max_urls: int = Field(default=50_000, ge=1)
    audit_sitemap_analyze_limit: int = Field(default=150, ge=0)
    audit_url_analyze_concurrency: int = Field(default=6, ge=1)
    audit_page_analyze_limit: int = Field(default=30, ge=0)
    audit_user_agent: str = (
        "AsiliAuditBot/1.0 (+https://asilidesign.fr; contact=admin@asilidesign.fr)"
    )

    # Page narratives
    audit_page_ai_concurrency: int = Field(default=3, ge=1)
    audit_page_ai_timeout_ms: int = Field(default=8000, ge=100)

    # Generative backend (OpenAI-compatible)
    openai_api_key: str | None = None
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_timeout_ms: int = Field(default=60_000, ge=100)
    llm_summary_timeout_ms: int = Field(default=20_000, ge=100)
    llm_expert_timeout_ms: int = Field(default=60_000, ge=100)
    llm_retries: int = Field(default=2, ge=0)
    llm_inflight_max: int = Field(default=8, ge=1)
    llm_circuit_breaker_min_samples: int = Field(default=6, ge=1)
    llm_circuit_breaker_failure_ratio: float = 0.5
    llm_language: str = "fr"

    # Cost estimation
    audit_hourly_rate_min: float = Field(default=80.0, ge=0)
    audit_hourly_rate_max: float = Field(default=120.0, ge=0)
    audit_currency: str = "EUR"

    # Email (SendGrid)
    email_provider: str = "sendgrid"
    sendgrid_api_key: str | None = None
    email_from_address: str = "noreply@asilidesign.fr"
    email_from_name: str = "Asili Design"
    audit_report_recipient: str = "contact@asilidesign.fr"

    @field_validator("llm_circuit_breaker_failure_ratio")
    @classmethod
    def clamp_failure_ratio(cls, value: float) -> float:
        """Keep the breaker threshold inside a usable range."""
        return min(1.0, max(0.05, value))

    @field_validator("llm_language")
    @classmethod
    def normalize_language(cls, value: str) -> str:
        """Fall back to French for unsupported report languages."""
        lowered = value.strip().lower()
        return lowered if lowered in SUPPORTED_LOCALES else "fr"

    @model_validator(mode="after")
    def clamp_hourly_rates(self) -> "Settings":
        """Max rate can never be lower than the min rate."""
        if self.audit_hourly_rate_max < self.audit_hourly_rate_min:
            self.audit_hourly_rate_max = self.audit_hourly_rate_min
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.env == "test"

    @property
    def llm_enabled(self) -> bool:
        """Check if the generative backend has an API key."""
        return bool(self.openai_api_key)

    def audit_config(self) -> AuditAutomationConfig:
        """Build the engine configuration snapshot."""
        return AuditAutomationConfig(
            queue_enabled=self.audit_queue_enabled,
            queue_name=self.audit_queue_name,
            queue_concurrency=self.audit_queue_concurrency,
            queue_attempts=self.audit_queue_attempts,
            queue_backoff_ms=self.audit_queue_backoff_ms,
            job_timeout_ms=self.audit_job_timeout_ms,
            fetch_timeout_ms=self.audit_fetch_timeout_ms,
            max_redirects=self.audit_max_redirects,
            html_max_bytes=self.audit_html_max_bytes,
            text_max_bytes=self.audit_text_max_bytes,
            sitemap_sample_size=self.audit_sitemap_sample_size,
            sitemap_max_urls=self.audit_sitemap_max_urls,
            sitemap_analyze_limit=self.audit_sitemap_analyze_limit,
            url_analyze_concurrency=self.audit_url_analyze_concurrency,
            page_analyze_limit=self.audit_page_analyze_limit,
            page_ai_concurrency=self.audit_page_ai_concurrency,
            page_ai_timeout_ms=self.audit_page_ai_timeout_ms,
            llm_api_key=self.openai_api_key,
            llm_base_url=self.llm_base_url,
            llm_model=self.llm_model,
            llm_timeout_ms=self.llm_timeout_ms,
            llm_summary_timeout_ms=self.llm_summary_timeout_ms,
            llm_expert_timeout_ms=self.llm_expert_timeout_ms,
            llm_retries=self.llm_retries,
            llm_inflight_max=self.llm_inflight_max,
            circuit_breaker_min_samples=self.llm_circuit_breaker_min_samples,
            circuit_breaker_failure_ratio=self.llm_circuit_breaker_failure_ratio,
            llm_language=self.llm_language,
            hourly_rate_min=self.audit_hourly_rate_min,
            hourly_rate_max=self.audit_hourly_rate_max,
            currency=self.audit_currency,
            report_recipient=self.audit_report_recipient,
            user_agent=self.audit_user_agent,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    try:
        return Settings()  # type: ignore[call-arg]
    except Exception as e:
        if "validation" in type(e).__name__.lower() or "required" in str(e).lower():
            raise RuntimeError(
                "Missing required environment variables. Set DATABASE_URL and REDIS_URL."
            ) from e
        raise
