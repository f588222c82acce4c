"""Tests for metrics module."""

from unittest.mock import MagicMock

import pytest

from api.metrics import (
    AUDIT_RUNS,
    LLM_CALLS,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    MetricsMiddleware,
    get_metrics,
    get_metrics_content_type,
    record_audit_created,
    record_audit_run,
    record_llm_call,
    record_pages_analyzed,
)


class TestMetricsOutput:
    """Tests for metrics output generation."""

    def test_get_metrics_returns_bytes(self):
        assert isinstance(get_metrics(), bytes)

    def test_get_metrics_content_type(self):
        content_type = get_metrics_content_type()
        assert "text/plain" in content_type or "openmetrics" in content_type

    def test_get_metrics_contains_custom_metrics(self):
        record_audit_created()
        output = get_metrics().decode("utf-8")
        assert "audits_created_total" in output
        assert "http_request_duration_seconds" in output


class TestMetricsMiddleware:
    """Tests for metrics middleware."""

    @pytest.fixture
    def middleware(self):
        app = MagicMock()
        return MetricsMiddleware(app)

    def test_normalize_path_uuid(self, middleware):
        path = "/v1/audits/550e8400-e29b-41d4-a716-446655440000/summary"
        assert middleware._normalize_path(path) == "/v1/audits/{id}/summary"

    def test_normalize_path_numeric_id(self, middleware):
        assert middleware._normalize_path("/v1/audits/12345") == "/v1/audits/{id}"

    def test_normalize_path_no_id(self, middleware):
        assert middleware._normalize_path("/v1/audits") == "/v1/audits"

    def test_exclude_paths(self, middleware):
        assert "/metrics" in middleware.EXCLUDE_PATHS
        assert "/api/health" in middleware.EXCLUDE_PATHS
        assert "/api/ready" in middleware.EXCLUDE_PATHS


class TestAuditMetrics:
    """Tests for audit metric recording functions."""

    def test_record_audit_run(self):
        before = AUDIT_RUNS.labels(status="failed")._value.get()
        record_audit_run("failed", 12.5)
        assert AUDIT_RUNS.labels(status="failed")._value.get() == before + 1

    def test_record_llm_call(self):
        counter = LLM_CALLS.labels(purpose="summary", outcome="timeout")
        before = counter._value.get()
        record_llm_call("summary", "timeout")
        assert counter._value.get() == before + 1

    def test_record_pages_analyzed_ignores_zero(self):
        # Should not raise
        record_pages_analyzed(0)
        record_pages_analyzed(3)


class TestMetricLabels:
    """Tests for metric label validation."""

    def test_request_count_labels(self):
        assert REQUEST_COUNT._labelnames == ("method", "endpoint", "status_code")

    def test_request_latency_labels(self):
        assert REQUEST_LATENCY._labelnames == ("method", "endpoint")
