"""OpenAI-compatible chat completions client with structured JSON output."""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from api.config import AuditAutomationConfig
from api.metrics import LLM_INFLIGHT, record_llm_call
from worker.guardrails import (
    DeadlineBudget,
    DeadlineExceededError,
    InFlightLimiter,
    with_hard_timeout,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

RETRY_DELAY_SECONDS = 1.0


@dataclass
class LLMError:
    """Why a generation did not produce a usable value."""

    error_type: str  # api_error, timeout, invalid_output, exception
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.error_type}: {self.message}"


@dataclass
class GenerationResult(Generic[ModelT]):
    """Tagged result of one generation: a validated value or an error."""

    ok: bool
    value: ModelT | None = None
    error: LLMError | None = None
    latency_ms: float = 0.0

    @property
    def timed_out(self) -> bool:
        return self.error is not None and self.error.error_type == "timeout"


class _CallError(Exception):
    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(str(error))


class LLMClient:
    """Calls the generative backend through the shared in-flight limiter.

    The limiter is created once per process and injected, so every audit
    running in this process competes for the same slots.
    """

    def __init__(
        self,
        config: AuditAutomationConfig,
        limiter: InFlightLimiter,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.limiter = limiter
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.config.llm_enabled

    async def generate_json(
        self,
        purpose: str,
        messages: list[dict[str, str]],
        schema: type[ModelT],
        timeout_ms: int,
        retries: int | None = None,
        budget: DeadlineBudget | None = None,
    ) -> GenerationResult[ModelT]:
        """
        Run one structured generation.

        Args:
            purpose: Label for logs and metrics (page_recap, summary, expert)
            messages: Chat messages (role/content)
            schema: Pydantic model the JSON output must satisfy
            timeout_ms: Hard timeout for the whole call, retries included
            retries: Extra attempts on retryable errors (defaults to config)
            budget: Optional caller deadline that can shrink the timeout

        Returns:
            GenerationResult; this method never raises
        """
        if not self.configured:
            return GenerationResult(
                ok=False,
                error=LLMError("api_error", "Generative backend is not configured"),
            )

        attempts = 1 + max(0, self.config.llm_retries if retries is None else retries)
        started = time.perf_counter()

        async def _attempts() -> ModelT:
            for attempt in range(attempts):
                try:
                    return await self._call_once(messages, schema, timeout_ms)
                except _CallError as e:
                    if not e.error.retryable or attempt + 1 >= attempts:
                        raise
                    logger.debug(
                        "llm_call_retry",
                        purpose=purpose,
                        attempt=attempt + 1,
                        error=str(e.error),
                    )
                    await asyncio.sleep(RETRY_DELAY_SECONDS * (attempt + 1))
            raise RuntimeError("unreachable")

        async def _guarded() -> ModelT:
            LLM_INFLIGHT.inc()
            try:
                return await with_hard_timeout(f"llm:{purpose}", timeout_ms, _attempts, budget)
            finally:
                LLM_INFLIGHT.dec()

        try:
            value = await self.limiter.run(_guarded)
        except DeadlineExceededError as e:
            return self._failure(purpose, started, LLMError("timeout", str(e), retryable=True))
        except _CallError as e:
            return self._failure(purpose, started, e.error)
        except Exception as e:
            return self._failure(purpose, started, LLMError("exception", str(e)))

        latency_ms = (time.perf_counter() - started) * 1000
        record_llm_call(purpose, "ok")
        logger.debug("llm_call_succeeded", purpose=purpose, latency_ms=round(latency_ms))
        return GenerationResult(ok=True, value=value, latency_ms=latency_ms)

    def _failure(self, purpose: str, started: float, error: LLMError) -> GenerationResult[Any]:
        latency_ms = (time.perf_counter() - started) * 1000
        outcome = error.error_type if error.error_type in ("timeout", "invalid_output") else "error"
        record_llm_call(purpose, outcome)
        logger.warning(
            "llm_call_failed",
            purpose=purpose,
            error_type=error.error_type,
            error=error.message[:300],
            latency_ms=round(latency_ms),
        )
        return GenerationResult(ok=False, error=error, latency_ms=latency_ms)

    async def _call_once(
        self,
        messages: list[dict[str, str]],
        schema: type[ModelT],
        timeout_ms: int,
    ) -> ModelT:
        headers = {
            "Authorization": f"Bearer {self.config.llm_api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.config.llm_model,
            "messages": messages,
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
        }

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=timeout_ms / 1000,
            ) as client:
                response = await client.post(
                    f"{self.config.llm_base_url.rstrip('/')}/chat/completions",
                    headers=headers,
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise _CallError(LLMError("timeout", str(e) or "request timed out", True)) from e
        except httpx.HTTPError as e:
            raise _CallError(LLMError("exception", str(e), True)) from e

        if response.status_code != 200:
            error = LLMError(
                "api_error",
                f"HTTP {response.status_code}: {response.text[:500]}",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )
            raise _CallError(error)

        return parse_structured_content(response.json(), schema)


def parse_structured_content(data: dict[str, Any], schema: type[ModelT]) -> ModelT:
    """Decode ``choices[0].message.content`` and validate it against ``schema``."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise _CallError(LLMError("invalid_output", f"Malformed completion payload: {e}")) from e
    if not isinstance(content, str) or not content.strip():
        raise _CallError(LLMError("invalid_output", "Empty completion content"))
    try:
        decoded = json.loads(content)
    except json.JSONDecodeError as e:
        raise _CallError(LLMError("invalid_output", f"Completion is not valid JSON: {e}")) from e
    try:
        return schema.model_validate(decoded)
    except PydanticValidationError as e:
        raise _CallError(LLMError("invalid_output", f"Completion does not match {schema.__name__}: {e}")) from e
