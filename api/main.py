"""FastAPI application factory and main entrypoint."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from api.config import Settings, get_settings
from api.exceptions import AuditError
from api.logging import setup_logging
from api.metrics import MetricsMiddleware, get_metrics, get_metrics_content_type
from api.services.audit_repository import AuditRepository, SqlAlchemyAuditRepository
from api.services.audit_service import AuditService
from api.services.audit_stream import AuditProgressStream
from api.services.job_service import AuditJobService, AuditRunner
from api.services.mailer import AuditMailer
from worker.tasks.audit import get_llm_limiter, run_audit

# Initialize logging
setup_logging()
logger = structlog.get_logger()

API_VERSION = "0.1.0"


@dataclass
class AppServices:
    """Long-lived collaborators shared by request handlers."""

    repository: AuditRepository
    jobs: AuditJobService
    audits: AuditService
    progress_stream: AuditProgressStream


def build_services(
    settings: Settings,
    repository: AuditRepository | None = None,
    runner: AuditRunner | None = None,
    mailer: AuditMailer | None = None,
) -> AppServices:
    """
    Wire the audit services once per process.

    The generative backend limiter is created here and handed to every
    inline run, so all audits in this process share the same cap.
    """
    repository = repository or SqlAlchemyAuditRepository()
    if runner is None:
        runner = partial(run_audit, repository=repository, limiter=get_llm_limiter())

    jobs = AuditJobService(settings.audit_config(), repository, runner)
    return AppServices(
        repository=repository,
        jobs=jobs,
        audits=AuditService(repository, jobs, mailer or AuditMailer(settings)),
        progress_stream=AuditProgressStream(repository),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    logger.info("api_starting", env=settings.env, debug=settings.debug, version=API_VERSION)

    yield

    services: AppServices = app.state.services
    await services.audits.drain()
    await services.jobs.shutdown()
    logger.info("api_stopped")


def create_app(services: AppServices | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    services = services or build_services(settings)

    app = FastAPI(
        title="SEO Audit Automation",
        description="Automated website SEO audits with generated expert reports",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.services = services
    app.state.audit_service = services.audits
    app.state.progress_stream = services.progress_stream

    # Middleware (order matters - first added = last executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from api.middleware import LoggingMiddleware, RequestIDMiddleware

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    from api.routers import health, v1

    app.include_router(health.router, prefix="/api")
    app.include_router(v1.router, prefix="/v1")

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=get_metrics(), media_type=get_metrics_content_type())

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers."""

    @app.exception_handler(AuditError)
    async def audit_error_handler(request: Request, exc: AuditError) -> ORJSONResponse:
        """Handle application exceptions."""
        logger.warning(
            "application_error",
            error_code=exc.code,
            message=exc.message,
            path=request.url.path,
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    **({"details": exc.details} if exc.details else {}),
                }
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle Pydantic validation errors."""
        errors = exc.errors()
        first_error = errors[0] if errors else {"msg": "Validation error"}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])

        logger.warning("request_validation_failed", path=request.url.path, field=field)
        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {
                    "code": "validation_error",
                    "message": first_error.get("msg", "Validation error"),
                    "field": field or None,
                    "details": {"errors": [_plain_error(error) for error in errors]},
                }
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
        """Handle unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "internal_error",
                    "message": "An unexpected error occurred",
                }
            },
        )


def _plain_error(error: dict) -> dict:
    # ctx may carry exception instances that are not JSON serializable
    return {key: value for key, value in error.items() if key in ("type", "loc", "msg")}


app = create_app()
