"""FastAPI application entrypoint.

Configures CORS, error tracking, analytics error handlers, includes the
analytics router, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .analytics.errors import AnalyticsError, AnalyticsErrorHandler, ValidationError
from .deps import get_settings
from .routers import analytics as analytics_router
from .telemetry.sentry import init_sentry
from . import schemas


def _error_response(error: AnalyticsError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.user_payload())


def create_app() -> FastAPI:
    settings = get_settings()
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    app = FastAPI(
        title="Engagement Analytics API",
        description="""
        Engagement, growth and geographic-distribution metrics over
        activities, participants and venues.

        All aggregation happens in PostgreSQL; results are returned in a
        compact wire format (flat numeric rows plus lookup arrays).
        """,
        version="1.0.0",
    )

    logger.info("[CORS] Allowed origins: %s", settings.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    error_handler = AnalyticsErrorHandler()

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        error_handler.log(exc)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
        error = ValidationError(
            message=first.get("msg", "Invalid request"),
            field_name=field,
            details={"issues": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]},
        )
        return _error_response(error)

    app.include_router(analytics_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    return app


app = create_app()
