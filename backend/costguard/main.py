"""FastAPI Application Entry Point."""

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from costguard.core.config import settings
from costguard.core.database import Database
from costguard.core.errors import EngineError
from costguard.core.logging import configure_logging
from costguard.core.rate_limit import limiter
from costguard.services.control_plane import build_control_plane
from costguard.services.detector import HttpDetectorClient
from costguard.services.explainer import Explainer

configure_logging(settings)
logger = structlog.get_logger()

# Must run before the FastAPI app is created
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.redis import RedisIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        profiles_sample_rate=settings.SENTRY_PROFILES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            CeleryIntegration(),
        ],
        send_default_pii=False,
        release=f"costguard-backend@{os.getenv('GIT_COMMIT', 'dev')}",
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )
    logger.info("sentry.initialized", environment=settings.SENTRY_ENVIRONMENT)
else:
    logger.info("sentry.disabled")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Wire the store and outbound clients onto app.state.

    The schema is managed by alembic (`alembic upgrade head`); nothing is
    created here.

    Without DATABASE_URL the API still starts; every store-backed endpoint
    then answers 401 "Not connected to database".
    """
    database = Database.from_settings(settings)
    app.state.database = database
    app.state.control_plane = build_control_plane(
        settings, database.session_factory if database else None
    )
    app.state.detector = HttpDetectorClient.from_settings(settings)
    app.state.explainer = Explainer.from_settings(settings)
    logger.info(
        "app.started",
        database=database is not None,
        control_plane=getattr(app.state.control_plane, "name", None),
        detector=app.state.detector is not None,
        explainer=app.state.explainer.enabled,
    )

    try:
        yield
    finally:
        if database is not None:
            await database.dispose()
        logger.info("app.stopped")


app = FastAPI(
    title=settings.APP_NAME,
    description="CostGuard - Review, approve and execute cloud cost-waste recommendations",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Actor",
    ],
    max_age=settings.CORS_MAX_AGE,
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Map the engine's error taxonomy onto HTTP status codes."""
    if exc.status_code >= 500:
        logger.error("api.engine_error", path=request.url.path, error=exc.message, error_type=type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query parameters are input errors (400)."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


@app.get("/api/v1/health", tags=["health"])
async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": settings.APP_NAME,
            "environment": settings.APP_ENV,
            "database": getattr(request.app.state, "database", None) is not None,
        },
    )


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Welcome to CostGuard API",
        "docs": "/api/docs",
        "health": "/api/v1/health",
    }


from costguard.api.v1 import api_router  # noqa: E402

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "costguard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
