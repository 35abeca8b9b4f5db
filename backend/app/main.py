"""
Referral Cashback API
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import close_database
from app.core.exceptions import ReferralProgramError
from app.core.logging import configure_logging
from app.models.common import ErrorResponse
from app.monitoring.metrics import metrics_collector

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application", project=settings.PROJECT_NAME, environment=settings.ENVIRONMENT)
    yield
    await close_database()
    logger.info("Application stopped")


async def referral_program_error_handler(request: Request, exc: ReferralProgramError):
    if exc.status_code >= 500:
        metrics_collector.record_error(type(exc).__name__, exc.message)
    logger.warning(
        "Request failed",
        path=request.url.path,
        error=exc.error_code,
        message=exc.message,
        details=exc.details,
    )
    body = ErrorResponse(
        error=exc.error_code,
        message=exc.message,
        details=exc.details or None,
        timestamp=datetime.now(timezone.utc),
        request_id=request.headers.get("X-Request-ID"),
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ReferralProgramError, referral_program_error_handler)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    if settings.TRACING_ENABLED:
        from app.monitoring.tracing import setup_tracing
        setup_tracing(app)

    return app


app = create_app()
