"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import asyncpg
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.admin import router as admin_router
from src.api.auth import router as auth_router
from src.api.middleware import CorrelationIdMiddleware
from src.api.routes import router
from src.config import get_settings
from src.errors import (
    AppError,
    ConflictError,
    InternalError,
    UnauthenticatedError,
    ValidationFailedError,
)
from src.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    try:
        from src.database import init_database, run_migrations

        await init_database()
        await run_migrations()
        logger.info("database_initialized")
    except Exception as e:
        logger.warning(
            "database_initialization_failed",
            error=str(e),
            note="Continuing without database - auth endpoints will fail until it is reachable",
        )

    logger.info(
        "application_started",
        environment=settings.environment,
        log_level=settings.log_level,
    )

    yield

    # Let in-flight reset emails finish before closing connections
    try:
        from src.services.email_service import await_pending_emails

        await await_pending_emails(timeout=5.0)
    except Exception as e:
        logger.warning("pending_emails_drain_failed", error=str(e))

    try:
        from src.database import close_database

        await close_database()
    except Exception as e:
        logger.warning("database_close_failed", error=str(e))

    logger.info("application_shutdown")


app = FastAPI(
    title="Blog API - Auth",
    description="Cookie-based sessions with rotating refresh tokens and password reset",
    version="1.0.0",
    lifespan=lifespan,
)


def _error_response(
    request: Request,
    status_code: int,
    code: str,
    detail: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    """Build the JSON error body shared by every handler."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())

    content = {
        "error": code,
        "detail": detail,
        "correlation_id": correlation_id,
    }
    if details is not None:
        content["details"] = details

    response_headers = {"X-Correlation-Id": correlation_id}
    if status_code == UnauthenticatedError.status_code:
        response_headers["WWW-Authenticate"] = "Cookie"

    return JSONResponse(status_code=status_code, content=content, headers=response_headers)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map the application error taxonomy onto HTTP responses."""
    logger = structlog.get_logger()
    settings = get_settings()

    if exc.status_code >= 500:
        logger.error("application_error", code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", code=exc.code, status=exc.status_code, reason=exc.message)

    detail = exc.message
    if not exc.expose and settings.is_production:
        detail = exc.default_message

    return _error_response(request, exc.status_code, exc.code, detail, details=exc.details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with user-friendly messages.

    Returns 422 with the first problem in ``detail`` and every problem in
    ``details``. Nothing has been executed when this fires.
    """
    issues = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", ["unknown"])),
            "message": error.get("msg", "Validation failed"),
        }
        for error in exc.errors()
    ]
    if issues:
        detail = f"Field '{issues[0]['field']}': {issues[0]['message']}"
    else:
        detail = "Request validation failed"

    structlog.get_logger().warning("validation_error", detail=detail, issues=issues)

    return _error_response(
        request,
        ValidationFailedError.status_code,
        ValidationFailedError.code,
        detail,
        details=issues,
    )


@app.exception_handler(asyncpg.UniqueViolationError)
async def unique_violation_handler(
    request: Request, exc: asyncpg.UniqueViolationError
) -> JSONResponse:
    """Unique constraint races that slipped past service-level checks."""
    structlog.get_logger().info("unique_violation", constraint=getattr(exc, "constraint_name", None))
    return _error_response(
        request,
        ConflictError.status_code,
        ConflictError.code,
        ConflictError.default_message,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler. The detail is generic in production."""
    structlog.get_logger().error(
        "unhandled_exception",
        error_type=type(exc).__name__,
        error=str(exc),
        path=str(request.url.path),
        exc_info=exc,
    )

    detail = InternalError.default_message
    if not get_settings().is_production:
        detail = f"{type(exc).__name__}: {exc}"

    return _error_response(request, InternalError.status_code, InternalError.code, detail)


# CORS for the browser frontend; credentials require explicit origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

# Include API routes
app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(router)
