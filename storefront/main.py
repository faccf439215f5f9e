"""Storefront order API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.admin import router as admin_router
from storefront.api.health import router as health_router
from storefront.api.middleware import setup_middleware
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router
from storefront.application.container import get_services
from storefront.domain.exceptions import (
    AuthError,
    ConcurrencyError,
    ConflictError,
    DomainError,
    EntryNotFoundError,
    GatewayUnavailableError,
    OrderNotFoundError,
    UnauthorizedError,
)
from storefront.infrastructure.config import settings
from storefront.infrastructure.logging_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    # Startup
    configure_logging()
    services = get_services()
    logger.info(
        "Starting storefront order API",
        version=settings.api_version,
        debug=settings.debug,
        store_backend=settings.store_backend,
        pending_order_ttl_minutes=settings.pending_order_ttl_minutes,
        gateway_test_mode=settings.gateway_test_mode,
    )

    yield

    # Shutdown
    logger.info("Shutting down storefront order API")
    await services.close()
    if settings.store_backend == "sql":
        from storefront.infrastructure.database import dispose_engine

        await dispose_engine()


app = FastAPI(
    title="Storefront Order API",
    description="Order and payment lifecycle for the storefront",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware (request ID, admin API key, error handling)
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(admin_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


def _error_status(exc: DomainError) -> int:
    if isinstance(exc, (OrderNotFoundError, EntryNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ConflictError, ConcurrencyError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, UnauthorizedError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, (AuthError, GatewayUnavailableError)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map domain errors to status codes with the standard error body."""
    request_id = getattr(request.state, "request_id", None)
    status_code = _error_status(exc)

    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        method=request.method,
        error_code=exc.error_code,
        error=exc.message,
    )

    content = {
        "error_code": exc.error_code,
        "message": exc.message,
        "details": exc.details,
        "request_id": request_id,
    }
    if isinstance(exc, ConflictError):
        content["existing_order_id"] = exc.existing_order_id
        content["remaining_ms"] = exc.remaining_ms

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies and parameters as 400."""
    request_id = getattr(request.state, "request_id", None)
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]) or None,
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error_code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": details,
            "request_id": request_id,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", [])
    else:
        error_code = "ERROR"
        message = str(detail)
        details = []

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "details": [],
            "request_id": request_id,
        },
    )
