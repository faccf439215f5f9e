"""API middleware for the storefront order API.

Provides:
- Admin API key authentication
- Request ID correlation
- Error handling

Customer endpoints authenticate through the ``current_customer``
dependency instead; the payment callback is verified by signature.
"""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Request ID Middleware
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID for correlation.

    Generates or extracts a request ID and adds it to:
    - Request state for access in handlers
    - Response headers for client correlation
    - Log context for tracing
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with correlation ID.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response with request ID header.
        """
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=getattr(response, "status_code", 500),
                duration_ms=round(duration_ms, 2),
            )
            structlog.contextvars.unbind_contextvars("request_id", "customer_id")

        response.headers[self.HEADER_NAME] = request_id
        return response


# ============================================================================
# Admin API Key Middleware
# ============================================================================


ADMIN_PATH_PREFIX = "/admin"


def _unauthorized(error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "error_code": error_code,
            "message": message,
            "details": [],
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


class AdminApiKeyMiddleware(BaseHTTPMiddleware):
    """Middleware for admin API key authentication.

    Only paths under ``/admin`` are checked. Supports Bearer token format:
    "Authorization: Bearer <admin_api_key>".
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Validate the admin API key for admin endpoints.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response or 401 error.
        """
        path = request.url.path.rstrip("/")
        if path != ADMIN_PATH_PREFIX and not path.startswith(f"{ADMIN_PATH_PREFIX}/"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            logger.warning("Missing authorization header", path=path, method=request.method)
            return _unauthorized("UNAUTHORIZED", "Missing Authorization header")

        parts = auth_header.split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            logger.warning("Invalid authorization format", path=path, method=request.method)
            return _unauthorized(
                "UNAUTHORIZED",
                "Invalid Authorization header format. Use 'Bearer <api_key>'",
            )

        if parts[1] != settings.admin_api_key:
            logger.warning("Invalid admin API key", path=path, method=request.method)
            return _unauthorized("INVALID_API_KEY", "Invalid API key")

        request.state.admin_id = "admin"
        return await call_next(request)


# ============================================================================
# Error Handling Middleware
# ============================================================================


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware for consistent error handling.

    Catches unhandled exceptions and returns standardized error responses.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)

            logger.exception(
                "Unhandled exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
            )

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error_code": "INTERNAL_ERROR",
                    "message": "An internal error occurred",
                    "details": [],
                    "request_id": request_id,
                },
            )


# ============================================================================
# Middleware Setup
# ============================================================================


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application.

    Middleware is added in reverse order (last added = first executed).

    Args:
        app: FastAPI application instance.
    """
    # Error handling (outermost - catches all errors)
    app.add_middleware(ErrorHandlerMiddleware)

    # Admin API key authentication
    app.add_middleware(AdminApiKeyMiddleware)

    # Request ID correlation (innermost for handlers)
    app.add_middleware(RequestIdMiddleware)
