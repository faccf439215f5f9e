"""Health check endpoints.

Provides endpoints for monitoring service health and readiness.
"""

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront.infrastructure.config import settings

logger = structlog.get_logger()

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    service: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health.

    Returns:
        Health status with service name and version.
    """
    return HealthResponse(
        status="healthy",
        service="storefront-orders",
        version=settings.api_version,
    )


@router.get("/ready", response_model=None)
async def readiness_check() -> dict[str, str] | JSONResponse:
    """Check if service is ready to accept requests.

    The SQL backend must answer a trivial query; the in-memory backend is
    always ready.

    Returns:
        Readiness status, or 503 when the database is unreachable.
    """
    if settings.store_backend != "sql":
        return {"status": "ready", "store": settings.store_backend}

    from sqlalchemy.exc import SQLAlchemyError

    from storefront.infrastructure.database import check_database

    try:
        await check_database()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Readiness check failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "store": settings.store_backend},
        )
    return {"status": "ready", "store": settings.store_backend}
