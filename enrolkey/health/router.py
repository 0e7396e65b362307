"""Health check endpoints."""

from fastapi import APIRouter, Response, status

from enrolkey.config import get_settings
from enrolkey.core.database import AsyncCassandraConnection
from enrolkey.core.redis import get_redis


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - the process is up."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(response: Response) -> dict[str, str | bool]:
    """Readiness probe - Cassandra is required, Redis is optional."""
    settings = get_settings()
    cassandra_ok = AsyncCassandraConnection.is_connected()

    if not cassandra_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ready" if cassandra_ok else "not_ready",
        "environment": settings.environment,
        "cassandra": cassandra_ok,
        "redis": get_redis() is not None,
    }


@router.get("")
async def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
