"""
Fulfillment Service — Health endpoint
"""
import asyncio

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from fulfillment.core.config import get_settings
from fulfillment.core.redis_client import ping_redis
from fulfillment.db.database import engine
from fulfillment.schemas.product import HealthResponse

settings = get_settings()
router = APIRouter(tags=["health"])


async def _check_database() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


@router.get("/health", response_model=HealthResponse)
async def health_check():
    deps: dict[str, str] = {}
    healthy = True

    # Check database
    try:
        await asyncio.wait_for(_check_database(), timeout=settings.HEALTH_CHECK_TIMEOUT)
        deps["database"] = "ok"
    except Exception as e:
        deps["database"] = f"error: {str(e)[:100]}"
        healthy = False

    # Check Redis (idempotency cache)
    try:
        await ping_redis()
        deps["redis"] = "ok"
    except Exception as e:
        deps["redis"] = f"error: {str(e)[:100]}"
        healthy = False

    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "dependencies": deps,
        },
        status_code=200 if healthy else 503,
    )
