"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from core.change_bus import RedisChangeBus, get_change_bus
from core.redis import get_redis_client
from db.session import get_async_session


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    change_bus: str


async def _change_bus_status() -> str:
    bus = get_change_bus()
    if bus is None:
        return "unavailable"
    if not isinstance(bus, RedisChangeBus):
        return "local"
    redis_client = get_redis_client()
    if redis_client is not None and await redis_client.ping():
        return "healthy"
    return "unhealthy"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Check application, database and change bus health.

    The change bus is reported as "local" when running on the in-process bus; only
    a database failure marks the service degraded.
    """
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        database=db_status,
        change_bus=await _change_bus_status(),
    )
