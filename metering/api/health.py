"""
Health check endpoint.
Probes the database and the Redis broker used by the reset worker.
"""
import logging

import redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from metering.config import settings
from metering.database import get_db, ping_db

logger = logging.getLogger(__name__)

router = APIRouter()


async def _probe_database(db: AsyncSession) -> str:
    try:
        await ping_db(db)
    except Exception as e:
        logger.warning(f"Database probe failed: {e}", extra={"event": "health_database_down"})
        return f"error: {e}"
    return "connected"


def _probe_redis() -> str:
    try:
        client = redis.from_url(settings.redis_url, socket_connect_timeout=2)
        client.ping()
    except Exception as e:
        logger.warning(f"Redis probe failed: {e}", extra={"event": "health_redis_down"})
        return f"error: {e}"
    return "connected"


@router.get("")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Report database and Redis connectivity.
    Responds 503 with the same body when either probe fails.
    """
    probes = {
        "database": await _probe_database(db),
        "redis": _probe_redis(),
    }
    healthy = all(result == "connected" for result in probes.values())
    body = {"status": "healthy" if healthy else "unhealthy", **probes}

    if not healthy:
        return JSONResponse(status_code=503, content=body)
    return body
