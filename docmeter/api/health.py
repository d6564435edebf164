"""
Health check endpoint.
Verifies store and Redis connectivity.
"""
from fastapi import APIRouter, Depends, HTTPException
import redis

from docmeter.config import settings
from docmeter.errors import StoreUnavailableError
from docmeter.repositories.idempotency_store import PLANS
from docmeter.services.container import Services, get_services

router = APIRouter()


@router.get("")
async def health_check(services: Services = Depends(get_services)):
    """
    Health check endpoint.
    Returns status of the store and the Redis broker.
    """
    health_status = {
        "status": "healthy",
        "store": "unknown",
        "redis": "unknown"
    }

    try:
        await services.store.query(PLANS, limit=1)
        health_status["store"] = "connected"
    except StoreUnavailableError as e:
        health_status["store"] = f"error: {e.reason}"
        health_status["status"] = "unhealthy"

    try:
        r = redis.from_url(settings.redis_url)
        r.ping()
        health_status["redis"] = "connected"
    except redis.RedisError as e:
        health_status["redis"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
