"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import redis.asyncio as redis

from config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns overall system health status and snapshot queue depth.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "disabled",
        "snapshot_worker": "unknown",
        "snapshot_queue_pending": None,
    }

    # Check database connection
    try:
        from database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    worker = getattr(request.app.state, "snapshot_worker", None)
    if worker is None:
        health_status["snapshot_worker"] = "stopped"
        health_status["status"] = "degraded"
    else:
        health_status["snapshot_worker"] = "draining" if worker.is_scheduled else "idle"
        try:
            health_status["snapshot_queue_pending"] = await worker.queue.count_pending()
        except Exception as e:
            health_status["snapshot_queue_pending"] = f"unavailable: {str(e)}"
            health_status["status"] = "degraded"

    # Check Redis connection
    if settings.SNAPSHOT_RQ_ENABLED:
        try:
            r = redis.from_url(settings.REDIS_URL)
            await r.ping()
            await r.aclose()
            health_status["redis"] = "up"
        except Exception as e:
            health_status["redis"] = f"down: {str(e)}"
            health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Kubernetes-style readiness probe."""
    if getattr(request.app.state, "snapshot_worker", None) is None:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": ["snapshot_worker"]},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
