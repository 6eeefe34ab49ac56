"""
Health check endpoints for the webhook relay.

Liveness, readiness (database and Redis) and queue statistics.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...container import RelayContainer
from ...core.exceptions import EventQueueError
from ..dependencies import get_container

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(
    request: Request,
    container: RelayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns a simple health status for load balancers and monitoring systems.
    """
    settings = container.settings
    uptime = datetime.now(timezone.utc) - request.app.state.startup_time
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.OTEL_SERVICE_NAME,
        "version": settings.OTEL_SERVICE_VERSION,
        "environment": settings.ENVIRONMENT,
        "uptime_seconds": round(uptime.total_seconds(), 3),
    }


@router.get("/ready")
async def readiness_check(
    container: RelayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """
    Readiness check endpoint.

    Verifies database and Redis connectivity for the backends in use.
    """
    checks = await container.readiness()
    ready = all(check.get("status") == "healthy" for check in checks.values())

    if not ready:
        logger.warning(f"Readiness check failed: {checks}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "not_ready", "checks": checks},
        )

    return {
        "status": "ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


@router.get("/queue")
async def queue_health(
    container: RelayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Queue depth by state plus worker pool statistics."""
    try:
        queue_stats = await container.queue.stats()
    except EventQueueError as e:
        logger.error(f"Queue stats unavailable: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message
        )

    pool_stats = container.worker_pool.get_pool_stats()
    pool_stats.pop("workers", None)
    return {"queue": queue_stats, "workers": pool_stats}
