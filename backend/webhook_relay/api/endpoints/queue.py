"""
Queue administration endpoints.

Dead-letter inspection and requeue, plus Prometheus metrics exposition.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
import structlog

from ...container import RelayContainer
from ...core.exceptions import EventQueueError
from ..dependencies import get_container

logger = structlog.get_logger()
router = APIRouter(tags=["queue"])


@router.get("/queue/dead-letters")
async def list_dead_letters(
    limit: int = Query(default=100, ge=1, le=1000),
    container: RelayContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Most recent dead-lettered jobs first."""
    try:
        entries = await container.queue.list_dead_letters(limit=limit)
    except EventQueueError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message
        )
    return {
        "count": len(entries),
        "jobs": [entry.model_dump(mode="json") for entry in entries],
    }


@router.post("/queue/dead-letters/{job_id}/requeue")
async def requeue_dead_letter(
    job_id: str, container: RelayContainer = Depends(get_container)
) -> Dict[str, Any]:
    """Give a dead-lettered job a fresh retry budget."""
    try:
        requeued = await container.queue.requeue_dead_letter(job_id)
    except EventQueueError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message
        )

    if not requeued:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} is not dead-lettered",
        )

    logger.info("Dead-lettered job requeued", job_id=job_id)
    return {"job_id": job_id, "requeued": True}


@router.get("/metrics")
async def metrics(container: RelayContainer = Depends(get_container)) -> Response:
    """Prometheus exposition of relay metrics."""
    return Response(
        content=container.metrics.render(),
        media_type=container.metrics.content_type,
    )
