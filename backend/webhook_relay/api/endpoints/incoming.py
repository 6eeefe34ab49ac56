"""
Ingestion endpoint.

Accepts events from external callers, runs them through the admission
gate and answers with the ``{"success": ..., "message": ...}`` envelope.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
import structlog

from ...container import RelayContainer
from ...core.exceptions import CollaboratorError, EventQueueError, RateLimiterStoreError
from ..dependencies import get_container

logger = structlog.get_logger()
router = APIRouter(tags=["ingestion"])

QUEUE_UNAVAILABLE = "Queue unavailable"
SERVICE_UNAVAILABLE = "Service unavailable"


def _envelope(status_code: int, success: bool, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": success, "message": message},
        headers=headers or None,
    )


@router.post("/server/incoming_data")
async def incoming_data(
    request: Request, container: RelayContainer = Depends(get_container)
) -> JSONResponse:
    """
    Ingest one event.

    Requires the account token and event id headers and a JSON body.
    Rate limit headers are set on every response that reached the limiter.
    """
    body = await request.body()

    try:
        result = await container.gate.admit(request.headers, body)
    except EventQueueError as e:
        logger.error("Ingestion failed, queue unavailable", error=e.message)
        return _envelope(503, False, QUEUE_UNAVAILABLE)
    except (CollaboratorError, RateLimiterStoreError) as e:
        logger.error("Ingestion failed", error=e.message, error_code=e.error_code)
        return _envelope(503, False, SERVICE_UNAVAILABLE)

    return _envelope(
        result.status_code, result.accepted, result.reason, result.rate_headers
    )
