"""
Correlation ID Middleware

Implements correlation ID management for request tracking.
Binds the ID into structlog's context so every log line emitted while
handling the request carries it, and echoes it on the response.
"""

import re
import uuid
from typing import Optional, Callable, Awaitable

import structlog
from fastapi import Request
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse
from starlette.types import ASGIApp

logger = structlog.get_logger()

_VALID_ID = re.compile(r"^[a-zA-Z0-9\-_\.]{8,255}$")

CANDIDATE_HEADERS = (
    "x-correlation-id",
    "correlation-id",
    "x-request-id",
    "request-id",
)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware for managing correlation IDs in HTTP requests.

    Generates or extracts a correlation ID, attaches it to the current span
    and the structlog context, and adds it to response headers.
    """

    def __init__(self, app: ASGIApp, header_name: str = "x-correlation-id"):
        super().__init__(app)
        self.header_name = header_name.lower()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[StarletteResponse]],
    ) -> StarletteResponse:
        correlation_id = self._extract_or_generate_correlation_id(request)

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id")

        response.headers[self.header_name] = correlation_id
        return response

    def _extract_or_generate_correlation_id(self, request: Request) -> str:
        """Extract a well-formed correlation ID from headers or create one."""
        correlation_id = get_request_correlation_id(request)
        if correlation_id and _VALID_ID.match(correlation_id):
            return correlation_id

        if correlation_id:
            logger.warning(
                "Invalid correlation ID format in request header, generating new one",
                received_correlation_id=correlation_id[:64],
            )
        return str(uuid.uuid4())


def get_request_correlation_id(request: Request) -> Optional[str]:
    """
    Helper function to extract correlation ID from request.

    Args:
        request: HTTP request

    Returns:
        Correlation ID if present, None otherwise
    """
    for header_name in CANDIDATE_HEADERS:
        if header_name in request.headers:
            correlation_id = request.headers[header_name].strip()
            if correlation_id:
                return correlation_id

    return None
