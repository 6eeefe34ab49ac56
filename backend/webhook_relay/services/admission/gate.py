"""
Admission Gate

Decides whether an inbound event is accepted. Checks run in a fixed order
and stop at the first rejection:

1. credential and event-id headers present
2. credential resolves to an account
3. JSON content type and a parseable body
4. per-account sliding window rate limit
5. enqueue

Nothing is recorded or enqueued for a rejected request, and the limiter
is not touched before step 4.
"""

import json
from typing import Any, Dict, Mapping, Optional

import structlog
from pydantic import BaseModel, Field

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ...core.exceptions import AdmissionRejected, RateLimiterStoreError
from ...core.metrics import RelayMetrics
from ...domain.entities import Account, Event
from ...domain.interfaces import AccountResolver
from ..queues.event_queue import EventQueue
from ..rate_limiting.rate_limiter import SlidingWindowLimiter

logger = structlog.get_logger()
tracer = trace.get_tracer(__name__)

MISSING_HEADERS = "Missing headers"
ACCOUNT_NOT_FOUND = "Account not found"
UNSUPPORTED_CONTENT_TYPE = "Only application/json allowed"
INVALID_JSON = "Invalid JSON body"
RATE_LIMIT_EXCEEDED = "Rate limit exceeded"
DATA_RECEIVED = "Data Received"


def is_json_content_type(content_type: Optional[str]) -> bool:
    """True for ``application/json`` and ``application/*+json`` media types."""
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/json":
        return True
    return media_type.startswith("application/") and media_type.endswith("+json")


class AdmissionResult(BaseModel):
    """Outcome of one admission decision."""

    accepted: bool
    reason: str
    status_code: int
    rate_headers: Dict[str, str] = Field(default_factory=dict)
    event: Optional[Event] = None
    job_id: Optional[str] = None


class AdmissionGate:
    """Admission gate in front of the event queue."""

    def __init__(
        self,
        accounts: AccountResolver,
        limiter: SlidingWindowLimiter,
        queue: EventQueue,
        rate_limit: int = 5,
        window_ms: int = 1000,
        fail_open: bool = True,
        token_header: str = "cl-x-token",
        event_id_header: str = "cl-x-event-id",
        metrics: Optional[RelayMetrics] = None,
    ):
        self.accounts = accounts
        self.limiter = limiter
        self.queue = queue
        self.rate_limit = rate_limit
        self.window_ms = window_ms
        self.fail_open = fail_open
        self.token_header = token_header.lower()
        self.event_id_header = event_id_header.lower()
        self.metrics = metrics

    async def admit(self, headers: Mapping[str, str], body: bytes) -> AdmissionResult:
        """
        Run the admission checks for one request.

        Args:
            headers: Request headers
            body: Raw request body

        Returns:
            Accepted result carrying the event and job id, or a rejection

        Raises:
            EventQueueError: If the accepted event cannot be enqueued
            RateLimiterStoreError: If the limiter fails and fail-open is off
        """
        normalized = {key.lower(): value for key, value in headers.items()}

        with tracer.start_as_current_span("admission.admit") as span:
            rate_headers: Dict[str, str] = {}
            try:
                token, event_id = self._require_headers(normalized)
                account = await self._resolve_account(token)
                payload = self._parse_body(normalized.get("content-type"), body)
                rate_headers = await self._check_rate_limit(account)

            except AdmissionRejected as rejection:
                span.set_attribute("admission.accepted", False)
                span.set_attribute("admission.reason", rejection.reason)
                logger.info(
                    "Event rejected",
                    reason=rejection.reason,
                    status_code=rejection.status_code,
                )
                if self.metrics:
                    self.metrics.record_admission(False, rejection.reason)
                return AdmissionResult(
                    accepted=False,
                    reason=rejection.reason,
                    status_code=rejection.status_code,
                    rate_headers=rejection.headers,
                )

            event = Event(
                event_id=event_id, account_id=account.account_id, payload=payload
            )
            span.set_attribute("event.id", event.event_id)
            span.set_attribute("account.id", account.account_id)

            try:
                job_id = await self.queue.enqueue(event)
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                logger.error(
                    "Failed to enqueue event",
                    event_id=event.event_id,
                    account_id=account.account_id,
                    error=str(e),
                )
                raise

            span.set_attribute("admission.accepted", True)
            if self.metrics:
                self.metrics.record_admission(True, DATA_RECEIVED)
            logger.info(
                "Event accepted",
                event_id=event.event_id,
                account_id=account.account_id,
                job_id=job_id,
            )
            return AdmissionResult(
                accepted=True,
                reason=DATA_RECEIVED,
                status_code=200,
                rate_headers=rate_headers,
                event=event,
                job_id=job_id,
            )

    def _require_headers(self, headers: Mapping[str, str]) -> tuple:
        token = headers.get(self.token_header)
        event_id = headers.get(self.event_id_header)
        if not token or not event_id:
            raise AdmissionRejected(MISSING_HEADERS, status_code=400)
        return token, event_id

    async def _resolve_account(self, token: str) -> Account:
        account = await self.accounts.resolve_account_by_token(token)
        if account is None:
            raise AdmissionRejected(ACCOUNT_NOT_FOUND, status_code=404)
        return account

    def _parse_body(self, content_type: Optional[str], body: bytes) -> Any:
        if not is_json_content_type(content_type):
            raise AdmissionRejected(UNSUPPORTED_CONTENT_TYPE, status_code=400)
        try:
            return json.loads(body)
        except (ValueError, UnicodeDecodeError):
            raise AdmissionRejected(INVALID_JSON, status_code=400)

    async def _check_rate_limit(self, account: Account) -> Dict[str, str]:
        key = f"account:{account.account_id}"
        try:
            decision = await self.limiter.allow(key, self.rate_limit, self.window_ms)
        except RateLimiterStoreError as e:
            if self.metrics:
                self.metrics.rate_limiter_errors_total.inc()
            if not self.fail_open:
                raise
            logger.error(
                "Rate limiter unavailable, admitting without limit",
                account_id=account.account_id,
                error=e.message,
                details=e.details,
            )
            return {}

        if not decision.allowed:
            raise AdmissionRejected(
                RATE_LIMIT_EXCEEDED, status_code=400, headers=decision.headers()
            )
        return decision.headers()
