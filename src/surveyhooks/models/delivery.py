"""Delivery attempt records and the derived per-webhook status."""

from datetime import UTC, datetime
from typing import Literal

from pydantic import Field

from .base import EventKind, WireModel, generate_id

# Per-delivery state machine:
#   pending -> attempting -> succeeded
#                         -> retry_scheduled -> attempting ...
#                         -> exhausted
DeliveryState = Literal["pending", "attempting", "succeeded", "retry_scheduled", "exhausted"]

TERMINAL_STATES: frozenset[str] = frozenset({"succeeded", "exhausted"})


class DeliveryAttempt(WireModel):
    """Record of one HTTP attempt for one delivery.

    Attempts sharing a ``delivery_id`` are numbered 1..k. Exactly one of
    them is terminal: either ``success`` is true or ``can_retry`` is false.

    Attributes:
        id: Unique identifier for this attempt record.
        delivery_id: Stable identifier shared by all attempts of a delivery.
        webhook_id: Webhook the attempt was made for.
        survey_id: Survey the event belongs to.
        response_id: Response the event refers to (response events only).
        event: Event kind being delivered.
        url: Target URL.
        method: HTTP method (always POST).
        attempt: Attempt number, starting at 1.
        request_headers: Headers actually sent.
        request_body: Body actually sent.
        status_code: HTTP status, absent on network failure.
        response_body: Response body (truncated).
        response_headers: Response headers.
        success: Whether the endpoint accepted the payload (2xx).
        error: Error description for failed attempts.
        can_retry: Whether another attempt will follow.
        duration_ms: Wall time of the HTTP call.
        created_at: When the attempt was made.
        next_retry_at: When the next attempt is due (retry scheduled only).
    """

    id: str = Field(default_factory=lambda: generate_id("att"))
    delivery_id: str = Field(description="Stable delivery identifier")
    webhook_id: str = Field(description="Webhook this attempt belongs to")
    survey_id: str = Field(description="Survey the event belongs to")
    response_id: str | None = Field(default=None, description="Response the event refers to")
    event: EventKind = Field(description="Event kind")
    url: str = Field(description="Target URL")
    method: str = Field(default="POST")
    attempt: int = Field(default=1, ge=1, description="Attempt number (1-based)")
    request_headers: dict[str, str] = Field(default_factory=dict)
    request_body: str = Field(default="")
    status_code: int | None = Field(default=None, description="HTTP response status code")
    response_body: str | None = Field(default=None, description="Response body (truncated)")
    response_headers: dict[str, str] | None = Field(default=None)
    success: bool = Field(default=False)
    error: str | None = Field(default=None)
    can_retry: bool = Field(default=False)
    duration_ms: int | None = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    next_retry_at: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        """No further attempts follow this one."""
        return self.success or not self.can_retry

    @property
    def state(self) -> DeliveryState:
        """State of the delivery as of this attempt."""
        if self.success:
            return "succeeded"
        if self.can_retry:
            return "retry_scheduled"
        return "exhausted"

    @property
    def retry_after_header(self) -> str | None:
        """Raw Retry-After header value from the response, if any."""
        if not self.response_headers:
            return None
        for name, value in self.response_headers.items():
            if name.lower() == "retry-after":
                return value
        return None


class WebhookDeliveryStatus(WireModel):
    """Delivery summary for one webhook, derived from its attempt log.

    Every count is per delivery identifier, not per attempt.

    Attributes:
        webhook_id: Webhook summarized.
        total_deliveries: successful + failed + pending.
        successful_deliveries: Deliveries that ended in success.
        failed_deliveries: Deliveries that ended exhausted.
        pending_retries: Deliveries waiting for a scheduled retry.
        last_delivery_at: Time of the most recent attempt.
        last_success_at: Time of the most recent successful attempt.
        last_failure_at: Time of the most recent failed attempt.
        success_rate: successful / total, 0 when there are no deliveries.
    """

    webhook_id: str
    total_deliveries: int = Field(default=0, ge=0)
    successful_deliveries: int = Field(default=0, ge=0)
    failed_deliveries: int = Field(default=0, ge=0)
    pending_retries: int = Field(default=0, ge=0)
    last_delivery_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)


def compute_success_rate(successful: int, total: int) -> float:
    """successful / total, defined as 0.0 when total is 0."""
    if total <= 0:
        return 0.0
    return successful / total


__all__ = [
    "TERMINAL_STATES",
    "DeliveryAttempt",
    "DeliveryState",
    "WebhookDeliveryStatus",
    "compute_success_rate",
]
