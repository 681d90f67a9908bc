"""Per-webhook delivery summaries derived from the attempt log."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from surveyhooks.models import DeliveryAttempt, WebhookDeliveryStatus, compute_success_rate

if TYPE_CHECKING:
    from surveyhooks.storage import DeliveryLogStore


def summarize_attempts(webhook_id: str, attempts: Iterable[DeliveryAttempt]) -> WebhookDeliveryStatus:
    """Fold an attempt log into a WebhookDeliveryStatus.

    Attempts are grouped by delivery_id and each delivery counts once, in
    the state of its highest-numbered attempt. Timestamps come from
    individual attempts: last_failure_at is the latest failed attempt even
    if that delivery later succeeded.

    Args:
        webhook_id: Webhook being summarized.
        attempts: Its attempts, in any order.

    Returns:
        The summary.
    """
    latest: dict[str, DeliveryAttempt] = {}
    status = WebhookDeliveryStatus(webhook_id=webhook_id)

    for attempt in attempts:
        current = latest.get(attempt.delivery_id)
        if current is None or attempt.attempt > current.attempt:
            latest[attempt.delivery_id] = attempt

        if status.last_delivery_at is None or attempt.created_at > status.last_delivery_at:
            status.last_delivery_at = attempt.created_at
        if attempt.success:
            if status.last_success_at is None or attempt.created_at > status.last_success_at:
                status.last_success_at = attempt.created_at
        elif status.last_failure_at is None or attempt.created_at > status.last_failure_at:
            status.last_failure_at = attempt.created_at

    for attempt in latest.values():
        state = attempt.state
        if state == "succeeded":
            status.successful_deliveries += 1
        elif state == "retry_scheduled":
            status.pending_retries += 1
        else:
            status.failed_deliveries += 1

    status.total_deliveries = len(latest)
    status.success_rate = compute_success_rate(
        status.successful_deliveries, status.total_deliveries
    )
    return status


class StatusAggregator:
    """Reads a webhook's attempt log and summarizes it."""

    def __init__(self, store: DeliveryLogStore) -> None:
        self._store = store

    async def summarize(self, webhook_id: str) -> WebhookDeliveryStatus:
        """Summarize every logged attempt of ``webhook_id``.

        The log is read in one call. A webhook with no attempts yields
        all-zero counts.
        """
        attempts = await self._store.list_attempts(webhook_id, limit=None)
        return summarize_attempts(webhook_id, attempts)


__all__ = [
    "StatusAggregator",
    "summarize_attempts",
]
