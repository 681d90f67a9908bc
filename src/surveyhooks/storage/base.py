"""Storage interfaces consumed by the delivery engine.

The engine owns neither webhooks nor durable storage. It reads webhooks
through a WebhookRegistry and writes every attempt through a
DeliveryLogStore. Both are structural protocols; any object with matching
coroutines will do.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from surveyhooks.models import DeliveryAttempt, EventKind, Webhook


@runtime_checkable
class WebhookRegistry(Protocol):
    """Access to registered webhooks.

    The dispatcher only reads; ``save_webhook`` is used by
    WebhookDeliveryService.register_webhook.
    """

    async def save_webhook(self, webhook: Webhook) -> str:
        """Insert or replace a webhook. Returns its ID."""
        ...

    async def active_webhooks_for(self, survey_id: str, event: EventKind) -> list[Webhook]:
        """Active webhooks of ``survey_id`` that subscribe to ``event``."""
        ...

    async def get_webhook(self, webhook_id: str) -> Webhook | None:
        """Current state of a webhook, or None if it was deleted."""
        ...


@runtime_checkable
class DeliveryLogStore(Protocol):
    """Append-only log of delivery attempts.

    ``append`` must reject a second attempt with the same
    ``(delivery_id, attempt)`` pair with DuplicateAttemptError, unless it is
    the same record (same ``id``) being written again, and raise
    StorageError when the write cannot be made durable.
    """

    async def append(self, attempt: DeliveryAttempt) -> None:
        """Persist one attempt."""
        ...

    async def list_attempts(
        self,
        webhook_id: str,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """Attempts of a webhook, newest first. ``limit=None`` returns all."""
        ...

    async def list_attempts_for_survey(
        self,
        survey_id: str,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """Attempts across every webhook of a survey, newest first."""
        ...

    async def get_delivery(self, delivery_id: str) -> list[DeliveryAttempt]:
        """All attempts of one delivery, in attempt order."""
        ...

    async def pending_retries(self, limit: int = 100) -> list[DeliveryAttempt]:
        """Latest attempt of each delivery still waiting for a retry.

        Ordered by ``next_retry_at``, earliest first.
        """
        ...


__all__ = [
    "DeliveryLogStore",
    "WebhookRegistry",
]
