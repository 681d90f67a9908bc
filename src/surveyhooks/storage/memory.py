"""In-process registry and delivery log.

Used by default and throughout the tests. Nothing survives a restart.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from surveyhooks.exceptions import DuplicateAttemptError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from surveyhooks.models import DeliveryAttempt, EventKind, Webhook


class InMemoryWebhookRegistry:
    """Webhooks kept in a dict, keyed by ID.

    Returned webhooks are copies; mutate through ``update_webhook``.
    """

    def __init__(self, webhooks: list[Webhook] | None = None) -> None:
        self._webhooks: dict[str, Webhook] = {}
        self._lock = asyncio.Lock()
        for webhook in webhooks or []:
            self._webhooks[webhook.id] = webhook.model_copy(deep=True)

    async def save_webhook(self, webhook: Webhook) -> str:
        """Insert or replace a webhook. Returns its ID."""
        async with self._lock:
            self._webhooks[webhook.id] = webhook.model_copy(deep=True)
        return webhook.id

    async def get_webhook(self, webhook_id: str) -> Webhook | None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            return webhook.model_copy(deep=True) if webhook else None

    async def list_webhooks(self, survey_id: str | None = None) -> list[Webhook]:
        async with self._lock:
            return [
                w.model_copy(deep=True)
                for w in self._webhooks.values()
                if survey_id is None or w.survey_id == survey_id
            ]

    async def active_webhooks_for(self, survey_id: str, event: EventKind) -> list[Webhook]:
        webhooks = await self.list_webhooks(survey_id)
        return [w for w in webhooks if w.subscribes_to(event)]

    async def update_webhook(self, webhook_id: str, **updates: Any) -> Webhook:
        """Apply field updates to a stored webhook.

        Raises:
            NotFoundError: If the webhook does not exist.
            ValidationError: If an update tries to replace the secret.
        """
        if "secret" in updates:
            raise ValidationError("secret", "is generated once and cannot be changed")

        async with self._lock:
            current = self._webhooks.get(webhook_id)
            if current is None:
                raise NotFoundError("webhook", webhook_id)
            updated = current.model_validate(
                {**current.model_dump(), **updates, "updated_at": datetime.now(UTC)}
            )
            self._webhooks[webhook_id] = updated
            return updated.model_copy(deep=True)

    async def delete_webhook(self, webhook_id: str) -> bool:
        async with self._lock:
            return self._webhooks.pop(webhook_id, None) is not None


class InMemoryDeliveryLogStore:
    """Attempt log kept in per-delivery lists."""

    def __init__(self) -> None:
        self._by_delivery: dict[str, list[DeliveryAttempt]] = {}
        self._lock = asyncio.Lock()

    async def append(self, attempt: DeliveryAttempt) -> None:
        async with self._lock:
            attempts = self._by_delivery.setdefault(attempt.delivery_id, [])
            for existing in attempts:
                if existing.attempt != attempt.attempt:
                    continue
                if existing.id == attempt.id:
                    return
                raise DuplicateAttemptError(attempt.delivery_id, attempt.attempt)
            attempts.append(attempt.model_copy(deep=True))
            attempts.sort(key=lambda a: a.attempt)

    async def list_attempts(
        self,
        webhook_id: str,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        return await self._newest_first(lambda a: a.webhook_id == webhook_id, limit, offset)

    async def list_attempts_for_survey(
        self,
        survey_id: str,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        return await self._newest_first(lambda a: a.survey_id == survey_id, limit, offset)

    async def _newest_first(
        self,
        predicate: Callable[[DeliveryAttempt], bool],
        limit: int | None,
        offset: int,
    ) -> list[DeliveryAttempt]:
        async with self._lock:
            matching = [
                a.model_copy(deep=True)
                for attempts in self._by_delivery.values()
                for a in attempts
                if predicate(a)
            ]
        matching.sort(key=lambda a: (a.created_at, a.attempt), reverse=True)
        if limit is None:
            return matching[offset:]
        return matching[offset : offset + limit]

    async def get_delivery(self, delivery_id: str) -> list[DeliveryAttempt]:
        async with self._lock:
            return [a.model_copy(deep=True) for a in self._by_delivery.get(delivery_id, [])]

    async def pending_retries(self, limit: int = 100) -> list[DeliveryAttempt]:
        async with self._lock:
            pending = [
                attempts[-1].model_copy(deep=True)
                for attempts in self._by_delivery.values()
                if attempts and attempts[-1].state == "retry_scheduled"
            ]
        pending.sort(key=lambda a: a.next_retry_at or a.created_at)
        return pending[:limit]


__all__ = [
    "InMemoryDeliveryLogStore",
    "InMemoryWebhookRegistry",
]
