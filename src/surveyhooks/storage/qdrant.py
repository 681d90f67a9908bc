"""Qdrant-backed webhook registry and delivery log.

Records are stored as point payloads. No semantic search is involved, so
every point carries the same one-dimensional placeholder vector; lookups go
through deterministic point IDs and payload filters.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import AsyncQdrantClient, models

from surveyhooks.config import settings
from surveyhooks.exceptions import DuplicateAttemptError, NotFoundError, ValidationError
from surveyhooks.models import DeliveryAttempt, Webhook

from .retry import storage_operation

if TYPE_CHECKING:
    from surveyhooks.models import EventKind

PLACEHOLDER_VECTOR = [1.0]
SCROLL_PAGE_SIZE = 256


def key_to_point_id(key: str) -> str:
    """Convert a storage key to a valid Qdrant point ID.

    Qdrant requires point IDs to be UUIDs or unsigned integers; the key is
    hashed into a deterministic UUID-format string.
    """
    h = hashlib.sha256(key.encode()).hexdigest()[:32]
    return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"


class QdrantStorageBase:
    """Client lifecycle and collection setup shared by both stores."""

    collection_suffix: str = ""
    indexed_fields: tuple[str, ...] = ()

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize storage.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            client: Existing client to share. Not closed by ``close()``.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    @property
    def collection_name(self) -> str:
        return f"{self._prefix}_{self.collection_suffix}"

    async def initialize(self) -> None:
        """Create the client if needed and ensure the collection exists."""
        if self._client is None:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
            self._owns_client = True
        await self._ensure_collection()

    async def close(self) -> None:
        """Close the client if this store created it."""
        if self._client is not None and self._owns_client:
            await self._client.close()
        self._client = None

    async def __aenter__(self) -> QdrantStorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @storage_operation
    async def _ensure_collection(self) -> None:
        if await self.client.collection_exists(self.collection_name):
            return
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=models.VectorParams(
                size=len(PLACEHOLDER_VECTOR),
                distance=models.Distance.DOT,
            ),
        )
        for field_name in self.indexed_fields:
            await self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field_name,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )

    async def _upsert(self, key: str, payload: dict[str, Any]) -> None:
        await self.client.upsert(
            collection_name=self.collection_name,
            points=[
                models.PointStruct(
                    id=key_to_point_id(key),
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    async def _retrieve(self, key: str) -> dict[str, Any] | None:
        results = await self.client.retrieve(
            collection_name=self.collection_name,
            ids=[key_to_point_id(key)],
            with_payload=True,
        )
        if not results:
            return None
        return results[0].payload

    async def _scroll_all(self, conditions: list[models.Condition]) -> list[dict[str, Any]]:
        """Every payload matching all ``conditions``, following scroll pages."""
        payloads: list[dict[str, Any]] = []
        offset: Any = None
        while True:
            points, offset = await self.client.scroll(
                collection_name=self.collection_name,
                scroll_filter=models.Filter(must=conditions) if conditions else None,
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=True,
            )
            payloads.extend(p.payload for p in points if p.payload is not None)
            if offset is None:
                return payloads


def _match(key: str, value: Any) -> models.FieldCondition:
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


class QdrantWebhookRegistry(QdrantStorageBase):
    """Webhooks in ``<prefix>_webhooks``, one point per webhook ID."""

    collection_suffix = "webhooks"
    indexed_fields = ("survey_id",)

    @storage_operation
    async def save_webhook(self, webhook: Webhook) -> str:
        """Insert or replace a webhook. Returns its ID."""
        await self._upsert(webhook.id, webhook.model_dump(mode="json"))
        return webhook.id

    @storage_operation
    async def get_webhook(self, webhook_id: str) -> Webhook | None:
        payload = await self._retrieve(webhook_id)
        if payload is None:
            return None
        return Webhook.model_validate(payload)

    @storage_operation
    async def list_webhooks(self, survey_id: str | None = None) -> list[Webhook]:
        conditions: list[models.Condition] = []
        if survey_id is not None:
            conditions.append(_match("survey_id", survey_id))
        payloads = await self._scroll_all(conditions)
        webhooks = [Webhook.model_validate(p) for p in payloads]
        webhooks.sort(key=lambda w: w.created_at)
        return webhooks

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

        current = await self.get_webhook(webhook_id)
        if current is None:
            raise NotFoundError("webhook", webhook_id)
        updated = Webhook.model_validate(
            {**current.model_dump(), **updates, "updated_at": datetime.now(UTC)}
        )
        await self.save_webhook(updated)
        return updated

    @storage_operation
    async def delete_webhook(self, webhook_id: str) -> bool:
        if await self._retrieve(webhook_id) is None:
            return False
        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=models.PointIdsList(points=[key_to_point_id(webhook_id)]),
        )
        return True


def _attempt_key(delivery_id: str, attempt: int) -> str:
    return f"{delivery_id}/{attempt}"


def _newest_first(
    payloads: list[dict[str, Any]], limit: int | None, offset: int
) -> list[DeliveryAttempt]:
    attempts = [DeliveryAttempt.model_validate(p) for p in payloads]
    attempts.sort(key=lambda a: (a.created_at, a.attempt), reverse=True)
    if limit is None:
        return attempts[offset:]
    return attempts[offset : offset + limit]


class QdrantDeliveryLogStore(QdrantStorageBase):
    """Attempts in ``<prefix>_webhook_attempts``, one point per (delivery, attempt)."""

    collection_suffix = "webhook_attempts"
    indexed_fields = ("webhook_id", "delivery_id", "survey_id")

    @storage_operation
    async def append(self, attempt: DeliveryAttempt) -> None:
        key = _attempt_key(attempt.delivery_id, attempt.attempt)
        existing = await self._retrieve(key)
        if existing is not None:
            # A retried write whose first try landed
            if existing.get("id") == attempt.id:
                return
            raise DuplicateAttemptError(attempt.delivery_id, attempt.attempt)
        await self._upsert(key, attempt.model_dump(mode="json"))

    @storage_operation
    async def list_attempts(
        self,
        webhook_id: str,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        payloads = await self._scroll_all([_match("webhook_id", webhook_id)])
        return _newest_first(payloads, limit, offset)

    @storage_operation
    async def list_attempts_for_survey(
        self,
        survey_id: str,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        payloads = await self._scroll_all([_match("survey_id", survey_id)])
        return _newest_first(payloads, limit, offset)

    @storage_operation
    async def get_delivery(self, delivery_id: str) -> list[DeliveryAttempt]:
        payloads = await self._scroll_all([_match("delivery_id", delivery_id)])
        attempts = [DeliveryAttempt.model_validate(p) for p in payloads]
        attempts.sort(key=lambda a: a.attempt)
        return attempts

    @storage_operation
    async def pending_retries(self, limit: int = 100) -> list[DeliveryAttempt]:
        payloads = await self._scroll_all(
            [_match("can_retry", True), _match("success", False)]
        )
        pending: list[DeliveryAttempt] = []
        for payload in payloads:
            attempt = DeliveryAttempt.model_validate(payload)
            # Superseded if the follow-up attempt was already logged
            follow_up = _attempt_key(attempt.delivery_id, attempt.attempt + 1)
            if await self._retrieve(follow_up) is None:
                pending.append(attempt)
        pending.sort(key=lambda a: a.next_retry_at or a.created_at)
        return pending[:limit]


__all__ = [
    "QdrantDeliveryLogStore",
    "QdrantStorageBase",
    "QdrantWebhookRegistry",
    "key_to_point_id",
]
