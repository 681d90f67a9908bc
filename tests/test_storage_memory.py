"""Tests for the in-memory registry and delivery log."""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import make_webhook

from surveyhooks.exceptions import DuplicateAttemptError, NotFoundError, ValidationError
from surveyhooks.models import DeliveryAttempt
from surveyhooks.storage import (
    DeliveryLogStore,
    InMemoryDeliveryLogStore,
    InMemoryWebhookRegistry,
    WebhookRegistry,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def attempt(delivery_id: str, number: int, **kwargs) -> DeliveryAttempt:
    values = {
        "webhook_id": "whk_test123",
        "survey_id": "srv_1",
        "event": "response.submitted",
        "url": "https://example.com/webhook",
        "created_at": T0 + timedelta(minutes=number),
    }
    values.update(kwargs)
    return DeliveryAttempt(delivery_id=delivery_id, attempt=number, **values)


class TestInMemoryWebhookRegistry:
    """Tests for InMemoryWebhookRegistry."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryWebhookRegistry(), WebhookRegistry)

    async def test_save_and_get(self):
        registry = InMemoryWebhookRegistry()
        webhook = make_webhook()
        await registry.save_webhook(webhook)

        found = await registry.get_webhook(webhook.id)
        assert found == webhook
        assert found is not webhook

    async def test_get_missing(self):
        assert await InMemoryWebhookRegistry().get_webhook("whk_missing") is None

    async def test_active_webhooks_for(self):
        registry = InMemoryWebhookRegistry(
            [
                make_webhook(id="whk_a"),
                make_webhook(id="whk_b", is_active=False),
                make_webhook(id="whk_c", events=["survey.published"]),
                make_webhook(id="whk_d", survey_id="srv_2"),
            ]
        )

        active = await registry.active_webhooks_for("srv_1", "response.submitted")
        assert [w.id for w in active] == ["whk_a"]

        published = await registry.active_webhooks_for("srv_1", "survey.published")
        assert [w.id for w in published] == ["whk_c"]

    async def test_update_webhook(self):
        registry = InMemoryWebhookRegistry([make_webhook()])

        updated = await registry.update_webhook("whk_test123", is_active=False)

        assert updated.is_active is False
        stored = await registry.get_webhook("whk_test123")
        assert stored is not None
        assert stored.is_active is False
        assert stored.secret == "whsec_test_secret"

    async def test_update_rejects_secret_change(self):
        registry = InMemoryWebhookRegistry([make_webhook()])
        with pytest.raises(ValidationError):
            await registry.update_webhook("whk_test123", secret="whsec_new")

    async def test_update_missing(self):
        with pytest.raises(NotFoundError):
            await InMemoryWebhookRegistry().update_webhook("whk_missing", name="x")

    async def test_returned_copies_are_isolated(self):
        registry = InMemoryWebhookRegistry([make_webhook()])
        found = await registry.get_webhook("whk_test123")
        assert found is not None
        found.is_active = False

        again = await registry.get_webhook("whk_test123")
        assert again is not None
        assert again.is_active is True

    async def test_delete(self):
        registry = InMemoryWebhookRegistry([make_webhook()])
        assert await registry.delete_webhook("whk_test123") is True
        assert await registry.delete_webhook("whk_test123") is False
        assert await registry.get_webhook("whk_test123") is None


class TestInMemoryDeliveryLogStore:
    """Tests for InMemoryDeliveryLogStore."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryDeliveryLogStore(), DeliveryLogStore)

    async def test_append_and_get_delivery(self):
        store = InMemoryDeliveryLogStore()
        await store.append(attempt("d1", 2, can_retry=False))
        await store.append(attempt("d1", 1, can_retry=True))

        attempts = await store.get_delivery("d1")
        assert [a.attempt for a in attempts] == [1, 2]

    async def test_duplicate_attempt_rejected(self):
        store = InMemoryDeliveryLogStore()
        await store.append(attempt("d1", 1))
        with pytest.raises(DuplicateAttemptError) as exc_info:
            await store.append(attempt("d1", 1))
        assert exc_info.value.delivery_id == "d1"
        assert exc_info.value.attempt == 1

    async def test_list_attempts_newest_first_with_paging(self):
        store = InMemoryDeliveryLogStore()
        for n in range(1, 6):
            await store.append(attempt(f"d{n}", 1, created_at=T0 + timedelta(minutes=n)))
        await store.append(attempt("other", 1, webhook_id="whk_other"))

        first_page = await store.list_attempts("whk_test123", limit=2)
        second_page = await store.list_attempts("whk_test123", limit=2, offset=2)

        assert [a.delivery_id for a in first_page] == ["d5", "d4"]
        assert [a.delivery_id for a in second_page] == ["d3", "d2"]

    async def test_list_attempts_without_limit(self):
        store = InMemoryDeliveryLogStore()
        for n in range(1, 151):
            await store.append(attempt(f"d{n}", 1, created_at=T0 + timedelta(minutes=n)))

        everything = await store.list_attempts("whk_test123", limit=None)
        tail = await store.list_attempts("whk_test123", limit=None, offset=148)

        assert len(everything) == 150
        assert [a.delivery_id for a in tail] == ["d2", "d1"]

    async def test_list_attempts_for_survey(self):
        store = InMemoryDeliveryLogStore()
        await store.append(attempt("a", 1, webhook_id="whk_a", created_at=T0))
        await store.append(
            attempt("b", 1, webhook_id="whk_b", created_at=T0 + timedelta(minutes=5))
        )
        await store.append(attempt("c", 1, survey_id="srv_other"))

        attempts = await store.list_attempts_for_survey("srv_1")
        assert [a.delivery_id for a in attempts] == ["b", "a"]
        assert [a.delivery_id for a in await store.list_attempts_for_survey("srv_1", limit=1)] == [
            "b"
        ]
        assert await store.list_attempts_for_survey("srv_1", offset=2) == []

    async def test_same_record_written_twice_is_kept_once(self):
        store = InMemoryDeliveryLogStore()
        record = attempt("d1", 1)

        await store.append(record)
        await store.append(record)

        assert [a.id for a in await store.get_delivery("d1")] == [record.id]

    async def test_pending_retries_uses_latest_attempt(self):
        store = InMemoryDeliveryLogStore()
        # d1: retry scheduled, then succeeded
        await store.append(attempt("d1", 1, can_retry=True, next_retry_at=T0))
        await store.append(attempt("d1", 2, success=True))
        # d2: still waiting, due later
        await store.append(
            attempt("d2", 1, can_retry=True, next_retry_at=T0 + timedelta(minutes=10))
        )
        # d3: still waiting, due sooner
        await store.append(
            attempt("d3", 1, can_retry=True, next_retry_at=T0 + timedelta(minutes=5))
        )
        # d4: permanent failure
        await store.append(attempt("d4", 1, can_retry=False))

        pending = await store.pending_retries()

        assert [a.delivery_id for a in pending] == ["d3", "d2"]

    async def test_get_unknown_delivery(self):
        assert await InMemoryDeliveryLogStore().get_delivery("nope") == []
