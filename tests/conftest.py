"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from surveyhooks.config import RetryPolicy  # noqa: E402
from surveyhooks.models import (  # noqa: E402
    EventData,
    QuestionMapping,
    ResponseSnapshot,
    SurveySnapshot,
    Webhook,
)
from surveyhooks.storage import InMemoryDeliveryLogStore, InMemoryWebhookRegistry  # noqa: E402
from surveyhooks.webhooks import DeliveryExecutor, WebhookDispatcher  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Handler) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


def status_sequence(*codes: int) -> Handler:
    """Handler answering with the given status codes in order (last one repeats)."""
    remaining = list(codes)

    def handler(request: httpx.Request) -> httpx.Response:
        code = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(code, text="ok" if code < 300 else "error")

    return handler


def make_webhook(**overrides: object) -> Webhook:
    """Webhook with sensible test defaults."""
    values: dict[str, object] = {
        "id": "whk_test123",
        "survey_id": "srv_1",
        "url": "https://example.com/webhook",
        "name": "Test hook",
        "events": ["response.submitted"],
        "secret": "whsec_test_secret",
        "max_retries": 3,
    }
    values.update(overrides)
    return Webhook(**values)


def make_event_data(
    answers: dict | None = None,
    mappings: list[QuestionMapping] | None = None,
    with_response: bool = True,
) -> EventData:
    """Event data for survey ``srv_1``."""
    occurred = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    response = None
    if with_response:
        response = ResponseSnapshot(
            id="rsp_1",
            submitted_at=occurred,
            completed_at=occurred,
            answers=answers if answers is not None else {"q1": "Yes", "q2": 5},
            metadata={"deviceType": "mobile"},
        )
    return EventData(
        survey=SurveySnapshot(
            id="srv_1",
            name="Customer feedback",
            status="published",
            question_mappings=mappings or [],
        ),
        response=response,
        occurred_at=occurred,
    )


@pytest.fixture
def webhook() -> Webhook:
    return make_webhook()


@pytest.fixture
def event_data() -> EventData:
    return make_event_data()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Millisecond backoff without jitter."""
    return RetryPolicy(
        base_delay_seconds=0.01,
        max_delay_seconds=0.05,
        jitter_ratio=0.0,
        retry_after_max_seconds=0.05,
    )


@pytest.fixture
def registry() -> InMemoryWebhookRegistry:
    return InMemoryWebhookRegistry()


@pytest.fixture
def store() -> InMemoryDeliveryLogStore:
    return InMemoryDeliveryLogStore()


@pytest.fixture
async def make_dispatcher(
    registry: InMemoryWebhookRegistry,
    store: InMemoryDeliveryLogStore,
    fast_policy: RetryPolicy,
):
    """Factory building a started dispatcher around a recording transport."""
    created: list[tuple[WebhookDispatcher, httpx.AsyncClient]] = []

    async def factory(
        handler: Handler,
        faults: list | None = None,
        store_override: object | None = None,
        max_concurrent: int = 4,
        queue_size: int = 1000,
    ) -> tuple[WebhookDispatcher, RecordingTransport]:
        transport = RecordingTransport(handler)
        client = httpx.AsyncClient(transport=transport)
        executor = DeliveryExecutor(client, timeout_seconds=5.0, user_agent="surveyhooks-test")

        def on_fault(error, webhook_id):
            if faults is not None:
                faults.append((error, webhook_id))

        dispatcher = WebhookDispatcher(
            registry=registry,
            store=store_override or store,
            executor=executor,
            policy=fast_policy,
            max_concurrent=max_concurrent,
            queue_size=queue_size,
            on_fault=on_fault,
        )
        await dispatcher.start()
        created.append((dispatcher, client))
        return dispatcher, transport

    yield factory

    for dispatcher, client in created:
        await dispatcher.stop()
        await client.aclose()
