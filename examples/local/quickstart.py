#!/usr/bin/env python3
"""Webhook delivery quickstart.

Registers a webhook, dispatches a response event and prints the delivery
log. The receiving endpoint is simulated in-process with an httpx mock
transport that fails once and then accepts, so the retry path is visible.

No external dependencies required - runs entirely locally.
"""

import asyncio
from datetime import UTC, datetime

import httpx

from surveyhooks import Settings, WebhookDeliveryService
from surveyhooks.config import RetryPolicy
from surveyhooks.logging import configure_logging
from surveyhooks.models import (
    EventData,
    QuestionMapping,
    ResponseSnapshot,
    SurveySnapshot,
    Webhook,
)
from surveyhooks.webhooks import SIGNATURE_HEADER, verify_header


def make_receiver(secret: str) -> httpx.MockTransport:
    calls = 0

    def receive(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        body = request.content.decode()
        valid = verify_header(secret, body, request.headers[SIGNATURE_HEADER])
        print(f"  receiver: call {calls}, signature valid={valid}")
        if calls == 1:
            return httpx.Response(503, text="warming up")
        return httpx.Response(200, json={"ok": True})

    return httpx.MockTransport(receive)


async def main() -> None:
    configure_logging(level="WARNING", format="text")

    print("=" * 70)
    print("surveyhooks quickstart")
    print("=" * 70)

    webhook = Webhook(
        survey_id="srv_demo",
        url="https://crm.example.com/hooks/survey",
        name="CRM sync",
        events=["response.submitted"],
        use_question_mappings=True,
        max_retries=2,
    )
    survey = SurveySnapshot(
        id="srv_demo",
        name="Onboarding survey",
        status="published",
        question_mappings=[
            QuestionMapping(question_id="q_nps", external_id="nps_score"),
            QuestionMapping(question_id="q_role", external_id="ext_7", field_name="job_title"),
        ],
    )
    now = datetime.now(UTC)
    event_data = EventData(
        survey=survey,
        response=ResponseSnapshot(
            id="rsp_demo",
            submitted_at=now,
            completed_at=now,
            answers={"q_nps": 9, "q_role": "Engineer"},
            metadata={"deviceType": "desktop"},
        ),
    )

    settings = Settings(
        retry_policy=RetryPolicy(base_delay_seconds=0.5, max_delay_seconds=2.0),
        _env_file=None,
    )
    client = httpx.AsyncClient(transport=make_receiver(webhook.secret))

    async with WebhookDeliveryService.create(settings=settings, http_client=client) as service:
        await service.registry.save_webhook(webhook)

        print("\n1. DISPATCH")
        print("-" * 70)
        delivery_ids = await service.dispatch("response.submitted", event_data)
        print(f"  queued deliveries: {delivery_ids}")

        await service.wait_idle()

        print("\n2. DELIVERY LOG")
        print("-" * 70)
        for attempt in await service.get_delivery(delivery_ids[0]):
            print(
                f"  attempt {attempt.attempt}: status={attempt.status_code} "
                f"state={attempt.state} duration={attempt.duration_ms}ms"
            )
        print(f"  body sent: {attempt.request_body}")

        print("\n3. STATUS")
        print("-" * 70)
        status = await service.summarize(webhook.id)
        print(f"  total={status.total_deliveries} succeeded={status.successful_deliveries}")
        print(f"  success rate={status.success_rate:.0%}")

        print("\n4. TEST DELIVERY")
        print("-" * 70)
        test = await service.test_delivery(webhook, survey=survey)
        print(f"  status={test.status_code} logged=False retried=False")

    await client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
