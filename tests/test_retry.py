"""Tests for retry decisions and the retry timer."""

import asyncio
import random
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime

from conftest import make_event_data, make_webhook

from surveyhooks.config import RetryPolicy
from surveyhooks.models import DeliveryAttempt
from surveyhooks.webhooks.dispatcher import DeliveryJob
from surveyhooks.webhooks.payload import build_payload
from surveyhooks.webhooks.retry import RetryScheduler, parse_retry_after


async def _noop(job) -> None:
    return None


def make_scheduler(policy: RetryPolicy | None = None, submit=_noop) -> RetryScheduler:
    return RetryScheduler(policy or RetryPolicy(jitter_ratio=0.0), submit=submit)


def failed_attempt(status_code: int | None = 500, can_retry: bool = True, **kwargs) -> DeliveryAttempt:
    return DeliveryAttempt(
        delivery_id="d-1",
        webhook_id="whk_test123",
        survey_id="srv_1",
        event="response.submitted",
        url="https://example.com/webhook",
        status_code=status_code,
        success=False,
        can_retry=can_retry,
        **kwargs,
    )


def make_job(attempt_number: int = 2) -> DeliveryJob:
    webhook = make_webhook()
    payload = build_payload(webhook, "response.submitted", make_event_data())
    return DeliveryJob(webhook=webhook, payload=payload, attempt_number=attempt_number)


class TestBackoff:
    """Tests for the backoff formula."""

    def test_defaults_double_from_one_minute(self):
        scheduler = make_scheduler()
        assert scheduler.backoff(1) == 60.0
        assert scheduler.backoff(2) == 120.0
        assert scheduler.backoff(3) == 240.0
        assert scheduler.backoff(4) == 480.0

    def test_capped_at_max_delay(self):
        scheduler = make_scheduler()
        assert scheduler.backoff(5) == 900.0
        assert scheduler.backoff(10) == 900.0

    def test_jitter_stays_within_ratio(self):
        scheduler = RetryScheduler(
            RetryPolicy(base_delay_seconds=100, max_delay_seconds=1000, jitter_ratio=0.1),
            submit=_noop,
            rng=random.Random(42),
        )
        for _ in range(50):
            delay = scheduler.backoff(1)
            assert 100.0 <= delay <= 110.0


class TestDecide:
    """Tests for RetryScheduler.decide()."""

    def test_success_never_retries(self):
        attempt = failed_attempt(status_code=200, can_retry=True)
        attempt.success = True
        decision = make_scheduler().decide(make_webhook(), attempt)
        assert decision.retry is False
        assert attempt.can_retry is False
        assert attempt.state == "succeeded"

    def test_permanent_failure_not_retried(self):
        attempt = failed_attempt(status_code=404, can_retry=False)
        decision = make_scheduler().decide(make_webhook(), attempt)
        assert decision.retry is False
        assert attempt.next_retry_at is None
        assert attempt.state == "exhausted"

    def test_retryable_within_budget_is_scheduled(self):
        attempt = failed_attempt()
        before = datetime.now(UTC)
        decision = make_scheduler().decide(make_webhook(retry_count=1, max_retries=3), attempt)

        assert decision.retry is True
        assert decision.delay_seconds == 120.0
        assert attempt.can_retry is True
        assert attempt.state == "retry_scheduled"
        assert attempt.next_retry_at is not None
        assert attempt.next_retry_at >= before + timedelta(seconds=120)

    def test_budget_spent_exhausts(self):
        """retry_count == max_retries with a retryable failure is exhausted."""
        attempt = failed_attempt()
        decision = make_scheduler().decide(make_webhook(retry_count=3, max_retries=3), attempt)

        assert decision.retry is False
        assert attempt.can_retry is False
        assert attempt.next_retry_at is None
        assert attempt.state == "exhausted"

    def test_zero_retries_budget(self):
        attempt = failed_attempt()
        decision = make_scheduler().decide(make_webhook(max_retries=0), attempt)
        assert decision.retry is False

    def test_retry_after_seconds_on_429(self):
        attempt = failed_attempt(status_code=429, response_headers={"retry-after": "30"})
        decision = make_scheduler().decide(make_webhook(), attempt)
        assert decision.delay_seconds == 30.0

    def test_retry_after_is_capped(self):
        attempt = failed_attempt(status_code=429, response_headers={"Retry-After": "86400"})
        decision = make_scheduler().decide(make_webhook(), attempt)
        assert decision.delay_seconds == 3600.0

    def test_retry_after_ignored_without_429(self):
        attempt = failed_attempt(status_code=503, response_headers={"retry-after": "5"})
        decision = make_scheduler().decide(make_webhook(), attempt)
        assert decision.delay_seconds == 60.0

    def test_unparseable_retry_after_falls_back_to_backoff(self):
        attempt = failed_attempt(status_code=429, response_headers={"retry-after": "soon"})
        decision = make_scheduler().decide(make_webhook(), attempt)
        assert decision.delay_seconds == 60.0


class TestParseRetryAfter:
    """Tests for Retry-After parsing."""

    def test_seconds(self):
        assert parse_retry_after("120") == 120.0
        assert parse_retry_after(" 5 ") == 5.0

    def test_http_date(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        header = format_datetime(now + timedelta(seconds=90), usegmt=True)
        assert parse_retry_after(header, now=now) == 90.0

    def test_past_date_is_zero(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        header = format_datetime(now - timedelta(minutes=5), usegmt=True)
        assert parse_retry_after(header, now=now) == 0.0

    def test_invalid(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("tomorrow-ish") is None
        assert parse_retry_after("-5") is None


class TestTimer:
    """Tests for the scheduled-retry timer."""

    async def test_fires_jobs_in_due_order(self):
        fired: list[int] = []

        async def submit(job: DeliveryJob) -> None:
            fired.append(job.attempt_number)

        scheduler = make_scheduler(submit=submit)
        await scheduler.start()
        try:
            scheduler.schedule(make_job(3), 0.05)
            scheduler.schedule(make_job(2), 0.01)
            assert scheduler.pending == 2

            for _ in range(100):
                if len(fired) == 2:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert fired == [2, 3]
        assert scheduler.pending == 0

    async def test_stop_drops_pending(self):
        scheduler = make_scheduler()
        await scheduler.start()
        scheduler.schedule(make_job(), 60.0)

        dropped = await scheduler.stop()

        assert dropped == 1
        assert scheduler.pending == 0
        assert not scheduler.is_running

    async def test_start_is_idempotent(self):
        scheduler = make_scheduler()
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task
        await scheduler.stop()
