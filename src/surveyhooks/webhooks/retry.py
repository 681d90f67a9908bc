"""Retry decisions and the timer queue that fires scheduled retries.

Backoff for retry ``n`` (1-based):

    min(base * 2 ** (n - 1), max) + uniform(0, jitter_ratio * delay)

With the default policy that is roughly 1, 2, 4, 8 and at most 15 minutes.
A 429 response carrying ``Retry-After`` uses the server's value instead,
capped by ``retry_after_max_seconds``.

Scheduled retries live in a heap keyed by event-loop time. One timer task
sleeps until the earliest entry is due, so no task is parked per pending
retry.
"""

from __future__ import annotations

import asyncio
import contextlib
import heapq
import itertools
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

from surveyhooks.logging import get_logger

if TYPE_CHECKING:
    from surveyhooks.config import RetryPolicy
    from surveyhooks.models import DeliveryAttempt, Webhook

    from .dispatcher import DeliveryJob

logger = get_logger(__name__)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into seconds from now.

    Args:
        value: Header value, either delta-seconds or an HTTP-date.
        now: Reference time for HTTP-dates.

    Returns:
        Seconds to wait (never negative), or None if absent or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if value.isdigit():
        return float(int(value))
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    current = now or datetime.now(UTC)
    return max(0.0, (when - current).total_seconds())


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of deciding whether an attempt gets a follow-up.

    Attributes:
        retry: Whether another attempt will be scheduled.
        delay_seconds: Wait before the next attempt (retry only).
        next_retry_at: Wall-clock due time of the next attempt (retry only).
        reason: Short reason, for logs.
    """

    retry: bool
    delay_seconds: float | None = None
    next_retry_at: datetime | None = None
    reason: str = ""


class RetryScheduler:
    """Decides retries and fires them when due.

    ``submit`` is awaited with each job as it comes due; the dispatcher
    passes a callback that puts the job back on its work queue.

    Example:
        ```python
        scheduler = RetryScheduler(RetryPolicy(), submit=queue.put)
        await scheduler.start()
        decision = scheduler.decide(webhook, attempt)
        if decision.retry:
            scheduler.schedule(job, decision.delay_seconds)
        ```
    """

    def __init__(
        self,
        policy: RetryPolicy,
        submit: Callable[[DeliveryJob], Awaitable[None]],
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            policy: Backoff constants.
            submit: Awaited with each job when its retry is due.
            rng: Random source for jitter.
        """
        self._policy = policy
        self._submit = submit
        self._rng = rng or random.Random()
        self._heap: list[tuple[float, int, DeliveryJob]] = []
        self._in_transit = 0
        self._counter = itertools.count()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        """Number of retries not yet handed back to the work queue."""
        return len(self._heap) + self._in_transit

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def backoff(self, retry_number: int) -> float:
        """Delay in seconds before retry ``retry_number`` (1-based)."""
        policy = self._policy
        delay = min(
            policy.base_delay_seconds * (2 ** max(retry_number - 1, 0)),
            policy.max_delay_seconds,
        )
        if policy.jitter_ratio > 0:
            delay += self._rng.uniform(0.0, policy.jitter_ratio * delay)
        return delay

    def decide(self, webhook: Webhook, attempt: DeliveryAttempt) -> RetryDecision:
        """Decide whether ``attempt`` is followed by another one.

        Sets ``attempt.can_retry`` and ``attempt.next_retry_at`` so the record
        is final before it is logged.

        Args:
            webhook: Snapshot carrying the retry budget used so far.
            attempt: The attempt just made, classified by the executor.

        Returns:
            The decision.
        """
        if attempt.success:
            attempt.can_retry = False
            return RetryDecision(retry=False, reason="delivered")

        if not attempt.can_retry:
            return RetryDecision(retry=False, reason="not retryable")

        if webhook.retry_count >= webhook.max_retries:
            attempt.can_retry = False
            logger.warning(
                "Webhook max retries exceeded",
                webhook_id=webhook.id,
                delivery_id=attempt.delivery_id,
                attempts=attempt.attempt,
            )
            return RetryDecision(retry=False, reason="retries exhausted")

        delay = self.backoff(webhook.retry_count + 1)
        if attempt.status_code == 429:
            server_delay = parse_retry_after(attempt.retry_after_header)
            if server_delay is not None:
                delay = min(server_delay, self._policy.retry_after_max_seconds)

        next_retry_at = datetime.now(UTC) + timedelta(seconds=delay)
        attempt.can_retry = True
        attempt.next_retry_at = next_retry_at
        return RetryDecision(
            retry=True,
            delay_seconds=delay,
            next_retry_at=next_retry_at,
            reason="scheduled",
        )

    def schedule(self, job: DeliveryJob, delay_seconds: float) -> None:
        """Queue ``job`` to be submitted after ``delay_seconds``."""
        due = asyncio.get_running_loop().time() + max(delay_seconds, 0.0)
        heapq.heappush(self._heap, (due, next(self._counter), job))
        self._wakeup.set()
        logger.info(
            "Webhook scheduled for retry",
            webhook_id=job.webhook.id,
            delivery_id=job.payload.delivery_id,
            attempt=job.attempt_number,
            delay_seconds=round(delay_seconds, 3),
        )

    async def start(self) -> None:
        """Start the timer task. Idempotent."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="surveyhooks-retry-timer")

    async def stop(self) -> int:
        """Stop the timer task and drop in-memory entries.

        Dropped retries are still recorded in the delivery log with their
        ``next_retry_at`` and can be rescheduled on the next start.

        Returns:
            Number of retries that were waiting.
        """
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        dropped = len(self._heap)
        self._heap.clear()
        return dropped

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            self._wakeup.clear()
            while self._heap and self._heap[0][0] <= loop.time():
                _, _, job = heapq.heappop(self._heap)
                self._in_transit += 1
                try:
                    await self._submit(job)
                finally:
                    self._in_transit -= 1

            timeout = self._heap[0][0] - loop.time() if self._heap else None
            if timeout is not None and timeout <= 0:
                continue
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except TimeoutError:
                pass


__all__ = [
    "RetryDecision",
    "RetryScheduler",
    "parse_retry_after",
]
