"""Fan events out to subscribed webhooks and drive each delivery to completion.

A delivery moves through:

    pending -> attempting -> succeeded
                          -> retry_scheduled -> attempting ...
                          -> exhausted

Every attempt is written to the delivery log before the next step is
taken. Work flows through one bounded queue served by a fixed pool of
workers; a delivery is only ever on the queue once, so its attempts are
strictly sequential.
"""

from __future__ import annotations

import asyncio
import contextlib
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pydantic

from surveyhooks.exceptions import (
    ConfigurationError,
    NotFoundError,
    SurveyHooksError,
    ValidationError,
)
from surveyhooks.logging import bind_context, clear_context, get_logger
from surveyhooks.models import (
    DeliveryAttempt,
    Webhook,
    WebhookPayload,
    generate_delivery_id,
)

from .executor import validate_webhook
from .payload import build_payload, build_sample_event_data
from .retry import RetryScheduler

if TYPE_CHECKING:
    from surveyhooks.config import RetryPolicy
    from surveyhooks.models import DeliveryState, EventData, EventKind
    from surveyhooks.storage import DeliveryLogStore, WebhookRegistry

    from .executor import DeliveryExecutor

logger = get_logger(__name__)

FaultHandler = Callable[[SurveyHooksError, str | None], None]


@dataclass
class DeliveryJob:
    """One pending attempt of one delivery.

    Attributes:
        webhook: Snapshot taken at dispatch; ``retry_count`` counts the
            retries already used by this delivery.
        payload: Payload shared by every attempt of the delivery.
        attempt_number: Number of the attempt this job will make.
    """

    webhook: Webhook
    payload: WebhookPayload
    attempt_number: int = 1


def log_fault(error: SurveyHooksError, webhook_id: str | None) -> None:
    """Default fault handler: one structured error line."""
    logger.error(
        "Webhook delivery fault",
        code=error.code,
        error=error.message,
        webhook_id=webhook_id,
    )


class WebhookDispatcher:
    """Dispatches events to webhooks and runs the delivery workers.

    Example:
        ```python
        dispatcher = WebhookDispatcher(registry, store, executor, RetryPolicy())
        await dispatcher.start()

        # Returns immediately; delivery happens in the background
        dispatcher.dispatch("response.submitted", event_data)

        await dispatcher.wait_idle()
        await dispatcher.stop()
        ```
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        store: DeliveryLogStore,
        executor: DeliveryExecutor,
        policy: RetryPolicy,
        max_concurrent: int = 10,
        queue_size: int = 1000,
        on_fault: FaultHandler | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Source of webhooks and the per-attempt liveness check.
            store: Delivery log; every attempt is appended here.
            executor: Performs single HTTP attempts.
            policy: Retry backoff constants.
            max_concurrent: Number of workers, i.e. concurrent HTTP calls.
            queue_size: Capacity of the work queue. Fan-out waits when full.
            on_fault: Receives configuration and storage faults.
            rng: Random source for backoff jitter.
        """
        self._registry = registry
        self._store = store
        self._executor = executor
        self._max_concurrent = max_concurrent
        self._queue: asyncio.Queue[DeliveryJob] = asyncio.Queue(maxsize=queue_size)
        self._scheduler = RetryScheduler(policy, submit=self._queue.put, rng=rng)
        self._on_fault = on_fault or log_fault

        self._workers: list[asyncio.Task[None]] = []
        self._fanouts: set[asyncio.Task[list[str]]] = set()
        self._states: dict[str, DeliveryState] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def open_deliveries(self) -> int:
        """Deliveries that have not reached a terminal state."""
        return len(self._states)

    def state_of(self, delivery_id: str) -> DeliveryState | None:
        """Live state of an open delivery.

        Returns None once the delivery has finished (or was never seen);
        its outcome is then in the delivery log.
        """
        return self._states.get(delivery_id)

    async def start(self) -> None:
        """Start the worker pool and the retry timer. Idempotent."""
        if self._workers:
            return
        await self._scheduler.start()
        self._workers = [
            asyncio.create_task(self._worker(), name=f"surveyhooks-worker-{i}")
            for i in range(self._max_concurrent)
        ]
        logger.info("Webhook dispatcher started", workers=self._max_concurrent)

    async def stop(self) -> None:
        """Stop workers, fan-outs and the retry timer.

        Attempts in flight are cancelled before their result is logged;
        scheduled retries stay recorded in the log and are picked up again
        by ``recover()``.
        """
        tasks = [*self._fanouts, *self._workers]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []
        self._fanouts.clear()
        dropped = await self._scheduler.stop()
        self._states.clear()
        self._idle.set()
        logger.info("Webhook dispatcher stopped", dropped_retries=dropped)

    def dispatch(self, event: EventKind, event_data: EventData) -> asyncio.Task[list[str]]:
        """Deliver ``event`` to every active webhook subscribed to it.

        Returns without waiting for any HTTP call. The returned task resolves
        to the delivery IDs created once fan-out has queued them; callers
        on a request path should simply drop it.

        Args:
            event: Event kind.
            event_data: Survey snapshot, plus the response for response events.

        Returns:
            Task resolving to the new delivery IDs.

        Raises:
            ValidationError: If a response event carries no response.
        """
        if event_data.requires_response(event):
            raise ValidationError("response", f"required for {event} events")

        task = asyncio.create_task(self._fan_out(event, event_data))
        self._fanouts.add(task)
        task.add_done_callback(self._fanouts.discard)
        return task

    async def _fan_out(self, event: EventKind, event_data: EventData) -> list[str]:
        survey_id = event_data.survey.id
        try:
            webhooks = await self._registry.active_webhooks_for(survey_id, event)
        except SurveyHooksError as e:
            self._on_fault(e, None)
            return []

        if not webhooks:
            logger.debug("No webhooks subscribed to event", event_kind=event, survey_id=survey_id)
            return []

        delivery_ids: list[str] = []
        for webhook in webhooks:
            if not webhook.subscribes_to(event):
                continue
            snapshot = webhook.snapshot()
            try:
                validate_webhook(snapshot)
            except ConfigurationError as e:
                self._on_fault(e, snapshot.id)
                continue

            payload = build_payload(snapshot, event, event_data)
            await self._enqueue(snapshot, payload)
            delivery_ids.append(payload.delivery_id)

        logger.info(
            "Event dispatched",
            event_kind=event,
            survey_id=survey_id,
            deliveries=len(delivery_ids),
        )
        return delivery_ids

    async def _enqueue(self, snapshot: Webhook, payload: WebhookPayload) -> None:
        self._open(payload.delivery_id)
        await self._queue.put(DeliveryJob(webhook=snapshot, payload=payload))

    async def _deliverable_snapshot(self, webhook_id: str) -> Webhook:
        webhook = await self._registry.get_webhook(webhook_id)
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        if not webhook.is_active:
            raise ValidationError("webhook", "is not active")
        snapshot = webhook.snapshot()
        validate_webhook(snapshot)
        return snapshot

    async def trigger(
        self,
        webhook_id: str,
        event_data: EventData,
        event: EventKind = "response.submitted",
    ) -> str:
        """Deliver an event to one webhook, regardless of its subscriptions.

        Used to push an existing response to a webhook by hand. The delivery
        is queued like any other and retried under the webhook's budget.

        Args:
            webhook_id: Target webhook.
            event_data: Survey snapshot, plus the response for response events.
            event: Event kind to deliver.

        Returns:
            The new delivery ID.

        Raises:
            NotFoundError: If the webhook does not exist.
            ValidationError: If the webhook is inactive, belongs to another
                survey, or a response event carries no response.
            ConfigurationError: If the webhook URL or secret is unusable.
        """
        snapshot = await self._deliverable_snapshot(webhook_id)
        if snapshot.survey_id != event_data.survey.id:
            raise ValidationError("survey", "does not belong to this webhook")

        payload = build_payload(snapshot, event, event_data)
        await self._enqueue(snapshot, payload)
        logger.info(
            "Manual delivery queued",
            webhook_id=webhook_id,
            delivery_id=payload.delivery_id,
            event_kind=event,
        )
        return payload.delivery_id

    async def redeliver(self, delivery_id: str) -> str:
        """Send the body of a finished, failed delivery again.

        The logged body is replayed as a new delivery with a fresh ID and a
        full retry budget, signed with the webhook's current secret. The
        original delivery's history is left untouched.

        Returns:
            The new delivery ID.

        Raises:
            NotFoundError: If no attempt was logged for ``delivery_id`` or
                its webhook no longer exists.
            ValidationError: If the delivery succeeded, is still in
                progress, or the webhook is inactive.
            ConfigurationError: If the webhook URL or secret is unusable.
        """
        attempts = await self._store.get_delivery(delivery_id)
        if not attempts:
            raise NotFoundError("delivery", delivery_id)

        last = attempts[-1]
        if last.success:
            raise ValidationError("delivery", "cannot retry a successful delivery")
        if not last.is_terminal or delivery_id in self._states:
            raise ValidationError("delivery", "is still in progress")

        sent = [a for a in attempts if a.request_body]
        if not sent:
            raise ValidationError("delivery", "has no logged request body to replay")
        try:
            original = WebhookPayload.deserialize(sent[-1].request_body)
        except pydantic.ValidationError as e:
            raise ValidationError("delivery", "logged request body is unreadable") from e

        snapshot = await self._deliverable_snapshot(last.webhook_id)
        payload = original.model_copy(update={"delivery_id": generate_delivery_id()})
        await self._enqueue(snapshot, payload)
        logger.info(
            "Delivery requeued",
            original_delivery_id=delivery_id,
            delivery_id=payload.delivery_id,
            webhook_id=snapshot.id,
        )
        return payload.delivery_id

    def _open(self, delivery_id: str, state: DeliveryState = "pending") -> None:
        self._states[delivery_id] = state
        self._idle.clear()

    def _close(self, delivery_id: str) -> None:
        self._states.pop(delivery_id, None)
        if not self._states:
            self._idle.set()

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            bind_context(
                delivery_id=job.payload.delivery_id,
                webhook_id=job.webhook.id,
                attempt=job.attempt_number,
            )
            try:
                await self._process(job)
            except SurveyHooksError as e:
                self._on_fault(e, job.webhook.id)
                self._close(job.payload.delivery_id)
            except Exception:
                logger.exception("Delivery worker error")
                self._close(job.payload.delivery_id)
            finally:
                clear_context()
                self._queue.task_done()

    async def _process(self, job: DeliveryJob) -> None:
        """Make one attempt, log it, then schedule the follow-up or finish.

        A StorageError from the log write propagates and halts the delivery,
        so the state machine never runs ahead of the log.
        """
        delivery_id = job.payload.delivery_id
        self._states[delivery_id] = "attempting"
        fault: ConfigurationError | None = None

        current = await self._registry.get_webhook(job.webhook.id)
        if current is None or not current.is_active:
            reason = "Webhook deleted" if current is None else "Webhook deactivated"
            logger.info("Delivery cancelled", reason=reason)
            attempt = self._executor.cancelled_attempt(
                job.webhook, job.payload, job.attempt_number, reason
            )
        else:
            try:
                validate_webhook(job.webhook)
            except ConfigurationError as e:
                fault = e
                attempt = self._executor.cancelled_attempt(
                    job.webhook,
                    job.payload,
                    job.attempt_number,
                    f"Webhook misconfigured: {e.message}",
                )
            else:
                attempt = await self._executor.attempt(
                    job.webhook, job.payload, job.attempt_number
                )

        decision = self._scheduler.decide(job.webhook, attempt)
        await self._store.append(attempt)
        if fault is not None:
            self._on_fault(fault, job.webhook.id)

        if decision.retry and decision.delay_seconds is not None:
            self._states[delivery_id] = "retry_scheduled"
            next_job = DeliveryJob(
                webhook=job.webhook.model_copy(
                    update={"retry_count": job.webhook.retry_count + 1}
                ),
                payload=job.payload,
                attempt_number=job.attempt_number + 1,
            )
            self._scheduler.schedule(next_job, decision.delay_seconds)
            return

        logger.info("Delivery finished", state=attempt.state, attempts=attempt.attempt)
        self._close(delivery_id)

    async def recover(self, limit: int = 1000) -> int:
        """Reschedule retries recorded in the log by a previous process.

        The payload is rebuilt from the logged request body, so receivers see
        the same delivery ID and body. Webhook configuration is re-read from
        the registry; a webhook deleted meanwhile gets its cancellation
        record on the next attempt.

        Args:
            limit: Maximum number of deliveries to resume.

        Returns:
            Number of deliveries rescheduled.
        """
        pending = await self._store.pending_retries(limit=limit)
        now = datetime.now(UTC)
        resumed = 0

        for last in pending:
            if last.delivery_id in self._states:
                continue
            try:
                payload = WebhookPayload.deserialize(last.request_body)
            except pydantic.ValidationError as e:
                logger.error(
                    "Cannot resume delivery with unreadable request body",
                    delivery_id=last.delivery_id,
                    error=str(e),
                )
                continue

            webhook = await self._registry.get_webhook(last.webhook_id)
            snapshot = self._resume_snapshot(webhook, last)

            delay = 0.0
            if last.next_retry_at is not None:
                delay = max(0.0, (last.next_retry_at - now).total_seconds())

            self._open(last.delivery_id, "retry_scheduled")
            self._scheduler.schedule(
                DeliveryJob(webhook=snapshot, payload=payload, attempt_number=last.attempt + 1),
                delay,
            )
            resumed += 1

        if resumed:
            logger.info("Resumed pending deliveries", count=resumed)
        return resumed

    @staticmethod
    def _resume_snapshot(webhook: Webhook | None, last: DeliveryAttempt) -> Webhook:
        if webhook is None:
            # Stand-in so the next attempt can record the cancellation
            return Webhook(
                id=last.webhook_id,
                survey_id=last.survey_id,
                url=last.url,
                name=last.webhook_id,
                is_active=False,
                max_retries=min(last.attempt, 10),
                retry_count=min(last.attempt, 10),
            )
        snapshot = webhook.snapshot()
        return snapshot.model_copy(
            update={"retry_count": min(last.attempt, snapshot.max_retries)}
        )

    async def wait_idle(self) -> None:
        """Wait until every dispatched delivery has reached a terminal state.

        Includes waiting out scheduled retries, so use short backoff delays
        where this is awaited.
        """
        while True:
            if self._fanouts:
                await asyncio.gather(*self._fanouts, return_exceptions=True)
                continue
            await self._idle.wait()
            if not self._fanouts and not self._states:
                return

    async def test_delivery(
        self,
        webhook: Webhook,
        event: EventKind = "response.submitted",
        event_data: EventData | None = None,
    ) -> DeliveryAttempt:
        """Send one test delivery right away.

        Makes a single attempt with sample data (unless ``event_data`` is
        given). The attempt is not logged and never retried.

        Raises:
            ConfigurationError: If the webhook URL or secret is unusable.
        """
        data = event_data or build_sample_event_data()
        payload = build_payload(webhook, event, data)
        attempt = await self._executor.attempt(webhook, payload, attempt_number=1)
        attempt.can_retry = False
        return attempt


__all__ = [
    "DeliveryJob",
    "FaultHandler",
    "WebhookDispatcher",
    "log_fault",
]
