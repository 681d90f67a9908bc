"""High-level webhook delivery service.

Wires storage, the shared HTTP client, the executor, the retry scheduler
and the status aggregator into one object with a small interface.

Example:
    ```python
    from surveyhooks import WebhookDeliveryService

    async with WebhookDeliveryService.create() as service:
        service.dispatch("response.submitted", event_data)

        status = await service.summarize(webhook.id)
        print(f"{status.successful_deliveries}/{status.total_deliveries} delivered")
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from surveyhooks.config import Settings
from surveyhooks.exceptions import NotFoundError
from surveyhooks.logging import configure_logging, get_logger
from surveyhooks.models import Webhook
from surveyhooks.storage import (
    InMemoryDeliveryLogStore,
    InMemoryWebhookRegistry,
    QdrantDeliveryLogStore,
    QdrantStorageBase,
    QdrantWebhookRegistry,
)
from surveyhooks.webhooks import (
    DeliveryExecutor,
    StatusAggregator,
    WebhookDispatcher,
    build_sample_event_data,
)

if TYPE_CHECKING:
    import asyncio

    from surveyhooks.models import (
        DeliveryAttempt,
        EventData,
        EventKind,
        SurveySnapshot,
        WebhookDeliveryStatus,
    )
    from surveyhooks.storage import DeliveryLogStore, WebhookRegistry
    from surveyhooks.webhooks import FaultHandler

logger = get_logger(__name__)


@dataclass
class WebhookDeliveryService:
    """Webhook delivery for survey events.

    This service provides:
    - register_webhook(): Store a new subscription with a generated secret
    - dispatch(): Fire-and-forget delivery of an event to subscribed webhooks
    - trigger_manual(): Deliver an event to one webhook on request
    - redeliver(): Replay a failed delivery under a new ID
    - summarize(): Delivery status of one webhook
    - test_delivery(): One immediate, unlogged test attempt
    - get_delivery_logs() / get_survey_delivery_logs() / get_delivery():
      Attempt history

    Attributes:
        registry: Where webhooks are read from.
        store: Delivery log.
        settings: Configuration settings.
        http_client: Shared HTTP client. Created on initialize() when None.
        on_fault: Receives configuration and storage faults.
    """

    registry: WebhookRegistry
    store: DeliveryLogStore
    settings: Settings
    http_client: httpx.AsyncClient | None = None
    on_fault: FaultHandler | None = None

    _owns_client: bool = field(default=False, init=False, repr=False)
    _executor: DeliveryExecutor | None = field(default=None, init=False, repr=False)
    _dispatcher: WebhookDispatcher | None = field(default=None, init=False, repr=False)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        on_fault: FaultHandler | None = None,
    ) -> WebhookDeliveryService:
        """Create a service with storage chosen by ``settings.storage_backend``.

        Args:
            settings: Optional settings. Uses defaults if None.
            http_client: Optional HTTP client to share.
            on_fault: Optional fault handler.

        Returns:
            Configured (not yet initialized) service.
        """
        if settings is None:
            settings = Settings()

        registry: WebhookRegistry
        store: DeliveryLogStore
        if settings.storage_backend == "qdrant":
            registry = QdrantWebhookRegistry(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
            )
            store = QdrantDeliveryLogStore(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
            )
        else:
            registry = InMemoryWebhookRegistry()
            store = InMemoryDeliveryLogStore()

        return cls(
            registry=registry,
            store=store,
            settings=settings,
            http_client=http_client,
            on_fault=on_fault,
        )

    @property
    def dispatcher(self) -> WebhookDispatcher:
        """Get the dispatcher, raising if not initialized."""
        if self._dispatcher is None:
            raise RuntimeError("Service not initialized. Call initialize() first.")
        return self._dispatcher

    @property
    def executor(self) -> DeliveryExecutor:
        """Get the executor, raising if not initialized."""
        if self._executor is None:
            raise RuntimeError("Service not initialized. Call initialize() first.")
        return self._executor

    def _storage_backends(self) -> list[QdrantStorageBase]:
        return [s for s in (self.registry, self.store) if isinstance(s, QdrantStorageBase)]

    async def initialize(self) -> None:
        """Open storage, start the workers and resume persisted retries."""
        configure_logging(level=self.settings.log_level, format=self.settings.log_format)

        for backend in self._storage_backends():
            await backend.initialize()

        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                timeout=self.settings.delivery_timeout_seconds,
                follow_redirects=False,
            )
            self._owns_client = True

        self._executor = DeliveryExecutor(
            self.http_client,
            timeout_seconds=self.settings.delivery_timeout_seconds,
            user_agent=self.settings.user_agent,
            response_body_limit=self.settings.response_body_limit,
        )
        self._dispatcher = WebhookDispatcher(
            registry=self.registry,
            store=self.store,
            executor=self._executor,
            policy=self.settings.retry_policy,
            max_concurrent=self.settings.max_concurrent_deliveries,
            queue_size=self.settings.dispatch_queue_size,
            on_fault=self.on_fault,
        )
        await self._dispatcher.start()

        resumed = 0
        if self.settings.recover_on_start:
            resumed = await self._dispatcher.recover()

        logger.info(
            "Webhook delivery service initialized",
            storage_backend=self.settings.storage_backend,
            resumed_deliveries=resumed,
        )

    async def close(self) -> None:
        """Stop the workers and release the HTTP client and storage."""
        if self._dispatcher is not None:
            await self._dispatcher.stop()
            self._dispatcher = None
        self._executor = None

        if self.http_client is not None and self._owns_client:
            await self.http_client.aclose()
            self.http_client = None
            self._owns_client = False

        for backend in self._storage_backends():
            await backend.close()

    async def __aenter__(self) -> WebhookDeliveryService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def register_webhook(
        self,
        survey_id: str,
        url: str,
        name: str,
        **fields: Any,
    ) -> Webhook:
        """Create and store a webhook with a fresh secret.

        ``max_retries`` defaults to ``settings.default_max_retries``.

        Args:
            survey_id: Survey that owns the webhook.
            url: Endpoint to deliver to.
            name: Human-readable name.
            **fields: Any other Webhook field (events, headers, flags).

        Returns:
            The stored webhook, including its generated secret.
        """
        fields.setdefault("max_retries", self.settings.default_max_retries)
        webhook = Webhook(survey_id=survey_id, url=url, name=name, **fields)
        await self.registry.save_webhook(webhook)
        logger.info("Webhook registered", webhook_id=webhook.id, survey_id=survey_id)
        return webhook

    def dispatch(self, event: EventKind, event_data: EventData) -> asyncio.Task[list[str]]:
        """Deliver an event to subscribed webhooks in the background.

        Never blocks on HTTP. See WebhookDispatcher.dispatch.
        """
        return self.dispatcher.dispatch(event, event_data)

    async def trigger_manual(
        self,
        webhook_id: str,
        event_data: EventData,
        event: EventKind = "response.submitted",
    ) -> str:
        """Queue one delivery of ``event_data`` to a single webhook.

        See WebhookDispatcher.trigger.
        """
        return await self.dispatcher.trigger(webhook_id, event_data, event)

    async def redeliver(self, delivery_id: str) -> str:
        """Replay a failed delivery under a new delivery ID.

        See WebhookDispatcher.redeliver.
        """
        return await self.dispatcher.redeliver(delivery_id)

    async def summarize(self, webhook_id: str) -> WebhookDeliveryStatus:
        """Delivery status of one webhook, derived from its attempt log."""
        return await StatusAggregator(self.store).summarize(webhook_id)

    async def test_delivery(
        self,
        webhook: Webhook,
        event: EventKind = "response.submitted",
        survey: SurveySnapshot | None = None,
    ) -> DeliveryAttempt:
        """Send one sample payload to ``webhook`` right away.

        The attempt is returned, not logged, and never retried.

        Args:
            webhook: Webhook to test (need not be registered or active).
            event: Event kind to label the sample with.
            survey: Survey to describe in the sample. A placeholder if None.

        Raises:
            ConfigurationError: If the webhook URL or secret is unusable.
        """
        return await self.dispatcher.test_delivery(
            webhook, event, build_sample_event_data(survey)
        )

    async def get_delivery_logs(
        self,
        webhook_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """Attempts of a webhook, newest first."""
        return await self.store.list_attempts(webhook_id, limit=limit, offset=offset)

    async def get_survey_delivery_logs(
        self,
        survey_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """Attempts across every webhook of a survey, newest first."""
        return await self.store.list_attempts_for_survey(survey_id, limit=limit, offset=offset)

    async def get_delivery(self, delivery_id: str) -> list[DeliveryAttempt]:
        """All attempts of one delivery, in attempt order.

        Raises:
            NotFoundError: If no attempt was logged for ``delivery_id``.
        """
        attempts = await self.store.get_delivery(delivery_id)
        if not attempts:
            raise NotFoundError("delivery", delivery_id)
        return attempts

    async def wait_idle(self) -> None:
        """Wait until every dispatched delivery has finished."""
        await self.dispatcher.wait_idle()


__all__ = ["WebhookDeliveryService"]
