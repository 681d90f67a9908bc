"""surveyhooks: webhook delivery for survey events.

Delivers survey lifecycle events (responses submitted, updated or deleted;
surveys published or unpublished) to registered HTTP endpoints, signed
with HMAC-SHA256, retried with exponential backoff and logged attempt by
attempt.

Quick Start:
    from surveyhooks import WebhookDeliveryService

    async with WebhookDeliveryService.create() as service:
        await service.registry.save_webhook(webhook)

        # Fire-and-forget; never blocks on HTTP
        service.dispatch("response.submitted", event_data)

        status = await service.summarize(webhook.id)

Receivers verify deliveries with surveyhooks.webhooks.verify_header().
"""

__version__ = "0.1.0"

# Configuration
from .config import RetryPolicy, Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    DuplicateAttemptError,
    NotFoundError,
    StorageError,
    SurveyHooksError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttempt,
    EventData,
    EventKind,
    QuestionMapping,
    ResponseSnapshot,
    SurveySnapshot,
    Webhook,
    WebhookDeliveryStatus,
    WebhookPayload,
)

# Service
from .service import WebhookDeliveryService

__all__ = [
    # Version
    "__version__",
    # Configuration
    "RetryPolicy",
    "Settings",
    "settings",
    # Exceptions
    "SurveyHooksError",
    "ConfigurationError",
    "DuplicateAttemptError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "DeliveryAttempt",
    "EventData",
    "EventKind",
    "QuestionMapping",
    "ResponseSnapshot",
    "SurveySnapshot",
    "Webhook",
    "WebhookDeliveryStatus",
    "WebhookPayload",
    # Service
    "WebhookDeliveryService",
]
