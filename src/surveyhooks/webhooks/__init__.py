"""Webhook delivery engine.

Signs payloads with HMAC-SHA256, delivers them through a bounded worker
pool, retries transient failures with exponential backoff and logs every
attempt.

Example:
    ```python
    from surveyhooks.webhooks import DeliveryExecutor, WebhookDispatcher

    executor = DeliveryExecutor(http_client, timeout_seconds=30.0)
    dispatcher = WebhookDispatcher(registry, store, executor, settings.retry_policy)
    await dispatcher.start()

    dispatcher.dispatch("response.submitted", event_data)
    ```
"""

from .dispatcher import DeliveryJob, FaultHandler, WebhookDispatcher, log_fault
from .executor import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    RESERVED_HEADERS,
    SIGNATURE_HEADER,
    DeliveryExecutor,
    classify_status,
    validate_webhook,
)
from .payload import apply_question_mappings, build_payload, build_sample_event_data
from .retry import RetryDecision, RetryScheduler, parse_retry_after
from .signing import (
    SIGNATURE_VERSION,
    compute_signature,
    parse_signature_header,
    sign,
    verify,
    verify_header,
)
from .status import StatusAggregator, summarize_attempts

__all__ = [
    # Signing
    "SIGNATURE_VERSION",
    "compute_signature",
    "parse_signature_header",
    "sign",
    "verify",
    "verify_header",
    # Payloads
    "apply_question_mappings",
    "build_payload",
    "build_sample_event_data",
    # Execution
    "DELIVERY_HEADER",
    "EVENT_HEADER",
    "RESERVED_HEADERS",
    "SIGNATURE_HEADER",
    "DeliveryExecutor",
    "classify_status",
    "validate_webhook",
    # Retry
    "RetryDecision",
    "RetryScheduler",
    "parse_retry_after",
    # Status
    "StatusAggregator",
    "summarize_attempts",
    # Dispatch
    "DeliveryJob",
    "FaultHandler",
    "WebhookDispatcher",
    "log_fault",
]
