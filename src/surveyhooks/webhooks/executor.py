"""Single delivery attempt: sign, POST, classify.

Classification of the outcome:
- 2xx: success
- network error, timeout, 5xx, 429: retryable failure
- any other 4xx: permanent failure, the endpoint is rejecting the payload

Ordinary HTTP and network failures never raise; they are recorded on the
returned DeliveryAttempt. Only a misconfigured webhook raises.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Literal

import httpx

from surveyhooks.exceptions import ConfigurationError
from surveyhooks.logging import get_logger
from surveyhooks.models import DeliveryAttempt

from .signing import sign

if TYPE_CHECKING:
    from surveyhooks.models import Webhook, WebhookPayload

logger = get_logger(__name__)

Outcome = Literal["success", "retryable", "permanent"]

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_HEADER = "X-Webhook-Delivery"

# Custom headers may never replace these (compared case-insensitively)
RESERVED_HEADERS = frozenset(
    name.lower() for name in ("Content-Type", SIGNATURE_HEADER, EVENT_HEADER, DELIVERY_HEADER)
)

ERROR_SNIPPET_LENGTH = 200


def classify_status(status_code: int) -> Outcome:
    """Classify an HTTP status code.

    Args:
        status_code: Response status.

    Returns:
        "success" for 2xx, "retryable" for 429 and 5xx, "permanent" otherwise.
    """
    if 200 <= status_code < 300:
        return "success"
    if status_code == 429 or status_code >= 500:
        return "retryable"
    return "permanent"


def validate_webhook(webhook: Webhook) -> None:
    """Reject webhooks that can never be delivered to.

    Raises:
        ConfigurationError: If the URL is malformed or the secret is missing.
    """
    try:
        url = httpx.URL(webhook.url)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigurationError(f"Malformed webhook URL: {e}", webhook_id=webhook.id) from e

    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(
            f"Webhook URL must be an absolute http(s) URL: {webhook.url!r}",
            webhook_id=webhook.id,
        )
    if not webhook.secret:
        raise ConfigurationError("Webhook has no signing secret", webhook_id=webhook.id)


class DeliveryExecutor:
    """Performs delivery attempts over a shared HTTP client.

    Example:
        ```python
        async with httpx.AsyncClient() as client:
            executor = DeliveryExecutor(client, timeout_seconds=30.0)
            attempt = await executor.attempt(webhook, payload, attempt_number=1)
        ```
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
        user_agent: str = "surveyhooks",
        response_body_limit: int = 10000,
    ) -> None:
        """Initialize the executor.

        Args:
            client: Shared HTTP client. The caller owns its lifecycle.
            timeout_seconds: Ceiling for one attempt.
            user_agent: User-Agent header value.
            response_body_limit: Characters of response body kept in the log.
        """
        self._client = client
        self._timeout = timeout_seconds
        self._user_agent = user_agent
        self._body_limit = response_body_limit

    def build_headers(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        body: str,
        timestamp: int,
    ) -> dict[str, str]:
        """Request headers for one attempt.

        Custom webhook headers go first; reserved headers are then set and
        any custom header with a reserved name is dropped.
        """
        headers = {
            name: value
            for name, value in webhook.headers.items()
            if name.lower() not in RESERVED_HEADERS
        }
        headers.setdefault("User-Agent", self._user_agent)
        headers["Content-Type"] = "application/json"
        headers[SIGNATURE_HEADER] = sign(webhook.secret, timestamp, body)
        headers[EVENT_HEADER] = payload.event
        headers[DELIVERY_HEADER] = payload.delivery_id
        return headers

    def _new_attempt(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        attempt_number: int,
    ) -> DeliveryAttempt:
        return DeliveryAttempt(
            delivery_id=payload.delivery_id,
            webhook_id=webhook.id,
            survey_id=payload.survey.id,
            response_id=payload.response.id if payload.response else None,
            event=payload.event,
            url=webhook.url,
            attempt=attempt_number,
        )

    async def attempt(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        attempt_number: int,
    ) -> DeliveryAttempt:
        """POST the payload once and record the outcome.

        The returned attempt has ``can_retry`` set from classification alone;
        the retry scheduler later clears it when the budget is spent.

        Args:
            webhook: Webhook snapshot to deliver to.
            payload: Payload (its delivery_id is stable across retries).
            attempt_number: 1-based attempt number.

        Returns:
            A fully populated DeliveryAttempt.

        Raises:
            ConfigurationError: If the webhook URL or secret is unusable.
        """
        validate_webhook(webhook)

        body = payload.serialize()
        headers = self.build_headers(webhook, payload, body, int(time.time()))
        record = self._new_attempt(webhook, payload, attempt_number)
        record.request_headers = headers
        record.request_body = body

        started = time.monotonic()
        try:
            response = await self._client.post(
                webhook.url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            record.error = "Request timeout"
            record.can_retry = True
        except httpx.RequestError as e:
            record.error = str(e) or type(e).__name__
            record.can_retry = True
        except Exception as e:
            record.error = f"Unexpected error: {e}"
            record.can_retry = False
            logger.exception("Webhook delivery error", webhook_id=webhook.id)
        else:
            self._record_response(record, response)
        record.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "Webhook attempt finished",
            webhook_id=webhook.id,
            delivery_id=payload.delivery_id,
            event_kind=payload.event,
            attempt=attempt_number,
            status_code=record.status_code,
            success=record.success,
            retryable=record.can_retry,
            duration_ms=record.duration_ms,
        )
        return record

    def _record_response(self, record: DeliveryAttempt, response: httpx.Response) -> None:
        text = response.text or ""
        record.status_code = response.status_code
        record.response_body = text[: self._body_limit] if text else None
        record.response_headers = dict(response.headers)

        outcome = classify_status(response.status_code)
        record.success = outcome == "success"
        record.can_retry = outcome == "retryable"
        if not record.success:
            record.error = f"HTTP {response.status_code}: {text[:ERROR_SNIPPET_LENGTH]}"

    def cancelled_attempt(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        attempt_number: int,
        reason: str,
    ) -> DeliveryAttempt:
        """Terminal record for an attempt that was never sent.

        Used when the webhook was removed or no longer validates by the time
        a waiting delivery comes up. Nothing goes over the wire; the record closes the delivery
        so its history still ends in exactly one terminal attempt.
        """
        record = self._new_attempt(webhook, payload, attempt_number)
        record.error = reason
        record.can_retry = False
        record.duration_ms = 0
        return record


__all__ = [
    "DELIVERY_HEADER",
    "EVENT_HEADER",
    "RESERVED_HEADERS",
    "SIGNATURE_HEADER",
    "DeliveryExecutor",
    "classify_status",
    "validate_webhook",
]
