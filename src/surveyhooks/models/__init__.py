"""Data models for surveyhooks.

Subscriptions:
    - Webhook: Subscription with secret, flags and retry budget
    - QuestionMapping: Internal question ID to external ID

Event data (snapshots supplied by the event source):
    - EventData, SurveySnapshot, ResponseSnapshot

Wire format:
    - WebhookPayload, SurveySummary, ResponseSummary

Delivery log:
    - DeliveryAttempt: One HTTP attempt
    - WebhookDeliveryStatus: Derived per-webhook summary
"""

from .base import (
    ALL_EVENT_KINDS,
    RESPONSE_EVENT_KINDS,
    EventKind,
    generate_delivery_id,
    generate_id,
    generate_secret,
    is_response_event,
)
from .delivery import (
    TERMINAL_STATES,
    DeliveryAttempt,
    DeliveryState,
    WebhookDeliveryStatus,
    compute_success_rate,
)
from .payload import ResponseSummary, SurveySummary, WebhookPayload
from .webhook import EventData, QuestionMapping, ResponseSnapshot, SurveySnapshot, Webhook

__all__ = [
    # Base types
    "ALL_EVENT_KINDS",
    "RESPONSE_EVENT_KINDS",
    "EventKind",
    "generate_delivery_id",
    "generate_id",
    "generate_secret",
    "is_response_event",
    # Subscriptions and event data
    "EventData",
    "QuestionMapping",
    "ResponseSnapshot",
    "SurveySnapshot",
    "Webhook",
    # Wire format
    "ResponseSummary",
    "SurveySummary",
    "WebhookPayload",
    # Delivery log
    "TERMINAL_STATES",
    "DeliveryAttempt",
    "DeliveryState",
    "WebhookDeliveryStatus",
    "compute_success_rate",
]
