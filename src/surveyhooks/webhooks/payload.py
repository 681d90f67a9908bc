"""Build the JSON payload for one (webhook, event, event data) triple."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from surveyhooks.exceptions import ValidationError
from surveyhooks.logging import get_logger
from surveyhooks.models import (
    EventData,
    QuestionMapping,
    ResponseSnapshot,
    ResponseSummary,
    SurveySnapshot,
    SurveySummary,
    WebhookPayload,
    generate_delivery_id,
    is_response_event,
)

if TYPE_CHECKING:
    from surveyhooks.models import EventKind, Webhook

logger = get_logger(__name__)

SAMPLE_QUESTION_ID = "sample-question-id"


def apply_question_mappings(
    answers: dict[str, Any],
    mappings: list[QuestionMapping],
) -> dict[str, Any]:
    """Re-key answers by external ID.

    Answers to questions without a mapping are left out so that a payload
    never mixes internal and external keys.

    Args:
        answers: Answers keyed by internal question ID.
        mappings: Mapping table.

    Returns:
        Answers keyed by each mapping's external key.
    """
    by_question = {m.question_id: m for m in mappings}
    mapped: dict[str, Any] = {}
    dropped: list[str] = []

    for question_id, value in answers.items():
        mapping = by_question.get(question_id)
        if mapping is None:
            dropped.append(question_id)
            continue
        mapped[mapping.external_key] = value

    if dropped:
        logger.debug("Unmapped answers omitted from payload", question_ids=dropped)

    return mapped


def _response_summary(
    webhook: Webhook,
    response: ResponseSnapshot,
    mappings: list[QuestionMapping],
) -> ResponseSummary:
    answers = dict(response.answers)
    if webhook.use_question_mappings and mappings:
        answers = apply_question_mappings(answers, mappings)

    return ResponseSummary(
        id=response.id,
        submitted_at=response.submitted_at,
        completed_at=response.completed_at,
        is_complete=response.is_complete,
        answers=answers,
        metadata=dict(response.metadata or {}) if webhook.include_metadata else None,
    )


def build_payload(
    webhook: Webhook,
    event: EventKind,
    event_data: EventData,
    delivery_id: str | None = None,
) -> WebhookPayload:
    """Assemble the wire payload for one webhook.

    Args:
        webhook: Webhook snapshot (flags are read from it).
        event: Event kind being delivered.
        event_data: Survey snapshot and, for response events, the response.
        delivery_id: Identifier to use. A new UUID4 when omitted.

    Returns:
        The payload. Its delivery_id is reused by every retry.

    Raises:
        ValidationError: If a response event carries no response.
    """
    if event_data.requires_response(event):
        raise ValidationError("response", f"required for {event} events")

    survey = event_data.survey
    mappings = survey.question_mappings

    payload = WebhookPayload(
        delivery_id=delivery_id or generate_delivery_id(),
        event=event,
        timestamp=event_data.occurred_at,
        survey=SurveySummary(id=survey.id, name=survey.name, status=survey.status),
    )

    if is_response_event(event) and event_data.response is not None:
        payload.response = _response_summary(webhook, event_data.response, mappings)

    if webhook.use_question_mappings:
        payload.question_mappings = [m.model_copy() for m in mappings]

    return payload


def build_sample_event_data(survey: SurveySnapshot | None = None) -> EventData:
    """Sample event data for the "send test webhook" action.

    Args:
        survey: Survey to describe. A placeholder survey when omitted.

    Returns:
        EventData with a complete sample response.
    """
    now = datetime.now(UTC)
    if survey is None:
        survey = SurveySnapshot(id="test-survey-id", name="Sample survey", status="published")

    answers: dict[str, Any] = {SAMPLE_QUESTION_ID: "Sample answer"}
    for mapping in survey.question_mappings:
        answers.setdefault(mapping.question_id, "Sample answer")

    return EventData(
        survey=survey,
        response=ResponseSnapshot(
            id="test-response-id",
            submitted_at=now,
            completed_at=now,
            is_complete=True,
            answers=answers,
            metadata={"deviceType": "desktop", "browser": "Chrome"},
        ),
        occurred_at=now,
    )


__all__ = [
    "apply_question_mappings",
    "build_payload",
    "build_sample_event_data",
]
