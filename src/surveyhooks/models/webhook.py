"""Webhook subscriptions and the event data they are notified about.

The survey and response models here are snapshots handed to the engine by
the event source. The engine never loads or persists surveys itself.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import Field, model_validator

from .base import EventKind, WireModel, generate_id, generate_secret, is_response_event


class QuestionMapping(WireModel):
    """Maps an internal question ID to an external/third-party identifier.

    Attributes:
        question_id: Internal question ID.
        external_id: External identifier.
        field_name: Optional field name for the external system. When set it
            is used as the answer key instead of external_id.
        description: Optional documentation.
    """

    question_id: str = Field(description="Internal question ID")
    external_id: str = Field(description="External/third-party identifier")
    field_name: str | None = Field(default=None, description="Field name in the external system")
    description: str | None = Field(default=None, description="Optional description")

    @property
    def external_key(self) -> str:
        """Key used for this question's answer when mappings are enabled."""
        return self.field_name or self.external_id


class Webhook(WireModel):
    """A webhook subscription for one survey.

    Attributes:
        id: Unique identifier for this webhook.
        survey_id: Survey that owns this webhook.
        url: HTTP(S) endpoint that receives events.
        name: Human-readable name.
        description: Optional human-readable description.
        is_active: Whether new deliveries may be attempted.
        events: Event kinds this webhook subscribes to.
        headers: Custom headers sent with every delivery.
        include_metadata: Include response metadata in payloads.
        use_question_mappings: Key answers by external IDs.
        secret: Shared secret for HMAC-SHA256 signatures. Generated once.
        max_retries: Retry budget per delivery.
        retry_count: Retries used so far. Always 0 on a registered webhook;
            each delivery counts on its own snapshot (see ``snapshot()``),
            so concurrent deliveries never share or reset a budget.
        created_at: When the webhook was registered.
        updated_at: When the webhook was last modified.
    """

    id: str = Field(default_factory=lambda: generate_id("whk"))
    survey_id: str = Field(description="Survey that owns this webhook")
    url: str = Field(description="Endpoint to POST events to")
    name: str = Field(description="Human-readable name")
    description: str | None = Field(default=None, description="Optional description")
    is_active: bool = Field(default=True, description="Whether this webhook is active")
    events: list[EventKind] = Field(
        default_factory=lambda: ["response.submitted"],
        description="Event kinds that trigger this webhook",
    )
    headers: dict[str, str] = Field(default_factory=dict, description="Custom request headers")
    include_metadata: bool = Field(default=True, description="Include respondent metadata")
    use_question_mappings: bool = Field(
        default=False, description="Key answers by external IDs from the mapping table"
    )
    secret: str = Field(
        default_factory=generate_secret,
        frozen=True,
        description="Shared secret for HMAC-SHA256 signatures",
    )
    max_retries: int = Field(default=3, ge=0, le=10, description="Maximum retries per delivery")
    retry_count: int = Field(default=0, ge=0, description="Retries used by a delivery snapshot")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the webhook was registered",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the webhook was last modified",
    )

    @model_validator(mode="after")
    def validate_retry_budget(self) -> "Webhook":
        """retry_count can never exceed max_retries."""
        if self.retry_count > self.max_retries:
            raise ValueError(
                f"retry_count ({self.retry_count}) exceeds max_retries ({self.max_retries})"
            )
        return self

    def subscribes_to(self, event: EventKind) -> bool:
        """Check if this webhook is active and subscribes to the given event."""
        return self.is_active and event in self.events

    def snapshot(self) -> "Webhook":
        """Copy taken when an event is dispatched, with a fresh retry budget.

        Later edits to the registered webhook do not affect deliveries
        already running from this snapshot.
        """
        return self.model_copy(deep=True, update={"retry_count": 0})


class SurveySnapshot(WireModel):
    """The survey fields the engine needs.

    Attributes:
        id: Survey ID.
        name: Survey name.
        status: Survey status (e.g. draft, published).
        question_mappings: Mapping table from the survey's developer settings.
    """

    id: str
    name: str
    status: str
    question_mappings: list[QuestionMapping] = Field(default_factory=list)


class ResponseSnapshot(WireModel):
    """A survey response as submitted.

    Attributes:
        id: Response ID.
        submitted_at: When the response was submitted.
        completed_at: When the respondent completed the survey, if they did.
        is_complete: Whether every required question was answered.
        answers: Answers keyed by internal question ID.
        metadata: Respondent metadata (device, browser, etc.).
    """

    id: str
    submitted_at: datetime
    completed_at: datetime | None = None
    is_complete: bool = True
    answers: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None


class EventData(WireModel):
    """Event-specific data passed to dispatch().

    Attributes:
        survey: Snapshot of the survey the event belongs to.
        response: Snapshot of the response (response events only).
        occurred_at: When the event happened.
    """

    survey: SurveySnapshot
    response: ResponseSnapshot | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def requires_response(self, event: EventKind) -> bool:
        """Whether ``event`` needs a response snapshot that is missing here."""
        return is_response_event(event) and self.response is None


__all__ = [
    "EventData",
    "QuestionMapping",
    "ResponseSnapshot",
    "SurveySnapshot",
    "Webhook",
]
