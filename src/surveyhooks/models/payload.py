"""Wire payload sent to webhook endpoints."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import Field

from .base import EventKind, WireModel
from .webhook import QuestionMapping


class SurveySummary(WireModel):
    """Survey block of the payload."""

    id: str
    name: str
    status: str


class ResponseSummary(WireModel):
    """Response block of the payload (response events only).

    Attributes:
        answers: Keyed by internal question ID, or by external ID when the
            webhook uses question mappings. Never a mix of both.
        metadata: Present only when the webhook includes metadata.
    """

    id: str
    submitted_at: datetime
    completed_at: datetime | None = None
    is_complete: bool
    answers: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None


class WebhookPayload(WireModel):
    """JSON body POSTed to a webhook.

    Field names on the wire are stable: ``deliveryId``, ``event``,
    ``timestamp``, ``survey``, ``response`` (optional) and
    ``questionMappings`` (optional).
    """

    delivery_id: str
    event: EventKind
    timestamp: datetime
    survey: SurveySummary
    response: ResponseSummary | None = None
    question_mappings: list[QuestionMapping] | None = None

    def to_wire(self) -> dict[str, Any]:
        """Camel-cased dict with absent optional blocks removed."""
        data = self.model_dump(mode="json", by_alias=True)
        if data.get("response") is None:
            data.pop("response", None)
        else:
            for key in ("completedAt", "metadata"):
                if data["response"].get(key) is None:
                    data["response"].pop(key, None)
        if data.get("questionMappings") is None:
            data.pop("questionMappings", None)
        else:
            for mapping in data["questionMappings"]:
                for key in ("fieldName", "description"):
                    if mapping.get(key) is None:
                        mapping.pop(key, None)
        return data

    def serialize(self) -> str:
        """Exact JSON text that is signed and sent."""
        return json.dumps(self.to_wire(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def deserialize(cls, body: str) -> WebhookPayload:
        """Rebuild a payload from a logged request body."""
        return cls.model_validate_json(body)


__all__ = [
    "ResponseSummary",
    "SurveySummary",
    "WebhookPayload",
]
