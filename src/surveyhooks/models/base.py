"""Base models and shared types for surveyhooks."""

from __future__ import annotations

import secrets
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Event kinds that can trigger webhooks (closed set)
EventKind = Literal[
    "response.submitted",
    "response.updated",
    "response.deleted",
    "survey.published",
    "survey.unpublished",
]

ALL_EVENT_KINDS: list[EventKind] = [
    "response.submitted",
    "response.updated",
    "response.deleted",
    "survey.published",
    "survey.unpublished",
]

# Events whose payload carries a response summary
RESPONSE_EVENT_KINDS: frozenset[str] = frozenset(
    {"response.submitted", "response.updated", "response.deleted"}
)

SECRET_PREFIX = "whsec_"


class WireModel(BaseModel):
    """Base for models that travel over the wire in camelCase.

    Python code uses snake_case attribute names; ``model_dump(by_alias=True)``
    produces the camelCase field names receivers see.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
        generate_id("att") -> "att_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def generate_delivery_id() -> str:
    """Generate a globally unique delivery identifier (UUID4)."""
    return str(uuid4())


def generate_secret() -> str:
    """Generate a webhook signing secret: ``whsec_`` + 64 hex characters."""
    return f"{SECRET_PREFIX}{secrets.token_hex(32)}"


def is_response_event(event: str) -> bool:
    """Whether payloads for this event kind carry a response summary."""
    return event in RESPONSE_EVENT_KINDS
