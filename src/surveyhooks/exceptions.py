"""surveyhooks exception hierarchy.

Provides structured exceptions for the delivery engine. All exceptions
inherit from SurveyHooksError for easy catching.

Only configuration faults and storage faults are ever raised out of the
engine. Delivery failures (timeouts, 5xx, 4xx, exhaustion) are recorded on
DeliveryAttempt records instead.
"""

from __future__ import annotations


class SurveyHooksError(Exception):
    """Base exception for all surveyhooks errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code.
    """

    code: str = "surveyhooks_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to an API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(SurveyHooksError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to an API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(SurveyHooksError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to an API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class ConfigurationError(SurveyHooksError):
    """A webhook (or the engine) is misconfigured.

    Raised for malformed target URLs or missing secrets. The webhook is
    never attempted and is not disabled automatically; the owner has to
    fix it.

    Attributes:
        webhook_id: The offending webhook, when known.
    """

    code: str = "configuration_error"

    def __init__(self, message: str, webhook_id: str | None = None) -> None:
        self.webhook_id = webhook_id
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to an API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "webhook_id": self.webhook_id,
                "message": self.message,
            }
        }


class StorageError(SurveyHooksError):
    """The delivery log store failed to persist or read attempts.

    A delivery whose attempt could not be logged stops advancing.
    """

    code: str = "storage_error"


class DuplicateAttemptError(StorageError):
    """An attempt with the same (delivery_id, attempt) pair already exists."""

    code: str = "duplicate_attempt"

    def __init__(self, delivery_id: str, attempt: int) -> None:
        self.delivery_id = delivery_id
        self.attempt = attempt
        super().__init__(f"Attempt {attempt} already logged for delivery {delivery_id}")


__all__ = [
    "ConfigurationError",
    "DuplicateAttemptError",
    "NotFoundError",
    "StorageError",
    "SurveyHooksError",
    "ValidationError",
]
