"""Configuration management for surveyhooks."""

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

from surveyhooks import __version__

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Backoff constants for scheduled retries.

    The delay before retry ``n`` (1-based) is:
        min(base_delay_seconds * 2 ** (n - 1), max_delay_seconds)
    plus a random jitter in ``[0, jitter_ratio * delay]`` so that many
    webhooks failing together do not retry in lockstep.

    A ``Retry-After`` header on a 429 response replaces the computed delay,
    bounded by ``retry_after_max_seconds``.

    Attributes:
        base_delay_seconds: Delay before the first retry (60 default).
        max_delay_seconds: Upper bound on the exponential delay (900 default).
        jitter_ratio: Fraction of the delay added as random jitter (0.1 default).
        retry_after_max_seconds: Upper bound honoured for Retry-After (3600 default).
    """

    base_delay_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Delay before the first retry, doubled for each further retry",
    )
    max_delay_seconds: float = Field(
        default=900.0,
        gt=0.0,
        description="Maximum backoff delay before jitter",
    )
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Maximum random jitter as a fraction of the computed delay",
    )
    retry_after_max_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Largest Retry-After value honoured on 429 responses",
    )

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RetryPolicy":
        """The cap must not be below the base delay."""
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


class Settings(BaseSettings):
    """surveyhooks configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the SURVEYHOOKS_ prefix. For example:
        SURVEYHOOKS_DELIVERY_TIMEOUT_SECONDS=10
        SURVEYHOOKS_RETRY_POLICY__BASE_DELAY_SECONDS=30
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Delivery
    delivery_timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=120.0,
        description="HTTP timeout ceiling for a single delivery attempt",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Number of delivery workers (bounds outbound connections)",
    )
    dispatch_queue_size: int = Field(
        default=1000,
        ge=1,
        description="Capacity of the delivery work queue; producers wait when it is full",
    )
    default_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retry budget given to newly created webhooks",
    )
    response_body_limit: int = Field(
        default=10000,
        ge=0,
        description="Maximum characters of a response body kept in the attempt log",
    )
    user_agent: str = Field(
        default=f"surveyhooks/{__version__}",
        description="User-Agent header sent with every delivery",
    )
    recover_on_start: bool = Field(
        default=True,
        description="Reschedule persisted retries when the service starts",
    )

    # Retry
    retry_policy: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Exponential backoff constants",
    )

    # Storage
    storage_backend: Literal["memory", "qdrant"] = Field(
        default="memory",
        description="Where webhooks and the delivery log live",
    )
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="surveyhooks",
        description="Prefix for Qdrant collection names",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    model_config = {
        "env_prefix": "SURVEYHOOKS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def warn_on_short_timeout_in_production(self) -> "Settings":
        """Log when production runs with a very aggressive delivery timeout."""
        if self.env == "production" and self.delivery_timeout_seconds < 5.0:
            logger.warning(
                "delivery_timeout_seconds=%.1f in production; slow receivers will be "
                "retried as timeouts",
                self.delivery_timeout_seconds,
            )
        return self


# Global settings instance
settings = Settings()
