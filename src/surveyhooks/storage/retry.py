"""Retry helpers for Qdrant-backed storage.

Transient network and server errors are retried with exponential backoff.
Whatever still fails afterwards is raised as StorageError, so callers only
ever see the engine's own exception types.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from surveyhooks.exceptions import StorageError, SurveyHooksError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    """Log a retried storage call."""
    logger.warning(
        "Retrying Qdrant operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


def is_transient(error: BaseException) -> bool:
    """Network failures and 5xx responses; 4xx responses are final."""
    if isinstance(error, UnexpectedResponse):
        return error.status_code is None or error.status_code >= 500
    return isinstance(
        error,
        (httpx.ConnectError, httpx.TimeoutException, ResponseHandlingException),
    )


qdrant_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(is_transient),
    before_sleep=_log_retry,
    reraise=True,
)


def storage_operation(
    fn: Callable[P, Awaitable[T]],
) -> Callable[P, Awaitable[T]]:
    """Retry a storage coroutine and convert leftover failures to StorageError.

    Errors that are already SurveyHooksError (e.g. DuplicateAttemptError)
    pass through unchanged.
    """
    retrying = qdrant_retry(fn)

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await retrying(*args, **kwargs)
        except SurveyHooksError:
            raise
        except Exception as e:
            logger.error("Qdrant operation %s failed: %s", fn.__name__, e)
            raise StorageError(f"{fn.__name__} failed: {e}") from e

    return wrapper
