"""
Retry helpers for Kubernetes API calls.

Idempotent reads are retried inline with tenacity when the API server or the
connection hiccups. Anything that survives the retries, or is not worth an
inline retry, is translated into a KubernetesError so the reconcile pass can
requeue.
"""
import asyncio
from typing import Callable

import aiohttp
from kubernetes_asyncio.client import ApiException
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cassandra_operator.config.logging import get_logger
from cassandra_operator.exceptions import KubernetesError

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({
    408,  # Request Timeout
    429,  # Too Many Requests
    500,
    502,
    503,
    504,
})


def is_retryable_k8s_error(exception: BaseException) -> bool:
    """
    True for failures worth an inline retry.

    Conflicts (409) and failed patch preconditions (422) are excluded: the
    pass must re-observe before acting again.
    """
    if isinstance(exception, ApiException):
        return exception.status in RETRYABLE_STATUS_CODES
    return isinstance(exception, (aiohttp.ClientConnectionError, asyncio.TimeoutError))


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception()
    logger.warning(
        "k8s_api_call_failed_retrying",
        function=getattr(retry_state.fn, "__name__", None),
        attempt=retry_state.attempt_number,
        delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error_type=type(error).__name__,
        status_code=getattr(error, "status", None),
    )


def retry_on_k8s_error(
    max_retries: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
) -> Callable:
    """
    Decorator retrying a coroutine on retryable Kubernetes API failures.

    The last failure is re-raised unchanged.

    Example:
        @retry_on_k8s_error(max_retries=5)
        async def read_statefulset(name: str):
            ...
    """
    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay, min=initial_delay, max=max_delay),
        retry=retry_if_exception(is_retryable_k8s_error),
        before_sleep=_log_retry,
        reraise=True,
    )


def to_kubernetes_error(action: str, exception: Exception) -> KubernetesError:
    """Wrap an API or connection failure into a KubernetesError."""
    if isinstance(exception, ApiException):
        return KubernetesError(
            f"{action} failed: {exception.status} {exception.reason}",
            status=exception.status,
        )
    return KubernetesError(f"{action} failed: {type(exception).__name__}: {exception}")
