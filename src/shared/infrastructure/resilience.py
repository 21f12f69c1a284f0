"""Retry-with-backoff and timeout wrappers for outbound calls.

``with_timeout`` races the call (on a worker thread) against a timer and
raises ``CallTimeout`` when the timer wins.  ``retry`` re-invokes a call
on transient failures with exponential backoff
(``base_delay * 2 ** (attempt - 1)``).  The two are independent: the
timeout bounds a single attempt, ``max_attempts`` bounds the retries.

``CollaboratorClient.request`` composes both for every adapter call.
``fire_and_log`` runs best-effort side calls whose failure must never
change the outcome of the operation that triggered them.
"""

from __future__ import annotations

import contextvars
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]

_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="outbound-call")


class CallTimeout(TimeoutError):
    """An outbound call did not finish within its timeout."""


def always_retry(exc: BaseException) -> bool:
    return True


def with_timeout(
    func: Callable[..., T],
    timeout: Optional[float],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run ``func(*args, **kwargs)`` and fail with ``CallTimeout`` after *timeout* seconds."""
    if not timeout or timeout <= 0:
        return func(*args, **kwargs)

    # Carry structlog contextvars (correlation id, tenant) into the worker thread.
    ctx = contextvars.copy_context()
    future = _executor.submit(ctx.run, func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise CallTimeout(f"Operation timed out after {timeout}s") from None


def backoff_delay(attempt: int, base_delay: float, exponential: bool = True) -> float:
    """Delay before the retry that follows *attempt* (1-based)."""
    if exponential:
        return base_delay * (2 ** (attempt - 1))
    return base_delay


def retry(
    func: Callable[..., T],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    exponential: bool = True,
    retry_if: RetryPredicate = always_retry,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call *func* up to *max_attempts* times.

    Exceptions rejected by *retry_if* propagate immediately; the last
    transient exception propagates once attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            if attempt >= max_attempts or not retry_if(exc):
                raise
            delay = backoff_delay(attempt, base_delay, exponential)
            logger.warning(
                "resilience.retrying",
                call=getattr(func, "__qualname__", repr(func)),
                attempt=attempt,
                max_attempts=max_attempts,
                delay=delay,
                error=str(exc),
            )
            sleep(delay)
            attempt += 1


def fire_and_log(operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
    """Run a best-effort side call; failures are logged and swallowed."""
    try:
        return func(*args, **kwargs)
    except Exception as exc:
        logger.warning("side_effect.failed", operation=operation, error=str(exc))
        return None
