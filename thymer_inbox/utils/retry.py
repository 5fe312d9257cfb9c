"""Retry utilities with exponential backoff and rate-limit waits."""

import time
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from typing import Callable, Iterator, Optional, Tuple, Type

import structlog

from thymer_inbox.exceptions import RateLimitedError, TransientHTTPError

log = structlog.stdlib.get_logger()

RATE_LIMIT_FALLBACK_SECONDS = 10.0

_deadline: ContextVar[Optional[float]] = ContextVar("retry_deadline", default=None)


@contextmanager
def retry_deadline(deadline: Optional[float]) -> Iterator[None]:
    """
    Bound every retry wait started inside the block by ``deadline``.

    ``deadline`` is a ``time.monotonic()`` value. A wait that would end past
    it is not started; the error that asked for it is raised instead, so the
    caller fails while it is still waiting for the result.
    """
    token = _deadline.set(deadline)
    try:
        yield
    finally:
        _deadline.reset(token)


def _exceeds_deadline(delay: float) -> bool:
    deadline = _deadline.get()
    return deadline is not None and time.monotonic() + delay >= deadline


def exponential_backoff_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (TransientHTTPError,),
    max_rate_limit_waits: int = 5,
    rate_limit_fallback: float = RATE_LIMIT_FALLBACK_SECONDS,
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Rate limits are handled separately from ordinary failures: a
    ``RateLimitedError`` sleeps for the delay the provider asked for (or
    ``rate_limit_fallback`` when it gave none) and does not consume one of the
    ``max_retries`` attempts.

    Inside a ``retry_deadline`` block no wait runs past the deadline: the
    error is re-raised instead of sleeping.

    Args:
        max_retries: Maximum number of retry attempts for ``exceptions``
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exceptions: Tuple of exception types to catch and retry
        max_rate_limit_waits: How many rate-limit waits to honour before giving up
        rate_limit_fallback: Seconds to wait when the provider gives no delay

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            rate_limit_waits = 0

            while True:
                try:
                    return func(*args, **kwargs)
                except RateLimitedError as e:
                    if rate_limit_waits >= max_rate_limit_waits:
                        log.error(
                            "rate_limit_waits_exhausted",
                            function=func.__name__,
                            max_rate_limit_waits=max_rate_limit_waits,
                            error=str(e),
                        )
                        raise

                    delay = e.retry_after if e.retry_after is not None else rate_limit_fallback
                    if _exceeds_deadline(delay):
                        log.error(
                            "rate_limit_wait_exceeds_deadline",
                            function=func.__name__,
                            delay_seconds=delay,
                            source=e.source,
                            scope=e.scope,
                        )
                        raise

                    rate_limit_waits += 1

                    log.warning(
                        "rate_limited_waiting",
                        function=func.__name__,
                        wait=rate_limit_waits,
                        delay_seconds=delay,
                        source=e.source,
                        scope=e.scope,
                    )

                    time.sleep(max(delay, 0.0))
                except exceptions as e:
                    if attempt >= max_retries:
                        log.error(
                            "max_retries_reached",
                            function=func.__name__,
                            max_retries=max_retries,
                            error=str(e),
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    if _exceeds_deadline(delay):
                        log.error(
                            "retry_wait_exceeds_deadline",
                            function=func.__name__,
                            delay_seconds=delay,
                            error=str(e),
                        )
                        raise

                    attempt += 1

                    log.warning(
                        "retrying_after_error",
                        function=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay_seconds=delay,
                        error=str(e),
                    )

                    time.sleep(delay)

        return wrapper

    return decorator
