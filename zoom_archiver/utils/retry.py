"""Retry/backoff decorator for outbound API calls."""

import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from zoom_archiver.errors import AuthError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for a single outbound call.

    Attributes:
        max_attempts: Total attempts for retryable failures (5xx, 429, network).
        base_delay: Delay in seconds before the first retry.
        backoff_factor: Multiplier applied to the delay for each further retry.
        max_delay: Upper bound for any single delay, including Retry-After.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0

    def backoff(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        delay = self.base_delay * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay)


DEFAULT_POLICY = RetryPolicy()


def with_retry(
    policy: RetryPolicy = DEFAULT_POLICY,
    on_unauthorized: Optional[Callable[[], None]] = None,
) -> Callable:
    """Wrap a single-attempt call with the retry policy.

    The wrapped function must raise ``UpstreamError`` on failure. Retryable
    errors are retried with exponential backoff up to ``policy.max_attempts``;
    a 429 waits for the server's Retry-After when one was given.

    When ``on_unauthorized`` is set, a 401 invokes it (token invalidation) and
    the call is repeated once outside the attempt budget. A second 401 raises
    ``AuthError``. Without the hook a 401 is surfaced as a non-retryable
    ``UpstreamError``.

    Args:
        policy: Retry settings.
        on_unauthorized: Callback run before re-trying after a 401.

    Returns:
        Decorator.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 1
            reauthenticated = False

            while True:
                try:
                    return func(*args, **kwargs)
                except UpstreamError as e:
                    if e.status == 401 and on_unauthorized is not None:
                        if reauthenticated:
                            raise AuthError(f"Request rejected after token refresh: {e.message}") from e
                        logger.info("Got 401, refreshing access token and retrying once")
                        on_unauthorized()
                        reauthenticated = True
                        continue

                    if not e.retryable or attempt >= policy.max_attempts:
                        raise

                    if e.status == 429 and e.retry_after is not None:
                        delay = min(e.retry_after, policy.max_delay)
                    else:
                        delay = policy.backoff(attempt)

                    logger.warning(
                        f"{func.__name__} failed ({e}), retrying in {delay:.1f}s "
                        f"(attempt {attempt}/{policy.max_attempts})"
                    )
                    time.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
