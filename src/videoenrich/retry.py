"""Retry and timeout helpers shared by the stage components.

Retries live inside a stage; the orchestrator never retries on its own.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import TransientUpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_seconds(attempt: int, base: float = 1.0, maximum: float = 30.0) -> float:
    """Exponential backoff for the given 1-based attempt number."""
    return min(maximum, max(0.0, base * (2 ** max(0, attempt - 1))))


def looks_transient(error: BaseException) -> bool:
    """Check if an error looks like a network blip or rate limiting.

    Args:
        error: The exception that occurred

    Returns:
        True if retrying the same call could plausibly succeed
    """
    if isinstance(error, TransientUpstreamError):
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    error_str = str(error).lower()

    transient_indicators = [
        "429",
        "500",
        "502",
        "503",
        "504",
        "too many requests",
        "rate limit",
        "throttl",
        "temporary failure",
        "fragment",
        "unable to download",
        "connection reset",
        "connection aborted",
        "timed out",
    ]

    return any(indicator in error_str for indicator in transient_indicators)


def retry_call(
    fn: Callable[[], T],
    *,
    max_attempts: int,
    base: float = 1.0,
    maximum: float = 30.0,
    retry_on: Tuple[Type[BaseException], ...] = (TransientUpstreamError,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``max_attempts`` is used up.

    An exception is retried when it is an instance of ``retry_on`` or when
    ``should_retry`` says so. Anything else propagates immediately, as does
    the last error once attempts are exhausted.
    """
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            retryable = isinstance(e, retry_on) or (should_retry is not None and should_retry(e))
            if not retryable or attempt >= attempts:
                raise
            delay = backoff_seconds(attempt, base, maximum)
            logger.info("Attempt %d/%d failed (%s); retrying in %.1fs", attempt, attempts, e, delay)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            sleep(delay)
    raise RuntimeError("unreachable")


def run_with_timeout(fn: Callable[[], T], timeout_s: Optional[float]) -> T:
    """Run ``fn`` on a worker thread and wait at most ``timeout_s`` seconds.

    On timeout the worker is abandoned and :class:`TimeoutError` is raised;
    whatever it eventually returns is discarded.
    """
    if not timeout_s or timeout_s <= 0:
        return fn()
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="ve-call")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout_s)
    except concurrent.futures.TimeoutError as e:
        future.cancel()
        raise TimeoutError(f"timed out after {timeout_s:.0f}s") from e
    finally:
        executor.shutdown(wait=False)
