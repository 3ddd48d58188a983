"""Exponential backoff helpers with jitter, plus a bounded retry wrapper."""
from __future__ import annotations

import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from growth_engine.config import BACKOFF_POLICY
from growth_engine.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    """Raised when every attempt failed or the total time budget ran out."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


def compute_backoff_seconds(attempt: int, *, base: Optional[int] = None, factor: Optional[int] = None, max_seconds: Optional[int] = None, jitter_pct: Optional[float] = None) -> float:
    """Compute exponential backoff delay with jitter."""
    if attempt < 1:
        attempt = 1
    base = int(base if base is not None else BACKOFF_POLICY["base_seconds"])
    factor = int(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = int(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])

    delay = base * (factor ** (attempt - 1))
    delay = min(delay, max_seconds)
    if jitter_pct > 0:
        jitter_amount = delay * jitter_pct
        delay = random.uniform(delay - jitter_amount, delay + jitter_amount)
    return max(delay, 0.0)


def call_with_retry(
    func: Callable[[], T],
    *,
    operation: str,
    max_attempts: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call ``func`` until it succeeds, retrying with backoff.

    Attempts are bounded by ``max_attempts`` and the whole call (sleeps included)
    by ``timeout_seconds``. A backoff sleep that would overrun the budget is
    not taken; the call fails immediately instead.
    """
    attempts_cap = int(max_attempts if max_attempts is not None else BACKOFF_POLICY["max_attempts"])
    deadline = clock() + timeout_seconds if timeout_seconds is not None else None
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts_cap + 1):
        try:
            return func()
        except retry_on as exc:
            last_error = exc
            logger.warning("Retryable call failed", operation=operation, attempt=attempt, error=str(exc))
        if attempt == attempts_cap:
            break
        delay = compute_backoff_seconds(attempt)
        if deadline is not None and clock() + delay > deadline:
            logger.warning("Retry budget exhausted", operation=operation, attempt=attempt)
            break
        sleep(delay)

    raise RetryExhaustedError(operation, attempt, last_error)


__all__ = ["compute_backoff_seconds", "call_with_retry", "RetryExhaustedError"]
