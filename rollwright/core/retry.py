"""Bounded exponential backoff for transient failures."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import TypeVar

from rollwright.core.cancellation import CancelToken
from rollwright.models.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(policy: RetryPolicy) -> Iterator[float]:
    """Yield the delay to wait *after* each failed attempt but the last.

    ``max_attempts`` attempts produce ``max_attempts - 1`` delays.
    """
    delay = policy.initial_delay
    for _ in range(max(policy.max_attempts - 1, 0)):
        yield min(delay, policy.max_delay)
        delay *= policy.multiplier


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...],
    cancel: CancelToken | None = None,
    description: str = "operation",
) -> T:
    """Call *fn* until it succeeds or the attempts run out.

    Only exceptions in *retry_on* are retried; the last one is re-raised.
    A cancellation raises ``DeploymentCancelled`` between attempts.
    """
    cancel = cancel or CancelToken()
    delays = backoff_delays(policy)
    attempt = 0
    while True:
        attempt += 1
        cancel.raise_if_cancelled()
        try:
            return fn()
        except retry_on as exc:
            delay = next(delays, None)
            if delay is None:
                logger.warning(
                    "%s failed after %d attempt(s): %s", description, attempt, exc
                )
                raise
            logger.info(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                description, attempt, policy.max_attempts, exc, delay,
            )
            if cancel.wait(delay):
                cancel.raise_if_cancelled()
