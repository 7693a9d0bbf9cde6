"""Explicit, bounded retries for transient identity store failures."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from anonlink.domain.errors import AnonlinkError

if TYPE_CHECKING:
    from collections.abc import Callable

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    backoff_factor: float = 0.05
    max_backoff: float = 1.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""

        wait = min(self.max_backoff, self.backoff_factor * (2 ** (attempt - 1)))
        if self.jitter:
            wait += random.uniform(0, self.jitter)  # noqa: S311
        return wait


NO_RETRY = RetryPolicy(max_attempts=1)


def call_with_retry[T](
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    label: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying errors flagged ``retryable`` up to ``policy.max_attempts``.

    Non-retryable errors propagate immediately. When the budget is exhausted the last
    error is re-raised with ``attempts`` set so callers can surface it.
    """

    attempt = 1
    while True:
        try:
            return operation()
        except AnonlinkError as exc:
            exc.attempts = attempt
            if not exc.retryable or attempt >= policy.max_attempts:
                raise
            wait = policy.backoff(attempt)
            log.warning(
                "%s failed with %s (attempt %s/%s), retrying in %.2fs",
                label,
                exc.code,
                attempt,
                policy.max_attempts,
                wait,
            )
            sleep(wait)
            attempt += 1
