"""Bounded retries with a fixed backoff for contended resources."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from app_config import PipelineTiming


T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff: float = 0.05  # Seconds slept after a failed attempt.

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.backoff < 0:
            raise ValueError("backoff must be >= 0")

    @classmethod
    def from_timing(cls, timing: PipelineTiming) -> "RetryPolicy":
        return cls(attempts=timing.retry_attempts, backoff=timing.retry_backoff_ms / 1000.0)


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    succeeded: bool
    value: Optional[T]
    attempts: int


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    accept: Callable[[Any], bool] = bool,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> RetryOutcome[T]:
    """Call ``operation`` until ``accept`` approves its result.

    An attempt fails when it raises or when ``accept`` returns ``False``. The
    backoff is only slept when another attempt follows, so a fully failed call
    sleeps ``attempts - 1`` times. Exceptions are logged, never propagated.
    """

    value: Optional[T] = None
    for attempt in range(1, policy.attempts + 1):
        try:
            value = operation()
        except Exception as exc:
            logger.debug("%s failed on attempt %d/%d: %s", description, attempt, policy.attempts, exc)
            value = None
        else:
            if accept(value):
                return RetryOutcome(True, value, attempt)
            logger.debug("%s rejected on attempt %d/%d", description, attempt, policy.attempts)

        if attempt < policy.attempts:
            sleep(policy.backoff)

    logger.warning("%s failed after %d attempts", description, policy.attempts)
    return RetryOutcome(False, value, policy.attempts)
