"""Explicit retry policy returning typed outcomes instead of raising."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from story_ingest.errors import InputValidationError, RateLimitError
from story_ingest.utils.logging import get_logger

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with exponential backoff.

    ``max_attempts`` counts the first call. Rate-limit errors back off
    ``rate_limit_multiplier`` times longer; ``non_retryable`` errors stop
    immediately.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 5.0
    rate_limit_multiplier: float = 2.0
    non_retryable: Tuple[Type[BaseException], ...] = (InputValidationError,)
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * (self.factor ** (attempt - 1)))
        if isinstance(error, RateLimitError):
            delay *= self.rate_limit_multiplier
        return delay

    def execute(self, fn: Callable[[], T], *, label: str = "operation") -> RetryOutcome[T]:
        logger = get_logger(__name__)
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return RetryOutcome(value=fn(), attempts=attempt)
            except self.non_retryable as exc:  # type: ignore[misc]
                logger.warning(
                    "retry.non_retryable",
                    extra={"label": label, "attempt": attempt, "error": str(exc)[:300]},
                )
                return RetryOutcome(error=exc, attempts=attempt)
            except Exception as exc:
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                delay = self.delay_for(attempt, exc)
                logger.warning(
                    "retry.attempt_failed",
                    extra={
                        "label": label,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay": delay,
                        "error": str(exc)[:300],
                    },
                )
                self.sleep(delay)
        logger.error(
            "retry.exhausted",
            extra={"label": label, "attempts": self.max_attempts, "error": str(last_error)[:300]},
        )
        return RetryOutcome(error=last_error, attempts=self.max_attempts)
