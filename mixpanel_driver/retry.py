"""
Retry with exponential backoff for rate-limited requests.

Only RateLimitError (HTTP 429) is retried. Every other failure is fatal
and propagates on the first attempt.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .endpoints import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY
from .exceptions import RateLimitError, ValidationError

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class RetryState:
    """Attempt bookkeeping for one batch"""
    attempt: int = 0
    last_error: Optional[Exception] = None
    delay: float = 0.0

    @classmethod
    def from_call_state(cls, call_state: RetryCallState) -> "RetryState":
        outcome = call_state.outcome
        next_action = call_state.next_action
        return cls(
            attempt=call_state.attempt_number,
            last_error=outcome.exception() if outcome is not None and outcome.failed else None,
            delay=next_action.sleep if next_action is not None else 0.0,
        )


@dataclass
class RetryPolicy:
    """
    Bounded retry for one dispatch call.

    Delays between attempts are base_delay, 2 * base_delay, 4 * base_delay...
    (seconds). No delay follows the final attempt.

    Example:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        result = policy.call(lambda: driver.request(...))
    """
    max_attempts: int = DEFAULT_RETRY_ATTEMPTS
    base_delay: float = DEFAULT_RETRY_DELAY
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValidationError(
                "max_attempts must be at least 1",
                details={"provided": self.max_attempts}
            )
        if self.base_delay < 0:
            raise ValidationError(
                "base_delay must not be negative",
                details={"provided": self.base_delay}
            )

    def is_retryable(self, error: Exception) -> bool:
        return isinstance(error, RateLimitError)

    def call(self, func: Callable[[], T]) -> T:
        """
        Run func until it succeeds, fails fatally, or attempts run out.

        Raises:
            The last error raised by func
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=0),
            retry=retry_if_exception(self.is_retryable),
            sleep=self.sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(func)

    def _log_retry(self, call_state: RetryCallState) -> None:
        state = RetryState.from_call_state(call_state)
        logger.warning(
            f"Rate limited (attempt {state.attempt}/{self.max_attempts}), "
            f"retrying in {state.delay:.2f}s"
        )
