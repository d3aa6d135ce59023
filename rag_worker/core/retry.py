import time
from typing import Any, Callable, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)
from tenacity.wait import wait_base

from rag_worker.core.metrics import TASK_RETRIES_TOTAL

log = structlog.get_logger(__name__)

T = TypeVar("T")


def linear_backoff(unit_seconds: float) -> wait_base:
    """Waits ``attempt * unit_seconds`` after the given failed attempt."""
    return wait_incrementing(start=unit_seconds, increment=unit_seconds)


def exponential_backoff(base_seconds: float = 1.0) -> wait_base:
    """Waits ``base_seconds * 2 ** (attempt - 1)``: 1s, 2s, 4s... for the default base."""
    return wait_exponential(multiplier=base_seconds, exp_base=2, min=0)


class RetryPolicy:
    """
    Bounded retry with a pluggable wait strategy and retryable predicate.

    The delay is applied only between attempts. When the attempts are exhausted,
    or the predicate rejects an error, the last exception is re-raised unchanged.
    """

    def __init__(
        self,
        name: str,
        max_attempts: int,
        wait: wait_base,
        is_retryable: Callable[[BaseException], bool],
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive. Received: {max_attempts}")
        self.name = name
        self.max_attempts = max_attempts
        self.wait = wait
        self.is_retryable = is_retryable
        self.sleep = sleep
        self.log = log.bind(retry_policy=name)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        TASK_RETRIES_TOTAL.labels(policy=self.name).inc()
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "Retrying after transient failure",
            attempt_number=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error) if error else "Unknown error",
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception(self.is_retryable),
            sleep=self.sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)
