"""Bounded exponential backoff for the attempt read path."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import (
    Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from quiz_engine.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry strategy: ``initial_delay`` doubling up to ``max_delay``.

    ``max_attempts`` counts every call, including the first one, so a policy
    with ``max_attempts=6`` sleeps at most five times.
    """
    initial_delay: float = 0.3
    max_delay: float = 2.0
    exponential_base: float = 2.0
    max_attempts: int = 6
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            initial_delay=settings.READ_RETRY_INITIAL_DELAY,
            max_delay=settings.READ_RETRY_MAX_DELAY,
            max_attempts=settings.READ_RETRY_MAX_ATTEMPTS,
        )

    def retrying(self, retry_on: tuple = (Exception,)) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.initial_delay, exp_base=self.exponential_base, max=self.max_delay),
            retry=retry_if_exception_type(retry_on),
            sleep=self.sleep,
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

    def run(self, func: Callable[[], T], retry_on: tuple = (Exception,)) -> T:
        """Call ``func`` until it stops raising ``retry_on`` or the budget runs out.

        The last exception is re-raised once every attempt has failed.
        """
        return self.retrying(retry_on)(func)


NO_RETRY = RetryPolicy(max_attempts=1)
