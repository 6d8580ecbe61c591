"""Retry policy shared by hash-store lookups and batch writes."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from postal_sync.common.errors import StoreThrottled


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 20.0
    jitter: float = 0.5

    def retrying(
        self,
        *,
        sleep: Callable[[float], None] = time.sleep,
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> Retrying:
        """Build a tenacity controller that retries only transient store errors.

        The last exception is re-raised once attempts are exhausted so callers
        can tell throttling apart from everything else.
        """
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.base_delay,
                max=self.max_delay,
                jitter=self.jitter,
            ),
            retry=retry_if_exception_type(StoreThrottled),
            reraise=True,
            sleep=sleep,
            before_sleep=before_sleep,
        )
