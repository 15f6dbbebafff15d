"""
Exponential Backoff Policy

Delay calculation shared by the connection retry loop and by anything that
needs to report the expected schedule (health endpoints, tests, logs).

The delay after failed attempt k (1-based) is::

    min(base_delay * 2 ** (k - 1), max_delay)

so a three-attempt cycle with a one second base sleeps 1s and then 2s. The
wait strategy comes from tenacity so the retry loop and this module can never
disagree about the schedule.
"""

import logging
from dataclasses import dataclass
from typing import List

from tenacity import RetryCallState, wait_exponential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a ceiling."""
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")
        if self.max_delay < 0:
            raise ValueError("max_delay cannot be negative")

    def wait_strategy(self) -> wait_exponential:
        """Tenacity wait strategy implementing this policy."""
        return wait_exponential(multiplier=self.base_delay, max=self.max_delay, exp_base=2)

    def delay_for(self, attempt: int) -> float:
        """
        Delay to sleep after the given failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed

        Returns:
            float: Seconds to wait before the next attempt
        """
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = attempt
        return self.wait_strategy()(state)

    def delays(self, max_retries: int) -> List[float]:
        """Every sleep of a full cycle of ``max_retries`` attempts."""
        return [self.delay_for(attempt) for attempt in range(1, max_retries)]

    def total_delay(self, max_retries: int) -> float:
        """Minimum wall time a fully failed cycle spends sleeping."""
        return sum(self.delays(max_retries))
