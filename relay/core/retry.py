"""Exponential backoff schedule for retried deliveries.

The policy only computes delays; callers own the attempt loop so that each
attempt's outcome can be recorded before the next one starts.
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total number of attempts, including the first (default: 3)
        base_delay_ms: Delay after the first failed attempt (default: 1000)
        max_delay_ms: Optional cap on a single delay
        exponential_base: Base for exponential calculation (default: 2.0)

    Example:
        >>> policy = RetryPolicy(max_attempts=4, base_delay_ms=100)
        >>> policy.delays()
        [100.0, 200.0, 400.0]
    """

    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: Optional[float] = None
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay after a failed attempt.

        Uses exponential backoff: delay = base_delay_ms * (exponential_base ^ attempt)

        Args:
            attempt: Index of the attempt that just failed (0-indexed)

        Returns:
            Delay in milliseconds
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        if self.max_delay_ms is not None:
            return min(delay, self.max_delay_ms)
        return delay

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt follows the failed attempt at this index."""
        return attempt < self.max_attempts - 1

    def delays(self) -> List[float]:
        """Full delay schedule between consecutive attempts."""
        return [self.calculate_delay(i) for i in range(max(self.max_attempts - 1, 0))]
