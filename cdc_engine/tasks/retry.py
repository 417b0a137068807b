"""Retry policy for failed task runs."""

from dataclasses import dataclass
from typing import Optional

from cdc_engine.common.config import RetryConfig, get_settings

FIXED = "fixed"
EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Decides when a task becomes due again after a run.

    ``fixed`` retries a failed task at its next scheduled interval.
    ``exponential`` multiplies the interval by ``multiplier`` for every
    consecutive failure after the first, capped at ``max_delay_seconds``.
    """

    strategy: str = FIXED
    multiplier: float = 2.0
    max_delay_seconds: float = 3600.0

    def __post_init__(self) -> None:
        if self.strategy not in (FIXED, EXPONENTIAL):
            raise ValueError(
                f"Unknown retry strategy '{self.strategy}' (expected '{FIXED}' or '{EXPONENTIAL}')"
            )
        if self.multiplier < 1:
            raise ValueError("Retry multiplier must be >= 1")

    @classmethod
    def from_config(cls, config: Optional[RetryConfig] = None) -> "RetryPolicy":
        """Build a policy from retry configuration (default from settings)."""
        config = config or get_settings().retry
        return cls(
            strategy=config.strategy.lower(),
            multiplier=config.multiplier,
            max_delay_seconds=config.max_delay_seconds,
        )

    def next_delay(self, interval: float, consecutive_failures: int) -> float:
        """
        Delay in seconds until the task is due again.

        Args:
            interval: Task schedule interval
            consecutive_failures: Failures since the last successful run

        Returns:
            Delay in seconds
        """
        if self.strategy == FIXED or consecutive_failures <= 1:
            return interval
        delay = interval * (self.multiplier ** (consecutive_failures - 1))
        return min(delay, max(self.max_delay_seconds, interval))
