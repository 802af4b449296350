from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: delay = base_delay_seconds * multiplier ** attempts."""

    base_delay_seconds: float = 5.0
    multiplier: float = 2.0
    max_attempts: int = 3

    def __post_init__(self):
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.multiplier <= 1:
            raise ValueError("multiplier must be > 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            base_delay_seconds=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            max_attempts=settings.job_max_attempts,
        )

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def delay_for(self, attempts: int) -> timedelta:
        """Delay before the next try, given the attempts already spent."""
        return timedelta(seconds=self.base_delay_seconds * (self.multiplier ** max(attempts, 0)))
