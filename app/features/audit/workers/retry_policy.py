from dataclasses import dataclass

from app.features.audit.services.errors import AuditError, RateLimitedError
from app.platform.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    base_backoff_ms: int = 5000
    rate_limit_backoff_base_ms: int = 15000
    rate_limit_backoff_max_ms: int = 120000
    global_cooldown_ms: int = 60000

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.MAX_RETRIES,
            base_backoff_ms=settings.BASE_BACKOFF_MS,
            rate_limit_backoff_base_ms=settings.RATE_LIMIT_BACKOFF_BASE_MS,
            rate_limit_backoff_max_ms=settings.RATE_LIMIT_BACKOFF_MAX_MS,
            global_cooldown_ms=settings.RATE_LIMIT_GLOBAL_COOLDOWN_MS,
        )

    def compute_retry_delay_ms(self, error: AuditError, retry_count: int) -> int:
        """
        Delay before the next attempt.

        - rate limited with a Retry-After hint: exactly the hint
        - rate limited without a hint: capped linear backoff
        - anything else: linear backoff
        """
        if isinstance(error, RateLimitedError):
            if error.has_retry_hint:
                return int(round(error.retry_after_seconds * 1000))
            return min(self.rate_limit_backoff_max_ms, self.rate_limit_backoff_base_ms * retry_count)
        return self.base_backoff_ms * retry_count
