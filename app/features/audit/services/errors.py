"""
Audit pipeline error taxonomy.

Every pipeline stage either returns a usable result or raises one of these.
The job queue is the only place that turns them into retry-or-give-up
decisions:

    AuditError
    ├── UnrecoverableError      bad URL / DNS failure, never retried
    ├── RateLimitedError        analysis service said 429 or cooldown active
    └── TransientError          anything else, retried up to MAX_RETRIES
        ├── ServiceUnavailableError
        └── AnalysisServiceError
"""
from typing import Optional


class AuditError(Exception):
    """Base class for classified pipeline failures."""


class UnrecoverableError(AuditError):
    pass


class RateLimitedError(AuditError):

    def __init__(self, message: str, retry_after_seconds: Optional[float] = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds

    @property
    def has_retry_hint(self) -> bool:
        return self.retry_after_seconds is not None and self.retry_after_seconds > 0


class TransientError(AuditError):
    pass


class ServiceUnavailableError(TransientError):
    pass


class AnalysisServiceError(TransientError):
    """Non-429 error status from the analysis service."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Analysis service HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


def classify(error: BaseException) -> AuditError:
    """Map any exception onto the closed taxonomy; unknown errors are transient."""
    if isinstance(error, AuditError):
        return error
    transient = TransientError(str(error) or error.__class__.__name__)
    transient.__cause__ = error
    return transient
