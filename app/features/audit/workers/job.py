import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.features.audit.models.audit_job import AuditJobStatus

AUDIT_JOB_KIND = "audit"


@dataclass(frozen=True)
class AuditPayload:
    store_job_id: str
    url: str


@dataclass
class Job:
    """
    In-memory unit of work: run the audit pipeline for one store record.

    Retries re-insert this same object; retry_count only ever grows.
    """
    id: str
    payload: AuditPayload
    kind: str = AUDIT_JOB_KIND
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    retry_count: int = 0
    # last status the pipeline wrote for this job
    stage: Optional[AuditJobStatus] = None

    @classmethod
    def create(cls, store_job_id: str, url: str) -> "Job":
        return cls(
            id=f"{AUDIT_JOB_KIND}_{store_job_id}_{int(time.time() * 1000)}",
            payload=AuditPayload(store_job_id=store_job_id, url=url),
        )

    @property
    def store_job_id(self) -> str:
        return self.payload.store_job_id

    @property
    def url(self) -> str:
        return self.payload.url

    def summary(self) -> Dict[str, Any]:
        """Monitoring view; leaves the payload out."""
        return {
            "id": self.id,
            "type": self.kind,
            "createdAt": self.created_at.isoformat(),
            "retries": self.retry_count,
        }
