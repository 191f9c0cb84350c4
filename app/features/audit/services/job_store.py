import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from app.features.audit.models.audit_job import AuditJob, AuditJobStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("results", "analysis_data", "error_message")


class JobStore(Protocol):
    """Update-by-id contract the job queue uses to report progress."""

    async def update_status(self, job_id: str, status: AuditJobStatus, **fields: Any) -> None:
        ...


class SQLAlchemyJobStore:
    """JobStore backed by the audit_jobs table, one transaction per update."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def update_status(self, job_id: str, status: AuditJobStatus, **fields: Any) -> None:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported audit job fields: {sorted(unknown)}")

        async with self.session_factory() as db:
            result = await db.execute(select(AuditJob).filter(AuditJob.id == job_id))
            job = result.scalars().first()
            if job is None:
                logger.warning(f"[{job_id}] Audit job not found; status {status.value} dropped")
                return
            if job.status in TERMINAL_STATUSES:
                logger.warning(
                    f"[{job_id}] Audit job already {job.status.value}; "
                    f"ignoring update to {status.value}"
                )
                return

            job.status = status
            for key, value in fields.items():
                setattr(job, key, value)
            job.updated_at = datetime.now(timezone.utc)
            try:
                await db.commit()
            except Exception:
                await db.rollback()
                raise
