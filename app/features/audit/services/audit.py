from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.features.audit.models.audit_job import AuditJob, AuditJobStatus


async def create_audit_job(
    db: AsyncSession,
    url: str,
    user_id: Optional[str] = None,
) -> AuditJob:
    """Persist a new pending audit record. The caller enqueues it."""
    audit_job = AuditJob(url=url, user_id=user_id, status=AuditJobStatus.pending)
    db.add(audit_job)
    try:
        await db.commit()
        await db.refresh(audit_job)
    except Exception:
        await db.rollback()
        raise
    return audit_job


async def get_audit_job(db: AsyncSession, job_id: str) -> Optional[AuditJob]:
    result = await db.execute(select(AuditJob).filter(AuditJob.id == job_id))
    return result.scalars().first()


async def list_audit_jobs(
    db: AsyncSession,
    user_id: Optional[str] = None,
    limit: int = 50,
) -> List[AuditJob]:
    """Audit history, newest first, optionally limited to one owner."""
    query = select(AuditJob)
    if user_id:
        query = query.filter(AuditJob.user_id == user_id)
    query = query.order_by(AuditJob.created_at.desc(), AuditJob.id.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
