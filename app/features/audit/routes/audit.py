from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.dependencies.queue import get_job_queue
from app.features.audit.models.audit_job import AuditJobStatus
from app.features.audit.schemas.audit import (
    AuditHistoryItem,
    AuditHistoryResponse,
    AuditResultsResponse,
    AuditStatusResponse,
    AuditSubmitRequest,
    AuditSubmitResponse,
)
from app.features.audit.services.audit import create_audit_job, get_audit_job, list_audit_jobs
from app.features.audit.workers.job_queue import AuditJobQueue
from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response

logger = get_logger("audit_routes")
router = APIRouter(prefix="/audits", tags=["Audits"])


async def _get_job_or_404(db: AsyncSession, job_id: str):
    audit_job = await get_audit_job(db, job_id)
    if audit_job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit job not found")
    return audit_job


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a URL for a new audit",
)
async def submit_audit(
    payload: AuditSubmitRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    job_queue: AuditJobQueue = Depends(get_job_queue),
):
    audit_job = await create_audit_job(db, url=payload.url, user_id=payload.user_id)
    job_queue.enqueue(audit_job.id, audit_job.url)
    logger.info(f"Audit job {audit_job.id} submitted for {audit_job.url}")

    return api_response(
        data=AuditSubmitResponse(
            job_id=audit_job.id,
            status=audit_job.status.value,
            message="Audit job submitted successfully. Processing will begin shortly.",
        ),
        message="Audit job submitted",
        status_code=status.HTTP_202_ACCEPTED,
        headers={"Location": str(request.url_for("get_audit_status", job_id=audit_job.id))},
    )


@router.get("/queue/status", response_model=dict, summary="Background queue status")
async def queue_status(job_queue: AuditJobQueue = Depends(get_job_queue)):
    return api_response(data=job_queue.status(), message="Queue status retrieved")


@router.get("", response_model=dict, summary="List audit history")
async def list_audits(
    user_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    audit_jobs = await list_audit_jobs(db, user_id=user_id, limit=limit)
    items = [
        AuditHistoryItem(
            job_id=job.id,
            url=job.url,
            status=job.status.value,
            health_score=(job.results or {}).get("healthScore"),
            created_at=job.created_at,
            updated_at=job.updated_at,
        )
        for job in audit_jobs
    ]
    return api_response(
        data=AuditHistoryResponse(audits=items, count=len(items)),
        message="Audit history retrieved",
    )


@router.get("/{job_id}/status", response_model=dict, summary="Current status of an audit job")
async def get_audit_status(job_id: str, db: AsyncSession = Depends(get_db)):
    audit_job = await _get_job_or_404(db, job_id)
    return api_response(
        data=AuditStatusResponse(
            job_id=audit_job.id,
            url=audit_job.url,
            status=audit_job.status.value,
            updated_at=audit_job.updated_at,
            error_message=audit_job.error_message,
        ),
        message="Audit status retrieved",
    )


@router.get("/{job_id}/results", response_model=dict, summary="Full report of a completed audit")
async def get_audit_results(job_id: str, db: AsyncSession = Depends(get_db)):
    audit_job = await _get_job_or_404(db, job_id)
    if audit_job.status != AuditJobStatus.completed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Audit job status is '{audit_job.status.value}'. Results are not yet available.",
        )

    return api_response(
        data=AuditResultsResponse(
            job_id=audit_job.id,
            url=audit_job.url,
            status=audit_job.status.value,
            results=audit_job.results or {},
            created_at=audit_job.created_at,
            updated_at=audit_job.updated_at,
        ),
        message="Audit results retrieved",
    )
