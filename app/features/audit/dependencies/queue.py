from fastapi import HTTPException, Request, status

from app.features.audit.workers.job_queue import AuditJobQueue


def get_job_queue(request: Request) -> AuditJobQueue:
    """
    Dependency returning the process-wide job queue created in the app lifespan.
    """
    job_queue = getattr(request.app.state, "job_queue", None)
    if job_queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Audit job queue is not running",
        )
    return job_queue
