from fastapi import APIRouter, Request, status

from app.platform.response import api_response


router = APIRouter()


@router.get("/health", tags=["health"])
async def health_check(request: Request):
    job_queue = getattr(request.app.state, "job_queue", None)
    return api_response(
        data={
            "status": "ok",
            "service": "Tag Audit",
            "queue_running": job_queue is not None,
        },
        message="Service is healthy",
        status_code=status.HTTP_200_OK,
    )
