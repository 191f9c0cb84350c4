import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.v1 import api_router
from app.features.audit.services.job_store import SQLAlchemyJobStore
from app.features.audit.workers.job_queue import AuditJobQueue
from app.features.health.routes.health import router as health_router
from app.platform.config import settings
from app.platform.db.session import SessionLocal, init_db
from app.platform.exceptions import add_exception_handlers
from app.platform.logger import LOG_FORMAT

logging.basicConfig(level=settings.LOG_LEVEL.upper(), format=LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    job_queue = AuditJobQueue.from_settings(settings, SQLAlchemyJobStore(SessionLocal))
    job_queue.start()
    app.state.job_queue = job_queue
    logging.getLogger(__name__).info(
        f"Audit job queue started (analysis service: {settings.ANALYSIS_SERVICE_URL})"
    )
    try:
        yield
    finally:
        await job_queue.shutdown(timeout=10)


app = FastAPI(
    title="Tag Audit API",
    description="Background audits of analytics and marketing tags on web pages",
    version="1.0.0",
    lifespan=lifespan,
)


# Root endpoint for basic info
@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": "Tag Audit API",
        "description": "Scans a page, analyzes its tracking setup and stores a scored report.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")
