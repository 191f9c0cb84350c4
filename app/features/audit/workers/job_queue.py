"""
In-process audit job queue.

One scheduler instance per process owns the pending queue, the busy flag,
the scan cache and the rate-limit window. All of that state is touched only
from the event loop the queue is attached to: `enqueue` from another thread
is marshalled onto the loop, and retry timers fire on the loop as well.

At most one pipeline runs at a time. Failed jobs wait on a timer and are
re-inserted at the front of the queue so retries go before untried backlog.
"""
import asyncio
import logging
import math
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from app.features.audit.models.audit_job import AuditJobStatus
from app.features.audit.schemas.scan import ScanResult
from app.features.audit.services.analysis_client import AnalysisClient
from app.features.audit.services.errors import (
    AuditError,
    RateLimitedError,
    UnrecoverableError,
    classify,
)
from app.features.audit.services.job_store import JobStore
from app.features.audit.services.precheck import preflight_url_reachability
from app.features.audit.services.scan_engine import ScanEngine, SeleniumScanEngine
from app.features.audit.workers.job import Job
from app.features.audit.workers.pipeline import AuditPipeline, Precheck
from app.features.audit.workers.retry_policy import RetryPolicy
from app.platform.config import Settings
from app.platform.utils.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)


class AuditJobQueue:

    def __init__(
        self,
        store: JobStore,
        scan_engine: ScanEngine,
        analysis_client: AnalysisClient,
        rate_limit_window: RateLimitWindow,
        policy: Optional[RetryPolicy] = None,
        precheck: Precheck = preflight_url_reachability,
        precheck_timeout_seconds: float = 5.0,
    ):
        self.store = store
        self.policy = policy or RetryPolicy()
        self.analysis_client = analysis_client
        self.rate_limit_window = rate_limit_window
        self.scan_cache: Dict[str, ScanResult] = {}
        self.pipeline = AuditPipeline(
            store=store,
            scan_engine=scan_engine,
            analysis_client=analysis_client,
            rate_limit_window=rate_limit_window,
            scan_cache=self.scan_cache,
            precheck=precheck,
            precheck_timeout_seconds=precheck_timeout_seconds,
        )

        self._queue: Deque[Job] = deque()
        self._processing = False
        self._closed = False
        self._worker: Optional[asyncio.Task] = None
        self._retry_timers: Dict[str, asyncio.TimerHandle] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def from_settings(cls, settings: Settings, store: JobStore) -> "AuditJobQueue":
        """Wire the production collaborators: Selenium scanner and HTTP analysis client."""
        window = RateLimitWindow()
        analysis_client = AnalysisClient(
            base_url=settings.ANALYSIS_SERVICE_URL,
            rate_limit_window=window,
            timeout_seconds=settings.ANALYSIS_TIMEOUT_SECONDS,
            default_cooldown_ms=settings.RATE_LIMIT_GLOBAL_COOLDOWN_MS,
        )
        scan_engine = SeleniumScanEngine(
            page_load_timeout=settings.SCAN_PAGE_LOAD_TIMEOUT_SECONDS,
            settle_seconds=settings.SCAN_SETTLE_SECONDS,
            timeout_seconds=settings.SCAN_TIMEOUT_SECONDS,
            chromedriver_path=settings.CHROMEDRIVER_PATH,
        )
        return cls(
            store=store,
            scan_engine=scan_engine,
            analysis_client=analysis_client,
            rate_limit_window=window,
            policy=RetryPolicy.from_settings(settings),
            precheck_timeout_seconds=settings.PRECHECK_TIMEOUT_SECONDS,
        )

    # ── Public API ──────────────────────────────

    def start(self) -> None:
        """Attach the queue to the running event loop."""
        self._loop = asyncio.get_running_loop()

    def enqueue(self, store_job_id: str, url: str) -> Job:
        """
        Queue an audit for a store record. Never blocks; safe from any thread.

        After shutdown() the job is dropped with a warning.
        """
        job = Job.create(store_job_id, url)
        self._call_on_loop(self._push_back, job)
        return job

    def status(self) -> Dict[str, Any]:
        jobs = list(self._queue)
        return {
            "queueLength": len(jobs),
            "isProcessing": self._processing,
            "scheduledRetries": len(self._retry_timers),
            "jobs": [job.summary() for job in jobs],
        }

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def wait_until_idle(self) -> None:
        """Wait for the active worker (if any) to drain the queue."""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        self._closed = True
        for handle in self._retry_timers.values():
            handle.cancel()
        if self._retry_timers:
            logger.info(f"Dropped {len(self._retry_timers)} scheduled retries on shutdown")
        self._retry_timers.clear()

        if self._worker is not None and not self._worker.done():
            done, _ = await asyncio.wait({self._worker}, timeout=timeout)
            if not done:
                self._worker.cancel()
                await asyncio.wait({self._worker})
        await self.analysis_client.aclose()

    # ── Loop-side state changes ─────────────────

    def _call_on_loop(self, callback: Callable[[Job], None], job: Job) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is None:
            if running is None:
                raise RuntimeError("AuditJobQueue is not attached to an event loop; call start() first")
            self._loop = running

        if running is self._loop:
            callback(job)
        else:
            self._loop.call_soon_threadsafe(callback, job)

    def _push_back(self, job: Job) -> None:
        if self._closed:
            logger.warning(f"Queue is shut down; audit job {job.store_job_id} was not queued")
            return
        self._queue.append(job)
        logger.info(f"Added audit job {job.store_job_id} to queue. Queue length: {len(self._queue)}")
        self._kick()

    def _reinsert(self, job: Job) -> None:
        self._retry_timers.pop(job.id, None)
        if self._closed:
            return
        self._queue.appendleft(job)
        logger.info(f"Re-queued job {job.id} for attempt {job.retry_count + 1}")
        self._kick()

    def _kick(self) -> None:
        if self._processing or self._closed or not self._queue:
            return
        self._processing = True
        self._worker = self._loop.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        logger.info("Starting job queue processing...")
        try:
            while self._queue:
                job = self._queue.popleft()
                await self._run_job(job)
        finally:
            self._processing = False
            logger.info("Job queue processing completed")

    async def _run_job(self, job: Job) -> None:
        logger.info(f"Processing job {job.id} ({job.kind})")
        try:
            await self.pipeline.run(job)
        except Exception as e:
            await self._handle_failure(job, classify(e))
        else:
            logger.info(f"Job {job.id} completed successfully")

    # ── Failure handling ────────────────────────

    async def _handle_failure(self, job: Job, error: AuditError) -> None:
        max_retries = self.policy.max_retries

        if isinstance(error, RateLimitedError):
            logger.warning(f"Job {job.id} rate-limited by analysis service: {error}")
        else:
            logger.error(f"Job {job.id} failed: {error}")
            logger.debug(f"Job {job.id} failure traceback", exc_info=error.__cause__ or error)

        if isinstance(error, UnrecoverableError):
            job.retry_count = max(job.retry_count, max_retries)
            logger.info(f"Not retrying job {job.id} due to unrecoverable error.")
        else:
            job.retry_count += 1

        if job.retry_count < max_retries:
            delay_ms = self.policy.compute_retry_delay_ms(error, job.retry_count)
            await self._record_deferral(job, error, delay_ms)
            self._schedule_retry(job, delay_ms)
            return

        self.scan_cache.pop(job.store_job_id, None)
        if isinstance(error, UnrecoverableError):
            message = str(error)
        else:
            logger.error(f"Job {job.id} failed permanently after {max_retries} retries")
            message = f"Job processing failed after {max_retries} retries: {error}"
        await self._persist(job, AuditJobStatus.failed, error_message=message)

    async def _record_deferral(self, job: Job, error: AuditError, delay_ms: int) -> None:
        seconds = math.ceil(delay_ms / 1000)
        if isinstance(error, RateLimitedError):
            await self._persist(
                job,
                AuditJobStatus.analyzing,
                error_message=f"Rate limited by analysis service. Will retry in ~{seconds}s...",
            )
        else:
            await self._persist(
                job,
                job.stage or AuditJobStatus.pending,
                error_message=f"Attempt {job.retry_count} failed: {error}. Retrying in ~{seconds}s...",
            )

    async def _persist(self, job: Job, status: AuditJobStatus, **fields: Any) -> None:
        try:
            await self.store.update_status(job.store_job_id, status, **fields)
        except Exception:
            logger.exception(f"Failed to update job {job.store_job_id} to {status.value} in database")
        else:
            job.stage = status

    def _schedule_retry(self, job: Job, delay_ms: int) -> None:
        attempt = job.retry_count + 1
        logger.info(
            f"Retrying job {job.id} (attempt {attempt}/{self.policy.max_retries}) in {delay_ms}ms"
        )
        self._retry_timers[job.id] = self._loop.call_later(delay_ms / 1000, self._reinsert, job)
