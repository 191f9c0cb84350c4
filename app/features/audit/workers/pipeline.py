import logging
import math
from typing import Awaitable, Callable, Dict

from app.features.audit.models.audit_job import AuditJobStatus
from app.features.audit.schemas.report import Report
from app.features.audit.schemas.scan import ScanResult
from app.features.audit.services.analysis_client import AnalysisClient
from app.features.audit.services.errors import (
    RateLimitedError,
    TransientError,
    UnrecoverableError,
)
from app.features.audit.services.job_store import JobStore
from app.features.audit.services.precheck import PrecheckResult, preflight_url_reachability
from app.features.audit.services.report import assemble_report
from app.features.audit.services.scan_engine import ScanEngine
from app.features.audit.workers.job import Job
from app.platform.utils.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)

Precheck = Callable[[str, float], Awaitable[PrecheckResult]]


class AuditPipeline:
    """
    Per-job stages: precheck -> scan (or cached scan) -> analyze -> report.

    Failures are raised, never written to the store here; the job queue owns
    every retry/terminal decision. The scan cache and the rate-limit window
    are shared with (and owned by) the queue.
    """

    def __init__(
        self,
        store: JobStore,
        scan_engine: ScanEngine,
        analysis_client: AnalysisClient,
        rate_limit_window: RateLimitWindow,
        scan_cache: Dict[str, ScanResult],
        precheck: Precheck = preflight_url_reachability,
        precheck_timeout_seconds: float = 5.0,
    ):
        self.store = store
        self.scan_engine = scan_engine
        self.analysis_client = analysis_client
        self.rate_limit_window = rate_limit_window
        self.scan_cache = scan_cache
        self.precheck = precheck
        self.precheck_timeout_seconds = precheck_timeout_seconds

    async def run(self, job: Job) -> Report:
        store_job_id, url = job.store_job_id, job.url

        reachability = await self.precheck(url, self.precheck_timeout_seconds)
        if not reachability.reachable:
            logger.warning(f"[{store_job_id}] Preflight failed for {url}: {reachability.reason}")
            if reachability.timed_out:
                raise TransientError(reachability.reason)
            raise UnrecoverableError(f"Unreachable host: {reachability.reason}")

        # No point scanning if the result could not be analyzed afterwards
        if store_job_id not in self.scan_cache:
            self._check_cooldown("Deferred scan due to global rate-limit cooldown")

        scan = await self._scan_or_reuse(job)

        self._check_cooldown("Deferred analysis due to global rate-limit cooldown")

        await self._set_stage(job, AuditJobStatus.analyzing)
        logger.info(f"[{store_job_id}] Starting analysis for {url}")
        analysis = await self.analysis_client.analyze(scan)

        report = assemble_report(scan, analysis)
        if report.metadata.unmatched_tag_names:
            logger.warning(
                f"[{store_job_id}] Processed tags without a known name/type, no score bonus applied: "
                f"{report.metadata.unmatched_tag_names}"
            )

        await self.store.update_status(
            store_job_id,
            AuditJobStatus.completed,
            results=report.to_document(),
            analysis_data=analysis.model_dump(by_alias=True, mode="json"),
            error_message=None,
        )
        job.stage = AuditJobStatus.completed
        self.scan_cache.pop(store_job_id, None)

        logger.info(
            f"[{store_job_id}] Audit completed with {len(analysis.audit_findings)} findings, "
            f"health score {report.health_score}"
        )
        return report

    async def _scan_or_reuse(self, job: Job) -> ScanResult:
        cached = self.scan_cache.get(job.store_job_id)
        if cached is not None:
            logger.info(f"[{job.store_job_id}] Reusing cached scan data for {job.url}")
            return cached

        await self._set_stage(job, AuditJobStatus.scanning)
        logger.info(f"[{job.store_job_id}] Starting browser scan for {job.url}")
        scan = await self.scan_engine.scan(job.url)
        if scan.has_errors:
            raise TransientError(f"Scan failed: {', '.join(scan.errors)}")

        self.scan_cache[job.store_job_id] = scan
        return scan

    def _check_cooldown(self, message: str) -> None:
        remaining = self.rate_limit_window.remaining_seconds()
        if remaining > 0:
            raise RateLimitedError(message, retry_after_seconds=float(math.ceil(remaining)))

    async def _set_stage(self, job: Job, status: AuditJobStatus) -> None:
        # a new attempt supersedes any "Retrying in ~Ns" advisory from the last one
        await self.store.update_status(job.store_job_id, status, error_message=None)
        job.stage = status
