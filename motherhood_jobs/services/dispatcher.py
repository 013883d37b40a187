import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from motherhood_jobs.core.config import Settings, settings as default_settings
from motherhood_jobs.db import Database
from motherhood_jobs.services.analysis_client import AnalysisClient
from motherhood_jobs.services.errors import BatchFetchError, ConfigurationError
from motherhood_jobs.services.handlers import HandlerContext, HandlerRegistry, build_default_registry
from motherhood_jobs.services.job_store import JobStore, StatusPublisher
from motherhood_jobs.services.processor import JobOutcome, JobProcessor

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    success: bool
    message: str
    jobs_processed: int = 0
    success_count: int = 0
    failure_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "jobsProcessed": self.jobs_processed,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }


class Dispatcher:
    """
    One invocation = one bounded pass over the queue.

    Claims up to batch_size eligible jobs (priority desc, created_at asc) and
    runs them one at a time with a fixed pause in between, so rate-limited AI
    services downstream are not hit in bursts.
    """

    def __init__(
        self,
        store: JobStore,
        processor: JobProcessor,
        batch_size: int = 10,
        pacing_seconds: float = 0.1,
        lease_seconds: int = 300,
    ):
        self.store = store
        self.processor = processor
        self.batch_size = batch_size
        self.pacing_seconds = pacing_seconds
        self.lease_seconds = lease_seconds

    async def run(self) -> DispatchReport:
        try:
            jobs = await self.store.claim_batch(self.batch_size, self.lease_seconds)
        except Exception as e:
            raise BatchFetchError(f"Could not fetch pending jobs: {e}") from e

        if not jobs:
            return DispatchReport(success=True, message="No pending jobs")

        success_count = 0
        failure_count = 0
        skipped_count = 0
        for index, job in enumerate(jobs):
            outcome = await self.processor.process(job)
            if outcome is JobOutcome.SKIPPED:
                skipped_count += 1
            elif outcome.succeeded:
                success_count += 1
            else:
                failure_count += 1

            if self.pacing_seconds and index < len(jobs) - 1:
                await asyncio.sleep(self.pacing_seconds)

        logger.info(
            f"Dispatch pass done: {len(jobs)} claimed, {success_count} ok, "
            f"{failure_count} failed, {skipped_count} skipped"
        )
        return DispatchReport(
            success=True,
            message="Job processing complete",
            jobs_processed=success_count + failure_count,
            success_count=success_count,
            failure_count=failure_count,
        )


def validate_worker_config(config: Settings) -> None:
    missing = config.missing_worker_settings()
    if missing:
        raise ConfigurationError(f"Missing worker configuration: {', '.join(missing)}")


def build_dispatcher(
    db: Database,
    config: Optional[Settings] = None,
    registry: Optional[HandlerRegistry] = None,
    publisher: Optional[StatusPublisher] = None,
) -> Dispatcher:
    """Wire a dispatcher from settings. Raises ConfigurationError before touching any job."""
    config = config or default_settings
    validate_worker_config(config)

    store = JobStore(db, publisher=publisher)
    context = HandlerContext(
        db=db,
        analysis_client=AnalysisClient(
            config.ANALYSIS_SERVICE_URL,
            config.SERVICE_ROLE_KEY,
            timeout=config.ANALYSIS_TIMEOUT_SECONDS,
        ),
    )
    processor = JobProcessor(
        store,
        registry or build_default_registry(),
        context,
        handler_timeout=config.HANDLER_TIMEOUT_SECONDS,
        retry_missing_handler=config.RETRY_MISSING_HANDLER,
        enforce_backoff=config.ENFORCE_BACKOFF,
        lease_seconds=config.JOB_LEASE_SECONDS,
        backoff_base_ms=config.BACKOFF_BASE_MS,
        backoff_cap_ms=config.BACKOFF_CAP_MS,
    )
    return Dispatcher(
        store,
        processor,
        batch_size=config.JOB_BATCH_SIZE,
        pacing_seconds=config.JOB_PACING_MS / 1000,
        lease_seconds=config.JOB_LEASE_SECONDS,
    )
