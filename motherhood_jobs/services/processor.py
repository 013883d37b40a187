"""
Job Processor: runs exactly one job through the state machine.

    pending -> processing -> completed
                          -> pending   (retry, retry_count < max_retries)
                          -> failed    (retry budget exhausted, or non-retriable)

The processor never raises to its caller; every outcome is reported as a
JobOutcome so the dispatcher can move on to the next job.
"""
import asyncio
import logging
from datetime import timedelta
from enum import Enum
from typing import Optional

from motherhood_jobs.services.backoff import DEFAULT_BASE_MS, DEFAULT_CAP_MS, backoff_ms
from motherhood_jobs.services.errors import (
    HandlerTimeoutError,
    InvalidTransitionError,
    JobHandlerError,
    NoHandlerError,
)
from motherhood_jobs.services.handlers import HandlerContext, HandlerRegistry
from motherhood_jobs.services.job_models import Job
from motherhood_jobs.services.job_store import JobStore

logger = logging.getLogger(__name__)


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    ERRORED = "errored"  # bookkeeping write failed; job state unknown
    SKIPPED = "skipped"  # finished already, or owned by another pass; handler not run

    @property
    def succeeded(self) -> bool:
        return self is JobOutcome.COMPLETED


class JobProcessor:
    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        context: HandlerContext,
        handler_timeout: Optional[float] = 60.0,
        retry_missing_handler: bool = True,
        enforce_backoff: bool = True,
        lease_seconds: int = 300,
        backoff_base_ms: int = DEFAULT_BASE_MS,
        backoff_cap_ms: int = DEFAULT_CAP_MS,
    ):
        self.store = store
        self.registry = registry
        self.context = context
        self.handler_timeout = handler_timeout
        self.retry_missing_handler = retry_missing_handler
        self.enforce_backoff = enforce_backoff
        self.lease_seconds = lease_seconds
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms

    async def process(self, job: Job) -> JobOutcome:
        if job.status.is_terminal:
            logger.warning(f"Job {job.id} is already {job.status.value}; not processing it again")
            return JobOutcome.SKIPPED

        logger.info(f"Processing job {job.id} of type {job.type}")
        try:
            # Write-before-work; each job takes its own lease as it starts.
            try:
                job = await self.store.mark_processing(job, self.lease_seconds)
            except InvalidTransitionError as e:
                logger.warning(f"Job {job.id} skipped: {e}")
                return JobOutcome.SKIPPED

            try:
                result = await self._run_handler(job)
            except Exception as e:
                return await self._handle_failure(job, e)

            await self.store.complete(job, result)
            logger.info(f"Job {job.id} completed successfully")
            return JobOutcome.COMPLETED

        except Exception as e:
            logger.error(f"Job {job.id} bookkeeping failed: {e}", exc_info=True)
            return JobOutcome.ERRORED

    async def _run_handler(self, job: Job) -> dict:
        handler = self.registry.lookup(job.type)
        payload = handler.parse_payload(job)
        call = handler.fn(job, payload, self.context)
        if not self.handler_timeout:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.handler_timeout)
        except asyncio.TimeoutError:
            raise HandlerTimeoutError(f"Handler timed out after {self.handler_timeout}s") from None

    async def _handle_failure(self, job: Job, error: Exception) -> JobOutcome:
        error_message = str(error) or type(error).__name__
        logger.error(f"Job {job.id} error: {error_message}")

        retry_count = job.retry_count + 1
        if not self._is_retriable(error):
            await self.store.fail(job, retry_count, f"Failed permanently: {error_message}")
            logger.error(f"Job {job.id} failed permanently (non-retriable)")
            return JobOutcome.FAILED

        if retry_count < job.max_retries:
            delay_ms = backoff_ms(retry_count, self.backoff_base_ms, self.backoff_cap_ms)
            retry_at = self.store.clock() + timedelta(milliseconds=delay_ms)
            await self.store.schedule_retry(
                job,
                retry_count,
                f"Attempt {retry_count} failed: {error_message}. Retrying in {delay_ms}ms",
                not_before=retry_at if self.enforce_backoff else None,
            )
            logger.warning(f"Job {job.id} scheduled for retry at {retry_at.isoformat()}")
            return JobOutcome.RETRY_SCHEDULED

        await self.store.fail(job, retry_count, f"Failed after {retry_count} attempts: {error_message}")
        logger.error(f"Job {job.id} failed permanently after {retry_count} attempts")
        return JobOutcome.FAILED

    def _is_retriable(self, error: Exception) -> bool:
        if isinstance(error, NoHandlerError):
            return self.retry_missing_handler
        if isinstance(error, JobHandlerError):
            return error.retriable
        return True
