import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import redis

from motherhood_jobs.core.config import settings
from motherhood_jobs.db import Database
from motherhood_jobs.services.errors import InvalidTransitionError
from motherhood_jobs.services.job_models import (
    Job,
    JobStatus,
    ensure_transition,
    format_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class StatusPublisher:
    """
    Publishes job transitions on the Redis channel job:<id> for live monitors.
    Publishing is best effort; a dead Redis never affects a job.
    """

    def __init__(self, redis_url: str):
        self.client = None
        try:
            self.client = redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=1)
            self.client.ping()
            logger.info(f"Connected to Redis for job status updates at {redis_url}")
        except redis.RedisError as e:
            logger.warning(f"Redis not available ({e}). Job status updates will not be published.")
            self.client = None

    def publish(self, job_id: str, data: Dict[str, Any]):
        if not self.client:
            return
        try:
            self.client.publish(f"job:{job_id}", json.dumps(data, default=str))
        except Exception as e:
            logger.error(f"Redis publish failed: {e}")


class JobStore:
    """
    Owns every read and write of the background_jobs table.
    Status writes are conditional on the status the caller last saw, so a stale
    job object can never move a row backwards.
    """

    def __init__(self, db: Database, clock: Clock = utc_now, publisher: Optional[StatusPublisher] = None):
        self.db = db
        self.clock = clock
        self.publisher = publisher

    def _now(self) -> str:
        return format_timestamp(self.clock())

    # ─── Producer side ───────────────────────────────────────────────────

    async def enqueue(
        self,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        priority: int = 0,
        max_retries: Optional[int] = None,
    ) -> Job:
        now = self._now()
        job = Job(
            id=str(uuid.uuid4()),
            type=job_type,
            payload=dict(payload or {}),
            status=JobStatus.PENDING,
            priority=priority,
            retry_count=0,
            max_retries=max_retries if max_retries is not None else settings.DEFAULT_MAX_RETRIES,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        async with self.db.connection() as conn:
            await conn.execute(
                """
                INSERT INTO background_jobs
                    (id, type, payload, status, priority, retry_count, max_retries, user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (job.id, job.type, json.dumps(job.payload), job.status.value, job.priority,
                 job.retry_count, job.max_retries, job.user_id, job.created_at, job.updated_at),
            )
            await conn.commit()

        logger.info(f"Job {job.id} ({job.type}) enqueued with priority {job.priority}.")
        return job

    # ─── Reads ───────────────────────────────────────────────────────────

    async def get(self, job_id: str) -> Optional[Job]:
        async with self.db.connection() as conn:
            cursor = await conn.execute("SELECT * FROM background_jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
        return Job.from_row(row) if row else None

    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[Job]:
        async with self.db.connection() as conn:
            if status is None:
                cursor = await conn.execute(
                    "SELECT * FROM background_jobs ORDER BY created_at DESC LIMIT ?", (limit,)
                )
            else:
                cursor = await conn.execute(
                    "SELECT * FROM background_jobs WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                    (status.value, limit),
                )
            rows = await cursor.fetchall()
        return [Job.from_row(row) for row in rows]

    async def counts_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        async with self.db.connection() as conn:
            cursor = await conn.execute(
                "SELECT status, COUNT(*) AS cnt FROM background_jobs GROUP BY status"
            )
            rows = await cursor.fetchall()
        for row in rows:
            counts[row["status"]] = row["cnt"]
        return counts

    # ─── Dispatcher side ─────────────────────────────────────────────────

    async def claim_batch(self, limit: int, lease_seconds: int) -> List[Job]:
        """
        Atomically claim up to `limit` eligible jobs and mark them processing.

        Eligible: pending jobs whose not_before has passed, and processing jobs
        whose lease expired (left behind by a crashed invocation).
        """
        moment = self.clock()
        now = format_timestamp(moment)
        lease = format_timestamp(moment + timedelta(seconds=lease_seconds))
        # Postgres can skip rows another invocation is claiming right now.
        lock_clause = "FOR UPDATE SKIP LOCKED" if self.db.is_postgres else ""

        async with self.db.connection() as conn:
            cursor = await conn.execute(
                f"""
                UPDATE background_jobs
                SET status = 'processing', lease_expires_at = ?, updated_at = ?
                WHERE id IN (
                    SELECT id FROM background_jobs
                    WHERE (status = 'pending' AND (not_before IS NULL OR not_before <= ?))
                       OR (status = 'processing' AND (lease_expires_at IS NULL OR lease_expires_at <= ?))
                    ORDER BY priority DESC, created_at ASC
                    LIMIT ?
                    {lock_clause}
                )
                RETURNING *
                """,
                (lease, now, now, now, limit),
            )
            rows = await cursor.fetchall()
            await conn.commit()

        # RETURNING gives no ordering guarantee.
        jobs = sorted((Job.from_row(row) for row in rows), key=lambda j: (-j.priority, j.created_at))
        for job in jobs:
            self._publish(job)
        return jobs

    async def mark_processing(self, job: Job, lease_seconds: int) -> Job:
        """
        Take or renew the lease right before a job runs.

        A processing job is renewed only while it still carries the lease this
        pass claimed it with; if another pass reclaimed it meanwhile, the
        update matches nothing and InvalidTransitionError is raised.
        """
        moment = self.clock()
        return await self._transition(
            job,
            JobStatus.PROCESSING,
            match_lease=job.status == JobStatus.PROCESSING,
            lease_expires_at=format_timestamp(moment + timedelta(seconds=lease_seconds)),
        )

    async def complete(self, job: Job, result: Dict[str, Any]) -> Job:
        now = self._now()
        return await self._transition(
            job,
            JobStatus.COMPLETED,
            match_lease=True,
            result=json.dumps(result, default=str),
            error_message=None,
            completed_at=now,
            lease_expires_at=None,
            now=now,
        )

    async def schedule_retry(self, job: Job, retry_count: int, error_message: str,
                             not_before: Optional[datetime] = None) -> Job:
        return await self._transition(
            job,
            JobStatus.PENDING,
            match_lease=True,
            retry_count=retry_count,
            error_message=error_message,
            not_before=format_timestamp(not_before) if not_before else None,
            lease_expires_at=None,
        )

    async def fail(self, job: Job, retry_count: int, error_message: str) -> Job:
        return await self._transition(
            job,
            JobStatus.FAILED,
            match_lease=True,
            retry_count=retry_count,
            error_message=error_message,
            lease_expires_at=None,
        )

    async def _transition(self, job: Job, target: JobStatus, now: Optional[str] = None,
                          match_lease: bool = False, **fields: Any) -> Job:
        ensure_transition(job.status, target)
        now = now or self._now()
        columns = {"status": target.value, "updated_at": now, **fields}
        assignments = ", ".join(f"{name} = ?" for name in columns)
        where = "id = ? AND status = ?"
        params = [*columns.values(), job.id, job.status.value]
        if match_lease:
            if job.lease_expires_at is None:
                where += " AND lease_expires_at IS NULL"
            else:
                where += " AND lease_expires_at = ?"
                params.append(job.lease_expires_at)

        async with self.db.connection() as conn:
            cursor = await conn.execute(
                f"UPDATE background_jobs SET {assignments} WHERE {where} RETURNING *",
                tuple(params),
            )
            # Drain RETURNING rows before committing.
            rows = await cursor.fetchall()
            await conn.commit()

        row = rows[0] if rows else None
        if row is None:
            raise InvalidTransitionError(
                f"Job {job.id} is no longer {job.status.value}; refusing {target.value}"
            )
        updated = Job.from_row(row)
        self._publish(updated)
        return updated

    def _publish(self, job: Job):
        if self.publisher:
            self.publisher.publish(job.id, {
                "job_id": job.id,
                "type": job.type,
                "status": job.status.value,
                "retry_count": job.retry_count,
                "error_message": job.error_message,
            })
