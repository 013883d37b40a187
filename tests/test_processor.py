import asyncio
from datetime import timedelta

import pytest

from motherhood_jobs.services.handlers import HandlerRegistry
from motherhood_jobs.services.job_models import JobStatus, format_timestamp
from motherhood_jobs.services.processor import JobOutcome


def _registry(**handlers) -> HandlerRegistry:
    registry = HandlerRegistry()
    for job_type, fn in handlers.items():
        registry.register(job_type.replace("_", "-"), fn)
    return registry


async def _ok(job, payload, ctx):
    return {"echo": payload}


async def _boom(job, payload, ctx):
    raise RuntimeError("analysis service unavailable")


async def _claim_one(store):
    [job] = await store.claim_batch(limit=1, lease_seconds=300)
    return job


async def test_success_on_first_attempt(store, processor_factory):
    processor = processor_factory(_registry(echo=_ok))
    await store.enqueue("echo", {"n": 1})

    outcome = await processor.process(await _claim_one(store))

    assert outcome is JobOutcome.COMPLETED
    [job] = await store.list_jobs()
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"echo": {"n": 1}}
    assert job.error_message is None
    assert job.retry_count == 0
    assert job.completed_at is not None


async def test_pending_job_is_marked_processing_before_the_handler_runs(store, processor_factory):
    seen = {}

    async def inspect(job, payload, ctx):
        seen["status"] = (await store.get(job.id)).status
        return {}

    processor = processor_factory(_registry(inspect=inspect))
    job = await store.enqueue("inspect")

    assert await processor.process(job) is JobOutcome.COMPLETED
    assert seen["status"] == JobStatus.PROCESSING


async def test_first_failure_schedules_retry_with_backoff_hint(store, clock, processor_factory):
    processor = processor_factory(_registry(boom=_boom))
    await store.enqueue("boom")

    outcome = await processor.process(await _claim_one(store))

    assert outcome is JobOutcome.RETRY_SCHEDULED
    [job] = await store.list_jobs()
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 1
    assert job.error_message == "Attempt 1 failed: analysis service unavailable. Retrying in 2000ms"
    assert job.not_before == format_timestamp(clock() + timedelta(milliseconds=2000))


async def test_advisory_backoff_leaves_job_immediately_eligible(store, processor_factory):
    processor = processor_factory(_registry(boom=_boom), enforce_backoff=False)
    await store.enqueue("boom")

    await processor.process(await _claim_one(store))

    [job] = await store.list_jobs()
    assert job.not_before is None
    assert len(await store.claim_batch(limit=10, lease_seconds=300)) == 1


async def test_always_failing_job_ends_failed_after_max_retries(store, clock, processor_factory):
    processor = processor_factory(_registry(boom=_boom))
    await store.enqueue("boom", max_retries=3)

    outcomes = []
    for _ in range(3):
        outcomes.append(await processor.process(await _claim_one(store)))
        clock.advance(seconds=31)

    assert outcomes == [JobOutcome.RETRY_SCHEDULED, JobOutcome.RETRY_SCHEDULED, JobOutcome.FAILED]
    [job] = await store.list_jobs()
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 3
    assert job.error_message == "Failed after 3 attempts: analysis service unavailable"
    assert await store.claim_batch(limit=10, lease_seconds=300) == []


async def test_missing_handler_retries_then_fails(store, clock, processor_factory):
    processor = processor_factory(HandlerRegistry())
    await store.enqueue("does-not-exist", max_retries=2)

    await processor.process(await _claim_one(store))
    [job] = await store.list_jobs()
    assert job.status == JobStatus.PENDING
    assert "No handler found for job type: does-not-exist" in job.error_message

    clock.advance(seconds=31)
    assert await processor.process(await _claim_one(store)) is JobOutcome.FAILED
    [job] = await store.list_jobs()
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 2
    assert job.error_message == "Failed after 2 attempts: No handler found for job type: does-not-exist"


async def test_missing_handler_can_fail_immediately(store, processor_factory):
    processor = processor_factory(HandlerRegistry(), retry_missing_handler=False)
    await store.enqueue("does-not-exist", max_retries=5)

    assert await processor.process(await _claim_one(store)) is JobOutcome.FAILED
    [job] = await store.list_jobs()
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 1
    assert "No handler found" in job.error_message


async def test_invalid_payload_is_not_retried(store, registry, processor_factory):
    processor = processor_factory(registry)
    await store.enqueue("generate-nutrition-report", {"meals": []}, max_retries=3)

    assert await processor.process(await _claim_one(store)) is JobOutcome.FAILED
    [job] = await store.list_jobs()
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 1
    assert job.error_message.startswith("Failed permanently: Invalid payload for generate-nutrition-report")


async def test_hung_handler_times_out_into_retry(store, processor_factory):
    async def hang(job, payload, ctx):
        await asyncio.sleep(5)
        return {}

    processor = processor_factory(_registry(hang=hang), handler_timeout=0.05)
    await store.enqueue("hang")

    assert await processor.process(await _claim_one(store)) is JobOutcome.RETRY_SCHEDULED
    [job] = await store.list_jobs()
    assert "timed out" in job.error_message


async def test_finished_jobs_are_not_run_again(store, processor_factory):
    calls = []

    async def record(job, payload, ctx):
        calls.append(job.id)
        return {}

    processor = processor_factory(_registry(record=record))
    await store.enqueue("record")
    done = await store.complete(await _claim_one(store), {"first": True})

    assert await processor.process(done) is JobOutcome.SKIPPED
    assert not JobOutcome.SKIPPED.succeeded
    assert calls == []
    assert (await store.get(done.id)).result == {"first": True}


async def test_failed_jobs_are_not_run_again(store, processor_factory):
    calls = []

    async def record(job, payload, ctx):
        calls.append(job.id)
        return {}

    processor = processor_factory(_registry(record=record))
    await store.enqueue("record")
    failed = await store.fail(await _claim_one(store), 3, "Failed after 3 attempts: boom")

    assert await processor.process(failed) is JobOutcome.SKIPPED
    assert calls == []


async def test_job_reclaimed_by_another_pass_is_skipped(store, clock, processor_factory):
    calls = []

    async def record(job, payload, ctx):
        calls.append(job.id)
        return {}

    processor = processor_factory(_registry(record=record))
    await store.enqueue("record")
    stale = await _claim_one(store)
    clock.advance(seconds=301)
    reclaimed = await _claim_one(store)

    assert await processor.process(stale) is JobOutcome.SKIPPED
    assert calls == []
    assert (await store.get(stale.id)).lease_expires_at == reclaimed.lease_expires_at


async def test_lease_is_renewed_when_the_job_starts(store, clock, processor_factory):
    seen = {}

    async def inspect(job, payload, ctx):
        seen["lease"] = (await store.get(job.id)).lease_expires_at
        return {}

    processor = processor_factory(_registry(inspect=inspect))
    await store.enqueue("inspect")
    claimed = await _claim_one(store)
    clock.advance(seconds=200)

    assert await processor.process(claimed) is JobOutcome.COMPLETED
    assert seen["lease"] == format_timestamp(clock() + timedelta(seconds=300))


async def test_completion_overwritten_during_handler_is_errored(store, processor_factory):
    async def finish_elsewhere(job, payload, ctx):
        await store.complete(job, {"done": "elsewhere"})
        return {"done": "here"}

    processor = processor_factory(_registry(finish_elsewhere=finish_elsewhere))
    await store.enqueue("finish-elsewhere")

    assert await processor.process(await _claim_one(store)) is JobOutcome.ERRORED
    [stored] = await store.list_jobs()
    assert stored.result == {"done": "elsewhere"}


async def test_image_analysis_without_owner_fails_permanently(store, registry, processor_factory):
    processor = processor_factory(registry)
    await store.enqueue("image-analysis", {"imageUrl": "https://img/1.jpg", "analysisType": "meal"}, max_retries=3)

    assert await processor.process(await _claim_one(store)) is JobOutcome.FAILED
    [job] = await store.list_jobs()
    assert job.retry_count == 1
    assert job.error_message.startswith("Failed permanently:")


@pytest.mark.parametrize("max_retries", [1, 2, 5])
async def test_retry_count_never_exceeds_max_retries(store, clock, processor_factory, max_retries):
    processor = processor_factory(_registry(boom=_boom))
    await store.enqueue("boom", max_retries=max_retries)

    for _ in range(max_retries):
        [job] = await store.list_jobs()
        assert job.retry_count < max_retries
        await processor.process(await _claim_one(store))
        clock.advance(seconds=31)

    [job] = await store.list_jobs()
    assert job.status == JobStatus.FAILED
    assert job.retry_count == max_retries
