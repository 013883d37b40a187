"""
Jobs Routes: producer enqueue interface and the background jobs monitor.
"""
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel
from typing import Dict, Any, List, Optional
import logging

from motherhood_jobs.core.config import settings
from motherhood_jobs.core.limiter import limiter, ENQUEUE_LIMIT, MONITOR_LIMIT
from motherhood_jobs.services.job_models import EnqueueRequest, JobStatus
from motherhood_jobs.services.job_store import JobStore

logger = logging.getLogger(__name__)
router = APIRouter()

class JobResponse(BaseModel):
    id: str
    type: str
    payload: Dict[str, Any]
    status: str
    priority: int
    retry_count: int
    max_retries: int
    result: Optional[Any] = None
    error_message: Optional[str] = None
    user_id: Optional[str] = None
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None
    not_before: Optional[str] = None

def _store(request: Request) -> JobStore:
    state = request.app.state
    return JobStore(state.db, publisher=state.publisher)

@router.post("/jobs", response_model=JobResponse, status_code=201)
@limiter.limit(ENQUEUE_LIMIT)
async def enqueue_job(request: Request, body: EnqueueRequest):
    """
    Queue a unit of background work. The job starts pending with retry_count 0.
    """
    if settings.STRICT_ENQUEUE and body.type not in request.app.state.registry:
        raise HTTPException(422, f"Unknown job type: {body.type}")

    job = await _store(request).enqueue(
        body.type,
        body.payload,
        user_id=body.user_id,
        priority=body.priority,
        max_retries=body.max_retries,
    )
    return JobResponse(**job.to_dict())

@router.get("/jobs", response_model=List[JobResponse])
@limiter.limit(MONITOR_LIMIT)
async def list_jobs(
    request: Request,
    status: Optional[JobStatus] = None,
    limit: int = Query(50, ge=1, le=500),
):
    """Newest jobs first, optionally filtered by status (the jobs monitor view)."""
    jobs = await _store(request).list_jobs(status, limit)
    return [JobResponse(**job.to_dict()) for job in jobs]

@router.get("/jobs/stats")
@limiter.limit(MONITOR_LIMIT)
async def job_stats(request: Request):
    return await _store(request).counts_by_status()

@router.get("/jobs/{job_id}", response_model=JobResponse)
@limiter.limit(MONITOR_LIMIT)
async def get_job(request: Request, job_id: str):
    job = await _store(request).get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse(**job.to_dict())
