"""
Worker Route: HTTP trigger for one dispatcher pass.
Called by the external scheduler; no request body required.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
import logging

from motherhood_jobs.core.config import settings
from motherhood_jobs.core.limiter import limiter, DISPATCH_LIMIT
from motherhood_jobs.services.dispatcher import build_dispatcher
from motherhood_jobs.services.errors import JobQueueError

logger = logging.getLogger(__name__)
router = APIRouter()

WORKER_PATH = "/background-job-worker"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

@router.options(WORKER_PATH)
async def worker_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)

@router.post(WORKER_PATH)
@limiter.limit(DISPATCH_LIMIT)
async def run_background_jobs(request: Request):
    """
    Drain one bounded batch of the job queue.
    200 with per-invocation counts, or 500 when configuration or the batch fetch fails.
    """
    state = request.app.state
    try:
        dispatcher = build_dispatcher(
            config=settings,
            db=state.db,
            registry=state.registry,
            publisher=state.publisher,
        )
        report = await dispatcher.run()
    except JobQueueError as e:
        logger.error(f"Background job worker error: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Job processing failed", "message": str(e)},
            headers=CORS_HEADERS,
        )

    return JSONResponse(content=report.to_dict(), headers=CORS_HEADERS)
