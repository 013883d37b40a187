from fastapi import APIRouter

from motherhood_jobs.api.routes import jobs

router = APIRouter()
router.include_router(jobs.router)
