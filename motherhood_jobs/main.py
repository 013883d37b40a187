import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from motherhood_jobs.api import endpoints
from motherhood_jobs.api.routes import worker
from motherhood_jobs.core.config import settings
from motherhood_jobs.core.limiter import limiter
from motherhood_jobs.db import Database
from motherhood_jobs.services.handlers import build_default_registry
from motherhood_jobs.services.job_store import StatusPublisher

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: datastore, handler registry and status channel live for the whole process.
    app.state.db = Database(settings.DATABASE_URL, settings.SQLITE_PATH)
    app.state.registry = build_default_registry()
    app.state.publisher = StatusPublisher(settings.REDIS_URL) if settings.REDIS_URL else None
    try:
        await app.state.db.init_schema()
    except Exception as e:
        # The worker endpoint reports the datastore failure per invocation.
        logger.error(f"DATABASE INIT FAILED: {e}")
    logger.info(f"Registered job types: {', '.join(app.state.registry.types())}")
    yield
    await app.state.db.close()

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Rate Limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]

class AppCORSMiddleware(CORSMiddleware):
    """CORS for the jobs API; the worker route answers its own preflight with an empty body."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"] == worker.WORKER_PATH:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)

app.add_middleware(
    AppCORSMiddleware,
    allow_origins=_cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(worker.router)
app.include_router(endpoints.router, prefix="/api", tags=["jobs"])

@app.get("/health")
def health_check():
    return {"status": "healthy", "project": settings.PROJECT_NAME}
