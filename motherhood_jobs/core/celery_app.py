import logging
import redis
from celery import Celery
from motherhood_jobs.core.config import settings

logger = logging.getLogger(__name__)

def get_celery_app() -> Celery:
    # If using Docker, this would be 'redis://redis:6379/0'
    redis_url = settings.REDIS_URL or "redis://localhost:6379/0"

    app = Celery(
        "motherhood_jobs",
        broker=redis_url,
        backend=redis_url,
        include=["motherhood_jobs.tasks"]
    )

    app.conf.update(
        result_expires=3600,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        # The dispatcher is the periodic trigger: beat fires one pass per interval.
        beat_schedule={
            "dispatch-background-jobs": {
                "task": "motherhood_jobs.tasks.dispatch_background_jobs",
                "schedule": settings.DISPATCH_INTERVAL_SECONDS,
            },
        },
    )

    # Safe Redis Check (Smart Fallback)
    # If Redis is not running, we switch to 'task_always_eager' (synchronous mode)
    # so the dispatch task can still be invoked in-process during development.
    try:
        client = redis.from_url(redis_url, socket_connect_timeout=1)
        client.ping()
        logger.info(f"[Celery] Connected to Redis at {redis_url}")
    except Exception as e:
        logger.warning(f"[Celery] Redis not available ({e}). Running in SYNC mode (task_always_eager=True).")
        app.conf.update(
            task_always_eager=True,
            task_eager_propagates=True
        )

    return app

celery_app = get_celery_app()
