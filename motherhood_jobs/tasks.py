import asyncio
import logging
import threading
from typing import Any, Dict

from motherhood_jobs.core.celery_app import celery_app
from motherhood_jobs.core.config import settings
from motherhood_jobs.db import Database
from motherhood_jobs.services.dispatcher import build_dispatcher
from motherhood_jobs.services.errors import JobQueueError

logger = logging.getLogger(__name__)

def run_async_wrapper(coro):
    """
    Run an async coroutine synchronously, handling existing event loops.
    If a loop is already running (e.g. in Celery eager mode/API thread), run in a separate thread.
    Otherwise, use asyncio.run().
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        logger.info("Event loop detected. Running async task in separate thread.")
        result = None
        exception = None

        def run_in_thread():
            nonlocal result, exception
            try:
                result = asyncio.run(coro)
            except Exception as e:
                exception = e

        thread = threading.Thread(target=run_in_thread)
        thread.start()
        thread.join()

        if exception:
            raise exception
        return result
    else:
        return asyncio.run(coro)

async def dispatch_once() -> Dict[str, Any]:
    # asyncpg pools are bound to the loop that created them, so each pass gets its own.
    db = Database(settings.DATABASE_URL, settings.SQLITE_PATH)
    try:
        dispatcher = build_dispatcher(config=settings, db=db)
        await db.init_schema()
        report = await dispatcher.run()
        return report.to_dict()
    finally:
        await db.close()

@celery_app.task(name="motherhood_jobs.tasks.dispatch_background_jobs")
def dispatch_background_jobs() -> Dict[str, Any]:
    """
    Periodic trigger (Celery beat): one bounded dispatcher pass.
    """
    try:
        report = run_async_wrapper(dispatch_once())
    except JobQueueError as e:
        logger.error(f"Background job worker error: {e}")
        raise
    logger.info(f"Dispatch pass report: {report}")
    return report
