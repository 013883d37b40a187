"""
Rate Limiting Module
slowapi guards the worker trigger and the queue API. The scheduler and the
mobile clients identify themselves with an `apikey` header; anonymous callers
are bucketed per IP.
"""
import logging
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from motherhood_jobs.core.config import settings

logger = logging.getLogger(__name__)

def caller_key(request: Request) -> str:
    api_key = request.headers.get("apikey")
    if api_key:
        return f"key:{api_key}"
    return get_remote_address(request)

limiter = Limiter(
    key_func=caller_key,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
)

# Per-route limits
DISPATCH_LIMIT = "30/minute"   # one pass already drains a whole batch
ENQUEUE_LIMIT = "120/minute"
MONITOR_LIMIT = "120/minute"

logger.info(f"Rate limiting {'ENABLED' if settings.RATE_LIMIT_ENABLED else 'DISABLED'} (storage: {settings.RATE_LIMIT_STORAGE_URI})")
