"""Rate limiting for the inbound webhook and management endpoints."""

import logging

from slowapi import Limiter
from slowapi.util import get_remote_address

from crm_automation.core.config import settings

logger = logging.getLogger(__name__)

MEMORY_STORAGE = "memory://"


def _per_minute(limit: int) -> str | None:
    if settings.TESTING or limit <= 0:
        return None
    return f"{limit}/minute"


def _storage_uri() -> str:
    """Redis when configured and reachable, otherwise process-local memory."""
    if settings.TESTING or not settings.REDIS_URL:
        return MEMORY_STORAGE
    try:
        import redis

        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except Exception as e:
        logger.warning(f"Redis unavailable for rate limiting, using in-memory: {e}")
        return MEMORY_STORAGE
    return settings.REDIS_URL


API_LIMIT = _per_minute(settings.RATE_LIMIT_API)
WEBHOOK_LIMIT = _per_minute(settings.RATE_LIMIT_WEBHOOK) or "100000/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=[API_LIMIT] if API_LIMIT else [],
)
