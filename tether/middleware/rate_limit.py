"""
Rate Limiting
Prevents abuse using slowapi

RATE LIMITS:
- Global: 100 requests/minute per IP (default)
- Connect starts: 20/hour per key
- Manual syncs: 30/hour per key
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from tether.core.config import get_settings

logger = logging.getLogger(__name__)

CONNECT_LIMIT = "20/hour"
MANUAL_SYNC_LIMIT = "30/hour"


def rate_limit_key_func(request: Request) -> str:
    """
    Authenticated requests are limited per user, everything else per IP.
    """
    if hasattr(request.state, "user_id"):
        user_id = request.state.user_id
        logger.debug(f"Rate limit key: user_id={user_id[:8]}...")
        return f"user:{user_id}"

    ip = get_remote_address(request)
    logger.debug(f"Rate limit key: ip={ip}")
    return f"ip:{ip}"


def _storage_uri() -> str:
    # Shared counters across instances when Redis is available
    return get_settings().redis_url or "memory://"


limiter = Limiter(
    key_func=rate_limit_key_func,
    default_limits=["100/minute"],
    storage_uri=_storage_uri(),
    enabled=get_settings().environment != "test",
)
