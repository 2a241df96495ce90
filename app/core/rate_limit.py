"""
Rate limiting on the slowapi/limits stack.

`limiter` carries the global default and the per-route `@limiter.limit`
decorators. Limits keyed on request data (OTP phone or email) go through
`hit()`, which uses the same `limits` strategies over an in-memory store
whose keys expire with their window. Single process, best effort.
"""
import logging
import time
from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from slowapi import Limiter

from app.config import settings
from app.core.dependencies import get_client_ip

logger = logging.getLogger(__name__)


def user_or_ip_key(request: Request) -> str:
    """Signed-in user id when the auth dependency resolved one, else the client IP."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(key_func=get_client_ip, default_limits=[settings.rate_limit])

_storage = MemoryStorage()
_fixed_window = FixedWindowRateLimiter(_storage)


def _item(limit: int, window_seconds: int) -> RateLimitItemPerSecond:
    return RateLimitItemPerSecond(limit, int(window_seconds))


def hit(bucket: str, key: str, limit: int, window_seconds: int) -> bool:
    """Count one request for `key`; False once `limit` is reached inside the window."""
    allowed = _fixed_window.hit(_item(limit, window_seconds), bucket, key)
    if not allowed:
        logger.debug(f"Rate limit hit: bucket={bucket} key={key}")
    return allowed


def retry_after(bucket: str, key: str, limit: int, window_seconds: int) -> int:
    """Seconds until the current window for `key` resets."""
    stats = _fixed_window.get_window_stats(_item(limit, window_seconds), bucket, key)
    return max(1, int(stats.reset_time - time.time()) + 1)


def reset() -> None:
    limiter.reset()
    _storage.reset()
