import time

from api.cache import Cache
from api.config import RATE_LIMIT_WINDOW_SEC, RATE_LIMITS
from api.errors import QuotaExceededError
from api.event_log import log_api_event


def _rate_key(scope: str, identity: str) -> str:
    return f"rate:{scope}:{identity}"


def tier_limit(tier: str) -> int:
    return RATE_LIMITS.get(tier, RATE_LIMITS["free"])


def check_rate_limit(
    cache: Cache,
    identity: str,
    limit: int,
    window_sec: int = RATE_LIMIT_WINDOW_SEC,
    scope: str = "api",
) -> dict | None:
    """Count one hit for identity in the current window.

    Returns the window state, or None when the cache cannot count (the
    request is let through). Raises QuotaExceededError past the limit.
    """
    if not identity:
        return None
    result = cache.incr_with_ttl(_rate_key(scope, identity), window_sec)
    if result is None:
        return None
    count, ttl = result
    ttl = ttl if ttl > 0 else window_sec
    info = {
        "limit": limit,
        "remaining": max(limit - count, 0),
        "reset": int(time.time()) + ttl,
        "retry_after": ttl,
    }
    if count > limit:
        log_api_event("rate_limited", {"scope": scope, "limit": limit, "count": count})
        raise QuotaExceededError(
            f"Rate limit exceeded. Maximum {limit} requests per {window_sec} seconds.",
            retry_after=ttl,
            headers=rate_limit_headers(info),
        )
    return info


def rate_limit_headers(info: dict | None) -> dict:
    if not info:
        return {}
    return {
        "X-RateLimit-Limit": str(info["limit"]),
        "X-RateLimit-Remaining": str(info["remaining"]),
        "X-RateLimit-Reset": str(info["reset"]),
    }
