from fastapi import Depends, Request, Response

from api.api_keys import deactivate_api_key, find_api_key, hash_api_key, is_expired
from api.cache import Cache, get_cache
from api.config import RATE_LIMIT_WINDOW_SEC, TIER_LEVELS
from api.db import get_conn
from api.errors import AuthError, QuotaExceededError, TierError
from api.event_log import log_api_event
from api.rate_limit import check_rate_limit, rate_limit_headers, tier_limit


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _get_client_ip(request: Request) -> str:
    xff = request.headers.get("X-Forwarded-For", "")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def authenticate(conn, token: str | None) -> dict:
    """Resolve a bearer token to its api_keys row or raise."""
    if not token:
        raise AuthError("Authorization header required")
    row = find_api_key(conn, token)
    if not row:
        log_api_event("auth_failed", {"reason": "unknown_key", "prefix": token[:8]})
        raise AuthError("Invalid or inactive API key")
    if is_expired(row):
        deactivate_api_key(conn, row["id"])
        conn.commit()
        log_api_event("auth_failed", {"reason": "expired", "api_key_id": row["id"]})
        raise AuthError("API key has expired")
    if int(row["current_usage"] or 0) >= int(row["monthly_limit"] or 0):
        raise QuotaExceededError(
            "Monthly usage limit exceeded",
            details={"limit": row["monthly_limit"], "current": row["current_usage"]},
        )
    return {
        "id": row["id"],
        "key_hash": row["key"] or hash_api_key(token),
        "name": row.get("name"),
        "tier": row["tier"],
        "monthly_limit": int(row["monthly_limit"] or 0),
        "current_usage": int(row["current_usage"] or 0),
    }


def _apply_rate_limit(response: Response, cache: Cache, identity: str, tier: str, scope: str) -> None:
    info = check_rate_limit(cache, identity, tier_limit(tier), RATE_LIMIT_WINDOW_SEC, scope=scope)
    for name, value in rate_limit_headers(info).items():
        response.headers[name] = value


def require_api_key(
    request: Request,
    response: Response,
    conn=Depends(get_conn),
    cache: Cache = Depends(get_cache),
) -> dict:
    api_key = authenticate(conn, _get_bearer_token(request))
    _apply_rate_limit(response, cache, f"key:{api_key['id']}", api_key["tier"], "tier")
    return api_key


def optional_api_key(
    request: Request,
    response: Response,
    conn=Depends(get_conn),
    cache: Cache = Depends(get_cache),
) -> dict | None:
    token = _get_bearer_token(request)
    if not token:
        _apply_rate_limit(response, cache, f"ip:{_get_client_ip(request)}", "free", "anon")
        return None
    return require_api_key(request, response, conn=conn, cache=cache)


def require_tier(required: str):
    required_level = TIER_LEVELS[required]

    def dependency(api_key: dict = Depends(require_api_key)) -> dict:
        if TIER_LEVELS.get(api_key["tier"], 0) < required_level:
            raise TierError(
                f"This endpoint requires {required} tier or higher",
                details={"current_tier": api_key["tier"], "required_tier": required},
            )
        return api_key

    return dependency
