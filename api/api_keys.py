import hashlib
import hmac
import os
import secrets
from datetime import datetime, timezone

from psycopg2.extras import RealDictCursor

from api.config import MONTHLY_LIMITS, TIERS
from api.db import connect
from api.event_log import log_api_event

API_KEY_PREFIX = "bca_"
API_KEY_PEPPER = os.getenv("API_KEY_PEPPER", "")

KEY_COLUMNS = "id, key, name, tier, monthly_limit, current_usage, created_at, expires_at, is_active"


def hash_api_key(plain_key: str) -> str:
    secret = API_KEY_PEPPER.encode("utf-8")
    raw = (plain_key or "").encode("utf-8")
    return hmac.new(secret, raw, hashlib.sha256).hexdigest()


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(24)}"


def default_monthly_limit(tier: str) -> int:
    return MONTHLY_LIMITS.get(tier, MONTHLY_LIMITS["free"])


def create_api_key(
    conn,
    name: str | None = None,
    tier: str = "free",
    monthly_limit: int | None = None,
    expires_at: datetime | None = None,
) -> tuple[dict, str]:
    """Insert a new key and return (row, plain key). The plain key is not stored."""
    if tier not in TIERS:
        raise ValueError(f"unknown tier: {tier}")
    plain_key = generate_api_key()
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO api_keys (key, name, tier, monthly_limit, expires_at, is_active)
            VALUES (%s, %s, %s, %s, %s, true)
            RETURNING {KEY_COLUMNS}
            """,
            (
                hash_api_key(plain_key),
                name or "Unnamed Key",
                tier,
                monthly_limit or default_monthly_limit(tier),
                expires_at,
            ),
        )
        row = cur.fetchone()
    return row, plain_key


def find_api_key(conn, plain_key: str) -> dict | None:
    if not plain_key:
        return None
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {KEY_COLUMNS}
            FROM api_keys
            WHERE key = %s AND is_active = true
            """,
            (hash_api_key(plain_key),),
        )
        return cur.fetchone()


def is_expired(row: dict, now: datetime | None = None) -> bool:
    expires_at = row.get("expires_at")
    if not expires_at:
        return False
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at < now


def deactivate_api_key(conn, key_id: int) -> None:
    with conn.cursor() as cur:
        cur.execute("UPDATE api_keys SET is_active = false WHERE id = %s", (key_id,))


def increment_usage(conn, key_id: int, amount: int = 1) -> None:
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE api_keys SET current_usage = current_usage + %s WHERE id = %s",
            (amount, key_id),
        )


def get_usage_stats(conn, key_id: int) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT tier, monthly_limit, current_usage
            FROM api_keys
            WHERE id = %s AND is_active = true
            """,
            (key_id,),
        )
        row = cur.fetchone()
    if not row:
        return None
    monthly_limit = int(row["monthly_limit"] or 0)
    current_usage = int(row["current_usage"] or 0)
    percent_used = (current_usage / monthly_limit * 100) if monthly_limit else 100.0
    return {
        "tier": row["tier"],
        "monthly_limit": monthly_limit,
        "current_usage": current_usage,
        "remaining_calls": max(0, monthly_limit - current_usage),
        "percent_used": round(percent_used, 2),
    }


def record_usage(
    key_id: int,
    key_hash: str,
    endpoint: str,
    tokens_used: int,
    response_time_ms: int,
    status_code: int,
    increment: bool = True,
) -> None:
    """Post-response bookkeeping on its own connection; failures are only logged."""
    try:
        conn = connect()
    except Exception as exc:
        log_api_event("usage_track_failed", {"endpoint": endpoint, "error": type(exc).__name__})
        return
    try:
        if increment:
            increment_usage(conn, key_id, 1)
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO api_usage (api_key, endpoint, tokens_used, response_time_ms, status_code)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (key_hash, endpoint, tokens_used, response_time_ms, status_code),
            )
        conn.commit()
    except Exception as exc:
        conn.rollback()
        log_api_event("usage_track_failed", {"endpoint": endpoint, "error": type(exc).__name__})
    finally:
        conn.close()
