# etl/create_api_key.py
import os
from datetime import datetime, timedelta, timezone

from api.api_keys import create_api_key
from api.config import TIERS
from etl.config import DB
from etl.db import get_conn

KEY_NAME = os.getenv("API_KEY_NAME", "Development Key")
KEY_TIER = os.getenv("API_KEY_TIER", "premium")
KEY_MONTHLY_LIMIT = os.getenv("API_KEY_MONTHLY_LIMIT")
KEY_EXPIRES_DAYS = os.getenv("API_KEY_EXPIRES_DAYS")


def main():
    if KEY_TIER not in TIERS:
        raise SystemExit(f"unknown tier: {KEY_TIER}")
    expires_at = None
    if KEY_EXPIRES_DAYS:
        expires_at = datetime.now(timezone.utc) + timedelta(days=int(KEY_EXPIRES_DAYS))

    conn = get_conn(DB)
    try:
        row, plain_key = create_api_key(
            conn,
            KEY_NAME,
            KEY_TIER,
            monthly_limit=int(KEY_MONTHLY_LIMIT) if KEY_MONTHLY_LIMIT else None,
            expires_at=expires_at,
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    # shown once; only the hash is stored
    print(f"OK id={row['id']} tier={row['tier']} monthly_limit={row['monthly_limit']}")
    print(f"API_KEY={plain_key}")


if __name__ == "__main__":
    main()
