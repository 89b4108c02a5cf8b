import hashlib
import json
import os
from datetime import datetime, timezone

EVENT_LOG_PATH = os.getenv("EVENT_LOG_PATH", "logs/events.log")
LOG_ID_SALT = os.getenv("LOG_ID_SALT", "")
LLM_SLOW_MS = int(os.getenv("LLM_SLOW_MS", "2000"))
RETRIEVAL_SLOW_MS = int(os.getenv("RETRIEVAL_SLOW_MS", "500"))
SEARCH_SLOW_MS = int(os.getenv("SEARCH_SLOW_MS", "500"))

_HASHED_FIELDS = ("conversation_id", "api_key_id")


def _hash_id(value: str) -> str:
    raw = f"{LOG_ID_SALT}{value}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def _log_event(event_type: str, payload: dict) -> None:
    try:
        dir_path = os.path.dirname(EVENT_LOG_PATH)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        safe_payload = dict(payload or {})
        for field in _HASHED_FIELDS:
            if safe_payload.get(field):
                safe_payload[field] = _hash_id(str(safe_payload[field]))
        record = {
            "event_type": event_type,
            "ts": datetime.now(timezone.utc).isoformat(),
            **safe_payload,
        }
        with open(EVENT_LOG_PATH, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=True, default=str) + "\n")
    except OSError:
        pass


def reset_event_log(reason: str) -> None:
    try:
        dir_path = os.path.dirname(EVENT_LOG_PATH)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        with open(EVENT_LOG_PATH, "w", encoding="utf-8"):
            pass
    except OSError:
        return
    _log_event("log_reset", {"reason": reason})


def log_api_event(event_type: str, payload: dict) -> None:
    _log_event(event_type, payload)


def log_chat_event(event_type: str, payload: dict) -> None:
    _log_event(event_type, payload)


def log_search_event(event_type: str, payload: dict) -> None:
    _log_event(event_type, payload)


def log_llm_event(event_type: str, payload: dict) -> None:
    _log_event(event_type, payload)
