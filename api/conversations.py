from datetime import datetime, timezone

from psycopg2.extras import Json, RealDictCursor

from api.event_log import log_chat_event


def _iso(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class ConversationStore:
    """Append-only message log per conversation id."""

    def __init__(self, conn):
        self.conn = conn

    def append_messages(self, conversation_id: str, key_hash: str, messages: list[dict]) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        stamped = [
            {"role": m["role"], "content": m["content"], "timestamp": m.get("timestamp") or now}
            for m in messages
        ]
        try:
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO conversations (id, api_key, messages)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (id) DO UPDATE
                    SET messages = conversations.messages || EXCLUDED.messages,
                        updated_at = now()
                    WHERE conversations.api_key = EXCLUDED.api_key
                    """,
                    (conversation_id, key_hash, Json(stamped)),
                )
                written = cur.rowcount
            self.conn.commit()
        except Exception as exc:
            self.conn.rollback()
            log_chat_event(
                "conversation_store_failed",
                {"conversation_id": conversation_id, "error": type(exc).__name__},
            )
            return False
        if not written:
            # id already owned by another key
            log_chat_event("conversation_store_skipped", {"conversation_id": conversation_id})
            return False
        log_chat_event(
            "conversation_stored",
            {"conversation_id": conversation_id, "messages": len(stamped)},
        )
        return True

    def append_turn(self, conversation_id: str, key_hash: str, user_message: str, assistant_message: str) -> bool:
        return self.append_messages(
            conversation_id,
            key_hash,
            [
                {"role": "user", "content": user_message},
                {"role": "assistant", "content": assistant_message},
            ],
        )

    def get(self, conversation_id: str, key_hash: str) -> dict | None:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, messages, created_at, updated_at
                FROM conversations
                WHERE id = %s AND api_key = %s
                """,
                (conversation_id, key_hash),
            )
            row = cur.fetchone()
        if not row:
            return None
        return {
            "conversation_id": str(row["id"]),
            "messages": list(row["messages"] or []),
            "created_at": _iso(row.get("created_at")),
            "updated_at": _iso(row.get("updated_at")),
        }
