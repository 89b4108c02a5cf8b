from typing import List, Optional

from psycopg2.extras import RealDictCursor

from api.books import canonical_book
from api.config import DEFAULT_TRANSLATION
from api.verse_store import VERSE_COLUMNS, with_relevance
from etl.utils import normalize_text


def calculate_relevance(text: str, query: str) -> float:
    query_words = [w for w in (query or "").lower().split() if w]
    if not query_words:
        return 0.0
    text_words = (text or "").lower().split()
    matches = sum(1 for qw in query_words if any(qw in tw for tw in text_words))
    return min(matches / len(query_words), 1.0)


def _testament_code(testament: Optional[str]) -> Optional[str]:
    value = (testament or "").strip().lower()
    if value in {"old", "ot"}:
        return "OT"
    if value in {"new", "nt"}:
        return "NT"
    return None


def search_bible(
    conn,
    query: str,
    translation: str = DEFAULT_TRANSLATION,
    book: Optional[str] = None,
    testament: Optional[str] = None,
    limit: int = 10,
) -> List[dict]:
    normalized_query = normalize_text(query or "")
    if not normalized_query:
        return []
    book_name = canonical_book(book) if book else None
    if book and book_name is None:
        return []
    testament_code = _testament_code(testament)

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {VERSE_COLUMNS},
                ts_rank(to_tsvector('english', v.text), plainto_tsquery('english', %s)) AS rank
            FROM verses v
            WHERE v.translation = %s
              AND to_tsvector('english', v.text) @@ plainto_tsquery('english', %s)
              AND (%s IS NULL OR v.book = %s)
              AND (%s IS NULL OR v.testament = %s)
            ORDER BY rank DESC, v.id
            LIMIT %s
            """,
            (
                normalized_query,
                translation,
                normalized_query,
                book_name,
                book_name,
                testament_code,
                testament_code,
                limit,
            ),
        )
        rows = cur.fetchall()

    results = []
    for row in rows:
        relevance = row.get("rank") or calculate_relevance(row["text"], normalized_query)
        results.append(with_relevance(row, min(float(relevance), 1.0)))
    return results
