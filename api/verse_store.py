from typing import List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from api.cache import Cache, NullCache
from api.config import CACHE_TTL_DAY, CACHE_TTL_LONG, DEFAULT_TRANSLATION
from api.ref_parser import format_reference, parse_reference

DEFAULT_RELEVANCE = 0.5

VERSE_COLUMNS = "v.id, v.book, v.chapter, v.verse, v.text, v.translation, v.testament"


def _verse_payload(row: dict) -> dict:
    return {
        "id": row.get("id"),
        "book": row["book"],
        "chapter": int(row["chapter"]),
        "verse": int(row["verse"]),
        "text": row["text"],
        "translation": row["translation"],
        "testament": row["testament"],
    }


def with_relevance(row: dict, relevance) -> dict:
    payload = _verse_payload(row)
    payload["reference"] = format_reference(payload["book"], payload["chapter"], payload["verse"])
    score = float(relevance) if relevance else 0.0
    payload["relevance"] = score if score > 0 else DEFAULT_RELEVANCE
    return payload


class VerseStore:
    """Read access to verses, topics and cross references, cached read-through."""

    def __init__(self, conn, cache: Optional[Cache] = None):
        self.conn = conn
        self.cache = cache or NullCache()

    def _query(self, sql: str, params: tuple, fetch):
        # keep the shared connection usable after a failed statement
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return fetch(cur)
        except psycopg2.Error:
            self.conn.rollback()
            raise

    def _fetchall(self, sql: str, params: tuple) -> List[dict]:
        return self._query(sql, params, lambda cur: cur.fetchall())

    def _fetchone(self, sql: str, params: tuple) -> Optional[dict]:
        return self._query(sql, params, lambda cur: cur.fetchone())

    def search_verses(self, query: str, limit: int = 5, translation: str = DEFAULT_TRANSLATION) -> List[dict]:
        query = (query or "").strip()
        if not query or limit <= 0:
            return []
        cache_key = f"verse:search:{query.lower()}:{limit}:{translation}"
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            return cached
        rows = self._fetchall(
            f"""
            SELECT {VERSE_COLUMNS},
                ts_rank(to_tsvector('english', v.text), plainto_tsquery('english', %s)) AS rank
            FROM verses v
            WHERE v.translation = %s
              AND to_tsvector('english', v.text) @@ plainto_tsquery('english', %s)
            ORDER BY rank DESC, v.id
            LIMIT %s
            """,
            (query, translation, query, limit),
        )
        verses = [with_relevance(row, row.get("rank")) for row in rows]
        self.cache.set_json(cache_key, verses, CACHE_TTL_LONG)
        return verses

    def get_verse(self, book: str, chapter: int, verse: int, translation: str = DEFAULT_TRANSLATION) -> Optional[dict]:
        cache_key = f"verse:{book}:{chapter}:{verse}:{translation}"
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            return cached
        row = self._fetchone(
            f"""
            SELECT {VERSE_COLUMNS}
            FROM verses v
            WHERE v.book = %s AND v.chapter = %s AND v.verse = %s AND v.translation = %s
            """,
            (book, chapter, verse, translation),
        )
        if not row:
            return None
        payload = _verse_payload(row)
        self.cache.set_json(cache_key, payload, CACHE_TTL_DAY)
        return payload

    def get_by_reference(self, reference: str, translation: str = DEFAULT_TRANSLATION) -> Optional[dict]:
        parsed = parse_reference(reference)
        if parsed is None:
            return None
        return self.get_verse(parsed.book, parsed.chapter, parsed.verse_start, translation)

    def verse_exists(self, book: str, chapter: int, verse: int, translation: str = DEFAULT_TRANSLATION) -> bool:
        return self.get_verse(book, chapter, verse, translation) is not None

    def get_range(self, reference: str, translation: str = DEFAULT_TRANSLATION) -> List[dict]:
        parsed = parse_reference(reference)
        if parsed is None:
            return []
        if parsed.verse_end is None:
            verse = self.get_verse(parsed.book, parsed.chapter, parsed.verse_start, translation)
            return [verse] if verse else []
        book, chapter, start, end = parsed
        cache_key = f"verse:range:{book}:{chapter}:{start}-{end}:{translation}"
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            return cached
        rows = self._fetchall(
            f"""
            SELECT {VERSE_COLUMNS}
            FROM verses v
            WHERE v.book = %s AND v.chapter = %s
              AND v.verse BETWEEN %s AND %s
              AND v.translation = %s
            ORDER BY v.verse
            """,
            (book, chapter, start, end, translation),
        )
        verses = [_verse_payload(row) for row in rows]
        if verses:
            self.cache.set_json(cache_key, verses, CACHE_TTL_DAY)
        return verses

    def get_by_topic(self, topic: str, limit: int = 10, translation: str = DEFAULT_TRANSLATION) -> List[dict]:
        topic = (topic or "").strip()
        if not topic or limit <= 0:
            return []
        cache_key = f"verse:topic:{topic.lower()}:{limit}:{translation}"
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            return cached
        rows = self._fetchall(
            f"""
            SELECT {VERSE_COLUMNS}, tv.relevance_score
            FROM verses v
            JOIN topic_verses tv ON tv.verse_id = v.id
            JOIN topics t ON t.id = tv.topic_id
            WHERE lower(t.topic) = lower(%s)
              AND v.translation = %s
            ORDER BY tv.relevance_score DESC, v.id
            LIMIT %s
            """,
            (topic, translation, limit),
        )
        verses = [with_relevance(row, row.get("relevance_score")) for row in rows]
        self.cache.set_json(cache_key, verses, CACHE_TTL_LONG)
        return verses

    def get_random(self, translation: str = DEFAULT_TRANSLATION) -> Optional[dict]:
        row = self._fetchone(
            f"""
            SELECT {VERSE_COLUMNS}
            FROM verses v
            WHERE v.translation = %s
            ORDER BY random()
            LIMIT 1
            """,
            (translation,),
        )
        return _verse_payload(row) if row else None

    def get_context(self, reference: str, translation: str = DEFAULT_TRANSLATION) -> dict:
        empty = {
            "previous_verse": None,
            "current_verse": None,
            "next_verse": None,
            "chapter_context": "",
        }
        parsed = parse_reference(reference)
        if parsed is None:
            return empty
        book, chapter, verse_no, _ = parsed
        current = self.get_verse(book, chapter, verse_no, translation)
        previous = self.get_verse(book, chapter, verse_no - 1, translation) if verse_no > 1 else None
        following = self.get_verse(book, chapter, verse_no + 1, translation)
        passage = [v for v in (previous, current, following) if v]
        return {
            "previous_verse": previous,
            "current_verse": current,
            "next_verse": following,
            "chapter_context": " ".join(v["text"] for v in passage),
        }

    def get_cross_references(self, reference: str, translation: str = DEFAULT_TRANSLATION) -> List[str]:
        parsed = parse_reference(reference)
        if parsed is None:
            return []
        book, chapter, verse_no, _ = parsed
        cache_key = f"verse:xref:{book}:{chapter}:{verse_no}:{translation}"
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            return cached
        rows = self._fetchall(
            """
            SELECT r.book, r.chapter, r.verse
            FROM cross_references x
            JOIN verses v ON v.id = x.verse_id
            JOIN verses r ON r.id = x.referenced_verse_id
            WHERE v.book = %s AND v.chapter = %s AND v.verse = %s AND v.translation = %s
            ORDER BY r.id
            """,
            (book, chapter, verse_no, translation),
        )
        refs = [format_reference(row["book"], row["chapter"], row["verse"]) for row in rows]
        self.cache.set_json(cache_key, refs, CACHE_TTL_LONG)
        return refs

    def get_topic(self, name: str) -> Optional[dict]:
        name = (name or "").strip()
        if not name:
            return None
        cache_key = f"topic:{name.lower()}"
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            return cached
        row = self._fetchone(
            """
            SELECT id, topic, category, related_topics
            FROM topics
            WHERE lower(topic) = lower(%s)
            """,
            (name,),
        )
        if not row:
            return None
        topic = {
            "id": row["id"],
            "topic": row["topic"],
            "category": row.get("category"),
            "related_topics": list(row.get("related_topics") or []),
        }
        self.cache.set_json(cache_key, topic, CACHE_TTL_LONG)
        return topic

    def list_topics(self, category: Optional[str] = None) -> List[dict]:
        cache_key = f"topic:list:{(category or '*').lower()}"
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            return cached
        rows = self._fetchall(
            """
            SELECT t.topic, t.category, t.related_topics, COUNT(tv.verse_id) AS verse_count
            FROM topics t
            LEFT JOIN topic_verses tv ON tv.topic_id = t.id
            WHERE (%s IS NULL OR lower(t.category) = lower(%s))
            GROUP BY t.id, t.topic, t.category, t.related_topics
            ORDER BY t.topic
            """,
            (category, category),
        )
        topics = [_topic_summary(row) for row in rows]
        self.cache.set_json(cache_key, topics, CACHE_TTL_LONG)
        return topics

    def search_topics(self, query: str, limit: int = 10) -> List[dict]:
        query = (query or "").strip()
        if not query:
            return []
        like_pattern = f"%{query}%"
        rows = self._fetchall(
            """
            SELECT t.topic, t.category, t.related_topics, COUNT(tv.verse_id) AS verse_count
            FROM topics t
            LEFT JOIN topic_verses tv ON tv.topic_id = t.id
            WHERE t.topic ILIKE %s
               OR t.category ILIKE %s
               OR EXISTS (SELECT 1 FROM unnest(t.related_topics) AS r WHERE r ILIKE %s)
            GROUP BY t.id, t.topic, t.category, t.related_topics
            ORDER BY t.topic
            LIMIT %s
            """,
            (like_pattern, like_pattern, like_pattern, limit),
        )
        return [_topic_summary(row) for row in rows]


def _topic_summary(row: dict) -> dict:
    return {
        "topic": row["topic"],
        "category": row.get("category"),
        "related_topics": list(row.get("related_topics") or []),
        "verse_count": int(row.get("verse_count") or 0),
    }
