# etl/db.py
import psycopg2
from psycopg2.extras import execute_values
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from etl.config import CONNECT_ATTEMPTS

INSERT_VERSES_SQL = """
INSERT INTO verses
(book, chapter, verse, text, translation, testament)
VALUES %s
ON CONFLICT (book, chapter, verse, translation) DO NOTHING
RETURNING id;
"""

UPSERT_TOPIC_SQL = """
INSERT INTO topics (topic, category, related_topics)
VALUES (%s, %s, %s)
ON CONFLICT (topic)
DO UPDATE SET
  category = EXCLUDED.category,
  related_topics = EXCLUDED.related_topics
RETURNING id;
"""

UPSERT_TOPIC_VERSE_SQL = """
INSERT INTO topic_verses (topic_id, verse_id, relevance_score)
VALUES (%s, %s, %s)
ON CONFLICT (topic_id, verse_id)
DO UPDATE SET relevance_score = EXCLUDED.relevance_score;
"""

INSERT_CROSS_REFERENCE_SQL = """
INSERT INTO cross_references (verse_id, referenced_verse_id, reference_type)
VALUES (%s, %s, %s)
ON CONFLICT DO NOTHING;
"""


# the database container may still be starting when the loader runs
@retry(
    retry=retry_if_exception_type(psycopg2.OperationalError),
    stop=stop_after_attempt(CONNECT_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)
def get_conn(cfg):
    return psycopg2.connect(**cfg)


def insert_verses(conn, rows) -> int:
    with conn.cursor() as cur:
        inserted = execute_values(cur, INSERT_VERSES_SQL, rows, fetch=True)
    return len(inserted)


def upsert_topic(conn, topic, category, related_topics):
    with conn.cursor() as cur:
        cur.execute(UPSERT_TOPIC_SQL, (topic, category, list(related_topics)))
        return cur.fetchone()[0]


def find_verse_id(conn, book, chapter, verse, translation):
    with conn.cursor() as cur:
        cur.execute("""
            SELECT id FROM verses
            WHERE book=%s AND chapter=%s AND verse=%s AND translation=%s
            LIMIT 1
        """, (book, chapter, verse, translation))
        row = cur.fetchone()
        return row[0] if row else None


def add_topic_verse(conn, topic_id, verse_id, relevance):
    with conn.cursor() as cur:
        cur.execute(UPSERT_TOPIC_VERSE_SQL, (topic_id, verse_id, relevance))


def add_cross_reference(conn, verse_id, referenced_verse_id, reference_type):
    with conn.cursor() as cur:
        cur.execute(INSERT_CROSS_REFERENCE_SQL, (verse_id, referenced_verse_id, reference_type))
