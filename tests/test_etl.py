import psycopg2
import pytest

import etl.db as etl_db
from etl.config import DEFAULT_RELEVANCE, TOPICS_PATH, VERSES_PATH
from etl.load_bible import load_cross_references, load_topics, load_verses, verse_rows
from etl.utils import chunked, load_json, normalize_text


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def execute(self, query, params=None):
        self.conn.queries.append((" ".join(str(query).split()), params))

    def fetchone(self):
        return (len(self.conn.queries),)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self):
        self.queries = []
        self.commits = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1


def test_normalize_text():
    assert normalize_text("For God so loved\xa0the world,  that...") == "For God so loved the world that"


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_verse_rows_canonicalizes_and_skips_unknown():
    rows = verse_rows([
        {"book": "psalm", "chapter": 23, "verse": 1, "text": " The LORD is my shepherd ", "translation": "KJV"},
        {"book": "Hesitations", "chapter": 3, "verse": 14, "text": "made up"},
        {"book": "John", "chapter": 3, "verse": 16, "text": ""},
    ])
    assert rows == [("Psalms", 23, 1, "The LORD is my shepherd", "KJV", "OT")]


def test_load_verses_batches(monkeypatch):
    batches = []

    def fake_insert(conn, rows):
        batches.append(rows)
        return len(rows)

    monkeypatch.setattr("etl.load_bible.insert_verses", fake_insert)
    verses = [{"book": "John", "chapter": 1, "verse": i, "text": f"v{i}", "testament": "NT"} for i in range(1, 6)]
    conn = FakeConn()
    assert load_verses(conn, verses, batch_size=2) == 5
    assert [len(b) for b in batches] == [2, 2, 1]
    assert conn.commits == 3


def test_load_topics_links_known_verses(monkeypatch):
    monkeypatch.setattr(
        "etl.load_bible.find_verse_id",
        lambda conn, book, chapter, verse, translation: 99 if book == "John" else None,
    )
    conn = FakeConn()
    topics = [{"topic": "Love", "category": "Character", "related_topics": ["Kindness"], "verses": ["John 3:16", "Benjamin 4:20", "Ruth 1:16"]}]
    assert load_topics(conn, topics, "KJV") == (1, 1)
    topic_query, link_query = conn.queries
    assert topic_query[1] == ("Love", "Character", ["Kindness"])
    assert link_query[1][1:] == (99, DEFAULT_RELEVANCE)


def test_load_cross_references(monkeypatch):
    ids = {"John": 1, "Romans": 2}
    monkeypatch.setattr(
        "etl.load_bible.find_verse_id",
        lambda conn, book, chapter, verse, translation: ids.get(book),
    )
    conn = FakeConn()
    count = load_cross_references(conn, [{"verse": "John 3:16", "references": ["Romans 5:8", "Ephesians 2:4"]}], "KJV")
    assert count == 1
    assert conn.queries[0][1] == (1, 2, "related")


def test_bundled_seed_data_is_consistent():
    verses = load_json(VERSES_PATH)
    topics = load_json(TOPICS_PATH)
    rows = verse_rows(verses)
    assert len(rows) == len(verses)
    known = {f"{r[0]} {r[1]}:{r[2]}" for r in rows}
    assert len(known) == len(rows)
    for topic in topics["topics"]:
        assert set(topic["verses"]) <= known, topic["topic"]
    for item in topics["cross_references"]:
        assert item["verse"] in known
        assert set(item["references"]) <= known


def test_get_conn_retries_until_database_is_up(monkeypatch):
    attempts = []

    def flaky_connect(**cfg):
        attempts.append(cfg)
        if len(attempts) < 3:
            raise psycopg2.OperationalError("starting up")
        return "conn"

    monkeypatch.setattr(etl_db.psycopg2, "connect", flaky_connect)
    monkeypatch.setattr(etl_db.get_conn.retry, "sleep", lambda _seconds: None)
    assert etl_db.get_conn({"dbname": "biblechat"}) == "conn"
    assert len(attempts) == 3


def test_get_conn_gives_up(monkeypatch):
    def down(**_cfg):
        raise psycopg2.OperationalError("down")

    monkeypatch.setattr(etl_db.psycopg2, "connect", down)
    monkeypatch.setattr(etl_db.get_conn.retry, "sleep", lambda _seconds: None)
    with pytest.raises(psycopg2.OperationalError):
        etl_db.get_conn({"dbname": "biblechat"})
