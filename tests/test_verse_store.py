import psycopg2
import pytest

from api.cache import MemoryCache
from api.conversations import ConversationStore
from api.search import calculate_relevance, search_bible
from api.retrieval import RetrievalEngine
from api.validation import ResponseValidator
from api.verse_store import VerseStore, with_relevance


class FakeCursor:
    def __init__(self, results=None, fail=False, rowcount=1):
        self.results = list(results or [])
        self.queries = []
        self.fail = fail
        self.rowcount = rowcount
        self._rows = []

    def execute(self, query, params=None):
        if self.fail:
            raise RuntimeError("write failed")
        self.queries.append((" ".join(str(query).split()), params))
        self._rows = self.results.pop(0) if self.results else []

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _row(book="John", chapter=3, verse=16, text="For God so loved the world", **extra):
    row = {
        "id": 1,
        "book": book,
        "chapter": chapter,
        "verse": verse,
        "text": text,
        "translation": "KJV",
        "testament": "NT",
    }
    row.update(extra)
    return row


def test_with_relevance_defaults_and_reference():
    verse = with_relevance(_row(), None)
    assert verse["reference"] == "John 3:16"
    assert verse["relevance"] == 0.5
    assert with_relevance(_row(), 0.8)["relevance"] == 0.8


def test_get_by_reference_is_cached():
    cursor = FakeCursor([[_row()]])
    store = VerseStore(FakeConn(cursor), MemoryCache())
    first = store.get_by_reference("John 3:16", "KJV")
    second = store.get_by_reference("john 3:16", "KJV")
    assert first["text"] == "For God so loved the world"
    assert first == second
    assert len(cursor.queries) == 1
    assert cursor.queries[0][1] == ("John", 3, 16, "KJV")


def test_get_by_reference_invalid_skips_db():
    cursor = FakeCursor()
    store = VerseStore(FakeConn(cursor))
    assert store.get_by_reference("Benjamin 4:20") is None
    assert cursor.queries == []


def test_verse_exists():
    store = VerseStore(FakeConn(FakeCursor([[_row()], []])))
    assert store.verse_exists("John", 3, 16, "KJV") is True
    assert store.verse_exists("John", 3, 99, "KJV") is False


def test_get_range_orders_by_verse():
    rows = [_row(book="Proverbs", chapter=3, verse=5, text="Trust"), _row(book="Proverbs", chapter=3, verse=6, text="In all")]
    cursor = FakeCursor([rows])
    verses = VerseStore(FakeConn(cursor)).get_range("Proverbs 3:5-6")
    assert [v["verse"] for v in verses] == [5, 6]
    assert cursor.queries[0][1] == ("Proverbs", 3, 5, 6, "KJV")


def test_get_by_topic_filters_translation():
    cursor = FakeCursor([[_row(relevance_score=0.8)]])
    verses = VerseStore(FakeConn(cursor)).get_by_topic("Love", 3, "NIV")
    assert verses[0]["relevance"] == 0.8
    assert verses[0]["reference"] == "John 3:16"
    assert "lower(t.topic) = lower(%s)" in cursor.queries[0][0]
    assert cursor.queries[0][1] == ("Love", "NIV", 3)


def test_search_verses_empty_query():
    cursor = FakeCursor()
    assert VerseStore(FakeConn(cursor)).search_verses("   ", 5) == []
    assert cursor.queries == []


def test_get_context_neighbours():
    cursor = FakeCursor([
        [_row(verse=16, text="B")],
        [_row(verse=15, text="A")],
        [_row(verse=17, text="C")],
    ])
    context = VerseStore(FakeConn(cursor)).get_context("John 3:16")
    assert context["previous_verse"]["verse"] == 15
    assert context["next_verse"]["verse"] == 17
    assert context["chapter_context"] == "A B C"


def test_get_context_first_verse_has_no_previous():
    cursor = FakeCursor([[_row(verse=1, text="In the beginning")], []])
    context = VerseStore(FakeConn(cursor)).get_context("John 3:1")
    assert context["previous_verse"] is None
    assert context["next_verse"] is None
    assert context["chapter_context"] == "In the beginning"


def test_get_cross_references_formats():
    cursor = FakeCursor([[{"book": "Romans", "chapter": 5, "verse": 8}, {"book": "1 John", "chapter": 4, "verse": 9}]])
    refs = VerseStore(FakeConn(cursor)).get_cross_references("John 3:16")
    assert refs == ["Romans 5:8", "1 John 4:9"]


def test_list_topics_summary():
    cursor = FakeCursor([[{"topic": "Love", "category": "Character", "related_topics": ["Kindness"], "verse_count": 3}]])
    topics = VerseStore(FakeConn(cursor)).list_topics()
    assert topics == [{"topic": "Love", "category": "Character", "related_topics": ["Kindness"], "verse_count": 3}]


def test_get_topic_missing():
    assert VerseStore(FakeConn(FakeCursor([[]]))).get_topic("Nothing") is None


def test_calculate_relevance():
    assert calculate_relevance("For God so loved the world", "god world") == 1.0
    assert calculate_relevance("For God so loved the world", "god mercy") == 0.5
    assert calculate_relevance("anything", "") == 0.0


def test_search_bible_filters():
    cursor = FakeCursor([[_row(rank=0.3)]])
    results = search_bible(FakeConn(cursor), "loved, world!", "KJV", book="john", testament="new", limit=5)
    assert results[0]["relevance"] == 0.3
    params = cursor.queries[0][1]
    assert params[0] == "loved world"
    assert "John" in params
    assert "NT" in params
    assert params[-1] == 5


def test_search_bible_unknown_book():
    cursor = FakeCursor()
    assert search_bible(FakeConn(cursor), "love", "KJV", book="Hesitations") == []
    assert cursor.queries == []


def test_conversation_store_append_and_get():
    cursor = FakeCursor([[], [{"id": "abc", "messages": [{"role": "user", "content": "hi"}], "created_at": None, "updated_at": None}]])
    conn = FakeConn(cursor)
    store = ConversationStore(conn)
    assert store.append_turn("abc", "hash", "hi", "hello") is True
    assert conn.commits == 1
    _, params = cursor.queries[0]
    assert params[0] == "abc"
    assert params[1] == "hash"
    assert [m["role"] for m in params[2].adapted] == ["user", "assistant"]
    record = store.get("abc", "hash")
    assert record["conversation_id"] == "abc"
    assert record["messages"][0]["content"] == "hi"


def test_conversation_store_failure_rolls_back():
    conn = FakeConn(FakeCursor(fail=True))
    assert ConversationStore(conn).append_turn("abc", "hash", "hi", "hello") is False
    assert conn.rollbacks == 1


def test_conversation_store_owned_by_other_key_is_not_stored():
    conn = FakeConn(FakeCursor(rowcount=0))
    assert ConversationStore(conn).append_turn("abc", "other-hash", "hi", "hello") is False
    assert conn.commits == 1


class TransactionCursor:
    """Fails full-text searches and refuses everything after until rolled back."""

    def __init__(self, conn):
        self.conn = conn
        self._rows = []

    def execute(self, query, params=None):
        if self.conn.aborted:
            raise psycopg2.InternalError("current transaction is aborted")
        if "ts_rank" in query:
            self.conn.aborted = True
            raise psycopg2.OperationalError("canceling statement due to statement timeout")
        if "topic_verses" in query:
            self._rows = [_row("Philippians", 4, 7, "And the peace of God", relevance_score=0.9)]
        elif params == ("John", 3, 16, "KJV"):
            self._rows = [_row()]
        else:
            self._rows = []

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class TransactionConn:
    def __init__(self):
        self.aborted = False
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return TransactionCursor(self)

    def rollback(self):
        self.aborted = False
        self.rollbacks += 1


def test_failed_query_rolls_back_shared_connection():
    conn = TransactionConn()
    store = VerseStore(conn)
    with pytest.raises(psycopg2.OperationalError):
        store.search_verses("peace", 3, "KJV")
    assert conn.rollbacks == 1
    assert store.verse_exists("John", 3, 16, "KJV") is True


def test_failed_sub_search_leaves_other_reads_working():
    conn = TransactionConn()
    store = VerseStore(conn)
    verses = RetrievalEngine(store, max_workers=1).retrieve_relevant_verses("I am anxious", 5, "KJV")
    assert [v["reference"] for v in verses] == ["Philippians 4:7"]
    assert conn.rollbacks == 2

    result = ResponseValidator(store.verse_exists, "KJV").validate_response("See John 99:1 and John 3:16.")
    assert result["is_valid"] is False
    assert result["issues"] == ["Invalid verse reference: John 99:1"]
    assert result["warnings"] == []
