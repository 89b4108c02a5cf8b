# etl/load_bible.py
import sys

from api.books import canonical_book, testament_of
from api.ref_parser import parse_reference
from etl.config import (
    BATCH_SIZE,
    DB,
    DEFAULT_REFERENCE_TYPE,
    DEFAULT_RELEVANCE,
    TOPICS_PATH,
    VERSES_PATH,
)
from etl.db import (
    add_cross_reference,
    add_topic_verse,
    find_verse_id,
    get_conn,
    insert_verses,
    upsert_topic,
)
from etl.utils import chunked, load_json


def verse_rows(verses):
    """
    verses: list of {book, chapter, verse, text, translation[, testament]}
    returns insert tuples; entries with an unknown book or empty text are skipped
    """
    rows = []
    for item in verses:
        book = canonical_book(item.get("book") or "")
        text = (item.get("text") or "").strip()
        if not book or not text:
            print(f"WARN skip verse={item.get('book')} {item.get('chapter')}:{item.get('verse')}")
            continue
        testament = item.get("testament") or testament_of(book)
        rows.append((
            book,
            int(item["chapter"]),
            int(item["verse"]),
            text,
            item.get("translation") or "KJV",
            testament,
        ))
    return rows


def load_verses(conn, verses, batch_size=BATCH_SIZE):
    rows = verse_rows(verses)
    inserted = 0
    processed = 0
    for batch in chunked(rows, batch_size):
        inserted += insert_verses(conn, batch)
        conn.commit()
        processed += len(batch)
        print(f"OK verses {processed}/{len(rows)}")
    return inserted


def _verse_id(conn, reference, translation):
    parsed = parse_reference(reference)
    if parsed is None:
        return None
    return find_verse_id(conn, parsed.book, parsed.chapter, parsed.verse_start, translation)


def load_topics(conn, topics, translation, relevance=DEFAULT_RELEVANCE):
    topic_count = 0
    link_count = 0
    for item in topics:
        topic_id = upsert_topic(
            conn,
            item["topic"],
            item.get("category"),
            item.get("related_topics") or [],
        )
        topic_count += 1
        for reference in item.get("verses") or []:
            verse_id = _verse_id(conn, reference, translation)
            if verse_id is None:
                print(f"WARN topic={item['topic']} missing verse={reference}")
                continue
            add_topic_verse(conn, topic_id, verse_id, item.get("relevance", relevance))
            link_count += 1
        conn.commit()
    return topic_count, link_count


def load_cross_references(conn, cross_references, translation):
    count = 0
    for item in cross_references:
        source_id = _verse_id(conn, item["verse"], translation)
        if source_id is None:
            print(f"WARN cross reference source missing verse={item['verse']}")
            continue
        for reference in item.get("references") or []:
            target_id = _verse_id(conn, reference, translation)
            if target_id is None:
                print(f"WARN cross reference target missing verse={reference}")
                continue
            add_cross_reference(conn, source_id, target_id, item.get("type") or DEFAULT_REFERENCE_TYPE)
            count += 1
    conn.commit()
    return count


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    verses_path = args[0] if len(args) > 0 else VERSES_PATH
    topics_path = args[1] if len(args) > 1 else TOPICS_PATH

    verses = load_json(verses_path)
    topic_data = load_json(topics_path)
    translation = topic_data.get("translation") or "KJV"

    conn = get_conn(DB)
    conn.autocommit = False
    try:
        inserted = load_verses(conn, verses)
        print(f"DONE verses inserted={inserted} total={len(verses)}")
        topics, links = load_topics(conn, topic_data.get("topics") or [], translation)
        print(f"DONE topics={topics} links={links}")
        refs = load_cross_references(conn, topic_data.get("cross_references") or [], translation)
        print(f"DONE cross_references={refs}")
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    main()
