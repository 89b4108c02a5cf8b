import re
from typing import List, NamedTuple, Optional

from api.books import canonical_book


class ParsedReference(NamedTuple):
    book: str
    chapter: int
    verse_start: int
    verse_end: Optional[int]


class CitedReference(NamedTuple):
    text: str
    book: str
    chapter: int
    verse_start: int
    verse_end: Optional[int]
    start: int
    end: int


_FULL_PATTERN = re.compile(
    r"^(?P<book>(?:[1-3]\s*)?[A-Za-z]+(?:\s+[A-Za-z]+)*)\s*"
    r"(?P<chapter>\d+)\s*:\s*(?P<verse>\d+)(?:\s*-\s*(?P<verse_end>\d+))?$",
    flags=re.IGNORECASE,
)

# Book names in running text must be capitalised so times like "at 10:30" are skipped.
REFERENCE_PATTERN = re.compile(
    r"(?P<book>Song\s+of\s+(?:Solomon|Songs)|(?:[1-3]\s?)?[A-Z][A-Za-z]+)\s+"
    r"(?P<chapter>\d+):(?P<verse>\d+)(?:\s*-\s*(?P<verse_end>\d+))?"
)


def parse_reference(reference: str) -> Optional[ParsedReference]:
    """Parse "Book Chapter:Verse[-VerseEnd]".

    Returns None for text outside the grammar, an unknown book, a zero
    chapter or verse, or a descending range.
    """
    raw = " ".join((reference or "").split())
    m = _FULL_PATTERN.match(raw)
    if not m:
        return None
    book = canonical_book(m.group("book"))
    if book is None:
        return None
    chapter = int(m.group("chapter"))
    verse = int(m.group("verse"))
    verse_end = int(m.group("verse_end")) if m.group("verse_end") else None
    if chapter < 1 or verse < 1:
        return None
    if verse_end is not None and verse_end < verse:
        return None
    return ParsedReference(book, chapter, verse, verse_end)


def extract_references(text: str) -> List[CitedReference]:
    """Every reference-shaped substring in text, canonical book or not."""
    if not text:
        return []
    found = []
    for m in REFERENCE_PATTERN.finditer(text):
        verse_end = int(m.group("verse_end")) if m.group("verse_end") else None
        found.append(
            CitedReference(
                text=m.group(0),
                book=" ".join(m.group("book").split()),
                chapter=int(m.group("chapter")),
                verse_start=int(m.group("verse")),
                verse_end=verse_end,
                start=m.start(),
                end=m.end(),
            )
        )
    return found


def format_reference(book: str, chapter: int, verse: int, verse_end: Optional[int] = None) -> str:
    if verse_end and verse_end != verse:
        return f"{book} {chapter}:{verse}-{verse_end}"
    return f"{book} {chapter}:{verse}"
