from typing import Optional

OLD_TESTAMENT = [
    "Genesis", "Exodus", "Leviticus", "Numbers", "Deuteronomy",
    "Joshua", "Judges", "Ruth", "1 Samuel", "2 Samuel",
    "1 Kings", "2 Kings", "1 Chronicles", "2 Chronicles",
    "Ezra", "Nehemiah", "Esther", "Job", "Psalms", "Proverbs",
    "Ecclesiastes", "Song of Solomon", "Isaiah", "Jeremiah",
    "Lamentations", "Ezekiel", "Daniel", "Hosea", "Joel",
    "Amos", "Obadiah", "Jonah", "Micah", "Nahum", "Habakkuk",
    "Zephaniah", "Haggai", "Zechariah", "Malachi",
]

NEW_TESTAMENT = [
    "Matthew", "Mark", "Luke", "John", "Acts", "Romans",
    "1 Corinthians", "2 Corinthians", "Galatians", "Ephesians",
    "Philippians", "Colossians", "1 Thessalonians", "2 Thessalonians",
    "1 Timothy", "2 Timothy", "Titus", "Philemon", "Hebrews",
    "James", "1 Peter", "2 Peter", "1 John", "2 John", "3 John",
    "Jude", "Revelation",
]

BOOKS = OLD_TESTAMENT + NEW_TESTAMENT

# alternate spellings that still name a canonical book
BOOK_ALIASES = {
    "psalm": "Psalms",
    "song of songs": "Song of Solomon",
}

_BY_KEY = {name.lower(): name for name in BOOKS}
_BY_KEY.update(BOOK_ALIASES)


def _book_key(name: str) -> str:
    key = " ".join((name or "").split()).lower()
    # "1John" -> "1 john"
    if len(key) > 1 and key[0] in "123" and key[1] != " ":
        key = f"{key[0]} {key[1:]}"
    return key


def canonical_book(name: str) -> Optional[str]:
    return _BY_KEY.get(_book_key(name))


def is_canonical_book(name: str) -> bool:
    return canonical_book(name) is not None


def testament_of(book: str) -> Optional[str]:
    name = canonical_book(book)
    if name is None:
        return None
    return "OT" if name in OLD_TESTAMENT else "NT"


def testament_books(testament: str) -> list[str]:
    value = (testament or "").strip().lower()
    if value in {"ot", "old"}:
        return list(OLD_TESTAMENT)
    if value in {"nt", "new"}:
        return list(NEW_TESTAMENT)
    return []
