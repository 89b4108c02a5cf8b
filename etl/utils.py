# etl/utils.py
import json
import re
from typing import Iterator, List, Sequence


def normalize_text(s: str) -> str:
    # keep stable: search queries go through the same normalization
    s = s.replace("\xa0", " ")
    s = re.sub(r"\s+", " ", s).strip()
    # punctuation to spaces for cleaner tsquery input
    s = re.sub(r"[,:;.!?\"'()\[\]{}]", " ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def chunked(rows: Sequence, size: int) -> Iterator[List]:
    if size <= 0:
        raise ValueError("size must be positive")
    for i in range(0, len(rows), size):
        yield list(rows[i:i + size])


def load_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
