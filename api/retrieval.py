import math
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List

from api.config import DEFAULT_TRANSLATION
from api.event_log import RETRIEVAL_SLOW_MS, log_search_event

COMMON_TOPICS = [
    "love", "faith", "hope", "prayer", "forgiveness", "peace", "joy",
    "wisdom", "strength", "healing", "salvation", "grace", "mercy",
    "trust", "patience", "kindness", "compassion", "truth",
    "righteousness", "worship", "praise", "thanksgiving", "humility",
    "courage", "perseverance", "discipline", "obedience",
]

# situation word in the query -> topics worth searching for it
RELATED_TOPICS = {
    "anxiety": ["peace", "trust", "faith"],
    "anxious": ["peace", "trust", "faith"],
    "worry": ["peace", "trust", "faith"],
    "depression": ["hope", "joy", "comfort"],
    "depressed": ["hope", "joy", "comfort"],
    "anger": ["forgiveness", "patience", "love"],
    "angry": ["forgiveness", "patience", "love"],
    "fear": ["courage", "faith", "strength"],
    "afraid": ["courage", "faith", "strength"],
    "marriage": ["love", "unity", "commitment"],
    "money": ["stewardship", "contentment", "provision"],
    "work": ["diligence", "purpose", "service"],
}

CONTEXT_MAP = {
    "anxious": "anxiety worry peace trust",
    "depressed": "depression sadness hope joy comfort",
    "angry": "anger forgiveness patience self-control",
    "afraid": "fear courage strength faith",
    "lonely": "loneliness companionship God's presence",
    "sick": "healing health restoration prayer",
    "relationship": "love marriage unity communication",
    "money": "finances stewardship provision contentment",
    "work": "labor diligence purpose calling",
    "family": "parents children household unity",
}

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "can", "what", "how",
    "when", "where", "why", "who", "which", "this", "that", "these",
    "those", "i", "me", "my", "we", "us", "our", "you", "your",
}

POPULAR_VERSES = {"John 3:16", "Philippians 4:13", "Romans 8:28"}

EXACT_MATCH_BONUS = 0.3
KEYWORD_BONUS = 0.2
POPULAR_BONUS = 0.1


def _unique(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def extract_topics(query: str) -> List[str]:
    q = (query or "").lower()
    topics = [t for t in COMMON_TOPICS if t in q or t[:-1] in q]
    for word, related in RELATED_TOPICS.items():
        if word in q:
            topics.extend(related)
    return _unique(topics)


def extract_keywords(query: str) -> List[str]:
    cleaned = re.sub(r"[^\w\s]", " ", (query or "").lower())
    words = [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]
    return _unique(words)


def enhance_query_with_context(query: str) -> Dict[str, object]:
    lowered = (query or "").lower()
    enhanced = query or ""
    for word, context in CONTEXT_MAP.items():
        if word in lowered:
            enhanced += f" {context}"
    return {
        "enhanced_query": enhanced,
        "topics": extract_topics(query),
        "keywords": extract_keywords(query),
    }


def dedupe_verses(verses: List[dict]) -> List[dict]:
    """Keep the first verse per (book, chapter, verse); translation is ignored."""
    seen = set()
    unique = []
    for verse in verses:
        key = (verse["book"], verse["chapter"], verse["verse"])
        if key in seen:
            continue
        seen.add(key)
        unique.append(verse)
    return unique


def score_verse(verse: dict, query: str, keywords: List[str]) -> float:
    score = float(verse.get("relevance") or 0) or 0.5
    text = (verse.get("text") or "").lower()
    lowered_query = (query or "").lower()
    if lowered_query and lowered_query in text:
        score += EXACT_MATCH_BONUS
    if keywords:
        matched = sum(1 for kw in keywords if kw in text)
        score += KEYWORD_BONUS * matched / len(keywords)
    if verse.get("reference") in POPULAR_VERSES:
        score += POPULAR_BONUS
    return min(max(score, 0.0), 1.0)


def rank_verses(verses: List[dict], query: str) -> List[dict]:
    keywords = extract_keywords(query)
    ranked = []
    for verse in verses:
        item = dict(verse)
        item["relevance"] = score_verse(verse, query, keywords)
        ranked.append(item)
    # sorted() is stable, so ties keep their merge order
    return sorted(ranked, key=lambda v: -v["relevance"])


class RetrievalEngine:
    def __init__(self, store, max_workers: int = 3):
        self.store = store
        self.max_workers = max_workers

    def _safe(self, source: str, fn, *args) -> List[dict]:
        start = time.perf_counter()
        try:
            results = fn(*args) or []
        except Exception as exc:
            log_search_event(
                "retrieval_failed",
                {"source": source, "error": type(exc).__name__},
            )
            return []
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        if elapsed_ms > RETRIEVAL_SLOW_MS:
            log_search_event("retrieval_slow", {"source": source, "elapsed_ms": elapsed_ms})
        return list(results)

    def _search_direct(self, query: str, limit: int, translation: str) -> List[dict]:
        return self.store.search_verses(query, limit, translation)

    def _search_topics(self, topics: List[str], limit: int, translation: str) -> List[dict]:
        if not topics:
            return []
        per_topic = math.ceil(limit / len(topics))
        verses = []
        for topic in topics:
            verses.extend(self.store.get_by_topic(topic, per_topic, translation))
        return verses

    def _search_keywords(self, keywords: List[str], limit: int, translation: str) -> List[dict]:
        if not keywords:
            return []
        return self.store.search_verses(" ".join(keywords), limit, translation)

    def retrieve_relevant_verses(
        self,
        query: str,
        max_verses: int = 5,
        translation: str = DEFAULT_TRANSLATION,
    ) -> List[dict]:
        if max_verses <= 0:
            return []
        start = time.perf_counter()
        topics = extract_topics(query)
        keywords = extract_keywords(query)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            direct = pool.submit(
                self._safe, "direct", self._search_direct, query, math.ceil(max_verses / 2), translation
            )
            by_topic = pool.submit(
                self._safe, "topic", self._search_topics, topics, math.ceil(max_verses / 3), translation
            )
            by_keyword = pool.submit(
                self._safe, "keyword", self._search_keywords, keywords, math.ceil(max_verses / 3), translation
            )
            candidates = direct.result() + by_topic.result() + by_keyword.result()

        ranked = rank_verses(dedupe_verses(candidates), query)[:max_verses]
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_search_event(
            "retrieval_latency",
            {
                "elapsed_ms": elapsed_ms,
                "topics": topics,
                "candidates": len(candidates),
                "returned": len(ranked),
            },
        )
        if not ranked:
            log_search_event("retrieval_zero", {"q_len": len(query or "")})
        return ranked

    def get_cross_references(self, reference: str, translation: str = DEFAULT_TRANSLATION) -> List[str]:
        return self._safe("cross_reference", self.store.get_cross_references, reference, translation)
