import os
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from api.api_keys import get_usage_stats, record_usage
from api.auth import optional_api_key, require_api_key, require_tier
from api.cache import Cache, cache_status, get_cache
from api.config import (
    API_PREFIX,
    API_TITLE,
    API_VERSION,
    CACHE_TTL_DAY,
    DEFAULT_TRANSLATION,
)
from api.conversations import ConversationStore
from api.db import connect, get_conn
from api.errors import NotFoundError, UpstreamError, ValidationError, install_exception_handlers
from api.event_log import SEARCH_SLOW_MS, log_api_event, log_search_event, reset_event_log
from api.llm import ResponseGenerator, build_client
from api.models import (
    ChatHistoryResponse,
    ChatRequest,
    ChatResponse,
    CounselRequest,
    CounselResponse,
    DailyVerseResponse,
    ExplainRequest,
    ExplainResponse,
    HealthResponse,
    SearchResponse,
    Translation,
    TopicListResponse,
    TopicResponse,
    UsageResponse,
    Verse,
    VerseRangeResponse,
    UUID_PATTERN,
)
from api.ref_parser import format_reference, parse_reference
from api.retrieval import RetrievalEngine, enhance_query_with_context
from api.search import search_bible
from api.validation import ResponseValidator, append_corrections, sanitize_input
from api.verse_store import VerseStore

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000")
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

install_exception_handlers(app)

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "0") == "1"

COUNSEL_MAX_VERSES = 7

COUNSEL_PRACTICAL_STEPS = [
    "Pray about this situation daily",
    "Study the provided verses in context",
    "Seek wisdom from trusted spiritual advisors",
    "Take one small step of faith today",
    "Trust God's timing and plan",
]

COUNSEL_DISCLAIMER = (
    "This is biblical guidance for spiritual growth. For serious personal issues, "
    "please consult with a pastor, licensed counselor, or appropriate professional."
)

COUNSEL_RESOURCES = [
    {
        "title": "Local Church",
        "type": "Community",
        "description": "Connect with a local church for in-person support",
    },
    {
        "title": "Christian Counselor",
        "type": "Professional",
        "description": "Consider speaking with a Christian counselor",
    },
    {
        "title": "Bible Study Group",
        "type": "Community",
        "description": "Join a Bible study group for ongoing support",
    },
]

ORIGINAL_LANGUAGE_NOTE = "Greek/Hebrew analysis would require additional linguistic resources"

_GENERATION_CLIENT = None


@app.on_event("startup")
def _reset_event_log_on_startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")


def get_verse_store(conn=Depends(get_conn), cache: Cache = Depends(get_cache)) -> VerseStore:
    return VerseStore(conn, cache)


def get_generator(cache: Cache = Depends(get_cache)) -> ResponseGenerator:
    global _GENERATION_CLIENT
    if _GENERATION_CLIENT is None:
        _GENERATION_CLIENT = build_client()
    return ResponseGenerator(_GENERATION_CLIENT, cache)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _track_usage(
    background_tasks: BackgroundTasks,
    api_key: Optional[dict],
    endpoint: str,
    start: float,
    tokens_used: int = 0,
) -> None:
    if not api_key:
        return
    background_tasks.add_task(
        record_usage,
        api_key["id"],
        api_key["key_hash"],
        endpoint,
        tokens_used,
        _elapsed_ms(start),
        200,
    )


def _with_reference(verse: dict, relevance: Optional[float] = None) -> dict:
    payload = dict(verse)
    payload["reference"] = format_reference(verse["book"], verse["chapter"], verse["verse"])
    if relevance is not None:
        payload["relevance"] = relevance
    return payload


def _unique(items: list) -> list:
    seen = set()
    out = []
    for item in items:
        key = item.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def _require_reference(reference: str):
    parsed = parse_reference(reference)
    if parsed is None:
        raise ValidationError("Invalid verse reference")
    return parsed


def _validate_text(store, text: str, question: str) -> dict:
    validator = ResponseValidator(store.verse_exists, DEFAULT_TRANSLATION)
    return validator.validate_response(text, question)


@app.post(f"{API_PREFIX}/chat", response_model=ChatResponse)
def chat(
    payload: ChatRequest,
    background_tasks: BackgroundTasks,
    api_key: dict = Depends(require_api_key),
    conn=Depends(get_conn),
    store=Depends(get_verse_store),
    generator=Depends(get_generator),
):
    start = time.perf_counter()
    message = sanitize_input(payload.message)
    if not message:
        raise ValidationError("message is empty")
    conversation_id = payload.conversation_id or str(uuid.uuid4())

    enhanced = enhance_query_with_context(message)
    engine = RetrievalEngine(store)
    verses = engine.retrieve_relevant_verses(
        enhanced["enhanced_query"], payload.max_verses, payload.translation
    )

    try:
        ai_response = generator.generate_response(message, payload.context or "", verses, payload.mode)
    except UpstreamError:
        log_api_event(
            "api_chat_failed",
            {"conversation_id": conversation_id, "elapsed_ms": _elapsed_ms(start)},
        )
        raise

    validation = _validate_text(store, ai_response["response"], message)
    final_response = append_corrections(ai_response["response"], validation["corrections"])

    if payload.store_messages:
        ConversationStore(conn).append_turn(conversation_id, api_key["key_hash"], message, final_response)

    elapsed_ms = _elapsed_ms(start)
    _track_usage(background_tasks, api_key, "/api/v1/chat", start, ai_response["tokens_used"])
    log_api_event(
        "api_chat",
        {
            "conversation_id": conversation_id,
            "mode": payload.mode,
            "verses": len(verses),
            "is_valid": validation["is_valid"],
            "issues": len(validation["issues"]),
            "elapsed_ms": elapsed_ms,
        },
    )
    return {
        "response": final_response,
        "verses": verses,
        "follow_up_questions": ai_response.get("follow_up_questions") or [],
        "related_topics": _unique(enhanced["topics"] + (ai_response.get("related_topics") or [])),
        "conversation_id": conversation_id,
        "metadata": {
            "confidence": ai_response["confidence"],
            "tokens_used": ai_response["tokens_used"],
            "response_time_ms": elapsed_ms,
            "is_valid": validation["is_valid"],
        },
    }


@app.get(f"{API_PREFIX}/chat/{{conversation_id}}", response_model=ChatHistoryResponse)
def get_chat_history(
    conversation_id: str,
    api_key: dict = Depends(require_api_key),
    conn=Depends(get_conn),
):
    if not re.match(UUID_PATTERN, conversation_id or ""):
        raise ValidationError("Invalid conversation id")
    record = ConversationStore(conn).get(conversation_id, api_key["key_hash"])
    if not record:
        raise NotFoundError("Conversation not found")
    log_api_event("api_chat_history", {"conversation_id": conversation_id, "messages": len(record["messages"])})
    return record


@app.get(f"{API_PREFIX}/verses/search", response_model=SearchResponse)
def search_verses(
    background_tasks: BackgroundTasks,
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(10, ge=1, le=50),
    translation: Translation = Query(DEFAULT_TRANSLATION),
    book: Optional[str] = None,
    testament: Optional[str] = Query(None, pattern="^(?i:old|new|ot|nt)$"),
    api_key: dict = Depends(require_api_key),
    conn=Depends(get_conn),
):
    start = time.perf_counter()
    results = search_bible(conn, q, translation, book=book, testament=testament, limit=limit)
    elapsed_ms = _elapsed_ms(start)
    log_search_event(
        "search_latency",
        {"translation": translation, "elapsed_ms": elapsed_ms, "q": q, "total": len(results)},
    )
    if elapsed_ms > SEARCH_SLOW_MS:
        log_search_event("search_slow", {"translation": translation, "elapsed_ms": elapsed_ms, "q": q})
    if not results:
        log_search_event("search_zero", {"translation": translation, "q": q})
    _track_usage(background_tasks, api_key, "/api/v1/verses/search", start)
    return {"query": q, "results": results, "count": len(results)}


@app.get(f"{API_PREFIX}/verses/range/{{reference}}", response_model=VerseRangeResponse)
def get_verse_range(
    reference: str,
    background_tasks: BackgroundTasks,
    translation: Translation = Query(DEFAULT_TRANSLATION),
    api_key: dict = Depends(require_api_key),
    store=Depends(get_verse_store),
):
    start = time.perf_counter()
    _require_reference(reference)
    verses = store.get_range(reference, translation)
    if not verses:
        raise NotFoundError("Verses not found")
    _track_usage(background_tasks, api_key, "/api/v1/verses/range", start)
    log_api_event("api_verse_range", {"reference": reference, "count": len(verses)})
    return {
        "reference": reference,
        "verses": [_with_reference(v) for v in verses],
        "count": len(verses),
    }


@app.get(f"{API_PREFIX}/verses/{{reference}}", response_model=Verse)
def get_verse(
    reference: str,
    background_tasks: BackgroundTasks,
    translation: Translation = Query(DEFAULT_TRANSLATION),
    api_key: dict = Depends(require_api_key),
    store=Depends(get_verse_store),
):
    start = time.perf_counter()
    _require_reference(reference)
    verse = store.get_by_reference(reference, translation)
    if not verse:
        raise NotFoundError("Verse not found")
    _track_usage(background_tasks, api_key, "/api/v1/verses", start)
    log_api_event("api_verse", {"reference": reference, "translation": translation})
    return _with_reference(verse)


@app.post(f"{API_PREFIX}/verses/explain", response_model=ExplainResponse)
def explain_verse(
    payload: ExplainRequest,
    background_tasks: BackgroundTasks,
    api_key: dict = Depends(require_api_key),
    store=Depends(get_verse_store),
    generator=Depends(get_generator),
):
    start = time.perf_counter()
    parsed = _require_reference(payload.reference)
    verse = store.get_by_reference(payload.reference, payload.translation)
    if not verse:
        raise NotFoundError("Verse not found")
    verse = _with_reference(verse)
    reference = format_reference(parsed.book, parsed.chapter, parsed.verse_start)

    context = None
    cross_references = []
    if payload.include_context:
        context = store.get_context(reference, payload.translation)["chapter_context"]
        cross_references = RetrievalEngine(store).get_cross_references(reference, payload.translation)

    explanation = generator.explain_verse(verse, payload.depth, payload.include_original_language)
    application = generator.generate_response(
        f"How can someone apply {reference} in their daily life?",
        "",
        [_with_reference(verse, 1.0)],
        "simple",
    )
    _track_usage(
        background_tasks, api_key, "/api/v1/verses/explain", start, application["tokens_used"]
    )
    log_api_event(
        "api_explain",
        {"reference": reference, "depth": payload.depth, "elapsed_ms": _elapsed_ms(start)},
    )
    return {
        "verse": verse,
        "explanation": explanation,
        "context": context,
        "application": application["response"],
        "cross_references": cross_references,
        "original_language": (
            {"note": ORIGINAL_LANGUAGE_NOTE} if payload.include_original_language else None
        ),
    }


def _daily_verse(store, cache: Cache, translation: str, mood: Optional[str], situation: Optional[str]):
    if mood or situation:
        query = f"{mood or ''} {situation or ''}".strip()
        matches = store.search_verses(query, 1, translation)
        if matches:
            return matches[0]
    day_key = datetime.now(timezone.utc).strftime("%Y%m%d")
    cache_key = f"daily:{day_key}:{translation}"
    cached = cache.get_json(cache_key)
    if cached is not None:
        return cached
    verse = store.get_random(translation)
    if verse:
        cache.set_json(cache_key, verse, CACHE_TTL_DAY)
    return verse


@app.get(f"{API_PREFIX}/daily", response_model=DailyVerseResponse)
def daily_verse(
    background_tasks: BackgroundTasks,
    translation: Translation = Query(DEFAULT_TRANSLATION),
    mood: Optional[str] = Query(None, max_length=50),
    situation: Optional[str] = Query(None, max_length=200),
    api_key: Optional[dict] = Depends(optional_api_key),
    store=Depends(get_verse_store),
    generator=Depends(get_generator),
    cache: Cache = Depends(get_cache),
):
    start = time.perf_counter()
    verse = _daily_verse(store, cache, translation, mood, situation)
    if not verse:
        raise NotFoundError("No verse found")
    verse = _with_reference(verse)
    reflection = generator.generate_response(
        f"Provide a brief reflection on {verse['reference']}",
        situation or "",
        [_with_reference(verse, 1.0)],
        "devotional",
    )
    prayer = generator.generate_prayer(mood or "daily guidance", situation)
    _track_usage(background_tasks, api_key, "/api/v1/daily", start, reflection["tokens_used"])
    log_api_event(
        "api_daily",
        {"reference": verse["reference"], "authenticated": bool(api_key), "elapsed_ms": _elapsed_ms(start)},
    )
    return {
        "verse": verse,
        "reflection": reflection["response"],
        "prayer": prayer,
        "application": "Consider how this verse applies to your life today.",
    }


@app.get(f"{API_PREFIX}/topics", response_model=TopicListResponse)
def list_topics(
    background_tasks: BackgroundTasks,
    q: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = Query(None, max_length=50),
    limit: int = Query(20, ge=1, le=100),
    api_key: dict = Depends(require_api_key),
    store=Depends(get_verse_store),
):
    start = time.perf_counter()
    if q:
        items = store.search_topics(q, limit)
    else:
        items = store.list_topics(category)[:limit]
    _track_usage(background_tasks, api_key, "/api/v1/topics", start)
    return {"items": items, "count": len(items)}


@app.get(f"{API_PREFIX}/topics/{{topic}}", response_model=TopicResponse)
def get_topic(
    topic: str,
    background_tasks: BackgroundTasks,
    depth: str = Query("basic", pattern="^(basic|comprehensive)$"),
    limit: int = Query(10, ge=1, le=20),
    translation: Translation = Query(DEFAULT_TRANSLATION),
    api_key: dict = Depends(require_api_key),
    store=Depends(get_verse_store),
    generator=Depends(get_generator),
):
    start = time.perf_counter()
    topic_data = store.get_topic(topic)
    if not topic_data:
        raise NotFoundError("Topic not found")
    name = topic_data["topic"]
    verses = store.get_by_topic(name, limit, translation)
    overview = generator.generate_response(
        f"Provide a {depth} overview of the biblical topic of {name}",
        "",
        verses,
        "study",
    )
    _track_usage(background_tasks, api_key, "/api/v1/topics", start, overview["tokens_used"])
    log_api_event("api_topic", {"topic": name, "verses": len(verses), "elapsed_ms": _elapsed_ms(start)})
    lowered = name.lower()
    return {
        "topic": name,
        "category": topic_data.get("category"),
        "overview": overview["response"],
        "key_verses": verses,
        "subtopics": topic_data.get("related_topics") or [],
        "practical_steps": [
            f"Study the key verses about {lowered}",
            f"Reflect on how {lowered} applies to your life",
            f"Practice {lowered} in your daily walk",
        ],
        "common_questions": [
            {"question": q, "answer": "Explore this question through prayer and study"}
            for q in overview.get("follow_up_questions") or []
        ],
    }


def build_counsel_prompt(payload: CounselRequest) -> str:
    lines = [f"Provide biblical counseling for someone in this situation: {payload.situation}."]
    if payload.category:
        lines.append(f"Category: {payload.category}.")
    if payload.specific_issues:
        lines.append(f"Specific issues: {', '.join(payload.specific_issues)}.")
    if payload.denomination:
        lines.append(f"From a {payload.denomination} perspective.")
    else:
        lines.append("From a non-denominational Christian perspective.")
    return "\n".join(lines)


@app.post(f"{API_PREFIX}/counsel", response_model=CounselResponse)
def counsel(
    payload: CounselRequest,
    background_tasks: BackgroundTasks,
    api_key: dict = Depends(require_tier("paid")),
    store=Depends(get_verse_store),
    generator=Depends(get_generator),
):
    start = time.perf_counter()
    situation = sanitize_input(payload.situation)
    query = " ".join([situation] + [sanitize_input(i) for i in payload.specific_issues]).strip()
    verses = RetrievalEngine(store).retrieve_relevant_verses(query, COUNSEL_MAX_VERSES, DEFAULT_TRANSLATION)
    guidance = generator.generate_response(build_counsel_prompt(payload), "", verses, "conversational")
    validation = _validate_text(store, guidance["response"], situation)
    prayer = generator.generate_prayer(payload.category or "guidance", situation)
    _track_usage(background_tasks, api_key, "/api/v1/counsel", start, guidance["tokens_used"])
    log_api_event(
        "api_counsel",
        {
            "category": payload.category,
            "verses": len(verses),
            "is_valid": validation["is_valid"],
            "elapsed_ms": _elapsed_ms(start),
        },
    )
    return {
        "guidance": append_corrections(guidance["response"], validation["corrections"]),
        "relevant_verses": verses,
        "practical_steps": list(COUNSEL_PRACTICAL_STEPS),
        "prayer_suggestion": prayer,
        "disclaimer": COUNSEL_DISCLAIMER,
        "resources": [dict(r) for r in COUNSEL_RESOURCES],
        "is_valid": validation["is_valid"],
    }


def _next_month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


@app.get(f"{API_PREFIX}/account/usage", response_model=UsageResponse)
def account_usage(api_key: dict = Depends(require_api_key), conn=Depends(get_conn)):
    usage = get_usage_stats(conn, api_key["id"])
    if not usage:
        raise NotFoundError("Usage data not found")
    return {
        "api_key": api_key.get("name") or "Unknown",
        **usage,
        "reset_date": _next_month_start().isoformat(),
    }


def _database_status() -> str:
    try:
        conn = connect()
    except Exception:
        return "unavailable"
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        return "ok"
    except Exception:
        return "error"
    finally:
        conn.close()


@app.get("/health", response_model=HealthResponse)
def health():
    database = _database_status()
    cache = cache_status()
    cache_state = "ok" if cache["available"] else "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": API_VERSION,
        "database": database,
        "cache": f"{cache['backend']}:{cache_state}",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
