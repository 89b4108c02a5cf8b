from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from api.config import DEFAULT_TRANSLATION, RESPONSE_MODES, TRANSLATIONS

UUID_PATTERN = r"^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$"
REFERENCE_PATTERN = r"^(?:[1-3]\s?)?[A-Za-z]+(?:\s+[A-Za-z]+)*\s+\d+:\d+(?:-\d+)?$"

Mode = Literal[RESPONSE_MODES]
Translation = Literal[TRANSLATIONS]


class Verse(BaseModel):
    book: str
    chapter: int
    verse: int
    text: str
    translation: str
    testament: str
    reference: Optional[str] = None


class VerseWithRelevance(Verse):
    reference: str
    relevance: float


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    context: Optional[str] = Field(default=None, max_length=500)
    conversation_id: Optional[str] = Field(default=None, pattern=UUID_PATTERN)
    mode: Mode = "conversational"
    translation: Translation = DEFAULT_TRANSLATION
    store_messages: bool = True
    max_verses: int = Field(default=5, ge=1, le=10)


class ChatMetadata(BaseModel):
    confidence: float
    tokens_used: int
    response_time_ms: int
    is_valid: bool


class ChatResponse(BaseModel):
    response: str
    verses: List[VerseWithRelevance]
    follow_up_questions: List[str]
    related_topics: List[str]
    conversation_id: str
    metadata: ChatMetadata


class ChatMessage(BaseModel):
    role: str
    content: str
    timestamp: Optional[str] = None


class ChatHistoryResponse(BaseModel):
    conversation_id: str
    messages: List[ChatMessage]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ExplainRequest(BaseModel):
    reference: str = Field(pattern=REFERENCE_PATTERN)
    depth: Literal["simple", "moderate", "scholarly"] = "moderate"
    include_context: bool = True
    include_original_language: bool = False
    translation: Translation = DEFAULT_TRANSLATION


class OriginalLanguageNote(BaseModel):
    note: str


class ExplainResponse(BaseModel):
    verse: Verse
    explanation: str
    context: Optional[str] = None
    application: str
    cross_references: List[str]
    original_language: Optional[OriginalLanguageNote] = None


class SearchResponse(BaseModel):
    query: str
    results: List[VerseWithRelevance]
    count: int


class VerseRangeResponse(BaseModel):
    reference: str
    verses: List[Verse]
    count: int


class DailyVerseResponse(BaseModel):
    verse: Verse
    reflection: str
    prayer: str
    application: str


class TopicItem(BaseModel):
    topic: str
    category: Optional[str] = None
    related_topics: List[str]
    verse_count: int


class TopicListResponse(BaseModel):
    items: List[TopicItem]
    count: int


class CommonQuestion(BaseModel):
    question: str
    answer: str


class TopicResponse(BaseModel):
    topic: str
    category: Optional[str] = None
    overview: str
    key_verses: List[VerseWithRelevance]
    subtopics: List[str]
    practical_steps: List[str]
    common_questions: List[CommonQuestion]


class CounselRequest(BaseModel):
    situation: str = Field(min_length=10, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=50)
    specific_issues: List[str] = Field(default_factory=list, max_length=5)
    denomination: Optional[str] = Field(default=None, max_length=50)


class Resource(BaseModel):
    title: str
    type: str
    description: str


class CounselResponse(BaseModel):
    guidance: str
    relevant_verses: List[VerseWithRelevance]
    practical_steps: List[str]
    prayer_suggestion: str
    disclaimer: str
    resources: List[Resource]
    is_valid: bool


class UsageResponse(BaseModel):
    api_key: str
    tier: str
    monthly_limit: int
    current_usage: int
    remaining_calls: int
    percent_used: float
    reset_date: str


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    cache: str
