import hashlib
import os
import re
import time
from typing import List, Optional

import requests

from api.cache import Cache, NullCache
from api.errors import UpstreamError
from api.event_log import LLM_SLOW_MS, log_llm_event

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")
LLM_TIMEOUT_SEC = float(os.getenv("LLM_TIMEOUT_SEC", "30"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1000"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
AI_RESPONSE_CACHE_TTL = int(os.getenv("AI_RESPONSE_CACHE_TTL", "3600"))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4")

OLLAMA_URL = os.getenv("OLLAMA_URL", "http://ollama:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1")

SYSTEM_PROMPT = """You are a biblical counselor AI that provides scripturally accurate responses based on Christian theology.

CRITICAL RULES:
1. ONLY cite actual Bible verses that exist - NEVER fabricate or invent verses
2. Always provide accurate verse references in the format "Book Chapter:Verse"
3. Remain non-denominational Christian unless a specific denomination is requested
4. Be compassionate, understanding, and encouraging
5. Include practical application of biblical principles
6. Never claim to be God or speak for God directly
7. Suggest pastoral counseling or professional help for serious personal issues
8. If unsure about a verse reference, say so - never guess or make up verses
9. When verses are provided as context, use them in your response

Your responses should:
- Be grounded in biblical truth
- Show empathy and understanding
- Provide hope and encouragement
- Offer practical guidance
- Be appropriate for all ages"""

MODE_PROMPTS = {
    "conversational": "Respond in a warm, conversational tone as if talking to a friend seeking guidance.",
    "study": "Provide an educational response suitable for Bible study, including context and deeper meaning.",
    "devotional": "Craft a devotional response that inspires reflection and spiritual growth.",
    "simple": "Use simple language suitable for children or those new to the Bible.",
}

DEPTH_PROMPTS = {
    "simple": "Explain this verse in simple, easy-to-understand language suitable for children or new believers.",
    "moderate": "Provide a balanced explanation with context and practical application.",
    "scholarly": "Provide an in-depth theological analysis including historical context and cross-references.",
}

METADATA_TOPICS = ["faith", "love", "hope", "prayer", "forgiveness", "grace", "peace", "wisdom"]


class GenerationClient:
    """Prompt in, text and token count out."""

    provider = "base"
    model = ""

    def generate(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> dict:
        raise NotImplementedError

    def _post(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        start = time.perf_counter()
        try:
            res = requests.post(url, json=payload, headers=headers, timeout=LLM_TIMEOUT_SEC)
            res.raise_for_status()
            data = res.json()
        except (requests.RequestException, ValueError) as exc:
            log_llm_event(
                "llm_error",
                {"provider": self.provider, "model": self.model, "error": type(exc).__name__},
            )
            raise UpstreamError("generation failed") from exc
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_llm_event(
            "llm_latency",
            {"provider": self.provider, "model": self.model, "elapsed_ms": elapsed_ms},
        )
        if elapsed_ms > LLM_SLOW_MS:
            log_llm_event(
                "llm_slow",
                {"provider": self.provider, "model": self.model, "elapsed_ms": elapsed_ms},
            )
        return data


class OpenAIClient(GenerationClient):
    provider = "openai"

    def __init__(self, api_key: str = OPENAI_API_KEY, model: str = OPENAI_MODEL, base_url: str = OPENAI_BASE_URL):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    def generate(self, system_prompt, user_prompt, max_tokens, temperature):
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data = self._post(f"{self.base_url}/chat/completions", payload, headers=headers)
        choices = data.get("choices") or [{}]
        text = ((choices[0] or {}).get("message") or {}).get("content") or ""
        tokens_used = int((data.get("usage") or {}).get("total_tokens") or 0)
        return {"text": text, "tokens_used": tokens_used}


class OllamaClient(GenerationClient):
    provider = "ollama"

    def __init__(self, url: str = OLLAMA_URL, model: str = OLLAMA_MODEL):
        self.url = url.rstrip("/")
        self.model = model

    def generate(self, system_prompt, user_prompt, max_tokens, temperature):
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "options": {"num_predict": max_tokens, "temperature": temperature},
        }
        data = self._post(f"{self.url}/api/chat", payload)
        text = (data.get("message") or {}).get("content") or ""
        tokens_used = int(data.get("prompt_eval_count") or 0) + int(data.get("eval_count") or 0)
        return {"text": text, "tokens_used": tokens_used}


def build_client(provider: str = LLM_PROVIDER) -> GenerationClient:
    if (provider or "").lower() == "ollama":
        return OllamaClient()
    return OpenAIClient()


def build_verse_context(verses: List[dict]) -> str:
    if not verses:
        return ""
    rendered = "\n\n".join(
        f'"{v["text"]}" - {v["reference"]} ({v.get("translation", "")})' for v in verses
    )
    return (
        "Here are relevant Bible verses for context:\n\n"
        f"{rendered}\n\n"
        "Please incorporate these verses into your response where appropriate."
    )


def get_mode_prompt(mode: str) -> str:
    return MODE_PROMPTS.get(mode, MODE_PROMPTS["conversational"])


def build_user_prompt(question: str, context: str, verse_context: str) -> str:
    prompt = question
    if context:
        prompt += f"\n\nAdditional context: {context}"
    if verse_context:
        prompt += f"\n\n{verse_context}"
    return prompt


def clean_response(text: str) -> str:
    text = (text or "").replace("**", "").replace("__", "")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_metadata(text: str) -> dict:
    questions = [q.strip() for q in re.findall(r"[^.!?]*\?", text or "")]
    lowered = (text or "").lower()
    topics = []
    for topic in METADATA_TOPICS:
        name = topic.capitalize()
        if topic in lowered and name not in topics:
            topics.append(name)
    return {
        "follow_up_questions": [q for q in questions if q][:3],
        "related_topics": topics[:5],
    }


def calculate_confidence(text: str, verses: List[dict]) -> float:
    confidence = 0.7
    if verses:
        avg_relevance = sum(float(v.get("relevance") or 0) for v in verses) / len(verses)
        confidence = min(0.95, confidence + avg_relevance * 0.25)
    if len(text or "") > 200:
        confidence += 0.05
    if "Bible" in (text or "") or "Scripture" in (text or ""):
        confidence += 0.05
    return round(min(0.99, confidence), 4)


def response_cache_key(system_prompt: str, mode: str, user_prompt: str) -> str:
    raw = f"{system_prompt}\n{mode}\n{user_prompt}".encode("utf-8")
    return "ai:response:" + hashlib.sha256(raw).hexdigest()


class ResponseGenerator:
    def __init__(self, client: GenerationClient, cache: Optional[Cache] = None):
        self.client = client
        self.cache = cache or NullCache()

    def generate_response(
        self,
        question: str,
        context: str = "",
        verses: Optional[List[dict]] = None,
        mode: str = "conversational",
    ) -> dict:
        verses = verses or []
        system_prompt = SYSTEM_PROMPT + "\n\n" + get_mode_prompt(mode)
        user_prompt = build_user_prompt(question, context, build_verse_context(verses))
        cache_key = response_cache_key(system_prompt, mode, user_prompt)
        cached = self.cache.get_json(cache_key)
        if cached is not None:
            log_llm_event("llm_cache_hit", {"provider": self.client.provider, "mode": mode})
            return cached

        result = self.client.generate(system_prompt, user_prompt, LLM_MAX_TOKENS, LLM_TEMPERATURE)
        raw_text = result.get("text") or ""
        metadata = extract_metadata(raw_text)
        response = {
            "response": clean_response(raw_text),
            "confidence": calculate_confidence(raw_text, verses),
            "tokens_used": int(result.get("tokens_used") or 0),
            "follow_up_questions": metadata["follow_up_questions"],
            "related_topics": metadata["related_topics"],
        }
        self.cache.set_json(cache_key, response, AI_RESPONSE_CACHE_TTL)
        return response

    def explain_verse(self, verse: dict, depth: str = "moderate", include_original_language: bool = False) -> str:
        depth_prompt = DEPTH_PROMPTS.get(depth, DEPTH_PROMPTS["moderate"])
        language_prompt = (
            "Include relevant Greek or Hebrew word meanings where appropriate."
            if include_original_language
            else ""
        )
        reference = verse.get("reference") or f'{verse["book"]} {verse["chapter"]}:{verse["verse"]}'
        prompt = (
            "Please explain the following Bible verse:\n\n"
            f'"{verse["text"]}" - {reference}\n\n'
            f"{depth_prompt} {language_prompt}".rstrip()
            + "\n\nInclude:\n"
            "1. What this verse means\n"
            "2. The context in which it was written\n"
            "3. How it applies to life today"
        )
        result = self.client.generate(SYSTEM_PROMPT, prompt, 800, 0.7)
        return clean_response(result.get("text") or "")

    def generate_prayer(self, topic: str, situation: Optional[str] = None) -> str:
        prompt = f"Generate a biblical prayer about {topic}"
        if situation:
            prompt += f" for someone in this situation: {situation}"
        prompt += (
            ".\n\nThe prayer should:\n"
            "- Be grounded in Scripture\n"
            "- Be sincere and heartfelt\n"
            "- Include relevant Bible promises\n"
            "- Be encouraging and faith-building\n"
            "- Be appropriate for all denominations"
        )
        result = self.client.generate(SYSTEM_PROMPT, prompt, 400, 0.8)
        return clean_response(result.get("text") or "")
