import re
from typing import Callable, Dict, List, NamedTuple, Optional, Pattern

from api.books import canonical_book
from api.config import DEFAULT_TRANSLATION
from api.event_log import log_chat_event
from api.ref_parser import REFERENCE_PATTERN, CitedReference, extract_references

ISSUE = "issue"
WARNING = "warning"

REMOVED_REFERENCE = "[Reference removed - not found in Scripture]"
VAGUE_CITATION_WINDOW = 50
NEGATION_WINDOW = 100


class Rule(NamedTuple):
    rule_id: str
    pattern: Pattern
    severity: str
    message: str
    unless: Optional[Pattern] = None


class SafetyRule(NamedTuple):
    rule_id: str
    trigger: Pattern
    warning: str
    requirements: tuple  # (required pattern, correction) pairs
    always_warn: bool = False


class DisclaimerRule(NamedTuple):
    rule_id: str
    trigger: Pattern
    required: Pattern
    correction: str


def _rx(pattern: str) -> Pattern:
    return re.compile(pattern, flags=re.IGNORECASE)


CONTENT_RULES = [
    Rule(
        "prosperity_gospel",
        _rx(r"\bGod wants you to be (?:rich|wealthy|prosperous|successful)\b"),
        ISSUE,
        "Contains prosperity gospel teaching",
    ),
    Rule(
        "self_deification",
        _rx(r"\byou are a god\b"),
        ISSUE,
        "Contains a self-deification claim",
    ),
    Rule(
        "works_salvation",
        _rx(r"\bsalvation (?:by|through) works\b"),
        ISSUE,
        "Suggests salvation by works",
        unless=_rx(r"\bnot by works\b"),
    ),
    Rule(
        "placeholder_citation",
        _rx(r"\[(?:no verse|citation needed)\]"),
        ISSUE,
        "Contains a placeholder instead of a verse citation",
    ),
    Rule(
        "baptism_required",
        _rx(r"\bbaptism is required for salvation\b"),
        WARNING,
        "Contains denominational-specific teaching: baptism required for salvation",
    ),
    Rule(
        "tongues_evidence",
        _rx(r"\bspeaking in tongues is (?:the )?evidence\b"),
        WARNING,
        "Contains denominational-specific teaching: tongues as evidence",
    ),
    Rule(
        "predestination",
        _rx(r"\bpredestination means\b"),
        WARNING,
        "Contains denominational-specific teaching: predestination",
    ),
    Rule(
        "marian_title",
        _rx(r"\bMary is (?:the )?(?:co-redemptrix|mediatrix|queen of heaven)\b"),
        WARNING,
        "Contains denominational-specific teaching: Marian doctrine",
    ),
]

VAGUE_CITATION = _rx(r"\b(?:the Bible says|Scripture tells us|it is written|God's word says)\b")
VAGUE_CITATION_CORRECTION = "Add specific verse reference after biblical claim"

SAFETY_RULES = [
    SafetyRule(
        "self_harm",
        _rx(r"\b(?:suicid\w*|self[- ]harm|kill (?:myself|yourself)|end my life)\b"),
        "Response addresses self-harm; crisis resources must be present",
        (
            (
                _rx(r"\b988\b|\bcrisis\b"),
                "If you are having thoughts of suicide or self-harm, please call or text 988 "
                "(Suicide & Crisis Lifeline) or contact local emergency services right away.",
            ),
            (
                _rx(r"\bpastor\b|\bcounsel(?:or|ling|ing)\b|\btherapist\b"),
                "Please also reach out to a pastor or a licensed counselor who can walk with you.",
            ),
        ),
        always_warn=True,
    ),
    SafetyRule(
        "medical",
        _rx(r"\b(?:medical|disease|diagnos\w*)\b"),
        "Response touches a medical topic",
        (
            (
                _rx(r"\bdoctor\b|\bmedical professional\b"),
                "Please consult a doctor or medical professional about health concerns.",
            ),
        ),
    ),
    SafetyRule(
        "legal",
        _rx(r"\b(?:legal|lawsuit|divorce)\b"),
        "Response touches a legal topic",
        (
            (
                _rx(r"\battorney\b|\blegal counsel\b"),
                "Please consult an attorney or legal counsel for legal matters.",
            ),
        ),
    ),
]

DISCLAIMER_RULES = [
    DisclaimerRule(
        "interfaith",
        _rx(r"\b(?:islam|muslim|buddhis\w*|hindu\w*|judaism)\b"),
        _rx(r"\bChristian perspective\b|\bbiblical view\b"),
        "Note: This response reflects a Christian perspective.",
    ),
    DisclaimerRule(
        "controversial",
        _rx(r"\b(?:homosexuality|abortion|politics|political|evolution)\b"),
        _rx(r"\bChristians hold different views\b|\bvarious interpretations\b"),
        "Note: Christians hold different views on this topic, and there are various interpretations.",
    ),
]

NON_CANONICAL_BOOK = re.compile(r"\bBook of (?P<name>(?:[1-3] )?[A-Z][a-z]+(?: of [A-Z][a-z]+)?)")


class ResponseValidator:
    """Rule-based checks on generated text.

    Nothing here blocks a response. Issues flip ``is_valid``; warnings and
    corrections are advisory and are appended or logged by the caller.
    """

    def __init__(
        self,
        verse_exists: Callable[[str, int, int, str], bool],
        translation: str = DEFAULT_TRANSLATION,
        rules: Optional[List[Rule]] = None,
    ):
        self.verse_exists = verse_exists
        self.translation = translation
        self.rules = CONTENT_RULES if rules is None else rules

    def _reference_valid(self, ref: CitedReference) -> bool:
        book = canonical_book(ref.book)
        if book is None:
            return False
        if ref.verse_end is not None and ref.verse_end < ref.verse_start:
            return False
        return bool(self.verse_exists(book, ref.chapter, ref.verse_start, self.translation))

    def check_references(self, text: str, result: Dict[str, List[str]]) -> List[CitedReference]:
        invalid = []
        checked = set()
        for ref in extract_references(text):
            if ref.text in checked:
                continue
            checked.add(ref.text)
            try:
                valid = self._reference_valid(ref)
            except Exception as exc:
                result["warnings"].append(f"Could not verify reference: {ref.text}")
                log_chat_event("validation_lookup_failed", {"error": type(exc).__name__})
                continue
            if not valid:
                invalid.append(ref)
                result["issues"].append(f"Invalid verse reference: {ref.text}")
                result["corrections"].append(f'Remove or correct the reference "{ref.text}"')
        return invalid

    def check_vague_citations(self, text: str, result: Dict[str, List[str]]) -> None:
        for m in VAGUE_CITATION.finditer(text):
            window = text[m.end() : m.end() + VAGUE_CITATION_WINDOW]
            if not REFERENCE_PATTERN.search(window):
                result["corrections"].append(VAGUE_CITATION_CORRECTION)
                return

    def check_rules(self, text: str, result: Dict[str, List[str]]) -> None:
        for rule in self.rules:
            for m in rule.pattern.finditer(text):
                if rule.unless is not None:
                    lo = max(m.start() - NEGATION_WINDOW, 0)
                    if rule.unless.search(text[lo : m.end() + NEGATION_WINDOW]):
                        continue
                bucket = "issues" if rule.severity == ISSUE else "warnings"
                result[bucket].append(rule.message)
                break

    def check_safety(self, text: str, question: str, result: Dict[str, List[str]]) -> None:
        combined = f"{question or ''}\n{text}"
        for rule in SAFETY_RULES:
            if not rule.trigger.search(combined):
                continue
            missing = [fix for required, fix in rule.requirements if not required.search(text)]
            if rule.always_warn or missing:
                result["warnings"].append(rule.warning)
            result["corrections"].extend(missing)

    def check_disclaimers(self, text: str, question: str, result: Dict[str, List[str]]) -> None:
        for rule in DISCLAIMER_RULES:
            if rule.trigger.search(question or "") and not rule.required.search(text):
                result["corrections"].append(rule.correction)

    def validate_response(self, generated_text: str, original_question: str = "") -> dict:
        text = generated_text or ""
        result = {"issues": [], "corrections": [], "warnings": []}
        self.check_references(text, result)
        self.check_vague_citations(text, result)
        self.check_rules(text, result)
        self.check_safety(text, original_question, result)
        self.check_disclaimers(text, original_question, result)
        if result["issues"] or result["warnings"]:
            log_chat_event(
                "validation_issues",
                {"issues": result["issues"], "warnings": result["warnings"]},
            )
        return {
            "is_valid": not result["issues"],
            "issues": result["issues"],
            "corrections": result["corrections"],
            "warnings": result["warnings"],
        }

    def sanitize_response(self, text: str) -> str:
        """Swap fabricated references for a fixed placeholder."""
        scratch = {"issues": [], "corrections": [], "warnings": []}
        invalid = self.check_references(text or "", scratch)
        if not invalid:
            return text
        bad = {ref.text for ref in invalid}
        return REFERENCE_PATTERN.sub(
            lambda m: REMOVED_REFERENCE if m.group(0) in bad else m.group(0),
            text,
        )

    def detect_fabricated_content(self, text: str) -> bool:
        scratch = {"issues": [], "corrections": [], "warnings": []}
        if self.check_references(text or "", scratch):
            return True
        for m in NON_CANONICAL_BOOK.finditer(text or ""):
            if canonical_book(m.group("name")) is None:
                return True
        return False


def append_corrections(response: str, corrections: List[str]) -> str:
    if not corrections:
        return response
    return response + "\n\n" + "\n".join(corrections)


def sanitize_input(text: str) -> str:
    text = re.sub(r"[<>]", "", text or "")
    text = re.sub(r"javascript:", "", text, flags=re.IGNORECASE)
    text = re.sub(r"on\w+=", "", text, flags=re.IGNORECASE)
    return text.strip()
