import re
import logging
from pydantic import BaseModel

from warmintro.backends.base import LLMBackend
from warmintro.models import SearchIntent
from warmintro.prompts import SEARCH_INTENT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

SENIORITY_TERMS = ("intern", "junior", "mid", "senior", "manager", "director", "vp", "executive")

_STOPWORDS = {
    "a", "an", "the", "and", "or", "of", "for", "to", "me", "my", "i", "who", "someone",
    "anyone", "people", "person", "find", "know", "looking", "contacts", "contact",
    "works", "working", "work", "with", "any", "is", "there", "in", "at",
    "do", "does", "can", "get", "intro", "introduction", "introductions",
}
_AT_COMPANY = re.compile(r"\bat\s+(.+?)(?=\s+in\s+|$)", re.IGNORECASE)
_IN_LOCATION = re.compile(r"^(.*)\bin\s+(.+)$", re.IGNORECASE)
_WORD = re.compile(r"[\w&.+-]+")


# --- Pydantic schema for structured output ---

class IntentExtraction(BaseModel):
    company: str | None = None
    industry: str | None = None
    role: str | None = None
    seniority: str | None = None
    location: str | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip().strip("?.!,")
    return value or None


def parse_query_locally(query: str) -> SearchIntent:
    """Keyword parse for when no provider is configured.

    Picks out "at <company>", "in <place>" and a seniority word. Whatever is
    left becomes the company, industry and role terms at once; matching is
    OR-based, so this behaves like a plain keyword search over those fields.
    """
    text = query.strip()
    company = location = seniority = None

    match = _AT_COMPANY.search(text)
    if match:
        company = _clean(match.group(1))
        text = (text[:match.start()] + " " + text[match.end():]).strip()

    match = _IN_LOCATION.search(text)
    if match:
        location = _clean(match.group(2))
        text = match.group(1).strip()

    remaining = []
    for word in _WORD.findall(text):
        lowered = word.lower()
        if seniority is None and lowered in SENIORITY_TERMS:
            seniority = lowered
        elif lowered not in _STOPWORDS:
            remaining.append(word)
    keywords = _clean(" ".join(remaining))

    return SearchIntent(
        company=company or keywords,
        industry=keywords,
        role=keywords,
        seniority=seniority,
        location=location,
    )


class SearchIntentParser:
    """Turns a free-text query into a SearchIntent.

    A provider failure yields an empty intent, which the match engine treats
    as "match nothing", never as "match everything".
    """

    def __init__(self, backend: LLMBackend | None):
        self.backend = backend

    def analyze(self, query: str) -> SearchIntent:
        if not query or not query.strip():
            return SearchIntent()
        if self.backend is None:
            return parse_query_locally(query)
        try:
            result = IntentExtraction.model_validate(
                self.backend.parse_query(query, SEARCH_INTENT_SYSTEM_PROMPT, IntentExtraction)
            )
        except Exception as exc:
            logger.warning("[SEARCH] Intent parsing failed, using empty filter: %s", exc)
            return SearchIntent()
        return SearchIntent(**{k: _clean(v) for k, v in result.model_dump().items()})
