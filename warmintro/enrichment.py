import csv
import io
import math
import time
import logging
from pydantic import BaseModel, ValidationError

from warmintro.backends.base import LLMBackend
from warmintro.errors import RequestValidationError
from warmintro.models import ENRICHMENT_FIELDS, Contact, EnrichedData
from warmintro.prompts import ENRICHMENT_SYSTEM_PROMPT
from warmintro.store.base import Store

logger = logging.getLogger(__name__)

# Provider confidence when the model omits it.
DEFAULT_CONFIDENCE = 50


# --- Pydantic schema for structured output ---

class ContactExtraction(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    title: str | None = None
    industry: str | None = None
    seniority: str | None = None
    location: str | None = None
    company_size: str | None = None
    funding_stage: str | None = None
    years_experience: int | None = None
    skills: list[str] | None = None
    education: str | None = None
    university: str | None = None
    degree: str | None = None
    major: str | None = None
    graduation_year: int | None = None
    recent_role_change: bool | None = None
    industry_fit: str | None = None
    linkedin_summary: str | None = None
    confidence: float | None = None


def _to_percent(confidence: float | None) -> int:
    if confidence is None or not math.isfinite(confidence):
        return DEFAULT_CONFIDENCE
    # Some models answer on a 0-100 scale despite the prompt
    value = confidence if confidence > 1 else confidence * 100
    return max(0, min(100, int(value + 0.5)))


def _validate_extraction(payload) -> ContactExtraction:
    """Validate a provider payload, dropping only the fields that fail."""
    try:
        return ContactExtraction.model_validate(payload)
    except ValidationError as exc:
        if not isinstance(payload, dict):
            raise
        bad = {err["loc"][0] for err in exc.errors() if err["loc"]}
        logger.warning("[ENRICH] Dropping malformed fields %s", sorted(bad))
        return ContactExtraction.model_validate({k: v for k, v in payload.items() if k not in bad})


def _clean(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, list):
        items = [v.strip() for v in value if isinstance(v, str) and v.strip()]
        return items or None
    return value


class ContactEnricher:
    """Enrichment collaborator: raw contact text in, structured fields out.

    Never raises. Without a backend, or when the provider fails, it returns
    an all-empty record with confidence 0.
    """

    def __init__(self, backend: LLMBackend | None):
        self.backend = backend

    def enrich(self, raw_text: str) -> EnrichedData:
        if self.backend is None or not raw_text.strip():
            return EnrichedData()
        try:
            start = time.time()
            result = _validate_extraction(
                self.backend.extract_contact(raw_text, ENRICHMENT_SYSTEM_PROMPT, ContactExtraction)
            )
            fields = {k: _clean(v) for k, v in result.model_dump(exclude={"confidence"}).items()}
            data = EnrichedData(**fields, confidence=_to_percent(result.confidence))
            logger.info("[ENRICH] extracted company=%r title=%r (%.1fs)",
                        result.company, result.title, time.time() - start)
        except Exception as exc:
            logger.warning("[ENRICH] Provider failed, returning empty enrichment: %s", exc)
            return EnrichedData()
        return data


def add_contact(store: Store, owner_id: str, raw_text: str, name: str | None = None,
                company: str | None = None, title: str | None = None,
                linkedin_url: str | None = None) -> Contact:
    """Add a single unenriched contact to a user's network."""
    if not raw_text or not raw_text.strip():
        raise RequestValidationError("Contact text is required", field="raw_text")
    return store.create_contact(
        owner_id, raw_text.strip(),
        name=_clean(name), company=_clean(company), title=_clean(title),
        linkedin_url=_clean(linkedin_url),
    )


def import_contacts_csv(store: Store, owner_id: str, csv_text: str) -> int:
    """Create one contact per non-blank CSV row. Returns the number created.

    The first row is treated as the header; each contact's raw text is the
    row's non-empty values joined with ", ".
    """
    reader = csv.DictReader(io.StringIO(csv_text))
    count = 0
    for row in reader:
        values = []
        for value in row.values():
            # Extra cells beyond the header arrive as a list
            cells = value if isinstance(value, list) else [value]
            values.extend(c.strip() for c in cells if c and c.strip())
        if not values:
            continue
        store.create_contact(owner_id, ", ".join(values))
        count += 1
    logger.info("Imported %d contacts for user=%s", count, owner_id)
    return count


def enrich_network(store: Store, enricher: ContactEnricher, owner_id: str) -> int:
    """Enrich every not-yet-enriched contact of a user. Returns the number enriched."""
    enriched = 0
    for contact in store.get_contacts_for_owner(owner_id):
        if contact.enriched:
            continue
        data = enricher.enrich(contact.raw_text or contact.name or "")
        # Fields given at creation survive an enrichment that did not find them
        patch = {
            field: getattr(data, field) if getattr(data, field) is not None else getattr(contact, field)
            for field in ENRICHMENT_FIELDS
        }
        store.update_contact(contact.id, **patch, confidence=data.confidence, enriched=True)
        enriched += 1
    logger.info("[ENRICH] Enriched %d contacts for user=%s", enriched, owner_id)
    return enriched
