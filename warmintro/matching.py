import time
import logging
from typing import NamedTuple

from warmintro.config import MAX_INDIRECT_RESULTS, MAX_QUERY_LENGTH
from warmintro.errors import RequestValidationError
from warmintro.intent import SearchIntentParser
from warmintro.models import (
    ConnectorStats,
    ConnectorSummary,
    Contact,
    DirectMatch,
    IndirectMatch,
    SearchIntent,
    SearchResult,
    User,
)
from warmintro.normalize import normalize_company_name
from warmintro.query_log import SearchLog
from warmintro.store.base import Store

logger = logging.getLogger(__name__)

# (intent field, contact field) pairs compared by case-insensitive substring.
_FIELD_PAIRS = (
    ("company", "company"),
    ("industry", "industry"),
    ("role", "title"),
    ("seniority", "seniority"),
    ("location", "location"),
)


def matches_intent(contact: Contact, intent: SearchIntent) -> bool:
    """True if any present intent field is a substring of the matching contact field.

    Unenriched contacts and empty intents never match.
    """
    if not contact.enriched:
        return False
    for intent_field, contact_field in _FIELD_PAIRS:
        needle = getattr(intent, intent_field)
        value = getattr(contact, contact_field)
        if needle and value and needle.lower() in value.lower():
            return True
    return False


class _Candidate(NamedTuple):
    contact: Contact
    company_normalized: str
    connector: User
    stats: ConnectorStats


def _rank_key(candidate: _Candidate) -> tuple:
    # confidence, then connector trust, then how much enrichment text we have
    trust = candidate.stats.success_count + candidate.stats.response_rate
    summary = candidate.contact.linkedin_summary or ""
    return (-(candidate.contact.confidence or 0), -trust, -len(summary))


class MatchEngine:
    """Finds direct matches in a user's own network and indirect paths through other users."""

    def __init__(self, store: Store, intent_parser: SearchIntentParser,
                 search_log: SearchLog | None = None, max_indirect: int = MAX_INDIRECT_RESULTS):
        self.store = store
        self.intent_parser = intent_parser
        self.search_log = search_log
        self.max_indirect = max_indirect

    def search(self, user_id: str, query: str) -> SearchResult:
        query = (query or "").strip()
        if not query:
            return SearchResult()
        if len(query) > MAX_QUERY_LENGTH:
            raise RequestValidationError(
                f"Search query is too long ({len(query)} chars, max {MAX_QUERY_LENGTH})", field="query",
            )

        own_contacts = self.store.get_contacts_for_owner(user_id)
        if not own_contacts:
            logger.info("[SEARCH] user=%s has no contacts, returning no results", user_id)
            return SearchResult()

        t0 = time.time()
        intent = self.intent_parser.analyze(query)
        logger.info("[SEARCH] user=%s query=%r intent=%s (%.1fs)",
                    user_id, query[:80], intent.model_dump(exclude_none=True), time.time() - t0)

        if intent.is_empty():
            result = SearchResult()
        else:
            result = SearchResult(
                direct=self._direct_matches(own_contacts, intent),
                indirect=self._indirect_matches(user_id, intent),
            )

        total = time.time() - t0
        logger.info("[SEARCH] Done: direct=%d indirect=%d (%.1fs)",
                    len(result.direct), len(result.indirect), total)
        if self.search_log is not None:
            self.search_log.record(
                user_id=user_id, query_text=query, intent=intent,
                direct_count=len(result.direct), indirect_count=len(result.indirect),
                total_secs=total,
            )
        return result

    def _direct_matches(self, contacts: list[Contact], intent: SearchIntent) -> list[DirectMatch]:
        return [DirectMatch(contact=c) for c in contacts if matches_intent(c, intent)]

    def _indirect_matches(self, user_id: str, intent: SearchIntent) -> list[IndirectMatch]:
        connectors: dict[str, tuple[User | None, ConnectorStats]] = {}
        candidates: list[_Candidate] = []

        for contact in self.store.get_enriched_contacts_excluding_owner(user_id):
            if contact.user_id == user_id or not matches_intent(contact, intent):
                continue
            normalized = normalize_company_name(contact.company)
            if not normalized:
                continue
            if contact.user_id not in connectors:
                connectors[contact.user_id] = (
                    self.store.get_user(contact.user_id),
                    self.store.get_connector_stats(contact.user_id) or ConnectorStats(user_id=contact.user_id),
                )
            connector, stats = connectors[contact.user_id]
            if connector is None:
                logger.warning("[SEARCH] Skipping contact %s: owner %s not found", contact.id, contact.user_id)
                continue
            candidates.append(_Candidate(contact, normalized, connector, stats))

        candidates.sort(key=_rank_key)

        seen_companies: set[str] = set()
        results: list[IndirectMatch] = []
        for candidate in candidates:
            if candidate.company_normalized in seen_companies:
                continue
            seen_companies.add(candidate.company_normalized)
            results.append(self._to_indirect(candidate))
            if len(results) >= self.max_indirect:
                break
        return results

    @staticmethod
    def _to_indirect(candidate: _Candidate) -> IndirectMatch:
        contact = candidate.contact
        return IndirectMatch(
            contact_id=contact.id,
            company=contact.company,
            company_normalized=candidate.company_normalized,
            title=contact.title,
            industry=contact.industry,
            seniority=contact.seniority,
            location=contact.location,
            confidence=contact.confidence or 0,
            connector_id=candidate.connector.id,
            connector_name=candidate.connector.first_name,
            connector_stats=ConnectorSummary(
                success_count=candidate.stats.success_count,
                response_rate=candidate.stats.response_rate,
            ),
        )
