from dataclasses import dataclass

from warmintro.backends import LLMBackend, get_backend
from warmintro.config import DB_PATH, LLM_PROVIDER, LOG_DB_PATH, STORE_BACKEND
from warmintro.enrichment import ContactEnricher
from warmintro.intent import SearchIntentParser
from warmintro.lifecycle import IntroService
from warmintro.matching import MatchEngine
from warmintro.messaging import MessageWriter
from warmintro.notifications import LoggingNotifier, Notifier
from warmintro.query_log import SearchLog
from warmintro.store import Store, get_store


@dataclass
class Services:
    store: Store
    engine: MatchEngine
    intros: IntroService
    enricher: ContactEnricher


def build_services(
    store: Store | None = None,
    backend: LLMBackend | None = None,
    notifier: Notifier | None = None,
    search_log: SearchLog | None = None,
) -> Services:
    """Wire the store, provider backend and core services together.

    Anything not passed in is built from config.
    """
    if store is None:
        store = get_store(STORE_BACKEND, DB_PATH)
    if backend is None:
        backend = get_backend(LLM_PROVIDER)
    if search_log is None:
        search_log = SearchLog(LOG_DB_PATH)
    return Services(
        store=store,
        engine=MatchEngine(store, SearchIntentParser(backend), search_log=search_log),
        intros=IntroService(store, MessageWriter(backend), notifier=notifier or LoggingNotifier()),
        enricher=ContactEnricher(backend),
    )
