"""Store contract tests, run against both the in-memory and SQLite stores."""
import os
import threading
from datetime import datetime

import pytest

from warmintro.errors import RequestValidationError
from warmintro.models import IntroStatus
from warmintro.store import get_store
from warmintro.store.memory import MemoryStore
from warmintro.store.sqlite import SqliteStore


# --- Factory ---

def test_get_store_memory():
    assert isinstance(get_store("memory"), MemoryStore)


def test_get_store_sqlite(tmp_path):
    assert isinstance(get_store("sqlite", os.path.join(tmp_path, "x.db")), SqliteStore)


def test_get_store_sqlite_requires_path():
    with pytest.raises(ValueError, match="db_path"):
        get_store("sqlite")


def test_get_store_unknown():
    with pytest.raises(ValueError, match="Unknown store"):
        get_store("postgres")


# --- Users ---

def test_create_and_get_user(store):
    user = store.create_user(email="ann@example.com", name="Ann Lee", affiliation="NYU")
    assert store.get_user(user.id) == user
    assert store.get_user_by_email("ann@example.com").id == user.id
    assert user.first_name == "Ann"
    assert store.count_users() == 1


def test_duplicate_email_rejected(store):
    store.create_user(email="ann@example.com", name="Ann")
    with pytest.raises(RequestValidationError) as exc_info:
        store.create_user(email="ann@example.com", name="Other Ann")
    assert exc_info.value.field == "email"


def test_missing_user_is_none(store):
    assert store.get_user("nope") is None
    assert store.get_user_by_email("nobody@example.com") is None


# --- Contacts ---

def test_new_contact_is_unenriched(store, make_user):
    owner = make_user("Ann")
    contact = store.create_contact(owner.id, "Bob, Acme, Engineer", name="Bob")
    assert contact.enriched is False
    assert contact.company is None
    assert store.get_contact(contact.id) == contact
    assert store.count_contacts_for_owner(owner.id) == 1


def test_contacts_for_owner_oldest_first(store, make_user):
    owner = make_user("Ann")
    ids = [store.create_contact(owner.id, f"contact {i}").id for i in range(4)]
    assert [c.id for c in store.get_contacts_for_owner(owner.id)] == ids


def test_update_contact(store, make_user):
    owner = make_user("Ann")
    contact = store.create_contact(owner.id, "Bob at Acme")
    updated = store.update_contact(
        contact.id, company="Acme Inc.", skills=["sales", "saas"], enriched=True, confidence=88,
    )
    assert updated.company == "Acme Inc."
    fetched = store.get_contact(contact.id)
    assert fetched.skills == ["sales", "saas"]
    assert fetched.enriched is True
    assert fetched.confidence == 88
    assert fetched.raw_text == "Bob at Acme"


def test_update_missing_contact_returns_none(store):
    assert store.update_contact("missing", company="Acme") is None


def test_update_unknown_field_rejected(store, make_user):
    contact = store.create_contact(make_user("Ann").id, "Bob")
    with pytest.raises(ValueError):
        store.update_contact(contact.id, favourite_colour="blue")


def test_enriched_requires_confidence(store, make_user):
    owner = make_user("Ann")
    with pytest.raises(ValueError):
        store.create_contact(owner.id, "Bob", enriched=True)
    contact = store.create_contact(owner.id, "Bob")
    with pytest.raises(ValueError):
        store.update_contact(contact.id, enriched=True)
    assert store.get_contact(contact.id).enriched is False


def test_enriched_contacts_excluding_owner(store, make_user, make_contact):
    ann, bea = make_user("Ann"), make_user("Bea")
    make_contact(ann, "Own", "Acme")
    theirs = make_contact(bea, "Theirs", "Acme")
    make_contact(bea, "Raw", "Acme", enriched=False)

    result = store.get_enriched_contacts_excluding_owner(ann.id)
    assert [c.id for c in result] == [theirs.id]


def test_contacts_by_company_uses_normalized_name(store, make_user, make_contact):
    ann, bea = make_user("Ann"), make_user("Bea")
    a = make_contact(ann, "A", "Acme Inc.")
    b = make_contact(bea, "B", "acme")
    make_contact(bea, "C", "Globex")

    assert {c.id for c in store.get_contacts_by_company("acme")} == {a.id, b.id}
    assert [c.id for c in store.get_contacts_by_company("acme", exclude_user_id=ann.id)] == [b.id]


def test_contacts_by_company_follows_updates(store, make_user):
    owner = make_user("Ann")
    contact = store.create_contact(owner.id, "Bob")
    assert store.get_contacts_by_company("globex") == []
    store.update_contact(contact.id, company="Globex Corp")
    assert [c.id for c in store.get_contacts_by_company("globex")] == [contact.id]


def test_count_contacts(store, make_user, make_contact):
    ann = make_user("Ann")
    make_contact(ann, "A", "Acme")
    make_contact(ann, "B", "Acme", enriched=False)
    assert store.count_contacts() == 2
    assert store.count_contacts(enriched=True) == 1
    assert store.count_contacts(enriched=False) == 1


# --- Intro requests ---

def test_create_intro_request_is_pending(store, make_user):
    ann, bea = make_user("Ann"), make_user("Bea")
    request = store.create_intro_request(ann.id, bea.id, "Acme Inc.", "Exploring PM roles", essay="Longer story")
    assert request.status == IntroStatus.PENDING
    assert request.target_company_normalized == "acme"
    assert store.get_intro_request(request.id) == request


def test_sent_and_received_newest_first(store, make_user):
    ann, bea = make_user("Ann"), make_user("Bea")
    first = store.create_intro_request(ann.id, bea.id, "Acme", "one")
    second = store.create_intro_request(ann.id, bea.id, "Globex", "two")
    assert [r.id for r in store.get_sent_requests(ann.id)] == [second.id, first.id]
    assert [r.id for r in store.get_received_requests(bea.id)] == [second.id, first.id]
    assert store.get_sent_requests(bea.id) == []


def test_status_compare_and_set(store, make_user):
    ann, bea = make_user("Ann"), make_user("Bea")
    request = store.create_intro_request(ann.id, bea.id, "Acme", "reason")

    accepted = store.update_intro_request_status(request.id, IntroStatus.ACCEPTED, expected_status=IntroStatus.PENDING)
    assert accepted.status == IntroStatus.ACCEPTED
    assert accepted.updated_at >= request.updated_at

    # Second transition from pending loses
    assert store.update_intro_request_status(
        request.id, IntroStatus.DECLINED, expected_status=IntroStatus.PENDING) is None
    assert store.get_intro_request(request.id).status == IntroStatus.ACCEPTED


def test_status_update_missing_request(store):
    assert store.update_intro_request_status("missing", IntroStatus.ACCEPTED) is None


def test_count_requests_by_status(store, make_user):
    ann, bea = make_user("Ann"), make_user("Bea")
    r1 = store.create_intro_request(ann.id, bea.id, "Acme", "x")
    store.create_intro_request(ann.id, bea.id, "Globex", "y")
    store.update_intro_request_status(r1.id, IntroStatus.DECLINED)

    counts = store.count_intro_requests_by_status()
    assert counts[IntroStatus.PENDING] == 1
    assert counts[IntroStatus.DECLINED] == 1
    assert counts[IntroStatus.COMPLETED] == 0


# --- Connector stats ---

def test_stats_created_on_first_increment(store):
    assert store.get_connector_stats("u1") is None
    stats = store.increment_connector_stats("u1", total_requests=1)
    assert (stats.total_requests, stats.success_count, stats.response_rate) == (1, 0, 0)


@pytest.mark.parametrize("success, total, rate", [
    (1, 3, 33),
    (2, 3, 67),
    (1, 2, 50),
    (1, 8, 13),
    (3, 3, 100),
])
def test_response_rate_rounds_half_up(store, success, total, rate):
    stats = store.update_connector_stats("u1", total_requests=total, success_count=success)
    assert stats.response_rate == rate
    assert store.get_connector_stats("u1").response_rate == rate


def test_response_rate_zero_requests(store):
    stats = store.update_connector_stats("u1", total_requests=0, success_count=0)
    assert stats.response_rate == 0


def test_partial_stats_update_keeps_other_counter(store):
    store.update_connector_stats("u1", total_requests=4, success_count=1)
    stats = store.update_connector_stats("u1", success_count=2)
    assert stats.total_requests == 4
    assert stats.response_rate == 50


def test_increment_recomputes_rate(store):
    store.increment_connector_stats("u1", total_requests=2)
    stats = store.increment_connector_stats("u1", success_count=1)
    assert (stats.total_requests, stats.success_count, stats.response_rate) == (2, 1, 50)


# --- Rate limits ---

def test_rate_limit_upsert(store):
    week = datetime(2025, 3, 3)
    assert store.get_rate_limit("u1", week) is None
    assert store.increment_rate_limit("u1", week).indirect_requests_count == 1
    assert store.increment_rate_limit("u1", week).indirect_requests_count == 2
    assert store.get_rate_limit("u1", week).indirect_requests_count == 2


def test_rate_limit_is_per_week_and_user(store):
    store.increment_rate_limit("u1", datetime(2025, 3, 3))
    assert store.get_rate_limit("u1", datetime(2025, 3, 10)) is None
    assert store.get_rate_limit("u2", datetime(2025, 3, 3)) is None


def test_concurrent_increments_are_not_lost(store):
    week = datetime(2025, 3, 3)

    def bump():
        store.increment_rate_limit("u1", week)
        store.increment_connector_stats("c1", total_requests=1)

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get_rate_limit("u1", week).indirect_requests_count == 8
    assert store.get_connector_stats("c1").total_requests == 8
