"""Shared fixtures: an in-process provider backend and stores for both backends."""
import os

import pytest

from warmintro.backends.base import LLMBackend
from warmintro.store.memory import MemoryStore
from warmintro.store.sqlite import SqliteStore


class FakeBackend(LLMBackend):
    """Canned provider answers. Each answer is a dict or a callable taking the input text."""

    def __init__(self, contact=None, intent=None, message=None, error: Exception | None = None):
        self.contact = contact or {}
        self.intent = intent or {}
        self.message = message or {"subject": "Quick intro?", "body": "Would you be open to an intro?"}
        self.error = error
        self.calls = []

    def _answer(self, method, text, answer):
        self.calls.append((method, text))
        if self.error is not None:
            raise self.error
        return answer(text) if callable(answer) else dict(answer)

    def extract_contact(self, raw_text, system_prompt, response_schema):
        return self._answer("extract_contact", raw_text, self.contact)

    def parse_query(self, query, system_prompt, response_schema):
        return self._answer("parse_query", query, self.intent)

    def write_message(self, context, system_prompt, response_schema):
        return self._answer("write_message", context, self.message)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(os.path.join(tmp_path, "test.db"))


@pytest.fixture
def make_user(store):
    def _make(name, email=None, affiliation=None):
        email = email or name.lower().replace(" ", ".") + "@example.com"
        return store.create_user(email=email, name=name, affiliation=affiliation)
    return _make


@pytest.fixture
def make_contact(store):
    """Create a contact, enriched by default, owned by `owner`."""
    def _make(owner, name="Someone", company=None, enriched=True, confidence=80, **fields):
        raw = ", ".join(v for v in (name, company, fields.get("title")) if v)
        return store.create_contact(
            owner.id, raw, name=name, company=company,
            enriched=enriched, confidence=confidence if enriched else None, **fields,
        )
    return _make
