"""Tests for Slack bot formatting and logic (no real Slack or LLM calls)."""
import json
from datetime import datetime
from unittest.mock import patch, MagicMock

import pytest

from warmintro.enrichment import ContactEnricher
from warmintro.intent import SearchIntentParser
from warmintro.lifecycle import IntroService
from warmintro.matching import MatchEngine
from warmintro.messaging import MessageWriter
from warmintro.models import (
    ConnectorSummary,
    Contact,
    DirectMatch,
    IndirectMatch,
    IntroStatus,
    SearchResult,
)
from warmintro.services import Services
from warmintro.slack_bot import (
    format_results_as_blocks,
    format_requests_as_blocks,
    _build_reason_modal,
    _escape_mrkdwn,
    _handle_complete,
    _handle_respond,
    _process_message,
    _resolve_user,
    _submit_intro_request,
    start,
)
from warmintro.store.memory import MemoryStore


@pytest.fixture
def services():
    """Wire services over a memory store with no provider, and install them in the bot."""
    store = MemoryStore()
    built = Services(
        store=store,
        engine=MatchEngine(store, SearchIntentParser(None)),
        intros=IntroService(store, MessageWriter(None), clock=lambda: datetime(2025, 3, 5, 12, 0)),
        enricher=ContactEnricher(None),
    )
    with patch("warmintro.slack_bot._services", built), patch("warmintro.slack_bot._user_map", {}):
        yield built


@pytest.fixture
def ann_and_bea(services):
    store = services.store
    ann = store.create_user(email="ann@example.com", name="Ann Lee")
    bea = store.create_user(email="bea@example.com", name="Bea Kim")
    for i in range(5):
        store.create_contact(ann.id, f"Friend {i}", company=f"Company {i}", enriched=True, confidence=80)
    store.create_contact(bea.id, "Target, Acme", company="Acme", title="VP Sales", enriched=True, confidence=90)
    return ann, bea


def _client(email_by_slack_id=None):
    """Mock Slack client whose users resolve to the given emails."""
    emails = email_by_slack_id or {}
    client = MagicMock()
    client.users_info.side_effect = lambda user: {"user": {"profile": {"email": emails.get(user)}}}
    client.conversations_open.side_effect = lambda users: {"channel": {"id": f"D_{users}"}}
    client.chat_postMessage.return_value = {"ts": "111.222"}
    return client


def _dm_text(client):
    return client.chat_postMessage.call_args.kwargs["text"]


# --- Result formatting ---

def _indirect(**overrides):
    fields = dict(
        contact_id="c9", company="Acme", company_normalized="acme", title="VP Sales",
        confidence=90, connector_id="u2", connector_name="Bea",
        connector_stats=ConnectorSummary(success_count=2, response_rate=67),
    )
    fields.update(overrides)
    return IndirectMatch(**fields)


def test_format_empty_results():
    blocks = format_results_as_blocks(SearchResult())
    assert blocks[0]["type"] == "header"
    assert "No matches found" in blocks[1]["text"]["text"]


def test_format_direct_and_indirect():
    own = Contact(id="c1", user_id="u1", raw_text="x", name="Ada Lovelace", title="Engineer",
                  company="Globex", enriched=True, confidence=90, created_at=datetime(2025, 1, 1))
    result = SearchResult(direct=[DirectMatch(contact=own)], indirect=[_indirect()])
    blocks = format_results_as_blocks(result)

    text = str(blocks)
    assert "*In your network*" in text
    assert "Ada Lovelace" in text
    assert "via Bea" in text
    assert "67% success rate" in text
    button = blocks[-1]["accessory"]
    assert button["action_id"] == "request_intro"
    assert json.loads(button["value"]) == {"connector_id": "u2", "company": "Acme", "contact_id": "c9"}


def test_format_results_escapes_fields():
    blocks = format_results_as_blocks(SearchResult(indirect=[_indirect(company="A&B <Corp>", title="<!channel>")]))
    text = str(blocks)
    assert "<!channel>" not in text
    assert "A&amp;B &lt;Corp&gt;" in text


def test_escape_mrkdwn_special_chars():
    assert _escape_mrkdwn("a & b") == "a &amp; b"
    assert _escape_mrkdwn("<script>") == "&lt;script&gt;"
    assert _escape_mrkdwn("plain text") == "plain text"


def test_escape_mrkdwn_ampersand_before_angle():
    """Ampersand must be escaped first to avoid double-escaping."""
    assert _escape_mrkdwn("a & <b>") == "a &amp; &lt;b&gt;"


def test_reason_modal():
    modal = _build_reason_modal('{"company": "Acme"}', "Acme")
    assert modal["callback_id"] == "intro_reason"
    assert modal["private_metadata"] == '{"company": "Acme"}'
    assert modal["blocks"][0]["block_id"] == "reason"
    assert modal["blocks"][0]["element"]["action_id"] == "reason_input"


# --- Request listings ---

def test_sent_requests_hide_connector_until_accepted(services, ann_and_bea):
    ann, bea = ann_and_bea
    request = services.intros.create_intro_request(ann.id, bea.id, "Acme", "reason").request

    pending_text = str(format_requests_as_blocks(services.intros.sent_requests(ann.id), received=False))
    assert "via Bea" in pending_text
    assert "Kim" not in pending_text

    services.intros.respond(request.id, bea.id, "accept")
    accepted_text = str(format_requests_as_blocks(services.intros.sent_requests(ann.id), received=False))
    assert "via Bea Kim" in accepted_text


def test_received_requests_have_actions(services, ann_and_bea):
    ann, bea = ann_and_bea
    request = services.intros.create_intro_request(ann.id, bea.id, "Acme", "reason").request

    blocks = format_requests_as_blocks(services.intros.received_requests(bea.id), received=True)
    actions = [b for b in blocks if b["type"] == "actions"][0]
    assert [e["action_id"] for e in actions["elements"]] == ["respond_intro_accept", "respond_intro_decline"]
    assert actions["elements"][0]["value"] == request.id

    services.intros.respond(request.id, bea.id, "accept")
    blocks = format_requests_as_blocks(services.intros.received_requests(bea.id), received=True)
    actions = [b for b in blocks if b["type"] == "actions"][0]
    assert actions["elements"][0]["action_id"] == "complete_intro"


def test_no_requests(services):
    blocks = format_requests_as_blocks([], received=True)
    assert blocks[0]["text"]["text"] == "Intro requests for you"
    assert "Nothing here yet." in str(blocks)


# --- User resolution ---

def test_resolve_user_caches(services, ann_and_bea):
    ann, _ = ann_and_bea
    client = _client({"U_ANN": "ann@example.com"})
    assert _resolve_user("U_ANN", client) == ann.id
    assert _resolve_user("U_ANN", client) == ann.id
    client.users_info.assert_called_once()


def test_resolve_unknown_user(services):
    client = _client({"U_X": "stranger@example.com"})
    assert _resolve_user("U_X", client) is None


# --- Message handling ---

def test_process_message_rejects_long_input(services):
    client = _client()
    event = {"user": "U_LONG", "channel": "C123", "ts": "100.1", "text": "a" * 3000}
    _process_message(event, client)
    client.users_info.assert_not_called()
    client.chat_postMessage.assert_called_once()
    assert "too long" in _dm_text(client)


def test_process_message_unknown_account(services):
    client = _client({"U_X": "stranger@example.com"})
    _process_message({"user": "U_X", "channel": "C1", "ts": "1.0", "text": "acme"}, client)
    assert "couldn't find a Warm Intro account" in _dm_text(client)


def test_process_message_search(services, ann_and_bea):
    client = _client({"U_ANN": "ann@example.com"})
    _process_message({"user": "U_ANN", "channel": "C1", "ts": "1.0", "text": "<@UBOT> people at Acme"}, client)

    update = client.chat_update.call_args.kwargs
    assert update["ts"] == "111.222"
    text = str(update["blocks"])
    assert "Acme" in text
    assert "via Bea" in text


@patch("warmintro.slack_bot.format_results_as_blocks", side_effect=RuntimeError("boom"))
def test_process_message_search_error(mock_format, services, ann_and_bea):
    client = _client({"U_ANN": "ann@example.com"})
    _process_message({"user": "U_ANN", "channel": "C1", "ts": "1.0", "text": "acme"}, client)
    assert "ran into an issue" in client.chat_update.call_args.kwargs["text"]


def test_process_message_lists_received(services, ann_and_bea):
    ann, bea = ann_and_bea
    services.intros.create_intro_request(ann.id, bea.id, "Acme", "reason")
    client = _client({"U_BEA": "bea@example.com"})
    _process_message({"user": "U_BEA", "channel": "C1", "ts": "1.0", "text": "intros"}, client)

    blocks = client.chat_postMessage.call_args.kwargs["blocks"]
    assert blocks[0]["text"]["text"] == "Intro requests for you"
    assert "from Ann Lee" in str(blocks)


# --- Intro request actions ---

def test_submit_intro_request(services, ann_and_bea):
    _, bea = ann_and_bea
    client = _client({"U_ANN": "ann@example.com"})
    _submit_intro_request("U_ANN", {"connector_id": bea.id, "company": "Acme"}, "Exploring PM roles", client)
    text = _dm_text(client)
    assert "Intro request for *Acme* sent." in text
    assert "Hi Bea," in text


def test_submit_rate_limited(services, ann_and_bea):
    _, bea = ann_and_bea
    client = _client({"U_ANN": "ann@example.com"})
    for company in ("Acme", "Globex", "Initech", "Hooli"):
        _submit_intro_request("U_ANN", {"connector_id": bea.id, "company": company}, "reason", client)
    text = _dm_text(client)
    assert ":hourglass:" in text
    assert "Monday 10 March" in text


def test_submit_small_network(services, ann_and_bea):
    _, bea = ann_and_bea
    client = _client({"U_BEA": "bea@example.com"})
    ann = services.store.get_user_by_email("ann@example.com")
    _submit_intro_request("U_BEA", {"connector_id": ann.id, "company": "Company 1"}, "reason", client)
    assert "Add at least 5 contacts" in _dm_text(client)
    assert "(you have 1)" in _dm_text(client)


def test_submit_blank_reason(services, ann_and_bea):
    _, bea = ann_and_bea
    client = _client({"U_ANN": "ann@example.com"})
    _submit_intro_request("U_ANN", {"connector_id": bea.id, "company": "Acme"}, None, client)
    assert ":warning:" in _dm_text(client)
    assert services.intros.sent_requests(services.store.get_user_by_email("ann@example.com").id) == []


def test_respond_and_complete(services, ann_and_bea):
    ann, bea = ann_and_bea
    request = services.intros.create_intro_request(ann.id, bea.id, "Acme", "Exploring PM roles").request
    client = _client({"U_BEA": "bea@example.com"})

    _handle_respond("U_BEA", request.id, "accept", client)
    assert "Forward this to your contact" in _dm_text(client)

    _handle_respond("U_BEA", request.id, "decline", client)
    assert _dm_text(client) == "Someone already acted on this request."

    _handle_complete("U_BEA", request.id, client)
    assert "as completed" in _dm_text(client)
    assert services.store.get_intro_request(request.id).status == IntroStatus.COMPLETED


def test_complete_requires_acceptance(services, ann_and_bea):
    ann, bea = ann_and_bea
    request = services.intros.create_intro_request(ann.id, bea.id, "Acme", "reason").request
    client = _client({"U_BEA": "bea@example.com"})
    _handle_complete("U_BEA", request.id, client)
    assert _dm_text(client) == "Only accepted requests can be marked completed."


def test_respond_by_requester_is_not_found(services, ann_and_bea):
    ann, bea = ann_and_bea
    request = services.intros.create_intro_request(ann.id, bea.id, "Acme", "reason").request
    client = _client({"U_ANN": "ann@example.com"})
    _handle_respond("U_ANN", request.id, "accept", client)
    assert "no longer exists" in _dm_text(client)


# --- Startup validation ---

def test_start_fails_on_missing_slack_bot_token():
    with patch("warmintro.slack_bot.SLACK_BOT_TOKEN", ""), \
         patch("warmintro.slack_bot.SLACK_APP_TOKEN", "xapp-test"), \
         patch("warmintro.slack_bot.ANTHROPIC_API_KEY", "sk-test"):
        with pytest.raises(RuntimeError, match="SLACK_BOT_TOKEN"):
            start()


def test_start_fails_on_missing_slack_app_token():
    with patch("warmintro.slack_bot.SLACK_BOT_TOKEN", "xoxb-test"), \
         patch("warmintro.slack_bot.SLACK_APP_TOKEN", ""), \
         patch("warmintro.slack_bot.ANTHROPIC_API_KEY", "sk-test"):
        with pytest.raises(RuntimeError, match="SLACK_APP_TOKEN"):
            start()


def test_start_fails_on_missing_anthropic_key():
    with patch("warmintro.slack_bot.SLACK_BOT_TOKEN", "xoxb-test"), \
         patch("warmintro.slack_bot.SLACK_APP_TOKEN", "xapp-test"), \
         patch("warmintro.slack_bot.LLM_PROVIDER", "claude"), \
         patch("warmintro.slack_bot.ANTHROPIC_API_KEY", ""):
        with pytest.raises(RuntimeError, match="ANTHROPIC_API_KEY"):
            start()


def test_start_fails_on_missing_gemini_key():
    with patch("warmintro.slack_bot.SLACK_BOT_TOKEN", "xoxb-test"), \
         patch("warmintro.slack_bot.SLACK_APP_TOKEN", "xapp-test"), \
         patch("warmintro.slack_bot.LLM_PROVIDER", "gemini"), \
         patch("warmintro.slack_bot.GEMINI_API_KEY", ""):
        with pytest.raises(RuntimeError, match="GEMINI_API_KEY"):
            start()
