import json
import logging
import threading
from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from warmintro.config import (
    SLACK_BOT_TOKEN,
    SLACK_APP_TOKEN,
    ANTHROPIC_API_KEY,
    GEMINI_API_KEY,
    LLM_PROVIDER,
    DB_PATH,
    STORE_BACKEND,
    MAX_QUERY_LENGTH,
    MAX_REASON_LENGTH,
)
from warmintro.errors import (
    ConflictError,
    InsufficientNetworkError,
    NotFoundError,
    RateLimitExceeded,
    RequestValidationError,
)
from warmintro.models import IntroMessage, IntroRequest, IntroStatus, SearchResult
from warmintro.notifications import SlackNotifier
from warmintro.services import Services, build_services
from warmintro.store import get_store

logger = logging.getLogger(__name__)

# Defer App initialization to start() so module can be imported without auth
_app: App | None = None
_services: Services | None = None

# Thread-safe cache of Slack user -> app user id
_state_lock = threading.Lock()
_user_map: dict[str, str] = {}


def _get_services() -> Services:
    if _services is None:
        raise RuntimeError("Services not initialised; call start() first")
    return _services


def _link_user(slack_user_id: str, user_id: str):
    with _state_lock:
        _user_map[slack_user_id] = user_id


def _resolve_user(slack_user_id: str, client) -> str | None:
    """Find the app user for a Slack user via their profile email."""
    with _state_lock:
        cached = _user_map.get(slack_user_id)
    if cached:
        return cached

    info = client.users_info(user=slack_user_id)
    email = (info.get("user") or {}).get("profile", {}).get("email")
    if not email:
        return None
    user = _get_services().store.get_user_by_email(email)
    if user is None:
        return None
    _link_user(slack_user_id, user.id)
    return user.id


def _escape_mrkdwn(text: str) -> str:
    """Escape Slack special characters in user- and LLM-generated text."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _dm(client, slack_user_id: str, text: str):
    channel = client.conversations_open(users=slack_user_id)["channel"]["id"]
    client.chat_postMessage(channel=channel, text=text)


def _format_message(intro: IntroMessage) -> str:
    return f"*{_escape_mrkdwn(intro.subject)}*\n{_escape_mrkdwn(intro.body)}"


def format_results_as_blocks(result: SearchResult) -> list[dict]:
    """Format search results as Slack Block Kit blocks."""
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": ":sparkles: Warm Intro Matches"},
        }
    ]
    if not result.direct and not result.indirect:
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "No matches found for that search."},
        })
        return blocks

    if result.direct:
        lines = []
        for match in result.direct:
            c = match.contact
            line = f"• *{_escape_mrkdwn(c.name or 'Unknown')}*"
            if c.title or c.company:
                line += f" — {_escape_mrkdwn(c.title or '')} at {_escape_mrkdwn(c.company or '?')}"
            lines.append(line)
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*In your network*\n" + "\n".join(lines)},
        })

    if result.indirect:
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*Through other members*"},
        })
    for match in result.indirect:
        stats = match.connector_stats
        detail = f" — {_escape_mrkdwn(match.title)}" if match.title else ""
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*{_escape_mrkdwn(match.company)}*{detail}\n"
                    f"via {_escape_mrkdwn(match.connector_name)} · "
                    f"{stats.success_count} intros made · {stats.response_rate}% success rate"
                ),
            },
            "accessory": {
                "type": "button",
                "text": {"type": "plain_text", "text": "Request intro"},
                "action_id": "request_intro",
                "value": json.dumps({
                    "connector_id": match.connector_id,
                    "company": match.company,
                    "contact_id": match.contact_id,
                }),
            },
        })
    return blocks


def format_requests_as_blocks(requests: list[IntroRequest], received: bool) -> list[dict]:
    """Format a user's received or sent intro requests."""
    title = "Intro requests for you" if received else "Your intro requests"
    blocks = [{"type": "header", "text": {"type": "plain_text", "text": title}}]
    if not requests:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "Nothing here yet."}})
        return blocks

    store = _get_services().store
    for request in requests:
        if received:
            other = store.get_user(request.requester_id)
            who = f"from {_escape_mrkdwn(other.name)}" if other else ""
        else:
            other = store.get_user(request.connector_user_id)
            # Connector identity stays first-name-only until they accept
            revealed = request.status in (IntroStatus.ACCEPTED, IntroStatus.COMPLETED)
            name = (other.name if revealed else other.first_name) if other else ""
            who = f"via {_escape_mrkdwn(name)}" if name else ""
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*{_escape_mrkdwn(request.target_company)}* {who}\n"
                    f"_{_escape_mrkdwn(request.reason)}_\n"
                    f"Status: `{request.status.value}`"
                ),
            },
        })
        if not received:
            continue
        if request.status == IntroStatus.PENDING:
            blocks.append({
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Accept"},
                        "style": "primary",
                        "action_id": "respond_intro_accept",
                        "value": request.id,
                    },
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Decline"},
                        "action_id": "respond_intro_decline",
                        "value": request.id,
                    },
                ],
            })
        elif request.status == IntroStatus.ACCEPTED:
            blocks.append({
                "type": "actions",
                "elements": [{
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Mark intro completed"},
                    "action_id": "complete_intro",
                    "value": request.id,
                }],
            })
    return blocks


def _build_reason_modal(metadata: str, company: str) -> dict:
    return {
        "type": "modal",
        "callback_id": "intro_reason",
        "private_metadata": metadata,
        "title": {"type": "plain_text", "text": "Request an intro"},
        "submit": {"type": "plain_text", "text": "Send request"},
        "blocks": [{
            "type": "input",
            "block_id": "reason",
            "label": {"type": "plain_text", "text": f"Why do you want an intro at {company}?"},
            "element": {
                "type": "plain_text_input",
                "action_id": "reason_input",
                "multiline": True,
                "max_length": MAX_REASON_LENGTH,
            },
        }],
    }


def _submit_intro_request(slack_user_id: str, metadata: dict, reason: str, client):
    """Create an intro request from a modal submission and DM the outcome."""
    user_id = _resolve_user(slack_user_id, client)
    if not user_id:
        _dm(client, slack_user_id, ":warning: I couldn't find a Warm Intro account for your Slack email.")
        return

    intros = _get_services().intros
    try:
        created = intros.create_intro_request(
            requester_id=user_id,
            connector_id=metadata["connector_id"],
            target_company=metadata["company"],
            reason=reason or "",
            contact_id=metadata.get("contact_id"),
        )
    except RateLimitExceeded as e:
        _dm(client, slack_user_id,
            f":hourglass: You've used all {e.limit} intro requests for this week. "
            f"You can ask again on {e.reset_time:%A %d %B}.")
        return
    except InsufficientNetworkError as e:
        _dm(client, slack_user_id,
            f":busts_in_silhouette: Add at least {e.required} contacts to your network before "
            f"requesting intros (you have {e.contact_count}).")
        return
    except RequestValidationError as e:
        _dm(client, slack_user_id, f":warning: {_escape_mrkdwn(str(e))}")
        return

    text = f":incoming_envelope: Intro request for *{_escape_mrkdwn(created.request.target_company)}* sent."
    if created.suggested_message:
        text += "\nHere's a message you could send along:\n\n" + _format_message(created.suggested_message)
    _dm(client, slack_user_id, text)


def _handle_respond(slack_user_id: str, request_id: str, action: str, client):
    user_id = _resolve_user(slack_user_id, client)
    if not user_id:
        return
    try:
        responded = _get_services().intros.respond(request_id, user_id, action)
    except NotFoundError:
        _dm(client, slack_user_id, ":warning: That request no longer exists.")
        return
    except ConflictError:
        _dm(client, slack_user_id, "Someone already acted on this request.")
        return

    company = _escape_mrkdwn(responded.request.target_company)
    if responded.request.status == IntroStatus.DECLINED:
        _dm(client, slack_user_id, f"Declined the intro request for *{company}*.")
        return
    text = f":handshake: Accepted the intro request for *{company}*."
    if responded.message:
        text += "\nForward this to your contact:\n\n" + _format_message(responded.message)
    _dm(client, slack_user_id, text)


def _handle_complete(slack_user_id: str, request_id: str, client):
    user_id = _resolve_user(slack_user_id, client)
    if not user_id:
        return
    try:
        request = _get_services().intros.complete(request_id, user_id)
    except NotFoundError:
        _dm(client, slack_user_id, ":warning: That request no longer exists.")
        return
    except ConflictError:
        _dm(client, slack_user_id, "Only accepted requests can be marked completed.")
        return
    _dm(client, slack_user_id,
        f":white_check_mark: Marked the intro to *{_escape_mrkdwn(request.target_company)}* as completed. Thanks!")


def _process_message(event, client):
    """Handle a DM or mention: `intros`, `sent`, or a search query."""
    slack_user_id = event["user"]
    channel = event["channel"]
    thread_ts = event.get("thread_ts") or event["ts"]
    text = event.get("text", "").strip()

    logger.info("[RECV] user=%s channel=%s text=%r", slack_user_id, channel, text[:100])

    # Remove bot mention if present
    if text.startswith("<@"):
        text = text.split(">", 1)[-1].strip()

    if not text:
        logger.info("[SKIP] Empty text after cleanup")
        return

    if len(text) > MAX_QUERY_LENGTH:
        client.chat_postMessage(
            channel=channel,
            thread_ts=thread_ts,
            text=f":warning: Your message is too long ({len(text)} chars). Please keep searches under {MAX_QUERY_LENGTH} characters.",
        )
        return

    user_id = _resolve_user(slack_user_id, client)
    if not user_id:
        client.chat_postMessage(
            channel=channel,
            thread_ts=thread_ts,
            text=":warning: I couldn't find a Warm Intro account for your Slack email.",
        )
        return

    services = _get_services()
    command = text.lower()
    if command in ("intros", "sent"):
        received = command == "intros"
        requests = (services.intros.received_requests(user_id) if received
                    else services.intros.sent_requests(user_id))
        client.chat_postMessage(
            channel=channel,
            thread_ts=thread_ts,
            blocks=format_requests_as_blocks(requests, received=received),
            text="Your intro requests",
        )
        return

    thinking = client.chat_postMessage(
        channel=channel,
        thread_ts=thread_ts,
        text=":mag: Searching your network...",
    )
    try:
        result = services.engine.search(user_id, text)
        client.chat_update(
            channel=channel,
            ts=thinking["ts"],
            blocks=format_results_as_blocks(result),
            text="Here are your matches",
        )
        logger.info("[SEARCH] Results posted: direct=%d indirect=%d", len(result.direct), len(result.indirect))
    except Exception as e:
        logger.exception("[SEARCH] Error: %s", e)
        client.chat_update(
            channel=channel,
            ts=thinking["ts"],
            text=":warning: Sorry, I ran into an issue searching the network. Please try again.",
        )


def _register_handlers(app: App):
    """Register event and action handlers on the app."""

    @app.event("message")
    def handle_message(event, client):
        if event.get("subtype") or event.get("bot_id"):
            return
        if event.get("channel_type") == "im":
            _process_message(event, client)

    @app.event("app_mention")
    def handle_mention(event, client):
        if not event.get("bot_id"):
            _process_message(event, client)

    @app.action("request_intro")
    def handle_request_intro(ack, body, client):
        ack()
        value = body["actions"][0]["value"]
        company = json.loads(value).get("company", "this company")
        logger.info("[ACTION] request_intro user=%s company=%s", body["user"]["id"], company)
        client.views_open(trigger_id=body["trigger_id"], view=_build_reason_modal(value, company))

    @app.view("intro_reason")
    def handle_reason_submission(ack, body, view, client):
        ack()
        metadata = json.loads(view["private_metadata"])
        reason = view["state"]["values"]["reason"]["reason_input"]["value"]
        _submit_intro_request(body["user"]["id"], metadata, reason, client)

    @app.action("respond_intro_accept")
    def handle_accept(ack, body, client):
        ack()
        _handle_respond(body["user"]["id"], body["actions"][0]["value"], "accept", client)

    @app.action("respond_intro_decline")
    def handle_decline(ack, body, client):
        ack()
        _handle_respond(body["user"]["id"], body["actions"][0]["value"], "decline", client)

    @app.action("complete_intro")
    def handle_complete(ack, body, client):
        ack()
        _handle_complete(body["user"]["id"], body["actions"][0]["value"], client)


def start():
    """Start the Slack bot via Socket Mode."""
    logging.basicConfig(level=logging.INFO)

    # Fail fast if required secrets are missing
    if not SLACK_BOT_TOKEN:
        raise RuntimeError("SLACK_BOT_TOKEN is not set; check .env or Secret Manager")
    if not SLACK_APP_TOKEN:
        raise RuntimeError("SLACK_APP_TOKEN is not set; check .env or Secret Manager")
    if LLM_PROVIDER == "claude" and not ANTHROPIC_API_KEY:
        raise RuntimeError("ANTHROPIC_API_KEY is not set; check .env or Secret Manager")
    if LLM_PROVIDER == "gemini" and not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY is not set; check .env or Secret Manager")

    global _app, _services
    _app = App(token=SLACK_BOT_TOKEN)
    store = get_store(STORE_BACKEND, DB_PATH)
    _services = build_services(store=store, notifier=SlackNotifier(_app.client, store))

    _register_handlers(_app)
    handler = SocketModeHandler(_app, SLACK_APP_TOKEN)
    logger.info("Warm Intro bot starting...")
    handler.start()
