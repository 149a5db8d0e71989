"""Lifecycle events for intro requests and the notifiers that deliver them."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from warmintro.models import IntroRequest, IntroStatus
from warmintro.store.base import Store

logger = logging.getLogger(__name__)


class IntroEventType(str, Enum):
    CREATED = "created"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"


class IntroEvent(BaseModel):
    type: IntroEventType
    request_id: str
    requester_id: str
    connector_id: str
    target_company: str
    status: IntroStatus
    occurred_at: datetime

    @classmethod
    def from_request(cls, event_type: IntroEventType, request: IntroRequest) -> "IntroEvent":
        return cls(
            type=event_type,
            request_id=request.id,
            requester_id=request.requester_id,
            connector_id=request.connector_user_id,
            target_company=request.target_company,
            status=request.status,
            occurred_at=request.updated_at,
        )

    @property
    def recipient_id(self) -> str:
        """The user who should hear about this event."""
        return self.connector_id if self.type == IntroEventType.CREATED else self.requester_id


class Notifier(ABC):
    @abstractmethod
    def emit(self, event: IntroEvent) -> None:
        pass


class LoggingNotifier(Notifier):
    def emit(self, event):
        logger.info("[EVENT] intro %s: request=%s requester=%s connector=%s company=%s",
                    event.type.value, event.request_id, event.requester_id,
                    event.connector_id, event.target_company)


class SlackNotifier(Notifier):
    """DMs the counterpart of each event, matching app users to Slack users by email."""

    def __init__(self, client, store: Store):
        self.client = client
        self.store = store

    def format_text(self, event: IntroEvent) -> str:
        company = event.target_company
        if event.type == IntroEventType.CREATED:
            requester = self.store.get_user(event.requester_id)
            who = requester.first_name if requester else "Someone"
            return (f":wave: {who} asked you for an intro to someone at *{company}*. "
                    "Send me `intros` to review it.")
        connector = self.store.get_user(event.connector_id)
        if event.type == IntroEventType.ACCEPTED:
            # Full connector identity is only revealed once they accept
            who = connector.name if connector else "Your connector"
            return f":tada: {who} accepted your intro request for *{company}*."
        if event.type == IntroEventType.DECLINED:
            return f"Your intro request for *{company}* was declined."
        who = connector.name if connector else "Your connector"
        return f":white_check_mark: {who} completed your introduction to *{company}*."

    def emit(self, event):
        recipient = self.store.get_user(event.recipient_id)
        if recipient is None:
            logger.warning("[EVENT] No user %s to notify", event.recipient_id)
            return
        lookup = self.client.users_lookupByEmail(email=recipient.email)
        slack_user_id = lookup["user"]["id"]
        channel = self.client.conversations_open(users=slack_user_id)["channel"]["id"]
        self.client.chat_postMessage(channel=channel, text=self.format_text(event))
        logger.info("[EVENT] Notified user=%s of %s", recipient.id, event.type.value)
