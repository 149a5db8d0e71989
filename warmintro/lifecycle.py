import logging
from datetime import datetime, timedelta
from typing import Callable

from pydantic import BaseModel, Field, ValidationError, field_validator

from warmintro.config import (
    DEFAULT_REQUESTER_INFO,
    MAX_REASON_LENGTH,
    MIN_CONTACTS_FOR_INTRO,
    WEEKLY_INTRO_LIMIT,
)
from warmintro.errors import (
    ConflictError,
    InsufficientNetworkError,
    NotFoundError,
    RateLimitExceeded,
    RequestValidationError,
)
from warmintro.messaging import ConnectorContext, MessageWriter, RequesterContext
from warmintro.models import CreatedIntro, IntroRequest, IntroStatus, RespondedIntro
from warmintro.notifications import IntroEvent, IntroEventType, Notifier
from warmintro.store.base import Store

logger = logging.getLogger(__name__)

_RESPONSES = {
    "accept": (IntroStatus.ACCEPTED, IntroEventType.ACCEPTED),
    "decline": (IntroStatus.DECLINED, IntroEventType.DECLINED),
}


def week_start(now: datetime) -> datetime:
    """Monday 00:00 of the week containing `now`. Sunday belongs to the week before."""
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


class NewIntroRequest(BaseModel):
    connector_id: str = Field(min_length=1)
    target_company: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=MAX_REASON_LENGTH)
    contact_id: str | None = None
    essay: str | None = None

    @field_validator("connector_id", "target_company", "reason", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("essay", "contact_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            return value.strip() or None
        return value


class IntroService:
    """Creates intro requests and drives them through pending -> accepted/declined -> completed.

    Only the connector may respond to or complete a request. Message generation
    and notifications are best-effort: a failure there never undoes a transition
    that has already been written.
    """

    def __init__(
        self,
        store: Store,
        messages: MessageWriter,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = datetime.now,
        min_contacts: int = MIN_CONTACTS_FOR_INTRO,
        weekly_limit: int = WEEKLY_INTRO_LIMIT,
    ):
        self.store = store
        self.messages = messages
        self.notifier = notifier
        self.clock = clock
        self.min_contacts = min_contacts
        self.weekly_limit = weekly_limit

    # --- Queries ---

    def sent_requests(self, user_id: str) -> list[IntroRequest]:
        return self.store.get_sent_requests(user_id)

    def received_requests(self, user_id: str) -> list[IntroRequest]:
        return self.store.get_received_requests(user_id)

    def remaining_this_week(self, user_id: str) -> int:
        limit = self.store.get_rate_limit(user_id, week_start(self.clock()))
        used = limit.indirect_requests_count if limit else 0
        return max(0, self.weekly_limit - used)

    # --- Transitions ---

    def create_intro_request(self, requester_id: str, connector_id: str, target_company: str,
                             reason: str, contact_id: str | None = None,
                             essay: str | None = None) -> CreatedIntro:
        try:
            data = NewIntroRequest(
                connector_id=connector_id, target_company=target_company,
                reason=reason, contact_id=contact_id, essay=essay,
            )
        except ValidationError as exc:
            error = exc.errors()[0]
            field = str(error["loc"][0]) if error.get("loc") else None
            raise RequestValidationError(f"Invalid {field}: {error['msg']}", field=field) from exc

        if data.connector_id == requester_id:
            raise RequestValidationError("You cannot request an introduction from yourself", field="connector_id")
        connector = self.store.get_user(data.connector_id)
        if connector is None:
            raise RequestValidationError("Unknown connector", field="connector_id")
        if data.contact_id is not None:
            contact = self.store.get_contact(data.contact_id)
            if contact is None or contact.user_id != connector.id:
                raise RequestValidationError("Contact does not belong to this connector", field="contact_id")

        contact_count = self.store.count_contacts_for_owner(requester_id)
        if contact_count < self.min_contacts:
            raise InsufficientNetworkError(
                f"You need at least {self.min_contacts} contacts to request introductions",
                contact_count=contact_count, required=self.min_contacts,
            )

        week = week_start(self.clock())
        limit = self.store.get_rate_limit(requester_id, week)
        used = limit.indirect_requests_count if limit else 0
        if used >= self.weekly_limit:
            raise RateLimitExceeded(
                f"You've reached the limit of {self.weekly_limit} intro requests per week",
                used=used, limit=self.weekly_limit, reset_time=week + timedelta(days=7),
            )

        request = self.store.create_intro_request(
            requester_id=requester_id,
            connector_user_id=connector.id,
            target_company=data.target_company,
            reason=data.reason,
            contact_id=data.contact_id,
            essay=data.essay,
        )
        self.store.increment_rate_limit(requester_id, week)
        self.store.increment_connector_stats(connector.id, total_requests=1)
        logger.info("[INTRO] Created request=%s requester=%s connector=%s company=%s",
                    request.id, requester_id, connector.id, request.target_company)

        suggested = None
        requester = self.store.get_user(requester_id)
        if requester is not None:
            suggested = self.messages.requester_to_connector(RequesterContext(
                requester_name=requester.name,
                requester_info=requester.affiliation or DEFAULT_REQUESTER_INFO,
                connector_first_name=connector.first_name,
                target_company=request.target_company,
                reason=request.reason,
                essay=request.essay,
            ))

        self._emit(IntroEventType.CREATED, request)
        return CreatedIntro(request=request, suggested_message=suggested)

    def respond(self, request_id: str, actor_id: str, action: str) -> RespondedIntro:
        """Accept or decline a pending request as its connector."""
        request = self._get_for_connector(request_id, actor_id)
        self._require_status(request, IntroStatus.PENDING, "Request already responded to")

        if action not in _RESPONSES:
            raise RequestValidationError(f"Unknown action: {action!r}", field="action")
        new_status, event_type = _RESPONSES[action]

        updated = self._transition(request, IntroStatus.PENDING, new_status, "Request already responded to")
        logger.info("[INTRO] request=%s %s by connector=%s", request_id, new_status.value, actor_id)

        message = None
        if new_status == IntroStatus.ACCEPTED:
            requester = self.store.get_user(updated.requester_id)
            connector = self.store.get_user(actor_id)
            if requester is not None and connector is not None:
                message = self.messages.connector_to_target(ConnectorContext(
                    connector_name=connector.name,
                    requester_name=requester.name,
                    requester_pitch=updated.reason,
                    target_company=updated.target_company,
                    essay=updated.essay,
                ))

        self._emit(event_type, updated)
        return RespondedIntro(request=updated, message=message)

    def complete(self, request_id: str, actor_id: str) -> IntroRequest:
        """Mark an accepted request as completed and credit the connector."""
        request = self._get_for_connector(request_id, actor_id)
        self._require_status(request, IntroStatus.ACCEPTED, "Only accepted requests can be completed")
        updated = self._transition(
            request, IntroStatus.ACCEPTED, IntroStatus.COMPLETED, "Only accepted requests can be completed",
        )
        stats = self.store.increment_connector_stats(actor_id, success_count=1)
        logger.info("[INTRO] request=%s completed; connector=%s success=%d rate=%d%%",
                    request_id, actor_id, stats.success_count, stats.response_rate)
        self._emit(IntroEventType.COMPLETED, updated)
        return updated

    # --- Helpers ---

    def _get_for_connector(self, request_id: str, actor_id: str) -> IntroRequest:
        request = self.store.get_intro_request(request_id)
        # Someone else's request looks exactly like a missing one
        if request is None or request.connector_user_id != actor_id:
            raise NotFoundError("Request not found")
        return request

    @staticmethod
    def _require_status(request: IntroRequest, expected: IntroStatus, message: str) -> None:
        if request.status != expected:
            raise ConflictError(message, current_status=request.status.value)

    def _transition(self, request: IntroRequest, expected: IntroStatus,
                    new_status: IntroStatus, conflict_message: str) -> IntroRequest:
        updated = self.store.update_intro_request_status(request.id, new_status, expected_status=expected)
        if updated is None:
            # Lost a race with another transition
            current = self.store.get_intro_request(request.id)
            raise ConflictError(conflict_message, current_status=current.status.value if current else None)
        return updated

    def _emit(self, event_type: IntroEventType, request: IntroRequest) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.emit(IntroEvent.from_request(event_type, request))
        except Exception as exc:
            logger.warning("[INTRO] Notification for request=%s failed: %s", request.id, exc)
