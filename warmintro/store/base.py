import uuid
from abc import ABC, abstractmethod
from datetime import datetime

from warmintro.models import (
    Contact,
    ConnectorStats,
    IntroRequest,
    IntroStatus,
    RateLimit,
    User,
)

# Contact fields that may be supplied at creation or changed by update_contact.
CONTACT_MUTABLE_FIELDS = frozenset(
    f for f in Contact.model_fields if f not in ("id", "user_id", "created_at")
)


def new_id() -> str:
    return str(uuid.uuid4())


def check_contact_fields(fields: dict) -> None:
    unknown = set(fields) - CONTACT_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown contact fields: {sorted(unknown)}")


class Store(ABC):
    """Persistence for users, contacts, intro requests, connector stats and rate limits.

    Read misses return None (or an empty list) instead of raising. Backend
    failures such as an unreachable database propagate to the caller.
    """

    # --- Users ---

    @abstractmethod
    def create_user(self, email: str, name: str, affiliation: str | None = None,
                    linkedin_url: str | None = None) -> User:
        """Create a user. Raises RequestValidationError if the email is taken."""

    @abstractmethod
    def get_user(self, user_id: str) -> User | None:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> User | None:
        pass

    @abstractmethod
    def count_users(self) -> int:
        pass

    # --- Contacts ---

    @abstractmethod
    def create_contact(self, owner_id: str, raw_text: str, **fields) -> Contact:
        """Create an unenriched contact. Structured fields default to None."""

    @abstractmethod
    def get_contact(self, contact_id: str) -> Contact | None:
        pass

    @abstractmethod
    def get_contacts_for_owner(self, user_id: str) -> list[Contact]:
        """Contacts owned by a user, oldest first."""

    @abstractmethod
    def count_contacts_for_owner(self, user_id: str) -> int:
        pass

    @abstractmethod
    def get_enriched_contacts_excluding_owner(self, user_id: str) -> list[Contact]:
        """Every enriched contact owned by someone other than `user_id`."""

    @abstractmethod
    def get_contacts_by_company(self, company_normalized: str,
                                exclude_user_id: str | None = None) -> list[Contact]:
        """Contacts whose normalized company equals `company_normalized`, across all users."""

    @abstractmethod
    def update_contact(self, contact_id: str, **patch) -> Contact | None:
        """Apply a partial update. Returns None if the contact does not exist."""

    @abstractmethod
    def count_contacts(self, enriched: bool | None = None) -> int:
        pass

    # --- Intro requests ---

    @abstractmethod
    def create_intro_request(self, requester_id: str, connector_user_id: str,
                             target_company: str, reason: str,
                             contact_id: str | None = None,
                             essay: str | None = None) -> IntroRequest:
        """Persist a new request in the pending state."""

    @abstractmethod
    def get_intro_request(self, request_id: str) -> IntroRequest | None:
        pass

    @abstractmethod
    def get_sent_requests(self, user_id: str) -> list[IntroRequest]:
        """Requests created by `user_id`, newest first."""

    @abstractmethod
    def get_received_requests(self, user_id: str) -> list[IntroRequest]:
        """Requests addressed to `user_id` as connector, newest first."""

    @abstractmethod
    def update_intro_request_status(self, request_id: str, status: IntroStatus,
                                    expected_status: IntroStatus | None = None) -> IntroRequest | None:
        """Set the status, optionally only if it currently equals `expected_status`.

        Returns None when the request is missing or the expected status did not match.
        """

    @abstractmethod
    def count_intro_requests_by_status(self) -> dict[IntroStatus, int]:
        pass

    # --- Connector stats ---

    @abstractmethod
    def get_connector_stats(self, user_id: str) -> ConnectorStats | None:
        pass

    @abstractmethod
    def update_connector_stats(self, user_id: str, total_requests: int | None = None,
                               success_count: int | None = None) -> ConnectorStats:
        """Set counters (creating the row if needed) and recompute the response rate."""

    @abstractmethod
    def increment_connector_stats(self, user_id: str, total_requests: int = 0,
                                  success_count: int = 0) -> ConnectorStats:
        """Add to counters (creating the row if needed) and recompute the response rate."""

    # --- Rate limits ---

    @abstractmethod
    def get_rate_limit(self, user_id: str, week_start: datetime) -> RateLimit | None:
        pass

    @abstractmethod
    def increment_rate_limit(self, user_id: str, week_start: datetime) -> RateLimit:
        """Create the (user, week) counter at 1 or add 1 to it."""
