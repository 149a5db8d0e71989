import threading
from datetime import datetime

from warmintro.errors import RequestValidationError
from warmintro.models import (
    Contact,
    ConnectorStats,
    IntroRequest,
    IntroStatus,
    RateLimit,
    User,
    compute_response_rate,
)
from warmintro.normalize import normalize_company_name
from warmintro.store.base import Store, check_contact_fields, new_id


class MemoryStore(Store):
    """Dict-backed store for tests and local runs.

    All access goes through one lock and callers only ever receive copies,
    so read-modify-write sequences (rate limits, stats) cannot interleave.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}
        self._contacts: dict[str, Contact] = {}
        self._requests: dict[str, IntroRequest] = {}
        self._stats: dict[str, ConnectorStats] = {}
        self._rate_limits: dict[tuple[str, datetime], RateLimit] = {}

    # --- Users ---

    def create_user(self, email, name, affiliation=None, linkedin_url=None):
        with self._lock:
            if any(u.email == email for u in self._users.values()):
                raise RequestValidationError(f"Email already registered: {email}", field="email")
            user = User(
                id=new_id(), email=email, name=name, affiliation=affiliation,
                linkedin_url=linkedin_url, created_at=datetime.now(),
            )
            self._users[user.id] = user
            return user.model_copy()

    def get_user(self, user_id):
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def get_user_by_email(self, email):
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return user.model_copy()
            return None

    def count_users(self):
        with self._lock:
            return len(self._users)

    # --- Contacts ---

    def create_contact(self, owner_id, raw_text, **fields):
        check_contact_fields(fields)
        contact = Contact(
            id=new_id(), user_id=owner_id, raw_text=raw_text,
            created_at=datetime.now(), **fields,
        )
        with self._lock:
            self._contacts[contact.id] = contact
            return contact.model_copy(deep=True)

    def get_contact(self, contact_id):
        with self._lock:
            contact = self._contacts.get(contact_id)
            return contact.model_copy(deep=True) if contact else None

    def get_contacts_for_owner(self, user_id):
        with self._lock:
            return [c.model_copy(deep=True) for c in self._contacts.values() if c.user_id == user_id]

    def count_contacts_for_owner(self, user_id):
        with self._lock:
            return sum(1 for c in self._contacts.values() if c.user_id == user_id)

    def get_enriched_contacts_excluding_owner(self, user_id):
        with self._lock:
            return [
                c.model_copy(deep=True) for c in self._contacts.values()
                if c.enriched and c.user_id != user_id
            ]

    def get_contacts_by_company(self, company_normalized, exclude_user_id=None):
        with self._lock:
            return [
                c.model_copy(deep=True) for c in self._contacts.values()
                if c.company
                and c.user_id != exclude_user_id
                and normalize_company_name(c.company) == company_normalized
            ]

    def update_contact(self, contact_id, **patch):
        check_contact_fields(patch)
        with self._lock:
            contact = self._contacts.get(contact_id)
            if contact is None:
                return None
            updated = Contact.model_validate({**contact.model_dump(), **patch})
            self._contacts[contact_id] = updated
            return updated.model_copy(deep=True)

    def count_contacts(self, enriched=None):
        with self._lock:
            if enriched is None:
                return len(self._contacts)
            return sum(1 for c in self._contacts.values() if c.enriched == enriched)

    # --- Intro requests ---

    def create_intro_request(self, requester_id, connector_user_id, target_company, reason,
                             contact_id=None, essay=None):
        now = datetime.now()
        request = IntroRequest(
            id=new_id(),
            requester_id=requester_id,
            connector_user_id=connector_user_id,
            contact_id=contact_id,
            target_company=target_company,
            target_company_normalized=normalize_company_name(target_company),
            reason=reason,
            essay=essay,
            status=IntroStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._requests[request.id] = request
            return request.model_copy()

    def get_intro_request(self, request_id):
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy() if request else None

    def _newest_first(self, predicate) -> list[IntroRequest]:
        # dict order is insertion order, so reversing it breaks created_at ties
        with self._lock:
            matching = [r.model_copy() for r in reversed(self._requests.values()) if predicate(r)]
        return sorted(matching, key=lambda r: r.created_at, reverse=True)

    def get_sent_requests(self, user_id):
        return self._newest_first(lambda r: r.requester_id == user_id)

    def get_received_requests(self, user_id):
        return self._newest_first(lambda r: r.connector_user_id == user_id)

    def update_intro_request_status(self, request_id, status, expected_status=None):
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return None
            if expected_status is not None and request.status != expected_status:
                return None
            updated = request.model_copy(update={"status": status, "updated_at": datetime.now()})
            self._requests[request_id] = updated
            return updated.model_copy()

    def count_intro_requests_by_status(self):
        with self._lock:
            counts = {status: 0 for status in IntroStatus}
            for request in self._requests.values():
                counts[request.status] += 1
            return counts

    # --- Connector stats ---

    def get_connector_stats(self, user_id):
        with self._lock:
            stats = self._stats.get(user_id)
            return stats.model_copy() if stats else None

    def _write_stats(self, user_id: str, total_requests: int, success_count: int) -> ConnectorStats:
        stats = ConnectorStats(
            user_id=user_id,
            total_requests=total_requests,
            success_count=success_count,
            response_rate=compute_response_rate(success_count, total_requests),
        )
        self._stats[user_id] = stats
        return stats.model_copy()

    def update_connector_stats(self, user_id, total_requests=None, success_count=None):
        with self._lock:
            current = self._stats.get(user_id) or ConnectorStats(user_id=user_id)
            return self._write_stats(
                user_id,
                current.total_requests if total_requests is None else total_requests,
                current.success_count if success_count is None else success_count,
            )

    def increment_connector_stats(self, user_id, total_requests=0, success_count=0):
        with self._lock:
            current = self._stats.get(user_id) or ConnectorStats(user_id=user_id)
            return self._write_stats(
                user_id,
                current.total_requests + total_requests,
                current.success_count + success_count,
            )

    # --- Rate limits ---

    def get_rate_limit(self, user_id, week_start):
        with self._lock:
            limit = self._rate_limits.get((user_id, week_start))
            return limit.model_copy() if limit else None

    def increment_rate_limit(self, user_id, week_start):
        with self._lock:
            key = (user_id, week_start)
            current = self._rate_limits.get(key)
            count = current.indirect_requests_count + 1 if current else 1
            limit = RateLimit(user_id=user_id, week_start=week_start, indirect_requests_count=count)
            self._rate_limits[key] = limit
            return limit.model_copy()
