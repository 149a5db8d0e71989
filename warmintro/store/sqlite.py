import json
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime

from warmintro.errors import RequestValidationError
from warmintro.models import (
    Contact,
    ConnectorStats,
    IntroRequest,
    IntroStatus,
    RateLimit,
    User,
)
from warmintro.normalize import normalize_company_name
from warmintro.store.base import Store, check_contact_fields, new_id

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    affiliation TEXT,
    linkedin_url TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contacts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    raw_text TEXT NOT NULL,
    name TEXT,
    email TEXT,
    phone TEXT,
    linkedin_url TEXT,
    company TEXT,
    company_normalized TEXT,
    title TEXT,
    industry TEXT,
    seniority TEXT,
    location TEXT,
    company_size TEXT,
    funding_stage TEXT,
    years_experience INTEGER,
    skills TEXT,
    education TEXT,
    university TEXT,
    degree TEXT,
    major TEXT,
    graduation_year INTEGER,
    recent_role_change INTEGER,
    industry_fit TEXT,
    linkedin_summary TEXT,
    enriched INTEGER NOT NULL DEFAULT 0,
    confidence INTEGER,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_contacts_enriched_user ON contacts (enriched, user_id);
CREATE INDEX IF NOT EXISTS idx_contacts_user ON contacts (user_id);
CREATE INDEX IF NOT EXISTS idx_contacts_company ON contacts (company_normalized);

CREATE TABLE IF NOT EXISTS intro_requests (
    id TEXT PRIMARY KEY,
    requester_id TEXT NOT NULL,
    connector_user_id TEXT NOT NULL,
    contact_id TEXT,
    target_company TEXT NOT NULL,
    target_company_normalized TEXT NOT NULL,
    reason TEXT NOT NULL,
    essay TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_requests_requester ON intro_requests (requester_id);
CREATE INDEX IF NOT EXISTS idx_requests_connector ON intro_requests (connector_user_id);

CREATE TABLE IF NOT EXISTS connector_stats (
    user_id TEXT PRIMARY KEY,
    success_count INTEGER NOT NULL DEFAULT 0,
    total_requests INTEGER NOT NULL DEFAULT 0,
    response_rate INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS rate_limits (
    user_id TEXT NOT NULL,
    week_start TEXT NOT NULL,
    indirect_requests_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, week_start)
);
"""

# Integer half-up rounding, kept in SQL so the rate is derived from the counts just written.
_RECOMPUTE_RATE = """
    UPDATE connector_stats
    SET response_rate = CASE
        WHEN total_requests > 0 THEN (success_count * 200 + total_requests) / (2 * total_requests)
        ELSE 0
    END
    WHERE user_id = ?
"""

_CONTACT_COLUMNS = tuple(Contact.model_fields) + ("company_normalized",)


def _dict_row(cursor, row):
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


@contextmanager
def _connect(db_path: str):
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = _dict_row
    try:
        yield conn
    finally:
        conn.close()


def _contact_to_row(values: dict) -> dict:
    row = dict(values)
    if "skills" in row:
        row["skills"] = json.dumps(row["skills"]) if row["skills"] is not None else None
    if "company" in row:
        row["company_normalized"] = normalize_company_name(row["company"]) or None
    for key in ("enriched", "recent_role_change"):
        if key in row and row[key] is not None:
            row[key] = int(bool(row[key]))
    if "created_at" in row:
        row["created_at"] = _ts(row["created_at"])
    return row


def _row_to_contact(row: dict) -> Contact:
    row = dict(row)
    row.pop("company_normalized", None)
    if row.get("skills"):
        row["skills"] = json.loads(row["skills"])
    return Contact.model_validate(row)


class SqliteStore(Store):
    """SQLite-backed store. Opens a short-lived connection per operation."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        with _connect(db_path) as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # --- Users ---

    def create_user(self, email, name, affiliation=None, linkedin_url=None):
        user = User(
            id=new_id(), email=email, name=name, affiliation=affiliation,
            linkedin_url=linkedin_url, created_at=datetime.now(),
        )
        with _connect(self.db_path) as conn:
            try:
                conn.execute(
                    """INSERT INTO users (id, email, name, affiliation, linkedin_url, created_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (user.id, user.email, user.name, user.affiliation, user.linkedin_url, _ts(user.created_at)),
                )
            except sqlite3.IntegrityError:
                raise RequestValidationError(f"Email already registered: {email}", field="email")
            conn.commit()
        return user

    def get_user(self, user_id):
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User.model_validate(row) if row else None

    def get_user_by_email(self, email):
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return User.model_validate(row) if row else None

    def count_users(self):
        with _connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]

    # --- Contacts ---

    def create_contact(self, owner_id, raw_text, **fields):
        check_contact_fields(fields)
        contact = Contact(
            id=new_id(), user_id=owner_id, raw_text=raw_text,
            created_at=datetime.now(), **fields,
        )
        row = _contact_to_row(contact.model_dump())
        placeholders = ", ".join("?" * len(_CONTACT_COLUMNS))
        with _connect(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO contacts ({', '.join(_CONTACT_COLUMNS)}) VALUES ({placeholders})",
                [row.get(col) for col in _CONTACT_COLUMNS],
            )
            conn.commit()
        return contact

    def get_contact(self, contact_id):
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM contacts WHERE id = ?", (contact_id,)).fetchone()
        return _row_to_contact(row) if row else None

    def get_contacts_for_owner(self, user_id):
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM contacts WHERE user_id = ? ORDER BY created_at, rowid",
                (user_id,),
            ).fetchall()
        return [_row_to_contact(r) for r in rows]

    def count_contacts_for_owner(self, user_id):
        with _connect(self.db_path) as conn:
            return conn.execute(
                "SELECT COUNT(*) AS n FROM contacts WHERE user_id = ?", (user_id,)
            ).fetchone()["n"]

    def get_enriched_contacts_excluding_owner(self, user_id):
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM contacts WHERE enriched = 1 AND user_id != ? ORDER BY created_at, rowid",
                (user_id,),
            ).fetchall()
        return [_row_to_contact(r) for r in rows]

    def get_contacts_by_company(self, company_normalized, exclude_user_id=None):
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                """SELECT * FROM contacts
                   WHERE company_normalized = ? AND (? IS NULL OR user_id != ?)
                   ORDER BY created_at, rowid""",
                (company_normalized, exclude_user_id, exclude_user_id),
            ).fetchall()
        return [_row_to_contact(r) for r in rows]

    def update_contact(self, contact_id, **patch):
        check_contact_fields(patch)
        existing = self.get_contact(contact_id)
        if existing is None:
            return None
        updated = Contact.model_validate({**existing.model_dump(), **patch})
        row = _contact_to_row({k: getattr(updated, k) for k in patch})
        if not row:
            return updated
        assignments = ", ".join(f"{col} = ?" for col in row)
        with _connect(self.db_path) as conn:
            conn.execute(
                f"UPDATE contacts SET {assignments} WHERE id = ?",
                [*row.values(), contact_id],
            )
            conn.commit()
        return updated

    def count_contacts(self, enriched=None):
        with _connect(self.db_path) as conn:
            if enriched is None:
                return conn.execute("SELECT COUNT(*) AS n FROM contacts").fetchone()["n"]
            return conn.execute(
                "SELECT COUNT(*) AS n FROM contacts WHERE enriched = ?", (int(enriched),)
            ).fetchone()["n"]

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
        with _connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO intro_requests
                   (id, requester_id, connector_user_id, contact_id, target_company,
                    target_company_normalized, reason, essay, status, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    request.id, requester_id, connector_user_id, contact_id, target_company,
                    request.target_company_normalized, reason, essay, request.status.value,
                    _ts(now), _ts(now),
                ),
            )
            conn.commit()
        return request

    def get_intro_request(self, request_id):
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM intro_requests WHERE id = ?", (request_id,)).fetchone()
        return IntroRequest.model_validate(row) if row else None

    def get_sent_requests(self, user_id):
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM intro_requests WHERE requester_id = ? ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [IntroRequest.model_validate(r) for r in rows]

    def get_received_requests(self, user_id):
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM intro_requests WHERE connector_user_id = ? ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [IntroRequest.model_validate(r) for r in rows]

    def update_intro_request_status(self, request_id, status, expected_status=None):
        expected = expected_status.value if expected_status is not None else None
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                """UPDATE intro_requests SET status = ?, updated_at = ?
                   WHERE id = ? AND (? IS NULL OR status = ?)""",
                (IntroStatus(status).value, _ts(datetime.now()), request_id, expected, expected),
            )
            conn.commit()
            if cur.rowcount == 0:
                return None
        return self.get_intro_request(request_id)

    def count_intro_requests_by_status(self):
        counts = {status: 0 for status in IntroStatus}
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM intro_requests GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[IntroStatus(row["status"])] = row["n"]
        return counts

    # --- Connector stats ---

    def get_connector_stats(self, user_id):
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM connector_stats WHERE user_id = ?", (user_id,)).fetchone()
        return ConnectorStats.model_validate(row) if row else None

    def _write_stats(self, upsert_sql: str, params: tuple, user_id: str) -> ConnectorStats:
        with _connect(self.db_path) as conn:
            conn.execute(upsert_sql, params)
            conn.execute(_RECOMPUTE_RATE, (user_id,))
            conn.commit()
            row = conn.execute("SELECT * FROM connector_stats WHERE user_id = ?", (user_id,)).fetchone()
        return ConnectorStats.model_validate(row)

    def update_connector_stats(self, user_id, total_requests=None, success_count=None):
        return self._write_stats(
            """INSERT INTO connector_stats (user_id, total_requests, success_count)
               VALUES (?, COALESCE(?, 0), COALESCE(?, 0))
               ON CONFLICT (user_id) DO UPDATE SET
                   total_requests = COALESCE(?, total_requests),
                   success_count = COALESCE(?, success_count)""",
            (user_id, total_requests, success_count, total_requests, success_count),
            user_id,
        )

    def increment_connector_stats(self, user_id, total_requests=0, success_count=0):
        return self._write_stats(
            """INSERT INTO connector_stats (user_id, total_requests, success_count)
               VALUES (?, ?, ?)
               ON CONFLICT (user_id) DO UPDATE SET
                   total_requests = total_requests + excluded.total_requests,
                   success_count = success_count + excluded.success_count""",
            (user_id, total_requests, success_count),
            user_id,
        )

    # --- Rate limits ---

    def get_rate_limit(self, user_id, week_start):
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM rate_limits WHERE user_id = ? AND week_start = ?",
                (user_id, _ts(week_start)),
            ).fetchone()
        return RateLimit.model_validate(row) if row else None

    def increment_rate_limit(self, user_id, week_start):
        with _connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO rate_limits (user_id, week_start, indirect_requests_count)
                   VALUES (?, ?, 1)
                   ON CONFLICT (user_id, week_start) DO UPDATE SET
                       indirect_requests_count = indirect_requests_count + 1""",
                (user_id, _ts(week_start)),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM rate_limits WHERE user_id = ? AND week_start = ?",
                (user_id, _ts(week_start)),
            ).fetchone()
        logger.info("Rate limit for user=%s week=%s now %d",
                    user_id, week_start.date(), row["indirect_requests_count"])
        return RateLimit.model_validate(row)
