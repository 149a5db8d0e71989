import sqlite3
import json
import time
import logging
from contextlib import closing

from warmintro.models import SearchIntent

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS search_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    user_id TEXT NOT NULL,
    query_text TEXT NOT NULL,
    intent TEXT,
    direct_count INTEGER NOT NULL,
    indirect_count INTEGER NOT NULL,
    total_secs REAL,
    created_at TEXT DEFAULT (datetime('now'))
)
"""


class SearchLog:
    """Append-only record of searches, kept apart from the main store."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute(_CREATE_TABLE)
        return conn

    def record(
        self,
        user_id: str,
        query_text: str,
        intent: SearchIntent | None,
        direct_count: int,
        indirect_count: int,
        total_secs: float | None = None,
    ) -> int:
        """Log a search and return the row ID."""
        with closing(self._connect()) as conn:
            cur = conn.execute(
                """INSERT INTO search_log
                   (timestamp, user_id, query_text, intent, direct_count, indirect_count, total_secs)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    time.time(),
                    user_id,
                    query_text,
                    json.dumps(intent.model_dump(exclude_none=True)) if intent else None,
                    direct_count,
                    indirect_count,
                    total_secs,
                ),
            )
            row_id = cur.lastrowid
            conn.commit()
            logger.info("[LOG] Search logged: id=%d user=%s direct=%d indirect=%d",
                        row_id, user_id, direct_count, indirect_count)
            return row_id

    def recent(self, user_id: str, limit: int = 20) -> list[dict]:
        """Most recent searches by a user, newest first."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM search_log WHERE user_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        result = []
        for row in rows:
            entry = dict(row)
            entry["intent"] = json.loads(entry["intent"]) if entry["intent"] else None
            result.append(entry)
        return result
