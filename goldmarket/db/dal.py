"""Data Access Layer utilities.

Responsibilities
----------------
- Open short-lived SQLite connections (`sqlite3.Row` rows, foreign keys on).
- Provide a write transaction taken with ``BEGIN IMMEDIATE`` so concurrent
  writers serialize on the database lock before reading state they mutate.
- Small query helpers returning plain dicts, and the UTC timestamp format
  used by every table (lexicographic order == chronological order).
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
import sqlite3
from typing import Any, Dict, Iterator, List, Optional, Sequence

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def to_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def utc_now() -> str:
    return to_timestamp(datetime.now(timezone.utc))


def utc_after(seconds: float) -> str:
    return to_timestamp(datetime.now(timezone.utc) + timedelta(seconds=seconds))


def utc_before(days: float) -> str:
    return to_timestamp(datetime.now(timezone.utc) - timedelta(days=days))


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp (with or without fractional seconds)."""
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    def __init__(self, db_path: Path, timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Connection committed on success, rolled back on error, always closed."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Explicit write transaction holding the reserved lock from the start."""
        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Query helpers
    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(sql, params).fetchone()
            return dict(row) if row else None

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        with self.connection() as conn:
            return conn.execute(sql, params).rowcount

    def ping(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False
