"""Database migration utilities.

Handles schema evolution by applying idempotent migrations keyed by an integer
`schema_version` stored in the metadata table.

Versions:
  1: base tables (users, sessions, instruments, price versions, settings, audit)
  2: partial unique indexes allowing a single open price record per instrument;
     any duplicate open records left by older writers are closed first
"""

from __future__ import annotations
from pathlib import Path
import logging
import sqlite3
from typing import Optional

from . import schema as schema_def
from .schema import init_db

CURRENT_SCHEMA_VERSION = 2
SCHEMA_VERSION_KEY = "schema_version"

logger = logging.getLogger("goldmarket.db")

# (table, instrument column, index DDL)
_OPEN_RECORD_TABLES = (
    ("gold_prices", "gold_type_id", schema_def.GOLD_PRICES_OPEN_INDEX_DDL),
    ("currency_rates", "currency_id", schema_def.CURRENCY_RATES_OPEN_INDEX_DDL),
)


def _get_schema_version(conn: sqlite3.Connection) -> Optional[int]:
    try:
        cur = conn.cursor()
        cur.execute("SELECT value FROM metadata WHERE key=?", (SCHEMA_VERSION_KEY,))
        row = cur.fetchone()
        if row:
            return int(row[0])
    except sqlite3.OperationalError:
        # metadata table may not exist yet (first run before init_db)
        return None
    return None


def apply_migrations(db_path: Path) -> int:
    """Apply required migrations and return resulting schema version."""
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    try:
        version = _get_schema_version(conn) or 1
        if version < 2:
            _migrate_to_v2(conn)
            version = 2
        _set_schema_version(conn, version)
        conn.commit()
        logger.info("schema ready", extra={"context": {"schema_version": version}})
        return version
    finally:
        conn.close()


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO metadata (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
        f"updated_at=({schema_def.BASIC_UTC_NOW})",
        (SCHEMA_VERSION_KEY, str(version)),
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Upgrade schema to version 2 (single open record per instrument)."""
    cur = conn.cursor()
    try:
        for table, column, index_ddl in _OPEN_RECORD_TABLES:
            _close_duplicate_open_records(cur, table, column)
            cur.execute(index_ddl)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _close_duplicate_open_records(cur: sqlite3.Cursor, table: str, column: str) -> None:
    """Keep only the newest open record per instrument; close the rest at the
    newest record's effective_from so the timeline stays contiguous."""
    cur.execute(
        f"""
        SELECT {column}, COUNT(*) FROM {table}
        WHERE effective_until IS NULL
        GROUP BY {column}
        HAVING COUNT(*) > 1
        """
    )
    for instrument_id, count in cur.fetchall():
        cur.execute(
            f"""
            SELECT id, effective_from FROM {table}
            WHERE {column} = ? AND effective_until IS NULL
            ORDER BY effective_from DESC, id DESC
            """,
            (instrument_id,),
        )
        rows = cur.fetchall()
        keep_from = rows[0][1]
        for record_id, _ in rows[1:]:
            cur.execute(
                f"UPDATE {table} SET effective_until = ? WHERE id = ?",
                (keep_from, record_id),
            )
        logger.warning(
            "closed duplicate open price records",
            extra={"context": {"table": table, "instrument_id": instrument_id, "closed": count - 1}},
        )
