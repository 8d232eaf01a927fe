"""Seeding helpers for reference data.

Ensures the gold karats, currencies and default store settings exist, and
creates a bootstrap admin account when the users table has no admin. Existing
rows are left untouched so this can be safely re-run on every start.
"""

from __future__ import annotations
from pathlib import Path
import logging
import sqlite3
from typing import Optional

from goldmarket.core.security import hash_password
from goldmarket.models.constants import CURRENCIES, DEFAULT_SETTINGS, GOLD_TYPES

logger = logging.getLogger("goldmarket.db")


def seed_reference_data(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        cur = conn.cursor()
        cur.executemany(
            """
            INSERT OR IGNORE INTO gold_types (name_ar, name_en, karat, purity, display_order)
            VALUES (?, ?, ?, ?, ?)
            """,
            GOLD_TYPES,
        )
        cur.executemany(
            """
            INSERT OR IGNORE INTO currencies
                (code, name_ar, name_en, symbol, flag_emoji, is_base, display_order)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [(c, ar, en, sym, flag, int(base), order) for c, ar, en, sym, flag, base, order in CURRENCIES],
        )
        cur.executemany(
            """
            INSERT OR IGNORE INTO store_settings (setting_key, setting_value, setting_type, description)
            VALUES (?, ?, ?, ?)
            """,
            [(key, value, type_, desc) for key, (value, type_, desc) in DEFAULT_SETTINGS.items()],
        )
        conn.commit()


def seed_admin(
    db_path: Path,
    username: str,
    password: str,
    email: Optional[str] = None,
    rounds: int = 12,
) -> Optional[int]:
    """Create the bootstrap admin if no admin exists; return its id when created."""
    with sqlite3.connect(db_path) as conn:
        cur = conn.cursor()
        cur.execute("SELECT 1 FROM users WHERE role = 'admin' LIMIT 1")
        if cur.fetchone():
            return None
        cur.execute(
            """
            INSERT INTO users (username, email, password_hash, full_name, role, is_active)
            VALUES (?, ?, ?, ?, 'admin', 1)
            """,
            (username, email, hash_password(password, rounds), "System Administrator"),
        )
        conn.commit()
        logger.info("bootstrap admin created", extra={"context": {"username": username}})
        return int(cur.lastrowid)
