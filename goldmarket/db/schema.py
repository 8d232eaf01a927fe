"""Database schema DDL definitions and initialization utilities.

Tables:
  - users: staff accounts (admin / manager / user) with per-account lockout
  - sessions: server-side login sessions keyed by an opaque token
  - gold_types / currencies: instrument reference data
  - gold_prices / currency_rates: effective-dated price versions per instrument
  - store_settings: typed key/value configuration
  - audit_log: append-only change log
  - metadata: key/value store (schema_version)
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

USERS_DDL = f"""
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT UNIQUE,
    password_hash TEXT NOT NULL,
    full_name TEXT,
    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin','manager','user')),
    is_active INTEGER NOT NULL DEFAULT 1,
    last_login TEXT,
    login_attempts INTEGER NOT NULL DEFAULT 0,
    locked_until TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    created_by INTEGER,
    FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL
);
"""

SESSIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token TEXT NOT NULL UNIQUE,
    user_id INTEGER NOT NULL,
    csrf_token TEXT NOT NULL,
    role TEXT NOT NULL,
    ip_address TEXT,
    user_agent TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    last_activity TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    expires_at TEXT NOT NULL,
    is_valid INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);
"""

GOLD_TYPES_DDL = f"""
CREATE TABLE IF NOT EXISTS gold_types (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name_ar TEXT NOT NULL,
    name_en TEXT,
    karat INTEGER NOT NULL UNIQUE CHECK (karat IN (18, 21, 22, 24)),
    purity REAL NOT NULL,
    display_order INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

GOLD_PRICES_DDL = f"""
CREATE TABLE IF NOT EXISTS gold_prices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gold_type_id INTEGER NOT NULL,
    buy_raw REAL NOT NULL,
    sell_raw REAL NOT NULL,
    spread REAL NOT NULL,
    margin_buy REAL NOT NULL DEFAULT 0,
    margin_sell REAL NOT NULL DEFAULT 0,
    is_manual INTEGER NOT NULL DEFAULT 0,
    updated_by INTEGER,
    effective_from TEXT NOT NULL, -- inclusive
    effective_until TEXT, -- exclusive; NULL while the record is open
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (gold_type_id) REFERENCES gold_types(id) ON DELETE CASCADE,
    FOREIGN KEY (updated_by) REFERENCES users(id) ON DELETE SET NULL
);
"""

CURRENCIES_DDL = f"""
CREATE TABLE IF NOT EXISTS currencies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE, -- ISO 4217
    name_ar TEXT NOT NULL,
    name_en TEXT,
    symbol TEXT,
    flag_emoji TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    is_base INTEGER NOT NULL DEFAULT 0,
    display_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

CURRENCY_RATES_DDL = f"""
CREATE TABLE IF NOT EXISTS currency_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    currency_id INTEGER NOT NULL,
    buy_raw REAL NOT NULL,
    sell_raw REAL NOT NULL,
    spread REAL NOT NULL,
    margin_buy REAL NOT NULL DEFAULT 0,
    margin_sell REAL NOT NULL DEFAULT 0,
    is_manual INTEGER NOT NULL DEFAULT 0,
    updated_by INTEGER,
    effective_from TEXT NOT NULL,
    effective_until TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (currency_id) REFERENCES currencies(id) ON DELETE CASCADE,
    FOREIGN KEY (updated_by) REFERENCES users(id) ON DELETE SET NULL
);
"""

STORE_SETTINGS_DDL = f"""
CREATE TABLE IF NOT EXISTS store_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    setting_key TEXT NOT NULL UNIQUE,
    setting_value TEXT,
    setting_type TEXT NOT NULL DEFAULT 'string'
        CHECK (setting_type IN ('string','integer','decimal','boolean','json')),
    description TEXT,
    updated_by INTEGER,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (updated_by) REFERENCES users(id) ON DELETE SET NULL
);
"""

AUDIT_LOG_DDL = f"""
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT, -- numeric ids and setting keys
    old_values TEXT,
    new_values TEXT,
    ip_address TEXT,
    user_agent TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE SET NULL
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

GOLD_PRICES_LOOKUP_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_gold_prices_type_from "
    "ON gold_prices(gold_type_id, effective_from);"
)
CURRENCY_RATES_LOOKUP_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_currency_rates_currency_from "
    "ON currency_rates(currency_id, effective_from);"
)
SESSIONS_USER_INDEX_DDL = "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);"
AUDIT_ENTITY_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id);"
)

# At most one open record per instrument (added by migration v2).
GOLD_PRICES_OPEN_INDEX_DDL = """
CREATE UNIQUE INDEX IF NOT EXISTS uq_gold_prices_open
ON gold_prices(gold_type_id)
WHERE effective_until IS NULL;
"""
CURRENCY_RATES_OPEN_INDEX_DDL = """
CREATE UNIQUE INDEX IF NOT EXISTS uq_currency_rates_open
ON currency_rates(currency_id)
WHERE effective_until IS NULL;
"""

DDL_ORDER: Sequence[str] = (
    USERS_DDL,
    SESSIONS_DDL,
    GOLD_TYPES_DDL,
    GOLD_PRICES_DDL,
    CURRENCIES_DDL,
    CURRENCY_RATES_DDL,
    STORE_SETTINGS_DDL,
    AUDIT_LOG_DDL,
    METADATA_DDL,
)

INDEX_ORDER: Sequence[str] = (
    GOLD_PRICES_LOOKUP_INDEX_DDL,
    CURRENCY_RATES_LOOKUP_INDEX_DDL,
    SESSIONS_USER_INDEX_DDL,
    AUDIT_ENTITY_INDEX_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables idempotently.

    Parameters
    ----------
    path: Path to SQLite database file.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        for ddl in INDEX_ORDER:
            cur.execute(ddl)
        conn.commit()
    finally:
        conn.close()
