"""Typed key/value store settings backed by the `store_settings` table.

Every row carries a type tag; `SettingType` maps each tag to an explicit
encode/decode pair so values round-trip through the text column. Reads are
resilient: a missing key or a database error yields the caller's default, and
an unparseable stored value decodes to the type's zero value.

Settings groups:
  - store info: name, address and contact handles shown on the storefront
  - market hours: open/close "HH:MM", IANA timezone, open weekdays (0=Sunday)
  - margins: default buy/sell fractions for gold and currencies
  - security: session timeout, login attempt limit, lockout duration
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from goldmarket.db.dal import Database, utc_now
from goldmarket.models.constants import DEFAULT_SETTINGS, SettingType
from .audit import SYSTEM, Actor, AuditLog

logger = logging.getLogger("goldmarket.settings")

ENTITY_TYPE = "STORE_SETTING"
DEFAULT_MARKET_DAYS = [1, 2, 3, 4, 5, 6]
DEFAULT_TIMEZONE = "Asia/Riyadh"
_TRUTHY = ("1", "true", "True", "yes", "on")


def _decode_int(raw: Optional[str]) -> int:
    try:
        return int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        try:
            return int(float(raw))  # type: ignore[arg-type]
        except (TypeError, ValueError, OverflowError):
            return 0


def _decode_float(raw: Optional[str]) -> float:
    try:
        return float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0


def _decode_json(raw: Optional[str]) -> Any:
    try:
        return json.loads(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return {}


def _encode_bool(value: Any) -> str:
    if isinstance(value, str):
        return "1" if value.strip() in _TRUTHY else "0"
    return "1" if value else "0"


_CODECS: Dict[SettingType, Tuple[Callable[[Any], str], Callable[[Optional[str]], Any]]] = {
    SettingType.STRING: (str, lambda raw: raw or ""),
    SettingType.INTEGER: (str, _decode_int),
    SettingType.DECIMAL: (str, _decode_float),
    SettingType.BOOLEAN: (_encode_bool, lambda raw: raw in ("1", "true")),
    SettingType.JSON: (lambda value: json.dumps(value, ensure_ascii=False), _decode_json),
}


def encode_value(setting_type: SettingType, value: Any) -> str:
    return _CODECS[SettingType(setting_type)][0](value)


def decode_value(setting_type: str, raw: Optional[str]) -> Any:
    try:
        kind = SettingType(setting_type)
    except ValueError:
        kind = SettingType.STRING
    return _CODECS[kind][1](raw)


def _entry_from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "key": row["setting_key"],
        "value": decode_value(row["setting_type"], row["setting_value"]),
        "type": row["setting_type"],
        "description": row["description"] or "",
        "updated_at": row["updated_at"],
    }


def _parse_days(raw: Any) -> List[int]:
    if isinstance(raw, list):
        days = [int(d) for d in raw]
    elif not raw:
        return list(DEFAULT_MARKET_DAYS)
    else:
        days = [int(part) for part in str(raw).split(",") if part.strip().isdigit()]
    return [d for d in days if 0 <= d <= 6]


class SettingsStore:
    STORE_INFO_FIELDS = {
        "name": "store_name",
        "name_en": "store_name_en",
        "address": "store_address",
        "phone": "store_phone",
        "whatsapp": "store_whatsapp",
        "instagram": "store_instagram",
        "facebook": "store_facebook",
    }
    MARKET_FIELDS = {
        "open_time": "market_open_time",
        "close_time": "market_close_time",
        "timezone": "market_timezone",
        "days": "market_days",
    }
    SECURITY_FIELDS = {
        "session_timeout": "session_timeout",
        "max_login_attempts": "max_login_attempts",
        "lockout_duration": "lockout_duration",
    }

    def __init__(self, db: Database, audit: Optional[AuditLog] = None):
        self.db = db
        self.audit = audit or AuditLog(db)

    # ------------------------------------------------------------------
    # Single keys
    def get(self, key: str, default: Any = None) -> Any:
        try:
            row = self.db.fetch_one(
                "SELECT setting_value, setting_type FROM store_settings WHERE setting_key = ?",
                (key,),
            )
        except sqlite3.Error:
            logger.exception("setting read failed", extra={"context": {"key": key}})
            return default
        if row is None:
            return default
        return decode_value(row["setting_type"], row["setting_value"])

    def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        row = self.db.fetch_one("SELECT * FROM store_settings WHERE setting_key = ?", (key,))
        return _entry_from_row(row) if row else None

    def list_entries(self) -> List[Dict[str, Any]]:
        rows = self.db.fetch_all("SELECT * FROM store_settings ORDER BY setting_key")
        return [_entry_from_row(r) for r in rows]

    def get_all(self) -> Dict[str, Any]:
        return {entry["key"]: entry["value"] for entry in self.list_entries()}

    def set(
        self,
        key: str,
        value: Any,
        setting_type: SettingType = SettingType.STRING,
        actor: Actor = SYSTEM,
        description: Optional[str] = None,
    ) -> Any:
        """Upsert a setting and return its decoded value."""
        kind = SettingType(setting_type)
        raw = encode_value(kind, value)
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO store_settings
                    (setting_key, setting_value, setting_type, description, updated_by, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(setting_key) DO UPDATE SET
                    setting_value = excluded.setting_value,
                    setting_type = excluded.setting_type,
                    description = COALESCE(excluded.description, store_settings.description),
                    updated_by = excluded.updated_by,
                    updated_at = excluded.updated_at
                """,
                (key, raw, kind.value, description, actor.user_id, utc_now()),
            )
            self.audit.record(
                "SET",
                ENTITY_TYPE,
                key,
                new_values={"value": value, "type": kind.value},
                actor=actor,
                conn=conn,
            )
        return decode_value(kind.value, raw)

    def delete(self, key: str, actor: Actor = SYSTEM) -> bool:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM store_settings WHERE setting_key = ?", (key,)
            ).fetchone()
            if row is None:
                return False
            self.audit.record(
                "DELETE",
                ENTITY_TYPE,
                key,
                old_values=_entry_from_row(dict(row)),
                actor=actor,
                conn=conn,
            )
            conn.execute("DELETE FROM store_settings WHERE setting_key = ?", (key,))
        return True

    # ------------------------------------------------------------------
    # Grouped accessors
    def get_store_info(self) -> Dict[str, str]:
        return {field: self.get(key, "") for field, key in self.STORE_INFO_FIELDS.items()}

    def update_store_info(self, changes: Dict[str, Any], actor: Actor = SYSTEM) -> Dict[str, str]:
        for field, key in self.STORE_INFO_FIELDS.items():
            if changes.get(field) is not None:
                self.set(key, changes[field], SettingType.STRING, actor)
        return self.get_store_info()

    def get_market_settings(self) -> Dict[str, Any]:
        return {
            "open_time": self.get("market_open_time", ""),
            "close_time": self.get("market_close_time", ""),
            "timezone": self.get("market_timezone", ""),
            "days": _parse_days(self.get("market_days", "")),
        }

    def update_market_settings(self, changes: Dict[str, Any], actor: Actor = SYSTEM) -> Dict[str, Any]:
        for field, key in self.MARKET_FIELDS.items():
            value = changes.get(field)
            if value is None:
                continue
            if field == "days" and isinstance(value, list):
                value = ",".join(str(d) for d in value)
            self.set(key, value, SettingType.STRING, actor)
        return self.get_market_settings()

    def get_margin_settings(self) -> Dict[str, Dict[str, float]]:
        return {
            "gold": {
                "buy": self.get("default_gold_margin_buy", 0.02),
                "sell": self.get("default_gold_margin_sell", 0.02),
            },
            "currency": {
                "buy": self.get("default_currency_margin_buy", 0.015),
                "sell": self.get("default_currency_margin_sell", 0.015),
            },
        }

    def update_margin_settings(
        self,
        gold: Optional[Dict[str, Any]] = None,
        currency: Optional[Dict[str, Any]] = None,
        actor: Actor = SYSTEM,
    ) -> Dict[str, Dict[str, float]]:
        for group, values in (("gold", gold), ("currency", currency)):
            for side in ("buy", "sell"):
                if values and values.get(side) is not None:
                    self.set(f"default_{group}_margin_{side}", values[side], SettingType.DECIMAL, actor)
        return self.get_margin_settings()

    def get_security_settings(self) -> Dict[str, int]:
        return {
            "session_timeout": self.get("session_timeout", 3600),
            "max_login_attempts": self.get("max_login_attempts", 5),
            "lockout_duration": self.get("lockout_duration", 900),
        }

    def update_security_settings(self, changes: Dict[str, Any], actor: Actor = SYSTEM) -> Dict[str, int]:
        for field, key in self.SECURITY_FIELDS.items():
            if changes.get(field) is not None:
                self.set(key, changes[field], SettingType.INTEGER, actor)
        return self.get_security_settings()

    def reset_to_defaults(self, actor: Actor = SYSTEM) -> None:
        for key, (value, setting_type, description) in DEFAULT_SETTINGS.items():
            self.set(key, value, SettingType(setting_type), actor, description)
        logger.info("settings reset to defaults", extra={"context": {"user_id": actor.user_id}})

    # ------------------------------------------------------------------
    # Market hours
    def is_market_open(self, now: Optional[datetime] = None) -> bool:
        """True when `now` (aware; default current UTC time) falls inside market hours.

        Weekday numbering is 0=Sunday..6=Saturday. Times compare as "HH:MM"
        strings, so a window whose close precedes its open never matches.
        """
        market = self.get_market_settings()
        tz_name = market["timezone"] or DEFAULT_TIMEZONE
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.error("unknown market timezone", extra={"context": {"timezone": tz_name}})
            return False
        local = (now or datetime.now(timezone.utc)).astimezone(tz)
        weekday = (local.weekday() + 1) % 7
        if weekday not in market["days"]:
            return False
        current = local.strftime("%H:%M")
        return market["open_time"] <= current < market["close_time"]
