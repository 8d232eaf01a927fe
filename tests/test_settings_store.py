from datetime import datetime, timezone

import pytest

from goldmarket.models.constants import DEFAULT_SETTINGS, SettingType
from goldmarket.services.audit import Actor
from goldmarket.services.settings_store import decode_value, encode_value

# 2024-01-01 is a Monday; Riyadh is UTC+3 year round.
MONDAY_NOON_RIYADH = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
SUNDAY_NOON_RIYADH = datetime(2024, 1, 7, 9, 0, tzinfo=timezone.utc)
MONDAY_LATE_RIYADH = datetime(2024, 1, 1, 20, 30, tzinfo=timezone.utc)


def test_typed_round_trip(settings_store):
    settings_store.set("max_login_attempts", 7, SettingType.INTEGER)
    assert settings_store.get("max_login_attempts") == 7

    settings_store.set("feature_flag", True, SettingType.BOOLEAN)
    assert settings_store.get("feature_flag") is True

    settings_store.set("ratio", 0.125, SettingType.DECIMAL)
    assert settings_store.get("ratio") == 0.125

    settings_store.set("layout", {"columns": 3, "theme": "dark"}, SettingType.JSON)
    assert settings_store.get("layout") == {"columns": 3, "theme": "dark"}


@pytest.mark.parametrize(
    "setting_type,raw,expected",
    [
        ("integer", "abc", 0),
        ("integer", "12.7", 12),
        ("decimal", "n/a", 0.0),
        ("boolean", "yes", False),
        ("boolean", "true", True),
        ("json", "{broken", {}),
        ("mystery", "kept", "kept"),
    ],
)
def test_decode_falls_back_to_zero_values(setting_type, raw, expected):
    assert decode_value(setting_type, raw) == expected


def test_encode_boolean_accepts_strings():
    assert encode_value(SettingType.BOOLEAN, "on") == "1"
    assert encode_value(SettingType.BOOLEAN, "off") == "0"
    assert encode_value(SettingType.BOOLEAN, 0) == "0"


def test_get_missing_key_returns_default(settings_store):
    assert settings_store.get("nope") is None
    assert settings_store.get("nope", 42) == 42


def test_set_is_audited(settings_store, audit, admin_id):
    settings_store.set("store_phone", "+966 11 111 1111", actor=Actor(user_id=admin_id))
    entries = audit.entries("STORE_SETTING", "store_phone", "SET")
    assert entries[0]["new_values"] == {"value": "+966 11 111 1111", "type": "string"}
    assert entries[0]["user_id"] == admin_id


def test_delete(settings_store):
    settings_store.set("temp", "x")
    assert settings_store.delete("temp") is True
    assert settings_store.get_entry("temp") is None
    assert settings_store.delete("temp") is False


def test_seeded_groups(settings_store):
    assert settings_store.get_store_info()["name_en"] == "Princess Gold"
    market = settings_store.get_market_settings()
    assert market == {
        "open_time": "08:00",
        "close_time": "22:00",
        "timezone": "Asia/Riyadh",
        "days": [1, 2, 3, 4, 5, 6],
    }
    assert settings_store.get_margin_settings() == {
        "gold": {"buy": 0.02, "sell": 0.02},
        "currency": {"buy": 0.015, "sell": 0.015},
    }
    assert settings_store.get_security_settings() == {
        "session_timeout": 3600,
        "max_login_attempts": 5,
        "lockout_duration": 900,
    }


def test_group_updates_only_touch_given_fields(settings_store):
    settings_store.update_market_settings({"days": [0, 1, 2], "close_time": None})
    market = settings_store.get_market_settings()
    assert market["days"] == [0, 1, 2]
    assert market["close_time"] == "22:00"

    margins = settings_store.update_margin_settings(gold={"buy": 0.03, "sell": None})
    assert margins["gold"] == {"buy": 0.03, "sell": 0.02}

    security = settings_store.update_security_settings({"max_login_attempts": 3})
    assert security["max_login_attempts"] == 3


def test_reset_to_defaults(settings_store):
    settings_store.set("store_name_en", "Changed")
    settings_store.update_security_settings({"lockout_duration": 60})
    settings_store.reset_to_defaults()
    assert settings_store.get("store_name_en") == DEFAULT_SETTINGS["store_name_en"][0]
    assert settings_store.get("lockout_duration") == 900


def test_market_hours(settings_store):
    assert settings_store.is_market_open(MONDAY_NOON_RIYADH) is True
    assert settings_store.is_market_open(SUNDAY_NOON_RIYADH) is False
    assert settings_store.is_market_open(MONDAY_LATE_RIYADH) is False


def test_overnight_window_never_matches(settings_store):
    settings_store.update_market_settings({"open_time": "22:00", "close_time": "02:00"})
    assert settings_store.is_market_open(MONDAY_LATE_RIYADH) is False


def test_unknown_timezone_reports_closed(settings_store):
    settings_store.set("market_timezone", "Mars/Olympus")
    assert settings_store.is_market_open(MONDAY_NOON_RIYADH) is False
