from fastapi.testclient import TestClient

from conftest import STAFF_PASSWORD, login


def test_public_store_info_and_market_status(client):
    store = client.get("/api/settings/store").json()["data"]
    assert store["nameEn"] == "Princess Gold"

    status = client.get("/api/settings/market/status").json()["data"]
    assert isinstance(status["isOpen"], bool)
    assert status["settings"]["timezone"] == "Asia/Riyadh"
    assert status["settings"]["days"] == [1, 2, 3, 4, 5, 6]


def test_admin_listing_requires_admin(app, client, make_user):
    with TestClient(app) as anonymous:
        assert anonymous.get("/api/settings/").status_code == 401

    body = client.get("/api/settings/").json()
    keys = {entry["key"] for entry in body["data"]}
    assert {"store_name", "market_days", "session_timeout"} <= keys

    make_user("setmanager", role="manager")
    with TestClient(app) as manager:
        login(manager, "setmanager", STAFF_PASSWORD)
        assert manager.get("/api/settings/market").status_code == 403


def test_update_market_keeps_timezone_intact(client, admin_csrf):
    resp = client.put(
        "/api/settings/market",
        json={"openTime": "09:30", "timezone": "Africa/Cairo", "days": [0, 1, 2, 3, 4]},
        headers={"X-CSRF-Token": admin_csrf},
    )
    assert resp.status_code == 200, resp.text
    market = resp.json()["data"]
    assert market["openTime"] == "09:30"
    assert market["closeTime"] == "22:00"
    assert market["timezone"] == "Africa/Cairo"
    assert market["days"] == [0, 1, 2, 3, 4]


def test_update_market_validates(client, admin_csrf):
    bad_time = client.put("/api/settings/market", json={"openTime": "25:00"}, headers={"X-CSRF-Token": admin_csrf})
    assert bad_time.status_code == 400
    bad_zone = client.put("/api/settings/market", json={"timezone": "Nowhere/City"}, headers={"X-CSRF-Token": admin_csrf})
    assert bad_zone.status_code == 400
    bad_day = client.put("/api/settings/market", json={"days": [7]}, headers={"X-CSRF-Token": admin_csrf})
    assert bad_day.status_code == 400


def test_store_info_is_sanitized(client, admin_csrf):
    resp = client.put(
        "/api/settings/store",
        json={"name": "<b>Gold & Co</b>"},
        headers={"X-CSRF-Token": admin_csrf},
    )
    assert resp.status_code == 200
    assert client.get("/api/settings/store").json()["data"]["name"] == (
        "&lt;b&gt;Gold &amp; Co&lt;&#x2F;b&gt;"
    )


def test_margins_and_security_groups(client, admin_csrf):
    resp = client.put(
        "/api/settings/margins",
        json={"gold": {"buy": 0.03}},
        headers={"X-CSRF-Token": admin_csrf},
    )
    assert resp.json()["data"]["gold"] == {"buy": 0.03, "sell": 0.02}

    resp = client.put(
        "/api/settings/security",
        json={"maxLoginAttempts": 4},
        headers={"X-CSRF-Token": admin_csrf},
    )
    assert resp.json()["data"]["maxLoginAttempts"] == 4
    assert client.get("/api/settings/security").json()["data"]["sessionTimeout"] == 3600


def test_single_key_crud(client, admin_csrf):
    resp = client.put(
        "/api/settings/display_columns",
        json={"value": 3, "type": "integer", "description": "Board columns"},
        headers={"X-CSRF-Token": admin_csrf},
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "key": "display_columns",
        "value": 3,
        "type": "integer",
        "description": "Board columns",
        "updatedAt": resp.json()["data"]["updatedAt"],
    }
    assert client.get("/api/settings/display_columns").json()["data"]["value"] == 3

    deleted = client.delete("/api/settings/display_columns", headers={"X-CSRF-Token": admin_csrf})
    assert deleted.status_code == 200
    missing = client.get("/api/settings/display_columns")
    assert missing.status_code == 404
    assert missing.json()["code"] == "SETTING_NOT_FOUND"


def test_reset(client, admin_csrf):
    client.put("/api/settings/store", json={"nameEn": "Other"}, headers={"X-CSRF-Token": admin_csrf})
    assert client.post("/api/settings/reset", headers={"X-CSRF-Token": admin_csrf}).status_code == 200
    assert client.get("/api/settings/store").json()["data"]["nameEn"] == "Princess Gold"


def test_single_key_put_checks_market_values(client, admin_csrf):
    headers = {"X-CSRF-Token": admin_csrf}
    bad_day = client.put("/api/settings/market_days", json={"value": "9"}, headers=headers)
    assert bad_day.status_code == 400
    assert bad_day.json()["errors"][0]["field"] == "value"

    bad_time = client.put("/api/settings/market_open_time", json={"value": "9am"}, headers=headers)
    assert bad_time.status_code == 400

    bad_margin = client.put(
        "/api/settings/default_gold_margin_buy", json={"value": 1.5, "type": "decimal"}, headers=headers
    )
    assert bad_margin.status_code == 400

    status = client.get("/api/settings/market/status")
    assert status.status_code == 200
    assert status.json()["data"]["settings"]["days"] == [1, 2, 3, 4, 5, 6]


def test_single_key_put_stores_market_values(client, admin_csrf):
    headers = {"X-CSRF-Token": admin_csrf}
    resp = client.put("/api/settings/market_days", json={"value": [0, 2, 4]}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["value"] == "0,2,4"

    zone = client.put("/api/settings/market_timezone", json={"value": "Africa/Cairo"}, headers=headers)
    assert zone.status_code == 200
    assert zone.json()["data"]["value"] == "Africa/Cairo"

    market = client.get("/api/settings/market/status").json()["data"]["settings"]
    assert market["days"] == [0, 2, 4]
    assert market["timezone"] == "Africa/Cairo"


def test_stored_out_of_range_days_are_ignored(client, settings_store):
    settings_store.set("market_days", "1,9,3")
    status = client.get("/api/settings/market/status")
    assert status.status_code == 200
    assert status.json()["data"]["settings"]["days"] == [1, 3]
