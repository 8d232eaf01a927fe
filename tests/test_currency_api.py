from conftest import currency_id


def _create(client, csrf, cid, buy, sell, **extra):
    body = {"currencyId": cid, "buyRate": buy, "sellRate": sell, **extra}
    return client.post("/api/currency/rates", json=body, headers={"X-CSRF-Token": csrf})


def test_currencies_are_seeded(client):
    body = client.get("/api/currency/currencies").json()
    assert body["count"] == 10
    usd = body["data"][0]
    assert usd["code"] == "USD"
    assert usd["isBase"] is True


def test_rate_lookup_by_code_and_convert(client, admin_csrf, db):
    assert _create(client, admin_csrf, currency_id(db, "USD"), 1.0, 1.0).status_code == 201
    assert _create(client, admin_csrf, currency_id(db, "SAR"), 3.75, 3.76).status_code == 201

    sar = client.get("/api/currency/code/sar").json()["data"]
    assert sar["currencyCode"] == "SAR"
    assert sar["buyRate"] == 3.75

    resp = client.post("/api/currency/convert", json={"amount": 100, "from": "usd", "to": "SAR", "type": "buy"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "amount": 100.0,
        "from": "USD",
        "to": "SAR",
        "type": "buy",
        "result": 375.0,
        "rate": 3.75,
    }


def test_convert_rejects_bad_input(client):
    resp = client.post("/api/currency/convert", json={"amount": -1, "from": "USD", "to": "SAR"})
    assert resp.status_code == 400
    resp = client.post("/api/currency/convert", json={"amount": 1, "from": "USD", "to": "SAR", "type": "mid"})
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "type"


def test_unknown_code_is_404(client):
    resp = client.get("/api/currency/code/XXX")
    assert resp.status_code == 404
    assert resp.json()["code"] == "RATE_NOT_FOUND"


def test_update_closed_rate_amends_history(client, admin_csrf, db):
    eur = currency_id(db, "EUR")
    old = _create(client, admin_csrf, eur, 0.91, 0.93).json()["data"]
    _create(client, admin_csrf, eur, 0.92, 0.94)

    resp = client.put(
        f"/api/currency/rates/{old['id']}", json={"sellRate": 0.95}, headers={"X-CSRF-Token": admin_csrf}
    )
    assert resp.status_code == 200
    amended = resp.json()["data"]
    assert amended["id"] == old["id"]
    assert amended["sellRate"] == 0.95
    assert amended["effectiveUntil"] is not None
    assert client.get(f"/api/currency/history/{eur}").json()["count"] == 2


def test_bulk_update_reports_per_entry(client, admin_csrf, db):
    resp = client.post(
        "/api/currency/bulk-update",
        json={
            "rates": [
                {"currencyId": currency_id(db, "AED"), "buyRate": 3.67, "sellRate": 3.68},
                {"currencyId": currency_id(db, "KWD"), "sellRate": 0.31},
                {"currencyId": 9999, "buyRate": 1, "sellRate": 2},
            ]
        },
        headers={"X-CSRF-Token": admin_csrf},
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["totalProcessed"] == 3
    assert data["successCount"] == 1
    assert data["errorCount"] == 2
    assert data["updated"][0]["currencyCode"] == "AED"
    assert {e["currencyId"] for e in data["errors"]} == {currency_id(db, "KWD"), 9999}


def test_bulk_update_requires_entries(client, admin_csrf):
    resp = client.post("/api/currency/bulk-update", json={"rates": []}, headers={"X-CSRF-Token": admin_csrf})
    assert resp.status_code == 400


def test_statistics_for_unknown_currency(client):
    resp = client.get("/api/currency/statistics/9999")
    assert resp.status_code == 404
    assert resp.json()["code"] == "INSTRUMENT_NOT_FOUND"


def test_compare_lists_priced_currencies(client, admin_csrf, db):
    _create(client, admin_csrf, currency_id(db, "SAR"), 3.70, 3.80)
    rows = client.get("/api/currency/compare").json()["data"]
    assert len(rows) == 1
    assert rows[0]["code"] == "SAR"
    assert rows[0]["spreadPercentage"] == round(0.1 / 3.7 * 100, 4)
