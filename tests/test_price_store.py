import sqlite3

import pytest

from conftest import currency_id, karat_id
from goldmarket.core.errors import NotFoundError, PricingError, ValidationError
from goldmarket.db.dal import utc_now
from goldmarket.services.audit import Actor


def _open_count(db, table, column, instrument):
    row = db.fetch_one(
        f"SELECT COUNT(*) AS n FROM {table} WHERE {column} = ? AND effective_until IS NULL",
        (instrument,),
    )
    return row["n"]


def test_create_then_get_current(gold_store, db, admin_id):
    k21 = karat_id(db, 21)
    record = gold_store.create(k21, 200.0, 204.0, 0.02, 0.01, actor=Actor(user_id=admin_id))
    current = gold_store.get_current(k21)
    assert current.id == record.id
    assert current.is_open
    assert current.spread == 4.0
    assert current.instrument["karat"] == 21
    assert current.final("buy") == pytest.approx(204.0)
    assert current.final("sell") == pytest.approx(201.96)


def test_second_create_closes_the_first(gold_store, db):
    k24 = karat_id(db, 24)
    first = gold_store.create(k24, 240.0, 245.0)
    second = gold_store.create(k24, 241.0, 246.0)

    closed = gold_store.find_by_id(first.id)
    assert closed.effective_until is not None
    assert closed.effective_until <= second.effective_from
    assert not closed.is_open
    assert gold_store.get_current(k24).id == second.id
    assert _open_count(db, "gold_prices", "gold_type_id", k24) == 1


def test_many_creates_keep_a_single_open_record(currency_store, db):
    sar = currency_id(db, "SAR")
    for i in range(5):
        currency_store.create(sar, 3.70 + i / 100, 3.80 + i / 100)
    assert _open_count(db, "currency_rates", "currency_id", sar) == 1
    history = currency_store.history(sar)
    assert len(history) == 5
    # newest first, and each version ends where its successor starts
    for newer, older in zip(history, history[1:]):
        assert older.effective_until == newer.effective_from


def test_second_open_record_is_rejected_by_the_index(gold_store, db):
    k18 = karat_id(db, 18)
    gold_store.create(k18, 150.0, 155.0)
    with pytest.raises(sqlite3.IntegrityError):
        db.execute(
            "INSERT INTO gold_prices (gold_type_id, buy_raw, sell_raw, spread, effective_from) "
            "VALUES (?, 1, 2, 1, '2000-01-01T00:00:00.000000Z')",
            (k18,),
        )


def test_create_validates_input(gold_store, db):
    k21 = karat_id(db, 21)
    with pytest.raises(ValidationError) as exc:
        gold_store.create(k21, 0, 10)
    assert exc.value.code == "INVALID_PRICES"
    with pytest.raises(ValidationError) as exc:
        gold_store.create(k21, 10, 11, margin_buy=1.5)
    assert exc.value.code == "INVALID_MARGIN"
    with pytest.raises(NotFoundError) as exc:
        gold_store.create(9999, 10, 11)
    assert exc.value.code == "INSTRUMENT_NOT_FOUND"


def test_update_open_record_opens_a_new_version(gold_store, db):
    k22 = karat_id(db, 22)
    original = gold_store.create(k22, 210.0, 214.0, 0.01, 0.01)
    revised = gold_store.update(original.id, {"buy": 211.0})

    assert revised.id != original.id
    assert revised.buy == 211.0
    assert revised.sell == 214.0
    assert revised.margin_buy == 0.01
    assert gold_store.find_by_id(original.id).effective_until is not None


def test_update_closed_record_amends_in_place(gold_store, db, audit):
    k22 = karat_id(db, 22)
    old = gold_store.create(k22, 210.0, 214.0)
    gold_store.create(k22, 212.0, 216.0)

    amended = gold_store.update(old.id, {"sell": 215.0})
    assert amended.id == old.id
    assert amended.sell == 215.0
    assert amended.spread == 5.0
    assert amended.effective_until is not None
    assert _open_count(db, "gold_prices", "gold_type_id", k22) == 1
    entries = audit.entries("GOLD_PRICE", old.id, "UPDATE")
    assert entries and entries[0]["old_values"]["sell"] == 214.0


def test_delete_removes_record_and_audits(currency_store, db, audit, admin_id):
    eur = currency_id(db, "EUR")
    record = currency_store.create(eur, 0.91, 0.93)
    currency_store.delete(record.id, Actor(user_id=admin_id))
    assert currency_store.find_by_id(record.id) is None
    assert currency_store.get_current(eur) is None
    assert audit.entries("CURRENCY_RATE", record.id, "DELETE")
    with pytest.raises(NotFoundError):
        currency_store.delete(record.id)


def test_list_current_includes_unpriced_instruments(gold_store, db):
    gold_store.create(karat_id(db, 24), 240.0, 245.0)
    listed = gold_store.list_current()
    assert [r.instrument["karat"] for r in listed] == [24, 22, 21, 18]
    priced = [r for r in listed if r.has_price]
    assert len(priced) == 1 and priced[0].buy == 240.0


def test_convert_uses_final_rates(currency_store, db):
    currency_store.create(currency_id(db, "USD"), 1.0, 1.0)
    currency_store.create(currency_id(db, "SAR"), 3.75, 3.76)
    result = currency_store.convert(100, "USD", "SAR", "buy")
    assert result.result == 375.0
    assert result.rate == 3.75


def test_convert_errors(currency_store, db):
    currency_store.create(currency_id(db, "USD"), 1.0, 1.0)
    with pytest.raises(ValidationError) as exc:
        currency_store.convert(0, "USD", "SAR")
    assert exc.value.code == "INVALID_AMOUNT"
    with pytest.raises(NotFoundError) as exc:
        currency_store.convert(10, "USD", "SAR")
    assert exc.value.code == "RATE_NOT_FOUND"
    currency_store.create(currency_id(db, "SAR"), 3.75, 3.76)
    with pytest.raises(PricingError):
        currency_store.convert(10, "USD", "SAR", "mid")


def test_gold_convert_by_karat(gold_store, db):
    gold_store.create(karat_id(db, 24), 240.0, 245.0)
    gold_store.create(karat_id(db, 18), 180.0, 185.0)
    result = gold_store.convert(10, 24, 18, "buy")
    assert result.result == 7.5
    assert result.as_dict()["from"] == "24"


def test_statistics_and_compare(currency_store, db):
    sar = currency_id(db, "SAR")
    currency_store.create(sar, 3.70, 3.80)
    currency_store.create(sar, 3.72, 3.78)
    stats = currency_store.statistics(sar)
    assert stats["total_records"] == 2
    assert stats["min_buy"] == 3.70
    assert stats["max_sell"] == 3.80
    assert stats["avg_buy"] == 3.71

    compared = currency_store.compare()
    assert len(compared) == 1
    record, pct = compared[0]
    assert record.instrument["code"] == "SAR"
    assert pct == round((3.78 - 3.72) / 3.72 * 100, 4)


def test_auto_update_versions_every_karat(gold_store, db, admin_id):
    records = gold_store.auto_update(250.0, Actor(user_id=admin_id))
    assert len(records) == 4
    by_karat = {r.instrument["karat"]: r for r in records}
    assert by_karat[24].buy == round(250.0 * 0.9999 * 0.98, 2)
    assert all(r.margin_buy == 0.02 and r.is_open for r in records)

    gold_store.auto_update(260.0)
    for karat in (18, 21, 22, 24):
        assert _open_count(db, "gold_prices", "gold_type_id", karat_id(db, karat)) == 1


def test_auto_update_is_gold_only(currency_store):
    with pytest.raises(ValidationError):
        currency_store.auto_update(100.0)


def test_bulk_update_collects_errors(currency_store, db):
    outcome = currency_store.bulk_update(
        [
            {"instrument_id": currency_id(db, "EUR"), "buy": 0.91, "sell": 0.93},
            {"instrument_id": currency_id(db, "AED"), "buy": None, "sell": 3.68},
            {"instrument_id": 9999, "buy": 1.0, "sell": 1.1},
            {"instrument_id": currency_id(db, "KWD"), "buy": -1, "sell": 0.31},
        ]
    )
    assert outcome["total_processed"] == 4
    assert outcome["success_count"] == 1
    assert outcome["error_count"] == 3
    assert outcome["errors"][0]["error"] == "Missing required fields"
    assert outcome["updated"][0].instrument["code"] == "EUR"


def test_create_writes_audit_entry_with_actor(gold_store, db, audit, admin_id):
    record = gold_store.create(karat_id(db, 21), 200.0, 204.0, actor=Actor(user_id=admin_id, ip_address="10.0.0.1"))
    entries = audit.entries("GOLD_PRICE", record.id, "CREATE")
    assert len(entries) == 1
    assert entries[0]["user_id"] == admin_id
    assert entries[0]["ip_address"] == "10.0.0.1"
    assert entries[0]["new_values"]["buy"] == 200.0


def test_history_end_date_includes_that_day(currency_store, db):
    aed = currency_id(db, "AED")
    currency_store.create(aed, 3.67, 3.68, 0.01, 0.01)
    today = utc_now()[:10]

    assert len(currency_store.history(aed, start_date=today, end_date=today)) == 1
    assert currency_store.history(aed, end_date="2000-01-01") == []
