from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from goldmarket.core.deps import actor_from, get_currency_store, require_admin, require_staff
from goldmarket.core.errors import NotFoundError
from goldmarket.core.middleware import SanitizingRoute
from goldmarket.models import ok
from goldmarket.models.prices import (
    BulkUpdateIn,
    Currency,
    CurrencyComparison,
    CurrencyConvertIn,
    CurrencyRate,
    CurrencyRateIn,
    CurrencyRateUpdate,
    PriceStatistics,
)
from goldmarket.services.price_store import PriceVersionStore

router = APIRouter(prefix="/api/currency", tags=["currency"], route_class=SanitizingRoute)


def _rates(records):  # type: ignore[no-untyped-def]
    return [CurrencyRate.from_record(r) for r in records]


# Public -----------------------------------------------------------


@router.get("/rates", summary="Current rate of every active currency")
async def list_rates(store: PriceVersionStore = Depends(get_currency_store)):
    rates = _rates(store.list_current())
    return ok(rates, count=len(rates))


@router.get("/currencies", summary="Active currencies")
async def list_currencies(store: PriceVersionStore = Depends(get_currency_store)):
    currencies = [Currency(**row) for row in store.list_instruments()]
    return ok(currencies, count=len(currencies))


@router.get("/rates/{rate_id}", summary="One rate record by id")
async def get_rate(rate_id: int, store: PriceVersionStore = Depends(get_currency_store)):
    record = store.find_by_id(rate_id)
    if record is None:
        raise NotFoundError("Currency rate not found")
    return ok(CurrencyRate.from_record(record))


@router.get("/current/{currency_id}", summary="Rate currently in force for a currency")
async def get_current(currency_id: int, store: PriceVersionStore = Depends(get_currency_store)):
    record = store.get_current(currency_id)
    if record is None:
        raise NotFoundError("No current rate for this currency", "RATE_NOT_FOUND")
    return ok(CurrencyRate.from_record(record))


@router.get("/code/{code}", summary="Rate currently in force by ISO code")
async def get_by_code(code: str, store: PriceVersionStore = Depends(get_currency_store)):
    record = store.get_current_by_code(code)
    if record is None:
        raise NotFoundError(f"No current rate for {code.upper()}", "RATE_NOT_FOUND")
    return ok(CurrencyRate.from_record(record))


@router.get("/history/{currency_id}", summary="Rate versions of a currency, newest first")
async def get_history(
    currency_id: int,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: Optional[int] = Query(None, ge=0),
    store: PriceVersionStore = Depends(get_currency_store),
):
    history = _rates(store.history(currency_id, start_date, end_date, limit, offset))
    return ok(history, count=len(history))


@router.post("/convert", summary="Convert an amount between currencies")
async def convert(payload: CurrencyConvertIn, store: PriceVersionStore = Depends(get_currency_store)):
    result = store.convert(
        payload.amount, payload.from_code.upper(), payload.to_code.upper(), payload.type
    )
    return ok(result.as_dict())


@router.get("/compare", summary="Spread comparison across currencies")
async def compare(store: PriceVersionStore = Depends(get_currency_store)):
    rows = [
        CurrencyComparison(
            code=record.instrument.get("code"),
            name=record.instrument.get("name_ar"),
            flag=record.instrument.get("flag_emoji"),
            buy_rate=record.buy,
            sell_rate=record.sell,
            spread=record.spread,
            spread_percentage=pct,
        )
        for record, pct in store.compare()
    ]
    return ok(rows, count=len(rows))


@router.get("/statistics/{currency_id}", summary="Min/max/avg over a trailing window")
async def statistics(
    currency_id: int,
    days: int = Query(30, ge=1, le=3650),
    store: PriceVersionStore = Depends(get_currency_store),
):
    if store.get_instrument(currency_id) is None:
        raise NotFoundError("Currency not found", "INSTRUMENT_NOT_FOUND")
    return ok(PriceStatistics(**store.statistics(currency_id, days)), period=f"{days} days")


# Staff ------------------------------------------------------------


@router.post("/rates", status_code=201, summary="Publish a new rate version")
async def create_rate(
    payload: CurrencyRateIn,
    request: Request,
    session: dict = Depends(require_staff),
    store: PriceVersionStore = Depends(get_currency_store),
):
    record = store.create(
        payload.currency_id,
        payload.buy_rate,
        payload.sell_rate,
        payload.margin_buy,
        payload.margin_sell,
        payload.is_manual,
        actor_from(request, session),
    )
    return ok(CurrencyRate.from_record(record), "Currency rate created")


@router.put("/rates/{rate_id}", summary="Revise the open rate or amend a closed one")
async def update_rate(
    rate_id: int,
    payload: CurrencyRateUpdate,
    request: Request,
    session: dict = Depends(require_staff),
    store: PriceVersionStore = Depends(get_currency_store),
):
    changes = {
        "buy": payload.buy_rate,
        "sell": payload.sell_rate,
        "margin_buy": payload.margin_buy,
        "margin_sell": payload.margin_sell,
        "is_manual": payload.is_manual,
    }
    record = store.update(rate_id, changes, actor_from(request, session))
    return ok(CurrencyRate.from_record(record), "Currency rate updated")


@router.delete("/rates/{rate_id}", summary="Delete a rate record")
async def delete_rate(
    rate_id: int,
    request: Request,
    session: dict = Depends(require_admin),
    store: PriceVersionStore = Depends(get_currency_store),
):
    store.delete(rate_id, actor_from(request, session))
    return ok(message="Currency rate deleted")


@router.post("/bulk-update", summary="Publish many rates; failures are reported per entry")
async def bulk_update(
    payload: BulkUpdateIn,
    request: Request,
    session: dict = Depends(require_admin),
    store: PriceVersionStore = Depends(get_currency_store),
):
    entries = [
        {
            "instrument_id": e.currency_id,
            "buy": e.buy_rate,
            "sell": e.sell_rate,
            "margin_buy": e.margin_buy,
            "margin_sell": e.margin_sell,
            "is_manual": e.is_manual,
        }
        for e in payload.rates
    ]
    outcome = store.bulk_update(entries, actor_from(request, session))
    data = {
        "updated": _rates(outcome["updated"]),
        "errors": [
            {"currencyId": err["instrument_id"], "error": err["error"]}
            for err in outcome["errors"]
        ],
        "totalProcessed": outcome["total_processed"],
        "successCount": outcome["success_count"],
        "errorCount": outcome["error_count"],
    }
    message = f"Updated {outcome['success_count']} of {outcome['total_processed']} rates"
    return ok(data, message)
