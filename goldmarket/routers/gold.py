from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from goldmarket.core.deps import (
    actor_from,
    get_gold_store,
    rate_limit,
    require_admin,
    require_staff,
)
from goldmarket.core.errors import NotFoundError
from goldmarket.core.middleware import SanitizingRoute
from goldmarket.models import ok
from goldmarket.models.prices import (
    AutoUpdateIn,
    GoldComparison,
    GoldConvertIn,
    GoldPrice,
    GoldPriceIn,
    GoldPriceUpdate,
    GoldType,
    PriceStatistics,
)
from goldmarket.services.price_store import PriceVersionStore

router = APIRouter(prefix="/api/gold", tags=["gold"], route_class=SanitizingRoute)


# Public -----------------------------------------------------------


@router.get("/prices", summary="Current price of every active karat")
async def list_prices(store: PriceVersionStore = Depends(get_gold_store)):
    prices = [GoldPrice.from_record(r) for r in store.list_current()]
    return ok(prices, count=len(prices))


@router.get("/types", summary="Active gold types")
async def list_types(store: PriceVersionStore = Depends(get_gold_store)):
    types = [GoldType(**row) for row in store.list_instruments()]
    return ok(types, count=len(types))


@router.get("/prices/{price_id}", summary="One price record by id")
async def get_price(price_id: int, store: PriceVersionStore = Depends(get_gold_store)):
    record = store.find_by_id(price_id)
    if record is None:
        raise NotFoundError("Gold price not found")
    return ok(GoldPrice.from_record(record))


@router.get("/current/{gold_type_id}", summary="Price currently in force for a gold type")
async def get_current(gold_type_id: int, store: PriceVersionStore = Depends(get_gold_store)):
    record = store.get_current(gold_type_id)
    if record is None:
        raise NotFoundError("No current price for this gold type", "PRICE_NOT_FOUND")
    return ok(GoldPrice.from_record(record))


@router.get("/history/{gold_type_id}", summary="Price versions of a gold type, newest first")
async def get_history(
    gold_type_id: int,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: Optional[int] = Query(None, ge=0),
    store: PriceVersionStore = Depends(get_gold_store),
):
    records = store.history(gold_type_id, start_date, end_date, limit, offset)
    history = [GoldPrice.from_record(r) for r in records]
    return ok(history, count=len(history))


@router.get("/compare", summary="Spread comparison across karats")
async def compare(store: PriceVersionStore = Depends(get_gold_store)):
    rows = [
        GoldComparison(
            type=record.instrument.get("name_ar"),
            karat=record.instrument.get("karat"),
            buy_price=record.buy,
            sell_price=record.sell,
            spread=record.spread,
            spread_percentage=pct,
        )
        for record, pct in store.compare()
    ]
    return ok(rows, count=len(rows))


@router.get("/statistics/{gold_type_id}", summary="Min/max/avg over a trailing window")
async def statistics(
    gold_type_id: int,
    days: int = Query(30, ge=1, le=3650),
    store: PriceVersionStore = Depends(get_gold_store),
):
    if store.get_instrument(gold_type_id) is None:
        raise NotFoundError("Gold type not found", "INSTRUMENT_NOT_FOUND")
    return ok(PriceStatistics(**store.statistics(gold_type_id, days)), period=f"{days} days")


@router.post("/convert", summary="Convert a weight between karats")
async def convert(payload: GoldConvertIn, store: PriceVersionStore = Depends(get_gold_store)):
    result = store.convert(payload.amount, payload.from_karat, payload.to_karat, payload.type)
    return ok(result.as_dict())


# Staff ------------------------------------------------------------


@router.post("/prices", status_code=201, summary="Publish a new price version")
async def create_price(
    payload: GoldPriceIn,
    request: Request,
    session: dict = Depends(require_staff),
    store: PriceVersionStore = Depends(get_gold_store),
):
    record = store.create(
        payload.gold_type_id,
        payload.buy_price,
        payload.sell_price,
        payload.margin_buy,
        payload.margin_sell,
        payload.is_manual,
        actor_from(request, session),
    )
    return ok(GoldPrice.from_record(record), "Gold price created")


@router.put("/prices/{price_id}", summary="Revise the open price or amend a closed one")
async def update_price(
    price_id: int,
    payload: GoldPriceUpdate,
    request: Request,
    session: dict = Depends(require_staff),
    store: PriceVersionStore = Depends(get_gold_store),
):
    changes = {
        "buy": payload.buy_price,
        "sell": payload.sell_price,
        "margin_buy": payload.margin_buy,
        "margin_sell": payload.margin_sell,
        "is_manual": payload.is_manual,
    }
    record = store.update(price_id, changes, actor_from(request, session))
    return ok(GoldPrice.from_record(record), "Gold price updated")


@router.delete("/prices/{price_id}", summary="Delete a price record")
async def delete_price(
    price_id: int,
    request: Request,
    session: dict = Depends(require_admin),
    store: PriceVersionStore = Depends(get_gold_store),
):
    store.delete(price_id, actor_from(request, session))
    return ok(message="Gold price deleted")


@router.post(
    "/auto-update",
    summary="Derive every karat from the 24K base price",
    dependencies=[Depends(rate_limit("auto-update", "auto_update_rate_limit_max_requests"))],
)
async def auto_update(
    payload: AutoUpdateIn,
    request: Request,
    session: dict = Depends(require_admin),
    store: PriceVersionStore = Depends(get_gold_store),
):
    records = store.auto_update(payload.base_price_24k, actor_from(request, session))
    prices = [GoldPrice.from_record(r) for r in records]
    return ok(prices, "Gold prices updated from base price", count=len(prices))
