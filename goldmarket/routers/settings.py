import html
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as ModelValidationError

from goldmarket.core.deps import actor_from, get_settings_store, require_admin
from goldmarket.core.errors import NotFoundError, ValidationError
from goldmarket.core.middleware import SanitizingRoute
from goldmarket.models import ok
from goldmarket.models.settings import (
    MarginPair,
    MarginSettings,
    MarketSettings,
    MarketStatus,
    SecuritySettings,
    SettingEntry,
    SettingValueIn,
    StoreInfo,
)
from goldmarket.services.settings_store import SettingsStore

router = APIRouter(prefix="/api/settings", tags=["settings"], route_class=SanitizingRoute)

# Keys that also have a grouped editor pass the same field checks here.
_CHECKED_KEYS = {
    "market_open_time": (MarketSettings, "open_time"),
    "market_close_time": (MarketSettings, "close_time"),
    "market_timezone": (MarketSettings, "timezone"),
    "market_days": (MarketSettings, "days"),
    "default_gold_margin_buy": (MarginPair, "buy"),
    "default_gold_margin_sell": (MarginPair, "sell"),
    "default_currency_margin_buy": (MarginPair, "buy"),
    "default_currency_margin_sell": (MarginPair, "sell"),
    "session_timeout": (SecuritySettings, "session_timeout"),
    "max_login_attempts": (SecuritySettings, "max_login_attempts"),
    "lockout_duration": (SecuritySettings, "lockout_duration"),
}


def _checked_value(key: str, value: Any) -> Any:
    """Validate a well-known key and return the value in its stored form."""
    if key not in _CHECKED_KEYS:
        return value
    model, field = _CHECKED_KEYS[key]
    if isinstance(value, str):
        # Sanitized bodies arrive with "/" escaped, as in zone names.
        value = html.unescape(value)
    if field == "days" and isinstance(value, str):
        value = [part.strip() for part in value.split(",") if part.strip()]
    try:
        checked = getattr(model.model_validate({field: value}), field)
    except ModelValidationError as exc:
        error = exc.errors()[0]
        raise ValidationError(
            errors=[{"field": "value", "message": error["msg"], "code": error["type"]}]
        )
    if field == "days" and checked is not None:
        return ",".join(str(d) for d in checked)
    return checked


# Public -----------------------------------------------------------


@router.get("/store", summary="Store name and contact details")
async def get_store_info(store: SettingsStore = Depends(get_settings_store)):
    return ok(StoreInfo(**store.get_store_info()))


@router.get("/market/status", summary="Whether the market is open right now")
async def market_status(store: SettingsStore = Depends(get_settings_store)):
    status = MarketStatus(
        is_open=store.is_market_open(),
        settings=MarketSettings(**store.get_market_settings()),
    )
    return ok(status)


# Admin ------------------------------------------------------------
# Fixed paths are declared before "/{key}" so they win the match.


@router.get("/", summary="Every setting with its type")
async def list_settings(
    _: dict = Depends(require_admin), store: SettingsStore = Depends(get_settings_store)
):
    entries = [SettingEntry(**e) for e in store.list_entries()]
    return ok(entries, count=len(entries))


@router.put("/store", summary="Update store details")
async def update_store_info(
    payload: StoreInfo,
    request: Request,
    session: dict = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
):
    info = store.update_store_info(payload.model_dump(), actor_from(request, session))
    return ok(StoreInfo(**info), "Store information updated")


@router.get("/market", summary="Market hours configuration")
async def get_market_settings(
    _: dict = Depends(require_admin), store: SettingsStore = Depends(get_settings_store)
):
    return ok(MarketSettings(**store.get_market_settings()))


@router.put("/market", summary="Update market hours")
async def update_market_settings(
    payload: MarketSettings,
    request: Request,
    session: dict = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
):
    market = store.update_market_settings(payload.model_dump(), actor_from(request, session))
    return ok(MarketSettings(**market), "Market settings updated")


@router.get("/margins", summary="Default buy/sell margins")
async def get_margin_settings(
    _: dict = Depends(require_admin), store: SettingsStore = Depends(get_settings_store)
):
    return ok(MarginSettings(**store.get_margin_settings()))


@router.put("/margins", summary="Update default margins")
async def update_margin_settings(
    payload: MarginSettings,
    request: Request,
    session: dict = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
):
    margins = store.update_margin_settings(
        payload.gold.model_dump() if payload.gold else None,
        payload.currency.model_dump() if payload.currency else None,
        actor_from(request, session),
    )
    return ok(MarginSettings(**margins), "Margin settings updated")


@router.get("/security", summary="Session and lockout settings")
async def get_security_settings(
    _: dict = Depends(require_admin), store: SettingsStore = Depends(get_settings_store)
):
    return ok(SecuritySettings(**store.get_security_settings()))


@router.put("/security", summary="Update session and lockout settings")
async def update_security_settings(
    payload: SecuritySettings,
    request: Request,
    session: dict = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
):
    security = store.update_security_settings(payload.model_dump(), actor_from(request, session))
    return ok(SecuritySettings(**security), "Security settings updated")


@router.post("/reset", summary="Restore every default setting")
async def reset_settings(
    request: Request,
    session: dict = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
):
    store.reset_to_defaults(actor_from(request, session))
    return ok(message="Settings reset to defaults")


@router.get("/{key}", summary="One setting by key")
async def get_setting(
    key: str, _: dict = Depends(require_admin), store: SettingsStore = Depends(get_settings_store)
):
    entry = store.get_entry(key)
    if entry is None:
        raise NotFoundError("Setting not found", "SETTING_NOT_FOUND")
    return ok(SettingEntry(**entry))


@router.put("/{key}", summary="Create or replace one setting")
async def put_setting(
    key: str,
    payload: SettingValueIn,
    request: Request,
    session: dict = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
):
    value = _checked_value(key, payload.value)
    store.set(key, value, payload.type, actor_from(request, session), payload.description)
    return ok(SettingEntry(**store.get_entry(key)), "Setting saved")


@router.delete("/{key}", summary="Delete one setting")
async def delete_setting(
    key: str,
    request: Request,
    session: dict = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
):
    if not store.delete(key, actor_from(request, session)):
        raise NotFoundError("Setting not found", "SETTING_NOT_FOUND")
    return ok(message="Setting deleted")
