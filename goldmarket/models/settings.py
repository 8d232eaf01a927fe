from __future__ import annotations

import re
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator

from .constants import SettingType
from .common import CamelModel

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class StoreInfo(CamelModel):
    name: Optional[str] = None
    name_en: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None


class MarketSettings(CamelModel):
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    timezone: Optional[str] = None
    days: Optional[List[int]] = None

    @field_validator("open_time", "close_time")
    @classmethod
    def valid_time(cls, v: Optional[str]) -> Optional[str]:
        if v and not _HHMM.match(v):
            raise ValueError("time must be HH:MM (24h)")
        return v

    @field_validator("timezone")
    @classmethod
    def valid_timezone(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError("unknown timezone")
        return v

    @field_validator("days")
    @classmethod
    def valid_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("days must be between 0 (Sunday) and 6 (Saturday)")
        return v


class MarketStatus(CamelModel):
    is_open: bool
    settings: MarketSettings


class MarginPair(CamelModel):
    buy: Optional[float] = Field(None, ge=0, lt=1)
    sell: Optional[float] = Field(None, ge=0, lt=1)


class MarginSettings(CamelModel):
    gold: Optional[MarginPair] = None
    currency: Optional[MarginPair] = None


class SecuritySettings(CamelModel):
    session_timeout: Optional[int] = Field(None, gt=0)
    max_login_attempts: Optional[int] = Field(None, ge=1)
    lockout_duration: Optional[int] = Field(None, ge=0)


class SettingEntry(CamelModel):
    key: str
    value: Any = None
    type: str
    description: Optional[str] = None
    updated_at: Optional[str] = None


class SettingValueIn(CamelModel):
    value: Any = Field(...)
    type: SettingType = SettingType.STRING
    description: Optional[str] = None
