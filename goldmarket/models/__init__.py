"""Pydantic request/response models for the price desk API."""

from .constants import (
    BASE_CURRENCY,
    GOLD_KARATS,
    ROLES,
)  # re-export
from .common import CamelModel, ok
from .prices import (
    CurrencyRate,
    GoldPrice,
    PriceStatistics,
)
from .users import User
from .settings import SettingEntry

__all__ = [
    "BASE_CURRENCY",
    "GOLD_KARATS",
    "ROLES",
    "CamelModel",
    "ok",
    "CurrencyRate",
    "GoldPrice",
    "PriceStatistics",
    "User",
    "SettingEntry",
]
