from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field

from .common import CamelModel

Side = Literal["buy", "sell"]


class GoldType(CamelModel):
    id: int
    name_ar: str
    name_en: Optional[str] = None
    karat: int
    purity: float
    display_order: int = 0


class Currency(CamelModel):
    id: int
    code: str
    name_ar: str
    name_en: Optional[str] = None
    symbol: Optional[str] = None
    flag_emoji: Optional[str] = None
    is_base: bool = False
    display_order: int = 0


class _PriceOut(CamelModel):
    id: Optional[int] = None
    spread: Optional[float] = None
    margin_buy: float = 0.0
    margin_sell: float = 0.0
    final_buy: Optional[float] = None
    final_sell: Optional[float] = None
    is_manual: bool = False
    effective_from: Optional[str] = None
    effective_until: Optional[str] = None
    created_at: Optional[str] = None

    @staticmethod
    def _common(record) -> dict:  # type: ignore[no-untyped-def]
        priced = record.has_price
        return {
            "id": record.id,
            "spread": record.spread,
            "margin_buy": record.margin_buy,
            "margin_sell": record.margin_sell,
            "final_buy": record.final("buy") if priced else None,
            "final_sell": record.final("sell") if priced else None,
            "is_manual": record.is_manual,
            "effective_from": record.effective_from,
            "effective_until": record.effective_until,
            "created_at": record.created_at,
        }


class GoldPrice(_PriceOut):
    gold_type_id: int
    gold_type_name: Optional[str] = None
    gold_type_name_en: Optional[str] = None
    karat: Optional[int] = None
    purity: Optional[float] = None
    buy_price: Optional[float] = None
    sell_price: Optional[float] = None

    @classmethod
    def from_record(cls, record) -> "GoldPrice":  # type: ignore[no-untyped-def]
        inst = record.instrument
        return cls(
            gold_type_id=record.instrument_id,
            gold_type_name=inst.get("name_ar"),
            gold_type_name_en=inst.get("name_en"),
            karat=inst.get("karat"),
            purity=inst.get("purity"),
            buy_price=record.buy,
            sell_price=record.sell,
            **cls._common(record),
        )


class CurrencyRate(_PriceOut):
    currency_id: int
    currency_code: Optional[str] = None
    currency_name: Optional[str] = None
    currency_name_en: Optional[str] = None
    currency_symbol: Optional[str] = None
    flag_emoji: Optional[str] = None
    is_base: bool = False
    buy_rate: Optional[float] = None
    sell_rate: Optional[float] = None

    @classmethod
    def from_record(cls, record) -> "CurrencyRate":  # type: ignore[no-untyped-def]
        inst = record.instrument
        return cls(
            currency_id=record.instrument_id,
            currency_code=inst.get("code"),
            currency_name=inst.get("name_ar"),
            currency_name_en=inst.get("name_en"),
            currency_symbol=inst.get("symbol"),
            flag_emoji=inst.get("flag_emoji"),
            is_base=bool(inst.get("is_base")),
            buy_rate=record.buy,
            sell_rate=record.sell,
            **cls._common(record),
        )


class GoldPriceIn(CamelModel):
    gold_type_id: int = Field(..., gt=0)
    buy_price: float = Field(..., gt=0)
    sell_price: float = Field(..., gt=0)
    margin_buy: float = Field(0.0, ge=0, lt=1)
    margin_sell: float = Field(0.0, ge=0, lt=1)
    is_manual: bool = False


class GoldPriceUpdate(CamelModel):
    buy_price: Optional[float] = Field(None, gt=0)
    sell_price: Optional[float] = Field(None, gt=0)
    margin_buy: Optional[float] = Field(None, ge=0, lt=1)
    margin_sell: Optional[float] = Field(None, ge=0, lt=1)
    is_manual: Optional[bool] = None


class CurrencyRateIn(CamelModel):
    currency_id: int = Field(..., gt=0)
    buy_rate: float = Field(..., gt=0)
    sell_rate: float = Field(..., gt=0)
    margin_buy: float = Field(0.0, ge=0, lt=1)
    margin_sell: float = Field(0.0, ge=0, lt=1)
    is_manual: bool = False


class CurrencyRateUpdate(CamelModel):
    buy_rate: Optional[float] = Field(None, gt=0)
    sell_rate: Optional[float] = Field(None, gt=0)
    margin_buy: Optional[float] = Field(None, ge=0, lt=1)
    margin_sell: Optional[float] = Field(None, ge=0, lt=1)
    is_manual: Optional[bool] = None


class BulkRateEntry(CamelModel):
    # Every field optional: incomplete entries are reported per entry, not rejected wholesale
    currency_id: Optional[int] = None
    buy_rate: Optional[float] = None
    sell_rate: Optional[float] = None
    margin_buy: Optional[float] = None
    margin_sell: Optional[float] = None
    is_manual: Optional[bool] = None


class BulkUpdateIn(CamelModel):
    rates: List[BulkRateEntry] = Field(..., min_length=1)


class AutoUpdateIn(CamelModel):
    base_price_24k: float = Field(..., gt=0, alias="basePrice24k")


class CurrencyConvertIn(CamelModel):
    amount: float = Field(..., gt=0)
    from_code: str = Field(..., min_length=3, max_length=3, alias="from")
    to_code: str = Field(..., min_length=3, max_length=3, alias="to")
    type: Side = "buy"


class GoldConvertIn(CamelModel):
    amount: float = Field(..., gt=0)
    from_karat: int = Field(..., alias="from")
    to_karat: int = Field(..., alias="to")
    type: Side = "buy"


class PriceStatistics(CamelModel):
    min_buy: Optional[float] = None
    max_buy: Optional[float] = None
    avg_buy: Optional[float] = None
    min_sell: Optional[float] = None
    max_sell: Optional[float] = None
    avg_sell: Optional[float] = None
    total_records: int = 0


class GoldComparison(CamelModel):
    type: Optional[str] = None
    karat: Optional[int] = None
    buy_price: float
    sell_price: float
    spread: float
    spread_percentage: Optional[float] = None


class CurrencyComparison(CamelModel):
    code: str
    name: Optional[str] = None
    flag: Optional[str] = None
    buy_rate: float
    sell_rate: float
    spread: float
    spread_percentage: Optional[float] = None
