"""Margin / rate calculator.

Pure functions, no I/O. Margins are fractions (0.02 == 2%) and are directional:
the quoted buy price moves up from the raw rate and the quoted sell price moves
down, so the house spread widens by construction.

Conversion bridges two instruments through the base unit: divide by the source
instrument's final rate, multiply by the target's. Results are rounded half away
from zero (4 dp for currencies, 2 dp for gold).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional

from goldmarket.core.errors import PricingError
from goldmarket.services.money import round2, round_to

SIDES = ("buy", "sell")
AUTO_UPDATE_MARGIN = 0.02


@dataclass(frozen=True)
class ConversionResult:
    amount: float
    from_code: str
    to_code: str
    side: str
    result: float
    rate: float

    def as_dict(self) -> Dict[str, object]:
        return {
            "amount": self.amount,
            "from": self.from_code,
            "to": self.to_code,
            "type": self.side,
            "result": self.result,
            "rate": self.rate,
        }


def _check_side(side: str) -> str:
    if side not in SIDES:
        raise PricingError(f"Unsupported rate type '{side}'", "INVALID_SIDE")
    return side


def calculate_spread(buy: float, sell: float) -> float:
    return sell - buy


def calculate_margin(raw_rate: float, margin_fraction: float) -> float:
    return raw_rate * margin_fraction


def final_rate(side: str, raw_rate: float, margin_fraction: float) -> float:
    margin = calculate_margin(raw_rate, margin_fraction)
    if _check_side(side) == "buy":
        return raw_rate + margin
    return raw_rate - margin


def _usable_rate(rate: float) -> bool:
    return math.isfinite(rate) and rate > 0


def convert_between(
    amount: float,
    from_final: float,
    to_final: float,
    places: int,
    *,
    from_code: str = "",
    to_code: str = "",
    side: str = "buy",
) -> ConversionResult:
    if not _usable_rate(from_final) or not _usable_rate(to_final):
        raise PricingError("Final rate must be a positive number", "INVALID_RATE")
    base_amount = amount / from_final
    return ConversionResult(
        amount=amount,
        from_code=from_code,
        to_code=to_code,
        side=_check_side(side),
        result=round_to(base_amount * to_final, places),
        rate=round_to(to_final / from_final, places),
    )


def spread_percentage(spread: float, buy: float, places: int) -> Optional[float]:
    if not buy:
        return None
    return round_to(spread / buy * 100, places)


def derive_karat_prices(
    base_price_24k: float,
    purity: float,
    margin_buy: float = AUTO_UPDATE_MARGIN,
    margin_sell: float = AUTO_UPDATE_MARGIN,
) -> Dict[str, float]:
    """Buy/sell raw prices for one karat derived from the 24k base price."""
    if not _usable_rate(base_price_24k):
        raise PricingError("Base price for 24K gold must be positive", "INVALID_BASE_PRICE")
    base = base_price_24k * purity
    return {
        "buy": round2(base * (1 - margin_buy)),
        "sell": round2(base * (1 + margin_sell)),
        "margin_buy": margin_buy,
        "margin_sell": margin_sell,
    }


__all__ = [
    "SIDES",
    "ConversionResult",
    "calculate_spread",
    "calculate_margin",
    "final_rate",
    "convert_between",
    "spread_percentage",
    "derive_karat_prices",
]
