"""Money / rounding helpers.

Centralized so the calculator, stores, and statistics use identical rounding
semantics (half away from zero on the decimal representation).
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP


def round_to(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round2(value: float) -> float:
    return round_to(value, 2)


def round4(value: float) -> float:
    return round_to(value, 4)
