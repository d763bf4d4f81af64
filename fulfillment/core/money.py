from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNITS = 100
_QUANT = Decimal("0.01")


def to_minor(amount: Decimal | int | str) -> int:
    value = Decimal(str(amount)).quantize(_QUANT, rounding=ROUND_HALF_UP)
    return int(value * MINOR_UNITS)


def to_display(cents: int) -> Decimal:
    return (Decimal(cents) / Decimal(MINOR_UNITS)).quantize(_QUANT)


def apply_rate(cents: int, rate_percent: Decimal) -> int:
    raw = Decimal(cents) * Decimal(rate_percent) / Decimal(100)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
