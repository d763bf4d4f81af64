from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable


class MovementType(str, Enum):
    SALE = "Sale"
    PURCHASE = "Purchase"
    RETURN = "Return"
    DAMAGE = "Damage"
    ADJUSTMENT = "Adjustment"


OUTBOUND_TYPES = frozenset({MovementType.SALE, MovementType.DAMAGE})


def signed_quantity(movement_type: MovementType, quantity: int) -> int:
    if movement_type is MovementType.ADJUSTMENT:
        if quantity == 0:
            raise ValueError("adjustment quantity must be non-zero")
        return quantity
    if quantity <= 0:
        raise ValueError(f"{movement_type.value} quantity must be positive, got {quantity}")
    if movement_type in OUTBOUND_TYPES:
        return -quantity
    return quantity


@dataclass(frozen=True)
class MovementRequest:
    product_id: str
    location_id: str
    movement_type: MovementType
    quantity: int
    reference: str | None = None
    counterparty: str | None = None
    note: str | None = None
    allow_negative: bool = False
    occurred_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.allow_negative and self.movement_type is not MovementType.ADJUSTMENT:
            raise ValueError("only a correcting Adjustment may drive stock below zero")

    @property
    def delta(self) -> int:
        return signed_quantity(self.movement_type, self.quantity)


def running_balances(deltas: Iterable[int], opening: int = 0) -> list[int]:
    balances: list[int] = []
    balance = opening
    for delta in deltas:
        balance += delta
        balances.append(balance)
    return balances
