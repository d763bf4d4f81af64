from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    CHECKING = "Checking"
    LOADING = "Loading"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentStatus(str, Enum):
    PAID = "Paid"
    UNPAID = "Unpaid"
    PARTIAL = "Partial"


FORWARD_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.CHECKING}),
    OrderStatus.CHECKING: frozenset({OrderStatus.LOADING}),
    OrderStatus.LOADING: frozenset({OrderStatus.IN_TRANSIT}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED}),
}

# In Transit cancellation is the return path and carries compensating stock.
CANCELLABLE_STATUSES = frozenset(
    {
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.CHECKING,
        OrderStatus.LOADING,
        OrderStatus.IN_TRANSIT,
    }
)

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED, OrderStatus.CANCELLED})
DELIVERED_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED})
EDITABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CHECKING})
DISPATCHABLE_STATUSES = frozenset({OrderStatus.CHECKING, OrderStatus.LOADING})
REVERTIBLE_STATUSES = frozenset({OrderStatus.LOADING, OrderStatus.IN_TRANSIT})


def allowed_transitions(current: OrderStatus) -> list[OrderStatus]:
    targets = set(FORWARD_TRANSITIONS.get(current, frozenset()))
    if current in CANCELLABLE_STATUSES:
        targets.add(OrderStatus.CANCELLED)
    order = list(OrderStatus)
    return sorted(targets, key=order.index)


def is_legal_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in allowed_transitions(current)


@dataclass
class OrderLine:
    product_id: str
    quantity: int
    unit_price: int
    free_quantity: int = 0

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price


def merge_lines(lines: list[OrderLine]) -> list[OrderLine]:
    """Collapse repeated products into one line so item_count stays distinct.

    Lines for the same product must agree on unit price; a conflicting price
    is a caller error rather than something to average away.
    """
    merged: dict[str, OrderLine] = {}
    for line in lines:
        if line.quantity <= 0:
            raise ValueError(f"quantity must be positive for product {line.product_id}")
        if line.free_quantity < 0:
            raise ValueError(f"free quantity must not be negative for product {line.product_id}")
        if line.unit_price < 0:
            raise ValueError(f"unit price must not be negative for product {line.product_id}")
        existing = merged.get(line.product_id)
        if existing is None:
            merged[line.product_id] = OrderLine(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                free_quantity=line.free_quantity,
            )
            continue
        if existing.unit_price != line.unit_price:
            raise ValueError(f"conflicting unit prices for product {line.product_id}")
        existing.quantity += line.quantity
        existing.free_quantity += line.free_quantity
    return list(merged.values())
