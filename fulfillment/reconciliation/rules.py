from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from fulfillment.domain.inventory.aggregates import running_balances
from fulfillment.persistence.models import LoadingSheetModel, OrderModel, StockMovementModel


class EntryLike(Protocol):
    order_id: str
    original_cents: int
    final_cents: int | None


@dataclass(frozen=True)
class OrderReconciliation:
    order_id: str
    original_cents: int
    final_cents: int
    settled: bool

    @property
    def difference_cents(self) -> int:
        return self.final_cents - self.original_cents


@dataclass(frozen=True)
class LoadReconciliation:
    orders: tuple[OrderReconciliation, ...]

    @property
    def total_orders(self) -> int:
        return len(self.orders)

    @property
    def sent_cents(self) -> int:
        return sum(item.original_cents for item in self.orders)

    @property
    def final_cents(self) -> int:
        return sum(item.final_cents for item in self.orders)

    @property
    def difference_cents(self) -> int:
        return self.final_cents - self.sent_cents


def reconcile_entry(entry: EntryLike) -> OrderReconciliation:
    settled = entry.final_cents is not None
    final = entry.final_cents if settled else entry.original_cents
    return OrderReconciliation(
        order_id=entry.order_id,
        original_cents=int(entry.original_cents),
        final_cents=int(final),
        settled=settled,
    )


def reconcile_load(entries: Iterable[EntryLike]) -> LoadReconciliation:
    return LoadReconciliation(orders=tuple(reconcile_entry(entry) for entry in entries))


@dataclass(frozen=True)
class DispatchStats:
    loads: int
    orders: int
    sent_cents: int
    final_cents: int
    shortage_orders: int
    surplus_orders: int

    @property
    def difference_cents(self) -> int:
        return self.final_cents - self.sent_cents


def summarize_loads(reconciliations: Iterable[LoadReconciliation]) -> DispatchStats:
    loads = orders = sent = final = shortage = surplus = 0
    for load in reconciliations:
        loads += 1
        orders += load.total_orders
        sent += load.sent_cents
        final += load.final_cents
        for item in load.orders:
            if item.difference_cents < 0:
                shortage += 1
            elif item.difference_cents > 0:
                surplus += 1
    return DispatchStats(
        loads=loads,
        orders=orders,
        sent_cents=sent,
        final_cents=final,
        shortage_orders=shortage,
        surplus_orders=surplus,
    )


@dataclass
class ReconciliationResult:
    rule: str
    passed: bool
    detail: str


def check_balance_chain(movements: Iterable[StockMovementModel]) -> ReconciliationResult:
    chains: dict[tuple[str, str], list[StockMovementModel]] = {}
    for movement in movements:
        chains.setdefault((movement.product_id, movement.location_id), []).append(movement)

    for pair, chain in chains.items():
        expected = running_balances(movement.quantity for movement in chain)
        for movement, balance in zip(chain, expected):
            if movement.balance_after != balance:
                return ReconciliationResult(
                    rule="balance_chain",
                    passed=False,
                    detail=(
                        f"movement {movement.id} for {pair[0]}@{pair[1]} records {movement.balance_after}, "
                        f"running sum is {balance}"
                    ),
                )
            if balance < 0 and movement.movement_type != "Adjustment":
                return ReconciliationResult(
                    rule="balance_chain",
                    passed=False,
                    detail=f"movement {movement.id} drove {pair[0]}@{pair[1]} negative without an adjustment",
                )
    return ReconciliationResult(rule="balance_chain", passed=True, detail=f"pairs={len(chains)}")


def check_order_totals(orders: Iterable[OrderModel]) -> ReconciliationResult:
    checked = 0
    for order in orders:
        checked += 1
        expected_total = sum(item.unit_price_cents * item.quantity for item in order.items)
        expected_count = len({item.product_id for item in order.items})
        if order.total_cents != expected_total or order.item_count != expected_count:
            return ReconciliationResult(
                rule="order_totals",
                passed=False,
                detail=(
                    f"order {order.order_number}: total={order.total_cents} expected={expected_total}, "
                    f"items={order.item_count} expected={expected_count}"
                ),
            )
    return ReconciliationResult(rule="order_totals", passed=True, detail=f"orders={checked}")


def check_load_bindings(loads: Iterable[LoadingSheetModel]) -> ReconciliationResult:
    checked = 0
    for load in loads:
        for entry in load.entries:
            checked += 1
            if entry.order is not None and entry.order.load_id != load.id:
                return ReconciliationResult(
                    rule="load_bindings",
                    passed=False,
                    detail=f"order {entry.order.order_number} is listed on {load.load_number} but bound elsewhere",
                )
    return ReconciliationResult(rule="load_bindings", passed=True, detail=f"entries={checked}")


def run_minimum_reconciliation(
    movements: Iterable[StockMovementModel],
    orders: Iterable[OrderModel],
    loads: Iterable[LoadingSheetModel],
) -> list[ReconciliationResult]:
    return [
        check_balance_chain(movements),
        check_order_totals(orders),
        check_load_bindings(loads),
    ]
