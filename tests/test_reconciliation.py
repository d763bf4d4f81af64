from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from fulfillment.core.money import apply_rate, to_display, to_minor
from fulfillment.domain.dispatch.aggregates import (
    CreateLoadCommand,
    ReconcileLoadCommand,
    ReconcileOrderUpdate,
)
from fulfillment.domain.dispatch.projections import load_detail
from fulfillment.domain.dispatch.service import DispatchService
from fulfillment.reconciliation.rules import reconcile_load, summarize_loads


def _entry(order_id: str, original: int, final: int | None):
    return SimpleNamespace(order_id=order_id, original_cents=original, final_cents=final)


def test_load_difference_is_final_minus_sent():
    result = reconcile_load([_entry("o1", 100000, 100000), _entry("o2", 200000, 180000)])

    assert result.total_orders == 2
    assert result.sent_cents == 300000
    assert result.final_cents == 280000
    assert result.difference_cents == -20000
    assert [item.difference_cents for item in result.orders] == [0, -20000]


def test_unsettled_entries_count_at_original_value():
    result = reconcile_load([_entry("o1", 5000, None)])
    assert result.final_cents == 5000
    assert result.orders[0].settled is False


def test_empty_load_reconciles_to_zero():
    result = reconcile_load([])
    assert (result.total_orders, result.sent_cents, result.final_cents, result.difference_cents) == (0, 0, 0, 0)


def test_stats_count_shortages_and_surpluses():
    stats = summarize_loads(
        [
            reconcile_load([_entry("a", 1000, 900), _entry("b", 1000, 1000)]),
            reconcile_load([_entry("c", 500, 700)]),
        ]
    )
    assert stats.loads == 2
    assert stats.orders == 3
    assert stats.difference_cents == 100
    assert (stats.shortage_orders, stats.surplus_orders) == (1, 1)


def test_money_helpers_round_half_up():
    assert to_minor(Decimal("10.005")) == 1001
    assert to_minor("1800") == 180000
    assert to_display(-20000) == Decimal("-200.00")
    assert apply_rate(1001, Decimal("5")) == 50
    assert apply_rate(1010, Decimal("5")) == 51


def test_reconcile_with_collected_amounts(session, clerk, make_product, place, stock_up):
    product = make_product()
    stock_up(session, product, 50)
    first = place(session, clerk, [(product, 10, "100.00", 0)], checking=True)
    second = place(session, clerk, [(product, 20, "100.00", 0)], checking=True)
    service = DispatchService(session)
    load = service.create_load(
        CreateLoadCommand(
            order_ids=[first.id, second.id],
            vehicle_ref="WP-3003",
            driver_ref="driver-test",
            loading_date=date(2026, 3, 2),
        ),
        clerk,
    )

    service.reconcile(
        load.id,
        ReconcileLoadCommand(
            updates=[
                ReconcileOrderUpdate(order_id=first.id, outcome="Delivered", payment_status="Paid"),
                ReconcileOrderUpdate(order_id=second.id, outcome="Delivered", final_amount=Decimal("1800.00")),
            ],
            close_load=True,
            expected_version=load.version,
        ),
        clerk,
    )

    detail = load_detail(session, load)
    assert detail["status"] == "Completed"
    assert detail["sent"] == Decimal("3000.00")
    assert detail["final"] == Decimal("2800.00")
    assert detail["difference"] == Decimal("-200.00")
    assert [row["difference"] for row in detail["orders"]] == [Decimal("0.00"), Decimal("-200.00")]
    assert detail["orders"][0]["payment_status"] == "Paid"
    assert detail["total_items"] == 30
