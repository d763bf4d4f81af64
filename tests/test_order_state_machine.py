from __future__ import annotations

import pytest

from fulfillment.core.errors import InvalidTransitionError, NotDispatchedError, OrderLockedError
from fulfillment.domain.orders.aggregates import (
    OrderLine,
    OrderStatus,
    allowed_transitions,
    merge_lines,
)
from fulfillment.domain.orders.projections import order_history
from fulfillment.domain.orders.state_machine import OrderStateMachine


def test_pending_cannot_jump_to_in_transit(session, clerk, make_product, place):
    order = place(session, clerk, [(make_product(), 2, "100.00", 0)])
    machine = OrderStateMachine(session)

    with pytest.raises(InvalidTransitionError) as exc_info:
        machine.transition(order.id, OrderStatus.IN_TRANSIT, clerk)

    assert exc_info.value.context["allowed"] == ["Processing", "Cancelled"]
    assert order.status == "Pending"


def test_transition_table_only_moves_forward_or_cancels():
    assert allowed_transitions(OrderStatus.CHECKING) == [OrderStatus.LOADING, OrderStatus.CANCELLED]
    assert allowed_transitions(OrderStatus.IN_TRANSIT) == [
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    ]
    for terminal in (OrderStatus.DELIVERED, OrderStatus.COMPLETED, OrderStatus.CANCELLED):
        assert allowed_transitions(terminal) == []


def test_totals_are_derived_from_line_items(session, clerk, make_product, place):
    cement, paint = make_product(), make_product(category="Paint")
    order = place(session, clerk, [(cement, 2, "100.00", 1), (paint, 3, "50.50", 0)])

    assert order.total_cents == 2 * 10000 + 3 * 5050
    assert order.item_count == 2
    assert order.order_number.startswith("ORD-")

    edited = OrderStateMachine(session).edit_line_items(
        order.id,
        [OrderLine(product_id=cement, quantity=1, unit_price=10000)],
        clerk,
    )
    assert edited.total_cents == 10000
    assert edited.item_count == 1
    assert [item.product_id for item in edited.items] == [cement]


def test_duplicate_products_are_merged():
    merged = merge_lines(
        [
            OrderLine(product_id="p1", quantity=2, unit_price=500),
            OrderLine(product_id="p1", quantity=3, unit_price=500, free_quantity=1),
        ]
    )
    assert len(merged) == 1
    assert merged[0].quantity == 5
    assert merged[0].free_quantity == 1

    with pytest.raises(ValueError):
        merge_lines(
            [
                OrderLine(product_id="p1", quantity=1, unit_price=500),
                OrderLine(product_id="p1", quantity=1, unit_price=600),
            ]
        )


def test_line_items_lock_after_checking(session, clerk, make_product, place, stock_up):
    product = make_product()
    stock_up(session, product, 10)
    order = place(session, clerk, [(product, 2, "100.00", 0)], checking=True)
    machine = OrderStateMachine(session)

    machine.edit_line_items(order.id, [OrderLine(product_id=product, quantity=3, unit_price=10000)], clerk)
    machine.transition(order.id, OrderStatus.LOADING, clerk)

    with pytest.raises(OrderLockedError):
        machine.edit_line_items(order.id, [OrderLine(product_id=product, quantity=1, unit_price=10000)], clerk)
    assert order.total_cents == 30000


def test_loading_assigns_invoice_number_once(session, clerk, make_product, place):
    order = place(session, clerk, [(make_product(), 1, "10.00", 0)], checking=True)
    assert order.invoice_number is None

    OrderStateMachine(session).transition(order.id, OrderStatus.LOADING, clerk)
    assert order.invoice_number.startswith("INV-")


def test_in_transit_requires_a_loading_sheet(session, clerk, make_product, place):
    order = place(session, clerk, [(make_product(), 1, "10.00", 0)], checking=True)
    machine = OrderStateMachine(session)
    machine.transition(order.id, OrderStatus.LOADING, clerk)

    with pytest.raises(NotDispatchedError):
        machine.transition(order.id, OrderStatus.IN_TRANSIT, clerk)
    assert order.status == "Loading"


def test_cancel_before_dispatch_and_history(session, clerk, make_product, place):
    order = place(session, clerk, [(make_product(), 1, "10.00", 0)])
    machine = OrderStateMachine(session)
    machine.transition(order.id, OrderStatus.PROCESSING, clerk)
    machine.transition(order.id, OrderStatus.CANCELLED, clerk, note="customer withdrew")

    history = order_history(session, order.id)
    assert [(row["from_status"], row["to_status"]) for row in history] == [
        (None, "Pending"),
        ("Pending", "Processing"),
        ("Processing", "Cancelled"),
    ]
    assert history[-1]["note"] == "customer withdrew"
    assert history[-1]["actor"] == {"type": "clerk", "id": "clerk-test"}
