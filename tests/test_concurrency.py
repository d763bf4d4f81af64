from __future__ import annotations

import pytest

import fulfillment.persistence.pg as pg
from fulfillment.core.errors import ConcurrentModificationError
from fulfillment.core.security import Actor
from fulfillment.domain.inventory.aggregates import MovementRequest, MovementType
from fulfillment.domain.inventory.ledger import InventoryLedger
from fulfillment.domain.orders.aggregates import OrderStatus
from fulfillment.domain.orders.state_machine import OrderStateMachine


@pytest.mark.parametrize("hold_reference", [True, False])
def test_concurrent_status_changes_only_one_wins(make_product, place, hold_reference):
    clerk = Actor(type="clerk", id="clerk-a")
    checker = Actor(type="checker", id="checker-b")
    with pg.session_scope() as s:
        order_id = place(s, clerk, [(make_product(), 1, "10.00", 0)]).id

    first = pg.SessionLocal()
    second = pg.SessionLocal()
    try:
        held = OrderStateMachine(first).orders.require(order_id)
        read_version = held.version
        if not hold_reference:
            del held

        OrderStateMachine(second).transition(order_id, OrderStatus.CANCELLED, checker, expected_version=read_version)
        second.commit()

        with pytest.raises(ConcurrentModificationError) as exc_info:
            OrderStateMachine(first).transition(order_id, OrderStatus.PROCESSING, clerk, expected_version=read_version)
        assert exc_info.value.retryable is True
    finally:
        first.rollback()
        first.close()
        second.close()

    with pg.session_scope() as s:
        order = OrderStateMachine(s).orders.require(order_id)
        assert order.status == "Cancelled"
        assert order.version == 2


def test_expected_version_mismatch_is_rejected(session, clerk, make_product, place):
    order = place(session, clerk, [(make_product(), 1, "10.00", 0)])

    with pytest.raises(ConcurrentModificationError):
        OrderStateMachine(session).transition(order.id, OrderStatus.PROCESSING, clerk, expected_version=order.version + 1)
    assert order.status == "Pending"


def test_concurrent_appends_to_one_stock_pair(make_product, monkeypatch):
    product = make_product()
    with pg.session_scope() as s:
        InventoryLedger(s).record_movement(product, "main-warehouse", MovementType.PURCHASE, 10)

    first = pg.SessionLocal()
    second = pg.SessionLocal()
    try:
        first_ledger = InventoryLedger(first)
        stale_head = first_ledger._latest(product, "main-warehouse")

        InventoryLedger(second).record_movement(product, "main-warehouse", MovementType.SALE, 4)
        second.commit()

        # the first writer still sees seq 1 as the head and collides on seq 2
        monkeypatch.setattr(first_ledger, "_latest", lambda product_id, location_id: stale_head)
        with pytest.raises(ConcurrentModificationError):
            first_ledger.record_batch(
                [
                    MovementRequest(
                        product_id=product,
                        location_id="main-warehouse",
                        movement_type=MovementType.SALE,
                        quantity=3,
                    )
                ]
            )
    finally:
        first.rollback()
        first.close()
        second.close()

    with pg.session_scope() as s:
        assert InventoryLedger(s).current_balance(product, "main-warehouse") == 6
