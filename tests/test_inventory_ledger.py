from __future__ import annotations

import logging

import pytest

import fulfillment.persistence.pg as pg
from fulfillment.core.errors import NegativeStockError
from fulfillment.domain.inventory.aggregates import MovementRequest, MovementType, running_balances
from fulfillment.domain.inventory.ledger import InventoryLedger
from fulfillment.persistence.models import StockMovementModel
from fulfillment.reconciliation.rules import check_balance_chain

MAIN = "main-warehouse"


def test_balance_after_is_the_running_sum(session, make_product):
    product = make_product()
    ledger = InventoryLedger(session)
    for movement_type, quantity in [
        (MovementType.PURCHASE, 10),
        (MovementType.SALE, 3),
        (MovementType.RETURN, 1),
        (MovementType.DAMAGE, 2),
    ]:
        ledger.record_movement(product, MAIN, movement_type, quantity)

    rows = list(ledger.history(product))
    assert [row.quantity for row in rows] == [10, -3, 1, -2]
    assert [row.balance_after for row in rows] == running_balances([10, -3, 1, -2]) == [10, 7, 8, 6]
    assert [row.seq for row in rows] == [1, 2, 3, 4]
    assert ledger.current_balance(product, MAIN) == 6
    assert check_balance_chain(rows).passed


def _movement(row_id, location_id, movement_type, quantity, balance_after):
    return StockMovementModel(
        id=row_id,
        product_id="prod-chain",
        location_id=location_id,
        seq=row_id,
        movement_type=movement_type,
        quantity=quantity,
        balance_after=balance_after,
    )


def test_balance_chain_is_checked_per_location():
    interleaved = [
        _movement(1, MAIN, "Purchase", 10, 10),
        _movement(2, "van-1", "Purchase", 4, 4),
        _movement(3, MAIN, "Sale", -3, 7),
        _movement(4, "van-1", "Adjustment", -6, -2),
    ]
    result = check_balance_chain(interleaved)
    assert result.passed
    assert result.detail == "pairs=2"

    tampered = interleaved[:2] + [_movement(3, MAIN, "Sale", -3, 8)]
    broken = check_balance_chain(tampered)
    assert not broken.passed
    assert "records 8, running sum is 7" in broken.detail

    oversold = [_movement(1, MAIN, "Purchase", 1, 1), _movement(2, MAIN, "Sale", -2, -1)]
    assert "negative without an adjustment" in check_balance_chain(oversold).detail


def test_sale_beyond_stock_is_rejected_without_writing(session, make_product):
    product = make_product()
    ledger = InventoryLedger(session)
    ledger.record_movement(product, MAIN, MovementType.PURCHASE, 2)

    with pytest.raises(NegativeStockError) as exc_info:
        ledger.record_movement(product, MAIN, MovementType.SALE, 5)

    assert exc_info.value.context["balance"] == 2
    assert ledger.current_balance(product, MAIN) == 2
    assert len(list(ledger.history(product))) == 1


def test_batch_is_all_or_nothing(session, make_product):
    first, second = make_product(), make_product()
    ledger = InventoryLedger(session)
    ledger.record_movement(first, MAIN, MovementType.PURCHASE, 5)

    with pytest.raises(NegativeStockError):
        ledger.record_batch(
            [
                MovementRequest(product_id=first, location_id=MAIN, movement_type=MovementType.SALE, quantity=5),
                MovementRequest(product_id=second, location_id=MAIN, movement_type=MovementType.SALE, quantity=1),
            ]
        )
    assert ledger.current_balance(first, MAIN) == 5
    assert ledger.current_balance(second, MAIN) == 0


def test_correcting_adjustment_may_go_negative(session, make_product, caplog):
    product = make_product()
    ledger = InventoryLedger(session)

    with caplog.at_level(logging.WARNING, logger="fulfillment.domain.inventory.ledger"):
        row = ledger.record_movement(product, MAIN, MovementType.ADJUSTMENT, -2, allow_negative=True)

    assert row.balance_after == -2
    assert "drives stock negative" in caplog.text

    with pytest.raises(ValueError):
        MovementRequest(
            product_id=product,
            location_id=MAIN,
            movement_type=MovementType.SALE,
            quantity=1,
            allow_negative=True,
        )


def test_non_positive_quantities_are_rejected(session, make_product):
    ledger = InventoryLedger(session)
    with pytest.raises(ValueError):
        ledger.record_movement(make_product(), MAIN, MovementType.PURCHASE, 0)
    with pytest.raises(ValueError):
        ledger.record_movement(make_product(), MAIN, MovementType.ADJUSTMENT, 0)


def test_history_pages_and_restarts(session, make_product):
    product = make_product()
    ledger = InventoryLedger(session)
    for _ in range(5):
        ledger.record_movement(product, MAIN, MovementType.PURCHASE, 1)

    history = ledger.history(product, page_size=2)
    first_pass = [row.id for row in history]
    second_pass = [row.id for row in history]
    assert len(first_pass) == 5
    assert first_pass == sorted(first_pass)
    assert first_pass == second_pass

    resumed = [row.id for row in ledger.history(product, start_after=first_pass[1], page_size=2)]
    assert resumed == first_pass[2:]
    assert [row.id for row in history.fetch_page(first_pass[3])] == first_pass[4:]


def test_balances_per_location_and_transfer(session, make_product):
    product = make_product()
    ledger = InventoryLedger(session)
    ledger.record_movement(product, MAIN, MovementType.PURCHASE, 10)

    rows = ledger.transfer(product, MAIN, "van-01", 4)

    assert [row.movement_type for row in rows] == ["Adjustment", "Adjustment"]
    assert rows[0].reference == f"TRANSFER:{MAIN}->van-01"
    assert ledger.balances(product) == {MAIN: 6, "van-01": 4}
    assert ledger.total_stock(product) == 10

    with pytest.raises(NegativeStockError):
        ledger.transfer(product, "van-01", MAIN, 5)
    with pytest.raises(ValueError):
        ledger.transfer(product, MAIN, MAIN, 1)


def test_stock_take_records_only_the_difference(session, make_product):
    product = make_product()
    ledger = InventoryLedger(session)
    ledger.record_movement(product, MAIN, MovementType.PURCHASE, 6)

    row = ledger.stock_take(product, MAIN, 7, note="found behind shelf")
    assert row.quantity == 1
    assert row.reference == "STOCK-TAKE"
    assert ledger.stock_take(product, MAIN, 7) is None
    assert ledger.current_balance(product, MAIN) == 7


def test_movements_are_append_only(raw_session, make_product):
    product = make_product()
    with pg.session_scope() as s:
        row_id = InventoryLedger(s).record_movement(product, MAIN, MovementType.PURCHASE, 3).id

    row = raw_session.get(StockMovementModel, row_id)
    row.quantity = 300
    with pytest.raises(PermissionError):
        raw_session.flush()
    raw_session.rollback()

    row = raw_session.get(StockMovementModel, row_id)
    raw_session.delete(row)
    with pytest.raises(PermissionError):
        raw_session.flush()
    raw_session.rollback()

    assert raw_session.get(StockMovementModel, row_id).quantity == 3
