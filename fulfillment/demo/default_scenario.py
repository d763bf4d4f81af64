from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment.core.config import get_settings
from fulfillment.core.money import to_display
from fulfillment.core.security import SYSTEM_ACTOR
from fulfillment.domain.commissions.service import CommissionService
from fulfillment.domain.dispatch.aggregates import (
    CreateLoadCommand,
    ReconcileLoadCommand,
    ReconcileOrderUpdate,
)
from fulfillment.domain.dispatch.service import DispatchService
from fulfillment.domain.inventory.aggregates import MovementType
from fulfillment.domain.inventory.ledger import InventoryLedger
from fulfillment.domain.orders.aggregates import OrderStatus, PaymentStatus
from fulfillment.domain.orders.commands import LineItemModel, PlaceOrderCommand, place_order
from fulfillment.domain.orders.state_machine import OrderStateMachine
from fulfillment.persistence.models import OrderModel
from fulfillment.persistence.repositories import ProductRepository
from fulfillment.reconciliation.rules import reconcile_load

DEFAULT_SCENARIO_ID = "default_fulfillment_story_v1"

DEMO_PRODUCTS = [
    {"sku": "CEM-OPC-50", "name": "OPC Cement 50kg", "supplier_id": "sup-islandbuild", "category": "Cement"},
    {"sku": "TOOL-BRUSH-2", "name": "Paint Brush 2in", "supplier_id": "sup-islandbuild", "category": "Tools"},
    {"sku": "PAINT-EMUL-1L", "name": "Emulsion Paint 1L", "supplier_id": "sup-colourworks", "category": "Paint"},
]

DEMO_RULES = [
    ("sup-islandbuild", "Island Building Supplies", "Cement", Decimal("5")),
    ("sup-islandbuild", "Island Building Supplies", "ALL", Decimal("2")),
    ("sup-colourworks", "Colourworks Paints", "Paint", Decimal("3.5")),
]


def _existing_orders(session: Session) -> list[OrderModel]:
    return list(
        session.scalars(
            select(OrderModel)
            .where(OrderModel.business_ref == DEFAULT_SCENARIO_ID)
            .order_by(OrderModel.order_number.asc())
        ).all()
    )


def _response(session: Session, orders: list[OrderModel], seeded_now: bool) -> dict[str, Any]:
    load = None
    for order in orders:
        if order.load_id:
            load = DispatchService(session).loads.get(order.load_id)
            break
    body: dict[str, Any] = {
        "scenario_id": DEFAULT_SCENARIO_ID,
        "seeded_now": seeded_now,
        "orders": [
            {"id": order.id, "order_number": order.order_number, "status": order.status}
            for order in orders
        ],
        "loading_sheet": None,
    }
    if load is not None:
        reconciliation = reconcile_load(load.entries)
        body["loading_sheet"] = {
            "id": load.id,
            "load_number": load.load_number,
            "status": load.status,
            "sent": to_display(reconciliation.sent_cents),
            "final": to_display(reconciliation.final_cents),
            "difference": to_display(reconciliation.difference_cents),
        }
    return body


def seed_default_scenario(session: Session) -> dict[str, Any]:
    existing = _existing_orders(session)
    if existing:
        return _response(session, existing, seeded_now=False)

    settings = get_settings()
    actor = SYSTEM_ACTOR
    today = date.today()

    products = ProductRepository(session)
    catalog = {item["sku"]: products.upsert(**item) for item in DEMO_PRODUCTS}

    commissions = CommissionService(session)
    for supplier_id, supplier_name, category, rate in DEMO_RULES:
        if commissions.rules.find(supplier_id, category) is None:
            commissions.add_rule(supplier_id, category, rate, supplier_name=supplier_name)

    ledger = InventoryLedger(session)
    for product in catalog.values():
        if ledger.current_balance(product.id, settings.main_location_id) == 0:
            ledger.record_movement(
                product_id=product.id,
                location_id=settings.main_location_id,
                movement_type=MovementType.PURCHASE,
                quantity=500,
                reference="GRN-DEMO-001",
                counterparty=product.supplier_id,
                actor_id=actor.id,
            )

    cement = catalog["CEM-OPC-50"].id
    brushes = catalog["TOOL-BRUSH-2"].id
    paint = catalog["PAINT-EMUL-1L"].id

    def place(customer: str, lines: list[tuple[str, int, int, str]]) -> OrderModel:
        return place_order(
            session,
            PlaceOrderCommand(
                customer_ref=customer,
                business_ref=DEFAULT_SCENARIO_ID,
                sales_rep_id="rep-001",
                order_date=today - timedelta(days=1),
                line_items=[
                    LineItemModel(product_id=product_id, quantity=qty, free_quantity=free, unit_price=Decimal(price))
                    for product_id, qty, free, price in lines
                ],
            ),
            actor,
        )

    first = place("cust-kandy-store", [(cement, 10, 1, "1000.00"), (paint, 20, 0, "150.00")])
    second = place("cust-galle-mart", [(brushes, 40, 4, "50.00")])
    third = place("cust-colombo-shop", [(cement, 5, 0, "1000.00")])

    machine = OrderStateMachine(session)
    for order in (first, second):
        machine.transition(order.id, OrderStatus.PROCESSING, actor)
        machine.transition(order.id, OrderStatus.CHECKING, actor)

    dispatch = DispatchService(session)
    load = dispatch.create_load(
        CreateLoadCommand(
            order_ids=[first.id, second.id],
            vehicle_ref="WP-CAB-1234",
            driver_ref="driver-nimal",
            helper_name="Sunil",
            loading_date=today,
        ),
        actor,
    )
    dispatch.reconcile(
        load.id,
        ReconcileLoadCommand(
            updates=[
                ReconcileOrderUpdate(order_id=first.id, outcome="Delivered", payment_status=PaymentStatus.PAID),
                # four brushes refused at the door
                ReconcileOrderUpdate(
                    order_id=second.id,
                    outcome="Delivered",
                    returned_items={brushes: 4},
                    payment_status=PaymentStatus.PARTIAL,
                ),
            ],
            close_load=True,
            expected_version=load.version,
            reason="demo delivery round",
        ),
        actor,
    )
    return _response(session, [first, second, third], seeded_now=True)
