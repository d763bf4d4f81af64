from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from fulfillment.core.money import to_minor
from fulfillment.core.security import Actor
from fulfillment.domain.orders.aggregates import OrderLine, OrderStatus, PaymentStatus
from fulfillment.domain.orders.state_machine import apply_lines
from fulfillment.persistence.models import OrderModel, OrderStatusLogModel
from fulfillment.persistence.repositories import OrderRepository, ProductRepository, flush_or_conflict

logger = logging.getLogger(__name__)


class LineItemModel(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    free_quantity: int = Field(default=0, ge=0)
    unit_price: Decimal = Field(ge=0, description="display units, 2 decimals")

    def to_line(self) -> OrderLine:
        return OrderLine(
            product_id=self.product_id,
            quantity=self.quantity,
            unit_price=to_minor(self.unit_price),
            free_quantity=self.free_quantity,
        )


class PlaceOrderCommand(BaseModel):
    customer_ref: str = Field(min_length=1)
    business_ref: str | None = None
    sales_rep_id: str | None = None
    order_date: date | None = None
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    line_items: list[LineItemModel] = Field(min_length=1)


class PatchOrderCommand(BaseModel):
    status: OrderStatus | None = None
    line_items: list[LineItemModel] | None = Field(default=None, min_length=1)
    expected_version: int = Field(ge=1)
    final_amount: Decimal | None = Field(default=None, ge=0)
    returned_items: dict[str, int] | None = None
    note: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _one_change(self) -> "PatchOrderCommand":
        if (self.status is None) == (self.line_items is None):
            raise ValueError("provide exactly one of status or line_items")
        return self


def place_order(session: Session, command: PlaceOrderCommand, actor: Actor) -> OrderModel:
    orders = OrderRepository(session)
    products = ProductRepository(session)
    for item in command.line_items:
        products.require(item.product_id)
    order = OrderModel(
        order_number=orders.next_order_number(),
        order_date=command.order_date or date.today(),
        customer_ref=command.customer_ref,
        business_ref=command.business_ref,
        sales_rep_id=command.sales_rep_id,
        status=OrderStatus.PENDING.value,
        payment_status=command.payment_status.value,
    )
    apply_lines(order, [item.to_line() for item in command.line_items])
    session.add(order)
    flush_or_conflict(session, f"order {order.order_number}")
    session.add(
        OrderStatusLogModel(
            order_id=order.id,
            from_status=None,
            to_status=OrderStatus.PENDING.value,
            actor_type=actor.type,
            actor_id=actor.id,
            note="order placed",
        )
    )
    session.flush()
    logger.info(
        "order placed: order=%s customer=%s total_cents=%s",
        order.order_number,
        order.customer_ref,
        order.total_cents,
    )
    return order
