from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment.core.money import to_display
from fulfillment.domain.orders.aggregates import OrderStatus, allowed_transitions
from fulfillment.persistence.models import OrderModel, OrderStatusLogModel, ProductModel


def iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def order_summary(order: OrderModel) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "invoice_number": order.invoice_number,
        "order_date": order.order_date.isoformat(),
        "customer_ref": order.customer_ref,
        "business_ref": order.business_ref,
        "sales_rep_id": order.sales_rep_id,
        "item_count": order.item_count,
        "total_amount": to_display(order.total_cents),
        "total_cents": order.total_cents,
        "status": order.status,
        "payment_status": order.payment_status,
        "load_id": order.load_id,
        "version": order.version,
    }


def order_detail(session: Session, order: OrderModel) -> dict:
    product_ids = [item.product_id for item in order.items]
    products = {
        product.id: product
        for product in session.scalars(select(ProductModel).where(ProductModel.id.in_(product_ids))).all()
    } if product_ids else {}

    items = []
    for item in order.items:
        product = products.get(item.product_id)
        items.append(
            {
                "product_id": item.product_id,
                "sku": product.sku if product else None,
                "name": product.name if product else None,
                "quantity": item.quantity,
                "free_quantity": item.free_quantity,
                "unit_price": to_display(item.unit_price_cents),
                "line_total": to_display(item.line_total_cents),
            }
        )

    return {
        **order_summary(order),
        "line_items": items,
        "allowed_actions": [status.value for status in allowed_transitions(OrderStatus(order.status))],
        "created_at": iso(order.created_at),
        "updated_at": iso(order.updated_at),
    }


def order_history(session: Session, order_id: str) -> list[dict]:
    session.flush()
    rows = session.scalars(
        select(OrderStatusLogModel)
        .where(OrderStatusLogModel.order_id == order_id)
        .order_by(OrderStatusLogModel.id.asc())
    ).all()
    return [
        {
            "from_status": row.from_status,
            "to_status": row.to_status,
            "actor": {"type": row.actor_type, "id": row.actor_id},
            "note": row.note,
            "created_at": iso(row.created_at),
        }
        for row in rows
    ]
