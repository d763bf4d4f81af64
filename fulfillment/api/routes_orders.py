from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from fulfillment.core.money import to_display, to_minor
from fulfillment.core.security import Actor, get_actor
from fulfillment.domain.commissions.service import CommissionService, OrderCommission
from fulfillment.domain.orders.aggregates import OrderStatus
from fulfillment.domain.orders.commands import PatchOrderCommand, PlaceOrderCommand, place_order
from fulfillment.domain.orders.projections import order_detail, order_history, order_summary
from fulfillment.domain.orders.state_machine import OrderStateMachine
from fulfillment.persistence.pg import get_session
from fulfillment.persistence.repositories import OrderRepository

router = APIRouter(tags=["orders"])


def _commission_view(commission: OrderCommission) -> dict:
    return {
        "order_id": commission.order_id,
        "order_number": commission.order_number,
        "sales_rep_id": commission.sales_rep_id,
        "total_commission": to_display(commission.total_cents),
        "lines": [
            {
                "product_id": line.product_id,
                "line_total": to_display(line.line_total_cents),
                "delivered_quantity": line.delivered_quantity,
                "commission_base": to_display(line.base_cents),
                "commission": to_display(line.commission_cents),
                **line.resolution.to_dict(),
            }
            for line in commission.lines
        ],
    }


@router.post("/orders", status_code=201)
def create_order(
    request: PlaceOrderCommand,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    try:
        order = place_order(session, request, actor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return order_detail(session, order)


@router.get("/orders")
def list_orders(
    status: OrderStatus | None = Query(default=None),
    sales_rep_id: str | None = Query(default=None),
    session: Session = Depends(get_session),
):
    orders = OrderRepository(session).list(
        status=status.value if status else None,
        sales_rep_id=sales_rep_id,
    )
    return {"count": len(orders), "orders": [order_summary(order) for order in orders]}


@router.get("/orders/{order_id}")
def get_order(order_id: str, session: Session = Depends(get_session)):
    order = OrderRepository(session).require(order_id)
    return order_detail(session, order)


@router.patch("/orders/{order_id}")
def patch_order(
    order_id: str,
    request: PatchOrderCommand,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    machine = OrderStateMachine(session)
    try:
        if request.line_items is not None:
            order = machine.edit_line_items(
                order_id,
                [item.to_line() for item in request.line_items],
                actor,
                expected_version=request.expected_version,
            )
        else:
            order = machine.transition(
                order_id,
                request.status,
                actor,
                expected_version=request.expected_version,
                final_amount_cents=None if request.final_amount is None else to_minor(request.final_amount),
                returned_items=request.returned_items,
                note=request.note,
            )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return order_detail(session, order)


@router.get("/orders/{order_id}/history")
def get_order_history(order_id: str, session: Session = Depends(get_session)):
    order = OrderRepository(session).require(order_id)
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "history": order_history(session, order.id),
    }


@router.get("/orders/{order_id}/commission")
def get_order_commission(order_id: str, session: Session = Depends(get_session)):
    order = OrderRepository(session).require(order_id)
    return _commission_view(CommissionService(session).order_commission(order))


@router.get("/reps/{rep_id}/commission")
def get_rep_commission(rep_id: str, session: Session = Depends(get_session)):
    commissions = CommissionService(session).rep_commission(rep_id)
    return {
        "sales_rep_id": rep_id,
        "orders": len(commissions),
        "total_commission": to_display(sum(item.total_cents for item in commissions)),
        "breakdown": [_commission_view(item) for item in commissions],
    }
