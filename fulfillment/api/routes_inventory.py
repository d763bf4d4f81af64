from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from fulfillment.core.config import get_settings
from fulfillment.core.security import Actor, get_actor
from fulfillment.domain.inventory.aggregates import MovementType
from fulfillment.domain.inventory.ledger import InventoryLedger
from fulfillment.domain.orders.projections import iso
from fulfillment.persistence.models import StockMovementModel
from fulfillment.persistence.pg import get_session
from fulfillment.persistence.repositories import ProductRepository

router = APIRouter(tags=["inventory"])


class MovementCreateRequest(BaseModel):
    product_id: str
    location_id: str | None = None
    movement_type: MovementType
    quantity: int
    reference: str | None = Field(default=None, max_length=64)
    counterparty: str | None = Field(default=None, max_length=128)
    note: str | None = None
    allow_negative: bool = False
    occurred_at: datetime | None = None


class TransferRequest(BaseModel):
    product_id: str
    source_location_id: str
    dest_location_id: str
    quantity: int = Field(gt=0)
    reference: str | None = Field(default=None, max_length=64)
    note: str | None = None


class StockTakeRequest(BaseModel):
    product_id: str
    location_id: str | None = None
    counted_quantity: int = Field(ge=0)
    note: str | None = None


def _movement_view(row: StockMovementModel) -> dict:
    return {
        "id": row.id,
        "product_id": row.product_id,
        "location_id": row.location_id,
        "seq": row.seq,
        "movement_type": row.movement_type,
        "quantity": row.quantity,
        "balance_after": row.balance_after,
        "occurred_at": iso(row.occurred_at),
        "counterparty": row.counterparty,
        "reference": row.reference,
        "note": row.note,
        "actor_id": row.actor_id,
    }


@router.get("/products/{product_id}/stocks")
def get_product_stocks(product_id: str, session: Session = Depends(get_session)):
    product = ProductRepository(session).require(product_id)
    balances = InventoryLedger(session).balances(product.id)
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "total": sum(balances.values()),
        "locations": [
            {"location_id": location_id, "balance": balance}
            for location_id, balance in balances.items()
        ],
    }


@router.get("/products/{product_id}/movements")
def list_product_movements(
    product_id: str,
    location_id: str | None = Query(default=None),
    start_after: int | None = Query(default=None, ge=0),
    limit: int | None = Query(default=None, ge=1, le=1000),
    session: Session = Depends(get_session),
):
    product = ProductRepository(session).require(product_id)
    page_size = limit or get_settings().history_page_size
    history = InventoryLedger(session).history(
        product.id,
        location_id=location_id,
        start_after=start_after,
        page_size=page_size,
    )
    rows = history.fetch_page(start_after)
    return {
        "product_id": product.id,
        "count": len(rows),
        "next_start_after": rows[-1].id if len(rows) == page_size else None,
        "movements": [_movement_view(row) for row in rows],
    }


@router.post("/inventory/movements", status_code=201)
def record_movement(
    request: MovementCreateRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    ProductRepository(session).require(request.product_id)
    try:
        row = InventoryLedger(session).record_movement(
            product_id=request.product_id,
            location_id=request.location_id or get_settings().main_location_id,
            movement_type=request.movement_type,
            quantity=request.quantity,
            reference=request.reference,
            counterparty=request.counterparty,
            note=request.note,
            allow_negative=request.allow_negative,
            actor_id=actor.id,
            occurred_at=request.occurred_at,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _movement_view(row)


@router.post("/inventory/transfer", status_code=201)
def transfer_stock(
    request: TransferRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    ProductRepository(session).require(request.product_id)
    try:
        rows = InventoryLedger(session).transfer(
            product_id=request.product_id,
            source_location_id=request.source_location_id,
            dest_location_id=request.dest_location_id,
            quantity=request.quantity,
            reference=request.reference,
            note=request.note,
            actor_id=actor.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"movements": [_movement_view(row) for row in rows]}


@router.post("/inventory/stock-take")
def stock_take(
    request: StockTakeRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    ProductRepository(session).require(request.product_id)
    location_id = request.location_id or get_settings().main_location_id
    ledger = InventoryLedger(session)
    try:
        row = ledger.stock_take(
            product_id=request.product_id,
            location_id=location_id,
            counted_quantity=request.counted_quantity,
            note=request.note,
            actor_id=actor.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "product_id": request.product_id,
        "location_id": location_id,
        "balance": ledger.current_balance(request.product_id, location_id),
        "adjustment": _movement_view(row) if row is not None else None,
    }
