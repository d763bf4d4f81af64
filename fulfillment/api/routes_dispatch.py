from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from fulfillment.core.security import Actor, get_actor
from fulfillment.domain.dispatch.aggregates import (
    CreateLoadCommand,
    LoadStatus,
    ReconcileLoadCommand,
    UpdateLoadCommand,
)
from fulfillment.domain.dispatch.projections import load_detail, load_summary, stats_view
from fulfillment.domain.dispatch.service import DispatchService
from fulfillment.domain.orders.projections import order_summary
from fulfillment.persistence.pg import get_session
from fulfillment.persistence.repositories import LoadingSheetRepository
from fulfillment.reconciliation.rules import reconcile_load, summarize_loads

router = APIRouter(tags=["dispatch"])


@router.get("/loading-sheets")
def list_loading_sheets(
    status: LoadStatus | None = Query(default=None),
    session: Session = Depends(get_session),
):
    loads = LoadingSheetRepository(session).list(status=status.value if status else None)
    return {"count": len(loads), "loading_sheets": [load_summary(load) for load in loads]}


@router.get("/loading-sheets/stats")
def loading_sheet_stats(
    status: LoadStatus | None = Query(default=None),
    session: Session = Depends(get_session),
):
    loads = LoadingSheetRepository(session).list(status=status.value if status else None)
    return stats_view(summarize_loads(reconcile_load(load.entries) for load in loads))


@router.post("/loading-sheets", status_code=201)
def create_loading_sheet(
    request: CreateLoadCommand,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    try:
        load = DispatchService(session).create_load(request, actor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return load_detail(session, load)


@router.get("/loading-sheets/{load_id}")
def get_loading_sheet(load_id: str, session: Session = Depends(get_session)):
    load = LoadingSheetRepository(session).require(load_id)
    return load_detail(session, load)


@router.patch("/loading-sheets/{load_id}")
def update_loading_sheet(
    load_id: str,
    request: UpdateLoadCommand,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    load = DispatchService(session).update_load(load_id, request, actor)
    return load_detail(session, load)


@router.delete("/loading-sheets/{load_id}/orders/{order_id}")
def remove_order_from_loading_sheet(
    load_id: str,
    order_id: str,
    expected_version: int = Query(ge=1),
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    order = DispatchService(session).remove_order(load_id, order_id, actor, expected_version=expected_version)
    return {
        "order": order_summary(order),
        "loading_sheet": load_detail(session, LoadingSheetRepository(session).require(load_id)),
    }


@router.post("/loading-sheets/{load_id}/reconcile")
def reconcile_loading_sheet(
    load_id: str,
    request: ReconcileLoadCommand,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    try:
        load = DispatchService(session).reconcile(load_id, request, actor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return load_detail(session, load)
