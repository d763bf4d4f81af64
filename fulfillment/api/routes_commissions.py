from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from fulfillment.domain.commissions.service import CommissionService
from fulfillment.domain.orders.projections import iso
from fulfillment.persistence.models import CommissionRuleModel
from fulfillment.persistence.pg import get_session

router = APIRouter(prefix="/settings/commissions", tags=["commissions"])


class CommissionRuleCreateRequest(BaseModel):
    supplier_id: str = Field(min_length=1)
    supplier_name: str | None = None
    category: str = Field(min_length=1, description='product category, or "ALL"')
    rate: Decimal = Field(ge=0, le=100)


def _rule_view(rule: CommissionRuleModel) -> dict:
    return {
        "id": rule.id,
        "supplier_id": rule.supplier_id,
        "supplier_name": rule.supplier_name,
        "category": rule.category,
        "rate": rule.rate,
        "created_at": iso(rule.created_at),
    }


@router.get("")
def list_commission_rules(
    supplier_id: str | None = Query(default=None),
    session: Session = Depends(get_session),
):
    rules = CommissionService(session).list_rules(supplier_id)
    return {"count": len(rules), "rules": [_rule_view(rule) for rule in rules]}


@router.post("", status_code=201)
def add_commission_rule(request: CommissionRuleCreateRequest, session: Session = Depends(get_session)):
    try:
        rule = CommissionService(session).add_rule(
            supplier_id=request.supplier_id,
            category=request.category,
            rate=request.rate,
            supplier_name=request.supplier_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _rule_view(rule)


@router.get("/resolve")
def resolve_commission_rate(
    supplier_id: str = Query(min_length=1),
    category: str | None = Query(default=None),
    session: Session = Depends(get_session),
):
    return CommissionService(session).resolve(supplier_id, category).to_dict()


@router.delete("/{rule_id}", status_code=204)
def delete_commission_rule(rule_id: str, session: Session = Depends(get_session)):
    CommissionService(session).delete_rule(rule_id)
