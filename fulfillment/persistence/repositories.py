from __future__ import annotations

from datetime import date
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fulfillment.core.config import get_settings
from fulfillment.core.errors import ConcurrentModificationError, NotFoundError
from fulfillment.persistence.models import (
    CommissionRuleModel,
    LoadingSheetModel,
    OrderModel,
    ProductModel,
)


def flush_or_conflict(session: Session, subject: str) -> None:
    try:
        session.flush()
    except StaleDataError as exc:
        raise ConcurrentModificationError(
            f"{subject} was modified concurrently; reload and retry",
        ) from exc
    except IntegrityError as exc:
        raise ConcurrentModificationError(
            f"{subject} conflicts with a concurrent write; reload and retry",
        ) from exc


def check_version(current: int, expected: int | None, subject: str) -> None:
    if expected is not None and current != expected:
        raise ConcurrentModificationError(
            f"{subject} is at version {current}, expected {expected}; reload and retry",
            current_version=current,
            expected_version=expected,
        )


class OrderRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, order_id: str) -> OrderModel | None:
        return self.session.get(OrderModel, order_id)

    def require(self, order_id: str) -> OrderModel:
        order = self.get(order_id)
        if order is None:
            raise NotFoundError(f"order {order_id} not found", order_id=order_id)
        return order

    def require_many(self, order_ids: Iterable[str]) -> list[OrderModel]:
        return [self.require(order_id) for order_id in order_ids]

    def list(self, status: str | None = None, sales_rep_id: str | None = None) -> list[OrderModel]:
        stmt = select(OrderModel).order_by(OrderModel.created_at.desc(), OrderModel.order_number.desc())
        if status:
            stmt = stmt.where(OrderModel.status == status)
        if sales_rep_id:
            stmt = stmt.where(OrderModel.sales_rep_id == sales_rep_id)
        return list(self.session.scalars(stmt).all())

    def next_order_number(self) -> str:
        settings = get_settings()
        self.session.flush()
        count = self.session.scalar(select(func.count()).select_from(OrderModel)) or 0
        return f"{settings.order_number_prefix}-{count + settings.document_number_offset}"

    def next_invoice_number(self) -> str:
        settings = get_settings()
        self.session.flush()
        count = self.session.scalar(
            select(func.count()).select_from(OrderModel).where(OrderModel.invoice_number.is_not(None))
        ) or 0
        return f"{settings.invoice_number_prefix}-{count + settings.document_number_offset}"


class LoadingSheetRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, load_id: str) -> LoadingSheetModel | None:
        return self.session.get(LoadingSheetModel, load_id)

    def require(self, load_id: str) -> LoadingSheetModel:
        load = self.get(load_id)
        if load is None:
            raise NotFoundError(f"loading sheet {load_id} not found", load_id=load_id)
        return load

    def list(self, status: str | None = None) -> list[LoadingSheetModel]:
        stmt = select(LoadingSheetModel).order_by(
            LoadingSheetModel.loading_date.desc(),
            LoadingSheetModel.load_number.desc(),
        )
        if status:
            stmt = stmt.where(LoadingSheetModel.status == status)
        return list(self.session.scalars(stmt).all())

    def next_load_number(self, loading_date: date) -> str:
        settings = get_settings()
        self.session.flush()
        count = self.session.scalar(select(func.count()).select_from(LoadingSheetModel)) or 0
        return f"{settings.load_number_prefix}-{loading_date.year}-{count + settings.document_number_offset}"


class ProductRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, product_id: str) -> ProductModel | None:
        return self.session.get(ProductModel, product_id)

    def require(self, product_id: str) -> ProductModel:
        product = self.get(product_id)
        if product is None:
            raise NotFoundError(f"product {product_id} not found", product_id=product_id)
        return product

    def by_sku(self, sku: str) -> ProductModel | None:
        return self.session.scalar(select(ProductModel).where(ProductModel.sku == sku))

    def upsert(
        self,
        sku: str,
        name: str,
        supplier_id: str | None,
        category: str | None,
        product_id: str | None = None,
    ) -> ProductModel:
        product = self.by_sku(sku)
        if product is None:
            product = ProductModel(sku=sku, name=name, supplier_id=supplier_id, category=category)
            if product_id:
                product.id = product_id
            self.session.add(product)
        else:
            product.name = name
            product.supplier_id = supplier_id
            product.category = category
        self.session.flush()
        return product


class CommissionRuleRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, rule_id: str) -> CommissionRuleModel | None:
        return self.session.get(CommissionRuleModel, rule_id)

    def find(self, supplier_id: str, category: str) -> CommissionRuleModel | None:
        return self.session.scalar(
            select(CommissionRuleModel)
            .where(CommissionRuleModel.supplier_id == supplier_id)
            .where(CommissionRuleModel.category == category)
        )

    def for_supplier(self, supplier_id: str) -> list[CommissionRuleModel]:
        return list(
            self.session.scalars(
                select(CommissionRuleModel).where(CommissionRuleModel.supplier_id == supplier_id)
            ).all()
        )

    def list(self, supplier_id: str | None = None) -> list[CommissionRuleModel]:
        stmt = select(CommissionRuleModel).order_by(CommissionRuleModel.created_at.desc())
        if supplier_id:
            stmt = stmt.where(CommissionRuleModel.supplier_id == supplier_id)
        return list(self.session.scalars(stmt).all())
