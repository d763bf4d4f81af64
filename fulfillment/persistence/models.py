from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON


def _json_type():
    return JSON().with_variant(JSONB(astext_type=Text()), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ProductModel(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class OrderModel(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    business_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sales_rep_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="Pending", nullable=False)
    payment_status: Mapped[str] = mapped_column(String(16), default="Unpaid", nullable=False)
    total_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    load_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("loading_sheets.id"),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    items: Mapped[list["OrderItemModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    free_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    line_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    order: Mapped[OrderModel] = relationship(back_populates="items")


class OrderStatusLogModel(Base):
    __tablename__ = "order_status_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    to_status: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LoadingSheetModel(Base):
    __tablename__ = "loading_sheets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    load_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    loading_date: Mapped[date] = mapped_column(Date, nullable=False)
    vehicle_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    driver_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    helper_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    location_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="In Transit", nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    entries: Mapped[list["LoadEntryModel"]] = relationship(
        back_populates="load",
        cascade="all, delete-orphan",
        order_by="LoadEntryModel.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class LoadEntryModel(Base):
    __tablename__ = "loading_sheet_entries"
    __table_args__ = (
        # an order sits on at most one loading sheet at a time
        UniqueConstraint("order_id", name="uq_load_entry_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    load_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("loading_sheets.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    original_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    final_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    load: Mapped[LoadingSheetModel] = relationship(back_populates="entries")
    order: Mapped[OrderModel] = relationship(lazy="selectin")


class LoadAuditModel(Base):
    __tablename__ = "loading_sheet_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    load_id: Mapped[str] = mapped_column(String(36), ForeignKey("loading_sheets.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    changes: Mapped[dict] = mapped_column(_json_type(), nullable=False, default=dict)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class StockMovementModel(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", "seq", name="uq_stock_movement_pair_seq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    location_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    counterparty: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


class CommissionRuleModel(Base):
    __tablename__ = "commission_rules"
    __table_args__ = (
        UniqueConstraint("supplier_id", "category", name="uq_commission_supplier_category"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


@event.listens_for(StockMovementModel, "before_update")
def _refuse_movement_update(mapper, connection, target: StockMovementModel) -> None:
    raise PermissionError(
        f"stock movement {target.id} is append-only; record an Adjustment instead"
    )


@event.listens_for(StockMovementModel, "before_delete")
def _refuse_movement_delete(mapper, connection, target: StockMovementModel) -> None:
    raise PermissionError(
        f"stock movement {target.id} is append-only; record an Adjustment instead"
    )


Index("ix_orders_status", OrderModel.status)
Index("ix_orders_load_id", OrderModel.load_id)
Index("ix_order_items_order_id", OrderItemModel.order_id)
Index("ix_order_status_log_order_id", OrderStatusLogModel.order_id)
Index("ix_loading_sheets_status", LoadingSheetModel.status)
Index("ix_load_entries_load_id", LoadEntryModel.load_id)
Index("ix_stock_movements_pair", StockMovementModel.product_id, StockMovementModel.location_id)
Index("ix_stock_movements_reference", StockMovementModel.reference)
Index("ix_commission_rules_supplier", CommissionRuleModel.supplier_id)
