from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from fulfillment.domain.orders.aggregates import PaymentStatus


class LoadStatus(str, Enum):
    IN_TRANSIT = "In Transit"
    COMPLETED = "Completed"


class CreateLoadCommand(BaseModel):
    order_ids: list[str] = Field(min_length=1)
    vehicle_ref: str = Field(min_length=1)
    driver_ref: str = Field(min_length=1)
    loading_date: date
    helper_name: str | None = None
    location_id: str | None = None


class UpdateLoadCommand(BaseModel):
    vehicle_ref: str | None = Field(default=None, min_length=1)
    driver_ref: str | None = Field(default=None, min_length=1)
    helper_name: str | None = None
    loading_date: date | None = None
    status: LoadStatus | None = None
    expected_version: int = Field(ge=1)
    correction_reason: str | None = Field(default=None, max_length=500)


class ReconcileOrderUpdate(BaseModel):
    order_id: str
    outcome: Literal["Delivered", "Completed", "Returned"] | None = None
    final_amount: Decimal | None = Field(default=None, ge=0)
    returned_items: dict[str, int] | None = None
    payment_status: PaymentStatus | None = None


class ReconcileLoadCommand(BaseModel):
    updates: list[ReconcileOrderUpdate] = Field(default_factory=list)
    close_load: bool = False
    expected_version: int = Field(ge=1)
    reason: str | None = Field(default=None, max_length=500)
