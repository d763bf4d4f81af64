from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment.core.config import get_settings
from fulfillment.core.errors import (
    ForbiddenError,
    IncompleteOrdersError,
    InvalidTransitionError,
    LoadClosedError,
    NotFoundError,
    OrderAlreadyDispatchedError,
)
from fulfillment.core.money import to_minor
from fulfillment.core.security import Actor, require_roles
from fulfillment.domain.dispatch.aggregates import (
    CreateLoadCommand,
    LoadStatus,
    ReconcileLoadCommand,
    UpdateLoadCommand,
)
from fulfillment.domain.dispatch.audit import record_load_audit
from fulfillment.domain.orders.aggregates import (
    DISPATCHABLE_STATUSES,
    TERMINAL_STATUSES,
    OrderStatus,
)
from fulfillment.domain.orders.state_machine import OrderStateMachine
from fulfillment.persistence.models import LoadEntryModel, LoadingSheetModel, OrderModel
from fulfillment.persistence.repositories import (
    LoadingSheetRepository,
    OrderRepository,
    check_version,
    flush_or_conflict,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("vehicle_ref", "driver_ref", "helper_name", "loading_date")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


class DispatchService:
    def __init__(self, session: Session):
        self.session = session
        self.settings = get_settings()
        self.loads = LoadingSheetRepository(session)
        self.orders = OrderRepository(session)
        self.machine = OrderStateMachine(session)

    def open_load_of(self, order: OrderModel) -> LoadingSheetModel | None:
        if not order.load_id:
            return None
        load = self.loads.get(order.load_id)
        if load is None or load.status == LoadStatus.COMPLETED.value:
            return None
        return load

    def create_load(self, command: CreateLoadCommand, actor: Actor) -> LoadingSheetModel:
        order_ids = list(dict.fromkeys(command.order_ids))
        orders = self.orders.require_many(order_ids)

        # Every precondition is checked before anything is written.
        for order in orders:
            bound = self.open_load_of(order)
            if bound is not None:
                raise OrderAlreadyDispatchedError(
                    f"order {order.order_number} is already on open load {bound.load_number}",
                    order_id=order.id,
                    load_id=bound.id,
                )
            status = OrderStatus(order.status)
            if status not in DISPATCHABLE_STATUSES:
                raise InvalidTransitionError(
                    f"order {order.order_number} is {status.value}; only Checking or Loading orders can be loaded",
                    order_id=order.id,
                    status=status.value,
                )

        load = LoadingSheetModel(
            id=str(uuid.uuid4()),
            load_number=self.loads.next_load_number(command.loading_date),
            loading_date=command.loading_date,
            vehicle_ref=command.vehicle_ref,
            driver_ref=command.driver_ref,
            helper_name=command.helper_name or None,
            location_id=command.location_id or self.settings.main_location_id,
            status=LoadStatus.IN_TRANSIT.value,
        )
        for position, order in enumerate(orders):
            load.entries.append(
                LoadEntryModel(
                    order_id=order.id,
                    position=position,
                    original_cents=order.total_cents,
                )
            )
        self.session.add(load)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise OrderAlreadyDispatchedError(
                "one of the orders was claimed by another load; reload and retry",
                order_ids=order_ids,
            ) from exc
        for order in orders:
            order.load_id = load.id

        for order in orders:
            if order.status == OrderStatus.CHECKING.value:
                self.machine.transition(order.id, OrderStatus.LOADING, actor, note=f"loaded on {load.load_number}")
            if self.settings.dispatch_advance_to_in_transit:
                self.machine.transition(
                    order.id,
                    OrderStatus.IN_TRANSIT,
                    actor,
                    note=f"dispatched on {load.load_number}",
                )

        record_load_audit(
            self.session,
            load_id=load.id,
            action="created",
            actor=actor,
            changes={
                "orders": [order.order_number for order in orders],
                "vehicle_ref": load.vehicle_ref,
                "driver_ref": load.driver_ref,
                "loading_date": load.loading_date.isoformat(),
            },
        )
        flush_or_conflict(self.session, f"load {load.load_number}")
        logger.info(
            "load created: load=%s orders=%s vehicle=%s driver=%s",
            load.load_number,
            len(orders),
            load.vehicle_ref,
            load.driver_ref,
        )
        return load

    def update_load(
        self,
        load_id: str,
        command: UpdateLoadCommand,
        actor: Actor,
    ) -> LoadingSheetModel:
        load = self.loads.require(load_id)
        check_version(load.version, command.expected_version, f"load {load.load_number}")
        current = LoadStatus(load.status)
        correcting = current is LoadStatus.COMPLETED

        if correcting:
            try:
                if not (command.correction_reason and command.correction_reason.strip()):
                    raise LoadClosedError(
                        f"load {load.load_number} is completed; only an admin correction with a reason may change it",
                        load_id=load.id,
                    )
                require_roles(actor, {"admin"}, f"load {load.load_number} is completed; corrections need an admin key")
            except (LoadClosedError, ForbiddenError):
                logger.warning(
                    "rejected edit of completed load: load=%s actor=%s:%s",
                    load.load_number,
                    actor.type,
                    actor.id,
                )
                raise

        requested = command.model_dump(exclude_unset=True)
        changes: dict[str, Any] = {}
        for field in EDITABLE_FIELDS:
            if field not in requested:
                continue
            value = requested[field]
            if field == "helper_name":
                value = value or None
            elif value is None:
                continue
            if getattr(load, field) != value:
                changes[field] = {"from": _jsonable(getattr(load, field)), "to": _jsonable(value)}
                setattr(load, field, value)

        target = command.status
        if target is not None and target is not current:
            if target is LoadStatus.COMPLETED:
                pending = [
                    entry.order.order_number
                    for entry in load.entries
                    if OrderStatus(entry.order.status) not in TERMINAL_STATUSES
                ]
                if pending:
                    raise IncompleteOrdersError(
                        f"load {load.load_number} still has undelivered orders: {', '.join(pending)}",
                        load_id=load.id,
                        orders=pending,
                    )
            changes["status"] = {"from": current.value, "to": target.value}
            load.status = target.value

        if not changes:
            return load

        load.updated_at = _now()
        record_load_audit(
            self.session,
            load_id=load.id,
            action="correction" if correcting else "updated",
            actor=actor,
            changes=changes,
            reason=command.correction_reason,
        )
        flush_or_conflict(self.session, f"load {load.load_number}")
        logger.info("load updated: load=%s fields=%s", load.load_number, sorted(changes))
        return load

    def remove_order(
        self,
        load_id: str,
        order_id: str,
        actor: Actor,
        expected_version: int | None = None,
    ) -> OrderModel:
        load = self.loads.require(load_id)
        check_version(load.version, expected_version, f"load {load.load_number}")
        if load.status == LoadStatus.COMPLETED.value:
            raise LoadClosedError(
                f"load {load.load_number} is completed; orders can no longer be removed",
                load_id=load.id,
            )
        entry = next((item for item in load.entries if item.order_id == order_id), None)
        if entry is None:
            raise NotFoundError(
                f"order {order_id} is not on load {load.load_number}",
                load_id=load.id,
                order_id=order_id,
            )

        order = entry.order
        self.machine.revert_to_checking(order, actor, note=f"removed from {load.load_number}")
        load.entries.remove(entry)
        load.updated_at = _now()
        record_load_audit(
            self.session,
            load_id=load.id,
            action="order_removed",
            actor=actor,
            changes={"order_id": order.id, "order_number": order.order_number, "original": entry.original_cents},
        )
        flush_or_conflict(self.session, f"load {load.load_number}")
        logger.info("order removed from load: load=%s order=%s", load.load_number, order.order_number)
        return order

    def reconcile(
        self,
        load_id: str,
        command: ReconcileLoadCommand,
        actor: Actor,
    ) -> LoadingSheetModel:
        load = self.loads.require(load_id)
        check_version(load.version, command.expected_version, f"load {load.load_number}")
        if load.status == LoadStatus.COMPLETED.value:
            raise LoadClosedError(
                f"load {load.load_number} is completed; use an admin correction instead",
                load_id=load.id,
            )

        entries = {entry.order_id: entry for entry in load.entries}
        for update in command.updates:
            entry = entries.get(update.order_id)
            if entry is None:
                raise NotFoundError(
                    f"order {update.order_id} is not on load {load.load_number}",
                    load_id=load.id,
                    order_id=update.order_id,
                )
            order = entry.order
            final_cents = to_minor(update.final_amount) if update.final_amount is not None else None

            if update.outcome in {"Delivered", "Completed"}:
                if order.status == OrderStatus.LOADING.value:
                    self.machine.transition(order.id, OrderStatus.IN_TRANSIT, actor, note="dispatched at reconciliation")
                self.machine.transition(
                    order.id,
                    OrderStatus(update.outcome),
                    actor,
                    final_amount_cents=final_cents,
                    returned_items=update.returned_items,
                    note=command.reason,
                )
            elif update.outcome == "Returned":
                self.machine.transition(
                    order.id,
                    OrderStatus.CANCELLED,
                    actor,
                    final_amount_cents=final_cents,
                    note=command.reason or "returned",
                )
            elif final_cents is not None:
                self._amend_final(entry, order, final_cents, actor, command.reason)

            if update.payment_status is not None:
                self.machine.set_payment_status(order, update.payment_status)

        flush_or_conflict(self.session, f"load {load.load_number}")
        if command.close_load:
            self.update_load(
                load.id,
                UpdateLoadCommand(status=LoadStatus.COMPLETED, expected_version=load.version),
                actor,
            )
        logger.info(
            "load reconciled: load=%s updates=%s closed=%s",
            load.load_number,
            len(command.updates),
            command.close_load,
        )
        return load

    def _amend_final(
        self,
        entry: LoadEntryModel,
        order: OrderModel,
        final_cents: int,
        actor: Actor,
        reason: str | None,
    ) -> None:
        if OrderStatus(order.status) not in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"order {order.order_number} must be delivered or returned before its final amount is amended",
                order_id=order.id,
                status=order.status,
            )
        if entry.final_cents == final_cents:
            return
        record_load_audit(
            self.session,
            load_id=entry.load_id,
            action="final_amount",
            actor=actor,
            changes={"order_id": order.id, "from": entry.final_cents, "to": final_cents},
            reason=reason or "amended at reconciliation",
        )
        entry.final_cents = final_cents
        entry.updated_at = _now()
