from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment.core.errors import (
    InvalidTransitionError,
    NotDispatchedError,
    OrderLockedError,
)
from fulfillment.core.security import Actor
from fulfillment.domain.dispatch.audit import record_load_audit
from fulfillment.domain.inventory.aggregates import MovementRequest, MovementType
from fulfillment.domain.inventory.ledger import InventoryLedger
from fulfillment.domain.orders.aggregates import (
    DELIVERED_STATUSES,
    EDITABLE_STATUSES,
    REVERTIBLE_STATUSES,
    OrderLine,
    OrderStatus,
    PaymentStatus,
    allowed_transitions,
    is_legal_transition,
    merge_lines,
)
from fulfillment.persistence.models import (
    LoadEntryModel,
    LoadingSheetModel,
    OrderItemModel,
    OrderModel,
    OrderStatusLogModel,
)
from fulfillment.persistence.repositories import (
    OrderRepository,
    ProductRepository,
    check_version,
    flush_or_conflict,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def apply_lines(order: OrderModel, lines: list[OrderLine]) -> None:
    merged = merge_lines(lines)
    if not merged:
        raise ValueError("an order needs at least one line item")
    order.items = [
        OrderItemModel(
            position=position,
            product_id=line.product_id,
            quantity=line.quantity,
            free_quantity=line.free_quantity,
            unit_price_cents=line.unit_price,
            line_total_cents=line.line_total,
        )
        for position, line in enumerate(merged)
    ]
    order.total_cents = sum(line.line_total for line in merged)
    order.item_count = len(merged)


class OrderStateMachine:
    def __init__(self, session: Session):
        self.session = session
        self.orders = OrderRepository(session)
        self.ledger = InventoryLedger(session)
        self.products = ProductRepository(session)

    def allowed_actions(self, order: OrderModel) -> list[str]:
        return [status.value for status in allowed_transitions(OrderStatus(order.status))]

    def transition(
        self,
        order_id: str,
        target: OrderStatus | str,
        actor: Actor,
        expected_version: int | None = None,
        final_amount_cents: int | None = None,
        returned_items: dict[str, int] | None = None,
        note: str | None = None,
    ) -> OrderModel:
        order = self.orders.require(order_id)
        check_version(order.version, expected_version, f"order {order.order_number}")
        current = OrderStatus(order.status)
        target = OrderStatus(target)

        if not is_legal_transition(current, target):
            raise InvalidTransitionError(
                f"order {order.order_number} cannot move from {current.value} to {target.value}",
                order_id=order.id,
                from_status=current.value,
                to_status=target.value,
                allowed=self.allowed_actions(order),
            )
        if returned_items and target not in DELIVERED_STATUSES:
            raise ValueError("returned items only apply when delivering an order")
        if final_amount_cents is not None and final_amount_cents < 0:
            raise ValueError("final amount must not be negative")

        if target is OrderStatus.LOADING:
            self._assign_invoice_number(order)
        elif target is OrderStatus.IN_TRANSIT:
            self._require_open_load(order)
        elif target in DELIVERED_STATUSES:
            self._deliver(order, actor, final_amount_cents, returned_items or {})
        elif target is OrderStatus.CANCELLED:
            self._cancel(order, current, actor, final_amount_cents)

        self._set_status(order, current, target, actor, note)
        flush_or_conflict(self.session, f"order {order.order_number}")
        logger.info(
            "order transition: order=%s %s -> %s actor=%s:%s",
            order.order_number,
            current.value,
            target.value,
            actor.type,
            actor.id,
        )
        return order

    def edit_line_items(
        self,
        order_id: str,
        lines: list[OrderLine],
        actor: Actor,
        expected_version: int | None = None,
    ) -> OrderModel:
        order = self.orders.require(order_id)
        check_version(order.version, expected_version, f"order {order.order_number}")
        current = OrderStatus(order.status)
        if current not in EDITABLE_STATUSES:
            raise OrderLockedError(
                f"line items of order {order.order_number} are locked once it has left Checking",
                order_id=order.id,
                status=current.value,
            )
        for line in lines:
            self.products.require(line.product_id)
        apply_lines(order, lines)
        order.updated_at = _now()
        self._log(order, current, current, actor, "line items edited")
        flush_or_conflict(self.session, f"order {order.order_number}")
        logger.info("order line items edited: order=%s total_cents=%s", order.order_number, order.total_cents)
        return order

    def revert_to_checking(self, order: OrderModel, actor: Actor, note: str | None = None) -> OrderModel:
        current = OrderStatus(order.status)
        if current not in REVERTIBLE_STATUSES:
            raise InvalidTransitionError(
                f"order {order.order_number} in {current.value} cannot be taken off a load",
                order_id=order.id,
                from_status=current.value,
                to_status=OrderStatus.CHECKING.value,
            )
        order.load_id = None
        self._set_status(order, current, OrderStatus.CHECKING, actor, note or "removed from load")
        return order

    def set_payment_status(self, order: OrderModel, payment_status: PaymentStatus | str) -> OrderModel:
        order.payment_status = PaymentStatus(payment_status).value
        order.updated_at = _now()
        return order

    def _set_status(
        self,
        order: OrderModel,
        current: OrderStatus,
        target: OrderStatus,
        actor: Actor,
        note: str | None,
    ) -> None:
        order.status = target.value
        order.updated_at = _now()
        self._log(order, current, target, actor, note)

    def _log(
        self,
        order: OrderModel,
        current: OrderStatus,
        target: OrderStatus,
        actor: Actor,
        note: str | None,
    ) -> None:
        self.session.add(
            OrderStatusLogModel(
                order_id=order.id,
                from_status=current.value,
                to_status=target.value,
                actor_type=actor.type,
                actor_id=actor.id,
                note=note,
            )
        )

    def _assign_invoice_number(self, order: OrderModel) -> None:
        if not order.invoice_number:
            order.invoice_number = self.orders.next_invoice_number()

    def _entry_for(self, order: OrderModel) -> LoadEntryModel | None:
        self.session.flush()
        return self.session.scalar(select(LoadEntryModel).where(LoadEntryModel.order_id == order.id))

    def _require_open_load(self, order: OrderModel) -> tuple[LoadingSheetModel, LoadEntryModel]:
        load = self.session.get(LoadingSheetModel, order.load_id) if order.load_id else None
        entry = self._entry_for(order)
        if load is None or entry is None or entry.load_id != load.id:
            raise NotDispatchedError(
                f"order {order.order_number} is not on a loading sheet",
                order_id=order.id,
            )
        if load.status == "Completed":
            raise NotDispatchedError(
                f"order {order.order_number} belongs to completed load {load.load_number}",
                order_id=order.id,
                load_id=load.id,
            )
        return load, entry

    def _set_final(self, entry: LoadEntryModel, final_cents: int, actor: Actor, reason: str) -> None:
        previous = entry.final_cents
        entry.final_cents = final_cents
        entry.updated_at = _now()
        record_load_audit(
            self.session,
            load_id=entry.load_id,
            action="final_amount",
            actor=actor,
            changes={"order_id": entry.order_id, "from": previous, "to": final_cents},
            reason=reason,
        )

    def _deliver(
        self,
        order: OrderModel,
        actor: Actor,
        final_amount_cents: int | None,
        returned_items: dict[str, int],
    ) -> None:
        load, entry = self._require_open_load(order)
        items_by_product = {item.product_id: item for item in order.items}
        unknown = sorted(set(returned_items) - set(items_by_product))
        if unknown:
            raise ValueError(f"returned products are not on order {order.order_number}: {', '.join(unknown)}")

        requests: list[MovementRequest] = []
        returned_value = 0
        for item in order.items:
            requests.append(
                MovementRequest(
                    product_id=item.product_id,
                    location_id=load.location_id,
                    movement_type=MovementType.SALE,
                    quantity=item.quantity + item.free_quantity,
                    reference=order.order_number,
                    counterparty=order.customer_ref,
                )
            )
        for item in order.items:
            returned = int(returned_items.get(item.product_id, 0))
            if returned == 0:
                continue
            if returned < 0 or returned > item.quantity + item.free_quantity:
                raise ValueError(
                    f"returned quantity {returned} for product {item.product_id} exceeds what was dispatched"
                )
            # free-issue units carry no value, so priced units are returned first
            returned_value += min(returned, item.quantity) * item.unit_price_cents
            requests.append(
                MovementRequest(
                    product_id=item.product_id,
                    location_id=load.location_id,
                    movement_type=MovementType.RETURN,
                    quantity=returned,
                    reference=order.order_number,
                    counterparty=order.customer_ref,
                    note="refused at delivery",
                )
            )

        self.ledger.record_batch(requests, actor_id=actor.id)
        final_cents = final_amount_cents if final_amount_cents is not None else order.total_cents - returned_value
        self._set_final(entry, final_cents, actor, reason="delivered")

    def _cancel(
        self,
        order: OrderModel,
        current: OrderStatus,
        actor: Actor,
        final_amount_cents: int | None,
    ) -> None:
        final_cents = final_amount_cents if final_amount_cents is not None else 0
        if current is OrderStatus.IN_TRANSIT:
            load, entry = self._require_open_load(order)
            # sales booked against the order before it came back are reversed
            net_sold: dict[str, int] = {}
            for movement in self.ledger.movements_for_reference(order.order_number, load.location_id):
                if movement.movement_type in {MovementType.SALE.value, MovementType.RETURN.value}:
                    net_sold[movement.product_id] = net_sold.get(movement.product_id, 0) + movement.quantity
            requests = [
                MovementRequest(
                    product_id=product_id,
                    location_id=load.location_id,
                    movement_type=MovementType.RETURN,
                    quantity=-net,
                    reference=order.order_number,
                    counterparty=order.customer_ref,
                    note="returned from load",
                )
                for product_id, net in sorted(net_sold.items())
                if net < 0
            ]
            if requests:
                self.ledger.record_batch(requests, actor_id=actor.id)
            self._set_final(entry, final_cents, actor, reason="returned")
            return

        entry = self._entry_for(order) if order.load_id else None
        if entry is not None:
            self._set_final(entry, final_cents, actor, reason="cancelled before dispatch")
