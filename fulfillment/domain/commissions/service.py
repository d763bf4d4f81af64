from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment.core.errors import DuplicateRuleError, NotFoundError
from fulfillment.core.money import apply_rate
from fulfillment.domain.commissions.rules import (
    CommissionResolution,
    parse_scope,
    resolve_rate,
    scope_to_wire,
)
from fulfillment.domain.inventory.aggregates import MovementType
from fulfillment.domain.inventory.ledger import InventoryLedger
from fulfillment.domain.orders.aggregates import DELIVERED_STATUSES, OrderStatus
from fulfillment.persistence.models import CommissionRuleModel, OrderModel
from fulfillment.persistence.repositories import (
    CommissionRuleRepository,
    OrderRepository,
    ProductRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineCommission:
    product_id: str
    line_total_cents: int
    delivered_quantity: int
    base_cents: int
    resolution: CommissionResolution
    commission_cents: int


@dataclass(frozen=True)
class OrderCommission:
    order_id: str
    order_number: str
    sales_rep_id: str | None
    lines: list[LineCommission]

    @property
    def total_cents(self) -> int:
        return sum(line.commission_cents for line in self.lines)


class CommissionService:
    def __init__(self, session: Session):
        self.session = session
        self.rules = CommissionRuleRepository(session)
        self.products = ProductRepository(session)

    def add_rule(
        self,
        supplier_id: str,
        category: str,
        rate: Decimal,
        supplier_name: str | None = None,
    ) -> CommissionRuleModel:
        rate = Decimal(rate)
        if rate < 0 or rate > 100:
            raise ValueError("commission rate must be between 0 and 100")
        wire = scope_to_wire(parse_scope(category))
        if self.rules.find(supplier_id, wire) is not None:
            raise DuplicateRuleError(
                f"a commission rule for supplier {supplier_id} and category {wire} already exists",
                supplier_id=supplier_id,
                category=wire,
            )

        rule = CommissionRuleModel(
            supplier_id=supplier_id,
            supplier_name=supplier_name,
            category=wire,
            rate=rate,
        )
        self.session.add(rule)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateRuleError(
                f"a commission rule for supplier {supplier_id} and category {wire} already exists",
                supplier_id=supplier_id,
                category=wire,
            ) from exc
        logger.info("commission rule added: supplier=%s category=%s rate=%s", supplier_id, wire, rate)
        return rule

    def list_rules(self, supplier_id: str | None = None) -> list[CommissionRuleModel]:
        return self.rules.list(supplier_id)

    def delete_rule(self, rule_id: str) -> None:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise NotFoundError(f"commission rule {rule_id} not found", rule_id=rule_id)
        logger.info("commission rule deleted: id=%s supplier=%s category=%s", rule.id, rule.supplier_id, rule.category)
        self.session.delete(rule)
        self.session.flush()

    def resolve(self, supplier_id: str, category: str | None) -> CommissionResolution:
        return resolve_rate(self.rules.for_supplier(supplier_id), supplier_id, category)

    def order_commission(self, order: OrderModel) -> OrderCommission:
        """Commission per line; delivered orders pay only on units the customer kept."""
        refused = self._refused_units(order) if OrderStatus(order.status) in DELIVERED_STATUSES else {}
        lines: list[LineCommission] = []
        cache: dict[str, list[CommissionRuleModel]] = {}
        for item in order.items:
            product = self.products.require(item.product_id)
            supplier_id = product.supplier_id or ""
            if supplier_id not in cache:
                cache[supplier_id] = self.rules.for_supplier(supplier_id) if supplier_id else []
            resolution = resolve_rate(cache[supplier_id], supplier_id, product.category)
            # refusals count against priced units before free issue
            delivered = item.quantity - min(refused.get(item.product_id, 0), item.quantity)
            base_cents = delivered * item.unit_price_cents
            lines.append(
                LineCommission(
                    product_id=item.product_id,
                    line_total_cents=item.line_total_cents,
                    delivered_quantity=delivered,
                    base_cents=base_cents,
                    resolution=resolution,
                    commission_cents=apply_rate(base_cents, resolution.rate),
                )
            )
        return OrderCommission(
            order_id=order.id,
            order_number=order.order_number,
            sales_rep_id=order.sales_rep_id,
            lines=lines,
        )

    def _refused_units(self, order: OrderModel) -> dict[str, int]:
        refused: dict[str, int] = {}
        for movement in InventoryLedger(self.session).movements_for_reference(order.order_number):
            if movement.movement_type == MovementType.RETURN.value:
                refused[movement.product_id] = refused.get(movement.product_id, 0) + movement.quantity
        return refused

    def rep_commission(self, sales_rep_id: str) -> list[OrderCommission]:
        orders = OrderRepository(self.session).list(sales_rep_id=sales_rep_id)
        return [
            self.order_commission(order)
            for order in orders
            if order.status in {status.value for status in DELIVERED_STATUSES}
        ]
