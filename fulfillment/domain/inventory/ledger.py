from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Iterator

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment.core.config import get_settings
from fulfillment.core.errors import ConcurrentModificationError, NegativeStockError
from fulfillment.domain.inventory.aggregates import MovementRequest, MovementType
from fulfillment.persistence.models import StockMovementModel

logger = logging.getLogger(__name__)


class MovementHistory:
    """Time-ordered movements for a product, fetched a page at a time.

    Each iteration starts again from ``start_after`` so the same history
    object can be walked more than once.
    """

    def __init__(
        self,
        session: Session,
        product_id: str,
        location_id: str | None = None,
        start_after: int | None = None,
        page_size: int = 100,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.session = session
        self.product_id = product_id
        self.location_id = location_id
        self.start_after = start_after
        self.page_size = page_size

    def fetch_page(self, after: int | None) -> list[StockMovementModel]:
        # ids are assigned on append, so id order is chronological order
        stmt = (
            select(StockMovementModel)
            .where(StockMovementModel.product_id == self.product_id)
            .order_by(StockMovementModel.id.asc())
            .limit(self.page_size)
        )
        if self.location_id is not None:
            stmt = stmt.where(StockMovementModel.location_id == self.location_id)
        if after is not None:
            stmt = stmt.where(StockMovementModel.id > after)
        return list(self.session.scalars(stmt).all())

    def __iter__(self) -> Iterator[StockMovementModel]:
        cursor = self.start_after
        while True:
            rows = self.fetch_page(cursor)
            yield from rows
            if len(rows) < self.page_size:
                return
            cursor = rows[-1].id


class InventoryLedger:
    def __init__(self, session: Session):
        self.session = session

    def _latest(self, product_id: str, location_id: str) -> StockMovementModel | None:
        stmt = (
            select(StockMovementModel)
            .where(StockMovementModel.product_id == product_id)
            .where(StockMovementModel.location_id == location_id)
            .order_by(StockMovementModel.seq.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def current_balance(self, product_id: str, location_id: str) -> int:
        latest = self._latest(product_id, location_id)
        return latest.balance_after if latest is not None else 0

    def balances(self, product_id: str) -> dict[str, int]:
        latest = (
            select(
                StockMovementModel.location_id.label("location_id"),
                func.max(StockMovementModel.seq).label("seq"),
            )
            .where(StockMovementModel.product_id == product_id)
            .group_by(StockMovementModel.location_id)
            .subquery()
        )
        stmt = (
            select(StockMovementModel.location_id, StockMovementModel.balance_after)
            .join(
                latest,
                and_(
                    StockMovementModel.location_id == latest.c.location_id,
                    StockMovementModel.seq == latest.c.seq,
                ),
            )
            .where(StockMovementModel.product_id == product_id)
            .order_by(StockMovementModel.location_id.asc())
        )
        return {location_id: balance for location_id, balance in self.session.execute(stmt).all()}

    def total_stock(self, product_id: str) -> int:
        return sum(self.balances(product_id).values())

    def record_movement(
        self,
        product_id: str,
        location_id: str,
        movement_type: MovementType,
        quantity: int,
        reference: str | None = None,
        counterparty: str | None = None,
        note: str | None = None,
        allow_negative: bool = False,
        actor_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> StockMovementModel:
        request = MovementRequest(
            product_id=product_id,
            location_id=location_id,
            movement_type=MovementType(movement_type),
            quantity=quantity,
            reference=reference,
            counterparty=counterparty,
            note=note,
            allow_negative=allow_negative,
            occurred_at=occurred_at,
        )
        return self.record_batch([request], actor_id=actor_id)[0]

    def record_batch(
        self,
        requests: Iterable[MovementRequest],
        actor_id: str | None = None,
    ) -> list[StockMovementModel]:
        # Every movement is checked before any row is added, so a rejected
        # batch leaves the ledger untouched.
        heads: dict[tuple[str, str], tuple[int, int]] = {}
        planned: list[StockMovementModel] = []
        now = datetime.now(timezone.utc)

        for request in requests:
            pair = (request.product_id, request.location_id)
            if pair not in heads:
                latest = self._latest(*pair)
                heads[pair] = (latest.balance_after, latest.seq) if latest is not None else (0, 0)
            balance, seq = heads[pair]
            delta = request.delta
            balance_after = balance + delta

            if balance_after < 0:
                if not request.allow_negative:
                    raise NegativeStockError(
                        f"{request.movement_type.value} of {abs(delta)} would leave product "
                        f"{request.product_id} at {request.location_id} with {balance_after}",
                        product_id=request.product_id,
                        location_id=request.location_id,
                        balance=balance,
                        delta=delta,
                    )
                logger.warning(
                    "correcting adjustment drives stock negative: product=%s location=%s balance_after=%s reference=%s",
                    request.product_id,
                    request.location_id,
                    balance_after,
                    request.reference,
                )

            heads[pair] = (balance_after, seq + 1)
            planned.append(
                StockMovementModel(
                    product_id=request.product_id,
                    location_id=request.location_id,
                    seq=seq + 1,
                    movement_type=request.movement_type.value,
                    quantity=delta,
                    balance_after=balance_after,
                    occurred_at=request.occurred_at or now,
                    counterparty=request.counterparty,
                    reference=request.reference,
                    note=request.note,
                    actor_id=actor_id,
                )
            )

        self.session.add_all(planned)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConcurrentModificationError(
                "another movement was appended for the same product and location; retry",
            ) from exc
        return planned

    def history(
        self,
        product_id: str,
        location_id: str | None = None,
        start_after: int | None = None,
        page_size: int | None = None,
    ) -> MovementHistory:
        return MovementHistory(
            self.session,
            product_id=product_id,
            location_id=location_id,
            start_after=start_after,
            page_size=page_size or get_settings().history_page_size,
        )

    def movements_for_reference(
        self,
        reference: str,
        location_id: str | None = None,
    ) -> list[StockMovementModel]:
        stmt = (
            select(StockMovementModel)
            .where(StockMovementModel.reference == reference)
            .order_by(StockMovementModel.id.asc())
        )
        if location_id is not None:
            stmt = stmt.where(StockMovementModel.location_id == location_id)
        return list(self.session.scalars(stmt).all())

    def transfer(
        self,
        product_id: str,
        source_location_id: str,
        dest_location_id: str,
        quantity: int,
        reference: str | None = None,
        note: str | None = None,
        actor_id: str | None = None,
    ) -> list[StockMovementModel]:
        if quantity <= 0:
            raise ValueError("transfer quantity must be positive")
        if source_location_id == dest_location_id:
            raise ValueError("source and destination locations must differ")
        reference = reference or f"TRANSFER:{source_location_id}->{dest_location_id}"
        return self.record_batch(
            [
                MovementRequest(
                    product_id=product_id,
                    location_id=source_location_id,
                    movement_type=MovementType.ADJUSTMENT,
                    quantity=-quantity,
                    reference=reference,
                    counterparty=dest_location_id,
                    note=note,
                ),
                MovementRequest(
                    product_id=product_id,
                    location_id=dest_location_id,
                    movement_type=MovementType.ADJUSTMENT,
                    quantity=quantity,
                    reference=reference,
                    counterparty=source_location_id,
                    note=note,
                ),
            ],
            actor_id=actor_id,
        )

    def stock_take(
        self,
        product_id: str,
        location_id: str,
        counted_quantity: int,
        note: str | None = None,
        actor_id: str | None = None,
    ) -> StockMovementModel | None:
        if counted_quantity < 0:
            raise ValueError("counted quantity must not be negative")
        delta = counted_quantity - self.current_balance(product_id, location_id)
        if delta == 0:
            return None
        return self.record_movement(
            product_id=product_id,
            location_id=location_id,
            movement_type=MovementType.ADJUSTMENT,
            quantity=delta,
            reference="STOCK-TAKE",
            note=note,
            actor_id=actor_id,
        )
