from __future__ import annotations

import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import fulfillment.persistence.pg as pg
from fulfillment.core.config import get_settings
from fulfillment.core.security import Actor
from fulfillment.persistence.models import Base
from fulfillment.persistence.repositories import ProductRepository


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite"


@pytest.fixture(scope="session", autouse=True)
def configure_test_engine(test_db_path: Path):
    settings = get_settings()
    settings.bootstrap_demo_on_startup = False
    settings.dispatch_advance_to_in_transit = True

    engine = create_engine(
        f"sqlite+pysqlite:///{test_db_path}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    TestSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    pg.engine = engine
    pg.SessionLocal = TestSessionLocal

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(configure_test_engine):
    from fulfillment.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def session(configure_test_engine):
    with pg.session_scope() as s:
        yield s


@pytest.fixture()
def raw_session(configure_test_engine):
    """Session the test owns; use where a flush is expected to fail."""
    s = pg.SessionLocal()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture()
def auth_headers():
    settings = get_settings()
    return {
        "admin": {"X-API-Key": settings.admin_api_key},
        "clerk": {"X-API-Key": settings.clerk_api_key},
        "checker": {"X-API-Key": settings.checker_api_key},
        "dispatcher": {"X-API-Key": settings.dispatcher_api_key},
        "system": {"X-API-Key": settings.system_api_key},
    }


@pytest.fixture()
def clerk() -> Actor:
    return Actor(type="clerk", id="clerk-test")


@pytest.fixture()
def admin() -> Actor:
    return Actor(type="admin", id="admin-test")


@pytest.fixture()
def make_product(configure_test_engine):
    def _make(supplier_id: str = "sup-test", category: str | None = "Cement") -> str:
        suffix = uuid.uuid4().hex[:8]
        with pg.session_scope() as s:
            product = ProductRepository(s).upsert(
                sku=f"SKU-{suffix}",
                name=f"Product {suffix}",
                supplier_id=supplier_id,
                category=category,
            )
            return product.id

    return _make


@pytest.fixture()
def place(configure_test_engine):
    """Place an order and optionally walk it forward to Checking."""
    from decimal import Decimal

    from fulfillment.domain.orders.aggregates import OrderStatus
    from fulfillment.domain.orders.commands import LineItemModel, PlaceOrderCommand, place_order
    from fulfillment.domain.orders.state_machine import OrderStateMachine

    def _place(session, actor, lines, sales_rep_id="rep-test", checking=False):
        order = place_order(
            session,
            PlaceOrderCommand(
                customer_ref="cust-test",
                sales_rep_id=sales_rep_id,
                line_items=[
                    LineItemModel(
                        product_id=product_id,
                        quantity=quantity,
                        unit_price=Decimal(price),
                        free_quantity=free,
                    )
                    for product_id, quantity, price, free in lines
                ],
            ),
            actor,
        )
        if checking:
            machine = OrderStateMachine(session)
            machine.transition(order.id, OrderStatus.PROCESSING, actor)
            machine.transition(order.id, OrderStatus.CHECKING, actor)
        return order

    return _place


@pytest.fixture()
def stock_up(configure_test_engine):
    from fulfillment.domain.inventory.aggregates import MovementType
    from fulfillment.domain.inventory.ledger import InventoryLedger

    def _stock(session, product_id, quantity, location_id=None):
        return InventoryLedger(session).record_movement(
            product_id=product_id,
            location_id=location_id or get_settings().main_location_id,
            movement_type=MovementType.PURCHASE,
            quantity=quantity,
            reference="GRN-TEST",
        )

    return _stock
