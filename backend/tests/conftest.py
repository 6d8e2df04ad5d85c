"""
Order Ledger - Test Configuration

Pytest fixtures and configuration. Every test gets a fresh in-memory
SQLite database.
"""
import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "False")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orderledger.core.database import Base, get_db, enable_sqlite_savepoints
from orderledger.core.security import get_current_active_user
from orderledger.models import Client, User
from orderledger.schemas import BankAccountCreate, OrderCreate, OrderItemCreate, DiscountInput
from orderledger.services.bank_ledger_service import BankLedgerService
from orderledger.services.document_store import DocumentStore
from orderledger.services.order_service import OrderService


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSessionLocal()
    yield session
    session.rollback()
    session.close()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def admin_user(db_session: Session) -> User:
    user = User(
        username="finance",
        email="finance@example.com",
        hashed_password="not-used",
        full_name="Finance Admin",
        role="admin",
        is_active=True,
    )
    db_session.add(user)
    db_session.flush()
    return user


@pytest.fixture
def production_user(db_session: Session) -> User:
    user = User(
        username="floor",
        email="floor@example.com",
        hashed_password="not-used",
        role="production",
        is_active=True,
    )
    db_session.add(user)
    db_session.flush()
    return user


@pytest.fixture
def local_client(db_session: Session) -> Client:
    client = Client(name="Lahore Textiles", type="local", country="Pakistan")
    db_session.add(client)
    db_session.flush()
    return client


@pytest.fixture
def international_client(db_session: Session) -> Client:
    client = Client(name="Hamburg Imports GmbH", type="international", country="Germany")
    db_session.add(client)
    db_session.flush()
    return client


@pytest.fixture
def bank(db_session: Session) -> BankLedgerService:
    return BankLedgerService(db_session)


@pytest.fixture
def pkr_account(bank: BankLedgerService):
    return bank.create_account(BankAccountCreate(
        account_name="Meezan Current", bank_name="Meezan Bank", account_number="PK-001",
        currency="PKR", opening_balance=Decimal("100000.00"),
    ))


@pytest.fixture
def usd_account(bank: BankLedgerService):
    return bank.create_account(BankAccountCreate(
        account_name="HBL Dollar", bank_name="HBL", account_number="US-001",
        currency="USD", opening_balance=Decimal("0.00"),
    ))


@pytest.fixture
def orders(db_session: Session, tmp_path) -> OrderService:
    return OrderService(db_session, document_store=DocumentStore(str(tmp_path)))


def item(product="Cotton yarn 20s", quantity="100", unit_price="10", tax_rate=None, discount=None):
    return OrderItemCreate(
        product=product,
        quantity_kg=Decimal(quantity),
        unit_price=Decimal(unit_price),
        tax_rate=Decimal(tax_rate) if tax_rate is not None else None,
        discount=discount,
    )


def percentage_discount(value) -> DiscountInput:
    return DiscountInput(type="percentage", value=Decimal(value))


def amount_discount(value) -> DiscountInput:
    return DiscountInput(type="amount", value=Decimal(value))


@pytest.fixture
def make_order(orders: OrderService):
    """Factory: create an order with sensible defaults"""
    counter = {"n": 0}

    def _make(client, items=None, invoice_number=None, **kwargs):
        counter["n"] += 1
        return orders.create(OrderCreate(
            client_id=client.id,
            invoice_number=invoice_number or f"INV-{counter['n']:04d}",
            items=items or [item()],
            **kwargs
        ))

    return _make


@pytest.fixture
def shipped_order(orders: OrderService, make_order):
    """Factory: create an order and move it to shipped so its invoice is due"""
    def _make(client, **kwargs):
        order = make_order(client, **kwargs)
        orders.update_status(order.id, "in_production")
        orders.update_status(order.id, "shipped")
        return order

    return _make


# ===========================================
# API FIXTURES
# ===========================================

@pytest.fixture
def api_user(admin_user: User) -> User:
    return admin_user


@pytest.fixture
def client(db_session: Session, api_user: User) -> Generator[TestClient, None, None]:
    """Test client sharing the test session, authenticated as api_user."""
    from orderledger.main import app

    def override_get_db():
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_active_user] = lambda: api_user

    yield TestClient(app)

    app.dependency_overrides.clear()
