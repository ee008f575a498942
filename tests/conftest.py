"""Общие фикстуры: SQLite в памяти, справочники, заказы, HTTP-клиент."""
import os

os.environ["CACHE_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:TEST-BOT-TOKEN"
os.environ["ENVIRONMENT"] = "test"

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models import Customer, Order, PaymentMethod
from app.services.ledger import derive_payment_status


@pytest_asyncio.fixture
async def engine():
    """Отдельная in-memory база на каждый тест."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def payment_methods(db):
    """cash, ebirr (нужен номер операции), bank_transfer и отключённый cheque."""
    methods = [
        PaymentMethod(method_code="cash", method_name="Cash", is_active=True, requires_reference=False, sort_order=1),
        PaymentMethod(method_code="ebirr", method_name="E-Birr", is_active=True, requires_reference=True, sort_order=2),
        PaymentMethod(method_code="bank_transfer", method_name="Bank Transfer", is_active=True, requires_reference=False, sort_order=3),
        PaymentMethod(method_code="cheque", method_name="Cheque", is_active=False, requires_reference=False, sort_order=9),
    ]
    db.add_all(methods)
    await db.commit()
    return methods


@pytest_asyncio.fixture
async def customer(db):
    customer = Customer(customer_name="Hodan Ali", phone_number="+252611234567")
    db.add(customer)
    await db.commit()
    return customer


@pytest.fixture
def make_order(db, customer):
    """Фабрика заказов с заданными total_amount / paid_amount."""
    counter = {"n": 0}

    async def _make(total: str, paid: str = "0.00", with_customer: bool = True, **kwargs) -> Order:
        counter["n"] += 1
        total_amount = Decimal(total)
        paid_amount = Decimal(paid)
        order = Order(
            order_number=kwargs.pop("order_number", f"ORD-{counter['n']:04d}"),
            customer_id=customer.id if with_customer else None,
            total_amount=total_amount,
            paid_amount=paid_amount,
            payment_status=derive_payment_status(paid_amount, total_amount),
            **kwargs,
        )
        db.add(order)
        await db.commit()
        return order

    return _make


@pytest.fixture
def count_rows(db):
    """Количество строк в таблице модели."""

    async def _count(model) -> int:
        return (await db.execute(select(func.count()).select_from(model))).scalar()

    return _count


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP-клиент приложения поверх тестовой базы."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(username: str, role: str) -> dict:
    token = create_access_token({"user_id": "00000000-0000-0000-0000-000000000000", "username": username, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def cashier_headers():
    return auth_headers("cashier1", "cashier")


@pytest.fixture
def admin_headers():
    return auth_headers("admin1", "admin")
