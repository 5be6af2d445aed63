"""
Test fixtures for KitRunner backend tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- Test data factories for events, customers, addresses, orders and admins
"""
# Environment must be set before any backend import reads settings
import os

os.environ["DB_USER"] = "test"
os.environ["DB_PASSWORD"] = "test"
os.environ["DB_NAME"] = "test"
os.environ["ENVIRONMENT"] = "development"
os.environ["JWT_SECRET"] = "test_jwt_secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULERS_ENABLED"] = "false"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-access-token"
os.environ["MERCADOPAGO_PUBLIC_KEY"] = "TEST-public-key"
os.environ["MERCADOPAGO_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ.pop("SENDGRID_API_KEY", None)
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("WHATSAPP_API_URL", None)

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from backend.app.core.auth import create_admin_token, create_customer_token
from backend.app.core.base import Base
from backend.app.core.constants import ROLE_SUPER_ADMIN, STATUS_AWAITING_PAYMENT
from backend.app.core.password_utils import hash_password
from backend.app.main import app
from backend.app.api.deps import get_session, get_cache
from backend.app.models.admin import AdminUser
from backend.app.models.cep_zone import CepZone
from backend.app.models.coupon import Coupon
from backend.app.models.customer import Customer, Address
from backend.app.models.event import Event
from backend.app.models.notification import EmailLog, WhatsappMessage, WhatsappTemplate  # noqa: F401
from backend.app.models.order import Order, Kit
from backend.app.models.policy import PolicyDocument

VALID_CPF = "52998224725"
OTHER_CPF = "11144477735"
ATHLETE_CPF = "12345678909"
ADMIN_PASSWORD = "Admin12345"

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class MockCacheService:
    """Dict-backed stand-in for the Redis cache."""

    def __init__(self):
        self._cache = {}

    async def get(self, key: str):
        return self._cache.get(key)

    async def set(self, key: str, value, ttl: int = 300):
        self._cache[key] = value

    async def delete(self, key: str):
        self._cache.pop(key, None)

    async def get_available_events(self):
        return self._cache.get("events:available")

    async def set_available_events(self, events):
        self._cache["events:available"] = events

    async def invalidate_events(self):
        self._cache.pop("events:available", None)

    async def get_active_cep_zones(self):
        return self._cache.get("cep_zones:active")

    async def set_active_cep_zones(self, zones):
        self._cache["cep_zones:active"] = zones

    async def invalidate_cep_zones(self):
        self._cache.pop("cep_zones:active", None)


@pytest.fixture(scope="function")
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema and session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def mock_cache() -> MockCacheService:
    return MockCacheService()


@pytest.fixture
async def client(
    test_session: AsyncSession,
    mock_cache: MockCacheService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client with database and cache dependencies overridden.

    Each request gets its own session so API calls never share a
    transaction with the fixtures' ``test_session``.
    """
    async def override_get_session():
        async with TestSessionLocal() as session:
            yield session

    async def override_get_cache():
        yield mock_cache

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_cache] = override_get_cache

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Test Data Factories ---

@pytest.fixture
async def test_event(test_session: AsyncSession) -> Event:
    """Distance-priced event with the pickup point in central João Pessoa."""
    event = Event(
        name="Corrida de São João",
        date=datetime.utcnow() + timedelta(days=30),
        location="Parque Solon de Lucena",
        city="João Pessoa",
        state="PB",
        pickup_zip_code="58000000",
        pricing_type="distance",
        extra_kit_price=Decimal("8.00"),
        donation_required=False,
        available=True,
    )
    test_session.add(event)
    await test_session.commit()
    return event


@pytest.fixture
async def fixed_event(test_session: AsyncSession) -> Event:
    event = Event(
        name="Maratona de João Pessoa",
        date=datetime.utcnow() + timedelta(days=45),
        location="Busto de Tamandaré",
        city="João Pessoa",
        state="PB",
        pickup_zip_code="58000000",
        pricing_type="fixed",
        fixed_price=Decimal("25.00"),
        extra_kit_price=Decimal("8.00"),
        donation_required=True,
        donation_amount=Decimal("2.00"),
        donation_description="Doação para o projeto social",
        available=True,
    )
    test_session.add(event)
    await test_session.commit()
    return event


@pytest.fixture
async def test_customer(test_session: AsyncSession) -> Customer:
    customer = Customer(
        name="Maria da Silva",
        cpf=VALID_CPF,
        birth_date=date(1990, 5, 10),
        email="maria@example.com",
        phone="83999990000",
    )
    test_session.add(customer)
    await test_session.commit()
    return customer


@pytest.fixture
async def other_customer(test_session: AsyncSession) -> Customer:
    customer = Customer(
        name="João Souza",
        cpf=OTHER_CPF,
        birth_date=date(1985, 1, 20),
        email="joao@example.com",
        phone="83988880000",
    )
    test_session.add(customer)
    await test_session.commit()
    return customer


@pytest.fixture
async def test_address(test_session: AsyncSession, test_customer: Customer) -> Address:
    """About 3.8 km from the event pickup point."""
    address = Address(
        customer_id=test_customer.id,
        label="Casa",
        street="Rua das Trincheiras",
        number="100",
        neighborhood="Centro",
        city="João Pessoa",
        state="PB",
        zip_code="58030000",
        is_default=True,
    )
    test_session.add(address)
    await test_session.commit()
    return address


@pytest.fixture
async def cep_zone(test_session: AsyncSession) -> CepZone:
    zone = CepZone(
        name="Zona Sul",
        description="Bairros da zona sul",
        cep_ranges=[{"start": "58030000", "end": "58039999"}],
        price=Decimal("15.00"),
        active=True,
        priority=1,
    )
    test_session.add(zone)
    await test_session.commit()
    return zone


@pytest.fixture
def make_coupon(test_session: AsyncSession):
    """Factory for coupons valid from yesterday to next month."""
    async def _make(code: str = "CORRIDA10", **overrides) -> Coupon:
        values = dict(
            code=code,
            discount_type="percentage",
            discount_value=Decimal("10"),
            valid_from=datetime.utcnow() - timedelta(days=1),
            valid_until=datetime.utcnow() + timedelta(days=30),
            usage_count=0,
            event_ids=[],
            cep_zone_ids=[],
            active=True,
        )
        values.update(overrides)
        coupon = Coupon(**values)
        test_session.add(coupon)
        await test_session.commit()
        return coupon

    return _make


@pytest.fixture
def make_order(test_session: AsyncSession):
    """Factory for orders; relationships are attached so they are usable without lazy loads."""
    counter = {"n": 0}

    async def _make(
        event: Event,
        customer: Customer,
        address: Address,
        status: str = STATUS_AWAITING_PAYMENT,
        total_cost: Decimal = Decimal("12.00"),
        **overrides,
    ) -> Order:
        counter["n"] += 1
        values = dict(
            order_number=f"KR2026{counter['n']:06d}",
            event=event,
            customer=customer,
            address=address,
            kit_quantity=1,
            delivery_cost=total_cost,
            base_cost=Decimal("0"),
            extra_kits_cost=Decimal("0"),
            donation_cost=Decimal("0"),
            discount_amount=Decimal("0"),
            total_cost=total_cost,
            payment_method="pix",
            status=status,
            kits=[Kit(name="Maria da Silva", cpf=ATHLETE_CPF, shirt_size="M")],
        )
        values.update(overrides)
        order = Order(**values)
        test_session.add(order)
        await test_session.commit()
        return order

    return _make


@pytest.fixture
async def test_order(make_order, test_event: Event, test_customer: Customer, test_address: Address) -> Order:
    return await make_order(test_event, test_customer, test_address)


@pytest.fixture
async def admin_user(test_session: AsyncSession) -> AdminUser:
    user = AdminUser(
        username="admin",
        email="admin@kitrunner.com.br",
        full_name="Administrador",
        password_hash=hash_password(ADMIN_PASSWORD),
        role=ROLE_SUPER_ADMIN,
        is_active=True,
    )
    test_session.add(user)
    await test_session.commit()
    return user


@pytest.fixture
async def policy(test_session: AsyncSession) -> PolicyDocument:
    document = PolicyDocument(
        type="order",
        title="Termos do pedido",
        content="Ao confirmar o pedido você autoriza a retirada do kit.",
        active=True,
    )
    test_session.add(document)
    await test_session.commit()
    return document


# --- Auth Helpers ---

def customer_auth_header(customer_id: int) -> dict:
    return {"Authorization": f"Bearer {create_customer_token(customer_id)}"}


def admin_auth_header(user: AdminUser) -> dict:
    return {"Authorization": f"Bearer {create_admin_token(user.id, user.username, user.role)}"}


@pytest.fixture
def customer_headers(test_customer: Customer) -> dict:
    return customer_auth_header(test_customer.id)


@pytest.fixture
def admin_headers(admin_user: AdminUser) -> dict:
    return admin_auth_header(admin_user)


def kit_payload(count: int = 1) -> list:
    return [
        {"name": f"Atleta {i + 1}", "cpf": ATHLETE_CPF, "shirt_size": "M"}
        for i in range(count)
    ]
