"""
Pytest fixtures for test database, client, accounts and catalog data.

Each test gets a fresh schema. By default that is a SQLite file under the
test's tmp_path (aiosqlite), so the suite runs without a database server;
set TEST_DATABASE_URL to a PostgreSQL URL for production parity.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("EXPIRY_SWEEP_ENABLED", "false")
os.environ.setdefault("PAYMENT_PROVIDER", "stub")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./boxoffice-dev.db")

from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.security import ROLE_ORGANIZER, ROLE_STAFF, ROLE_USER, Account, create_access_token
from boxoffice.db.base import Base, utcnow
from boxoffice.db.session import build_engine, get_db
from boxoffice.main import app
from boxoffice.models.event import EVENT_PUBLISHED, EventListing, TicketType
from boxoffice.models.ticket import Ticket
from boxoffice.services import checkout_service
from boxoffice.services.checkout_service import CartLine
from boxoffice.services.collaborators import get_notifier, get_payment_gateway
from boxoffice.services.interfaces.notification import Notifier
from boxoffice.services.payment_gateways import StubPaymentGateway


class RecordingNotifier(Notifier):
    """Keeps every notification in memory for assertions."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []

    async def notify(self, kind: str, payload: dict) -> None:
        self.sent.append((kind, payload))

    def of_kind(self, kind: str) -> list[dict]:
        return [payload for k, payload in self.sent if k == kind]


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'boxoffice-test.db'}"
    test_engine = build_engine(url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """One factory per test; concurrency tests open a session per task from it."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def gateway() -> StubPaymentGateway:
    return StubPaymentGateway(return_url="http://test/api/v1/payments/return")


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, notifier, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a fresh DB session per request and in-memory collaborators."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Accounts --------------------------------------------------------------


@pytest.fixture
def organizer() -> Account:
    return Account(id="org-1", email="organizer@example.com", role=ROLE_ORGANIZER)


@pytest.fixture
def other_organizer() -> Account:
    return Account(id="org-2", email="rival@example.com", role=ROLE_ORGANIZER)


@pytest.fixture
def buyer() -> Account:
    return Account(id="buyer-1", email="alice@example.com", role=ROLE_USER)


@pytest.fixture
def second_buyer() -> Account:
    return Account(id="buyer-2", email="bob@example.com", role=ROLE_USER)


@pytest.fixture
def staff() -> Account:
    return Account(id="staff-1", email="door@example.com", role=ROLE_STAFF)


def headers_for(account: Account) -> dict:
    token = create_access_token(data={"sub": account.id, "email": account.email, "role": account.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def organizer_headers(organizer) -> dict:
    return headers_for(organizer)


@pytest.fixture
def other_organizer_headers(other_organizer) -> dict:
    return headers_for(other_organizer)


@pytest.fixture
def buyer_headers(buyer) -> dict:
    return headers_for(buyer)


@pytest.fixture
def second_buyer_headers(second_buyer) -> dict:
    return headers_for(second_buyer)


@pytest.fixture
def staff_headers(staff) -> dict:
    return headers_for(staff)


# --- Catalog ---------------------------------------------------------------


async def make_event(
    db: AsyncSession,
    organizer_id: str,
    *,
    capacity: int = 100,
    price: str = "50.00",
    status: str = EVENT_PUBLISHED,
    starts_in: timedelta = timedelta(days=30),
    max_per_order: int = 10,
) -> tuple[EventListing, TicketType]:
    ticket_type = TicketType(
        name="General Admission",
        price=Decimal(price),
        quantity_available=capacity,
        quantity_sold=0,
        quantity_held=0,
        max_per_order=max_per_order,
        is_active=True,
    )
    event = EventListing(
        organizer_id=organizer_id,
        title="Test Concert",
        description="A test event",
        venue_name="Test Venue",
        city="Lisbon",
        starts_at=utcnow() + starts_in,
        status=status,
        ticket_types=[ticket_type],
    )
    db.add(event)
    await db.commit()
    return event, ticket_type


@pytest_asyncio.fixture
async def event_with_tickets(db_session, organizer) -> tuple[EventListing, TicketType]:
    """Published event with 100 general admission tickets at 50.00."""
    return await make_event(db_session, organizer.id)


@pytest_asyncio.fixture
async def scarce_event(db_session, organizer) -> tuple[EventListing, TicketType]:
    """Published event with only 2 tickets."""
    return await make_event(db_session, organizer.id, capacity=2)


@pytest.fixture
def event_factory(db_session, organizer):
    """Build extra events inside a test: `await event_factory(capacity=5)`."""

    async def factory(**kwargs) -> tuple[EventListing, TicketType]:
        return await make_event(db_session, kwargs.pop("organizer_id", organizer.id), **kwargs)

    return factory


@pytest.fixture
def purchase(db_session, gateway, notifier):
    """Buy and pay for tickets in one step: `tickets = await purchase(buyer, event, ticket_type, 2)`."""

    async def buy(account: Account, event: EventListing, ticket_type: TicketType, quantity: int = 1) -> list[Ticket]:
        created = await checkout_service.create_order(
            db_session,
            account,
            event.id,
            [CartLine(ticket_type_id=ticket_type.id, quantity=quantity)],
            gateway=gateway,
        )
        assert created.ok, created
        confirmed = await checkout_service.confirm_payment(
            db_session, created.value.order.id, f"pay-{created.value.order.id}", notifier=notifier
        )
        assert confirmed.ok, confirmed
        return confirmed.value.tickets

    return buy
