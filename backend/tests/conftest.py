"""
Centralized Test Configuration.
"""

import pytest
from datetime import date
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.exceptions import GatewayError
from backend.app.core.jwt import build_claims, create_access_token
from backend.app.domain.payments.signature import compute_signature
from backend.app.models.user import User
from backend.app.models.vehicle import Vehicle
from backend.app.models.vehicle_unit import VehicleUnit
from backend.app.models.rental import Rental
from backend.app.models.payment import Payment
from backend.app.models.enums import UserRole
from backend.app.models.rental_enums import (
    ApprovalStatus, PaymentStatus, RentalStatus, UnitStatus, VehicleStatus
)
from backend.app.services.payment_gateway import PaymentSession, get_payment_gateway
from backend.app.services.lifecycle_sweeper import RentalLifecycleSweeper, get_lifecycle_sweeper

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_SERVER_KEY = "SB-Mid-server-YOUR_SERVER_KEY"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


class FakeGateway:
    """
    In-process stand-in for the payment gateway client.

    Flip the `fail_*` flags to make the matching call raise GatewayError.
    """

    def __init__(self):
        self.fail_create = False
        self.fail_cancel = False
        self.fail_status = False
        self.status_response = {"status_code": "200", "transaction_status": "settlement", "payment_type": "bank_transfer"}
        self.sessions = []
        self.cancelled = []
        self.status_calls = []

    async def create_session(self, rental, user, order_id):
        if self.fail_create:
            raise GatewayError("Payment gateway timed out", details={"operation": "create_session", "reason": "timeout"})
        self.sessions.append(order_id)
        return PaymentSession(order_id=order_id, token=f"snap-{order_id}", redirect_url=f"https://pay.test/{order_id}")

    async def get_status(self, order_id):
        self.status_calls.append(order_id)
        if self.fail_status:
            raise GatewayError(details={"operation": "get_status", "reason": "timeout"})
        return {"order_id": order_id, **self.status_response}

    async def cancel(self, order_id):
        if self.fail_cancel:
            raise GatewayError(details={"operation": "cancel", "reason": "timeout"})
        self.cancelled.append(order_id)
        return {"status_code": "200", "transaction_status": "cancel", "order_id": order_id}


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Apply database override once for the session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture
def sweeper(gateway):
    instance = RentalLifecycleSweeper(
        session_factory=TestingSessionLocal,
        gateway=gateway,
        interval_seconds=3600,
        initial_delay_seconds=0,
        promote_approved=False,
        max_gateway_retries=2
    )
    app.dependency_overrides[get_lifecycle_sweeper] = lambda: instance
    yield instance
    app.dependency_overrides.pop(get_lifecycle_sweeper, None)


@pytest.fixture
async def client(gateway):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Users

async def _create_user(db: AsyncSession, email: str, role: UserRole, is_active: bool = True) -> User:
    user = User(email=email, name=email.split("@")[0], phone_number="+62812000000", role=role, is_active=is_active)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def admin_user(db_session):
    return await _create_user(db_session, "admin@rental.test", UserRole.ADMIN)


@pytest.fixture
async def renter_user(db_session):
    return await _create_user(db_session, "renter@rental.test", UserRole.RENTER)


@pytest.fixture
async def other_renter(db_session):
    return await _create_user(db_session, "other@rental.test", UserRole.RENTER)


def actor(user: User) -> dict:
    """Authenticated user payload, as produced by get_current_user."""
    return build_claims(user.id, user.role.value, user.email)


def auth_headers(user: User) -> dict:
    token = create_access_token(data=actor(user))
    return {"Authorization": f"Bearer {token}"}


# Inventory

@pytest.fixture
async def vehicle(db_session):
    vehicle = Vehicle(
        title="Toyota Avanza",
        brand="Toyota",
        model="Avanza",
        vehicle_category="MPV",
        price_per_day=Decimal("100000.00"),
        status=VehicleStatus.AVAILABLE
    )
    db_session.add(vehicle)
    await db_session.commit()
    await db_session.refresh(vehicle)
    return vehicle


async def add_unit(db: AsyncSession, vehicle: Vehicle, plate: str, status: UnitStatus = UnitStatus.AVAILABLE) -> VehicleUnit:
    unit = VehicleUnit(vehicle_id=vehicle.id, plate_number=plate, status=status)
    db.add(unit)
    await db.commit()
    await db.refresh(unit)
    return unit


@pytest.fixture
async def unit(db_session, vehicle):
    return await add_unit(db_session, vehicle, "B 1000 TST")


async def make_rental(
    db: AsyncSession,
    user: User,
    unit: VehicleUnit,
    start: date,
    end: date,
    status: RentalStatus = RentalStatus.PENDING,
    approval: ApprovalStatus = ApprovalStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    order_id: str = None
) -> Rental:
    """Insert a rental (and payment) directly, bypassing the allocator."""
    days = (end - start).days
    rental = Rental(
        user_id=user.id,
        vehicle_id=unit.vehicle_id,
        unit_id=unit.id,
        start_date=start,
        end_date=end,
        total_days=days,
        price_per_day=Decimal("100000.00"),
        total_amount=Decimal("100000.00") * days,
        status=status,
        admin_approval_status=approval
    )
    db.add(rental)
    await db.flush()

    db.add(Payment(
        rental_id=rental.id,
        user_id=user.id,
        amount=rental.total_amount,
        payment_status=payment_status,
        gateway_order_id=order_id or f"RENTAL-{rental.id}-1700000000000"
    ))
    if status in (RentalStatus.PENDING, RentalStatus.CONFIRMED, RentalStatus.APPROVED, RentalStatus.ACTIVE):
        unit.status = UnitStatus.RENTED
        db.add(unit)
    await db.commit()
    await db.refresh(rental)
    return rental


def signed_notification(order_id: str, transaction_status: str, gross_amount: str = "300000.00",
                        status_code: str = "200", fraud_status: str = None, server_key: str = TEST_SERVER_KEY) -> dict:
    payload = {
        "order_id": order_id,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "transaction_status": transaction_status,
        "transaction_id": f"trx-{order_id}",
        "payment_type": "bank_transfer",
        "transaction_time": "2025-01-05 10:00:00",
        "signature_key": compute_signature(order_id, status_code, gross_amount, server_key),
    }
    if fraud_status:
        payload["fraud_status"] = fraud_status
    return payload


# Helper fixtures (test modules use these instead of importing conftest)

@pytest.fixture
def renter_actor(renter_user):
    return actor(renter_user)


@pytest.fixture
def admin_actor(admin_user):
    return actor(admin_user)


@pytest.fixture
def renter_headers(renter_user):
    return auth_headers(renter_user)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def unit_factory(db_session, vehicle):
    async def factory(plate: str, status: UnitStatus = UnitStatus.AVAILABLE, owner: Vehicle = None):
        return await add_unit(db_session, owner or vehicle, plate, status)
    return factory


@pytest.fixture
def rental_factory(db_session):
    async def factory(user, unit, start, end, **kwargs):
        return await make_rental(db_session, user, unit, start, end, **kwargs)
    return factory


@pytest.fixture
def notification():
    return signed_notification


@pytest.fixture
def session_factory():
    return TestingSessionLocal
