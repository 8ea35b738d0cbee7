import os

# Settings are read at import time; keep the module-level engine off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_GATEWAY", "sandbox")

from datetime import date, timedelta

import httpx
import pytest

import app.models  # noqa: F401
from app.api.deps import get_lifecycle_service, get_reconciliation_service
from app.core.locks import LocalLockBackend, LockManager
from app.core.security import create_token_for_user
from app.database import Base, create_engine_for, create_session_factory, get_db
from app.gateways.sandbox import SandboxGateway
from app.models.user import User
from app.models.vehicle import Vehicle
from app.services.booking_service import BookingLifecycleService, RentalWindow
from app.services.reconciliation_service import ReconciliationService

PRICE_PER_DAY = 2500


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def gateway():
    return SandboxGateway(key_secret="test_key_secret", webhook_secret="test_webhook_secret")


@pytest.fixture
def lifecycle(session_factory, gateway):
    return BookingLifecycleService(
        session_factory=session_factory,
        gateway=gateway,
        locks=LockManager(LocalLockBackend(timeout=5)),
    )


@pytest.fixture
def reconciliation(lifecycle):
    return ReconciliationService(lifecycle)


@pytest.fixture
def add(session_factory):
    async def _add(obj):
        async with session_factory() as db:
            db.add(obj)
            await db.commit()
        return obj

    return _add


@pytest.fixture
async def customer(add):
    return await add(User(name="Asha Customer", email="asha@example.com", phone="+919800000001", role="user"))


@pytest.fixture
async def other_customer(add):
    return await add(User(name="Kiran Customer", email="kiran@example.com", role="user"))


@pytest.fixture
async def driver(add):
    return await add(User(name="Ravi Driver", email="ravi@example.com", role="vendor"))


@pytest.fixture
async def admin(add):
    return await add(User(name="Rentals Admin", email="admin@example.com", role="admin"))


@pytest.fixture
async def vehicle(add):
    return await add(
        Vehicle(
            name="Toyota Innova Crysta",
            registration_no="KA01AB1234",
            category="MUV",
            seats=7,
            price_per_day=PRICE_PER_DAY,
        )
    )


def rental_window(days: int = 3) -> RentalWindow:
    pickup = date(2026, 11, 1)
    return RentalWindow(
        pickup_date=pickup,
        pickup_time="09:00",
        dropoff_date=pickup + timedelta(days=days),
        dropoff_time="09:00",
        pickup_location="Bengaluru Airport",
        dropoff_location="Mysuru Palace",
    )


@pytest.fixture
def window():
    return rental_window


@pytest.fixture
def reload(session_factory):
    """Fresh copy of a row from the database."""

    async def _reload(model, pk):
        async with session_factory() as db:
            return await db.get(model, pk)

    return _reload


@pytest.fixture
def open_order(lifecycle, vehicle, customer):
    """Create a booking for ``customer`` and open its payment order."""

    async def _open(days: int = 3):
        created = await lifecycle.create_booking(vehicle.id, rental_window(days), customer.id)
        return await lifecycle.open_payment(created.booking.id, actor_id=customer.id)

    return _open


@pytest.fixture
def paid_booking(lifecycle, gateway, open_order):
    """Booking that went through checkout and client verification."""

    async def _pay(days: int = 3):
        opened = await open_order(days)
        payment_id, signature = gateway.checkout(opened.payment.order_id)
        return await lifecycle.confirm_payment(
            opened.booking.id, opened.payment.order_id, payment_id, signature
        )

    return _pay


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_token_for_user(str(user.id), user.email, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def client(session_factory, lifecycle, reconciliation):
    from app.main import create_application

    application = create_application()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_lifecycle_service] = lambda: lifecycle
    application.dependency_overrides[get_reconciliation_service] = lambda: reconciliation

    transport = httpx.ASGITransport(app=application)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
