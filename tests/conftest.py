"""
tests/conftest.py
Shared fixtures: in-memory SQLite per test, fakeredis, an httpx client bound to
the ASGI app, and factories for users in each role.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.redis_client import get_redis
from shared.middleware.auth import CallerContext, resolve_caller
from shared.models.models import (
    AddonService,
    AdminPermission,
    AssignmentStatus,
    Booking,
    BookingStaffAssignment,
    BookingStatus,
    CustomFeature,
    Package,
    Panchayath,
    Profile,
    RoleAssignment,
    ServiceCategory,
    StaffPanchayathAssignment,
    User,
    UserRole,
)
from shared.utils.security import create_access_token


# ── Helpers ───────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.email)
    return {"Authorization": f"Bearer {token}"}


async def make_user(
    db: AsyncSession,
    role: Optional[UserRole],
    name: str,
    phone: Optional[str] = None,
    permissions: Iterable[str] = (),
    panchayath: Optional[Panchayath] = None,
) -> User:
    """Create a user with profile and (optionally) a role row."""
    user = User(email=f"{uuid.uuid4().hex[:10]}@example.com", password_hash="x")
    db.add(user)
    await db.flush()
    db.add(Profile(
        user_id=user.id,
        full_name=name,
        email=user.email,
        phone=phone,
        panchayath_id=panchayath.id if panchayath else None,
    ))
    if role is not None:
        db.add(RoleAssignment(user_id=user.id, role=role))
    for key in permissions:
        db.add(AdminPermission(user_id=user.id, permission_key=key))
    if role == UserRole.STAFF and panchayath is not None:
        db.add(StaffPanchayathAssignment(
            staff_user_id=user.id, panchayath_id=panchayath.id, ward_numbers=[1, 2]
        ))
    await db.commit()
    return user


async def make_booking(
    db: AsyncSession,
    customer: User,
    package: Package,
    status: BookingStatus = BookingStatus.PENDING,
    panchayath: Optional[Panchayath] = None,
    required_staff_count: int = 2,
) -> Booking:
    booking = Booking(
        booking_number=f"HR-TEST-{uuid.uuid4().hex[:6].upper()}",
        customer_user_id=customer.id,
        package_id=package.id,
        customer_name="Anu Thomas",
        customer_phone="9847012345",
        address_line1="12 Lake Road",
        city="Kottayam",
        scheduled_date=date.today() + timedelta(days=2),
        scheduled_time="09:30",
        report_before=datetime.now(timezone.utc) + timedelta(days=2) if panchayath else None,
        panchayath_id=panchayath.id if panchayath else None,
        required_staff_count=required_staff_count,
        status=status,
        package_price=package.price,
        addons_price=Decimal("0"),
        total_price=package.price,
    )
    db.add(booking)
    await db.commit()
    return booking


async def add_assignment(
    db: AsyncSession, booking: Booking, staff: User, status: AssignmentStatus
) -> BookingStaffAssignment:
    row = BookingStaffAssignment(
        booking_id=booking.id,
        staff_user_id=staff.id,
        status=status,
        assigned_at=datetime.now(timezone.utc),
    )
    db.add(row)
    await db.commit()
    return row


async def caller_for(db: AsyncSession, user: User) -> CallerContext:
    return await resolve_caller(db, user)


# ── Infrastructure ────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def client(session_factory, redis):
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Catalog ───────────────────────────────────────────────────

@pytest_asyncio.fixture
async def panchayath(db: AsyncSession) -> Panchayath:
    area = Panchayath(name="Kumarakom", district="Kottayam", ward_count=16)
    db.add(area)
    await db.commit()
    return area


@pytest_asyncio.fixture
async def other_panchayath(db: AsyncSession) -> Panchayath:
    area = Panchayath(name="Aymanam", district="Kottayam", ward_count=20)
    db.add(area)
    await db.commit()
    return area


@pytest_asyncio.fixture
async def package(db: AsyncSession) -> Package:
    category = ServiceCategory(name="Home Cleaning", slug="home-cleaning")
    db.add(category)
    await db.flush()
    item = Package(
        category_id=category.id,
        name="Deep Clean",
        price=Decimal("2499.00"),
        features=["3 staff", "Kitchen degreasing"],
    )
    db.add(item)
    await db.commit()
    return item


@pytest_asyncio.fixture
async def addon(db: AsyncSession) -> AddonService:
    item = AddonService(name="Sofa Shampoo", price=Decimal("499.00"))
    db.add(item)
    await db.commit()
    return item


@pytest_asyncio.fixture
async def feature(db: AsyncSession) -> CustomFeature:
    item = CustomFeature(name="Eco Products", price=Decimal("199.00"))
    db.add(item)
    await db.commit()
    return item


# ── Users ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def customer(db: AsyncSession, panchayath: Panchayath) -> User:
    return await make_user(db, UserRole.CUSTOMER, "Anu Thomas", "9847012345", panchayath=panchayath)


@pytest_asyncio.fixture
async def other_customer(db: AsyncSession) -> User:
    return await make_user(db, UserRole.CUSTOMER, "Rahul Menon", "9847000000")


@pytest_asyncio.fixture
async def staff_x(db: AsyncSession, panchayath: Panchayath) -> User:
    return await make_user(db, UserRole.STAFF, "Xavier", panchayath=panchayath)


@pytest_asyncio.fixture
async def staff_y(db: AsyncSession, panchayath: Panchayath) -> User:
    return await make_user(db, UserRole.STAFF, "Yamuna", panchayath=panchayath)


@pytest_asyncio.fixture
async def staff_z(db: AsyncSession, panchayath: Panchayath) -> User:
    return await make_user(db, UserRole.STAFF, "Zacharia", panchayath=panchayath)


@pytest_asyncio.fixture
async def outside_staff(db: AsyncSession, other_panchayath: Panchayath) -> User:
    return await make_user(db, UserRole.STAFF, "Outsider", panchayath=other_panchayath)


@pytest_asyncio.fixture
async def super_admin(db: AsyncSession) -> User:
    return await make_user(db, UserRole.SUPER_ADMIN, "Root Admin")


@pytest_asyncio.fixture
async def booking_admin(db: AsyncSession) -> User:
    """Admin allowed to view and edit bookings, nothing else."""
    return await make_user(
        db, UserRole.ADMIN, "Bookings Desk", permissions=["bookings.view", "bookings.edit"]
    )


@pytest_asyncio.fixture
async def bare_admin(db: AsyncSession) -> User:
    """Admin with no grants at all."""
    return await make_user(db, UserRole.ADMIN, "New Admin")


# ── Bookings ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def pending_booking(db: AsyncSession, customer: User, package: Package) -> Booking:
    return await make_booking(db, customer, package)


@pytest_asyncio.fixture
async def confirmed_booking(
    db: AsyncSession, customer: User, package: Package, panchayath: Panchayath
) -> Booking:
    return await make_booking(
        db, customer, package, BookingStatus.CONFIRMED, panchayath, required_staff_count=2
    )
