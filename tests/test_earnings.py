"""
tests/test_earnings.py
Earnings finalization for completed bookings.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.earnings.finalization import finalize_booking
from shared.models.models import (
    AssignmentStatus,
    Booking,
    BookingStatus,
    EarningStatus,
    Package,
    Panchayath,
    StaffEarning,
    User,
)
from shared.utils.errors import AuthorizationError, ConflictError, ValidationError
from tests.conftest import add_assignment, auth_headers, caller_for, make_booking


@pytest.fixture
def completed_booking_factory(db: AsyncSession, customer: User, package: Package, panchayath: Panchayath):
    async def build(status: BookingStatus = BookingStatus.COMPLETED) -> Booking:
        return await make_booking(db, customer, package, status, panchayath, required_staff_count=3)
    return build


@pytest.mark.asyncio
async def test_finalize_creates_one_row_per_accepted_staff(
    db: AsyncSession,
    completed_booking_factory,
    booking_admin: User,
    staff_x: User,
    staff_y: User,
    staff_z: User,
    outside_staff: User,
):
    booking = await completed_booking_factory()
    for staff in (staff_x, staff_y, staff_z):
        await add_assignment(db, booking, staff, AssignmentStatus.ACCEPTED)
    await add_assignment(db, booking, outside_staff, AssignmentStatus.REJECTED)

    result = await finalize_booking(
        db, await caller_for(db, booking_admin), booking.id, Decimal("50"), Decimal("10")
    )
    await db.commit()

    assert len(result.earnings) == 3
    assert result.amount_per_staff == Decimal("60")
    assert result.total_amount == Decimal("180")
    assert booking.finalized_at is not None

    rows = (await db.scalars(
        select(StaffEarning).where(StaffEarning.booking_id == booking.id)
    )).all()
    assert {r.staff_user_id for r in rows} == {staff_x.id, staff_y.id, staff_z.id}
    for row in rows:
        assert Decimal(str(row.amount)) == Decimal("60")
        assert row.status == EarningStatus.PENDING


@pytest.mark.asyncio
async def test_finalize_with_no_accepted_staff_succeeds_empty(
    db: AsyncSession, completed_booking_factory, booking_admin: User
):
    booking = await completed_booking_factory()
    result = await finalize_booking(db, await caller_for(db, booking_admin), booking.id, Decimal("50"))
    assert result.earnings == []
    assert booking.finalized_at is not None


@pytest.mark.asyncio
async def test_second_finalize_conflicts(
    db: AsyncSession, completed_booking_factory, booking_admin: User, staff_x: User
):
    booking = await completed_booking_factory()
    await add_assignment(db, booking, staff_x, AssignmentStatus.ACCEPTED)
    admin = await caller_for(db, booking_admin)

    await finalize_booking(db, admin, booking.id, Decimal("50"))
    await db.commit()

    with pytest.raises(ConflictError):
        await finalize_booking(db, admin, booking.id, Decimal("50"))

    count = len((await db.scalars(
        select(StaffEarning).where(StaffEarning.booking_id == booking.id)
    )).all())
    assert count == 1


@pytest.mark.asyncio
async def test_finalize_requires_completed_booking(
    db: AsyncSession, completed_booking_factory, booking_admin: User
):
    booking = await completed_booking_factory(BookingStatus.IN_PROGRESS)
    with pytest.raises(ConflictError):
        await finalize_booking(db, await caller_for(db, booking_admin), booking.id, Decimal("50"))


@pytest.mark.asyncio
@pytest.mark.parametrize("earning,bonus", [(None, 0), ("0", "0"), ("-5", "0"), ("50", "-1")])
async def test_finalize_validates_amounts(
    db: AsyncSession, completed_booking_factory, booking_admin: User, earning, bonus
):
    booking = await completed_booking_factory()
    with pytest.raises(ValidationError):
        await finalize_booking(
            db,
            await caller_for(db, booking_admin),
            booking.id,
            Decimal(earning) if earning is not None else None,
            Decimal(bonus),
        )


@pytest.mark.asyncio
async def test_finalize_requires_permission(
    db: AsyncSession, completed_booking_factory, bare_admin: User, staff_x: User
):
    booking = await completed_booking_factory()
    for user in (bare_admin, staff_x):
        with pytest.raises(AuthorizationError):
            await finalize_booking(db, await caller_for(db, user), booking.id, Decimal("50"))


# ── HTTP ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_finalize_endpoint_and_staff_earnings(
    client: AsyncClient,
    db: AsyncSession,
    completed_booking_factory,
    booking_admin: User,
    staff_x: User,
    staff_y: User,
):
    booking = await completed_booking_factory()
    await add_assignment(db, booking, staff_x, AssignmentStatus.ACCEPTED)
    await add_assignment(db, booking, staff_y, AssignmentStatus.ACCEPTED)

    response = await client.post(
        f"/bookings/{booking.id}/finalize",
        headers=auth_headers(booking_admin),
        json={"earning_per_staff": "500", "bonus_per_staff": "50"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["staff_count"] == 2
    assert Decimal(data["amount_per_staff"]) == Decimal("550")
    assert Decimal(data["total_amount"]) == Decimal("1100")

    response = await client.post(
        f"/bookings/{booking.id}/finalize",
        headers=auth_headers(booking_admin),
        json={"earning_per_staff": "500"},
    )
    assert response.status_code == 409

    response = await client.get("/staff/earnings", headers=auth_headers(staff_x))
    assert response.status_code == 200
    earnings = response.json()
    assert len(earnings["items"]) == 1
    assert earnings["items"][0]["booking_number"] == booking.booking_number
    assert Decimal(earnings["total_amount"]) == Decimal("550")


@pytest.mark.asyncio
async def test_finalize_endpoint_missing_amount(
    client: AsyncClient, completed_booking_factory, booking_admin: User
):
    booking = await completed_booking_factory()
    response = await client.post(
        f"/bookings/{booking.id}/finalize", headers=auth_headers(booking_admin), json={}
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "earning,bonus",
    [("0.004", "0"), ("50", "0.005"), ("100000000", "0"), ("99999999.99", "0.01")],
)
async def test_finalize_rejects_amounts_the_ledger_cannot_hold(
    db: AsyncSession, completed_booking_factory, booking_admin: User, staff_x: User, earning, bonus
):
    booking = await completed_booking_factory()
    await add_assignment(db, booking, staff_x, AssignmentStatus.ACCEPTED)

    with pytest.raises(ValidationError):
        await finalize_booking(
            db, await caller_for(db, booking_admin), booking.id, Decimal(earning), Decimal(bonus)
        )
    assert booking.finalized_at is None


@pytest.mark.asyncio
async def test_finalize_stores_exact_cent_amounts(
    db: AsyncSession, session_factory, completed_booking_factory, booking_admin: User, staff_x: User
):
    booking = await completed_booking_factory()
    await add_assignment(db, booking, staff_x, AssignmentStatus.ACCEPTED)

    result = await finalize_booking(
        db, await caller_for(db, booking_admin), booking.id, Decimal("0.01"), Decimal("12.50")
    )
    await db.commit()
    assert result.amount_per_staff == Decimal("12.51")

    async with session_factory() as fresh:
        row = await fresh.scalar(select(StaffEarning).where(StaffEarning.booking_id == booking.id))
    assert Decimal(str(row.amount)) == Decimal("12.51")
    assert Decimal(str(row.base_amount)) == Decimal("0.01")


@pytest.mark.asyncio
async def test_finalize_endpoint_rejects_sub_cent_amount(
    client: AsyncClient, db: AsyncSession, completed_booking_factory, booking_admin: User, staff_x: User
):
    booking = await completed_booking_factory()
    await add_assignment(db, booking, staff_x, AssignmentStatus.ACCEPTED)

    response = await client.post(
        f"/bookings/{booking.id}/finalize",
        headers=auth_headers(booking_admin),
        json={"earning_per_staff": "0.004"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    rows = (await db.scalars(select(StaffEarning).where(StaffEarning.booking_id == booking.id))).all()
    assert rows == []
