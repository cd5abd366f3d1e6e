"""
services/earnings/finalization.py
Turn a completed booking into per-staff earning records.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import flush
from services.booking.lifecycle import get_booking
from services.booking.state_machine import ensure_status
from shared.middleware.auth import CallerContext
from shared.models.models import (
    AssignmentStatus,
    Booking,
    BookingStaffAssignment,
    BookingStatus,
    EarningStatus,
    StaffEarning,
)
from shared.utils.errors import ConflictError, ValidationError
from shared.utils.permissions import ensure_permission

logger = logging.getLogger(__name__)

# staff_earnings money columns are Numeric(10, 2)
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("99999999.99")


def _ensure_money(value: Decimal, name: str) -> None:
    if not value.is_finite() or value != value.quantize(CENT):
        raise ValidationError(f"{name} must be an amount with at most 2 decimal places")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT}")


@dataclass
class FinalizationResult:
    booking: Booking
    earnings: List[StaffEarning]
    amount_per_staff: Decimal

    @property
    def total_amount(self) -> Decimal:
        return self.amount_per_staff * len(self.earnings)


async def finalize_booking(
    db: AsyncSession,
    caller: CallerContext,
    booking_id: UUID,
    earning_per_staff: Optional[Decimal],
    bonus_per_staff: Optional[Decimal] = None,
) -> FinalizationResult:
    """
    Create one pending earning of `earning + bonus` for every staff member who
    accepted the job. A booking is finalized at most once; zero accepted staff
    still finalizes, with no rows.
    """
    ensure_permission(caller.role, caller.permissions, "bookings", "edit")

    if earning_per_staff is None:
        raise ValidationError("earning_per_staff must be greater than 0")
    _ensure_money(earning_per_staff, "earning_per_staff")
    if earning_per_staff <= 0:
        raise ValidationError("earning_per_staff must be greater than 0")
    bonus = bonus_per_staff if bonus_per_staff is not None else Decimal("0")
    _ensure_money(bonus, "bonus_per_staff")
    if bonus < 0:
        raise ValidationError("bonus_per_staff cannot be negative")
    _ensure_money(earning_per_staff + bonus, "earning_per_staff + bonus_per_staff")

    booking = await get_booking(db, booking_id, lock=True)
    ensure_status(booking, BookingStatus.COMPLETED, action="finalize earnings for")
    if booking.finalized_at is not None:
        raise ConflictError(f"Earnings for booking {booking.booking_number} are already finalized")

    result = await db.execute(
        select(BookingStaffAssignment.staff_user_id)
        .where(
            BookingStaffAssignment.booking_id == booking.id,
            BookingStaffAssignment.status == AssignmentStatus.ACCEPTED,
        )
        .order_by(BookingStaffAssignment.assigned_at)
    )
    staff_ids = result.scalars().all()

    amount = earning_per_staff + bonus
    earnings = [
        StaffEarning(
            booking_id=booking.id,
            staff_user_id=staff_id,
            base_amount=earning_per_staff,
            bonus_amount=bonus,
            amount=amount,
            status=EarningStatus.PENDING,
            finalized_by_id=caller.user_id,
        )
        for staff_id in staff_ids
    ]
    db.add_all(earnings)
    booking.finalized_at = datetime.now(timezone.utc)
    await flush(db, conflict_message=f"Earnings for booking {booking.booking_number} already exist")

    if not earnings:
        logger.warning(f"Booking {booking.booking_number} finalized with no accepted staff")
    logger.info(
        f"Finalized {booking.booking_number}: {len(earnings)} staff x {amount}"
    )
    return FinalizationResult(booking=booking, earnings=earnings, amount_per_staff=amount)


async def list_staff_earnings(
    db: AsyncSession, staff_user_id: UUID
) -> Tuple[List[Tuple[StaffEarning, str]], Decimal]:
    """Own earnings newest first, plus their sum."""
    result = await db.execute(
        select(StaffEarning, Booking.booking_number)
        .join(Booking, Booking.id == StaffEarning.booking_id)
        .where(StaffEarning.staff_user_id == staff_user_id)
        .order_by(StaffEarning.created_at.desc())
    )
    rows = [tuple(row) for row in result.all()]
    total = await db.scalar(
        select(func.coalesce(func.sum(StaffEarning.amount), 0)).where(
            StaffEarning.staff_user_id == staff_user_id
        )
    )
    return rows, Decimal(str(total))


async def list_all_earnings(
    db: AsyncSession,
    status: Optional[EarningStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[Tuple[StaffEarning, str]], int]:
    query = select(StaffEarning, Booking.booking_number).join(
        Booking, Booking.id == StaffEarning.booking_id
    )
    count_query = select(func.count()).select_from(StaffEarning)
    if status:
        query = query.where(StaffEarning.status == status)
        count_query = count_query.where(StaffEarning.status == status)

    total = await db.scalar(count_query) or 0
    result = await db.execute(
        query.order_by(StaffEarning.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [tuple(row) for row in result.all()], total
