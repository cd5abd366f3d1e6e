"""
services/booking/lifecycle.py
Booking operations callable from any transport: create, confirm, start,
complete, cancel, plus visibility rules for reads.

Every write locks the booking row first, so concurrent requests touching the
same booking run one after another inside their own transaction.
"""

import logging
import random
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import Select, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import flush
from config.settings import settings
from services.booking.state_machine import ensure_status, is_terminal, transition
from shared.middleware.auth import CallerContext
from shared.models.models import (
    AddonService,
    AssignmentStatus,
    Booking,
    BookingStaffAssignment,
    BookingStatus,
    CustomFeature,
    Package,
    Panchayath,
    StaffPanchayathAssignment,
    UserRole,
)
from shared.schemas.schemas import BookingCreateRequest
from shared.utils.errors import AuthorizationError, NotFoundError, ValidationError
from shared.utils.permissions import ensure_permission

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────

def _generate_booking_number() -> str:
    """Generate a human-readable booking number like HR-2026-X7K9M."""
    year = datetime.now().year
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"{settings.BOOKING_NUMBER_PREFIX}-{year}-{suffix}"


def select_booking(booking_id: UUID, lock: bool = False) -> Select:
    query = select(Booking).where(Booking.id == booking_id)
    if lock:
        query = query.with_for_update()
    return query


async def get_booking(db: AsyncSession, booking_id: UUID, lock: bool = False) -> Booking:
    """
    Load a booking, optionally taking a row lock for the rest of the transaction.
    Every write path locks first, so accepts, manual assignment and
    finalization on one booking run one at a time.
    """
    booking = (await db.execute(select_booking(booking_id, lock))).scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


async def has_accepted_assignment(db: AsyncSession, booking_id: UUID, staff_user_id: UUID) -> bool:
    return bool(await db.scalar(
        select(exists().where(
            BookingStaffAssignment.booking_id == booking_id,
            BookingStaffAssignment.staff_user_id == staff_user_id,
            BookingStaffAssignment.status == AssignmentStatus.ACCEPTED,
        ))
    ))


@dataclass
class PriceBreakdown:
    package_price: Decimal
    addons_price: Decimal
    addon_ids: List[str]
    custom_feature_ids: List[str]

    @property
    def total(self) -> Decimal:
        return self.package_price + self.addons_price


async def price_booking(
    db: AsyncSession,
    package_id: UUID,
    addon_ids: List[UUID],
    custom_feature_ids: List[UUID],
) -> PriceBreakdown:
    """Package price plus every selected add-on and custom feature."""
    package = await db.scalar(
        select(Package).where(Package.id == package_id, Package.is_active == True)
    )
    if not package:
        raise ValidationError("Selected package does not exist or is no longer offered")

    addon_ids = list(dict.fromkeys(addon_ids))
    custom_feature_ids = list(dict.fromkeys(custom_feature_ids))

    extras = Decimal("0")
    for model, ids, label in (
        (AddonService, addon_ids, "add-on"),
        (CustomFeature, custom_feature_ids, "custom feature"),
    ):
        if not ids:
            continue
        rows = (await db.execute(
            select(model.id, model.price).where(model.id.in_(ids), model.is_active == True)
        )).all()
        missing = set(ids) - {row.id for row in rows}
        if missing:
            raise ValidationError(
                f"Unknown or inactive {label}(s): {', '.join(sorted(str(m) for m in missing))}"
            )
        extras += sum((Decimal(str(row.price)) for row in rows), Decimal("0"))

    return PriceBreakdown(
        package_price=Decimal(str(package.price)),
        addons_price=extras,
        addon_ids=[str(a) for a in addon_ids],
        custom_feature_ids=[str(f) for f in custom_feature_ids],
    )


# ── Operations ────────────────────────────────────────────────

async def create_booking(
    db: AsyncSession, caller: CallerContext, data: BookingCreateRequest
) -> Booking:
    """Customer books a package. Starts in `pending` with its price frozen."""
    if caller.role != UserRole.CUSTOMER:
        raise AuthorizationError("Only customers can create bookings")

    pricing = await price_booking(db, data.package_id, data.addon_ids, data.custom_feature_ids)

    booking = Booking(
        booking_number=_generate_booking_number(),
        customer_user_id=caller.user_id,
        package_id=data.package_id,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        customer_email=data.customer_email,
        address_line1=data.address_line1,
        address_line2=data.address_line2,
        city=data.city,
        scheduled_date=data.scheduled_date,
        scheduled_time=data.scheduled_time,
        required_staff_count=settings.DEFAULT_REQUIRED_STAFF_COUNT,
        status=BookingStatus.PENDING,
        package_price=pricing.package_price,
        addon_ids=pricing.addon_ids,
        custom_feature_ids=pricing.custom_feature_ids,
        addons_price=pricing.addons_price,
        total_price=pricing.total,
        special_instructions=data.special_instructions,
    )
    db.add(booking)
    await flush(db, conflict_message="Booking number collision, please retry")

    logger.info(f"Booking {booking.booking_number} created, total {booking.total_price}")
    return booking


async def confirm_booking(
    db: AsyncSession,
    caller: CallerContext,
    booking_id: UUID,
    panchayath_id: Optional[UUID],
    report_before: Optional[datetime],
    required_staff_count: Optional[int] = None,
) -> Booking:
    """
    Admin verification step: pending → confirmed.
    Scopes the job to a panchayath and makes it visible to that area's staff.
    """
    ensure_permission(caller.role, caller.permissions, "bookings", "edit")

    booking = await get_booking(db, booking_id, lock=True)
    ensure_status(booking, BookingStatus.PENDING, action="confirm")

    missing = [
        name for name, value in (("panchayath", panchayath_id), ("report-before time", report_before))
        if value is None
    ]
    if missing:
        raise ValidationError(f"Cannot confirm booking without {' and '.join(missing)}")

    staff_count = required_staff_count
    if staff_count is None:
        staff_count = settings.DEFAULT_REQUIRED_STAFF_COUNT
    if not settings.MIN_REQUIRED_STAFF_COUNT <= staff_count <= settings.MAX_REQUIRED_STAFF_COUNT:
        raise ValidationError(
            f"required_staff_count must be between {settings.MIN_REQUIRED_STAFF_COUNT} "
            f"and {settings.MAX_REQUIRED_STAFF_COUNT}"
        )

    panchayath = await db.get(Panchayath, panchayath_id)
    if not panchayath or not panchayath.is_active:
        raise ValidationError("Selected panchayath does not exist")

    booking.panchayath_id = panchayath.id
    booking.report_before = report_before
    booking.required_staff_count = staff_count
    await transition(
        db, booking, BookingStatus.CONFIRMED, caller.user_id,
        metadata={"panchayath_id": str(panchayath.id), "required_staff_count": staff_count},
    )
    await flush(db)
    return booking


async def _staff_transition(
    db: AsyncSession,
    caller: CallerContext,
    booking_id: UUID,
    source: BookingStatus,
    target: BookingStatus,
    action: str,
) -> Booking:
    if caller.role != UserRole.STAFF:
        raise AuthorizationError(f"Only staff can {action} a job")

    booking = await get_booking(db, booking_id, lock=True)
    if not await has_accepted_assignment(db, booking.id, caller.user_id):
        raise AuthorizationError(
            f"Only staff who accepted booking {booking.booking_number} can {action} it"
        )
    ensure_status(booking, source, action=action)
    await transition(db, booking, target, caller.user_id)
    await flush(db)
    return booking


async def start_job(db: AsyncSession, caller: CallerContext, booking_id: UUID) -> Booking:
    """assigned → in_progress, by one of the accepted staff."""
    return await _staff_transition(
        db, caller, booking_id, BookingStatus.ASSIGNED, BookingStatus.IN_PROGRESS, "start"
    )


async def complete_job(db: AsyncSession, caller: CallerContext, booking_id: UUID) -> Booking:
    """in_progress → completed, by one of the accepted staff."""
    return await _staff_transition(
        db, caller, booking_id, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, "complete"
    )


async def cancel_booking(
    db: AsyncSession,
    caller: CallerContext,
    booking_id: UUID,
    reason: Optional[str] = None,
) -> Booking:
    """
    Owning customer or an admin with bookings.edit cancels a non-terminal
    booking. Assignment rows stay for history; cancelled bookings drop out
    of every staff job listing.
    """
    booking = await get_booking(db, booking_id, lock=True)

    is_owner = caller.role == UserRole.CUSTOMER and booking.customer_user_id == caller.user_id
    if not is_owner and not caller.has_permission("bookings", "edit"):
        raise AuthorizationError("Not authorized to cancel this booking")

    if is_terminal(booking.status):
        ensure_status(booking, *(s for s in BookingStatus if not is_terminal(s)), action="cancel")

    booking.cancellation_reason = reason
    booking.cancelled_by = caller.role.value
    await transition(db, booking, BookingStatus.CANCELLED, caller.user_id, reason=reason)
    await flush(db)
    return booking


# ── Visibility ────────────────────────────────────────────────

async def staff_serves_panchayath(db: AsyncSession, staff_user_id: UUID, panchayath_id: UUID) -> bool:
    return bool(await db.scalar(
        select(exists().where(
            StaffPanchayathAssignment.staff_user_id == staff_user_id,
            StaffPanchayathAssignment.panchayath_id == panchayath_id,
        ))
    ))


async def ensure_can_view(db: AsyncSession, caller: CallerContext, booking: Booking) -> None:
    """Customer sees own, staff sees assigned or open jobs in their area, admin needs bookings.view."""
    if caller.role == UserRole.CUSTOMER:
        if booking.customer_user_id == caller.user_id:
            return
    elif caller.role == UserRole.STAFF:
        # Cancellation releases the job from every staff member's view
        if booking.status == BookingStatus.CANCELLED:
            raise AuthorizationError("Not authorized to view this booking")
        has_row = await db.scalar(
            select(exists().where(
                BookingStaffAssignment.booking_id == booking.id,
                BookingStaffAssignment.staff_user_id == caller.user_id,
            ))
        )
        if has_row:
            return
        if (
            booking.status == BookingStatus.CONFIRMED
            and booking.panchayath_id is not None
            and await staff_serves_panchayath(db, caller.user_id, booking.panchayath_id)
        ):
            return
    elif caller.has_permission("bookings", "view"):
        return
    raise AuthorizationError("Not authorized to view this booking")


async def list_customer_bookings(
    db: AsyncSession,
    customer_user_id: UUID,
    status: Optional[BookingStatus] = None,
    page: int = 1,
    page_size: int = 10,
) -> List[Booking]:
    query = select(Booking).where(Booking.customer_user_id == customer_user_id)
    if status:
        query = query.where(Booking.status == status)
    query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    return list((await db.scalars(query)).all())
