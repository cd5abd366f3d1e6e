"""
services/staff/assignment.py
Staff assignment engine.

Two ways a confirmed booking gets its crew:
- self-accept: eligible staff accept the open job until the accepted count
  reaches `required_staff_count`, at which point the booking moves to
  `assigned` (quorum)
- manual: an admin replaces the whole crew in one step and the booking is
  forced to `assigned`

Eligibility is scoped by panchayath: only staff with a
staff_panchayath_assignments row for the booking's panchayath may act on it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import flush
from config.settings import settings
from services.booking.lifecycle import get_booking
from services.booking.state_machine import ensure_status, transition
from shared.middleware.auth import CallerContext
from shared.models.models import (
    AssignmentStatus,
    Booking,
    BookingStaffAssignment,
    BookingStatus,
    Package,
    Profile,
    RoleAssignment,
    StaffPanchayathAssignment,
    UserRole,
)
from shared.utils.errors import (
    AuthorizationError,
    ConflictError,
    PreconditionError,
    ValidationError,
)
from shared.utils.permissions import ensure_permission

logger = logging.getLogger(__name__)

OPEN_FOR_STAFF = (BookingStatus.CONFIRMED, BookingStatus.ASSIGNED)


@dataclass
class AcceptOutcome:
    booking: Booking
    assignment: BookingStaffAssignment
    quorum_reached: bool


# ── Eligibility ───────────────────────────────────────────────

async def eligible_staff_ids(db: AsyncSession, panchayath_id: UUID) -> Set[UUID]:
    """Staff users serving the panchayath."""
    result = await db.execute(
        select(StaffPanchayathAssignment.staff_user_id)
        .join(RoleAssignment, RoleAssignment.user_id == StaffPanchayathAssignment.staff_user_id)
        .where(
            StaffPanchayathAssignment.panchayath_id == panchayath_id,
            RoleAssignment.role == UserRole.STAFF,
        )
    )
    return set(result.scalars().all())


async def list_eligible_staff(
    db: AsyncSession, caller: CallerContext, booking_id: UUID
) -> List[Profile]:
    """Profiles an admin may pick from when assigning this booking."""
    ensure_permission(caller.role, caller.permissions, "bookings", "view")
    booking = await get_booking(db, booking_id)
    if booking.panchayath_id is None:
        raise PreconditionError(
            f"Booking {booking.booking_number} has no panchayath; confirm it first"
        )
    staff_ids = await eligible_staff_ids(db, booking.panchayath_id)
    if not staff_ids:
        return []
    result = await db.execute(
        select(Profile).where(Profile.user_id.in_(staff_ids)).order_by(Profile.full_name)
    )
    return list(result.scalars().all())


async def _get_assignment(
    db: AsyncSession, booking_id: UUID, staff_user_id: UUID
) -> Optional[BookingStaffAssignment]:
    return await db.scalar(
        select(BookingStaffAssignment).where(
            BookingStaffAssignment.booking_id == booking_id,
            BookingStaffAssignment.staff_user_id == staff_user_id,
        )
    )


async def _ensure_eligible(db: AsyncSession, booking: Booking, staff_user_id: UUID) -> None:
    if booking.panchayath_id is None or staff_user_id not in await eligible_staff_ids(
        db, booking.panchayath_id
    ):
        raise AuthorizationError(
            f"Staff member does not serve the panchayath of booking {booking.booking_number}"
        )


def _require_staff(caller: CallerContext) -> None:
    if caller.role != UserRole.STAFF:
        raise AuthorizationError("Only staff can respond to jobs")


# ── Quorum ────────────────────────────────────────────────────

async def count_accepted(db: AsyncSession, booking_id: UUID) -> int:
    return await db.scalar(
        select(func.count())
        .select_from(BookingStaffAssignment)
        .where(
            BookingStaffAssignment.booking_id == booking_id,
            BookingStaffAssignment.status == AssignmentStatus.ACCEPTED,
        )
    ) or 0


async def evaluate_quorum(
    db: AsyncSession, booking: Booking, changed_by_id: Optional[UUID] = None
) -> bool:
    """
    Move a confirmed booking to `assigned` once enough staff accepted.
    Counts rows rather than tracking increments, so repeated or reordered
    calls converge on the same result. Returns True only when it fired.
    """
    if booking.status != BookingStatus.CONFIRMED:
        return False

    accepted = await count_accepted(db, booking.id)
    if accepted < booking.required_staff_count:
        return False

    await transition(
        db, booking, BookingStatus.ASSIGNED, changed_by_id,
        reason="staff quorum reached",
        metadata={"accepted": accepted, "required": booking.required_staff_count},
    )
    logger.info(
        f"Quorum reached for {booking.booking_number}: "
        f"{accepted}/{booking.required_staff_count} accepted"
    )
    return True


# ── Staff actions ─────────────────────────────────────────────

async def accept_job(db: AsyncSession, caller: CallerContext, booking_id: UUID) -> AcceptOutcome:
    _require_staff(caller)
    booking = await get_booking(db, booking_id, lock=True)
    ensure_status(booking, *OPEN_FOR_STAFF, action="accept")

    now = datetime.now(timezone.utc)
    assignment = await _get_assignment(db, booking.id, caller.user_id)

    if assignment is None:
        await _ensure_eligible(db, booking, caller.user_id)
        if booking.status == BookingStatus.ASSIGNED and not settings.ALLOW_OVER_QUORUM_ACCEPT:
            logger.warning(
                f"Over-quorum accept refused on {booking.booking_number} for staff {caller.user_id}"
            )
            raise ConflictError(
                f"Booking {booking.booking_number} already has its required staff"
            )
        assignment = BookingStaffAssignment(
            booking_id=booking.id,
            staff_user_id=caller.user_id,
            status=AssignmentStatus.ACCEPTED,
            assigned_at=now,
            responded_at=now,
        )
        db.add(assignment)
    elif assignment.status == AssignmentStatus.REJECTED:
        raise ConflictError(
            f"You already rejected booking {booking.booking_number}"
        )
    elif assignment.status == AssignmentStatus.PENDING:
        assignment.status = AssignmentStatus.ACCEPTED
        assignment.responded_at = now

    await flush(db, conflict_message="Job was already taken up by this staff member")
    quorum_reached = await evaluate_quorum(db, booking, caller.user_id)
    await flush(db)

    logger.info(f"Staff {caller.user_id} accepted {booking.booking_number}")
    return AcceptOutcome(booking=booking, assignment=assignment, quorum_reached=quorum_reached)


async def reject_job(
    db: AsyncSession, caller: CallerContext, booking_id: UUID
) -> BookingStaffAssignment:
    """
    Decline a job. A rejection is recorded as a row so the job stops showing
    up for this staff member; it never counts towards the quorum.
    """
    _require_staff(caller)
    booking = await get_booking(db, booking_id, lock=True)
    ensure_status(booking, *OPEN_FOR_STAFF, action="reject")

    now = datetime.now(timezone.utc)
    assignment = await _get_assignment(db, booking.id, caller.user_id)

    if assignment is None:
        await _ensure_eligible(db, booking, caller.user_id)
        assignment = BookingStaffAssignment(
            booking_id=booking.id,
            staff_user_id=caller.user_id,
            status=AssignmentStatus.REJECTED,
            assigned_at=now,
            responded_at=now,
        )
        db.add(assignment)
    elif assignment.status == AssignmentStatus.ACCEPTED:
        raise ConflictError(
            f"You already accepted booking {booking.booking_number}; ask an admin to reassign it"
        )
    elif assignment.status == AssignmentStatus.PENDING:
        assignment.status = AssignmentStatus.REJECTED
        assignment.responded_at = now

    await flush(db, conflict_message="Job was already answered by this staff member")
    logger.info(f"Staff {caller.user_id} rejected {booking.booking_number}")
    return assignment


# ── Admin action ──────────────────────────────────────────────

async def manual_assign(
    db: AsyncSession,
    caller: CallerContext,
    booking_id: UUID,
    staff_user_ids: List[UUID],
) -> List[BookingStaffAssignment]:
    """
    Replace the booking's crew with exactly `staff_user_ids`.
    Previous rows (accepted or not) are deleted, the new set starts at
    `pending`, and the booking is forced to `assigned` whatever the
    accepted count.
    """
    ensure_permission(caller.role, caller.permissions, "bookings", "edit")

    staff_user_ids = list(dict.fromkeys(staff_user_ids))
    if not staff_user_ids:
        raise ValidationError("Select at least one staff member")

    booking = await get_booking(db, booking_id, lock=True)
    if booking.panchayath_id is None:
        raise PreconditionError(
            f"Booking {booking.booking_number} has no panchayath; confirm it first"
        )
    ensure_status(booking, *OPEN_FOR_STAFF, action="assign staff to")

    eligible = await eligible_staff_ids(db, booking.panchayath_id)
    outside = [str(s) for s in staff_user_ids if s not in eligible]
    if outside:
        raise ValidationError(
            f"Staff not serving this booking's panchayath: {', '.join(outside)}"
        )

    await db.execute(
        delete(BookingStaffAssignment).where(BookingStaffAssignment.booking_id == booking.id)
    )
    now = datetime.now(timezone.utc)
    assignments = [
        BookingStaffAssignment(
            booking_id=booking.id,
            staff_user_id=staff_id,
            status=AssignmentStatus.PENDING,
            assigned_at=now,
        )
        for staff_id in staff_user_ids
    ]
    db.add_all(assignments)
    await flush(db, conflict_message="Staff assignment changed concurrently, please retry")

    if booking.status == BookingStatus.CONFIRMED:
        await transition(
            db, booking, BookingStatus.ASSIGNED, caller.user_id,
            reason="manual assignment",
            metadata={"staff_user_ids": [str(s) for s in staff_user_ids]},
        )
        await flush(db)

    logger.info(
        f"Booking {booking.booking_number} manually assigned to {len(assignments)} staff"
    )
    return assignments


# ── Listings ──────────────────────────────────────────────────

async def list_my_jobs(
    db: AsyncSession,
    staff_user_id: UUID,
    assignment_status: Optional[AssignmentStatus] = None,
) -> List[Tuple[BookingStaffAssignment, Booking, str]]:
    """Rows held by the staff member with their booking and package name."""
    query = (
        select(BookingStaffAssignment, Booking, Package.name)
        .join(Booking, Booking.id == BookingStaffAssignment.booking_id)
        .join(Package, Package.id == Booking.package_id)
        .where(
            BookingStaffAssignment.staff_user_id == staff_user_id,
            Booking.status != BookingStatus.CANCELLED,
        )
        .order_by(Booking.scheduled_date, Booking.scheduled_time)
    )
    if assignment_status:
        query = query.where(BookingStaffAssignment.status == assignment_status)
    result = await db.execute(query)
    return [tuple(row) for row in result.all()]


async def list_open_jobs(db: AsyncSession, staff_user_id: UUID) -> List[Tuple[Booking, str]]:
    """Confirmed bookings in the staff member's panchayaths they have not answered yet."""
    my_panchayaths = select(StaffPanchayathAssignment.panchayath_id).where(
        StaffPanchayathAssignment.staff_user_id == staff_user_id
    )
    already_answered = exists().where(
        BookingStaffAssignment.booking_id == Booking.id,
        BookingStaffAssignment.staff_user_id == staff_user_id,
    )
    result = await db.execute(
        select(Booking, Package.name)
        .join(Package, Package.id == Booking.package_id)
        .where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.panchayath_id.in_(my_panchayaths),
            ~already_answered,
        )
        .order_by(Booking.scheduled_date, Booking.scheduled_time)
    )
    return [tuple(row) for row in result.all()]


async def accepted_counts(db: AsyncSession, booking_ids: List[UUID]) -> dict:
    if not booking_ids:
        return {}
    result = await db.execute(
        select(BookingStaffAssignment.booking_id, func.count())
        .where(
            BookingStaffAssignment.booking_id.in_(booking_ids),
            BookingStaffAssignment.status == AssignmentStatus.ACCEPTED,
        )
        .group_by(BookingStaffAssignment.booking_id)
    )
    return dict(result.all())


async def list_booking_assignments(
    db: AsyncSession, booking_id: UUID
) -> List[Tuple[BookingStaffAssignment, Optional[str]]]:
    """Crew of one booking with each member's name."""
    result = await db.execute(
        select(BookingStaffAssignment, Profile.full_name)
        .outerjoin(Profile, Profile.user_id == BookingStaffAssignment.staff_user_id)
        .where(BookingStaffAssignment.booking_id == booking_id)
        .order_by(BookingStaffAssignment.assigned_at)
    )
    return [tuple(row) for row in result.all()]
