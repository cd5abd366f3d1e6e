"""
services/booking/router.py
Booking endpoints. State changes are delegated to services/booking/lifecycle.py,
crew changes to services/staff/assignment.py and payouts to
services/earnings/finalization.py.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking import lifecycle
from services.earnings.finalization import finalize_booking
from services.staff import assignment as engine
from shared.middleware.auth import CallerContext, PermissionRequired, get_caller
from shared.models.models import Booking, BookingStatus, Package, UserRole
from shared.schemas.schemas import (
    AssignmentResponse,
    BookingCancelRequest,
    BookingConfirmRequest,
    BookingCreateRequest,
    BookingResponse,
    FinalizeRequest,
    FinalizeResponse,
    PaginatedResponse,
    ProfileResponse,
    StaffAssignRequest,
    StaffEarningResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ValidationError

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

def _enrich_booking(
    booking: Booking,
    package_name: Optional[str] = None,
    accepted_staff_count: Optional[int] = None,
) -> BookingResponse:
    return BookingResponse(
        **{
            col.name: getattr(booking, col.name)
            for col in Booking.__table__.columns
            if col.name in BookingResponse.model_fields
        },
        package_name=package_name,
        accepted_staff_count=accepted_staff_count,
    )


async def _package_name(db: AsyncSession, booking: Booking) -> Optional[str]:
    return await db.scalar(select(Package.name).where(Package.id == booking.package_id))


def _parse_status(value: Optional[str]) -> Optional[BookingStatus]:
    if not value:
        return None
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


# ── Customer ──────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Book a package with optional add-ons and custom features. Starts `pending`."""
    booking = await lifecycle.create_booking(db, caller, data)
    return _enrich_booking(booking, await _package_name(db, booking))


@router.get("", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's own bookings. Staff use /staff/jobs instead."""
    bookings = await lifecycle.list_customer_bookings(
        db, caller.user_id, _parse_status(status_filter), page, page_size
    )
    return [_enrich_booking(b) for b in bookings]


# ── Admin listing ─────────────────────────────────────────────

@router.get("/admin/all", response_model=PaginatedResponse)
async def list_all_bookings(
    status_filter: Optional[str] = Query(None),
    panchayath_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    caller: CallerContext = Depends(PermissionRequired("bookings", "view")),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking, Package.name).join(Package, Package.id == Booking.package_id)
    count_query = select(func.count()).select_from(Booking)

    booking_status = _parse_status(status_filter)
    if booking_status:
        query = query.where(Booking.status == booking_status)
        count_query = count_query.where(Booking.status == booking_status)
    if panchayath_id:
        query = query.where(Booking.panchayath_id == panchayath_id)
        count_query = count_query.where(Booking.panchayath_id == panchayath_id)

    total = await db.scalar(count_query) or 0
    result = await db.execute(
        query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    rows = result.all()
    counts = await engine.accepted_counts(db, [b.id for b, _ in rows])

    return PaginatedResponse(
        items=[_enrich_booking(b, name, counts.get(b.id, 0)) for b, name in rows],
        total=total,
        page=page,
        page_size=page_size,
        pages=(total + page_size - 1) // page_size,
    )


# ── Read ──────────────────────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Customer sees own, staff sees assigned or open jobs, admin needs bookings.view."""
    booking = await lifecycle.get_booking(db, booking_id)
    await lifecycle.ensure_can_view(db, caller, booking)
    counts = await engine.accepted_counts(db, [booking.id])
    return _enrich_booking(booking, await _package_name(db, booking), counts.get(booking.id, 0))


@router.get("/{booking_id}/staff", response_model=list[AssignmentResponse])
async def get_booking_staff(
    booking_id: UUID,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    booking = await lifecycle.get_booking(db, booking_id)
    await lifecycle.ensure_can_view(db, caller, booking)
    rows = await engine.list_booking_assignments(db, booking.id)
    return [
        AssignmentResponse.model_validate(a).model_copy(update={"staff_name": name})
        for a, name in rows
    ]


# ── Transitions ───────────────────────────────────────────────

@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    data: BookingConfirmRequest,
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Admin verifies the booking, scoping it to a panchayath: pending → confirmed."""
    booking = await lifecycle.confirm_booking(
        db, caller, booking_id, data.panchayath_id, data.report_before, data.required_staff_count
    )
    await log_admin_action(
        db, caller.user, "CONFIRM_BOOKING", "booking", str(booking.id),
        {"panchayath_id": str(booking.panchayath_id), "required_staff_count": booking.required_staff_count},
        request,
    )
    return _enrich_booking(booking, await _package_name(db, booking))


@router.post("/{booking_id}/start", response_model=BookingResponse)
async def start_job(
    booking_id: UUID,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Accepted staff starts the job: assigned → in_progress."""
    booking = await lifecycle.start_job(db, caller, booking_id)
    return _enrich_booking(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_job(
    booking_id: UUID,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Accepted staff finishes the job: in_progress → completed."""
    booking = await lifecycle.complete_job(db, caller, booking_id)
    return _enrich_booking(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Owning customer or admin cancels a booking that has not finished."""
    booking = await lifecycle.cancel_booking(db, caller, booking_id, data.reason)
    if caller.role != UserRole.CUSTOMER:
        await log_admin_action(
            db, caller.user, "CANCEL_BOOKING", "booking", str(booking.id),
            {"reason": data.reason},
            request,
        )
    return _enrich_booking(booking)


# ── Staffing ──────────────────────────────────────────────────

@router.get("/{booking_id}/eligible-staff", response_model=list[ProfileResponse])
async def list_eligible_staff(
    booking_id: UUID,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Staff serving the booking's panchayath."""
    return await engine.list_eligible_staff(db, caller, booking_id)


@router.post("/{booking_id}/assign-staff", response_model=list[AssignmentResponse])
async def assign_staff(
    booking_id: UUID,
    data: StaffAssignRequest,
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Replace the crew with the selected staff and mark the booking assigned."""
    assignments = await engine.manual_assign(db, caller, booking_id, data.staff_user_ids)
    await log_admin_action(
        db, caller.user, "ASSIGN_STAFF", "booking", str(booking_id),
        {"staff_user_ids": [str(a.staff_user_id) for a in assignments]},
        request,
    )
    return assignments


# ── Earnings ──────────────────────────────────────────────────

@router.post("/{booking_id}/finalize", response_model=FinalizeResponse)
async def finalize_earnings(
    booking_id: UUID,
    data: FinalizeRequest,
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Record `earning + bonus` for every staff member who accepted the completed job."""
    result = await finalize_booking(
        db, caller, booking_id, data.earning_per_staff, data.bonus_per_staff
    )
    await log_admin_action(
        db, caller.user, "FINALIZE_EARNINGS", "booking", str(booking_id),
        {
            "earning_per_staff": str(data.earning_per_staff),
            "bonus_per_staff": str(data.bonus_per_staff),
            "staff_count": len(result.earnings),
        },
        request,
    )
    return FinalizeResponse(
        booking_id=result.booking.id,
        booking_number=result.booking.booking_number,
        staff_count=len(result.earnings),
        amount_per_staff=result.amount_per_staff,
        total_amount=result.total_amount,
        earnings=[
            StaffEarningResponse.model_validate(e).model_copy(
                update={"booking_number": result.booking.booking_number}
            )
            for e in result.earnings
        ],
    )
