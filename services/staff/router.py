"""
services/staff/router.py
Staff app endpoints: job feed, accept/reject, and own earnings.
Starting and completing a job live on the booking router.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.earnings.finalization import list_staff_earnings
from services.staff import assignment as engine
from shared.middleware.auth import CallerContext, get_caller, require_staff
from shared.models.models import AssignmentStatus, Booking
from shared.schemas.schemas import (
    AcceptJobResponse,
    AssignmentResponse,
    EarningsSummaryResponse,
    JobSummary,
    MyJobResponse,
    StaffEarningResponse,
)
from shared.utils.errors import ValidationError

router = APIRouter(prefix="/staff", tags=["Staff"])


def _job_summary(booking: Booking, package_name: str) -> dict:
    return dict(
        booking_id=booking.id,
        booking_number=booking.booking_number,
        package_name=package_name,
        scheduled_date=booking.scheduled_date,
        scheduled_time=booking.scheduled_time,
        report_before=booking.report_before,
        address_line1=booking.address_line1,
        city=booking.city,
        booking_status=booking.status.value,
        required_staff_count=booking.required_staff_count,
    )


# ── Job Feed ──────────────────────────────────────────────────

@router.get("/jobs", response_model=list[MyJobResponse])
async def list_my_jobs(
    status_filter: Optional[str] = Query(None, description="pending | accepted | rejected"),
    caller: CallerContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Jobs this staff member holds a row for, soonest first. Cancelled bookings drop out."""
    assignment_status = None
    if status_filter:
        try:
            assignment_status = AssignmentStatus(status_filter)
        except ValueError:
            raise ValidationError(f"Invalid status: {status_filter}")

    rows = await engine.list_my_jobs(db, caller.user_id, assignment_status)
    return [
        MyJobResponse(
            **_job_summary(booking, package_name),
            assignment_id=assignment.id,
            assignment_status=assignment.status.value,
            responded_at=assignment.responded_at,
        )
        for assignment, booking, package_name in rows
    ]


@router.get("/jobs/open", response_model=list[JobSummary])
async def list_open_jobs(
    caller: CallerContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Confirmed jobs in the staff member's panchayaths still waiting for hands."""
    rows = await engine.list_open_jobs(db, caller.user_id)
    return [JobSummary(**_job_summary(booking, name)) for booking, name in rows]


# ── Respond ───────────────────────────────────────────────────

@router.post("/jobs/{booking_id}/accept", response_model=AcceptJobResponse)
async def accept_job(
    booking_id: UUID,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    outcome = await engine.accept_job(db, caller, booking_id)
    return AcceptJobResponse(
        assignment=AssignmentResponse.model_validate(outcome.assignment),
        booking_status=outcome.booking.status.value,
        quorum_reached=outcome.quorum_reached,
    )


@router.post("/jobs/{booking_id}/reject", response_model=AssignmentResponse)
async def reject_job(
    booking_id: UUID,
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await engine.reject_job(db, caller, booking_id)


# ── Earnings ──────────────────────────────────────────────────

@router.get("/earnings", response_model=EarningsSummaryResponse)
async def my_earnings(
    caller: CallerContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await list_staff_earnings(db, caller.user_id)
    return EarningsSummaryResponse(
        items=[
            StaffEarningResponse.model_validate(e).model_copy(update={"booking_number": number})
            for e, number in rows
        ],
        total_amount=total,
    )
