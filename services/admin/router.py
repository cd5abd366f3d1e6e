"""
services/admin/router.py
Admin-only endpoints: users and roles, permission grants, staff roster,
dashboard, earnings oversight, and the immutable audit log.

Every endpoint is gated on a granular `<tab>.<action>` permission.
ALL mutations are logged to AdminAuditLog before returning.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.admin import access
from services.earnings.finalization import list_all_earnings
from shared.middleware.auth import CallerContext, PermissionRequired
from shared.models.models import (
    AdminAuditLog,
    Booking,
    BookingStatus,
    EarningStatus,
    Profile,
    RoleAssignment,
    StaffEarning,
    StaffPanchayathAssignment,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AdminAuditLogResponse,
    AdminDashboardResponse,
    PaginatedResponse,
    PermissionSetRequest,
    PermissionSetResponse,
    RoleUpdateRequest,
    StaffEarningResponse,
    StaffMemberResponse,
    UserWithRoleResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ValidationError
from shared.utils.permissions import effective_permission_keys

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Users & Roles ─────────────────────────────────────────────

@router.get("/users", response_model=PaginatedResponse)
async def list_users(
    role: Optional[str] = Query(None, description="Filter by role value"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    caller: CallerContext = Depends(PermissionRequired("settings", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Users with their single role. A user with no role row counts as customer."""
    role_col = func.coalesce(RoleAssignment.role, UserRole.CUSTOMER.value)
    query = (
        select(User, Profile, role_col.label("role"))
        .outerjoin(Profile, Profile.user_id == User.id)
        .outerjoin(RoleAssignment, RoleAssignment.user_id == User.id)
    )
    if role:
        try:
            query = query.where(role_col == UserRole(role).value)
        except ValueError:
            raise ValidationError(f"Invalid role: {role}")

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(User.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )

    return PaginatedResponse(
        items=[
            UserWithRoleResponse(
                user_id=user.id,
                email=user.email,
                full_name=profile.full_name if profile else None,
                phone=profile.phone if profile else None,
                role=str(role_value.value if isinstance(role_value, UserRole) else role_value),
                is_active=user.is_active,
            )
            for user, profile, role_value in result.all()
        ],
        total=total,
        page=page,
        page_size=page_size,
        pages=-(-total // page_size),  # ceiling division
    )


@router.put("/users/{user_id}/role", response_model=PermissionSetResponse)
async def update_user_role(
    user_id: UUID,
    data: RoleUpdateRequest,
    request: Request,
    caller: CallerContext = Depends(PermissionRequired("settings", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Replace a user's role. Stored permission grants are left untouched."""
    new_role = UserRole(data.role)
    previous = await access.set_user_role(db, caller, user_id, new_role)
    await log_admin_action(
        db, caller.user, "UPDATE_ROLE", "user", str(user_id),
        {"from": previous.value, "to": new_role.value}, request,
    )
    grants = await access.get_permissions(db, user_id)
    return PermissionSetResponse(
        user_id=user_id,
        role=new_role.value,
        permissions=effective_permission_keys(new_role, frozenset(grants)),
    )


# ── Permissions ───────────────────────────────────────────────

@router.get("/users/{user_id}/permissions", response_model=PermissionSetResponse)
async def get_user_permissions(
    user_id: UUID,
    caller: CallerContext = Depends(PermissionRequired("settings", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Effective keys: everything for super admins, stored grants for admins, none otherwise."""
    role = await access.get_role(db, user_id)
    grants = await access.get_permissions(db, user_id)
    return PermissionSetResponse(
        user_id=user_id,
        role=role.value,
        permissions=effective_permission_keys(role, frozenset(grants)),
    )


@router.put("/users/{user_id}/permissions", response_model=PermissionSetResponse)
async def set_user_permissions(
    user_id: UUID,
    data: PermissionSetRequest,
    request: Request,
    caller: CallerContext = Depends(PermissionRequired("settings", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Replace an admin's grant set."""
    keys = await access.replace_permissions(db, caller, user_id, data.permissions)
    await log_admin_action(
        db, caller.user, "SET_PERMISSIONS", "user", str(user_id), {"permissions": keys}, request,
    )
    return PermissionSetResponse(user_id=user_id, role=UserRole.ADMIN.value, permissions=keys)


# ── Staff Roster ──────────────────────────────────────────────

@router.get("/staff", response_model=list[StaffMemberResponse])
async def list_staff(
    panchayath_id: Optional[UUID] = Query(None),
    caller: CallerContext = Depends(PermissionRequired("staff", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Staff members with the panchayaths they serve."""
    result = await db.execute(
        select(Profile)
        .join(RoleAssignment, RoleAssignment.user_id == Profile.user_id)
        .where(RoleAssignment.role == UserRole.STAFF)
        .order_by(Profile.full_name)
    )
    profiles = result.scalars().all()

    areas = defaultdict(list)
    area_rows = await db.execute(
        select(StaffPanchayathAssignment.staff_user_id, StaffPanchayathAssignment.panchayath_id)
    )
    for staff_user_id, area_id in area_rows.all():
        areas[staff_user_id].append(area_id)

    return [
        StaffMemberResponse(
            user_id=p.user_id,
            full_name=p.full_name,
            phone=p.phone,
            panchayath_ids=areas.get(p.user_id, []),
        )
        for p in profiles
        if panchayath_id is None or panchayath_id in areas.get(p.user_id, [])
    ]


# ── Dashboard ─────────────────────────────────────────────────

@router.get("/dashboard", response_model=AdminDashboardResponse)
async def get_dashboard(
    caller: CallerContext = Depends(PermissionRequired("dashboard", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Headline counts for the admin home screen."""
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    total_users = await db.scalar(select(func.count(User.id))) or 0
    non_customers = dict((await db.execute(
        select(RoleAssignment.role, func.count()).group_by(RoleAssignment.role)
    )).all())
    total_customers = total_users - sum(
        n for r, n in non_customers.items() if r != UserRole.CUSTOMER
    )

    by_status = {s.value: 0 for s in BookingStatus}
    for booking_status, count in (await db.execute(
        select(Booking.status, func.count()).group_by(Booking.status)
    )).all():
        by_status[booking_status.value] = count

    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    total_revenue = await db.scalar(
        select(func.sum(Booking.total_price)).where(Booking.status == BookingStatus.COMPLETED)
    )
    pending_earnings = await db.scalar(
        select(func.sum(StaffEarning.amount)).where(StaffEarning.status == EarningStatus.PENDING)
    )

    return AdminDashboardResponse(
        total_customers=total_customers,
        total_staff=non_customers.get(UserRole.STAFF, 0),
        total_bookings=sum(by_status.values()),
        bookings_today=bookings_today or 0,
        bookings_by_status=by_status,
        total_revenue=Decimal(str(total_revenue or 0)),
        pending_earnings=Decimal(str(pending_earnings or 0)),
    )


# ── Earnings Oversight ────────────────────────────────────────

@router.get("/earnings", response_model=PaginatedResponse)
async def list_earnings(
    status_filter: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    caller: CallerContext = Depends(PermissionRequired("bookings", "view")),
    db: AsyncSession = Depends(get_db),
):
    earning_status = None
    if status_filter:
        try:
            earning_status = EarningStatus(status_filter)
        except ValueError:
            raise ValidationError(f"Invalid status: {status_filter}")

    rows, total = await list_all_earnings(db, earning_status, page, page_size)
    return PaginatedResponse(
        items=[
            StaffEarningResponse.model_validate(e).model_copy(update={"booking_number": number})
            for e, number in rows
        ],
        total=total,
        page=page,
        page_size=page_size,
        pages=-(-total // page_size),
    )


# ── Audit Log ─────────────────────────────────────────────────

@router.get("/audit-logs", response_model=PaginatedResponse)
async def get_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action type e.g. ASSIGN_STAFF"),
    entity_type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    caller: CallerContext = Depends(PermissionRequired("settings", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log, newest first."""
    query = select(AdminAuditLog)
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(AdminAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaginatedResponse(
        items=[AdminAuditLogResponse.model_validate(log) for log in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        pages=-(-total // page_size),
    )
