"""
tests/test_admin.py
Admin surface: role changes, permission grants, roster, dashboard, audit log.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    AdminAuditLog,
    AdminPermission,
    AssignmentStatus,
    Booking,
    BookingStatus,
    Package,
    Panchayath,
    RoleAssignment,
    User,
    UserRole,
)
from tests.conftest import add_assignment, auth_headers, make_booking, make_user


@pytest_asyncio.fixture
async def settings_admin(db: AsyncSession) -> User:
    return await make_user(
        db, UserRole.ADMIN, "Settings Desk", permissions=["settings.view", "settings.edit"]
    )


# ── Permission grants ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_replace_permissions_is_full_replace(
    client: AsyncClient, db: AsyncSession, super_admin: User, booking_admin: User
):
    response = await client.put(
        f"/admin/users/{booking_admin.id}/permissions",
        headers=auth_headers(super_admin),
        json={"permissions": ["staff.view", "dashboard.view", "staff.view"]},
    )
    assert response.status_code == 200
    assert response.json()["permissions"] == ["staff.view", "dashboard.view"]

    stored = (await db.scalars(
        select(AdminPermission.permission_key).where(AdminPermission.user_id == booking_admin.id)
    )).all()
    assert sorted(stored) == ["dashboard.view", "staff.view"]

    # Grants are live on the next request
    response = await client.get("/bookings/admin/all", headers=auth_headers(booking_admin))
    assert response.status_code == 403
    response = await client.get("/admin/dashboard", headers=auth_headers(booking_admin))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_replace_permissions_rejects_unknown_keys(
    client: AsyncClient, super_admin: User, bare_admin: User
):
    response = await client.put(
        f"/admin/users/{bare_admin.id}/permissions",
        headers=auth_headers(super_admin),
        json={"permissions": ["bookings.view", "payments.refund"]},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_permissions_only_for_admin_role(
    client: AsyncClient, super_admin: User, staff_x: User
):
    response = await client.put(
        f"/admin/users/{staff_x.id}/permissions",
        headers=auth_headers(super_admin),
        json={"permissions": ["bookings.view"]},
    )
    assert response.status_code == 422
    assert response.json()["code"] == "PRECONDITION_FAILED"


@pytest.mark.asyncio
async def test_settings_edit_required_to_grant(
    client: AsyncClient, booking_admin: User, bare_admin: User
):
    response = await client.put(
        f"/admin/users/{bare_admin.id}/permissions",
        headers=auth_headers(booking_admin),
        json={"permissions": ["bookings.view"]},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_get_effective_permissions(
    client: AsyncClient, settings_admin: User, booking_admin: User, super_admin: User, staff_x: User
):
    headers = auth_headers(settings_admin)
    data = (await client.get(f"/admin/users/{booking_admin.id}/permissions", headers=headers)).json()
    assert data["role"] == "admin"
    assert sorted(data["permissions"]) == ["bookings.edit", "bookings.view"]

    data = (await client.get(f"/admin/users/{super_admin.id}/permissions", headers=headers)).json()
    assert len(data["permissions"]) == 32

    data = (await client.get(f"/admin/users/{staff_x.id}/permissions", headers=headers)).json()
    assert data["permissions"] == []


# ── Roles ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_role_change_keeps_stale_grants_inert(
    client: AsyncClient, db: AsyncSession, super_admin: User, booking_admin: User, confirmed_booking: Booking
):
    response = await client.put(
        f"/admin/users/{booking_admin.id}/role",
        headers=auth_headers(super_admin),
        json={"role": "staff"},
    )
    assert response.status_code == 200
    assert response.json()["permissions"] == []

    stored = (await db.scalars(
        select(AdminPermission).where(AdminPermission.user_id == booking_admin.id)
    )).all()
    assert len(stored) == 2

    # Former admin lost access even though grant rows remain
    response = await client.get(f"/bookings/{confirmed_booking.id}", headers=auth_headers(booking_admin))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_role_change_creates_missing_role_row(
    client: AsyncClient, db: AsyncSession, settings_admin: User
):
    user = await make_user(db, None, "No Role Yet")
    response = await client.put(
        f"/admin/users/{user.id}/role", headers=auth_headers(settings_admin), json={"role": "staff"}
    )
    assert response.status_code == 200
    role = await db.scalar(select(RoleAssignment.role).where(RoleAssignment.user_id == user.id))
    assert role == UserRole.STAFF


@pytest.mark.asyncio
async def test_only_super_admin_grants_super_admin(
    client: AsyncClient, settings_admin: User, super_admin: User, customer: User
):
    response = await client.put(
        f"/admin/users/{customer.id}/role",
        headers=auth_headers(settings_admin),
        json={"role": "super_admin"},
    )
    assert response.status_code == 403

    response = await client.put(
        f"/admin/users/{customer.id}/role",
        headers=auth_headers(super_admin),
        json={"role": "super_admin"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_role_change_unknown_user(client: AsyncClient, super_admin: User):
    response = await client.put(
        "/admin/users/00000000-0000-0000-0000-000000000000/role",
        headers=auth_headers(super_admin),
        json={"role": "staff"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_users_filters_by_role(
    client: AsyncClient, settings_admin: User, customer: User, staff_x: User
):
    response = await client.get(
        "/admin/users", params={"role": "staff"}, headers=auth_headers(settings_admin)
    )
    assert response.status_code == 200
    items = response.json()["items"]
    assert [u["user_id"] for u in items] == [str(staff_x.id)]
    assert items[0]["role"] == "staff"


# ── Roster, dashboard, audit ──────────────────────────────────

@pytest.mark.asyncio
async def test_staff_roster(
    client: AsyncClient,
    super_admin: User,
    staff_x: User,
    outside_staff: User,
    panchayath: Panchayath,
    booking_admin: User,
):
    response = await client.get("/admin/staff", headers=auth_headers(super_admin))
    assert response.status_code == 200
    assert {s["user_id"] for s in response.json()} == {str(staff_x.id), str(outside_staff.id)}

    response = await client.get(
        "/admin/staff", params={"panchayath_id": str(panchayath.id)}, headers=auth_headers(super_admin)
    )
    assert [s["user_id"] for s in response.json()] == [str(staff_x.id)]

    response = await client.get("/admin/staff", headers=auth_headers(booking_admin))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_dashboard_counts(
    client: AsyncClient,
    db: AsyncSession,
    super_admin: User,
    customer: User,
    staff_x: User,
    package: Package,
    pending_booking: Booking,
    panchayath: Panchayath,
):
    await make_booking(db, customer, package, BookingStatus.COMPLETED, panchayath)
    response = await client.get("/admin/dashboard", headers=auth_headers(super_admin))
    assert response.status_code == 200
    data = response.json()
    assert data["total_staff"] == 1
    assert data["total_customers"] == 1
    assert data["total_bookings"] == 2
    assert data["bookings_by_status"]["pending"] == 1
    assert data["bookings_by_status"]["completed"] == 1
    assert float(data["total_revenue"]) == 2499.0


@pytest.mark.asyncio
async def test_admin_actions_are_audited(
    client: AsyncClient,
    db: AsyncSession,
    super_admin: User,
    confirmed_booking: Booking,
    staff_x: User,
):
    response = await client.post(
        f"/bookings/{confirmed_booking.id}/assign-staff",
        headers=auth_headers(super_admin),
        json={"staff_user_ids": [str(staff_x.id)]},
    )
    assert response.status_code == 200

    log = await db.scalar(select(AdminAuditLog).where(AdminAuditLog.action == "ASSIGN_STAFF"))
    assert log.admin_id == super_admin.id
    assert log.entity_id == str(confirmed_booking.id)

    response = await client.get(
        "/admin/audit-logs", params={"action": "assign_staff"}, headers=auth_headers(super_admin)
    )
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_admin_earnings_listing(
    client: AsyncClient,
    db: AsyncSession,
    super_admin: User,
    customer: User,
    package: Package,
    panchayath: Panchayath,
    staff_x: User,
):
    booking = await make_booking(db, customer, package, BookingStatus.COMPLETED, panchayath)
    await add_assignment(db, booking, staff_x, AssignmentStatus.ACCEPTED)
    await client.post(
        f"/bookings/{booking.id}/finalize",
        headers=auth_headers(super_admin),
        json={"earning_per_staff": "400"},
    )

    response = await client.get(
        "/admin/earnings", params={"status_filter": "pending"}, headers=auth_headers(super_admin)
    )
    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["staff_user_id"] == str(staff_x.id)
