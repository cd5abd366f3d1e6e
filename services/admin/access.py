"""
services/admin/access.py
Role changes and admin permission grants.

A user holds exactly one role. Changing it never touches stored grants:
grants only count while the role is `admin`, so leftovers from a previous
admin stint are inert.
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import flush
from shared.middleware.auth import CallerContext
from shared.models.models import AdminPermission, RoleAssignment, User, UserRole
from shared.utils.errors import AuthorizationError, NotFoundError, PreconditionError
from shared.utils.permissions import ensure_permission, validate_permission_keys

logger = logging.getLogger(__name__)


async def _get_user(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def get_role(db: AsyncSession, user_id: UUID) -> UserRole:
    role = await db.scalar(select(RoleAssignment.role).where(RoleAssignment.user_id == user_id))
    return role or UserRole.CUSTOMER


async def set_user_role(
    db: AsyncSession, caller: CallerContext, user_id: UUID, role: UserRole
) -> UserRole:
    """Replace the user's single role. Returns the previous one."""
    ensure_permission(caller.role, caller.permissions, "settings", "edit")
    await _get_user(db, user_id)

    assignment = await db.scalar(
        select(RoleAssignment).where(RoleAssignment.user_id == user_id).with_for_update()
    )
    previous = assignment.role if assignment else UserRole.CUSTOMER

    if UserRole.SUPER_ADMIN in (previous, role) and caller.role != UserRole.SUPER_ADMIN:
        raise AuthorizationError("Only a super admin can grant or revoke super admin")

    if assignment:
        assignment.role = role
    else:
        db.add(RoleAssignment(user_id=user_id, role=role))
    await flush(db, conflict_message="Role was changed concurrently, please retry")

    logger.info(f"Role of {user_id} changed {previous.value} -> {role.value} by {caller.user_id}")
    return previous


async def get_permissions(db: AsyncSession, user_id: UUID) -> List[str]:
    result = await db.execute(
        select(AdminPermission.permission_key)
        .where(AdminPermission.user_id == user_id)
        .order_by(AdminPermission.permission_key)
    )
    return list(result.scalars().all())


async def replace_permissions(
    db: AsyncSession, caller: CallerContext, user_id: UUID, keys: List[str]
) -> List[str]:
    """Full replace of an admin's grant set: delete all, insert the new set."""
    ensure_permission(caller.role, caller.permissions, "settings", "edit")
    keys = validate_permission_keys(keys)
    await _get_user(db, user_id)

    if await get_role(db, user_id) != UserRole.ADMIN:
        raise PreconditionError("Permissions can only be granted to users with the admin role")

    await db.execute(delete(AdminPermission).where(AdminPermission.user_id == user_id))
    db.add_all(AdminPermission(user_id=user_id, permission_key=key) for key in keys)
    await flush(db, conflict_message="Permissions were changed concurrently, please retry")

    logger.info(f"Permissions of {user_id} replaced with {len(keys)} keys by {caller.user_id}")
    return keys
