"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT identifies the caller; role and permission grants are resolved from the
database on every request and live only as long as that request.
"""

import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.models.models import AdminPermission, RoleAssignment, User, UserRole
from shared.utils.errors import AuthorizationError
from shared.utils.permissions import has_permission
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.email: Optional[str] = payload.get("email")


@dataclass(frozen=True)
class CallerContext:
    """
    Resolved identity for one request.
    `permissions` is None until loaded; only admins ever load it.
    """
    user: User
    role: UserRole
    permissions: Optional[FrozenSet[str]] = field(default=None)

    @property
    def user_id(self):
        return self.user.id

    def has_permission(self, tab: str, action: str = "view") -> bool:
        return has_permission(self.role, self.permissions, tab, action)


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TokenData:
    """Extract and validate JWT from Authorization header."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenData(payload)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    try:
        result = await db.execute(select(User).where(User.id == uuid.UUID(token_data.user_id)))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


async def resolve_caller(db: AsyncSession, user: User) -> CallerContext:
    """Look up the caller's single role and, for admins, their grant set."""
    role = await db.scalar(
        select(RoleAssignment.role).where(RoleAssignment.user_id == user.id)
    )
    if role is None:
        role = UserRole.CUSTOMER

    permissions = None
    if role == UserRole.ADMIN:
        rows = await db.scalars(
            select(AdminPermission.permission_key).where(AdminPermission.user_id == user.id)
        )
        permissions = frozenset(rows.all())

    return CallerContext(user=user, role=role, permissions=permissions)


async def get_caller(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CallerContext:
    return await resolve_caller(db, current_user)


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        caller: CallerContext = Depends(get_caller),
    ) -> CallerContext:
        if caller.role not in self.roles:
            raise AuthorizationError(
                f"Required role: {[r.value for r in self.roles]}"
            )
        return caller


class PermissionRequired:
    """Dependency factory gating an admin action on `<tab>.<action>`."""

    def __init__(self, tab: str, action: str = "view"):
        self.tab = tab
        self.action = action

    async def __call__(
        self,
        caller: CallerContext = Depends(get_caller),
    ) -> CallerContext:
        if not caller.has_permission(self.tab, self.action):
            raise AuthorizationError(f"Missing permission '{self.tab}.{self.action}'")
        return caller


require_staff = RoleRequired(UserRole.STAFF)
