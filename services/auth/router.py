"""
services/auth/router.py
Customer self-registration and caller identity.

POST /auth/register-customer keeps a fixed wire contract consumed by the
mobile app: failures are `{"error": "<message>"}` with 400/409/500, success is
`{"success": true, "user_id": "<uuid>"}`. Tokens are issued elsewhere.
"""

import logging
import re
import uuid

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import flush, get_db
from shared.middleware.auth import CallerContext, get_caller
from shared.models.models import Panchayath, Profile, RoleAssignment, User, UserRole
from shared.schemas.schemas import MeResponse, ProfileResponse
from shared.utils.errors import ConflictError, ValidationError
from shared.utils.permissions import effective_permission_keys
from shared.utils.security import customer_auto_password, customer_login_email, hash_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

REQUIRED_FIELDS = ("name", "mobile", "panchayath_id", "ward_number")
DUPLICATE_MOBILE = "An account with this mobile number already exists"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _normalize_mobile(raw) -> str:
    return re.sub(r"\D", "", str(raw))


async def _validate_area(db: AsyncSession, panchayath_id, ward_number) -> tuple[uuid.UUID, int]:
    try:
        area_id = uuid.UUID(str(panchayath_id))
        ward = int(ward_number)
    except (TypeError, ValueError):
        raise ValidationError("Invalid panchayath or ward number")

    panchayath = await db.get(Panchayath, area_id)
    if not panchayath or not panchayath.is_active:
        raise ValidationError("Selected panchayath does not exist")
    if not 1 <= ward <= panchayath.ward_count:
        raise ValidationError(f"Ward number must be between 1 and {panchayath.ward_count}")
    return area_id, ward


@router.post("/register-customer")
async def register_customer(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Create a mobile-only customer account: user identity, profile, and the
    customer role, all in one transaction. The login email and password are
    derived from the mobile number so the app can sign in without a form.
    """
    try:
        payload = await request.json()
    except ValueError:
        return _error(status.HTTP_400_BAD_REQUEST, "All fields are required")
    if not isinstance(payload, dict) or any(
        payload.get(f) in (None, "") for f in REQUIRED_FIELDS
    ):
        return _error(status.HTTP_400_BAD_REQUEST, "All fields are required")

    mobile = _normalize_mobile(payload["mobile"])
    if len(mobile) < 10:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid mobile number")

    name = str(payload["name"]).strip()
    email = customer_login_email(mobile)

    try:
        panchayath_id, ward_number = await _validate_area(
            db, payload["panchayath_id"], payload["ward_number"]
        )

        taken = await db.scalar(
            select(or_(
                exists().where(Profile.phone == mobile),
                exists().where(User.email == email),
            ))
        )
        if taken:
            raise ConflictError(DUPLICATE_MOBILE)

        user = User(email=email, password_hash=hash_password(customer_auto_password(mobile)))
        db.add(user)
        await flush(db, conflict_message=DUPLICATE_MOBILE)

        db.add(Profile(
            user_id=user.id,
            full_name=name,
            phone=mobile,
            panchayath_id=panchayath_id,
            ward_number=ward_number,
        ))
        db.add(RoleAssignment(user_id=user.id, role=UserRole.CUSTOMER))
        await flush(db, conflict_message=DUPLICATE_MOBILE)
        await db.commit()

    except ValidationError as exc:
        await db.rollback()
        return _error(status.HTTP_400_BAD_REQUEST, exc.message)
    except ConflictError as exc:
        await db.rollback()
        logger.warning(f"Registration refused for mobile ending {mobile[-4:]}: {exc.message}")
        return _error(status.HTTP_409_CONFLICT, exc.message)
    except Exception as exc:
        await db.rollback()
        logger.exception("Customer registration failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Registration failed")

    logger.info(f"Registered customer {user.id}")
    return {"success": True, "user_id": str(user.id)}


@router.get("/me", response_model=MeResponse)
async def get_me(
    caller: CallerContext = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Caller's profile, resolved role and effective permission keys."""
    profile = await db.scalar(select(Profile).where(Profile.user_id == caller.user_id))
    return MeResponse(
        user_id=caller.user_id,
        email=caller.user.email,
        role=caller.role.value,
        profile=ProfileResponse.model_validate(profile) if profile else None,
        permissions=effective_permission_keys(caller.role, caller.permissions),
    )
