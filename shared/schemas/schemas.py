"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Identity ──────────────────────────────────────────────────

class ProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    full_name: str
    email: Optional[str]
    phone: Optional[str]
    panchayath_id: Optional[uuid.UUID]
    ward_number: Optional[int]


class MeResponse(BaseSchema):
    user_id: uuid.UUID
    email: str
    role: str
    profile: Optional[ProfileResponse] = None
    permissions: List[str] = []


# ── Catalog ───────────────────────────────────────────────────

class ServiceCategoryResponse(BaseSchema):
    id: uuid.UUID
    name: str
    slug: str


class PackageResponse(BaseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str]
    price: Decimal
    features: List[str]
    category: Optional[ServiceCategoryResponse] = None


class CatalogItemResponse(BaseSchema):
    """Add-on service or custom feature."""
    id: uuid.UUID
    name: str
    description: Optional[str]
    price: Decimal
    icon: str


class PanchayathResponse(BaseSchema):
    id: uuid.UUID
    name: str
    district: Optional[str]
    ward_count: int


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    package_id: uuid.UUID
    addon_ids: List[uuid.UUID] = []
    custom_feature_ids: List[uuid.UUID] = []
    scheduled_date: date
    scheduled_time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    customer_name: str = Field(..., min_length=2, max_length=255)
    customer_phone: str = Field(..., pattern=r"^\+?\d{10,15}$")
    customer_email: Optional[EmailStr] = None
    address_line1: str = Field(..., max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., max_length=100)
    special_instructions: Optional[str] = Field(None, max_length=1000)

    @field_validator("scheduled_date")
    @classmethod
    def validate_scheduled_date(cls, v: date) -> date:
        if v < date.today():
            raise ValueError("Scheduled date cannot be in the past")
        return v


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    customer_user_id: uuid.UUID
    package_id: uuid.UUID
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    address_line1: str
    address_line2: Optional[str]
    city: str
    scheduled_date: date
    scheduled_time: str
    report_before: Optional[datetime]
    panchayath_id: Optional[uuid.UUID]
    required_staff_count: int
    status: str
    package_price: Decimal
    addon_ids: List[str]
    custom_feature_ids: List[str]
    addons_price: Decimal
    total_price: Decimal
    special_instructions: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[str]
    confirmed_at: Optional[datetime]
    assigned_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    finalized_at: Optional[datetime]
    created_at: datetime
    # Joined
    package_name: Optional[str] = None
    accepted_staff_count: Optional[int] = None


class BookingConfirmRequest(BaseSchema):
    # Presence is checked by the confirm operation so the error names what is missing
    panchayath_id: Optional[uuid.UUID] = None
    report_before: Optional[datetime] = None
    required_staff_count: Optional[int] = None


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class AssignmentResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    staff_user_id: uuid.UUID
    status: str
    assigned_at: datetime
    responded_at: Optional[datetime]
    staff_name: Optional[str] = None


class StaffAssignRequest(BaseSchema):
    staff_user_ids: List[uuid.UUID]


class AcceptJobResponse(BaseSchema):
    assignment: AssignmentResponse
    booking_status: str
    quorum_reached: bool


# ── Staff ─────────────────────────────────────────────────────

class JobSummary(BaseSchema):
    booking_id: uuid.UUID
    booking_number: str
    package_name: str
    scheduled_date: date
    scheduled_time: str
    report_before: Optional[datetime]
    address_line1: str
    city: str
    booking_status: str
    required_staff_count: int


class MyJobResponse(JobSummary):
    assignment_id: uuid.UUID
    assignment_status: str
    responded_at: Optional[datetime]


class StaffMemberResponse(BaseSchema):
    user_id: uuid.UUID
    full_name: str
    phone: Optional[str]
    panchayath_ids: List[uuid.UUID] = []


# ── Earnings ──────────────────────────────────────────────────

class FinalizeRequest(BaseSchema):
    earning_per_staff: Optional[Decimal] = None
    bonus_per_staff: Decimal = Decimal("0")


class StaffEarningResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    staff_user_id: uuid.UUID
    base_amount: Decimal
    bonus_amount: Decimal
    amount: Decimal
    status: str
    created_at: datetime
    booking_number: Optional[str] = None


class FinalizeResponse(BaseSchema):
    booking_id: uuid.UUID
    booking_number: str
    staff_count: int
    amount_per_staff: Decimal
    total_amount: Decimal
    earnings: List[StaffEarningResponse]


class EarningsSummaryResponse(BaseSchema):
    items: List[StaffEarningResponse]
    total_amount: Decimal


# ── Admin ─────────────────────────────────────────────────────

class UserWithRoleResponse(BaseSchema):
    user_id: uuid.UUID
    email: str
    full_name: Optional[str]
    phone: Optional[str]
    role: str
    is_active: bool


class RoleUpdateRequest(BaseSchema):
    role: str = Field(..., pattern="^(customer|staff|admin|super_admin)$")


class PermissionSetRequest(BaseSchema):
    permissions: List[str]


class PermissionSetResponse(BaseSchema):
    user_id: uuid.UUID
    role: str
    permissions: List[str]


class AdminDashboardResponse(BaseSchema):
    total_customers: int
    total_staff: int
    total_bookings: int
    bookings_today: int
    bookings_by_status: Dict[str, int]
    total_revenue: Decimal
    pending_earnings: Decimal


class AdminAuditLogResponse(BaseSchema):
    id: uuid.UUID
    admin_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: Optional[str]
    payload: Optional[Dict[str, Any]]
    created_at: datetime
