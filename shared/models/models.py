"""
shared/models/models.py
All SQLAlchemy ORM models for the HandRest home-services platform.
UUID primary keys throughout; enums are stored by their lowercase value.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssignmentStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class EarningStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"


def _value_enum(enum_cls: type[PyEnum]) -> Enum:
    """Store enum values ("in_progress") rather than member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
        validate_strings=True,
    )


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Identity ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Auth identity. Role and profile live in their own tables."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = _uuid_pk()
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    profile: Mapped[Optional["Profile"]] = relationship(back_populates="user", uselist=False)
    role_assignment: Mapped[Optional["RoleAssignment"]] = relationship(
        back_populates="user", uselist=False
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Profile(TimestampMixin, Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True)
    panchayath_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("panchayaths.id"), nullable=True
    )
    ward_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    user: Mapped["User"] = relationship(back_populates="profile")

    __table_args__ = (Index("ix_profiles_phone", "phone"),)


class RoleAssignment(TimestampMixin, Base):
    """Exactly one role per user (`user_roles`)."""
    __tablename__ = "user_roles"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    role: Mapped[UserRole] = mapped_column(
        _value_enum(UserRole), nullable=False, default=UserRole.CUSTOMER
    )

    user: Mapped["User"] = relationship(back_populates="role_assignment")

    __table_args__ = (Index("ix_user_roles_role", "role"),)


class AdminPermission(Base):
    """Granular `<tab>.<action>` grant. Only consulted for role = admin."""
    __tablename__ = "admin_permissions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    permission_key: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "permission_key", name="uq_admin_permission"),
        Index("ix_admin_permissions_user_id", "user_id"),
    )


# ── Catalog (read-only reference data) ────────────────────────

class Panchayath(TimestampMixin, Base):
    """Local administrative area; staff eligibility is scoped by it."""
    __tablename__ = "panchayaths"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ward_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (CheckConstraint("ward_count >= 1", name="ck_panchayath_ward_count"),)


class StaffPanchayathAssignment(Base):
    """Which panchayath (and wards) a staff member serves."""
    __tablename__ = "staff_panchayath_assignments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    staff_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    panchayath_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("panchayaths.id", ondelete="CASCADE"), nullable=False
    )
    ward_numbers: Mapped[List[int]] = mapped_column(JSON, default=list)

    panchayath: Mapped["Panchayath"] = relationship()

    __table_args__ = (
        UniqueConstraint("staff_user_id", "panchayath_id", name="uq_staff_panchayath"),
        Index("ix_staff_panchayath_panchayath_id", "panchayath_id"),
    )


class ServiceCategory(TimestampMixin, Base):
    __tablename__ = "service_categories"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Package(TimestampMixin, Base):
    __tablename__ = "packages"

    id: Mapped[uuid.UUID] = _uuid_pk()
    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_categories.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    features: Mapped[List[str]] = mapped_column(JSON, default=list)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    category: Mapped["ServiceCategory"] = relationship(lazy="joined")


class AddonService(TimestampMixin, Base):
    """Third-party add-on service attached to a booking."""
    __tablename__ = "addon_services"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    icon: Mapped[str] = mapped_column(String(50), default="wrench")
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class CustomFeature(TimestampMixin, Base):
    __tablename__ = "custom_features"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    icon: Mapped[str] = mapped_column(String(50), default="sparkles")
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# ── Bookings ──────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    Core booking entity.
    Status transitions: pending → confirmed → assigned → in_progress →
    completed, or cancelled from any non-terminal state.
    Only services/booking/state_machine.py may change `status`.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = _uuid_pk()
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    customer_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("packages.id"), nullable=False
    )

    # Customer snapshot, copied at creation
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)

    # Schedule
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(8), nullable=False)  # "09:30"
    report_before: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # advisory deadline shown to staff

    # Assignment scope
    panchayath_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("panchayaths.id"), nullable=True
    )
    required_staff_count: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        _value_enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Pricing (immutable after creation)
    package_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    addon_ids: Mapped[List[str]] = mapped_column(JSON, default=list)
    custom_feature_ids: Mapped[List[str]] = mapped_column(JSON, default=list)
    addons_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    package: Mapped["Package"] = relationship()
    staff_assignments: Mapped[List["BookingStaffAssignment"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan"
    )
    audit_logs: Mapped[List["BookingAuditLog"]] = relationship(back_populates="booking")

    __table_args__ = (
        CheckConstraint(
            "required_staff_count >= 1 AND required_staff_count <= 10",
            name="ck_booking_required_staff_count",
        ),
        Index("ix_bookings_customer_user_id", "customer_user_id"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_panchayath_status", "panchayath_id", "status"),
        Index("ix_bookings_scheduled_date", "scheduled_date"),
    )


class BookingStaffAssignment(Base):
    """One row per (booking, staff). Re-assignment replaces, never duplicates."""
    __tablename__ = "booking_staff_assignments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    staff_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    status: Mapped[AssignmentStatus] = mapped_column(
        _value_enum(AssignmentStatus), nullable=False, default=AssignmentStatus.PENDING
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    booking: Mapped["Booking"] = relationship(back_populates="staff_assignments")

    __table_args__ = (
        UniqueConstraint("booking_id", "staff_user_id", name="uq_booking_staff"),
        Index("ix_booking_staff_staff_user_id", "staff_user_id"),
    )


class StaffEarning(TimestampMixin, Base):
    """Per-staff payout record created when an admin finalizes a booking."""
    __tablename__ = "staff_earnings"

    id: Mapped[uuid.UUID] = _uuid_pk()
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    staff_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    base_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    bonus_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[EarningStatus] = mapped_column(
        _value_enum(EarningStatus), nullable=False, default=EarningStatus.PENDING
    )
    finalized_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("booking_id", "staff_user_id", name="uq_staff_earning_booking_staff"),
        CheckConstraint("amount > 0", name="ck_staff_earning_amount_positive"),
        Index("ix_staff_earnings_staff_user_id", "staff_user_id"),
    )


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    booking: Mapped["Booking"] = relationship(back_populates="audit_logs")


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
