"""
services/booking/state_machine.py
Explicit finite-state machine for the booking lifecycle.

    pending → confirmed → assigned → in_progress → completed
        └──────────┴───────────┴───────────┴──→ cancelled

`transition()` is the only code path that writes Booking.status. It rejects
every edge missing from TRANSITIONS with ConflictError, stamps the matching
timestamp, and appends a BookingAuditLog row.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingAuditLog, BookingStatus
from shared.utils.errors import ConflictError

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.ASSIGNED, BookingStatus.CANCELLED}),
    BookingStatus.ASSIGNED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES: FrozenSet[BookingStatus] = frozenset(
    s for s, targets in TRANSITIONS.items() if not targets
)

_TIMESTAMP_FIELDS = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.ASSIGNED: "assigned_at",
    BookingStatus.IN_PROGRESS: "started_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELLED: "cancelled_at",
}


def can_transition(source: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS[source]


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATES


def ensure_status(booking: Booking, *expected: BookingStatus, action: str) -> None:
    """Raise ConflictError unless the booking sits in one of `expected`."""
    if booking.status not in expected:
        wanted = " or ".join(f"'{s.value}'" for s in expected)
        raise ConflictError(
            f"Cannot {action} booking {booking.booking_number}: "
            f"status is '{booking.status.value}', expected {wanted}"
        )


def ensure_transition(booking: Booking, target: BookingStatus) -> None:
    if not can_transition(booking.status, target):
        raise ConflictError(
            f"Booking {booking.booking_number} cannot move from "
            f"'{booking.status.value}' to '{target.value}'"
        )


async def transition(
    db: AsyncSession,
    booking: Booking,
    target: BookingStatus,
    changed_by_id: Optional[UUID],
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> BookingStatus:
    """Apply one edge of the lifecycle. Returns the previous status."""
    ensure_transition(booking, target)

    previous = booking.status
    booking.status = target
    setattr(booking, _TIMESTAMP_FIELDS[target], datetime.now(timezone.utc))

    db.add(BookingAuditLog(
        booking_id=booking.id,
        from_status=previous.value,
        to_status=target.value,
        changed_by_id=changed_by_id,
        reason=reason,
        audit_metadata=metadata,
    ))
    logger.info(
        f"Booking {booking.booking_number}: {previous.value} -> {target.value}"
        + (f" ({reason})" if reason else "")
    )
    return previous
