from __future__ import annotations

from datetime import datetime

from .booking import STATUS_ACTIVE, STATUS_CANCELLED, ReservationRecord
from .errors import IllegalTransitionError, UnauthorizedError
from .permissions import Principal

# ACTIVE -> CANCELLED is the only transition; CANCELLED is terminal.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_ACTIVE: frozenset({STATUS_CANCELLED}),
    STATUS_CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def can_cancel(record: ReservationRecord, principal: Principal, admin_role: str) -> bool:
    return principal.principal_id == record.user_id or principal.is_admin(admin_role)


def cancel(
    record: ReservationRecord,
    principal: Principal,
    admin_role: str,
    now: datetime,
) -> ReservationRecord:
    if not can_transition(record.status, STATUS_CANCELLED):
        raise IllegalTransitionError(record.reservation_id, record.status)
    if not can_cancel(record, principal, admin_role):
        raise UnauthorizedError(record.reservation_id)

    return record.with_changes(
        status=STATUS_CANCELLED,
        cancelled_by=principal.principal_id,
        cancelled_at=now,
        updated_at=now,
    )
