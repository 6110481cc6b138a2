from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable


def _iso(value: datetime) -> str:
    return value.isoformat()


class ReservationError(Exception):
    """Base class for every error the coordinator surfaces to callers.

    ``kind`` is a stable identifier callers can branch on; ``context`` holds the
    ids and intervals needed to build an actionable message.
    """

    kind = "reservation_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, "context": dict(self.context)}


class InvalidIntervalError(ReservationError, ValueError):
    kind = "invalid_interval"

    def __init__(self, start: datetime, end: datetime) -> None:
        super().__init__(
            f"End time must be after start time (start={_iso(start)}, end={_iso(end)}).",
            start=_iso(start),
            end=_iso(end),
        )


class ResourceNotFoundError(ReservationError):
    kind = "resource_not_found"

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"Resource not found: {resource_id}", resource_id=resource_id)


class ResourceInactiveError(ReservationError):
    kind = "resource_inactive"

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"Resource is not active: {resource_id}", resource_id=resource_id)


class ReservationNotFoundError(ReservationError):
    kind = "reservation_not_found"

    def __init__(self, reservation_id: str) -> None:
        super().__init__(f"Reservation not found: {reservation_id}", reservation_id=reservation_id)


class PermissionDeniedError(ReservationError):
    kind = "permission_denied"

    def __init__(self, resource_type_id: str) -> None:
        super().__init__(
            f"You do not have permission to access resources of type {resource_type_id}.",
            resource_type_id=resource_type_id,
        )


class ReservationConflictError(ReservationError):
    kind = "conflict"

    def __init__(self, resource_id: str, start: datetime, end: datetime, conflicting_ids: Iterable[str] = ()) -> None:
        super().__init__(
            "Time slot overlaps with an existing active reservation for this resource.",
            resource_id=resource_id,
            start=_iso(start),
            end=_iso(end),
            conflicting_ids=list(conflicting_ids),
        )


class IllegalTransitionError(ReservationError):
    kind = "illegal_transition"

    def __init__(self, reservation_id: str, status: str) -> None:
        super().__init__(
            f"Only active reservations can be cancelled (reservation {reservation_id} is {status}).",
            reservation_id=reservation_id,
            status=status,
        )


class UnauthorizedError(ReservationError):
    kind = "unauthorized"

    def __init__(self, reservation_id: str) -> None:
        super().__init__(
            "Only the reservation creator or an admin can cancel this reservation.",
            reservation_id=reservation_id,
        )


class ReservationStorageError(RuntimeError):
    pass
