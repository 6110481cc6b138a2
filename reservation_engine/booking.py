from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable

from .errors import InvalidIntervalError

STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"
RESERVATION_STATUSES = (STATUS_ACTIVE, STATUS_CANCELLED)


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        validate_interval(self.start, self.end)


def to_local_naive(value: datetime) -> datetime:
    """Convert an offset-aware datetime to naive local time; naive values pass through.

    Stored reservations are naive local times, so every timestamp entering the
    engine goes through here before it is compared with them.
    """
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=None)
    return value.astimezone().replace(tzinfo=None)


def validate_interval(start: datetime, end: datetime) -> None:
    if start >= end:
        raise InvalidIntervalError(start, end)


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals overlap by even one instant.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    """
    validate_interval(new_start, new_end)
    validate_interval(exist_start, exist_end)

    return new_start < exist_end and exist_start < new_end


def can_reserve(new_start: datetime, new_end: datetime, existing: Iterable[TimeRange]) -> bool:
    """Return True if the requested interval does not overlap any existing range."""
    validate_interval(new_start, new_end)

    for reserved in existing:
        if has_time_overlap(new_start, new_end, reserved.start, reserved.end):
            return False
    return True


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    resource_id: str
    user_id: str
    start: datetime
    end: datetime
    created_at: datetime
    updated_at: datetime
    status: str = STATUS_ACTIVE
    notes: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None

    def __post_init__(self) -> None:
        validate_interval(self.start, self.end)
        if self.status not in RESERVATION_STATUSES:
            raise ValueError(f"Unknown reservation status: {self.status}")
        cancelled = self.status == STATUS_CANCELLED
        if cancelled != (self.cancelled_by is not None) or cancelled != (self.cancelled_at is not None):
            raise ValueError("cancelled_by/cancelled_at must be set exactly when the reservation is cancelled.")

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def with_changes(self, **changes: Any) -> "ReservationRecord":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reservation_id": self.reservation_id,
            "resource_id": self.resource_id,
            "user_id": self.user_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.notes is not None:
            payload["notes"] = self.notes
        if self.cancelled_by is not None:
            payload["cancelled_by"] = self.cancelled_by
        if self.cancelled_at is not None:
            payload["cancelled_at"] = self.cancelled_at.isoformat()
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        cancelled_at = data.get("cancelled_at")
        return ReservationRecord(
            reservation_id=str(data["reservation_id"]),
            resource_id=str(data["resource_id"]),
            user_id=str(data["user_id"]),
            start=datetime.fromisoformat(str(data["start"])),
            end=datetime.fromisoformat(str(data["end"])),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
            status=str(data.get("status", STATUS_ACTIVE)),
            notes=(str(data.get("notes")) if data.get("notes") is not None else None),
            cancelled_by=(str(data.get("cancelled_by")) if data.get("cancelled_by") is not None else None),
            cancelled_at=(datetime.fromisoformat(str(cancelled_at)) if cancelled_at is not None else None),
        )


@dataclass(frozen=True)
class ReservationRequest:
    resource_id: str
    start: datetime
    end: datetime
    notes: str | None = None
