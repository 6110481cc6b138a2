from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from .booking import ReservationRecord, validate_interval


@dataclass(frozen=True)
class AvailabilitySlot:
    start: datetime
    end: datetime
    available: bool

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "available": self.available,
        }


@dataclass(frozen=True)
class AvailabilitySummary:
    booked_minutes: int
    free_minutes: int
    reservation_count: int

    @property
    def occupancy_rate(self) -> float:
        total = self.booked_minutes + self.free_minutes
        return (self.booked_minutes / total) if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "booked_minutes": self.booked_minutes,
            "free_minutes": self.free_minutes,
            "reservation_count": self.reservation_count,
            "occupancy_rate": self.occupancy_rate,
        }


def overlaps_window(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    return start < window_end and end > window_start


def compute_availability(
    window_start: datetime,
    window_end: datetime,
    reservations: Iterable[ReservationRecord],
) -> list[AvailabilitySlot]:
    """Split ``[window_start, window_end)`` into free and booked slots.

    ``reservations`` are the ACTIVE reservations of one resource. They never
    overlap each other, so a single left-to-right sweep with a cursor is enough:
    every gap before a reservation becomes a free slot, the reservation clipped to
    the window becomes a booked slot, and whatever is left after the last one is
    free. The returned slots are contiguous and cover the window exactly.
    """
    validate_interval(window_start, window_end)

    ordered = sorted(
        (
            record
            for record in reservations
            if record.is_active and overlaps_window(record.start, record.end, window_start, window_end)
        ),
        key=lambda record: record.start,
    )

    slots: list[AvailabilitySlot] = []
    cursor = window_start
    for record in ordered:
        clipped_start = max(record.start, window_start)
        clipped_end = min(record.end, window_end)
        if cursor < clipped_start:
            slots.append(AvailabilitySlot(cursor, clipped_start, True))
        slots.append(AvailabilitySlot(clipped_start, clipped_end, False))
        cursor = clipped_end

    if cursor < window_end:
        slots.append(AvailabilitySlot(cursor, window_end, True))
    return slots


def summarize_availability(slots: Iterable[AvailabilitySlot]) -> AvailabilitySummary:
    booked_minutes = 0
    free_minutes = 0
    reservation_count = 0
    for slot in slots:
        if slot.available:
            free_minutes += slot.minutes
        else:
            booked_minutes += slot.minutes
            reservation_count += 1
    return AvailabilitySummary(
        booked_minutes=booked_minutes,
        free_minutes=free_minutes,
        reservation_count=reservation_count,
    )
