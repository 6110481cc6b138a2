from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Protocol

from .booking import ReservationRecord, has_time_overlap, validate_interval
from .errors import ReservationConflictError


class ActiveReservationStore(Protocol):
    def find_active_for_resource(self, resource_id: str) -> list[ReservationRecord]: ...

    def insert(self, record: ReservationRecord) -> ReservationRecord: ...

    def record_conflict(self, record: ReservationRecord, conflicting: list[ReservationRecord]) -> None: ...


def find_conflicts(start: datetime, end: datetime, existing: Iterable[ReservationRecord]) -> list[ReservationRecord]:
    """Return the ACTIVE reservations that overlap ``[start, end)``."""
    validate_interval(start, end)
    return [
        record
        for record in existing
        if record.is_active and has_time_overlap(start, end, record.start, record.end)
    ]


class KeyedLocks:
    """One lock per key, created on first use and kept for the process lifetime.

    Entries are never evicted, so the registry grows with the number of
    distinct resource ids ever reserved or cancelled.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


class OverlapGuard:
    """Keep ACTIVE reservations on a resource pairwise disjoint.

    The overlap check and the insert run inside a lock keyed by resource id, so
    two writers on the same resource cannot both pass the check before either
    commits. Writers on different resources take different locks.
    """

    def __init__(self, store: ActiveReservationStore, locks: KeyedLocks | None = None) -> None:
        self.store = store
        self.locks = locks or KeyedLocks()

    @contextmanager
    def locked(self, resource_id: str) -> Iterator[None]:
        with self.locks.get(resource_id):
            yield

    def reserve(self, record: ReservationRecord) -> ReservationRecord:
        validate_interval(record.start, record.end)
        if not record.is_active:
            raise ValueError("Only ACTIVE reservations can be reserved.")

        with self.locked(record.resource_id):
            existing = self.store.find_active_for_resource(record.resource_id)
            conflicts = find_conflicts(record.start, record.end, existing)
            if conflicts:
                self.store.record_conflict(record, conflicts)
                raise ReservationConflictError(
                    record.resource_id,
                    record.start,
                    record.end,
                    [conflict.reservation_id for conflict in conflicts],
                )
            return self.store.insert(record)
