from __future__ import annotations

from datetime import datetime
from typing import Callable, TypeVar
from uuid import uuid4

from . import lifecycle
from .availability import AvailabilitySlot, compute_availability
from .booking import STATUS_ACTIVE, ReservationRecord, ReservationRequest, to_local_naive, validate_interval
from .errors import (
    PermissionDeniedError,
    ReservationError,
    ReservationNotFoundError,
    ReservationStorageError,
    ResourceInactiveError,
    ResourceNotFoundError,
)
from .overlap import OverlapGuard
from .permissions import PermissionResolver, Principal
from .queries import OnResource, OwnedBy, ResourceTypeIn, StatusIs
from .settings import EngineSettings
from .yaml_store import CatalogYamlRepository, ReservationYamlRepository, ResourceRecord

T = TypeVar("T")


class ReservationCoordinator:
    """Entry point for every reservation operation.

    Each operation resolves the caller's allowed resource types before it looks
    at reservation state, and listings always filter by that set.
    """

    def __init__(
        self,
        catalog: CatalogYamlRepository,
        reservations: ReservationYamlRepository,
        settings: EngineSettings | None = None,
        now_provider: Callable[[], datetime] | None = None,
        guard: OverlapGuard | None = None,
    ) -> None:
        self.catalog = catalog
        self.reservations = reservations
        self.settings = settings or EngineSettings()
        self.clock: Callable[[], datetime] = now_provider or datetime.now
        self.permissions = PermissionResolver(catalog)
        self.guard = guard or OverlapGuard(reservations)

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> "ReservationCoordinator":
        effective = settings or EngineSettings.from_env()
        catalog = CatalogYamlRepository(effective.data_dir)
        reservations = ReservationYamlRepository(effective.data_dir, catalog=catalog)
        return cls(catalog, reservations, settings=effective, now_provider=now_provider)

    def create(self, request: ReservationRequest, principal: Principal) -> ReservationRecord:
        start, end = to_local_naive(request.start), to_local_naive(request.end)
        validate_interval(start, end)

        # Permission first: the active flag is only visible to callers allowed to see the resource.
        resource = self._load_resource(request.resource_id, principal)
        if not resource.active:
            raise ResourceInactiveError(resource.resource_id)

        now = self.clock()
        record = ReservationRecord(
            reservation_id=str(uuid4()),
            resource_id=resource.resource_id,
            user_id=principal.principal_id,
            start=start,
            end=end,
            created_at=now,
            updated_at=now,
            notes=request.notes,
        )
        return self.guard.reserve(record)

    def get(self, reservation_id: str, principal: Principal) -> ReservationRecord:
        return self._load_reservation(reservation_id, principal)

    def list_active_global(self, principal: Principal) -> list[ReservationRecord]:
        allowed = self._allowed_types(principal)
        if not allowed:
            return []
        return self._read(self.reservations.find, StatusIs(STATUS_ACTIVE), ResourceTypeIn(allowed))

    def list_active_for_caller(self, principal: Principal) -> list[ReservationRecord]:
        allowed = self._allowed_types(principal)
        if not allowed:
            return []
        return self._read(
            self.reservations.find,
            StatusIs(STATUS_ACTIVE) & OwnedBy(principal.principal_id) & ResourceTypeIn(allowed),
        )

    def history_for_caller(self, principal: Principal) -> list[ReservationRecord]:
        allowed = self._allowed_types(principal)
        if not allowed:
            return []
        return self._read(
            lambda: self.reservations.find(
                OwnedBy(principal.principal_id),
                ResourceTypeIn(allowed),
                newest_first=True,
            )
        )

    def history_for_resource(self, resource_id: str, principal: Principal) -> list[ReservationRecord]:
        resource = self._load_resource(resource_id, principal)
        allowed = self._allowed_types(principal)
        return self._read(
            lambda: self.reservations.find(
                OnResource(resource.resource_id),
                ResourceTypeIn(allowed),
                newest_first=True,
            )
        )

    def availability(
        self,
        resource_id: str,
        window_start: datetime,
        window_end: datetime,
        principal: Principal,
    ) -> list[AvailabilitySlot]:
        resource = self._load_resource(resource_id, principal)
        window_start, window_end = to_local_naive(window_start), to_local_naive(window_end)
        validate_interval(window_start, window_end)

        active = self._read(self.reservations.find_active_in_window, resource.resource_id, window_start, window_end)
        return compute_availability(window_start, window_end, active)

    def cancel(self, reservation_id: str, principal: Principal) -> ReservationRecord:
        record = self._load_reservation(reservation_id, principal)

        with self.guard.locked(record.resource_id):
            # Re-read under the resource lock so concurrent cancels see each other.
            current = self.reservations.find_by_id(record.reservation_id)
            if current is None:
                raise ReservationNotFoundError(record.reservation_id)
            cancelled = lifecycle.cancel(current, principal, self.settings.admin_role, self.clock())
            return self.reservations.update(cancelled)

    def _load_reservation(self, reservation_id: str, principal: Principal) -> ReservationRecord:
        record = self._read(self.reservations.find_by_id, reservation_id)
        if record is None:
            raise ReservationNotFoundError(reservation_id)

        resource = self._read(self.catalog.get_resource, record.resource_id)
        if resource is None:
            # Without a resource there is no type to authorize against.
            if self.settings.conceal_forbidden:
                raise ReservationNotFoundError(reservation_id)
            raise ResourceNotFoundError(record.resource_id)
        self._authorize(principal, resource.resource_type_id, ReservationNotFoundError(reservation_id))
        return record

    def _load_resource(self, resource_id: str, principal: Principal) -> ResourceRecord:
        resource = self._read(self.catalog.get_resource, resource_id)
        if resource is None:
            raise ResourceNotFoundError(resource_id)
        self._authorize(principal, resource.resource_type_id, ResourceNotFoundError(resource_id))
        return resource

    def _allowed_types(self, principal: Principal) -> frozenset[str]:
        return self._read(self.permissions.allowed_resource_types, principal.roles)

    def _authorize(self, principal: Principal, resource_type_id: str, concealed: ReservationError) -> None:
        if resource_type_id in self._allowed_types(principal):
            return
        if self.settings.conceal_forbidden:
            raise concealed
        raise PermissionDeniedError(resource_type_id)

    def _read(self, operation: Callable[..., T], *args: object) -> T:
        attempts = self.settings.read_retries + 1
        for attempt in range(attempts):
            try:
                return operation(*args)
            except ReservationStorageError:
                if attempt + 1 >= attempts:
                    raise
        raise ReservationStorageError("read retries exhausted")
