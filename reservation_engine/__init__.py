from .availability import AvailabilitySlot, AvailabilitySummary, compute_availability, summarize_availability
from .booking import (
	STATUS_ACTIVE,
	STATUS_CANCELLED,
	ReservationRecord,
	ReservationRequest,
	TimeRange,
	can_reserve,
	has_time_overlap,
)
from .coordinator import ReservationCoordinator
from .errors import (
	IllegalTransitionError,
	InvalidIntervalError,
	PermissionDeniedError,
	ReservationConflictError,
	ReservationError,
	ReservationNotFoundError,
	ReservationStorageError,
	ResourceInactiveError,
	ResourceNotFoundError,
	UnauthorizedError,
)
from .overlap import OverlapGuard, find_conflicts
from .permissions import PermissionResolver, Principal, Role
from .settings import EngineSettings
from .yaml_store import CatalogYamlRepository, ReservationYamlRepository, ResourceRecord, ResourceTypeRecord

__all__ = [
	"AvailabilitySlot",
	"AvailabilitySummary",
	"compute_availability",
	"summarize_availability",
	"STATUS_ACTIVE",
	"STATUS_CANCELLED",
	"ReservationRecord",
	"ReservationRequest",
	"TimeRange",
	"can_reserve",
	"has_time_overlap",
	"ReservationCoordinator",
	"IllegalTransitionError",
	"InvalidIntervalError",
	"PermissionDeniedError",
	"ReservationConflictError",
	"ReservationError",
	"ReservationNotFoundError",
	"ReservationStorageError",
	"ResourceInactiveError",
	"ResourceNotFoundError",
	"UnauthorizedError",
	"OverlapGuard",
	"find_conflicts",
	"PermissionResolver",
	"Principal",
	"Role",
	"EngineSettings",
	"CatalogYamlRepository",
	"ReservationYamlRepository",
	"ResourceRecord",
	"ResourceTypeRecord",
]
