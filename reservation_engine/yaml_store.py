from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar
import shutil
import threading

import yaml

from .booking import ReservationRecord
from .errors import ReservationNotFoundError, ReservationStorageError
from .queries import ReservationPredicate

EVENT_LOG_FILE = "reservation_events.yaml"

T = TypeVar("T")

# One entry per data directory opened in this process; never pruned.
_DIR_LOCKS: dict[Path, threading.RLock] = {}
_DIR_LOCKS_GUARD = threading.Lock()


def _lock_for(base_dir: Path) -> threading.RLock:
    # Every repository rooted at the same directory shares one file lock.
    key = base_dir.resolve()
    with _DIR_LOCKS_GUARD:
        lock = _DIR_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _DIR_LOCKS[key] = lock
        return lock


@dataclass(frozen=True)
class ResourceTypeRecord:
    resource_type_id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"resource_type_id": self.resource_type_id, "name": self.name}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ResourceTypeRecord":
        return ResourceTypeRecord(resource_type_id=str(data["resource_type_id"]), name=str(data["name"]))


@dataclass(frozen=True)
class ResourceRecord:
    resource_id: str
    name: str
    resource_type_id: str
    active: bool = True
    description: str | None = None
    location: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "resource_id": self.resource_id,
            "name": self.name,
            "resource_type_id": self.resource_type_id,
            "active": self.active,
        }
        if self.description is not None:
            payload["description"] = self.description
        if self.location is not None:
            payload["location"] = self.location
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ResourceRecord":
        return ResourceRecord(
            resource_id=str(data["resource_id"]),
            name=str(data["name"]),
            resource_type_id=str(data["resource_type_id"]),
            active=bool(data.get("active", True)),
            description=(str(data.get("description")) if data.get("description") is not None else None),
            location=(str(data.get("location")) if data.get("location") is not None else None),
        )


class _YamlListStore:
    """Shared plumbing: one YAML list per file, atomic rewrites, an event log."""

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.log_file = self.base_dir / EVENT_LOG_FILE
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = _lock_for(self.base_dir)

    def _ensure_files(self, *paths: Path) -> None:
        with self._lock:
            for path in (*paths, self.log_file):
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (UnicodeDecodeError, yaml.YAMLError) as error:
            return self._recover_corrupted_yaml(path, error)
        except OSError as error:
            raise ReservationStorageError(f"Failed to read YAML file: {path}") from error

        if payload is None:
            return []
        if not isinstance(payload, list):
            return self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> list[dict[str, Any]]:
        """Back up a corrupted file, then reset it (event log) or fail (data files).

        Only the event log is reset to a fresh list. Data files stay as they are
        and the read raises ``ReservationStorageError``.
        """
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path: Path | None = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            backup_path = None

        details = {
            "file": str(path.name),
            "backup": str(backup_path.name) if backup_path is not None else None,
            "reason": str(error),
        }
        if path != self.log_file:
            self._log_event("YAML_CORRUPTED", details)
            raise ReservationStorageError(f"Corrupted YAML file: {path}") from error

        events = [_event_row("YAML_RECOVERED", details)]
        self._write_yaml_list(path, events)
        return events

    def _load_rows(self, path: Path, factory: Callable[[dict[str, Any]], T]) -> list[T]:
        with self._lock:
            rows = self._read_yaml_list(path)
            records: list[T] = []
            for index, row in enumerate(rows):
                try:
                    records.append(factory(row))
                except (KeyError, TypeError, ValueError) as error:
                    self._log_event(
                        "YAML_ROW_SKIPPED",
                        {
                            "file": str(path.name),
                            "index": index,
                            "reason": f"invalid row: {error!r}",
                        },
                    )
        return records

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        with self._lock:
            events = self._read_yaml_list(self.log_file)
            events.append(_event_row(event_type, payload, event_time))
            self._write_yaml_list(self.log_file, events)

    def get_events(self) -> list[dict[str, Any]]:
        with self._lock:
            return self._read_yaml_list(self.log_file)


class CatalogYamlRepository(_YamlListStore):
    """Resource types, resources and the role -> resource type permission table."""

    def __init__(self, base_dir: str | Path = "data") -> None:
        super().__init__(base_dir)
        self.resource_types_file = self.base_dir / "resource_types.yaml"
        self.resources_file = self.base_dir / "resources.yaml"
        self.permissions_file = self.base_dir / "role_permissions.yaml"
        self._ensure_files(self.resource_types_file, self.resources_file, self.permissions_file)

    def get_resource_types(self) -> list[ResourceTypeRecord]:
        return self._load_rows(self.resource_types_file, ResourceTypeRecord.from_dict)

    def get_resources(self) -> list[ResourceRecord]:
        return self._load_rows(self.resources_file, ResourceRecord.from_dict)

    def get_resource(self, resource_id: str) -> ResourceRecord | None:
        for resource in self.get_resources():
            if resource.resource_id == resource_id:
                return resource
        return None

    def get_resource_type(self, resource_type_id: str) -> ResourceTypeRecord | None:
        for resource_type in self.get_resource_types():
            if resource_type.resource_type_id == resource_type_id:
                return resource_type
        return None

    def resource_type_index(self) -> dict[str, str]:
        return {resource.resource_id: resource.resource_type_id for resource in self.get_resources()}

    def permissions_for(self, role_names: Iterable[str]) -> set[str]:
        wanted = set(role_names)
        if not wanted:
            return set()
        with self._lock:
            rows = self._read_yaml_list(self.permissions_file)
        return {
            str(row["resource_type_id"])
            for row in rows
            if str(row.get("role_name")) in wanted and row.get("resource_type_id") is not None
        }

    def add_resource_type(self, resource_type_id: str, name: str) -> ResourceTypeRecord:
        record = ResourceTypeRecord(
            resource_type_id=_normalize_identifier(resource_type_id, "resource_type_id"),
            name=_normalize_identifier(name, "name"),
        )
        with self._lock:
            rows = self._read_yaml_list(self.resource_types_file)
            for row in rows:
                if str(row.get("resource_type_id")) == record.resource_type_id:
                    raise ValueError(f"Resource type already exists: {record.resource_type_id}")
                if str(row.get("name")) == record.name:
                    raise ValueError(f"Resource type name already exists: {record.name}")
            rows.append(record.to_dict())
            self._write_yaml_list(self.resource_types_file, rows)
        return record

    def add_resource(
        self,
        resource_id: str,
        name: str,
        resource_type_id: str,
        *,
        active: bool = True,
        description: str | None = None,
        location: str | None = None,
    ) -> ResourceRecord:
        record = ResourceRecord(
            resource_id=_normalize_identifier(resource_id, "resource_id"),
            name=_normalize_identifier(name, "name"),
            resource_type_id=_normalize_identifier(resource_type_id, "resource_type_id"),
            active=active,
            description=description,
            location=location,
        )
        with self._lock:
            if self.get_resource_type(record.resource_type_id) is None:
                raise ValueError(f"Resource type not found: {record.resource_type_id}")
            rows = self._read_yaml_list(self.resources_file)
            for row in rows:
                if str(row.get("resource_id")) == record.resource_id:
                    raise ValueError(f"Resource already exists: {record.resource_id}")
                if str(row.get("name")) == record.name:
                    raise ValueError(f"Resource name already exists: {record.name}")
            rows.append(record.to_dict())
            self._write_yaml_list(self.resources_file, rows)
        return record

    def set_resource_active(self, resource_id: str, active: bool) -> ResourceRecord:
        with self._lock:
            rows = self._read_yaml_list(self.resources_file)
            for index, row in enumerate(rows):
                if str(row.get("resource_id")) == resource_id:
                    row["active"] = active
                    rows[index] = row
                    self._write_yaml_list(self.resources_file, rows)
                    return ResourceRecord.from_dict(row)
        raise ValueError(f"Resource not found: {resource_id}")

    def grant(self, role_name: str, resource_type_id: str) -> None:
        role_name = _normalize_identifier(role_name, "role_name")
        with self._lock:
            rows = self._read_yaml_list(self.permissions_file)
            if any(
                str(row.get("role_name")) == role_name and str(row.get("resource_type_id")) == resource_type_id
                for row in rows
            ):
                return
            rows.append({"role_name": role_name, "resource_type_id": resource_type_id})
            self._write_yaml_list(self.permissions_file, rows)

    def revoke(self, role_name: str, resource_type_id: str) -> None:
        with self._lock:
            rows = self._read_yaml_list(self.permissions_file)
            remaining = [
                row
                for row in rows
                if not (str(row.get("role_name")) == role_name and str(row.get("resource_type_id")) == resource_type_id)
            ]
            self._write_yaml_list(self.permissions_file, remaining)

    def seed(self, payload: dict[str, Any], overwrite: bool = True, now: datetime | None = None) -> None:
        """Load resource types, resources and grants from a mapping.

        Expected keys: ``resource_types`` (``resource_type_id``, ``name``),
        ``resources`` (``resource_id``, ``name``, ``resource_type_id``, optional
        ``active``) and ``role_permissions`` (``role_name``, ``resource_type_id``).
        """
        with self._lock:
            if overwrite:
                for path in (self.resource_types_file, self.resources_file, self.permissions_file):
                    self._write_yaml_list(path, [])

            for row in payload.get("resource_types", []):
                self.add_resource_type(str(row["resource_type_id"]), str(row["name"]))
            for row in payload.get("resources", []):
                self.add_resource(
                    str(row["resource_id"]),
                    str(row["name"]),
                    str(row["resource_type_id"]),
                    active=bool(row.get("active", True)),
                    description=row.get("description"),
                    location=row.get("location"),
                )
            for row in payload.get("role_permissions", []):
                self.grant(str(row["role_name"]), str(row["resource_type_id"]))

            self._log_event(
                "CATALOG_SEEDED",
                {
                    "resource_types": len(payload.get("resource_types", [])),
                    "resources": len(payload.get("resources", [])),
                    "role_permissions": len(payload.get("role_permissions", [])),
                    "overwrite": overwrite,
                },
                now,
            )

    def seed_from_file(self, path: str | Path, overwrite: bool = True) -> None:
        payload = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(payload, dict):
            raise ValueError("catalog file must contain a mapping at the top level")
        self.seed(payload, overwrite=overwrite)


class ReservationYamlRepository(_YamlListStore):
    """Reservation rows split into an active file and a cancelled file.

    Rows are never deleted: cancelling moves a row from the active file to the
    cancelled file. Every public method holds the directory lock while it reads
    or rewrites a file.
    """

    def __init__(self, base_dir: str | Path = "data", catalog: CatalogYamlRepository | None = None) -> None:
        super().__init__(base_dir)
        self.active_file = self.base_dir / "active_reservations.yaml"
        self.cancelled_file = self.base_dir / "cancelled_reservations.yaml"
        self.catalog = catalog or CatalogYamlRepository(self.base_dir)
        self._ensure_files(self.active_file, self.cancelled_file)

    def get_active_reservations(self) -> list[ReservationRecord]:
        return self._load_rows(self.active_file, ReservationRecord.from_dict)

    def get_cancelled_reservations(self) -> list[ReservationRecord]:
        return self._load_rows(self.cancelled_file, ReservationRecord.from_dict)

    def find_by_id(self, reservation_id: str) -> ReservationRecord | None:
        with self._lock:
            for record in self.get_active_reservations():
                if record.reservation_id == reservation_id:
                    return record
            for record in self.get_cancelled_reservations():
                if record.reservation_id == reservation_id:
                    return record
        return None

    def find_active_for_resource(self, resource_id: str) -> list[ReservationRecord]:
        return [record for record in self.get_active_reservations() if record.resource_id == resource_id]

    def find_active_in_window(
        self,
        resource_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[ReservationRecord]:
        matches = [
            record
            for record in self.find_active_for_resource(resource_id)
            if record.start < window_end and record.end > window_start
        ]
        return sorted(matches, key=lambda record: record.start)

    def find(self, *predicates: ReservationPredicate, newest_first: bool = False) -> list[ReservationRecord]:
        with self._lock:
            records = self.get_active_reservations() + self.get_cancelled_reservations()
        type_index = self.catalog.resource_type_index()

        matches = [
            record
            for record in records
            if all(predicate(record, type_index.get(record.resource_id)) for predicate in predicates)
        ]
        return sorted(matches, key=lambda record: (record.start, record.created_at), reverse=newest_first)

    def insert(self, record: ReservationRecord) -> ReservationRecord:
        if not record.is_active:
            raise ValueError("Only ACTIVE reservations can be inserted.")

        with self._lock:
            rows = self._read_yaml_list(self.active_file)
            if any(str(row.get("reservation_id")) == record.reservation_id for row in rows):
                raise ValueError(f"Duplicate reservation_id: {record.reservation_id}")
            rows.append(record.to_dict())
            self._write_yaml_list(self.active_file, rows)

            self._log_event(
                "RESERVATION_CREATED",
                {
                    "reservation_id": record.reservation_id,
                    "resource_id": record.resource_id,
                    "user_id": record.user_id,
                    "start": record.start.isoformat(),
                    "end": record.end.isoformat(),
                    "notes": record.notes,
                },
                record.created_at,
            )
        return record

    def update(self, record: ReservationRecord) -> ReservationRecord:
        with self._lock:
            active_rows = self._read_yaml_list(self.active_file)
            found_index = -1
            for index, row in enumerate(active_rows):
                if str(row.get("reservation_id")) == record.reservation_id:
                    found_index = index
                    break

            if found_index < 0:
                raise ReservationNotFoundError(record.reservation_id)

            if record.is_active:
                active_rows[found_index] = record.to_dict()
                self._write_yaml_list(self.active_file, active_rows)
                self._log_event(
                    "RESERVATION_UPDATED",
                    {"reservation_id": record.reservation_id, "resource_id": record.resource_id},
                    record.updated_at,
                )
                return record

            # Cancelled file first: an interrupted move leaves a duplicate, never a lost row.
            cancelled_rows = self._read_yaml_list(self.cancelled_file)
            cancelled_rows.append(record.to_dict())
            self._write_yaml_list(self.cancelled_file, cancelled_rows)
            del active_rows[found_index]
            self._write_yaml_list(self.active_file, active_rows)

            self._log_event(
                "RESERVATION_CANCELLED",
                {
                    "reservation_id": record.reservation_id,
                    "resource_id": record.resource_id,
                    "cancelled_by": record.cancelled_by,
                },
                record.updated_at,
            )
        return record

    def record_conflict(self, record: ReservationRecord, conflicting: list[ReservationRecord]) -> None:
        self._log_event(
            "RESERVATION_CONFLICT",
            {
                "resource_id": record.resource_id,
                "user_id": record.user_id,
                "start": record.start.isoformat(),
                "end": record.end.isoformat(),
                "conflicting_ids": [item.reservation_id for item in conflicting],
            },
            record.created_at,
        )


def _event_row(event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> dict[str, Any]:
    timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
    return {"event_time": timestamp, "event_type": event_type, "payload": payload}


def _normalize_identifier(value: str | None, field_name: str) -> str:
    if value is None:
        raise ValueError(f"{field_name} must not be None")

    normalized = str(value).strip()
    if not normalized:
        raise ValueError(f"{field_name} must not be empty")
    return normalized
