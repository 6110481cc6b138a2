import tempfile
import unittest
from datetime import datetime
from pathlib import Path

import yaml

from reservation_engine import (
    STATUS_CANCELLED,
    CatalogYamlRepository,
    OverlapGuard,
    ReservationNotFoundError,
    ReservationRecord,
    ReservationStorageError,
    ReservationYamlRepository,
)
from reservation_engine.queries import OnResource, OwnedBy, ResourceTypeIn, StatusIs

NOW = datetime(2026, 2, 24, 9, 0)

CATALOG = {
    "resource_types": [
        {"resource_type_id": "room", "name": "Meeting room"},
        {"resource_type_id": "equipment", "name": "Equipment"},
    ],
    "resources": [
        {"resource_id": "room-1", "name": "Room 1", "resource_type_id": "room"},
        {"resource_id": "projector-1", "name": "Projector 1", "resource_type_id": "equipment", "location": "B2"},
    ],
    "role_permissions": [
        {"role_name": "USER", "resource_type_id": "room"},
        {"role_name": "ADMIN", "resource_type_id": "room"},
        {"role_name": "ADMIN", "resource_type_id": "equipment"},
    ],
}


def _record(reservation_id: str, resource_id: str, start: datetime, end: datetime, user_id: str = "alice") -> ReservationRecord:
    return ReservationRecord(
        reservation_id=reservation_id,
        resource_id=resource_id,
        user_id=user_id,
        start=start,
        end=end,
        created_at=NOW,
        updated_at=NOW,
    )


def _cancel(record: ReservationRecord, by: str) -> ReservationRecord:
    when = datetime(2026, 2, 24, 9, 30)
    return record.with_changes(status=STATUS_CANCELLED, cancelled_by=by, cancelled_at=when, updated_at=when)


class TestCatalogYamlRepository(unittest.TestCase):
    def test_seed_writes_types_resources_and_grants(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            catalog = CatalogYamlRepository(Path(temp_dir) / "data")
            catalog.seed(CATALOG, overwrite=True, now=NOW)

            self.assertEqual([item.resource_type_id for item in catalog.get_resource_types()], ["room", "equipment"])
            self.assertEqual(catalog.get_resource("projector-1").location, "B2")
            self.assertEqual(catalog.permissions_for({"ADMIN"}), {"room", "equipment"})
            self.assertEqual(catalog.permissions_for({"USER", "GUEST"}), {"room"})
            self.assertEqual(catalog.permissions_for(set()), set())
            self.assertIn("CATALOG_SEEDED", [event["event_type"] for event in catalog.get_events()])

    def test_seed_from_file_reads_yaml_mapping(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            seed_path = Path(temp_dir) / "catalog.yaml"
            seed_path.write_text(yaml.safe_dump(CATALOG, sort_keys=False), encoding="utf-8")
            catalog = CatalogYamlRepository(Path(temp_dir) / "data")

            catalog.seed_from_file(seed_path)

            self.assertEqual(len(catalog.get_resources()), 2)

    def test_seed_from_file_rejects_non_mapping(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            seed_path = Path(temp_dir) / "catalog.yaml"
            seed_path.write_text("- just\n- a list\n", encoding="utf-8")
            catalog = CatalogYamlRepository(Path(temp_dir) / "data")

            with self.assertRaises(ValueError):
                catalog.seed_from_file(seed_path)

    def test_duplicate_ids_and_names_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            catalog = CatalogYamlRepository(Path(temp_dir) / "data")
            catalog.seed(CATALOG, overwrite=True, now=NOW)

            with self.assertRaises(ValueError):
                catalog.add_resource_type("room", "Another room type")
            with self.assertRaises(ValueError):
                catalog.add_resource("room-9", "Room 1", "room")
            with self.assertRaises(ValueError):
                catalog.add_resource("room-9", "Room 9", "missing-type")
            with self.assertRaises(ValueError):
                catalog.add_resource("   ", "Room 9", "room")

    def test_grant_revoke_and_deactivate(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            catalog = CatalogYamlRepository(Path(temp_dir) / "data")
            catalog.seed(CATALOG, overwrite=True, now=NOW)

            catalog.grant("USER", "equipment")
            catalog.grant("USER", "equipment")
            self.assertEqual(catalog.permissions_for({"USER"}), {"room", "equipment"})

            catalog.revoke("USER", "room")
            self.assertEqual(catalog.permissions_for({"USER"}), {"equipment"})

            updated = catalog.set_resource_active("room-1", False)
            self.assertFalse(updated.active)
            self.assertFalse(catalog.get_resource("room-1").active)
            with self.assertRaises(ValueError):
                catalog.set_resource_active("missing", False)


class TestReservationYamlRepository(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp.name) / "data"
        self.catalog = CatalogYamlRepository(self.data_dir)
        self.catalog.seed(CATALOG, overwrite=True, now=NOW)
        self.repo = ReservationYamlRepository(self.data_dir, catalog=self.catalog)

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_cancel_moves_row_to_cancelled_file(self) -> None:
        created = self.repo.insert(_record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))

        self.repo.update(_cancel(created, "alice"))

        self.assertEqual(self.repo.get_active_reservations(), [])
        cancelled = self.repo.get_cancelled_reservations()
        self.assertEqual(len(cancelled), 1)
        self.assertEqual(cancelled[0].cancelled_by, "alice")
        self.assertEqual(self.repo.find_by_id("r-1").status, STATUS_CANCELLED)

    def test_update_of_unknown_active_row_raises(self) -> None:
        record = _record("ghost", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0))

        with self.assertRaises(ReservationNotFoundError):
            self.repo.update(_cancel(record, "alice"))

    def test_update_of_active_row_replaces_in_place(self) -> None:
        created = self.repo.insert(_record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))

        self.repo.update(created.with_changes(notes="moved agenda", updated_at=datetime(2026, 2, 24, 9, 10)))

        self.assertEqual(self.repo.find_by_id("r-1").notes, "moved agenda")

    def test_insert_rejects_duplicate_id(self) -> None:
        record = _record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0))
        self.repo.insert(record)

        with self.assertRaises(ValueError):
            self.repo.insert(record)

    def test_logs_created_conflict_cancelled_events(self) -> None:
        created = self.repo.insert(_record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
        rejected = _record("r-2", "room-1", datetime(2026, 2, 24, 10, 30), datetime(2026, 2, 24, 11, 30))
        self.repo.record_conflict(rejected, [created])
        self.repo.update(_cancel(created, "root"))

        log_path = self.data_dir / "reservation_events.yaml"
        contents = log_path.read_text(encoding="utf-8")
        self.assertIn("RESERVATION_CREATED", contents)
        self.assertIn("RESERVATION_CONFLICT", contents)
        self.assertIn("RESERVATION_CANCELLED", contents)

        conflict = next(event for event in self.repo.get_events() if event["event_type"] == "RESERVATION_CONFLICT")
        self.assertEqual(conflict["payload"]["conflicting_ids"], ["r-1"])

    def test_find_window_and_predicates(self) -> None:
        self.repo.insert(_record("late", "room-1", datetime(2026, 2, 24, 14, 0), datetime(2026, 2, 24, 15, 0)))
        self.repo.insert(_record("early", "room-1", datetime(2026, 2, 24, 9, 0), datetime(2026, 2, 24, 10, 0)))
        self.repo.insert(
            _record("proj", "projector-1", datetime(2026, 2, 24, 9, 0), datetime(2026, 2, 24, 10, 0), user_id="bob")
        )

        in_window = self.repo.find_active_in_window("room-1", datetime(2026, 2, 24, 8, 0), datetime(2026, 2, 24, 16, 0))
        self.assertEqual([record.reservation_id for record in in_window], ["early", "late"])
        edge = self.repo.find_active_in_window("room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 14, 0))
        self.assertEqual(edge, [])

        rooms = self.repo.find(StatusIs("ACTIVE"), ResourceTypeIn(frozenset({"room"})))
        self.assertEqual([record.reservation_id for record in rooms], ["early", "late"])

        bobs = self.repo.find(OwnedBy("bob") & OnResource("projector-1"))
        self.assertEqual([record.reservation_id for record in bobs], ["proj"])

        newest = self.repo.find(OnResource("room-1"), newest_first=True)
        self.assertEqual([record.reservation_id for record in newest], ["late", "early"])

    def test_corrupted_active_file_is_kept_and_reported(self) -> None:
        active_path = self.data_dir / "active_reservations.yaml"
        active_path.write_text("this: [is: invalid", encoding="utf-8")

        with self.assertRaises(ReservationStorageError):
            self.repo.get_active_reservations()

        self.assertEqual(active_path.read_text(encoding="utf-8"), "this: [is: invalid")
        self.assertTrue(list(self.data_dir.glob("active_reservations.corrupt.*.yaml")))
        self.assertIn("YAML_CORRUPTED", [event["event_type"] for event in self.repo.get_events()])

    def test_guard_refuses_to_book_over_corrupted_active_file(self) -> None:
        guard = OverlapGuard(self.repo)
        guard.reserve(_record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
        active_path = self.data_dir / "active_reservations.yaml"
        active_path.write_text(active_path.read_text(encoding="utf-8") + "\n- [broken: yaml\n", encoding="utf-8")
        corrupted_text = active_path.read_text(encoding="utf-8")

        with self.assertRaises(ReservationStorageError):
            guard.reserve(_record("r-2", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))

        self.assertEqual(active_path.read_text(encoding="utf-8"), corrupted_text)

    def test_corrupted_event_log_is_reset(self) -> None:
        self.repo.log_file.write_text("this: [is: invalid", encoding="utf-8")

        events = self.repo.get_events()

        self.assertEqual([event["event_type"] for event in events], ["YAML_RECOVERED"])
        self.assertTrue(list(self.data_dir.glob("reservation_events.corrupt.*.yaml")))

        self.repo.insert(_record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0)))
        self.assertEqual(
            [event["event_type"] for event in self.repo.get_events()],
            ["YAML_RECOVERED", "RESERVATION_CREATED"],
        )

    def test_rows_with_missing_or_invalid_fields_are_skipped(self) -> None:
        created = _record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0))
        missing_start = created.to_dict()
        missing_start["reservation_id"] = "r-2"
        del missing_start["start"]
        reversed_interval = created.to_dict()
        reversed_interval["reservation_id"] = "r-3"
        reversed_interval["end"] = "2026-02-24T09:00:00"
        active_path = self.data_dir / "active_reservations.yaml"
        active_path.write_text(
            yaml.safe_dump([created.to_dict(), missing_start, reversed_interval], sort_keys=False),
            encoding="utf-8",
        )

        active = self.repo.get_active_reservations()

        self.assertEqual(active, [created])
        skipped = [event for event in self.repo.get_events() if event["event_type"] == "YAML_ROW_SKIPPED"]
        self.assertEqual([event["payload"]["index"] for event in skipped], [1, 2])
        self.assertIn("start", skipped[0]["payload"]["reason"])

    def test_non_mapping_rows_are_skipped(self) -> None:
        created = _record("r-1", "room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0))
        active_path = self.data_dir / "active_reservations.yaml"
        active_path.write_text(yaml.safe_dump([created.to_dict(), "garbage"], sort_keys=False), encoding="utf-8")

        active = self.repo.get_active_reservations()

        self.assertEqual(active, [created])
        self.assertIn("YAML_ROW_SKIPPED", [event["event_type"] for event in self.repo.get_events()])


if __name__ == "__main__":
    unittest.main()
