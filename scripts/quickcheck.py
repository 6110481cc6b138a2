from __future__ import annotations

from datetime import datetime
from pathlib import Path
import traceback

from reservation_engine import (
    EngineSettings,
    Principal,
    ReservationConflictError,
    ReservationCoordinator,
    ReservationRequest,
)

DEMO_CATALOG = {
    "resource_types": [
        {"resource_type_id": "room", "name": "Meeting room"},
        {"resource_type_id": "equipment", "name": "Equipment"},
    ],
    "resources": [
        {"resource_id": "room-1", "name": "Room 1", "resource_type_id": "room"},
        {"resource_id": "room-2", "name": "Room 2", "resource_type_id": "room"},
        {"resource_id": "projector-1", "name": "Projector 1", "resource_type_id": "equipment"},
    ],
    "role_permissions": [
        {"role_name": "USER", "resource_type_id": "room"},
        {"role_name": "ADMIN", "resource_type_id": "room"},
        {"role_name": "ADMIN", "resource_type_id": "equipment"},
    ],
}


def main() -> int:
    print("[INFO] Reservation Engine Quick Check")
    data_dir = Path("data")
    settings = EngineSettings(data_dir=data_dir)
    coordinator = ReservationCoordinator.from_settings(settings)
    coordinator.catalog.seed(DEMO_CATALOG, overwrite=True)
    print("[OK] Demo catalog seeded")

    alice = Principal("alice", frozenset({"USER"}))
    admin = Principal("admin", frozenset({"ADMIN"}))

    created = coordinator.create(
        ReservationRequest("room-1", datetime(2026, 2, 24, 10, 0), datetime(2026, 2, 24, 11, 0), notes="standup"),
        alice,
    )
    print(f"[OK] Reserved {created.resource_id} {created.start.isoformat()}~{created.end.isoformat()}")

    try:
        coordinator.create(
            ReservationRequest("room-1", datetime(2026, 2, 24, 10, 30), datetime(2026, 2, 24, 11, 30)),
            admin,
        )
        print("[ERROR] Overlapping reservation was accepted.")
        return 1
    except ReservationConflictError as error:
        print(f"[OK] Overlap rejected: {error.context['conflicting_ids']}")

    slots = coordinator.availability("room-1", datetime(2026, 2, 24, 9, 0), datetime(2026, 2, 24, 12, 0), alice)
    for slot in slots:
        state = "free" if slot.available else "booked"
        print(f"[OK] {slot.start.isoformat()}~{slot.end.isoformat()} {state}")

    cancelled = coordinator.cancel(created.reservation_id, admin)
    print(f"[OK] Cancelled by {cancelled.cancelled_by}: {cancelled.status}")
    print(f"[OK] Active YAML: {(data_dir / 'active_reservations.yaml').resolve()}")
    print(f"[OK] Event Log YAML: {(data_dir / 'reservation_events.yaml').resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
