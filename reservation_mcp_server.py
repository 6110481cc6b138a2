from __future__ import annotations

from datetime import datetime
from typing import Any

from mcp.server.fastmcp import FastMCP

from reservation_engine import (
    EngineSettings,
    Principal,
    ReservationCoordinator,
    ReservationError,
    ReservationRequest,
    Role,
    summarize_availability,
)
from reservation_engine.booking import to_local_naive

mcp = FastMCP(
    "Reservation MCP Server",
    instructions="Expose permission-checked reservation operations from the reservation_engine project.",
    json_response=True,
)

SETTINGS = EngineSettings.from_env()
COORDINATOR = ReservationCoordinator.from_settings(SETTINGS)


def _principal(user_id: str, roles: list[str]) -> Principal:
    return Principal.from_roles(user_id, [Role.from_wire(role) for role in roles if role.strip()])


def _parse_datetime(value: str) -> datetime:
    return to_local_naive(datetime.fromisoformat(value))


def _error_payload(error: ReservationError) -> dict[str, Any]:
    return {"ok": False, **error.to_dict()}


@mcp.resource("reservation://resources")
async def list_resources() -> list[dict[str, Any]]:
    """List catalogue resources (id, name, type, active flag)."""
    return [resource.to_dict() for resource in COORDINATOR.catalog.get_resources()]


@mcp.tool()
def list_active_reservations(user_id: str, roles: list[str], resource_id: str | None = None) -> dict[str, Any]:
    """Return active reservations visible to the caller, optionally for one resource."""
    records = COORDINATOR.list_active_global(_principal(user_id, roles))
    filtered = [record for record in records if resource_id is None or record.resource_id == resource_id]
    return {"ok": True, "reservations": [record.to_dict() for record in filtered]}


@mcp.tool()
def check_availability(
    user_id: str,
    roles: list[str],
    resource_id: str,
    start_iso: str,
    end_iso: str,
) -> dict[str, Any]:
    """Return free/booked slots for a resource between two ISO timestamps."""
    try:
        slots = COORDINATOR.availability(
            resource_id,
            _parse_datetime(start_iso),
            _parse_datetime(end_iso),
            _principal(user_id, roles),
        )
    except ReservationError as error:
        return _error_payload(error)
    except ValueError:
        return {"ok": False, "error": "bad_request", "message": "start/end must be ISO-8601 datetimes."}
    return {
        "ok": True,
        "slots": [slot.to_dict() for slot in slots],
        "summary": summarize_availability(slots).to_dict(),
    }


@mcp.tool()
def create_reservation(
    user_id: str,
    roles: list[str],
    resource_id: str,
    start_iso: str,
    end_iso: str,
    notes: str | None = None,
) -> dict[str, Any]:
    """Create a reservation using ISO timestamps."""
    try:
        created = COORDINATOR.create(
            ReservationRequest(
                resource_id=resource_id,
                start=_parse_datetime(start_iso),
                end=_parse_datetime(end_iso),
                notes=notes,
            ),
            _principal(user_id, roles),
        )
    except ReservationError as error:
        return _error_payload(error)
    except ValueError:
        return {"ok": False, "error": "bad_request", "message": "start/end must be ISO-8601 datetimes."}
    return {"ok": True, "reservation": created.to_dict()}


@mcp.tool()
def cancel_reservation(user_id: str, roles: list[str], reservation_id: str) -> dict[str, Any]:
    """Cancel a reservation; only its creator or an admin may do so."""
    try:
        cancelled = COORDINATOR.cancel(reservation_id, _principal(user_id, roles))
    except ReservationError as error:
        return _error_payload(error)
    return {"ok": True, "reservation": cancelled.to_dict()}


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
