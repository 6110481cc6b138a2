from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, Request, jsonify, request

from .availability import summarize_availability
from .booking import ReservationRecord, ReservationRequest, to_local_naive
from .coordinator import ReservationCoordinator
from .errors import ReservationError, ReservationStorageError
from .permissions import Principal, Role
from .settings import EngineSettings

USER_HEADER = "X-User-Id"
ROLES_HEADER = "X-Roles"

ERROR_STATUS = {
    "invalid_interval": 400,
    "resource_not_found": 404,
    "reservation_not_found": 404,
    "resource_inactive": 409,
    "permission_denied": 403,
    "conflict": 409,
    "illegal_transition": 409,
    "unauthorized": 403,
}


class MissingIdentityError(Exception):
    pass


def principal_from_headers(incoming: Request) -> Principal:
    """Build the caller from already-verified identity headers.

    ``X-Roles`` is a comma separated list; wire prefixes such as ``ROLE_`` are
    stripped so the engine only sees plain role names.
    """
    user_id = str(incoming.headers.get(USER_HEADER, "")).strip()
    if not user_id:
        raise MissingIdentityError(f"{USER_HEADER} header is required")

    raw_roles = str(incoming.headers.get(ROLES_HEADER, ""))
    roles = [Role.from_wire(value) for value in raw_roles.split(",") if value.strip()]
    return Principal.from_roles(user_id, roles)


def _parse_datetime(value: str) -> datetime:
    return to_local_naive(datetime.fromisoformat(value))


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    settings: EngineSettings | None = None,
    identity_provider: Callable[[Request], Principal] | None = None,
) -> Flask:
    app = Flask(__name__)
    effective_settings = settings or EngineSettings.from_env()
    if data_dir is not None:
        effective_settings = EngineSettings(
            data_dir=Path(data_dir),
            admin_role=effective_settings.admin_role,
            conceal_forbidden=effective_settings.conceal_forbidden,
            read_retries=effective_settings.read_retries,
        )
    coordinator = ReservationCoordinator.from_settings(effective_settings, now_provider=now_provider)
    resolve_principal: Callable[[Request], Principal] = identity_provider or principal_from_headers
    app.extensions["reservation_coordinator"] = coordinator

    def _current_principal() -> Principal:
        return resolve_principal(request)

    def _serialize_list(records: list[ReservationRecord]) -> Any:
        return jsonify({"ok": True, "reservations": [record.to_dict() for record in records]})

    @app.errorhandler(ReservationError)
    def handle_reservation_error(error: ReservationError) -> Any:
        return jsonify({"ok": False, **error.to_dict()}), ERROR_STATUS.get(error.kind, 400)

    @app.errorhandler(MissingIdentityError)
    def handle_missing_identity(error: MissingIdentityError) -> Any:
        return jsonify({"ok": False, "error": "unauthenticated", "message": str(error)}), 401

    @app.errorhandler(ReservationStorageError)
    def handle_storage_error(error: ReservationStorageError) -> Any:
        return jsonify({"ok": False, "error": "storage_error", "message": "Reservation storage is unavailable."}), 503

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type,{USER_HEADER},{ROLES_HEADER}"
        return response

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        principal = _current_principal()
        payload = request.get_json(silent=True)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            return jsonify({"ok": False, "error": "bad_request", "message": "Request body must be a JSON object."}), 400
        resource_id = str(payload.get("resource_id", "")).strip()
        if not resource_id:
            return jsonify({"ok": False, "error": "bad_request", "message": "resource_id is required."}), 400

        try:
            start = _parse_datetime(str(payload.get("start", "")))
            end = _parse_datetime(str(payload.get("end", "")))
        except ValueError:
            return jsonify({"ok": False, "error": "bad_request", "message": "start/end must be ISO-8601 datetimes."}), 400

        notes = payload.get("notes")
        created = coordinator.create(
            ReservationRequest(
                resource_id=resource_id,
                start=start,
                end=end,
                notes=(str(notes) if notes is not None else None),
            ),
            principal,
        )
        return jsonify({"ok": True, "reservation": created.to_dict()}), 201

    @app.get("/api/reservations/<reservation_id>")
    def get_reservation(reservation_id: str) -> Any:
        record = coordinator.get(reservation_id, _current_principal())
        return jsonify({"ok": True, "reservation": record.to_dict()})

    @app.get("/api/reservations/active")
    def list_active() -> Any:
        return _serialize_list(coordinator.list_active_global(_current_principal()))

    @app.get("/api/reservations/my")
    def list_my_active() -> Any:
        return _serialize_list(coordinator.list_active_for_caller(_current_principal()))

    @app.get("/api/reservations/my/history")
    def my_history() -> Any:
        return _serialize_list(coordinator.history_for_caller(_current_principal()))

    @app.get("/api/reservations/resource/<resource_id>/history")
    def resource_history(resource_id: str) -> Any:
        return _serialize_list(coordinator.history_for_resource(resource_id, _current_principal()))

    @app.get("/api/reservations/resource/<resource_id>/availability")
    def resource_availability(resource_id: str) -> Any:
        principal = _current_principal()
        try:
            window_start = _parse_datetime(str(request.args.get("start", "")))
            window_end = _parse_datetime(str(request.args.get("end", "")))
        except ValueError:
            return jsonify({"ok": False, "error": "bad_request", "message": "start/end must be ISO-8601 datetimes."}), 400

        slots = coordinator.availability(resource_id, window_start, window_end, principal)
        return jsonify(
            {
                "ok": True,
                "resource_id": resource_id,
                "window_start": window_start.isoformat(),
                "window_end": window_end.isoformat(),
                "slots": [slot.to_dict() for slot in slots],
                "summary": summarize_availability(slots).to_dict(),
            }
        )

    @app.patch("/api/reservations/<reservation_id>/cancel")
    def cancel_reservation(reservation_id: str) -> Any:
        cancelled = coordinator.cancel(reservation_id, _current_principal())
        return jsonify({"ok": True, "reservation": cancelled.to_dict()})

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False, threaded=True)
