"""
Roster import blueprint: preview, execute, cancel and history endpoints.
"""

from __future__ import annotations

import json
from datetime import date, datetime, time, timezone
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from roster_app.importer.errors import RosterImportError
from roster_app.importer.pipeline import ImportExecutor, ImportPreviewService, RollbackEngine
from roster_app.importer.pipeline.ledger import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    HistoryLedger,
    snapshot_to_dict,
)
from roster_app.models import AdminLog, ChangeType, Employee, db
from roster_app.utils.importer import is_roster_import_enabled
from roster_app.utils.permissions import get_current_actor_id, import_admin_required

roster_import_blueprint = Blueprint("roster_import", __name__, url_prefix="/api/admin/organization")


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


@roster_import_blueprint.before_request
def _ensure_roster_import_enabled_api():
    if not is_roster_import_enabled(current_app):
        return _json_error("Roster import is disabled.", HTTPStatus.NOT_FOUND)
    return None


@roster_import_blueprint.errorhandler(RosterImportError)
def _handle_roster_import_error(exc: RosterImportError):
    return _json_error(str(exc), exc.status)


def _request_payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object.")
    return payload


def _audit(action: str, details: dict) -> None:
    AdminLog.log_action(
        admin_user_id=current_user.id,
        action=action,
        details=json.dumps(details, ensure_ascii=False),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


@roster_import_blueprint.post("/import/preview")
@import_admin_required
def roster_import_preview():
    try:
        payload = _request_payload()
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    result = ImportPreviewService().preview(payload.get("organizationId"), payload.get("data"))
    return jsonify(result.to_dict()), HTTPStatus.OK


@roster_import_blueprint.post("/import")
@import_admin_required
def roster_import_execute():
    try:
        payload = _request_payload()
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    options = payload.get("options") or {}
    if not isinstance(options, dict):
        return _json_error("options must be an object.", HTTPStatus.BAD_REQUEST)
    mark_missing = options.get("markMissingAsRetired", False)
    if not isinstance(mark_missing, bool):
        return _json_error("options.markMissingAsRetired must be a boolean.", HTTPStatus.BAD_REQUEST)

    result = ImportExecutor().execute(
        payload.get("organizationId"),
        payload.get("data"),
        actor=get_current_actor_id(),
        mark_missing_as_retired=mark_missing,
    )
    _audit(
        "ROSTER_IMPORT",
        {"batchId": result.batch_id, "organizationId": result.organization_id, **result.statistics.to_dict()},
    )
    response = result.to_dict()
    response["success"] = True
    return jsonify(response), HTTPStatus.OK


@roster_import_blueprint.get("/import/cancel")
@import_admin_required
def roster_import_cancel_status():
    return jsonify(RollbackEngine().status().to_dict()), HTTPStatus.OK


@roster_import_blueprint.post("/import/cancel")
@import_admin_required
def roster_import_cancel():
    result = RollbackEngine().cancel(actor=get_current_actor_id())
    _audit("ROSTER_IMPORT_CANCEL", result.to_dict())
    response = result.to_dict()
    response["success"] = True
    return jsonify(response), HTTPStatus.OK


def _parse_limit(raw: str | None) -> int:
    if raw in (None, ""):
        return DEFAULT_QUERY_LIMIT
    try:
        limit = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("limit must be an integer.") from exc
    if limit < 1 or limit > MAX_QUERY_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_QUERY_LIMIT}.")
    return limit


def _parse_instant(raw: str, *, end_of_day: bool = False) -> datetime:
    """Accept ``YYYY-MM-DD`` or a full ISO-8601 timestamp; naive values are UTC."""
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            value = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid date: {raw}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_date_range(args) -> tuple[datetime | None, datetime | None]:
    start_raw = args.get("startDate")
    end_raw = args.get("endDate")
    start = _parse_instant(start_raw) if start_raw else None
    end = _parse_instant(end_raw, end_of_day=True) if end_raw else None
    if start and end and start > end:
        raise ValueError("startDate must not be after endDate.")
    return start, end


@roster_import_blueprint.get("/history")
@import_admin_required
def roster_change_history():
    args = request.args
    ledger = HistoryLedger(db.session)
    try:
        limit = _parse_limit(args.get("limit"))
        batch_id = args.get("batchId")
        entity_type = args.get("entityType")
        entity_id = args.get("entityId")
        change_type = args.get("changeType")

        if batch_id:
            logs = ledger.batch_logs(batch_id, newest_first=True)[:limit]
        elif entity_type and entity_id:
            try:
                logs = ledger.entity_logs(entity_type, int(entity_id), limit=limit)
            except ValueError as exc:
                raise ValueError("entityId must be an integer.") from exc
        elif args.get("startDate") and args.get("endDate"):
            start, end = _parse_date_range(args)
            logs = ledger.logs_by_date_range(start, end, entity_type=entity_type, limit=limit)
        elif change_type:
            try:
                parsed = ChangeType(change_type.upper())
            except ValueError as exc:
                raise ValueError(f"Unknown changeType: {change_type}") from exc
            logs = ledger.logs_by_change_type(parsed, limit=limit)
        else:
            logs = ledger.recent_logs(limit=limit)
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    return jsonify({"logs": [entry.to_dict() for entry in logs], "count": len(logs)}), HTTPStatus.OK


@roster_import_blueprint.get("/history/statistics")
@import_admin_required
def roster_change_statistics():
    try:
        start, end = _parse_date_range(request.args)
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    statistics = HistoryLedger(db.session).change_statistics(start=start, end=end)
    return jsonify(statistics.to_dict()), HTTPStatus.OK


@roster_import_blueprint.get("/employees/<int:employee_id>/history")
@import_admin_required
def roster_employee_history(employee_id: int):
    employee = db.session.get(Employee, employee_id)
    if employee is None:
        return _json_error(f"Employee {employee_id} not found", HTTPStatus.NOT_FOUND)

    try:
        limit = _parse_limit(request.args.get("limit"))
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    ledger = HistoryLedger(db.session)
    payload = {
        "employeeId": employee.employee_number,
        "name": employee.name,
        "isActive": employee.is_active,
        "history": [snapshot_to_dict(snapshot) for snapshot in ledger.timeline(employee.id, limit=limit)],
    }
    before_batch = request.args.get("beforeBatch")
    if before_batch:
        previous = ledger.state_before_batch(employee.id, before_batch)
        payload["stateBeforeBatch"] = snapshot_to_dict(previous) if previous else None
    return jsonify(payload), HTTPStatus.OK
