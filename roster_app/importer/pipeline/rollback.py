"""
Undo the pending roster import.

Only the batch named by the pending import marker can be cancelled. Each
touched employee is restored according to the first change the batch
recorded for it: creations are deleted outright, retirements are
reactivated and updates or transfers are rewound to the snapshot that was
current before the batch. Everything happens in one transaction.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from flask import current_app, has_app_context
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.monitoring import RosterMonitoring
from roster_app.importer.errors import RollbackIntegrityGap, RosterImportError, TransactionFailure
from roster_app.models import (
    ChangeLogEntry,
    ChangeType,
    Course,
    Department,
    Employee,
    EmployeeHistory,
    EntityType,
    Organization,
    Section,
    db,
)
from roster_app.utils.importer import RosterImportSettings

from .ledger import SNAPSHOT_FIELDS, HistoryLedger, utcnow
from .locking import organization_lock
from .marker import MarkerState, PendingImportMarker


@dataclass
class RollbackResult:
    batch_id: str
    change_logs_deleted: int = 0
    employees_affected: int = 0
    new_employees_deleted: int = 0
    employees_restored: int = 0
    employees_reactivated: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "changeLogsDeleted": self.change_logs_deleted,
            "employeesAffected": self.employees_affected,
            "newEmployeesDeleted": self.new_employees_deleted,
            "employeesRestored": self.employees_restored,
            "employeesReactivated": self.employees_reactivated,
        }


@dataclass
class CancelStatus:
    """Answer to "can the last import be cancelled?"; never mutates anything."""

    can_cancel: bool
    batch_id: str | None = None
    imported_at: str | None = None
    imported_by: str | None = None
    change_log_count: int = 0
    message: str | None = None
    last_import: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.can_cancel:
            return {
                "canCancel": True,
                "batchId": self.batch_id,
                "importedAt": self.imported_at,
                "importedBy": self.imported_by,
                "changeLogCount": self.change_log_count,
            }
        return {"canCancel": False, "message": self.message, "lastImport": self.last_import}


class RollbackEngine:
    def __init__(
        self,
        session: Session | None = None,
        settings: RosterImportSettings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session or db.session
        self.settings = settings
        self.clock = clock
        self.ledger = HistoryLedger(self.session)
        self.marker = PendingImportMarker(self.session)

    def status(self) -> CancelStatus:
        state, _ = self.marker.read()
        if state is None:
            return CancelStatus(can_cancel=False, message="No import history found")
        if not state.is_pending:
            last_import = None
            if state.cancelled_at:
                last_import = {"cancelledAt": state.cancelled_at, "cancelledBy": state.cancelled_by}
            return CancelStatus(can_cancel=False, message="No pending import to cancel", last_import=last_import)
        return CancelStatus(
            can_cancel=True,
            batch_id=state.batch_id,
            imported_at=state.imported_at,
            imported_by=state.imported_by,
            change_log_count=self.ledger.count_batch_logs(state.batch_id),
        )

    def cancel(self, *, actor: str | int | None) -> RollbackResult:
        """Roll back the pending batch; raises ``NoPendingImport`` when there is none."""
        settings = self.settings or RosterImportSettings.from_config()
        actor_id = str(actor) if actor not in (None, "") else "system"
        started = time.perf_counter()
        status = "failed"
        try:
            state, version = self.marker.require_pending()
            with organization_lock(self.session, state.organization_id or 0, enabled=settings.org_lock_enabled):
                result = self._rollback(state, version, actor_id)
                self.session.commit()
            status = "success"
        except RosterImportError:
            self.session.rollback()
            status = "rejected"
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            if has_app_context():
                current_app.logger.error("Roster import rollback failed", exc_info=True)
            raise TransactionFailure("Rollback failed; the pending import is unchanged") from exc
        finally:
            RosterMonitoring.record_rollback(duration_seconds=time.perf_counter() - started, status=status)

        if has_app_context():
            current_app.logger.info(
                (
                    "Roster import %s cancelled by %s "
                    "(logs=%s affected=%s deleted=%s restored=%s reactivated=%s)"
                ),
                result.batch_id,
                actor_id,
                result.change_logs_deleted,
                result.employees_affected,
                result.new_employees_deleted,
                result.employees_restored,
                result.employees_reactivated,
                extra={"batch_id": result.batch_id, "organization_id": state.organization_id},
            )
        return result

    def _rollback(self, state: MarkerState, version: int, actor: str) -> RollbackResult:
        batch_id = state.batch_id
        result = RollbackResult(batch_id=batch_id)
        window_start = state.window_start
        importer = state.imported_by or actor

        logs = self.ledger.batch_logs(batch_id, newest_first=True)
        first_change: dict[int, ChangeLogEntry] = {}
        # Newest first, so the last assignment per id is the oldest entry
        for entry in logs:
            if entry.entity_type == EntityType.EMPLOYEE.value:
                first_change[entry.entity_id] = entry
        result.employees_affected = len(first_change)

        for employee_id, entry in first_change.items():
            employee = self.session.get(Employee, employee_id)
            if employee is None:
                continue
            if entry.change_type == ChangeType.CREATE:
                self._delete_created(employee)
                result.new_employees_deleted += 1
            elif entry.change_type == ChangeType.RETIREMENT:
                self._reactivate(employee, importer, window_start)
                result.employees_reactivated += 1
            else:
                self._restore(employee, importer, window_start)
                result.employees_restored += 1

        result.change_logs_deleted = self.ledger.delete_batch_logs(batch_id)
        self.marker.write(
            MarkerState(
                pending=False,
                organization_id=state.organization_id,
                cancelled_at=self.clock().isoformat(),
                cancelled_by=actor,
                original_batch_id=batch_id,
            ),
            expected_version=version,
        )
        if state.organization_id is not None:
            organization = self.session.get(Organization, state.organization_id)
            if organization is not None:
                organization.reset_to_draft()
        self.session.flush()
        return result

    def _delete_created(self, employee: Employee) -> None:
        for model in (Department, Section, Course):
            self.session.execute(
                update(model)
                .where(model.manager_id == employee.id)
                .values(manager_id=None)
                .execution_options(synchronize_session="fetch")
            )
        self.session.query(EmployeeHistory).filter(EmployeeHistory.employee_id == employee.id).delete(
            synchronize_session=False
        )
        self.session.delete(employee)
        self.session.flush()

    def _discard_batch_snapshots(self, employee: Employee, importer: str, window_start: datetime | None) -> None:
        if window_start is None:
            return
        for snapshot in self.ledger.snapshots_written_since(employee.id, actor=importer, since=window_start):
            self.session.delete(snapshot)
        self.session.flush()

    def _reactivate(self, employee: Employee, importer: str, window_start: datetime | None) -> None:
        self._discard_batch_snapshots(employee, importer, window_start)
        employee.is_active = True
        previous = self.ledger.latest_snapshot(employee.id)
        if previous is not None:
            previous.valid_to = None
        elif has_app_context():
            current_app.logger.warning(
                "Reactivated employee %s has no snapshot preceding the cancelled batch",
                employee.employee_number,
            )
        self.session.flush()

    def _restore(self, employee: Employee, importer: str, window_start: datetime | None) -> None:
        self._discard_batch_snapshots(employee, importer, window_start)
        previous = self.ledger.latest_snapshot(employee.id)
        if previous is None:
            raise RollbackIntegrityGap(employee.id, employee.employee_number)
        previous.valid_to = None
        for attr in SNAPSHOT_FIELDS:
            setattr(employee, attr, getattr(previous, attr))
        employee.organization_id = previous.organization_id
        self.session.flush()
