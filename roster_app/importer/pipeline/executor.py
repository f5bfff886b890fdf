"""
Apply a roster batch in one transaction.

Every mutation shares one batch id and one timestamp. Each record runs in its
own SAVEPOINT: a record that fails is rolled back to that savepoint, counted
and reported while the rest of the batch continues. The change log, the
organization-level summary entry and the pending import marker are written
in the same transaction, so either the whole batch becomes visible or none
of it does.
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config.monitoring import RosterMonitoring
from roster_app.importer.errors import (
    ImportTimeoutError,
    OrganizationNotFound,
    PerRecordProcessingError,
    RosterImportError,
    TransactionFailure,
)
from roster_app.models import (
    ChangeType,
    Employee,
    EntityType,
    HistoryChangeType,
    Organization,
    db,
)
from roster_app.utils.importer import RosterImportSettings

from .batch import prepare_batch, validate_batch_input
from .diff import FieldChange, field_changes
from .hierarchy import HierarchyResolver, ResolvedPlacement
from .ledger import HistoryLedger, generate_batch_id, utcnow
from .locking import organization_lock
from .marker import MarkerState, PendingImportMarker
from .normalize import IncomingRecord, RowError

REASON_CREATE = "インポートによる新規登録"
REASON_UPDATE = "インポートによる更新"
REASON_TRANSFER = "インポートによる異動"
REASON_RETIREMENT = "インポートデータに含まれていないため退職処理"

# Fields copied from the record onto the live employee row
MUTABLE_FIELDS = (
    "name",
    "name_kana",
    "email",
    "phone",
    "position",
    "position_code",
    "qualification_grade",
    "qualification_grade_code",
    "employment_type",
    "employment_type_code",
    "affiliation_code",
    "join_date",
    "birth_date",
)

_RECORD_ERRORS = (PerRecordProcessingError, IntegrityError, DataError, ValueError)


@dataclass
class ImportStatistics:
    total_records: int = 0
    created: int = 0
    updated: int = 0
    transferred: int = 0
    unchanged: int = 0
    retired: int = 0
    excluded_duplicates: int = 0
    errors: int = 0
    error_details: list[dict[str, Any]] = field(default_factory=list)

    def add_error(self, employee_number: str | None, message: str, row: int | None = None) -> None:
        self.errors += 1
        self.error_details.append({"employeeId": employee_number, "row": row, "message": message})

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRecords": self.total_records,
            "created": self.created,
            "updated": self.updated,
            "transferred": self.transferred,
            "unchanged": self.unchanged,
            "retired": self.retired,
            "excludedDuplicates": self.excluded_duplicates,
            "errors": self.errors,
            "errorDetails": list(self.error_details),
        }

    def describe(self) -> str:
        return (
            f"インポート完了: 新規{self.created}名, 更新{self.updated}名, 異動{self.transferred}名, "
            f"退職{self.retired}名, 重複除外{self.excluded_duplicates}名, エラー{self.errors}件"
        )


@dataclass
class ImportResult:
    batch_id: str
    organization_id: int
    statistics: ImportStatistics
    imported_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "organizationId": self.organization_id,
            "importedAt": self.imported_at.isoformat(),
            "statistics": self.statistics.to_dict(),
        }


class ImportExecutor:
    """Apply a roster batch to one organization."""

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
        self._timeout_seconds = 0.0
        self._deadline = float("inf")

    def execute(
        self,
        organization_id: Any,
        rows: Sequence[Mapping[str, Any]],
        *,
        actor: str | int | None,
        mark_missing_as_retired: bool = False,
    ) -> ImportResult:
        settings = self.settings or RosterImportSettings.from_config()
        org_id = validate_batch_input(organization_id, rows, max_rows=settings.max_batch_rows)
        actor_id = str(actor) if actor not in (None, "") else "system"

        organization = self.session.get(Organization, org_id)
        if organization is None:
            raise OrganizationNotFound(org_id)

        prepared = prepare_batch(rows, settings)
        now = self.clock()
        batch_id = generate_batch_id(now)
        stats = ImportStatistics(
            total_records=len(prepared.records),
            excluded_duplicates=len(prepared.excluded),
        )
        for row_error in prepared.row_errors:
            stats.add_error(row_error.employee_number, row_error.message, row=row_error.row_number)

        self._timeout_seconds = settings.timeout_seconds
        self._deadline = time.monotonic() + settings.timeout_seconds
        started = time.perf_counter()
        status = "failed"
        try:
            self._apply_statement_timeout(settings.timeout_seconds)
            with organization_lock(self.session, org_id, enabled=settings.org_lock_enabled):
                _, marker_version = self.marker.read()
                seen = self._apply_records(organization, prepared.records, stats, now, batch_id, actor_id)
                if mark_missing_as_retired:
                    self._retire_missing(organization, seen, stats, now, batch_id, actor_id)

                self.ledger.record_change(
                    entity_type=EntityType.ORGANIZATION,
                    entity_id=organization.id,
                    change_type=ChangeType.IMPORT,
                    batch_id=batch_id,
                    actor=actor_id,
                    now=now,
                    description=stats.describe(),
                    extra={"statistics": stats.to_dict(), "markMissingAsRetired": bool(mark_missing_as_retired)},
                )
                self.marker.write(
                    MarkerState(
                        pending=True,
                        batch_id=batch_id,
                        organization_id=organization.id,
                        imported_at=self.clock().isoformat(),
                        imported_by=actor_id,
                        started_at=now.isoformat(),
                    ),
                    expected_version=marker_version,
                )
                self._check_deadline()
                self.session.commit()
            status = "partial" if stats.errors else "success"
        except RosterImportError:
            self.session.rollback()
            self._log_failure(batch_id, org_id)
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            self._log_failure(batch_id, org_id)
            raise TransactionFailure(f"Import {batch_id} failed and was rolled back") from exc
        finally:
            RosterMonitoring.record_batch(
                duration_seconds=time.perf_counter() - started,
                status=status,
                outcomes={
                    "created": stats.created,
                    "updated": stats.updated,
                    "transferred": stats.transferred,
                    "unchanged": stats.unchanged,
                    "retired": stats.retired,
                    "error": stats.errors,
                }
                if status != "failed"
                else None,
            )

        if has_app_context():
            current_app.logger.info(
                (
                    "Roster import %s committed for organization %s "
                    "(created=%s updated=%s transferred=%s unchanged=%s retired=%s excluded=%s errors=%s)"
                ),
                batch_id,
                org_id,
                stats.created,
                stats.updated,
                stats.transferred,
                stats.unchanged,
                stats.retired,
                stats.excluded_duplicates,
                stats.errors,
                extra={"batch_id": batch_id, "organization_id": org_id},
            )
        return ImportResult(batch_id=batch_id, organization_id=org_id, statistics=stats, imported_at=now)

    # ------------------------------------------------------------------
    # Record processing
    # ------------------------------------------------------------------

    def _apply_records(
        self,
        organization: Organization,
        records: Sequence[IncomingRecord],
        stats: ImportStatistics,
        now: datetime,
        batch_id: str,
        actor: str,
    ) -> set[str]:
        """Apply each record in its own SAVEPOINT; returns the employee numbers applied."""
        seen: set[str] = set()
        resolver = HierarchyResolver(organization.id, session=self.session)
        for record in records:
            self._check_deadline()
            checkpoint = resolver.checkpoint()
            try:
                with self.session.begin_nested():
                    outcome = self._apply_record(organization, record, resolver, now, batch_id, actor)
            except _RECORD_ERRORS as exc:
                resolver.discard_since(checkpoint)
                message = _record_error_message(exc)
                stats.add_error(record.employee_number, message, row=record.row_number)
                if has_app_context():
                    current_app.logger.warning(
                        "Roster import %s skipped employee %s: %s",
                        batch_id,
                        record.employee_number,
                        exc,
                        exc_info=True,
                    )
                continue
            setattr(stats, outcome, getattr(stats, outcome) + 1)
            seen.add(record.employee_number)
        return seen

    def _apply_record(
        self,
        organization: Organization,
        record: IncomingRecord,
        resolver: HierarchyResolver,
        now: datetime,
        batch_id: str,
        actor: str,
    ) -> str:
        """Apply one record; returns the statistics field to increment."""
        try:
            placement = resolver.resolve(record)
        except IntegrityError as exc:
            raise PerRecordProcessingError(record.employee_number, "Unable to resolve organizational units") from exc

        employee = self.session.query(Employee).filter(Employee.employee_number == record.employee_number).one_or_none()
        if employee is None:
            return self._create_employee(organization, record, placement, now, batch_id, actor)
        return self._update_employee(organization, employee, record, placement, now, batch_id, actor)

    def _create_employee(
        self,
        organization: Organization,
        record: IncomingRecord,
        placement: ResolvedPlacement,
        now: datetime,
        batch_id: str,
        actor: str,
    ) -> str:
        email = record.email
        if email and self._email_owner(email) is not None:
            self._log_email_conflict(batch_id, record.employee_number, email, kept=None)
            email = None

        employee = Employee(employee_number=record.employee_number, organization_id=organization.id, is_active=True)
        self._copy_record(employee, dataclasses.replace(record, email=email), placement)
        self.session.add(employee)
        self.session.flush()

        self.ledger.append_snapshot(
            employee,
            change_type=HistoryChangeType.CREATE,
            now=now,
            actor=actor,
            batch_id=batch_id,
            reason=REASON_CREATE,
            unit_names=_placement_names(placement),
        )
        self.ledger.record_change(
            entity_type=EntityType.EMPLOYEE,
            entity_id=employee.id,
            change_type=ChangeType.CREATE,
            batch_id=batch_id,
            actor=actor,
            now=now,
            description=f"{employee.name}（{employee.employee_number}）を新規登録: {placement.path}",
            extra={"employeeNumber": employee.employee_number, "newPath": placement.path},
        )
        return "created"

    def _update_employee(
        self,
        organization: Organization,
        employee: Employee,
        record: IncomingRecord,
        placement: ResolvedPlacement,
        now: datetime,
        batch_id: str,
        actor: str,
    ) -> str:
        email = record.email
        if email and email != employee.email:
            owner = self._email_owner(email)
            if owner is not None and owner.id != employee.id:
                self._log_email_conflict(batch_id, record.employee_number, email, kept=employee.email)
                email = employee.email
        effective = dataclasses.replace(record, email=email)

        changes: list[FieldChange] = field_changes(employee, effective)
        if not employee.is_active:
            changes.append(FieldChange(field="is_active", label="在籍", old=False, new=True))
        if employee.organization_id != organization.id:
            changes.append(
                FieldChange(field="organization_id", label="組織", old=employee.organization_id, new=organization.id)
            )
        moved = employee.placement != placement.ids
        if not changes and not moved:
            return "unchanged"

        old_path = employee.unit_path
        self.ledger.close_current(employee.id, now)
        self._copy_record(employee, effective, placement)
        employee.organization_id = organization.id
        employee.is_active = True
        self.session.flush()

        change_type = HistoryChangeType.TRANSFER if moved else HistoryChangeType.UPDATE
        self.ledger.append_snapshot(
            employee,
            change_type=change_type,
            now=now,
            actor=actor,
            batch_id=batch_id,
            reason=REASON_TRANSFER if moved else REASON_UPDATE,
            unit_names=_placement_names(placement),
        )
        extra = {"employeeNumber": employee.employee_number}
        if moved:
            extra.update({"oldPath": old_path, "newPath": placement.path})
        self.ledger.record_change(
            entity_type=EntityType.EMPLOYEE,
            entity_id=employee.id,
            change_type=ChangeType(change_type.value),
            batch_id=batch_id,
            actor=actor,
            now=now,
            description=(
                f"{employee.name}（{employee.employee_number}）異動: {old_path} → {placement.path}"
                if moved
                else f"{employee.name}（{employee.employee_number}）更新: "
                + ", ".join(change.label for change in changes)
            ),
            changes=changes,
            extra=extra,
        )
        return "transferred" if moved else "updated"

    def _retire_missing(
        self,
        organization: Organization,
        seen: set[str],
        stats: ImportStatistics,
        now: datetime,
        batch_id: str,
        actor: str,
    ) -> None:
        candidates = (
            self.session.query(Employee)
            .options(joinedload(Employee.department), joinedload(Employee.section), joinedload(Employee.course))
            .filter(Employee.organization_id == organization.id, Employee.is_active.is_(True))
            .order_by(Employee.id.asc())
            .all()
        )
        for employee in candidates:
            if employee.employee_number in seen:
                continue
            self._check_deadline()
            try:
                with self.session.begin_nested():
                    self._retire(employee, now, batch_id, actor)
            except _RECORD_ERRORS as exc:
                stats.add_error(employee.employee_number, _record_error_message(exc))
                if has_app_context():
                    current_app.logger.warning(
                        "Roster import %s could not retire employee %s",
                        batch_id,
                        employee.employee_number,
                        exc_info=True,
                    )
                continue
            stats.retired += 1

    def _retire(self, employee: Employee, now: datetime, batch_id: str, actor: str) -> None:
        unit_names = (
            employee.department.name if employee.department else None,
            employee.section.name if employee.section else None,
            employee.course.name if employee.course else None,
        )
        self.ledger.close_current(employee.id, now)
        employee.is_active = False
        self.session.flush()
        self.ledger.append_snapshot(
            employee,
            change_type=HistoryChangeType.RETIREMENT,
            now=now,
            actor=actor,
            batch_id=batch_id,
            reason=REASON_RETIREMENT,
            unit_names=unit_names,
        )
        self.ledger.record_change(
            entity_type=EntityType.EMPLOYEE,
            entity_id=employee.id,
            change_type=ChangeType.RETIREMENT,
            batch_id=batch_id,
            actor=actor,
            now=now,
            description=f"{employee.name}（{employee.employee_number}）退職処理",
            changes=[FieldChange(field="is_active", label="在籍", old=True, new=False)],
            extra={"employeeNumber": employee.employee_number},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _copy_record(employee: Employee, record: IncomingRecord, placement: ResolvedPlacement) -> None:
        for attr in MUTABLE_FIELDS:
            setattr(employee, attr, getattr(record, attr))
        employee.department_id, employee.section_id, employee.course_id = placement.ids

    def _email_owner(self, email: str) -> Employee | None:
        return self.session.query(Employee).filter(Employee.email == email).first()

    @staticmethod
    def _log_email_conflict(batch_id: str, employee_number: str, email: str, kept: str | None) -> None:
        if has_app_context():
            current_app.logger.info(
                "Roster import %s: email %s already belongs to another employee; %s keeps %s",
                batch_id,
                email,
                employee_number,
                kept or "no email",
            )

    def _apply_statement_timeout(self, timeout_seconds: float) -> None:
        if self.session.get_bind().dialect.name == "postgresql":
            self.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))

    def _check_deadline(self) -> None:
        if time.monotonic() > self._deadline:
            raise ImportTimeoutError(self._timeout_seconds)

    @staticmethod
    def _log_failure(batch_id: str, organization_id: int) -> None:
        if has_app_context():
            current_app.logger.error(
                "Roster import %s for organization %s rolled back",
                batch_id,
                organization_id,
                exc_info=True,
                extra={"batch_id": batch_id, "organization_id": organization_id},
            )


def _placement_names(placement: ResolvedPlacement) -> tuple[str, str | None, str | None]:
    return (
        placement.department.name,
        placement.section.name if placement.section else None,
        placement.course.name if placement.course else None,
    )


def _record_error_message(exc: Exception) -> str:
    if isinstance(exc, PerRecordProcessingError):
        return exc.detail
    if isinstance(exc, IntegrityError):
        return "Conflicts with an existing record"
    if isinstance(exc, DataError):
        return "Value rejected by the database"
    return str(exc)
