"""
Preview service: read the stored roster and classify an incoming batch.
"""

from __future__ import annotations

import time
from typing import Any, Mapping, Sequence

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from config.monitoring import RosterMonitoring
from roster_app.importer.errors import OrganizationNotFound, RosterImportError
from roster_app.models import Employee, Organization, db
from roster_app.utils.importer import RosterImportSettings

from .batch import prepare_batch, validate_batch_input
from .diff import DiffResult, EmployeeState, compute_diff


class ImportPreviewService:
    """Compute the New/Updated/Transferred/Retired preview without writing."""

    def __init__(self, session: Session | None = None, settings: RosterImportSettings | None = None):
        self.session = session or db.session
        self.settings = settings

    def preview(self, organization_id: Any, rows: Sequence[Mapping[str, Any]]) -> DiffResult:
        settings = self.settings or RosterImportSettings.from_config()
        started = time.perf_counter()
        status = "error"
        try:
            org_id = validate_batch_input(organization_id, rows, max_rows=settings.max_batch_rows)
            if self.session.get(Organization, org_id) is None:
                raise OrganizationNotFound(org_id)

            prepared = prepare_batch(rows, settings)
            incoming_numbers = {record.employee_number for record in prepared.records}
            employees = self._load_employees(org_id, incoming_numbers)

            existing = {employee.employee_number: EmployeeState.from_employee(employee) for employee in employees}
            active_roster = [
                existing[employee.employee_number]
                for employee in employees
                if employee.organization_id == org_id and employee.is_active
            ]
            result = compute_diff(
                prepared.records,
                existing,
                organization_id=org_id,
                active_roster=active_roster,
                excluded=prepared.excluded,
                errors=prepared.row_errors,
            )
            status = "success"
        except RosterImportError:
            status = "rejected"
            raise
        finally:
            RosterMonitoring.record_preview(duration_seconds=time.perf_counter() - started, status=status)

        if has_app_context():
            current_app.logger.info(
                "Roster preview for organization %s: new=%s updated=%s transferred=%s retired=%s excluded=%s",
                org_id,
                len(result.new),
                len(result.updated),
                len(result.transferred),
                len(result.retired),
                len(result.excluded),
                extra={"organization_id": org_id, "preview_summary": result.summary()},
            )
        return result

    def _load_employees(self, organization_id: int, employee_numbers: set[str]) -> list[Employee]:
        # Employee numbers are globally unique, so a record may match someone
        # currently filed under another organization.
        criteria = [Employee.organization_id == organization_id]
        if employee_numbers:
            criteria.append(Employee.employee_number.in_(sorted(employee_numbers)))
        return (
            self.session.query(Employee)
            .options(joinedload(Employee.department), joinedload(Employee.section), joinedload(Employee.course))
            .filter(or_(*criteria))
            .order_by(Employee.id.asc())
            .all()
        )
