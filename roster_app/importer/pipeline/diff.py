"""
Read-only classification of an incoming batch against the stored roster.

``compute_diff`` is pure: it receives plain ``EmployeeState`` values rather
than ORM rows, touches no session and never reads the clock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping, Sequence

from roster_app.models.employee import join_unit_path

from .dedupe import ExcludedDuplicate
from .normalize import IncomingRecord, RowError

# (attribute, display label) pairs compared for the Updated classification
COMPARABLE_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "氏名"),
    ("name_kana", "氏名（フリガナ）"),
    ("email", "メールアドレス"),
    ("phone", "電話番号"),
    ("position", "役職"),
    ("position_code", "役職コード"),
    ("qualification_grade", "資格等級"),
    ("qualification_grade_code", "資格等級コード"),
    ("employment_type", "雇用区分"),
    ("employment_type_code", "雇用区分コード"),
    ("affiliation_code", "所属コード"),
    ("join_date", "入社年月日"),
    ("birth_date", "生年月日"),
)


@dataclass(frozen=True)
class FieldChange:
    field: str
    label: str
    old: Any
    new: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "label": self.label,
            "old": json_safe(self.old),
            "new": json_safe(self.new),
        }


@dataclass(frozen=True)
class EmployeeState:
    """Snapshot of one stored employee, detached from the session."""

    employee_number: str
    name: str
    is_active: bool
    organization_id: int | None = None
    department_name: str | None = None
    section_name: str | None = None
    course_name: str | None = None
    name_kana: str | None = None
    email: str | None = None
    phone: str | None = None
    position: str | None = None
    position_code: str | None = None
    qualification_grade: str | None = None
    qualification_grade_code: str | None = None
    employment_type: str | None = None
    employment_type_code: str | None = None
    affiliation_code: str | None = None
    join_date: date | None = None
    birth_date: date | None = None

    @classmethod
    def from_employee(cls, employee) -> "EmployeeState":
        return cls(
            employee_number=employee.employee_number,
            name=employee.name,
            is_active=bool(employee.is_active),
            organization_id=employee.organization_id,
            department_name=employee.department.name if employee.department else None,
            section_name=employee.section.name if employee.section else None,
            course_name=employee.course.name if employee.course else None,
            **{attr: getattr(employee, attr) for attr, _ in COMPARABLE_FIELDS if attr != "name"},
        )

    @property
    def unit_names(self) -> tuple[str | None, str | None, str | None]:
        return (self.department_name, self.section_name, self.course_name)

    @property
    def unit_path(self) -> str:
        return join_unit_path(*self.unit_names)


@dataclass(frozen=True)
class UpdatedEmployee:
    record: IncomingRecord
    changes: tuple[FieldChange, ...]

    def to_dict(self) -> dict[str, Any]:
        payload = self.record.to_dict()
        payload["changes"] = [change.to_dict() for change in self.changes]
        return payload


@dataclass(frozen=True)
class TransferredEmployee:
    record: IncomingRecord
    old_path: str
    new_path: str

    def to_dict(self) -> dict[str, Any]:
        payload = self.record.to_dict()
        payload.update({"oldPath": self.old_path, "newPath": self.new_path})
        return payload


@dataclass(frozen=True)
class RetiredEmployee:
    employee_number: str
    name: str
    path: str

    def to_dict(self) -> dict[str, Any]:
        return {"employeeId": self.employee_number, "name": self.name, "path": self.path}


@dataclass
class DiffResult:
    total_records: int
    new: list[IncomingRecord] = field(default_factory=list)
    updated: list[UpdatedEmployee] = field(default_factory=list)
    transferred: list[TransferredEmployee] = field(default_factory=list)
    retired: list[RetiredEmployee] = field(default_factory=list)
    excluded: list[ExcludedDuplicate] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    unchanged: int = 0

    def summary(self) -> dict[str, int]:
        return {
            "totalRecords": self.total_records,
            "new": len(self.new),
            "updated": len(self.updated),
            "transferred": len(self.transferred),
            "retired": len(self.retired),
            "excludedDuplicates": len(self.excluded),
            "unchanged": self.unchanged,
            "errors": len(self.errors),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "newEmployees": [record.to_dict() for record in self.new],
            "updatedEmployees": [item.to_dict() for item in self.updated],
            "transferredEmployees": [item.to_dict() for item in self.transferred],
            "retiredEmployees": [item.to_dict() for item in self.retired],
            "excludedDuplicates": [item.to_dict() for item in self.excluded],
            "errors": [error.to_dict() for error in self.errors],
            "summary": self.summary(),
        }


def json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _comparable(value: Any) -> str:
    return "" if value is None else str(value)


def field_changes(current: Any, record: IncomingRecord) -> list[FieldChange]:
    """Deltas between anything exposing the comparable attributes and a record."""
    changes: list[FieldChange] = []
    for attr, label in COMPARABLE_FIELDS:
        old = getattr(current, attr)
        new = getattr(record, attr)
        if _comparable(old) != _comparable(new):
            changes.append(FieldChange(field=attr, label=label, old=old, new=new))
    return changes


def placement_changed(current_names: Sequence[str | None], record: IncomingRecord) -> bool:
    return tuple(name or "" for name in current_names) != tuple(name or "" for name in record.unit_names)


def compute_diff(
    records: Sequence[IncomingRecord],
    existing: Mapping[str, EmployeeState],
    *,
    organization_id: int | None = None,
    active_roster: Iterable[EmployeeState] = (),
    excluded: Sequence[ExcludedDuplicate] = (),
    errors: Sequence[RowError] = (),
) -> DiffResult:
    """
    Classify deduplicated ``records`` against ``existing`` (keyed by employee number).

    ``active_roster`` lists the organization's active employees; those absent
    from ``records`` are reported as retired. When ``organization_id`` is
    given, a match filed under another organization is reported as moving
    into it even if the unit names are identical.
    """
    result = DiffResult(total_records=len(records), excluded=list(excluded), errors=list(errors))
    seen: set[str] = set()

    for record in records:
        seen.add(record.employee_number)
        state = existing.get(record.employee_number)
        if state is None:
            result.new.append(record)
            continue

        changes = field_changes(state, record)
        if not state.is_active:
            changes.append(FieldChange(field="is_active", label="在籍", old=False, new=True))
        moved = placement_changed(state.unit_names, record)
        if organization_id is not None and state.organization_id not in (None, organization_id):
            changes.append(
                FieldChange(field="organization_id", label="組織", old=state.organization_id, new=organization_id)
            )
            moved = True

        if changes:
            result.updated.append(UpdatedEmployee(record=record, changes=tuple(changes)))
        if moved:
            result.transferred.append(
                TransferredEmployee(
                    record=record,
                    old_path=state.unit_path,
                    new_path=join_unit_path(*record.unit_names),
                )
            )
        if not changes and not moved:
            result.unchanged += 1

    for state in active_roster:
        if state.is_active and state.employee_number not in seen:
            result.retired.append(
                RetiredEmployee(employee_number=state.employee_number, name=state.name, path=state.unit_path)
            )

    return result
