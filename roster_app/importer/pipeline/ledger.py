"""
History ledger: employee validity-interval snapshots plus the batch change log.

Writers (the import executor and the rollback engine) go through
``HistoryLedger`` so snapshot rows are always full copies of the employee and
at most one snapshot per employee stays open. The query helpers back the
history API and the "state before batch" lookups.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from roster_app.models import (
    ChangeLogEntry,
    ChangeType,
    Employee,
    EmployeeHistory,
    EntityType,
    HistoryChangeType,
    db,
)

from .diff import FieldChange, json_safe

MAX_QUERY_LIMIT = 500
DEFAULT_QUERY_LIMIT = 50

SNAPSHOT_FIELDS = (
    "employee_number",
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
    "is_active",
    "department_id",
    "section_id",
    "course_id",
)

_BATCH_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_batch_id(now: datetime | None = None) -> str:
    """``BATCH-<yyyymmddHHMMSSfff>-<6 random chars>``."""
    moment = now or utcnow()
    stamp = moment.strftime("%Y%m%d%H%M%S") + f"{moment.microsecond // 1000:03d}"
    suffix = "".join(secrets.choice(_BATCH_SUFFIX_ALPHABET) for _ in range(6))
    return f"BATCH-{stamp}-{suffix}"


@dataclass(frozen=True)
class ChangeStatistics:
    total_changes: int
    by_type: dict[str, int]
    by_entity: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {"totalChanges": self.total_changes, "changesByType": self.by_type, "changesByEntity": self.by_entity}


class HistoryLedger:
    """Append and query employee snapshots and change-log entries."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def close_current(self, employee_id: int, now: datetime) -> int:
        """Set ``valid_to`` on the employee's open snapshot(s); returns rows closed."""
        result = self.session.execute(
            update(EmployeeHistory)
            .where(EmployeeHistory.employee_id == employee_id, EmployeeHistory.valid_to.is_(None))
            .values(valid_to=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def append_snapshot(
        self,
        employee: Employee,
        *,
        change_type: HistoryChangeType,
        now: datetime,
        actor: str,
        batch_id: str | None,
        reason: str | None = None,
        unit_names: Sequence[str | None] = (None, None, None),
    ) -> EmployeeHistory:
        """Copy the employee's live fields into a new open snapshot."""
        department_name, section_name, course_name = (list(unit_names) + [None, None, None])[:3]
        snapshot = EmployeeHistory(
            employee_id=employee.id,
            organization_id=employee.organization_id,
            valid_from=now,
            valid_to=None,
            department_name=department_name,
            section_name=section_name,
            course_name=course_name,
            change_type=change_type,
            change_reason=reason,
            batch_id=batch_id,
            changed_by=actor,
            changed_at=now,
            **{attr: getattr(employee, attr) for attr in SNAPSHOT_FIELDS},
        )
        self.session.add(snapshot)
        return snapshot

    def record_change(
        self,
        *,
        entity_type: EntityType,
        entity_id: int,
        change_type: ChangeType,
        batch_id: str | None,
        actor: str,
        now: datetime,
        description: str | None = None,
        changes: Iterable[FieldChange] = (),
        extra: dict[str, Any] | None = None,
    ) -> ChangeLogEntry:
        metadata: dict[str, Any] = dict(extra or {})
        serialized = [_serialize_change(change) for change in changes]
        if serialized:
            metadata["changes"] = serialized
        entry = ChangeLogEntry(
            batch_id=batch_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            change_type=change_type,
            description=description,
            changed_by=actor,
            changed_at=now,
            metadata_json=metadata or None,
        )
        self.session.add(entry)
        return entry

    # ------------------------------------------------------------------
    # Change log queries
    # ------------------------------------------------------------------

    def batch_logs(self, batch_id: str, *, newest_first: bool = False) -> list[ChangeLogEntry]:
        query = self.session.query(ChangeLogEntry).filter(ChangeLogEntry.batch_id == batch_id)
        if newest_first:
            query = query.order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.id.desc())
        else:
            query = query.order_by(ChangeLogEntry.changed_at.asc(), ChangeLogEntry.id.asc())
        return query.all()

    def count_batch_logs(self, batch_id: str) -> int:
        return self.session.query(func.count(ChangeLogEntry.id)).filter(ChangeLogEntry.batch_id == batch_id).scalar()

    def delete_batch_logs(self, batch_id: str) -> int:
        return (
            self.session.query(ChangeLogEntry)
            .filter(ChangeLogEntry.batch_id == batch_id)
            .delete(synchronize_session=False)
        )

    def entity_logs(
        self, entity_type: EntityType | str, entity_id: int, *, limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[ChangeLogEntry]:
        return (
            self.session.query(ChangeLogEntry)
            .filter(
                ChangeLogEntry.entity_type == _entity_value(entity_type),
                ChangeLogEntry.entity_id == entity_id,
            )
            .order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.id.desc())
            .limit(clamp_limit(limit))
            .all()
        )

    def logs_by_date_range(
        self,
        start: datetime,
        end: datetime,
        *,
        entity_type: EntityType | str | None = None,
        limit: int = MAX_QUERY_LIMIT,
    ) -> list[ChangeLogEntry]:
        query = self.session.query(ChangeLogEntry).filter(
            ChangeLogEntry.changed_at >= start,
            ChangeLogEntry.changed_at <= end,
        )
        if entity_type:
            query = query.filter(ChangeLogEntry.entity_type == _entity_value(entity_type))
        return (
            query.order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.id.desc())
            .limit(clamp_limit(limit))
            .all()
        )

    def logs_by_change_type(self, change_type: ChangeType, *, limit: int = DEFAULT_QUERY_LIMIT) -> list[ChangeLogEntry]:
        return (
            self.session.query(ChangeLogEntry)
            .filter(ChangeLogEntry.change_type == change_type)
            .order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.id.desc())
            .limit(clamp_limit(limit))
            .all()
        )

    def recent_logs(self, *, limit: int = DEFAULT_QUERY_LIMIT) -> list[ChangeLogEntry]:
        return (
            self.session.query(ChangeLogEntry)
            .order_by(ChangeLogEntry.changed_at.desc(), ChangeLogEntry.id.desc())
            .limit(clamp_limit(limit))
            .all()
        )

    def change_statistics(self, *, start: datetime | None = None, end: datetime | None = None) -> ChangeStatistics:
        predicates = []
        if start is not None:
            predicates.append(ChangeLogEntry.changed_at >= start)
        if end is not None:
            predicates.append(ChangeLogEntry.changed_at <= end)

        by_type_rows = (
            self.session.query(ChangeLogEntry.change_type, func.count(ChangeLogEntry.id))
            .filter(*predicates)
            .group_by(ChangeLogEntry.change_type)
            .all()
        )
        by_entity_rows = (
            self.session.query(ChangeLogEntry.entity_type, func.count(ChangeLogEntry.id))
            .filter(*predicates)
            .group_by(ChangeLogEntry.entity_type)
            .all()
        )
        by_type = {change_type.value: count for change_type, count in by_type_rows}
        by_entity = {entity_type: count for entity_type, count in by_entity_rows}
        return ChangeStatistics(total_changes=sum(by_type.values()), by_type=by_type, by_entity=by_entity)

    # ------------------------------------------------------------------
    # Snapshot queries
    # ------------------------------------------------------------------

    def timeline(self, employee_id: int, *, limit: int = DEFAULT_QUERY_LIMIT) -> list[EmployeeHistory]:
        return (
            self.session.query(EmployeeHistory)
            .filter(EmployeeHistory.employee_id == employee_id)
            .order_by(EmployeeHistory.valid_from.desc(), EmployeeHistory.id.desc())
            .limit(clamp_limit(limit))
            .all()
        )

    def current_snapshots(self, employee_id: int) -> list[EmployeeHistory]:
        return (
            self.session.query(EmployeeHistory)
            .filter(EmployeeHistory.employee_id == employee_id, EmployeeHistory.valid_to.is_(None))
            .all()
        )

    def latest_snapshot(self, employee_id: int) -> EmployeeHistory | None:
        return (
            self.session.query(EmployeeHistory)
            .filter(EmployeeHistory.employee_id == employee_id)
            .order_by(EmployeeHistory.valid_from.desc(), EmployeeHistory.id.desc())
            .first()
        )

    def snapshot_as_of(self, employee_id: int, instant: datetime) -> EmployeeHistory | None:
        """Snapshot whose ``[valid_from, valid_to)`` interval contains ``instant``."""
        return (
            self.session.query(EmployeeHistory)
            .filter(
                EmployeeHistory.employee_id == employee_id,
                EmployeeHistory.valid_from <= instant,
                (EmployeeHistory.valid_to.is_(None)) | (EmployeeHistory.valid_to > instant),
            )
            .order_by(EmployeeHistory.valid_from.desc(), EmployeeHistory.id.desc())
            .first()
        )

    def state_before_batch(self, employee_id: int, batch_id: str) -> EmployeeHistory | None:
        """
        Snapshot that was current right before ``batch_id`` first touched the employee.

        ``None`` when the batch never touched the employee or created it.
        """
        first_in_batch = (
            self.session.query(EmployeeHistory)
            .filter(EmployeeHistory.employee_id == employee_id, EmployeeHistory.batch_id == batch_id)
            .order_by(EmployeeHistory.valid_from.asc(), EmployeeHistory.id.asc())
            .first()
        )
        if first_in_batch is None or first_in_batch.change_type == HistoryChangeType.CREATE:
            return None
        return (
            self.session.query(EmployeeHistory)
            .filter(
                EmployeeHistory.employee_id == employee_id,
                EmployeeHistory.id != first_in_batch.id,
                (EmployeeHistory.valid_from < first_in_batch.valid_from)
                | (
                    (EmployeeHistory.valid_from == first_in_batch.valid_from)
                    & (EmployeeHistory.id < first_in_batch.id)
                ),
            )
            .order_by(EmployeeHistory.valid_from.desc(), EmployeeHistory.id.desc())
            .first()
        )

    def snapshots_written_since(self, employee_id: int, *, actor: str, since: datetime) -> list[EmployeeHistory]:
        """Snapshots an actor appended for the employee at or after ``since``."""
        return (
            self.session.query(EmployeeHistory)
            .filter(
                EmployeeHistory.employee_id == employee_id,
                EmployeeHistory.changed_by == actor,
                EmployeeHistory.changed_at >= since,
            )
            .order_by(EmployeeHistory.valid_from.desc(), EmployeeHistory.id.desc())
            .all()
        )


def clamp_limit(limit: int | None) -> int:
    if not limit or limit < 1:
        return DEFAULT_QUERY_LIMIT
    return min(int(limit), MAX_QUERY_LIMIT)


def snapshot_to_dict(snapshot: EmployeeHistory) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "employeeId": snapshot.employee_number,
        "name": snapshot.name,
        "nameKana": snapshot.name_kana,
        "email": snapshot.email,
        "position": snapshot.position,
        "path": snapshot.unit_path,
        "isActive": snapshot.is_active,
        "changeType": snapshot.change_type.value if snapshot.change_type else None,
        "changeReason": snapshot.change_reason,
        "batchId": snapshot.batch_id,
        "changedBy": snapshot.changed_by,
        "validFrom": snapshot.valid_from.isoformat() if snapshot.valid_from else None,
        "validTo": snapshot.valid_to.isoformat() if snapshot.valid_to else None,
    }


def _entity_value(entity_type: EntityType | str) -> str:
    return entity_type.value if isinstance(entity_type, EntityType) else str(entity_type).lower()


def _serialize_change(change: FieldChange) -> dict[str, Any]:
    return {"field": change.field, "old": json_safe(change.old), "new": json_safe(change.new)}
