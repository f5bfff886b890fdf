"""
Collapse advisory-unit rows that describe the same person.

The HR export lists some executives once per board or committee they sit on,
each time under a different affiliation code and sometimes a different
employee number. Rows in the advisory unit that share a whitespace-insensitive
name or an employee number are treated as one person; exactly one row per
person survives.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .normalize import IncomingRecord

_WHITESPACE = re.compile(r"\s+")

COMPLETENESS_FIELDS = (
    "name_kana",
    "email",
    "phone",
    "position_code",
    "qualification_grade",
    "qualification_grade_code",
    "employment_type",
    "employment_type_code",
    "join_date",
    "birth_date",
)


@dataclass(frozen=True)
class ExcludedDuplicate:
    """A dropped row and the employee number that was kept in its place."""

    employee_number: str
    name: str
    position: str | None
    reason: str
    kept_employee_number: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "employeeId": self.employee_number,
            "name": self.name,
            "position": self.position,
            "reason": self.reason,
            "keptEmployeeId": self.kept_employee_number,
        }


def identity_name(name: str) -> str:
    return _WHITESPACE.sub("", unicodedata.normalize("NFKC", name or ""))


def seniority_rank(position: str | None, keywords: Sequence[str]) -> int:
    """Index of the first keyword found in the position; lower is more senior."""
    if position:
        for index, keyword in enumerate(keywords):
            if keyword and keyword in position:
                return index
    return len(keywords)


def completeness(record: IncomingRecord) -> int:
    return sum(1 for attr in COMPLETENESS_FIELDS if getattr(record, attr) not in (None, ""))


def deduplicate(
    records: Iterable[IncomingRecord],
    *,
    seniority_keywords: Sequence[str] = (),
    advisory_unit_name: str | None = None,
) -> tuple[list[IncomingRecord], list[ExcludedDuplicate]]:
    """
    Return ``(kept_records, exclusions)``.

    Rows outside the advisory unit pass through untouched. Within a group of
    duplicates the most senior position wins, then the most complete row, then
    the row that appeared first. Output preserves the input order of the kept
    rows, so running this on its own output excludes nothing further.
    """
    records = list(records)
    advisory_indexes = [
        index for index, record in enumerate(records) if _in_advisory_unit(record, advisory_unit_name)
    ]

    parent = {index: index for index in advisory_indexes}

    def find(index: int) -> int:
        while parent[index] != index:
            parent[index] = parent[parent[index]]
            index = parent[index]
        return index

    first_seen: dict[tuple[str, str], int] = {}
    for index in advisory_indexes:
        record = records[index]
        for key in (("name", identity_name(record.name)), ("number", record.employee_number)):
            if not key[1]:
                continue
            if key in first_seen:
                root_a, root_b = find(first_seen[key]), find(index)
                if root_a != root_b:
                    parent[max(root_a, root_b)] = min(root_a, root_b)
            else:
                first_seen[key] = index

    groups: dict[int, list[int]] = {}
    for index in advisory_indexes:
        groups.setdefault(find(index), []).append(index)

    dropped: dict[int, int] = {}
    for members in groups.values():
        if len(members) < 2:
            continue
        # min() returns the first minimal element, so ties keep input order
        kept = min(
            members,
            key=lambda i: (seniority_rank(records[i].position, seniority_keywords), -completeness(records[i])),
        )
        for index in members:
            if index != kept:
                dropped[index] = kept

    kept_records: list[IncomingRecord] = []
    exclusions: list[ExcludedDuplicate] = []
    for index, record in enumerate(records):
        if index not in dropped:
            kept_records.append(record)
            continue
        kept_record = records[dropped[index]]
        exclusions.append(
            ExcludedDuplicate(
                employee_number=record.employee_number,
                name=record.name,
                position=record.position,
                reason=f"{advisory_unit_name or '役員・顧問'}の重複（同一人物）: 社員番号 {kept_record.employee_number} を採用",
                kept_employee_number=kept_record.employee_number,
            )
        )
    return kept_records, exclusions


def _in_advisory_unit(record: IncomingRecord, advisory_unit_name: str | None) -> bool:
    if record.is_advisory:
        return True
    return bool(advisory_unit_name) and record.department_name == advisory_unit_name
