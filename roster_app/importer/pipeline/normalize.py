"""
Turn raw roster rows into canonical ``IncomingRecord`` values.

Rows may be keyed by the HR export's Japanese headers or by the JSON aliases
declared in the column mapping. Rows missing required values are reported as
``RowError`` entries and never reach the deduplicator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping

from roster_app.importer.mapping import MappingSpec, RosterMappingTransformer

ADVISORY_UNIT_CODE = "9999999"
AFFILIATION_CODE_LENGTH = 7
DEFAULT_POSITION = "一般"

_AFFILIATION_SPLIT = re.compile(r"[\s　]+")


@dataclass(frozen=True)
class IncomingRecord:
    """One normalized roster row."""

    employee_number: str
    name: str
    department_name: str
    row_number: int = 0
    name_kana: str | None = None
    email: str | None = None
    phone: str | None = None
    position: str = DEFAULT_POSITION
    position_code: str | None = None
    qualification_grade: str | None = None
    qualification_grade_code: str | None = None
    employment_type: str | None = None
    employment_type_code: str | None = None
    affiliation_code: str | None = None
    department_code: str | None = None
    section_name: str | None = None
    section_code: str | None = None
    course_name: str | None = None
    course_code: str | None = None
    join_date: date | None = None
    birth_date: date | None = None
    is_advisory: bool = False

    @property
    def unit_names(self) -> tuple[str, str | None, str | None]:
        return (self.department_name, self.section_name, self.course_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "employeeId": self.employee_number,
            "name": self.name,
            "nameKana": self.name_kana,
            "email": self.email,
            "position": self.position,
            "department": self.department_name,
            "section": self.section_name,
            "course": self.course_name,
        }


@dataclass(frozen=True)
class RowError:
    row_number: int
    message: str
    employee_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row_number, "employeeId": self.employee_number, "message": self.message}


@dataclass
class NormalizationResult:
    records: list[IncomingRecord] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)


def is_advisory_code(affiliation_code: str | None, prefix: str) -> bool:
    return bool(affiliation_code and prefix and affiliation_code.startswith(prefix))


def split_affiliation(affiliation: str | None) -> tuple[str | None, str | None, str | None]:
    """Split ``"本部 部 課"`` (ASCII or full-width spaces) into three unit names."""
    parts = [part for part in _AFFILIATION_SPLIT.split((affiliation or "").strip()) if part]
    parts += [None] * (3 - len(parts))
    return parts[0], parts[1], parts[2]


def split_affiliation_code(code: str | None) -> tuple[str | None, str | None, str | None]:
    """Digits 1-2 name the top unit, 3-4 the mid unit and 5-7 the leaf unit."""
    if not code or len(code) != AFFILIATION_CODE_LENGTH or not code.isdigit():
        return None, None, None
    return code[0:2], code[2:4], code[4:7]


def normalize_rows(
    rows: Iterable[Mapping[str, Any]],
    *,
    mapping: MappingSpec,
    advisory_unit_name: str,
    advisory_code_prefix: str,
) -> NormalizationResult:
    """Apply the column mapping and hierarchy parsing to every row."""
    transformer = RosterMappingTransformer(mapping)
    result = NormalizationResult()

    for index, row in enumerate(rows, start=1):
        if not isinstance(row, Mapping):
            result.errors.append(RowError(row_number=index, message="Row must be an object"))
            continue

        transformed = transformer.transform(row)
        values = transformed.canonical
        employee_number = values.get("employee_number")
        if transformed.errors:
            result.errors.append(
                RowError(row_number=index, message="; ".join(transformed.errors), employee_number=employee_number)
            )
            continue

        affiliation_code = values.get("affiliation_code")
        advisory = is_advisory_code(affiliation_code, advisory_code_prefix)

        if advisory:
            department_name, section_name, course_name = advisory_unit_name, None, None
            department_code, section_code, course_code = ADVISORY_UNIT_CODE, None, None
        else:
            if not values.get("affiliation"):
                result.errors.append(
                    RowError(
                        row_number=index,
                        message="Missing required field '所属'",
                        employee_number=employee_number,
                    )
                )
                continue
            department_name, section_name, course_name = split_affiliation(values.get("affiliation"))
            section_name = values.get("section") or section_name
            course_name = values.get("course") or course_name
            department_code, section_code, course_code = split_affiliation_code(affiliation_code)

        result.records.append(
            IncomingRecord(
                employee_number=str(employee_number),
                name=str(values["name"]),
                row_number=index,
                name_kana=values.get("name_kana"),
                email=values.get("email"),
                phone=values.get("phone"),
                position=values.get("position") or DEFAULT_POSITION,
                position_code=values.get("position_code"),
                qualification_grade=values.get("qualification_grade"),
                qualification_grade_code=values.get("qualification_grade_code"),
                employment_type=values.get("employment_type"),
                employment_type_code=values.get("employment_type_code"),
                affiliation_code=affiliation_code,
                department_name=department_name,
                department_code=department_code,
                section_name=section_name,
                section_code=section_code if section_name else None,
                course_name=course_name if section_name else None,
                course_code=course_code if section_name and course_name else None,
                join_date=values.get("join_date"),
                birth_date=values.get("birth_date"),
                is_advisory=advisory,
            )
        )

    return result
