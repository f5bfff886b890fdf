"""
Validation and normalization shared by preview and execute.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from roster_app.importer.errors import ImportValidationError
from roster_app.importer.mapping import MappingSpec, get_active_roster_mapping
from roster_app.utils.importer import RosterImportSettings

from .dedupe import ExcludedDuplicate, deduplicate
from .normalize import IncomingRecord, RowError, normalize_rows


@dataclass
class PreparedBatch:
    records: list[IncomingRecord]
    excluded: list[ExcludedDuplicate] = field(default_factory=list)
    row_errors: list[RowError] = field(default_factory=list)
    raw_count: int = 0


def validate_batch_input(organization_id: Any, rows: Any, *, max_rows: int) -> int:
    """
    Reject malformed requests before any transaction opens.

    Returns the organization id coerced to ``int``.
    """
    if organization_id in (None, ""):
        raise ImportValidationError("organizationId is required")
    try:
        resolved_id = int(organization_id)
    except (TypeError, ValueError) as exc:
        raise ImportValidationError("organizationId must be an integer") from exc
    if isinstance(rows, (str, bytes)) or not isinstance(rows, Sequence):
        raise ImportValidationError("data must be an array of row objects")
    if not rows:
        raise ImportValidationError("data must contain at least one row")
    if len(rows) > max_rows:
        raise ImportValidationError(f"data contains {len(rows)} rows; the limit is {max_rows}")
    return resolved_id


def prepare_batch(
    rows: Sequence[Mapping[str, Any]],
    settings: RosterImportSettings,
    *,
    mapping: MappingSpec | None = None,
) -> PreparedBatch:
    """Normalize rows and drop advisory-unit duplicates."""
    normalized = normalize_rows(
        rows,
        mapping=mapping or get_active_roster_mapping(),
        advisory_unit_name=settings.advisory_unit_name,
        advisory_code_prefix=settings.advisory_code_prefix,
    )
    records, excluded = deduplicate(
        normalized.records,
        seniority_keywords=settings.senior_position_keywords,
        advisory_unit_name=settings.advisory_unit_name,
    )
    return PreparedBatch(records=records, excluded=excluded, row_errors=normalized.errors, raw_count=len(rows))
