"""Roster import pipeline: normalize, deduplicate, diff, apply and undo."""

from __future__ import annotations

from .batch import PreparedBatch, prepare_batch, validate_batch_input
from .dedupe import ExcludedDuplicate, deduplicate
from .diff import DiffResult, EmployeeState, FieldChange, compute_diff
from .executor import ImportExecutor, ImportResult, ImportStatistics
from .hierarchy import HierarchyResolver, ResolvedPlacement
from .ledger import ChangeStatistics, HistoryLedger, generate_batch_id
from .marker import MARKER_KEY, MarkerState, PendingImportMarker
from .normalize import IncomingRecord, NormalizationResult, RowError, normalize_rows
from .preview import ImportPreviewService
from .rollback import CancelStatus, RollbackEngine, RollbackResult

__all__ = [
    "CancelStatus",
    "ChangeStatistics",
    "DiffResult",
    "EmployeeState",
    "ExcludedDuplicate",
    "FieldChange",
    "HierarchyResolver",
    "HistoryLedger",
    "ImportExecutor",
    "ImportPreviewService",
    "ImportResult",
    "ImportStatistics",
    "IncomingRecord",
    "MARKER_KEY",
    "MarkerState",
    "NormalizationResult",
    "PendingImportMarker",
    "PreparedBatch",
    "ResolvedPlacement",
    "RollbackEngine",
    "RollbackResult",
    "RowError",
    "compute_diff",
    "deduplicate",
    "generate_batch_id",
    "normalize_rows",
    "prepare_batch",
    "validate_batch_input",
]
