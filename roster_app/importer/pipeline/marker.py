"""
The pending import marker: a keyed singleton naming the one rollback-eligible batch.

The marker is a ``SystemSetting`` row. Every write is a compare-and-swap on
the row's ``version`` so an import and a rollback that interleave cannot both
win; the loser raises ``StaleImportMarker`` and its transaction rolls back.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roster_app.importer.errors import NoPendingImport, StaleImportMarker
from roster_app.models import SystemSetting, db

MARKER_KEY = "pending_import_marker"


@dataclass(frozen=True)
class MarkerState:
    pending: bool
    batch_id: str | None = None
    organization_id: int | None = None
    imported_at: str | None = None
    imported_by: str | None = None
    started_at: str | None = None
    cancelled_at: str | None = None
    cancelled_by: str | None = None
    original_batch_id: str | None = None

    @classmethod
    def from_value(cls, value: dict[str, Any] | None) -> "MarkerState":
        value = value or {}
        return cls(
            pending=bool(value.get("pending")),
            batch_id=value.get("batchId"),
            organization_id=value.get("organizationId"),
            imported_at=value.get("importedAt"),
            imported_by=value.get("importedBy"),
            started_at=value.get("startedAt"),
            cancelled_at=value.get("cancelledAt"),
            cancelled_by=value.get("cancelledBy"),
            original_batch_id=value.get("originalBatchId"),
        )

    @property
    def is_pending(self) -> bool:
        return self.pending and bool(self.batch_id)

    @property
    def window_start(self) -> datetime | None:
        """Earliest instant at which the batch may have written snapshots."""
        raw = self.started_at or self.imported_at
        return datetime.fromisoformat(raw) if raw else None

    def to_value(self) -> dict[str, Any]:
        if self.pending:
            return {
                "pending": True,
                "batchId": self.batch_id,
                "organizationId": self.organization_id,
                "importedAt": self.imported_at,
                "importedBy": self.imported_by,
                "startedAt": self.started_at,
            }
        return {
            "pending": False,
            "cancelledAt": self.cancelled_at,
            "cancelledBy": self.cancelled_by,
            "originalBatchId": self.original_batch_id,
            "organizationId": self.organization_id,
        }


class PendingImportMarker:
    """Read and compare-and-swap the persisted marker."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def read(self) -> tuple[MarkerState | None, int | None]:
        """Return ``(state, version)``; both are ``None`` when no marker was ever written."""
        setting = (
            self.session.query(SystemSetting)
            .filter(SystemSetting.key == MARKER_KEY)
            .execution_options(populate_existing=True)
            .one_or_none()
        )
        if setting is None:
            return None, None
        return MarkerState.from_value(setting.get_value()), setting.version

    def require_pending(self) -> tuple[MarkerState, int]:
        state, version = self.read()
        if state is None:
            raise NoPendingImport("No pending import found")
        if not state.is_pending:
            raise NoPendingImport()
        return state, version

    def write(self, state: MarkerState, *, expected_version: int | None) -> int:
        """
        Persist ``state`` if the marker is still at ``expected_version``.

        ``expected_version=None`` means the caller saw no marker row at all.
        Returns the new version.
        """
        if expected_version is None:
            setting = SystemSetting(key=MARKER_KEY, version=1, description="Rollback-eligible roster import")
            setting.set_value(state.to_value())
            try:
                with self.session.begin_nested():
                    self.session.add(setting)
            except IntegrityError as exc:
                raise StaleImportMarker("Pending import marker was created by a concurrent operation") from exc
            return 1

        result = self.session.execute(
            update(SystemSetting)
            .where(SystemSetting.key == MARKER_KEY, SystemSetting.version == expected_version)
            .values(value=json.dumps(state.to_value(), ensure_ascii=False), version=SystemSetting.version + 1)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise StaleImportMarker(
                f"Pending import marker changed since version {expected_version}; retry the operation"
            )
        return expected_version + 1
