"""
SQLAlchemy models for the roster importer's batch bookkeeping.

``ChangeLogEntry`` is the batch-scoped index the rollback engine walks; it
records that an entity changed, while ``EmployeeHistory`` holds the full state.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column

from ..base import BaseModel, db


class ChangeType(str, enum.Enum):
    """Kinds of change recorded in the batch change log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    TRANSFER = "TRANSFER"
    RETIREMENT = "RETIREMENT"
    IMPORT = "IMPORT"


class EntityType(str, enum.Enum):
    EMPLOYEE = "employee"
    ORGANIZATION = "organization"


class ChangeLogEntry(BaseModel):
    """Batch-indexed change history for importer-driven mutations."""

    __tablename__ = "change_log"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    entity_id: Mapped[int] = mapped_column(db.Integer, nullable=False, index=True)
    change_type: Mapped[ChangeType] = mapped_column(
        Enum(ChangeType, name="change_log_type_enum"),
        nullable=False,
        index=True,
    )
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    changed_by: Mapped[str] = mapped_column(db.String(64), nullable=False, default="system")
    changed_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, index=True)
    metadata_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    __table_args__ = (
        Index("idx_change_log_entity", "entity_type", "entity_id"),
        Index("idx_change_log_batch_time", "batch_id", "changed_at"),
        CheckConstraint("entity_type <> ''", name="ck_change_log_entity_type_non_empty"),
    )

    def __repr__(self) -> str:
        return f"<ChangeLogEntry {self.batch_id} {self.entity_type}:{self.entity_id} {self.change_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "changeType": self.change_type.value if self.change_type else None,
            "description": self.description,
            "changedBy": self.changed_by,
            "changedAt": self.changed_at.isoformat() if self.changed_at else None,
            "changes": (self.metadata_json or {}).get("changes", []),
        }
