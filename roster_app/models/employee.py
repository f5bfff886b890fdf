"""
Employee roster and its validity-interval history.

``EmployeeHistory`` rows are only ever written by the roster importer and its
rollback path. Each row carries a full copy of the employee's fields plus the
unit names at that instant, so a rollback never needs to replay deltas.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class HistoryChangeType(str, enum.Enum):
    """Reason a history snapshot was appended."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    TRANSFER = "TRANSFER"
    RETIREMENT = "RETIREMENT"


class Employee(BaseModel):
    """Live, denormalized state of one employee."""

    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    employee_number: Mapped[str] = mapped_column(db.String(50), unique=True, nullable=False, index=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    name_kana: Mapped[str | None] = mapped_column(db.String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), unique=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    position: Mapped[str] = mapped_column(db.String(100), nullable=False, default="一般")
    position_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    qualification_grade: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    qualification_grade_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    employment_type: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    employment_type_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    affiliation_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False, index=True)
    section_id: Mapped[int | None] = mapped_column(ForeignKey("sections.id"), nullable=True, index=True)
    course_id: Mapped[int | None] = mapped_column(ForeignKey("courses.id"), nullable=True, index=True)
    join_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    birth_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True, index=True)

    organization = relationship("Organization")
    department = relationship("Department", foreign_keys=[department_id])
    section = relationship("Section", foreign_keys=[section_id])
    course = relationship("Course", foreign_keys=[course_id])

    __table_args__ = (Index("idx_employee_org_active", "organization_id", "is_active"),)

    def __repr__(self) -> str:
        return f"<Employee {self.employee_number} {self.name}>"

    @property
    def placement(self) -> tuple[int | None, int | None, int | None]:
        return (self.department_id, self.section_id, self.course_id)

    @property
    def unit_path(self) -> str:
        """``Top/Mid/Leaf`` unit names with trailing empty segments trimmed."""
        names = [
            self.department.name if self.department else None,
            self.section.name if self.section else None,
            self.course.name if self.course else None,
        ]
        return join_unit_path(*names)


class EmployeeHistory(BaseModel):
    """One validity interval of an employee; ``valid_to`` is null while current."""

    __tablename__ = "employee_history"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), nullable=False, index=True)
    organization_id: Mapped[int] = mapped_column(db.Integer, nullable=False, index=True)
    valid_from: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    employee_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    name_kana: Mapped[str | None] = mapped_column(db.String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    position: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    position_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    qualification_grade: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    qualification_grade_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    employment_type: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    employment_type_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    affiliation_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    join_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    birth_date: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    department_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    department_name: Mapped[str | None] = mapped_column(db.String(200), nullable=True)
    section_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    section_name: Mapped[str | None] = mapped_column(db.String(200), nullable=True)
    course_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    course_name: Mapped[str | None] = mapped_column(db.String(200), nullable=True)

    change_type: Mapped[HistoryChangeType] = mapped_column(
        Enum(HistoryChangeType, name="history_change_type_enum"),
        nullable=False,
    )
    change_reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    batch_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    changed_by: Mapped[str] = mapped_column(db.String(64), nullable=False, default="system")
    changed_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False)

    employee = relationship("Employee")

    __table_args__ = (
        Index("idx_employee_history_current", "employee_id", "valid_to"),
        Index("idx_employee_history_actor_time", "employee_id", "changed_by", "changed_at"),
    )

    def __repr__(self) -> str:
        return f"<EmployeeHistory {self.employee_number} {self.change_type} {self.valid_from}>"

    @property
    def unit_path(self) -> str:
        return join_unit_path(self.department_name, self.section_name, self.course_name)


def join_unit_path(*names: str | None) -> str:
    parts = [name or "" for name in names]
    while parts and not parts[-1]:
        parts.pop()
    return "/".join(parts)
