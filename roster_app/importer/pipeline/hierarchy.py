"""
Resolve or create the department/section/course units a record points at.

The resolver lives for one transaction. Its caches are keyed by name within
the parent unit so a batch of hundreds of rows sharing a handful of units
issues one lookup per unit.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from roster_app.models import Course, Department, Section, db
from roster_app.models.employee import join_unit_path

from .normalize import IncomingRecord


@dataclass(frozen=True)
class ResolvedPlacement:
    department: Department
    section: Section | None = None
    course: Course | None = None

    @property
    def ids(self) -> tuple[int, int | None, int | None]:
        return (
            self.department.id,
            self.section.id if self.section else None,
            self.course.id if self.course else None,
        )

    @property
    def path(self) -> str:
        return join_unit_path(
            self.department.name,
            self.section.name if self.section else None,
            self.course.name if self.course else None,
        )


class HierarchyResolver:
    """Request-scoped lookup-or-create for the three unit tiers."""

    def __init__(self, organization_id: int, session: Session | None = None):
        self.organization_id = organization_id
        self.session = session or db.session
        self._departments: dict[str, Department] = {}
        self._sections: dict[tuple[int, str], Section] = {}
        self._courses: dict[tuple[int, str], Course] = {}
        self.created = {"departments": 0, "sections": 0, "courses": 0}
        self._created_units: list = []

    def resolve(self, record: IncomingRecord) -> ResolvedPlacement:
        department = self._department(record.department_name, record.department_code)
        section = None
        course = None
        if record.section_name:
            section = self._section(department, record.section_name, record.section_code)
            if record.course_name:
                course = self._course(section, record.course_name, record.course_code)
        return ResolvedPlacement(department=department, section=section, course=course)

    def checkpoint(self) -> int:
        return len(self._created_units)

    def discard_since(self, checkpoint: int) -> None:
        """Forget units created after ``checkpoint``; their savepoint was rolled back."""
        discarded = self._created_units[checkpoint:]
        del self._created_units[checkpoint:]
        for unit in discarded:
            self.created[unit.__tablename__] -= 1
        for cache in (self._departments, self._sections, self._courses):
            for key, cached in list(cache.items()):
                if any(cached is unit for unit in discarded):
                    del cache[key]

    # ------------------------------------------------------------------

    def _department(self, name: str, code: str | None) -> Department:
        cached = self._departments.get(name)
        if cached is not None:
            return cached
        department = (
            self.session.query(Department)
            .filter(Department.organization_id == self.organization_id, Department.name == name)
            .order_by(Department.id.asc())
            .first()
        )
        if department is None:
            code = self._free_code(Department, Department.organization_id, self.organization_id, code)
            department = Department(organization_id=self.organization_id, name=name, code=code)
            self.session.add(department)
            self.session.flush()
            self.created["departments"] += 1
            self._created_units.append(department)
            self._log_created("department", department.name, department.code)
        self._departments[name] = department
        return department

    def _section(self, department: Department, name: str, code: str | None) -> Section:
        key = (department.id, name)
        cached = self._sections.get(key)
        if cached is not None:
            return cached
        section = (
            self.session.query(Section)
            .filter(Section.department_id == department.id, Section.name == name)
            .order_by(Section.id.asc())
            .first()
        )
        if section is None:
            code = self._free_code(Section, Section.department_id, department.id, code)
            section = Section(department_id=department.id, name=name, code=code)
            self.session.add(section)
            self.session.flush()
            self.created["sections"] += 1
            self._created_units.append(section)
            self._log_created("section", f"{department.name}/{name}", section.code)
        self._sections[key] = section
        return section

    def _course(self, section: Section, name: str, code: str | None) -> Course:
        key = (section.id, name)
        cached = self._courses.get(key)
        if cached is not None:
            return cached
        course = (
            self.session.query(Course)
            .filter(Course.section_id == section.id, Course.name == name)
            .order_by(Course.id.asc())
            .first()
        )
        if course is None:
            code = self._free_code(Course, Course.section_id, section.id, code)
            course = Course(section_id=section.id, name=name, code=code)
            self.session.add(course)
            self.session.flush()
            self.created["courses"] += 1
            self._created_units.append(course)
            self._log_created("course", f"{section.name}/{name}", course.code)
        self._courses[key] = course
        return course

    def _free_code(self, model, parent_column, parent_id: int, code: str | None) -> str | None:
        """Codes are unique per parent; a code already taken by another name is dropped."""
        if not code:
            return None
        taken = self.session.query(model.id).filter(parent_column == parent_id, model.code == code).first()
        if taken is None:
            return code
        if has_app_context():
            current_app.logger.warning(
                "Unit code %s already used under parent %s; creating %s without a code",
                code,
                parent_id,
                model.__tablename__,
            )
        return None

    @staticmethod
    def _log_created(kind: str, label: str, code: str | None) -> None:
        if has_app_context():
            current_app.logger.info("Created %s %s (code=%s)", kind, label, code)
