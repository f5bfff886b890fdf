# roster_app/models/organization.py

import enum

from sqlalchemy import Enum, Index

from .base import BaseModel, db


class OrganizationStatus(str, enum.Enum):
    """Publication state of an organization chart"""

    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    PUBLISHED = "PUBLISHED"


class Organization(BaseModel):
    """Company whose roster is maintained through imports"""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    # Publication workflow; reset to DRAFT whenever an import is cancelled
    status = db.Column(
        Enum(OrganizationStatus, name="organization_status_enum"),
        default=OrganizationStatus.DRAFT,
        nullable=False,
        index=True,
    )
    publish_at = db.Column(db.DateTime(timezone=True), nullable=True)
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)

    departments = db.relationship(
        "Department", back_populates="organization", cascade="all, delete-orphan", order_by="Department.id"
    )

    def __repr__(self):
        return f"<Organization {self.name}>"

    def reset_to_draft(self):
        """Drop any scheduled or completed publication"""
        self.status = OrganizationStatus.DRAFT
        self.publish_at = None
        self.published_at = None


class Department(BaseModel):
    """Top tier of the organizational hierarchy"""

    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(20), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("employees.id", use_alter=True), nullable=True)

    organization = db.relationship("Organization", back_populates="departments")
    sections = db.relationship("Section", back_populates="department", order_by="Section.id")

    __table_args__ = (
        Index("idx_department_org_name", "organization_id", "name"),
        db.UniqueConstraint("organization_id", "code", name="_department_org_code_uc"),
    )

    def __repr__(self):
        return f"<Department {self.name}>"


class Section(BaseModel):
    """Middle tier, always attached to a department"""

    __tablename__ = "sections"

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(20), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("employees.id", use_alter=True), nullable=True)

    department = db.relationship("Department", back_populates="sections")
    courses = db.relationship("Course", back_populates="section", order_by="Course.id")

    __table_args__ = (
        Index("idx_section_department_name", "department_id", "name"),
        db.UniqueConstraint("department_id", "code", name="_section_department_code_uc"),
    )

    def __repr__(self):
        return f"<Section {self.name}>"


class Course(BaseModel):
    """Leaf tier, always attached to a section"""

    __tablename__ = "courses"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(db.Integer, db.ForeignKey("sections.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(20), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("employees.id", use_alter=True), nullable=True)

    section = db.relationship("Section", back_populates="courses")

    __table_args__ = (
        Index("idx_course_section_name", "section_id", "name"),
        db.UniqueConstraint("section_id", "code", name="_course_section_code_uc"),
    )

    def __repr__(self):
        return f"<Course {self.name}>"
