# roster_app/models/__init__.py
"""
Database models package
"""

from .admin import AdminLog
from .base import BaseModel, db
from .employee import Employee, EmployeeHistory, HistoryChangeType
from .importer import ChangeLogEntry, ChangeType, EntityType
from .organization import Course, Department, Organization, OrganizationStatus, Section
from .system_setting import SystemSetting
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    "AdminLog",
    "Organization",
    "OrganizationStatus",
    "Department",
    "Section",
    "Course",
    "Employee",
    "EmployeeHistory",
    "HistoryChangeType",
    "ChangeLogEntry",
    "ChangeType",
    "EntityType",
    "SystemSetting",
]
