# conftest.py

import os
import tempfile
import uuid
from datetime import datetime, timezone

import pytest
from werkzeug.security import generate_password_hash

# Set testing environment BEFORE importing app so TestingConfig is selected
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import create_app  # noqa: E402
from roster_app.models import (  # noqa: E402
    Course,
    Department,
    Employee,
    EmployeeHistory,
    HistoryChangeType,
    Organization,
    Section,
    User,
    db,
)

SEED_ACTOR = "seed"
SEED_TIME = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application with an isolated database"""
    db_fd, temp_db = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex[:8]}.db")

    try:
        test_app = create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
                "SQLALCHEMY_ECHO": False,
                "SECRET_KEY": "test-secret-key-for-testing-only",
                "MONITORING_ENABLED": False,
                "ENABLE_FILE_LOGGING": False,
                "ENABLE_CONSOLE_LOGGING": False,
                "LOG_LEVEL": "DEBUG",
                "ROSTER_IMPORT_ENABLED": True,
                "ROSTER_ORG_LOCK_ENABLED": False,
            }
        )

        with test_app.app_context():
            db.drop_all()
            db.create_all()
            yield test_app
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
    finally:
        # Always close and remove the temporary database file, even on error
        try:
            os.close(db_fd)
        except OSError:
            pass
        for suffix in ("", "-wal", "-shm"):
            try:
                if os.path.exists(temp_db + suffix):
                    os.unlink(temp_db + suffix)
            except OSError:
                pass


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def admin_user(app):
    """Persisted administrator allowed to run imports"""
    user = User(
        username="admin",
        email="admin@example.com",
        password_hash=generate_password_hash("adminpass123"),
        first_name="Admin",
        last_name="User",
        role="ADMIN",
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def test_user(app):
    """Persisted regular user without import privileges"""
    user = User(
        username="testuser",
        email="test@example.com",
        password_hash=generate_password_hash("testpass123"),
        first_name="Test",
        last_name="User",
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def _login(client, user):
    with client.session_transaction() as session:
        session["_user_id"] = str(user.id)
        session["_fresh"] = True


@pytest.fixture
def admin_client(client, admin_user):
    """Test client with an administrator session"""
    _login(client, admin_user)
    return client


@pytest.fixture
def user_client(client, test_user):
    """Test client logged in as a user without import privileges"""
    _login(client, test_user)
    return client


@pytest.fixture
def test_organization(app):
    """Create a test organization fixture"""
    org = Organization(name="Test Company", slug="test-company", description="Roster import target", is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def make_units(test_organization):
    """Get or create a department/section/course chain by name"""

    def _make(department_name, section_name=None, course_name=None, organization=None):
        org = organization or test_organization
        department = Department.query.filter_by(organization_id=org.id, name=department_name).first()
        if department is None:
            department = Department(organization_id=org.id, name=department_name)
            db.session.add(department)
            db.session.flush()
        section = course = None
        if section_name:
            section = Section.query.filter_by(department_id=department.id, name=section_name).first()
            if section is None:
                section = Section(department_id=department.id, name=section_name)
                db.session.add(section)
                db.session.flush()
            if course_name:
                course = Course.query.filter_by(section_id=section.id, name=course_name).first()
                if course is None:
                    course = Course(section_id=section.id, name=course_name)
                    db.session.add(course)
                    db.session.flush()
        db.session.commit()
        return department, section, course

    return _make


@pytest.fixture
def seed_employee(test_organization, make_units):
    """Create an employee together with the CREATE snapshot a prior import would have written"""

    def _seed(employee_number, name, department_name, section_name=None, course_name=None, **fields):
        department, section, course = make_units(department_name, section_name, course_name)
        employee = Employee(
            employee_number=employee_number,
            organization_id=test_organization.id,
            name=name,
            department_id=department.id,
            section_id=section.id if section else None,
            course_id=course.id if course else None,
            position=fields.pop("position", "一般"),
            is_active=fields.pop("is_active", True),
            join_date=fields.pop("join_date", None),
            **fields,
        )
        db.session.add(employee)
        db.session.flush()
        snapshot = EmployeeHistory(
            employee_id=employee.id,
            organization_id=employee.organization_id,
            valid_from=SEED_TIME,
            valid_to=None,
            employee_number=employee.employee_number,
            name=employee.name,
            name_kana=employee.name_kana,
            email=employee.email,
            phone=employee.phone,
            position=employee.position,
            position_code=employee.position_code,
            qualification_grade=employee.qualification_grade,
            qualification_grade_code=employee.qualification_grade_code,
            employment_type=employee.employment_type,
            employment_type_code=employee.employment_type_code,
            affiliation_code=employee.affiliation_code,
            join_date=employee.join_date,
            birth_date=employee.birth_date,
            is_active=employee.is_active,
            department_id=employee.department_id,
            section_id=employee.section_id,
            course_id=employee.course_id,
            department_name=department.name,
            section_name=section.name if section else None,
            course_name=course.name if course else None,
            change_type=HistoryChangeType.CREATE,
            change_reason="seed",
            batch_id=None,
            changed_by=SEED_ACTOR,
            changed_at=SEED_TIME,
        )
        db.session.add(snapshot)
        db.session.commit()
        return employee

    return _seed


@pytest.fixture
def roster_row():
    """Build a roster row keyed by the HR export's headers"""

    def _row(employee_number, name, affiliation, **extra):
        row = {"社員番号": employee_number, "氏名": name, "所属": affiliation}
        row.update(extra)
        return row

    return _row


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test names"""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        if "slow" in item.name:
            item.add_marker(pytest.mark.slow)
        if "unit" in item.nodeid:
            item.add_marker(pytest.mark.unit)
