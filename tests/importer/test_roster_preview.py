import pytest

from roster_app.importer.errors import ImportValidationError, OrganizationNotFound
from roster_app.importer.pipeline import ImportPreviewService
from roster_app.models import ChangeLogEntry, Department, Employee, EmployeeHistory, Organization, db


def test_preview_does_not_write(test_organization, seed_employee, roster_row):
    seed_employee("E010", "異動 十郎", "Sales")

    result = ImportPreviewService().preview(
        test_organization.id,
        [roster_row("E010", "異動 十郎", "Sales West"), roster_row("E011", "新人", "New Dept")],
    )

    assert result.summary()["transferred"] == 1
    assert result.summary()["new"] == 1
    assert Department.query.filter_by(name="New Dept").count() == 0
    assert Employee.query.count() == 1
    assert EmployeeHistory.query.count() == 1
    assert ChangeLogEntry.query.count() == 0


def test_preview_matches_employees_filed_under_other_organizations(test_organization, roster_row):
    other = Organization(name="Other", slug="other")
    db.session.add(other)
    db.session.flush()
    department = Department(organization_id=other.id, name="営業部")
    db.session.add(department)
    db.session.flush()
    db.session.add(
        Employee(
            employee_number="E500",
            organization_id=other.id,
            name="出向 五百",
            department_id=department.id,
            position="一般",
        )
    )
    db.session.add(
        Employee(
            employee_number="E501",
            organization_id=other.id,
            name="他社 五百一",
            department_id=department.id,
            position="一般",
        )
    )
    db.session.commit()

    result = ImportPreviewService().preview(test_organization.id, [roster_row("E500", "出向 五百", "営業部")])

    assert result.summary()["new"] == 0
    assert result.summary()["unchanged"] == 0
    # Identical unit names under another organization still count as a move
    assert [item.record.employee_number for item in result.transferred] == ["E500"]
    assert result.transferred[0].old_path == result.transferred[0].new_path == "営業部"
    change = result.updated[0].changes[0]
    assert (change.field, change.old, change.new) == ("organization_id", other.id, test_organization.id)
    # Active employees of other organizations are never proposed for retirement
    assert result.retired == []


def test_preview_reports_row_errors_and_duplicates(test_organization, roster_row):
    rows = [
        roster_row("E900", "顧問 一郎", "", 所属コード="9999991", 役職="顧問"),
        roster_row("E901", "顧問一郎", "", 所属コード="9999992", 役職="取締役"),
        roster_row("", "番号なし", "営業部"),
    ]

    payload = ImportPreviewService().preview(test_organization.id, rows).to_dict()

    assert payload["summary"]["excludedDuplicates"] == 1
    assert payload["excludedDuplicates"][0]["employeeId"] == "E900"
    assert payload["excludedDuplicates"][0]["keptEmployeeId"] == "E901"
    assert payload["summary"]["errors"] == 1
    assert payload["errors"][0]["row"] == 3
    assert payload["summary"]["new"] == 1


def test_preview_validates_input(test_organization, roster_row):
    service = ImportPreviewService()

    with pytest.raises(ImportValidationError):
        service.preview(None, [roster_row("E1", "一", "営業部")])
    with pytest.raises(ImportValidationError):
        service.preview(test_organization.id, "E1,一,営業部")
    with pytest.raises(OrganizationNotFound):
        service.preview(4242, [roster_row("E1", "一", "営業部")])
