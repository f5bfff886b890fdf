import json

import pytest

from roster_app.models import AdminLog, Employee

API = "/api/admin/organization"


def _import(client, organization_id, rows, **options):
    return client.post(f"{API}/import", json={"organizationId": organization_id, "data": rows, "options": options})


@pytest.mark.parametrize(
    "method,path",
    [
        ("post", "/import/preview"),
        ("post", "/import"),
        ("get", "/import/cancel"),
        ("post", "/import/cancel"),
        ("get", "/history"),
        ("get", "/history/statistics"),
        ("get", "/employees/1/history"),
    ],
)
def test_endpoints_require_login(client, method, path):
    response = getattr(client, method)(f"{API}{path}")

    assert response.status_code == 401
    assert response.get_json() == {"error": "Authentication required."}


def test_endpoints_require_admin(user_client, test_organization, roster_row):
    response = user_client.post(
        f"{API}/import/preview",
        json={"organizationId": test_organization.id, "data": [roster_row("E1", "一", "営業部")]},
    )

    assert response.status_code == 403
    assert response.get_json()["error"] == "Administrator privileges required."


def test_disabled_importer_answers_404(app, admin_client):
    app.config["ROSTER_IMPORT_ENABLED"] = False

    response = admin_client.get(f"{API}/import/cancel")

    assert response.status_code == 404
    assert response.get_json()["error"] == "Roster import is disabled."


def test_preview_classifies_batch(admin_client, test_organization, seed_employee, roster_row):
    seed_employee("E010", "異動 十郎", "Sales")
    seed_employee("E020", "退職 二十", "Sales")

    response = admin_client.post(
        f"{API}/import/preview",
        json={
            "organizationId": test_organization.id,
            "data": [roster_row("E007", "新人 七郎", "Sales"), roster_row("E010", "異動 十郎", "Sales West")],
        },
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["summary"]["new"] == 1
    assert payload["summary"]["transferred"] == 1
    assert payload["summary"]["retired"] == 1
    assert payload["transferredEmployees"][0]["oldPath"] == "Sales"
    assert payload["transferredEmployees"][0]["newPath"] == "Sales/West"
    assert payload["retiredEmployees"] == [{"employeeId": "E020", "name": "退職 二十", "path": "Sales"}]
    assert Employee.query.count() == 2


@pytest.mark.parametrize(
    "body,status",
    [
        ("not json", 400),
        ({"organizationId": 1}, 400),
        ({"organizationId": 1, "data": []}, 400),
        ({"organizationId": 9999, "data": [{"社員番号": "E1", "氏名": "一", "所属": "営業部"}]}, 404),
    ],
)
def test_preview_rejects_bad_requests(admin_client, test_organization, body, status):
    if isinstance(body, str):
        response = admin_client.post(f"{API}/import/preview", data=body, content_type="text/plain")
    else:
        response = admin_client.post(f"{API}/import/preview", json=body)

    assert response.status_code == status
    assert "error" in response.get_json()


def test_import_commits_and_audits(admin_client, admin_user, test_organization, roster_row):
    response = _import(admin_client, test_organization.id, [roster_row("E007", "新人 七郎", "営業部")])

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["batchId"].startswith("BATCH-")
    assert payload["statistics"]["created"] == 1

    employee = Employee.query.filter_by(employee_number="E007").one()
    assert employee.is_active

    audit = AdminLog.query.filter_by(action="ROSTER_IMPORT").one()
    assert audit.admin_user_id == admin_user.id
    assert json.loads(audit.details)["batchId"] == payload["batchId"]


def test_import_rejects_non_boolean_option(admin_client, test_organization, roster_row):
    response = _import(
        admin_client, test_organization.id, [roster_row("E007", "新人", "営業部")], markMissingAsRetired="yes"
    )

    assert response.status_code == 400
    assert Employee.query.count() == 0


def test_import_retires_missing_when_requested(admin_client, test_organization, seed_employee, roster_row):
    seed_employee("E020", "退職 二十", "営業部")

    response = _import(
        admin_client, test_organization.id, [roster_row("E021", "新人", "営業部")], markMissingAsRetired=True
    )

    assert response.get_json()["statistics"]["retired"] == 1
    assert not Employee.query.filter_by(employee_number="E020").one().is_active


def test_cancel_flow(admin_client, admin_user, test_organization, roster_row):
    assert admin_client.get(f"{API}/import/cancel").get_json() == {
        "canCancel": False,
        "message": "No import history found",
        "lastImport": None,
    }

    batch_id = _import(admin_client, test_organization.id, [roster_row("E007", "新人", "営業部")]).get_json()["batchId"]
    status = admin_client.get(f"{API}/import/cancel").get_json()
    assert status["canCancel"] is True
    assert status["batchId"] == batch_id
    assert status["importedBy"] == str(admin_user.id)

    response = admin_client.post(f"{API}/import/cancel")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["newEmployeesDeleted"] == 1
    assert Employee.query.count() == 0
    assert AdminLog.query.filter_by(action="ROSTER_IMPORT_CANCEL").count() == 1

    after = admin_client.get(f"{API}/import/cancel").get_json()
    assert after["canCancel"] is False
    assert after["lastImport"]["cancelledBy"] == str(admin_user.id)

    again = admin_client.post(f"{API}/import/cancel")
    assert again.status_code == 404
    assert again.get_json()["error"] == "No pending import to cancel"


def test_history_filters(admin_client, test_organization, roster_row):
    first = _import(admin_client, test_organization.id, [roster_row("E001", "一", "営業部")]).get_json()
    _import(admin_client, test_organization.id, [roster_row("E001", "一", "開発部"), roster_row("E002", "二", "営業部")])
    employee_id = Employee.query.filter_by(employee_number="E001").one().id

    by_batch = admin_client.get(f"{API}/history", query_string={"batchId": first["batchId"]}).get_json()
    assert by_batch["count"] == 2
    assert {log["batchId"] for log in by_batch["logs"]} == {first["batchId"]}

    by_entity = admin_client.get(
        f"{API}/history", query_string={"entityType": "employee", "entityId": employee_id}
    ).get_json()
    assert [log["changeType"] for log in by_entity["logs"]] == ["TRANSFER", "CREATE"]

    by_type = admin_client.get(f"{API}/history", query_string={"changeType": "import"}).get_json()
    assert by_type["count"] == 2

    in_range = admin_client.get(
        f"{API}/history", query_string={"startDate": "2000-01-01", "endDate": "2999-12-31"}
    ).get_json()
    assert in_range["count"] == 5
    out_of_range = admin_client.get(
        f"{API}/history", query_string={"startDate": "2000-01-01", "endDate": "2000-12-31"}
    ).get_json()
    assert out_of_range["count"] == 0

    recent = admin_client.get(f"{API}/history", query_string={"limit": 2}).get_json()
    assert recent["count"] == 2


@pytest.mark.parametrize(
    "query",
    [
        {"limit": 0},
        {"limit": 501},
        {"limit": "many"},
        {"changeType": "MERGE"},
        {"entityType": "employee", "entityId": "x"},
        {"startDate": "2024-02-01", "endDate": "2024-01-01"},
        {"startDate": "yesterday", "endDate": "2024-01-01"},
    ],
)
def test_history_rejects_bad_queries(admin_client, query):
    response = admin_client.get(f"{API}/history", query_string=query)

    assert response.status_code == 400


def test_history_statistics(admin_client, test_organization, roster_row):
    _import(admin_client, test_organization.id, [roster_row("E001", "一", "営業部"), roster_row("E002", "二", "営業部")])

    payload = admin_client.get(f"{API}/history/statistics").get_json()

    assert payload == {
        "totalChanges": 3,
        "changesByType": {"CREATE": 2, "IMPORT": 1},
        "changesByEntity": {"employee": 2, "organization": 1},
    }
    empty = admin_client.get(
        f"{API}/history/statistics", query_string={"startDate": "2000-01-01", "endDate": "2000-01-31"}
    ).get_json()
    assert empty["totalChanges"] == 0


def test_employee_history_with_state_before_batch(admin_client, test_organization, seed_employee, roster_row):
    employee = seed_employee("E010", "異動 十郎", "Sales")
    batch_id = _import(admin_client, test_organization.id, [roster_row("E010", "異動 十郎", "Sales West")]).get_json()[
        "batchId"
    ]

    response = admin_client.get(
        f"{API}/employees/{employee.id}/history", query_string={"beforeBatch": batch_id, "limit": 10}
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["employeeId"] == "E010"
    assert payload["isActive"] is True
    assert [entry["changeType"] for entry in payload["history"]] == ["TRANSFER", "CREATE"]
    assert payload["history"][0]["validTo"] is None
    assert payload["stateBeforeBatch"]["path"] == "Sales"
    assert payload["stateBeforeBatch"]["changeType"] == "CREATE"


def test_employee_history_unknown_employee(admin_client):
    response = admin_client.get(f"{API}/employees/999/history")

    assert response.status_code == 404
