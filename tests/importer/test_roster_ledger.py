import re
from datetime import datetime, timedelta, timezone

from roster_app.importer.pipeline.diff import FieldChange
from roster_app.importer.pipeline.ledger import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    HistoryLedger,
    clamp_limit,
    generate_batch_id,
)
from roster_app.models import ChangeType, EmployeeHistory, EntityType, HistoryChangeType, db

T0 = datetime(2025, 1, 10, 8, 30, 15, 123000, tzinfo=timezone.utc)


def test_generate_batch_id_format():
    batch_id = generate_batch_id(T0)

    assert re.fullmatch(r"BATCH-20250110083015123-[a-z0-9]{6}", batch_id)
    assert generate_batch_id(T0) != batch_id


def test_clamp_limit_bounds():
    assert clamp_limit(None) == DEFAULT_QUERY_LIMIT
    assert clamp_limit(0) == DEFAULT_QUERY_LIMIT
    assert clamp_limit(10_000) == MAX_QUERY_LIMIT
    assert clamp_limit(5) == 5


def test_close_then_append_keeps_one_open_snapshot(seed_employee):
    employee = seed_employee("E100", "履歴 太郎", "営業部")
    ledger = HistoryLedger(db.session)

    assert ledger.close_current(employee.id, T0) == 1
    employee.position = "主任"
    ledger.append_snapshot(
        employee,
        change_type=HistoryChangeType.UPDATE,
        now=T0,
        actor="7",
        batch_id="BATCH-X",
        reason="インポートによる更新",
        unit_names=("営業部", None, None),
    )
    db.session.commit()

    current = ledger.current_snapshots(employee.id)
    assert len(current) == 1
    assert current[0].position == "主任"
    assert current[0].change_type == HistoryChangeType.UPDATE
    timeline = ledger.timeline(employee.id)
    assert [snapshot.change_type for snapshot in timeline] == [HistoryChangeType.UPDATE, HistoryChangeType.CREATE]
    assert timeline[1].valid_to is not None


def test_snapshot_as_of_and_state_before_batch(seed_employee):
    employee = seed_employee("E101", "時点 花子", "営業部")
    ledger = HistoryLedger(db.session)
    ledger.close_current(employee.id, T0)
    employee.position = "課長"
    ledger.append_snapshot(employee, change_type=HistoryChangeType.UPDATE, now=T0, actor="7", batch_id="BATCH-Y")
    db.session.commit()

    before = ledger.snapshot_as_of(employee.id, T0 - timedelta(days=1))
    after = ledger.snapshot_as_of(employee.id, T0 + timedelta(days=1))
    assert before.position == "一般"
    assert after.position == "課長"

    previous = ledger.state_before_batch(employee.id, "BATCH-Y")
    assert previous.change_type == HistoryChangeType.CREATE
    assert ledger.state_before_batch(employee.id, "BATCH-UNKNOWN") is None


def test_record_change_serializes_deltas(test_organization):
    ledger = HistoryLedger(db.session)
    entry = ledger.record_change(
        entity_type=EntityType.EMPLOYEE,
        entity_id=1,
        change_type=ChangeType.UPDATE,
        batch_id="BATCH-Z",
        actor="7",
        now=T0,
        description="更新",
        changes=[FieldChange(field="position", label="役職", old="一般", new="主任")],
        extra={"employeeNumber": "E1"},
    )
    db.session.commit()

    payload = entry.to_dict()
    assert payload["entityType"] == "employee"
    assert payload["changeType"] == "UPDATE"
    assert payload["changes"] == [{"field": "position", "old": "一般", "new": "主任"}]
    assert entry.metadata_json["employeeNumber"] == "E1"


def _log(ledger, batch_id, change_type, entity_id, at, entity_type=EntityType.EMPLOYEE):
    ledger.record_change(
        entity_type=entity_type,
        entity_id=entity_id,
        change_type=change_type,
        batch_id=batch_id,
        actor="7",
        now=at,
    )


def test_change_log_queries(test_organization):
    ledger = HistoryLedger(db.session)
    _log(ledger, "B1", ChangeType.CREATE, 1, T0)
    _log(ledger, "B1", ChangeType.TRANSFER, 2, T0 + timedelta(seconds=1))
    _log(ledger, "B1", ChangeType.IMPORT, test_organization.id, T0 + timedelta(seconds=2), EntityType.ORGANIZATION)
    _log(ledger, "B2", ChangeType.RETIREMENT, 1, T0 + timedelta(days=3))
    db.session.commit()

    assert [entry.entity_id for entry in ledger.batch_logs("B1")][:2] == [1, 2]
    assert ledger.batch_logs("B1", newest_first=True)[0].change_type == ChangeType.IMPORT
    assert ledger.count_batch_logs("B1") == 3
    assert [entry.batch_id for entry in ledger.entity_logs("employee", 1)] == ["B2", "B1"]
    assert len(ledger.logs_by_date_range(T0, T0 + timedelta(days=1))) == 3
    assert len(ledger.logs_by_date_range(T0, T0 + timedelta(days=1), entity_type="organization")) == 1
    assert [entry.batch_id for entry in ledger.logs_by_change_type(ChangeType.RETIREMENT)] == ["B2"]
    assert ledger.recent_logs(limit=1)[0].batch_id == "B2"

    statistics = ledger.change_statistics(start=T0, end=T0 + timedelta(days=1)).to_dict()
    assert statistics["totalChanges"] == 3
    assert statistics["changesByType"] == {"CREATE": 1, "TRANSFER": 1, "IMPORT": 1}
    assert statistics["changesByEntity"] == {"employee": 2, "organization": 1}

    assert ledger.delete_batch_logs("B1") == 3
    db.session.commit()
    assert ledger.count_batch_logs("B1") == 0


def test_snapshots_written_since_filters_actor_and_time(seed_employee):
    employee = seed_employee("E102", "窓 一郎", "営業部")
    ledger = HistoryLedger(db.session)
    ledger.close_current(employee.id, T0)
    ledger.append_snapshot(employee, change_type=HistoryChangeType.UPDATE, now=T0, actor="7", batch_id="B")
    db.session.commit()

    assert len(ledger.snapshots_written_since(employee.id, actor="7", since=T0)) == 1
    assert ledger.snapshots_written_since(employee.id, actor="8", since=T0) == []
    assert ledger.snapshots_written_since(employee.id, actor="7", since=T0 + timedelta(seconds=1)) == []
    assert EmployeeHistory.query.filter_by(employee_id=employee.id).count() == 2
