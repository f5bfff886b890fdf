from datetime import date
from pathlib import Path

from roster_app.importer.mapping import load_mapping
from roster_app.importer.pipeline.normalize import (
    ADVISORY_UNIT_CODE,
    normalize_rows,
    split_affiliation,
    split_affiliation_code,
)

MAPPING = load_mapping(Path(__file__).resolve().parents[2] / "config" / "mappings" / "roster_columns_v1.yaml")


def _normalize(rows):
    return normalize_rows(rows, mapping=MAPPING, advisory_unit_name="役員・顧問", advisory_code_prefix="999999")


def test_split_affiliation_handles_ascii_and_full_width_spaces():
    assert split_affiliation("営業部 西日本課") == ("営業部", "西日本課", None)
    assert split_affiliation("営業部　西日本課　大阪コース") == ("営業部", "西日本課", "大阪コース")
    assert split_affiliation("") == (None, None, None)


def test_split_affiliation_code_requires_seven_digits():
    assert split_affiliation_code("0102003") == ("01", "02", "003")
    assert split_affiliation_code("01020") == (None, None, None)
    assert split_affiliation_code("01A2003") == (None, None, None)


def test_normalize_rows_builds_records(roster_row):
    result = _normalize(
        [
            roster_row(
                "E001",
                "山田 太郎",
                "営業部 西日本課",
                **{"所属コード": "0102003", "入社年月日": "2020/4/1", "氏名(フリガナ)": "ﾔﾏﾀﾞ ﾀﾛｳ"},
            )
        ]
    )

    assert result.errors == []
    record = result.records[0]
    assert record.employee_number == "E001"
    assert record.unit_names == ("営業部", "西日本課", None)
    assert (record.department_code, record.section_code, record.course_code) == ("01", "02", None)
    assert record.join_date == date(2020, 4, 1)
    assert record.name_kana == "ヤマダ タロウ"
    assert record.row_number == 1
    assert not record.is_advisory


def test_explicit_section_and_course_columns_override_split(roster_row):
    result = _normalize([roster_row("E002", "佐藤", "営業部 旧課", セクション="新課", コース="東京")])

    assert result.records[0].unit_names == ("営業部", "新課", "東京")


def test_rows_without_affiliation_are_reported(roster_row):
    result = _normalize([roster_row("E003", "鈴木", ""), {"氏名": "番号なし", "所属": "営業部"}, "junk"])

    assert result.records == []
    assert [error.row_number for error in result.errors] == [1, 2, 3]
    assert result.errors[0].message == "Missing required field '所属'"
    assert result.errors[0].employee_number == "E003"
    assert result.errors[2].message == "Row must be an object"


def test_advisory_code_routes_to_advisory_unit(roster_row):
    result = _normalize([roster_row("E900", "会長 一郎", "", **{"所属コード": "9999991", "役職": "会長"})])

    record = result.records[0]
    assert record.is_advisory
    assert record.unit_names == ("役員・顧問", None, None)
    assert record.department_code == ADVISORY_UNIT_CODE
