"""Tests for WorkbookParser and sheet selection.

Uses openpyxl to create real .xlsx payloads in memory.
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import patch

import pytest

from conftest import build_xlsx
from sheetguard.config import ValidatorConfig
from sheetguard.errors import ErrorCode, SheetGuardException
from sheetguard.models import ParserUsed, SheetInfo
from sheetguard.workbook import (
    WorkbookParser,
    is_empty_row,
    is_empty_value,
    normalize_sheet_name,
    select_sheet,
)


def _sheets(*names: str, empty: tuple[str, ...] = ()) -> list[SheetInfo]:
    return [SheetInfo(name=n, has_data=n not in empty) for n in names]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestEmptiness:
    def test_values(self) -> None:
        assert is_empty_value(None)
        assert is_empty_value("   ")
        assert not is_empty_value(0)
        assert not is_empty_value("x")

    def test_rows(self) -> None:
        assert is_empty_row([None, "", " "])
        assert is_empty_row([])
        assert not is_empty_row([None, 0])


# ---------------------------------------------------------------------------
# Sheet selection
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSelectSheet:
    def test_exact_match_wins(self) -> None:
        sheets = _sheets("药店拜访记录", "药店拜访")
        assert select_sheet(sheets, ["药店拜访"]) == "药店拜访"

    def test_substring_either_direction(self) -> None:
        assert select_sheet(_sheets("Sheet1", "2024药店拜访明细"), ["药店拜访"]) == "2024药店拜访明细"
        assert select_sheet(_sheets("拜访"), ["药店拜访"]) == "拜访"

    def test_hint_order_respected_per_strategy(self) -> None:
        sheets = _sheets("科室拜访", "医院拜访")
        assert select_sheet(sheets, ["医院拜访", "科室拜访"]) == "医院拜访"

    def test_fuzzy_normalized_match(self) -> None:
        sheets = _sheets("Visit_Record(1)")
        assert normalize_sheet_name("Visit_Record(1)") == "visitrecord1"
        assert select_sheet(sheets, ["visit records"], fuzzy_threshold=0.8) == "Visit_Record(1)"

    def test_no_match_returns_none(self) -> None:
        assert select_sheet(_sheets("Sheet1", "Sheet2"), ["药店拜访"]) is None
        assert select_sheet(_sheets("Sheet1"), []) is None

    def test_sheets_without_data_are_skipped(self) -> None:
        sheets = _sheets("药店拜访", "药店拜访(2)", empty=("药店拜访",))
        assert select_sheet(sheets, ["药店拜访"]) == "药店拜访(2)"


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestListSheets:
    def test_lists_in_workbook_order_with_data_flag(self, sample_config: ValidatorConfig) -> None:
        data = build_xlsx(
            [["a", "b", "c"], [1, 2, 3]],
            title="数据",
            extra_sheets={"空白": []},
        )
        sheets = WorkbookParser(sample_config).list_sheets(data)
        assert [s.name for s in sheets] == ["数据", "空白"]
        assert sheets[0].has_data is True
        assert sheets[0].max_row == 2
        assert sheets[0].max_column == 3
        assert sheets[1].has_data is False

    def test_unreadable_bytes(self, sample_config: ValidatorConfig) -> None:
        with pytest.raises(SheetGuardException) as exc_info:
            WorkbookParser(sample_config).list_sheets(b"PK\x03\x04garbage")
        assert exc_info.value.code == ErrorCode.E_CONTAINER_CORRUPT


@pytest.mark.unit
class TestLoadSheet:
    def test_values_and_padding(self, sample_config: ValidatorConfig) -> None:
        stamp = datetime(2024, 1, 5, 9, 30)
        data = build_xlsx([["a", "b", "c"], ["x"], [stamp, 2, None]])
        sheet = WorkbookParser(sample_config).load_sheet(data, "Sheet1")
        assert sheet.parser_used is ParserUsed.OPENPYXL
        assert sheet.rows[0] == ["a", "b", "c"]
        assert sheet.rows[1] == ["x", None, None]
        assert sheet.rows[2][0] == stamp
        assert sheet.warnings == []

    def test_interior_blank_rows_kept_trailing_dropped(self, sample_config: ValidatorConfig) -> None:
        data = build_xlsx([["a", "b", "c"], [None, None, None], ["x", "y", "z"], [None], [None]])
        sheet = WorkbookParser(sample_config).load_sheet(data, "Sheet1")
        assert sheet.row_count == 3
        assert sheet.rows[1] == [None, None, None]

    def test_missing_sheet(self, sample_config: ValidatorConfig) -> None:
        with pytest.raises(SheetGuardException) as exc_info:
            WorkbookParser(sample_config).load_sheet(build_xlsx([["a"]]), "Nope")
        assert exc_info.value.code == ErrorCode.E_SHEET_NOT_FOUND

    def test_empty_sheet(self, sample_config: ValidatorConfig) -> None:
        with pytest.raises(SheetGuardException) as exc_info:
            WorkbookParser(sample_config).load_sheet(build_xlsx([]), "Sheet1")
        assert exc_info.value.code == ErrorCode.E_SHEET_EMPTY

    def test_row_limit_counts_sheet_rows(self) -> None:
        config = ValidatorConfig(max_rows=3)
        parser = WorkbookParser(config)
        at_limit = build_xlsx([["h1", "h2", "h3"], [1, 2, 3], [4, 5, 6]])
        assert parser.load_sheet(at_limit, "Sheet1").row_count == 3

        over = build_xlsx([["h1", "h2", "h3"], [1, 2, 3], [4, 5, 6], [7, 8, 9]])
        with pytest.raises(SheetGuardException) as exc_info:
            parser.load_sheet(over, "Sheet1")
        assert exc_info.value.code == ErrorCode.E_ROWS_LIMIT
        assert "3" in exc_info.value.message

    def test_pandas_fallback(self, sample_config: ValidatorConfig) -> None:
        data = build_xlsx([["a", "b", "c"], [1, 2, 3]])
        parser = WorkbookParser(sample_config)
        with patch.object(parser, "_load_via_openpyxl", side_effect=KeyError("broken part")):
            sheet = parser.load_sheet(data, "Sheet1")
        assert sheet.parser_used is ParserUsed.PANDAS_FALLBACK
        assert sheet.rows[0] == ["a", "b", "c"]
        assert sheet.rows[1] == [1, 2, 3]
        assert [w.code for w in sheet.warnings] == [ErrorCode.W_PARSER_FALLBACK]

    def test_fallback_failure_is_parse_error(self, sample_config: ValidatorConfig) -> None:
        parser = WorkbookParser(sample_config)
        with patch.object(parser, "_load_via_openpyxl", side_effect=KeyError("broken")):
            with pytest.raises(SheetGuardException) as exc_info:
                parser.load_sheet(b"PK\x03\x04garbage", "Sheet1")
        assert exc_info.value.code == ErrorCode.E_PARSE_FAILED
