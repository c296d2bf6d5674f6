"""Tests for CrossRowValidator: unique, frequency and dateInterval."""

from __future__ import annotations

from typing import Any

import pytest

from sheetguard.config import ValidatorConfig
from sheetguard.cross_row import CrossRowValidator
from sheetguard.models import FieldMapping, RowRecord, Rule, RuleType

MAPPING = FieldMapping(
    columns={"实施人": 0, "拜访开始时间": 1, "零售渠道": 2, "渠道地址": 3, "对接人": 4}
)


def _records(*rows: tuple[Any, ...]) -> list[RowRecord]:
    """Rows of (implementer, date, store, address, contact) starting at sheet row 2."""
    names = ["实施人", "拜访开始时间", "零售渠道", "渠道地址", "对接人"]
    return [
        RowRecord(row_number=i + 2, fields=dict(zip(names, row)))
        for i, row in enumerate(rows)
    ]


@pytest.fixture()
def validator(sample_config: ValidatorConfig) -> CrossRowValidator:
    return CrossRowValidator(sample_config)


# ---------------------------------------------------------------------------
# dateInterval
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestDateInterval:
    RULE = Rule(
        field="零售渠道",
        type=RuleType.DATE_INTERVAL,
        message="同一药店7日内不能重复拜访",
        params={"days": 7, "groupBy": "零售渠道"},
    )

    def test_repeat_visit_within_window(self, validator: CrossRowValidator) -> None:
        records = _records(
            ("张三", "2024-01-01", "康美药店", "人民路1号", "李医生"),
            ("王五", "2024-01-05", "康美药店", "人民路1号", "王医生"),
            ("李四", "2024-01-03", "大参林", "解放路8号", "赵医生"),
        )
        errors = validator.validate(records, [self.RULE], MAPPING)
        assert len(errors) == 1
        error = errors[0]
        assert error.row == 3
        assert error.column == "C"
        assert error.error_type == "dateInterval"
        assert "与第2行冲突" in error.message
        assert "康美药店 - 人民路1号" in error.message

    def test_error_value_is_group_name(self, validator: CrossRowValidator) -> None:
        rule = Rule(
            field="零售渠道",
            type=RuleType.DATE_INTERVAL,
            message="同一地址7日内不能重复拜访",
            params={"days": 7, "groupBy": "对接人"},
        )
        records = _records(
            ("张三", "2024-01-01", "康美药店", "人民路1号", "李医生"),
            ("王五", "2024-01-03", "大参林", "人民路1号", "李医生"),
        )
        errors = validator.validate(records, [rule], MAPPING)
        assert len(errors) == 1
        assert errors[0].value == "李医生"
        assert errors[0].column == "C"
        assert "同一店铺：李医生 - 人民路1号" in errors[0].message

    def test_exactly_min_days_apart_passes(self, validator: CrossRowValidator) -> None:
        records = _records(
            ("张三", "2024-01-01", "康美药店", "人民路1号", ""),
            ("张三", "2024-01-08", "康美药店", "人民路1号", ""),
        )
        assert validator.validate(records, [self.RULE], MAPPING) == []

    def test_same_name_different_address_is_separate(self, validator: CrossRowValidator) -> None:
        records = _records(
            ("张三", "2024-01-01", "康美药店", "人民路1号", ""),
            ("张三", "2024-01-02", "康美药店", "中山路3号", ""),
        )
        assert validator.validate(records, [self.RULE], MAPPING) == []

    def test_sorted_by_date_not_sheet_order(self, validator: CrossRowValidator) -> None:
        records = _records(
            ("张三", "2024-01-20", "康美药店", "人民路1号", ""),
            ("张三", "2024-01-01", "康美药店", "人民路1号", ""),
            ("张三", "2024-01-04", "康美药店", "人民路1号", ""),
        )
        errors = validator.validate(records, [self.RULE], MAPPING)
        # 01-01 (row 3) -> 01-04 (row 4) conflicts; 01-04 -> 01-20 does not.
        assert [(e.row, "与第3行冲突" in e.message) for e in errors] == [(4, True)]

    def test_rows_without_dates_ignored(self, validator: CrossRowValidator) -> None:
        records = _records(
            ("张三", "", "康美药店", "人民路1号", ""),
            ("张三", "不详", "康美药店", "人民路1号", ""),
            ("张三", "2024-01-02", "康美药店", "人民路1号", ""),
        )
        assert validator.validate(records, [self.RULE], MAPPING) == []


# ---------------------------------------------------------------------------
# frequency
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestFrequency:
    def test_row_count_cap_flags_rows_past_the_limit(self, validator: CrossRowValidator) -> None:
        rule = Rule(
            field="实施人",
            type=RuleType.FREQUENCY,
            message="每日拜访超限",
            params={"maxPerDay": 5},
        )
        records = _records(
            *[("张三", "2024-01-05 09:00", f"药店{i}", f"地址{i}", "") for i in range(7)],
            ("张三", "2024-01-06", "药店9", "地址9", ""),
            ("李四", "2024-01-05", "药店0", "地址0", ""),
        )
        errors = validator.validate(records, [rule], MAPPING)
        assert [e.row for e in errors] == [7, 8]
        assert "2024-01-05当日第6家" in errors[0].message
        assert "超过5家限制" in errors[0].message
        assert errors[0].value == "张三"

    def test_count_by_distinct_values(self, validator: CrossRowValidator) -> None:
        rule = Rule(
            field="实施人",
            type=RuleType.FREQUENCY,
            message="每日药店数超限",
            params={"maxPerDay": 5, "countBy": "零售渠道"},
        )
        stores = ["药店1", "药店2", "药店1", "药店3", "药店4", "药店5", "药店2", "药店6"]
        records = _records(
            *[("张三", "2024-01-05", store, "", "") for store in stores]
        )
        errors = validator.validate(records, [rule], MAPPING)
        # Only the sixth distinct store (row 9) is flagged; repeats never are.
        assert [e.row for e in errors] == [9]

    def test_group_by_other_field(self, validator: CrossRowValidator) -> None:
        rule = Rule(
            field="对接人",
            type=RuleType.FREQUENCY,
            message="对接人每日仅限一次",
            params={"maxPerDay": 1, "groupBy": "对接人"},
        )
        records = _records(
            ("张三", "2024-01-05", "药店1", "", "李医生"),
            ("李四", "2024-01-05", "药店2", "", "李医生"),
            ("李四", "2024-01-06", "药店2", "", "李医生"),
        )
        errors = validator.validate(records, [rule], MAPPING)
        assert [(e.row, e.column) for e in errors] == [(3, "E")]


# ---------------------------------------------------------------------------
# unique
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestUnique:
    def test_global_flags_every_occurrence(self, validator: CrossRowValidator) -> None:
        rule = Rule(field="对接人", type=RuleType.UNIQUE, message="对接人重复")
        records = _records(
            ("张三", "2024-01-01", "a", "", "李医生"),
            ("张三", "2024-01-02", "b", "", "王医生"),
            ("张三", "2024-01-03", "c", "", " 李医生 "),
            ("张三", "2024-01-04", "d", "", "李医生"),
            ("张三", "2024-01-05", "e", "", ""),
        )
        errors = validator.validate(records, [rule], MAPPING)
        assert [e.row for e in errors] == [2, 4, 5]
        assert all(e.message == "对接人重复" for e in errors)

    def test_day_scope_flags_repeats_only(self, validator: CrossRowValidator) -> None:
        rule = Rule(
            field="零售渠道",
            type=RuleType.UNIQUE,
            message="同日重复拜访",
            params={"scope": "day"},
        )
        records = _records(
            ("张三", "2024-01-01 09:00", "康美药店", "人民路1号", ""),
            ("李四", "2024-01-01 15:00", "康美药店", "人民路1号", ""),
            ("李四", "2024-01-01 16:00", "康美药店", "中山路3号", ""),
            ("李四", "2024-01-02", "康美药店", "人民路1号", ""),
        )
        errors = validator.validate(records, [rule], MAPPING)
        assert [e.row for e in errors] == [3]
        assert "与第2行重复" in errors[0].message
        assert "同一店铺：康美药店 - 人民路1号" in errors[0].message


# ---------------------------------------------------------------------------
# General
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestCrossRowGeneral:
    def test_idempotent(self, validator: CrossRowValidator) -> None:
        rules = [
            Rule(field="对接人", type=RuleType.UNIQUE, message="重复"),
            Rule(
                field="零售渠道",
                type=RuleType.DATE_INTERVAL,
                message="间隔不足",
                params={"days": 7},
            ),
        ]
        records = _records(
            ("张三", "2024-01-01", "康美药店", "人民路1号", "李医生"),
            ("张三", "2024-01-02", "康美药店", "人民路1号", "李医生"),
        )
        first = validator.validate(records, rules, MAPPING)
        second = validator.validate(records, rules, MAPPING)
        assert first == second
        assert len(first) == 3

    def test_unmapped_and_single_row_rules_skipped(self, validator: CrossRowValidator) -> None:
        rules = [
            Rule(field="不存在", type=RuleType.UNIQUE, message="x"),
            Rule(field="实施人", type=RuleType.REQUIRED, message="x"),
        ]
        records = _records(("", "2024-01-01", "a", "", ""), ("", "2024-01-01", "a", "", ""))
        assert validator.validate(records, rules, MAPPING) == []
