"""Validation rules that need the whole row set: uniqueness, per-day
frequency caps and minimum intervals between repeat visits.

Every method is a pure function of its inputs; running the same rules over
the same records twice yields identical errors.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from sheetguard.cellref import column_index_to_letter
from sheetguard.config import ValidatorConfig
from sheetguard.dates import days_between, parse_date
from sheetguard.models import FieldMapping, RowRecord, Rule, RuleType, ValidationError
from sheetguard.workbook import is_empty_value

logger = logging.getLogger("sheetguard")


def _norm(value: Any) -> str:
    return str(value).strip().lower()


class CrossRowValidator:
    """Evaluate ``unique``, ``frequency`` and ``dateInterval`` rules.

    The visit date of a row is taken from the first non-empty field of
    ``config.date_fields``; the store address from ``config.address_fields``.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(
        self,
        records: list[RowRecord],
        rules: list[Rule],
        mapping: FieldMapping,
    ) -> list[ValidationError]:
        errors: list[ValidationError] = []
        for rule in rules:
            column = mapping.column_for(rule.field)
            if column is None or not rule.is_cross_row:
                continue
            letter = column_index_to_letter(column)
            if rule.type is RuleType.UNIQUE:
                errors.extend(self.check_unique(rule, records, letter))
            elif rule.type is RuleType.FREQUENCY:
                errors.extend(self.check_frequency(rule, records, letter))
            elif rule.type is RuleType.DATE_INTERVAL:
                errors.extend(self.check_date_interval(rule, records, letter))
        if errors:
            logger.debug("sheetguard | stage=cross_row | errors=%d", len(errors))
        return errors

    # ------------------------------------------------------------------
    # Row accessors
    # ------------------------------------------------------------------

    def visit_date(self, record: RowRecord) -> datetime | None:
        for name in self._config.date_fields:
            value = record.get(name)
            if not is_empty_value(value):
                return parse_date(value)
        return None

    def address(self, record: RowRecord) -> str:
        for name in self._config.address_fields:
            value = record.get(name)
            if not is_empty_value(value):
                return str(value).strip()
        return ""

    # ------------------------------------------------------------------
    # unique
    # ------------------------------------------------------------------

    def check_unique(
        self, rule: Rule, records: list[RowRecord], column: str
    ) -> list[ValidationError]:
        if rule.params.get("scope") == "day":
            return self._unique_per_day(rule, records, column)
        return self._unique_global(rule, records, column)

    def _unique_per_day(
        self, rule: Rule, records: list[RowRecord], column: str
    ) -> list[ValidationError]:
        """Flag repeats of (value, address) within one calendar day."""
        errors: list[ValidationError] = []
        first_seen: dict[tuple[str, str], int] = {}
        for record in records:
            value = record.get(rule.field)
            if is_empty_value(value):
                continue
            visit = self.visit_date(record)
            if visit is None:
                continue
            address = self.address(record)
            key = (visit.date().isoformat(), f"{_norm(value)}|{address.lower()}")
            if key not in first_seen:
                first_seen[key] = record.row_number
                continue
            suffix = f" - {address}" if address else ""
            errors.append(
                ValidationError(
                    row=record.row_number,
                    column=column,
                    field=rule.field,
                    value=value,
                    message=(
                        f"{rule.message}（与第{first_seen[key]}行重复，"
                        f"同一店铺：{value}{suffix}）"
                    ),
                    error_type=rule.type.value,
                )
            )
        return errors

    def _unique_global(
        self, rule: Rule, records: list[RowRecord], column: str
    ) -> list[ValidationError]:
        """Flag every occurrence of a value that appears more than once."""
        counts: dict[str, int] = defaultdict(int)
        for record in records:
            value = record.get(rule.field)
            if not is_empty_value(value):
                counts[_norm(value)] += 1
        duplicated = {v for v, n in counts.items() if n > 1}

        errors: list[ValidationError] = []
        for record in records:
            value = record.get(rule.field)
            if is_empty_value(value) or _norm(value) not in duplicated:
                continue
            errors.append(
                ValidationError(
                    row=record.row_number,
                    column=column,
                    field=rule.field,
                    value=value,
                    message=rule.message,
                    error_type=rule.type.value,
                )
            )
        return errors

    # ------------------------------------------------------------------
    # frequency
    # ------------------------------------------------------------------

    def check_frequency(
        self, rule: Rule, records: list[RowRecord], column: str
    ) -> list[ValidationError]:
        """Cap rows (or distinct ``countBy`` values) per group per day.

        Only the row that pushes a group's daily count past ``maxPerDay`` is
        flagged, along with any later row that raises it further.
        """
        params = rule.params
        group_by = params.get("groupBy") or rule.field
        count_by = params.get("countBy")
        max_per_day = int(float(params.get("maxPerDay", 0)))

        row_counts: dict[tuple[str, str], int] = defaultdict(int)
        distinct: dict[tuple[str, str], set[str]] = defaultdict(set)
        errors: list[ValidationError] = []

        for record in records:
            group = record.get(group_by)
            if is_empty_value(group):
                continue
            visit = self.visit_date(record)
            if visit is None:
                continue
            day = visit.date().isoformat()
            key = (_norm(group), day)

            if count_by:
                counted = record.get(count_by)
                if is_empty_value(counted):
                    continue
                seen = distinct[key]
                marker = _norm(counted)
                if marker in seen:
                    continue
                seen.add(marker)
                count = len(seen)
            else:
                row_counts[key] += 1
                count = row_counts[key]

            if count > max_per_day:
                errors.append(
                    ValidationError(
                        row=record.row_number,
                        column=column,
                        field=rule.field,
                        value=group,
                        message=(
                            f"{rule.message}（{day}当日第{count}家，"
                            f"超过{max_per_day}家限制）"
                        ),
                        error_type=rule.type.value,
                    )
                )
        return errors

    # ------------------------------------------------------------------
    # dateInterval
    # ------------------------------------------------------------------

    def check_date_interval(
        self, rule: Rule, records: list[RowRecord], column: str
    ) -> list[ValidationError]:
        """Require ``days`` between consecutive visits to the same target.

        Visits are grouped by the ``groupBy`` value together with the store
        address, regardless of who made them.
        """
        params = rule.params
        group_by = params.get("groupBy") or rule.field
        min_days = int(float(params.get("days", 0)))

        groups: dict[tuple[str, str], list[tuple[datetime, RowRecord, str]]] = defaultdict(list)
        for record in records:
            group = record.get(group_by)
            if is_empty_value(group):
                continue
            visit = self.visit_date(record)
            if visit is None:
                continue
            address = self.address(record)
            groups[(str(group).strip(), address)].append((visit, record, address))

        errors: list[ValidationError] = []
        for (group_name, _), visits in groups.items():
            # Stable sort keeps sheet order for visits on the same instant.
            visits.sort(key=lambda item: item[0])
            for (prev_date, prev_record, _), (cur_date, cur_record, address) in zip(
                visits, visits[1:]
            ):
                if days_between(prev_date, cur_date) >= min_days:
                    continue
                suffix = f" - {address}" if address else ""
                errors.append(
                    ValidationError(
                        row=cur_record.row_number,
                        column=column,
                        field=rule.field,
                        value=group_name,
                        message=(
                            f"{rule.message}（与第{prev_record.row_number}行冲突，"
                            f"同一店铺：{group_name}{suffix}）"
                        ),
                        error_type=rule.type.value,
                    )
                )
        errors.sort(key=lambda e: e.row)
        return errors

