"""Single-row rule evaluation.

Each rule type has a pure check function taking the rule, the cell value
and the parsed row, and returning a :class:`RuleFailure` or ``None``.
:class:`RowValidator` walks the data rows in fixed-size chunks, yielding
a :class:`ChunkReport` per chunk so the caller can report progress and
poll for cancellation between chunks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from sheetguard.cellref import column_index_to_letter
from sheetguard.config import ValidatorConfig
from sheetguard.context import CancellationToken, is_cancelled
from sheetguard.dates import (
    extract_hour,
    has_time_component,
    normalize_dotted_date,
    parse_date,
    to_number,
)
from sheetguard.models import FieldMapping, RowRecord, Rule, RuleType, ValidationError
from sheetguard.workbook import is_empty_row, is_empty_value

logger = logging.getLogger("sheetguard")


class RuleFailure(NamedTuple):
    message: str
    error_type: str
    value: Any


CheckFn = Callable[[Rule, Any, RowRecord], "RuleFailure | None"]


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def parse_row(
    row: list[Any],
    row_number: int,
    mapping: FieldMapping,
    date_fields: list[str],
) -> RowRecord:
    """Project a raw row onto every name in *mapping*.

    Dotted dates (``2025.8.1 08:00``) in date fields are rewritten to ISO
    form; the untouched value is kept in ``originals`` for the date format
    check, which must see exactly what the user typed.
    """
    fields: dict[str, Any] = {}
    originals: dict[str, Any] = {}
    date_names = set(date_fields)
    for name, index in mapping.columns.items():
        value = row[index] if index < len(row) else None
        if name in date_names:
            originals[name] = value
            value = normalize_dotted_date(value)
        fields[name] = value
    return RowRecord(row_number=row_number, fields=fields, originals=originals)


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def _fail(rule: Rule, value: Any, message: str | None = None) -> RuleFailure:
    return RuleFailure(message or rule.message, rule.type.value, value)


def check_required(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    if is_empty_value(value):
        return _fail(rule, value)
    expected = rule.params.get("expectedValues")
    if expected:
        text = value.strip() if isinstance(value, str) else str(value)
        if text not in [str(e) for e in expected]:
            return RuleFailure(rule.message, "enum", value)
    return None


def check_date_format(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    original = record.original(rule.field)
    if parse_date(original) is None:
        return _fail(rule, original)
    if not rule.params.get("allowTimeComponent", False) and has_time_component(original):
        return _fail(rule, original)
    return None


def check_medical_level(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    text = str(value).strip()
    levels = rule.params.get("allowedLevels") or []
    if not any(str(level) in text for level in levels):
        return _fail(rule, value)
    return None


def check_duration(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    minutes = to_number(value)
    if minutes is None or minutes < float(rule.params.get("minMinutes", 0)):
        return _fail(rule, value)
    return None


def check_time_range(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    hour = extract_hour(value)
    if hour is None:
        return None
    start = int(float(rule.params.get("startHour", 0)))
    end = int(float(rule.params.get("endHour", 23)))
    if hour < 0 or not start <= hour <= end:
        return _fail(rule, value)
    return None


def check_min_value(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    number = to_number(value)
    if number is None or number < float(rule.params.get("minValue", 0)):
        return _fail(rule, value)
    return None


def check_prohibited_content(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    text = str(value).strip()
    for term in rule.params.get("prohibitedTerms") or []:
        if term and str(term) in text:
            return _fail(rule, value, f'{rule.message}：发现禁用词汇"{term}"')
    return None


SINGLE_ROW_CHECKS: dict[RuleType, CheckFn] = {
    RuleType.REQUIRED: check_required,
    RuleType.DATE_FORMAT: check_date_format,
    RuleType.MEDICAL_LEVEL: check_medical_level,
    RuleType.DURATION: check_duration,
    RuleType.TIME_RANGE: check_time_range,
    RuleType.MIN_VALUE: check_min_value,
    RuleType.PROHIBITED_CONTENT: check_prohibited_content,
}


def check_rule(rule: Rule, value: Any, record: RowRecord) -> RuleFailure | None:
    """Evaluate one single-row rule; empty values only fail ``required``."""
    check = SINGLE_ROW_CHECKS.get(rule.type)
    if check is None:
        return None
    if rule.type is not RuleType.REQUIRED and is_empty_value(value):
        return None
    return check(rule, value, record)


# ---------------------------------------------------------------------------
# Template parameters
# ---------------------------------------------------------------------------

_NUMERIC_PARAMS: dict[RuleType, tuple[str, ...]] = {
    RuleType.DURATION: ("minMinutes",),
    RuleType.TIME_RANGE: ("startHour", "endHour"),
    RuleType.MIN_VALUE: ("minValue",),
    RuleType.FREQUENCY: ("maxPerDay",),
    RuleType.DATE_INTERVAL: ("days",),
}
_REQUIRED_PARAMS: dict[RuleType, tuple[str, ...]] = {
    RuleType.FREQUENCY: ("maxPerDay",),
    RuleType.DATE_INTERVAL: ("days",),
}
_LIST_PARAMS: dict[RuleType, str] = {
    RuleType.MEDICAL_LEVEL: "allowedLevels",
    RuleType.PROHIBITED_CONTENT: "prohibitedTerms",
}


def template_problems(rules: list[Rule]) -> list[str]:
    """Describe every rule whose parameters the checks cannot use."""
    problems: list[str] = []
    for rule in rules:
        label = f"{rule.type.value} rule on '{rule.field}'"
        for name in _REQUIRED_PARAMS.get(rule.type, ()):
            if name not in rule.params:
                problems.append(f"{label} is missing '{name}'")
        for name in _NUMERIC_PARAMS.get(rule.type, ()):
            if name in rule.params and to_number(rule.params[name]) is None:
                problems.append(f"{label}: '{name}' must be a number")
        list_name = _LIST_PARAMS.get(rule.type)
        if list_name and not isinstance(rule.params.get(list_name, []), list):
            problems.append(f"{label}: '{list_name}' must be a list")
    return problems


# ---------------------------------------------------------------------------
# Row Validator
# ---------------------------------------------------------------------------


@dataclass
class ChunkReport:
    """Outcome of one chunk of data rows."""

    processed: int
    total: int
    errors: list[ValidationError] = field(default_factory=list)
    records: list[RowRecord] = field(default_factory=list)


class RowValidator:
    """Apply single-row rules to the data rows below a header row.

    Parameters
    ----------
    config:
        Supplies ``chunk_size`` and the date field names whose values are
        normalized while parsing.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config

    def validate_record(
        self,
        record: RowRecord,
        rules: list[Rule],
        mapping: FieldMapping,
    ) -> list[ValidationError]:
        errors: list[ValidationError] = []
        for rule in rules:
            column = mapping.column_for(rule.field)
            if column is None:
                continue
            failure = check_rule(rule, record.get(rule.field), record)
            if failure is None:
                continue
            errors.append(
                ValidationError(
                    row=record.row_number,
                    column=column_index_to_letter(column),
                    field=rule.field,
                    value=failure.value,
                    message=failure.message,
                    error_type=failure.error_type,
                )
            )
        return errors

    def validate_chunk(
        self,
        rows: list[list[Any]],
        first_row_number: int,
        mapping: FieldMapping,
        rules: list[Rule],
    ) -> tuple[list[RowRecord], list[ValidationError]]:
        """Validate a slice of rows whose first row is sheet row *first_row_number*."""
        records: list[RowRecord] = []
        errors: list[ValidationError] = []
        for offset, row in enumerate(rows):
            if not row or is_empty_row(row):
                continue
            record = parse_row(row, first_row_number + offset, mapping, self._config.date_fields)
            records.append(record)
            errors.extend(self.validate_record(record, rules, mapping))
        return records, errors

    async def avalidate(
        self,
        rows: list[list[Any]],
        header_index: int,
        mapping: FieldMapping,
        rules: list[Rule],
        token: CancellationToken | None = None,
    ) -> AsyncIterator[ChunkReport]:
        """Yield one :class:`ChunkReport` per chunk of data rows.

        Control returns to the event loop after every chunk; iteration stops
        early, without a report, once *token* is cancelled.
        """
        single_row_rules = [r for r in rules if not r.is_cross_row]
        data_rows = rows[header_index + 1:]
        total = len(data_rows)
        chunk_size = max(1, self._config.chunk_size)

        for start in range(0, total, chunk_size):
            if is_cancelled(token):
                logger.info("sheetguard | stage=rows | cancelled at row offset %d", start)
                return
            chunk = data_rows[start:start + chunk_size]
            # Sheet rows are 1-based; the first data row sits just below the header.
            records, errors = self.validate_chunk(
                chunk, header_index + start + 2, mapping, single_row_rules
            )
            yield ChunkReport(
                processed=start + len(chunk),
                total=total,
                errors=errors,
                records=records,
            )
            await asyncio.sleep(0)
