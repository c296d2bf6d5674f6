"""Date and time-of-day parsing shared by the row and cross-row validators.

Cell values arrive as native ``datetime``/``date``/``time`` objects (from
openpyxl), Excel serial numbers, or free text such as ``2024-01-05``,
``2024.1.5 09:30`` or ``2024年1月5日``.  Everything here returns ``None``
for values it cannot interpret; callers treat that as "absent".
"""

from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime, time, timedelta
from typing import Any

import pandas as pd

# Serial 1 is 1900-01-01 in Excel, but Excel also counts the non-existent
# 1900-02-29, so for every real-world serial (> 60) day zero is 1899-12-30.
EXCEL_EPOCH = datetime(1899, 12, 30)
_MAX_EXCEL_SERIAL = 2_958_465  # 9999-12-31

TIME_OF_DAY_RE = re.compile(r"\d{1,2}[:：]\d{2}")
_HOUR_MINUTE_RE = re.compile(r"(\d{1,2})[:：](\d{2})")
_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
_YEAR_RE = re.compile(r"\d{4}")
_DOTTED_RE = re.compile(r"^(\d{4})\.(\d{1,2})\.(\d{1,2})")

_DATE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})"),
    re.compile(r"^(\d{4})\.(\d{1,2})\.(\d{1,2})"),
    re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})"),
    re.compile(r"^(\d{4})年(\d{1,2})月(\d{1,2})日?"),
]
_TRAILING_TIME_RE = re.compile(r"^[T\s]*(\d{1,2})[:：](\d{2})(?:[:：](\d{2}))?")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> float | None:
    """Interpret a cell as a number (numbers and numeric strings)."""
    if is_number(value):
        if isinstance(value, float) and math.isnan(value):
            return None
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC_RE.match(text):
            return float(text)
    return None


def from_excel_serial(serial: float) -> datetime | None:
    if serial <= 0 or serial > _MAX_EXCEL_SERIAL:
        return None
    return EXCEL_EPOCH + timedelta(days=serial)


def _parse_text(text: str) -> datetime | None:
    for pattern in _DATE_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        year, month, day = (int(g) for g in match.groups())
        try:
            parsed = datetime(year, month, day)
        except ValueError:
            return None
        rest = _TRAILING_TIME_RE.match(text[match.end():])
        if rest:
            hour, minute = int(rest.group(1)), int(rest.group(2))
            second = int(rest.group(3) or 0)
            if hour < 24 and minute < 60 and second < 60:
                parsed = parsed.replace(hour=hour, minute=minute, second=second)
        return parsed

    # Free-form fallback; insist on a four-digit year so bare times such as
    # "12:30" are not silently attached to today's date.
    if not _YEAR_RE.search(text):
        return None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        stamp = pd.to_datetime(text, errors="coerce")
    if stamp is None or pd.isna(stamp):
        return None
    result = stamp.to_pydatetime()
    if result.tzinfo is not None:
        result = result.replace(tzinfo=None)
    return result


def parse_date(value: Any) -> datetime | None:
    """Parse a cell value into a naive ``datetime``, or None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, time):
        return None
    if is_number(value):
        if isinstance(value, float) and math.isnan(value):
            return None
        return from_excel_serial(float(value))
    text = str(value).strip()
    if not text:
        return None
    if _NUMERIC_RE.match(text):
        return from_excel_serial(float(text))
    return _parse_text(text)


def date_key(value: Any) -> str | None:
    """Calendar date of *value* as ``YYYY-MM-DD``, or None."""
    parsed = parse_date(value)
    return parsed.date().isoformat() if parsed else None


def has_time_component(value: Any) -> bool:
    """True if *value* carries a time of day.

    Strings need an ``H:MM`` substring (half- or full-width colon); native
    datetimes and serial numbers count when their time is not midnight.
    """
    if value is None:
        return False
    if isinstance(value, datetime):
        return value.time() != time(0, 0)
    if isinstance(value, time):
        return True
    if isinstance(value, date):
        return False
    if is_number(value):
        return float(value) % 1 != 0
    return bool(TIME_OF_DAY_RE.search(str(value)))


def extract_hour(value: Any) -> int | None:
    """Hour of day carried by *value*, or None when it carries none.

    Returns -1 when an ``H:MM`` pattern is present but out of range, so
    callers can fail the value instead of ignoring it.
    """
    if value is None:
        return None
    if isinstance(value, (datetime, time)):
        return value.hour
    if isinstance(value, date):
        return None
    if is_number(value):
        fraction = float(value) % 1
        if fraction == 0:
            return None
        return int(round(fraction * 24 * 60)) // 60 % 24
    match = _HOUR_MINUTE_RE.search(str(value))
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return -1
    return hour


def normalize_dotted_date(value: Any) -> Any:
    """Rewrite a leading ``YYYY.M.D`` into ``YYYY-MM-DD``; other values pass through."""
    if not isinstance(value, str):
        return value
    match = _DOTTED_RE.match(value.strip())
    if not match:
        return value
    year, month, day = match.groups()
    rest = value.strip()[match.end():]
    return f"{year}-{int(month):02d}-{int(day):02d}{rest}"


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days from *earlier* to *later*, floored."""
    return math.floor((later - earlier).total_seconds() / 86400)
