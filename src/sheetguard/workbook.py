"""Worksheet loading and sheet selection.

Wraps openpyxl (read-only, cached values) to turn one worksheet into a 2D
list of cell values, with a pandas ``read_excel`` fallback when openpyxl
cannot read the sheet.  The row ceiling is enforced while streaming, so an
oversized sheet is rejected without being materialized.
"""

from __future__ import annotations

import io
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any

import openpyxl
import pandas as pd

from sheetguard.config import ValidatorConfig
from sheetguard.errors import ErrorCode, SheetGuardError, SheetGuardException
from sheetguard.header import similarity
from sheetguard.models import ParserUsed, SheetInfo

logger = logging.getLogger("sheetguard")


@dataclass
class SheetData:
    """Cell values of one worksheet, top to bottom."""

    name: str
    rows: list[list[Any]]
    parser_used: ParserUsed = ParserUsed.OPENPYXL
    warnings: list[SheetGuardError] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def is_empty_row(row: list[Any] | tuple[Any, ...]) -> bool:
    return all(is_empty_value(v) for v in row)


# ---------------------------------------------------------------------------
# Sheet selection
# ---------------------------------------------------------------------------

_NORMALIZE_RE = re.compile(r"[\s_\-()（）\[\]【】]+")


def normalize_sheet_name(name: str) -> str:
    return _NORMALIZE_RE.sub("", name).lower()


def select_sheet(
    sheets: list[SheetInfo],
    hints: list[str],
    fuzzy_threshold: float = 0.8,
) -> str | None:
    """Pick a worksheet from template name hints.

    Each strategy is tried across all hints, in hint order, before the next
    strategy is attempted: exact name, then substring containment in either
    direction, then similarity of normalized names.  Only sheets with data
    are candidates.  Returns ``None`` when nothing matches.
    """
    candidates = [s.name for s in sheets if s.has_data]

    for hint in hints:
        if hint in candidates:
            return hint

    for hint in hints:
        if not hint:
            continue
        for name in candidates:
            if hint in name or name in hint:
                return name

    best_name: str | None = None
    best_score = 0.0
    for hint in hints:
        norm_hint = normalize_sheet_name(hint)
        if not norm_hint:
            continue
        for name in candidates:
            score = similarity(norm_hint, normalize_sheet_name(name))
            if score >= fuzzy_threshold and score > best_score:
                best_name, best_score = name, score
    return best_name


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class WorkbookParser:
    """Load worksheet listings and cell values from raw ``.xlsx`` bytes.

    Parameters
    ----------
    config:
        Validator configuration; ``max_rows`` bounds how many rows a sheet
        may have.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def list_sheets(self, data: bytes) -> list[SheetInfo]:
        """Enumerate worksheets with their data status, in workbook order."""
        try:
            wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except Exception as exc:
            logger.warning(
                "sheetguard | stage=parse | openpyxl could not open workbook: %s", exc
            )
            return self._list_sheets_via_pandas(data, exc)

        try:
            sheets: list[SheetInfo] = []
            for ws in wb.worksheets:
                max_row, max_col = self._sheet_size(ws)
                sheets.append(
                    SheetInfo(
                        name=ws.title,
                        has_data=self._has_data(ws, max_row, max_col),
                        max_row=max_row,
                        max_column=max_col,
                    )
                )
            return sheets
        finally:
            wb.close()

    def load_sheet(self, data: bytes, sheet_name: str) -> SheetData:
        """Read *sheet_name* into a 2D list of cell values.

        Trailing empty rows are dropped.  Raises ``E_ROWS_LIMIT`` as soon as
        a non-empty row beyond ``max_rows`` is seen.
        """
        start = time.monotonic()
        try:
            sheet = self._load_via_openpyxl(data, sheet_name)
        except SheetGuardException:
            raise
        except Exception as exc:
            logger.warning(
                "sheetguard | stage=parse | sheet=%s | openpyxl failed, trying pandas: %s",
                sheet_name,
                exc,
            )
            sheet = self._load_via_pandas(data, sheet_name)
            sheet.warnings.append(
                SheetGuardError(
                    code=ErrorCode.W_PARSER_FALLBACK,
                    message=f"openpyxl could not read sheet '{sheet_name}': {exc}",
                    sheet_name=sheet_name,
                    stage="parse",
                    recoverable=True,
                )
            )

        if sheet.row_count == 0:
            raise SheetGuardException(
                code=ErrorCode.E_SHEET_EMPTY,
                message=f"Sheet '{sheet_name}' has no data.",
                sheet_name=sheet_name,
                stage="parse",
            )

        logger.info(
            "sheetguard | stage=parse | sheet=%s | rows=%d | parser=%s | %.3fs",
            sheet_name,
            sheet.row_count,
            sheet.parser_used.value,
            time.monotonic() - start,
        )
        return sheet

    # ------------------------------------------------------------------
    # openpyxl path
    # ------------------------------------------------------------------

    def _load_via_openpyxl(self, data: bytes, sheet_name: str) -> SheetData:
        wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        try:
            if sheet_name not in wb.sheetnames:
                raise SheetGuardException(
                    code=ErrorCode.E_SHEET_NOT_FOUND,
                    message=f"Sheet '{sheet_name}' does not exist.",
                    sheet_name=sheet_name,
                    stage="parse",
                )
            ws = wb[sheet_name]
            # Some writers emit a stale <dimension>; read every row present.
            ws.reset_dimensions()
            rows = self._collect_rows(sheet_name, ws.iter_rows(min_row=1, values_only=True))
        finally:
            wb.close()
        return SheetData(name=sheet_name, rows=rows, parser_used=ParserUsed.OPENPYXL)

    def _collect_rows(self, sheet_name: str, source: Any) -> list[list[Any]]:
        """Materialize rows, deferring blank runs until a non-empty row follows."""
        max_rows = self._config.max_rows
        rows: list[list[Any]] = []
        pending_blank = 0
        width = 0
        for raw in source:
            if is_empty_row(raw):
                pending_blank += 1
                continue
            row_number = len(rows) + pending_blank + 1
            if row_number > max_rows:
                raise SheetGuardException(
                    code=ErrorCode.E_ROWS_LIMIT,
                    message=(
                        f"Sheet '{sheet_name}' has more than {max_rows} rows; "
                        f"reduce the row count to {max_rows} or fewer and retry."
                    ),
                    sheet_name=sheet_name,
                    stage="parse",
                )
            if pending_blank:
                rows.extend([] for _ in range(pending_blank))
                pending_blank = 0
            row = list(raw)
            width = max(width, len(row))
            rows.append(row)
        # Pad so every row has the same width.
        for row in rows:
            if len(row) < width:
                row.extend([None] * (width - len(row)))
        return rows

    @staticmethod
    def _sheet_size(ws: Any) -> tuple[int, int]:
        max_row, max_col = ws.max_row, ws.max_column
        if max_row is None or max_col is None:
            try:
                ws.calculate_dimension(force=True)
                max_row, max_col = ws.max_row, ws.max_column
            except (TypeError, ValueError):
                max_row, max_col = 0, 0
        return max_row or 0, max_col or 0

    @staticmethod
    def _has_data(ws: Any, max_row: int, max_col: int) -> bool:
        if max_row == 0 or max_col == 0:
            return False
        if max_row == 1 and max_col == 1:
            # openpyxl writes a dimension of "A1" for a blank sheet.
            for row in ws.iter_rows(min_row=1, max_row=1, values_only=True):
                return not is_empty_row(row)
            return False
        return True

    # ------------------------------------------------------------------
    # pandas fallback
    # ------------------------------------------------------------------

    def _load_via_pandas(self, data: bytes, sheet_name: str) -> SheetData:
        try:
            df = pd.read_excel(io.BytesIO(data), sheet_name=sheet_name, header=None)
        except Exception as exc:
            raise SheetGuardException(
                code=ErrorCode.E_PARSE_FAILED,
                message=f"Could not read sheet '{sheet_name}': {exc}",
                sheet_name=sheet_name,
                stage="parse",
            ) from exc
        df = df.astype(object).where(pd.notna(df), None)
        rows = self._collect_rows(sheet_name, (tuple(r) for r in df.itertuples(index=False)))
        return SheetData(name=sheet_name, rows=rows, parser_used=ParserUsed.PANDAS_FALLBACK)

    @staticmethod
    def _list_sheets_via_pandas(data: bytes, cause: Exception) -> list[SheetInfo]:
        try:
            with pd.ExcelFile(io.BytesIO(data)) as xls:
                names = list(xls.sheet_names)
        except Exception as exc:
            raise SheetGuardException(
                code=ErrorCode.E_CONTAINER_CORRUPT,
                message=f"Workbook cannot be opened: {cause}",
                stage="parse",
            ) from exc
        # Data status is unknown without reading every sheet; assume present.
        return [SheetInfo(name=str(name), has_data=True) for name in names]
