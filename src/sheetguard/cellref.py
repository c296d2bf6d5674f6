"""Spreadsheet cell reference helpers (0-based columns, 1-based rows)."""

from __future__ import annotations

import re

from openpyxl.utils.cell import column_index_from_string, get_column_letter

_CELL_REF_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")


def column_index_to_letter(index: int) -> str:
    """0-based column index to letters: 0 -> ``A``, 25 -> ``Z``, 26 -> ``AA``."""
    if index < 0:
        raise ValueError(f"Column index must be >= 0, got {index}")
    return get_column_letter(index + 1)


def letter_to_column_index(letters: str) -> int:
    """Column letters to a 0-based index: ``A`` -> 0, ``AA`` -> 26."""
    return column_index_from_string(letters.upper()) - 1


def split_cell_ref(ref: str) -> tuple[str, int] | None:
    """``"M4"`` -> ``("M", 4)``; None for anything that is not a single cell."""
    match = _CELL_REF_RE.match(ref.strip())
    if not match:
        return None
    return match.group(1).upper(), int(match.group(2))


def cell_ref(column: int, row: int) -> str:
    """0-based column and 1-based row to an ``A1`` reference."""
    return f"{column_index_to_letter(column)}{row}"
