"""Known record layouts for visit-record workbooks.

A layout says which columns hold photos, how many photos each record has
and on which sheet row records start.  :class:`KeywordLayoutClassifier`
picks a layout by looking for its keywords in the cell text of the
workbook, whether stored as shared strings or inline.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from sheetguard.cellref import split_cell_ref
from sheetguard.container import XlsxContainer
from sheetguard.xmlmatch import find_elements, find_first

logger = logging.getLogger("sheetguard")


class TableLayout(BaseModel):
    """Photo placement of one record layout."""

    model_config = ConfigDict(frozen=True)

    name: str
    image_columns: list[str]
    images_per_record: int = 2
    data_start_row: int = 4
    keywords: list[str] = Field(default_factory=list)
    column_labels: dict[str, str] = Field(default_factory=dict)

    def estimate(self, image_index: int) -> tuple[str, int, str]:
        """Estimated ``(column, row, label)`` for the *image_index*-th image."""
        per_record = max(1, self.images_per_record)
        record_index, slot = divmod(image_index, per_record)
        column = self.image_columns[slot] if slot < len(self.image_columns) else self.image_columns[0]
        row = self.data_start_row + record_index
        label = self.column_labels.get(column, f"图片{slot + 1}")
        return column, row, label

    def is_plausible(self, column: str, row: int, max_row: int | None) -> bool:
        """An estimate must land in a photo column inside the data rows."""
        if column not in self.image_columns or row < self.data_start_row:
            return False
        return max_row is None or row <= max_row


PHARMACY_VISIT = TableLayout(
    name="药店拜访",
    image_columns=["M", "N"],
    keywords=["门头", "内部"],
    column_labels={"M": "门头", "N": "内部"},
)
HOSPITAL_VISIT = TableLayout(
    name="医院拜访类",
    image_columns=["O", "P"],
    keywords=["医院门头照", "科室照片"],
    column_labels={"O": "医院门头照", "P": "科室照片"},
)
DEPARTMENT_VISIT = TableLayout(
    name="科室拜访",
    image_columns=["N", "O"],
    keywords=["科室", "内部照片"],
    column_labels={"N": "科室", "O": "内部照片"},
)

DEFAULT_LAYOUTS: list[TableLayout] = [HOSPITAL_VISIT, DEPARTMENT_VISIT, PHARMACY_VISIT]


def first_sheet_part(container: XlsxContainer) -> str | None:
    for name in sorted(container.names):
        lowered = name.lower()
        if lowered.startswith("xl/worksheets/") and lowered.endswith(".xml"):
            return name
    return None


def shared_strings_text(container: XlsxContainer) -> str:
    xml = container.read_text("xl/sharedStrings.xml")
    if not xml:
        return ""
    return " ".join(t.text for t in find_elements(xml, "t")).lower()


def inline_strings_text(container: XlsxContainer) -> str:
    """Text of ``t="inlineStr"`` cells (``<is><t>``) in the first worksheet."""
    part = first_sheet_part(container)
    xml = container.read_text(part) if part else None
    if not xml:
        return ""
    return " ".join(inline.text for inline in find_elements(xml, "is")).lower()


def workbook_text(container: XlsxContainer) -> str:
    """Lower-cased cell text from shared strings and inline strings."""
    return " ".join(
        text for text in (shared_strings_text(container), inline_strings_text(container)) if text
    )


def first_sheet_max_row(container: XlsxContainer) -> int | None:
    """Last row of the first worksheet's declared dimension, if any."""
    part = first_sheet_part(container)
    if part is None:
        return None
    xml = container.read_text(part) or ""
    dimension = find_first(xml[:4096], "dimension")
    if dimension is None:
        return None
    ref = (dimension.get_attribute("ref") or "").split(":")[-1]
    parsed = split_cell_ref(ref)
    return parsed[1] if parsed else None


class KeywordLayoutClassifier:
    """Match workbook cell text against the keywords of known layouts.

    Layouts are tried in order; the first whose keywords all appear wins.
    ``default`` is returned when none matches.
    """

    def __init__(
        self,
        layouts: list[TableLayout] | None = None,
        default: TableLayout | None = PHARMACY_VISIT,
    ) -> None:
        self._layouts = layouts if layouts is not None else DEFAULT_LAYOUTS
        self._default = default

    def classify(self, container: XlsxContainer) -> TableLayout | None:
        text = workbook_text(container)
        for layout in self._layouts:
            if layout.keywords and all(k.lower() in text for k in layout.keywords):
                logger.debug("sheetguard | stage=images | layout=%s", layout.name)
                return layout
        return self._default
