"""Export a :class:`ValidationResult` as an ``.xlsx`` error report.

The report has a summary sheet, an error detail sheet (only when there are
errors), an error statistics sheet and, when images were analyzed, an image
sheet.  Sheet titles and labels are in Chinese, matching the field names
users see in their own workbooks.
"""

from __future__ import annotations

import io
import logging
from collections import Counter
from datetime import datetime
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from sheetguard.models import ImageValidationSummary, ValidationResult

logger = logging.getLogger("sheetguard")

SUMMARY_SHEET = "验证汇总"
DETAIL_SHEET = "错误详情"
STATS_SHEET = "错误统计"
IMAGE_SHEET = "图片验证结果"

ERROR_TYPE_LABELS: dict[str, str] = {
    "required": "必填字段缺失",
    "enum": "枚举值错误",
    "dateFormat": "日期格式错误",
    "dateInterval": "日期间隔冲突",
    "frequency": "频次超限",
    "duration": "时长不符",
    "timeRange": "时间范围错误",
    "unique": "唯一性冲突",
    "minValue": "数值不足",
    "medicalLevel": "医疗类型错误",
    "prohibitedContent": "包含禁用词汇",
}

DETAIL_HEADERS = ["序号", "工作表", "行号", "列", "字段", "错误类型", "错误描述", "错误值"]
_DETAIL_WIDTHS = [8, 12, 8, 8, 15, 14, 40, 20]

_TITLE_FONT = Font(bold=True, size=16, color="FFFFFF")
_TITLE_FILL = PatternFill("solid", fgColor="4F81BD")
_HEADER_FONT = Font(bold=True)
_HEADER_FILL = PatternFill("solid", fgColor="D9E1F2")


def error_type_label(error_type: str) -> str:
    return ERROR_TYPE_LABELS.get(error_type, error_type)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _style_title(ws: Worksheet) -> None:
    cell = ws["A1"]
    cell.font = _TITLE_FONT
    cell.fill = _TITLE_FILL
    cell.alignment = Alignment(horizontal="center")


def _style_header_row(ws: Worksheet, row: int, width: int) -> None:
    for col in range(1, width + 1):
        cell = ws.cell(row=row, column=col)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center")


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------


def _write_summary(
    ws: Worksheet,
    result: ValidationResult,
    task_name: str | None,
    file_name: str | None,
) -> None:
    summary = result.summary
    rows: list[list[Any]] = [
        ["验证结果汇总"],
        [],
        ["文件名", file_name or "未知文件"],
        ["任务类型", task_name or "未知任务"],
        ["工作表", result.sheet_name or ""],
        ["验证时间", datetime.now().strftime("%Y-%m-%d %H:%M:%S")],
        [],
        ["总行数", summary.total_rows],
        ["有效行数", summary.valid_rows],
        ["错误总数", summary.error_count],
        ["验证状态", "通过" if result.is_valid else "未通过"],
    ]
    header = result.header_validation
    if not header.is_valid:
        rows.append([])
        rows.append(["缺少字段", "、".join(header.missing_fields)])
        for field, suggestion in header.suggestions.items():
            rows.append([f"{field} 可能对应", suggestion])
    for row in rows:
        ws.append(row)
    _style_title(ws)
    ws.column_dimensions["A"].width = 16
    ws.column_dimensions["B"].width = 30


def _write_details(ws: Worksheet, result: ValidationResult) -> None:
    ws.append(DETAIL_HEADERS)
    _style_header_row(ws, 1, len(DETAIL_HEADERS))
    for index, error in enumerate(result.errors, start=1):
        ws.append([
            index,
            result.sheet_name or "",
            error.row,
            error.column,
            error.field,
            error_type_label(error.error_type),
            error.message,
            _cell_text(error.value),
        ])
    for offset, width in enumerate(_DETAIL_WIDTHS):
        ws.column_dimensions[chr(ord("A") + offset)].width = width


def _write_stats(ws: Worksheet, result: ValidationResult) -> None:
    counts = Counter(error.error_type for error in result.errors)
    total = len(result.errors) or 1
    ws.append(["错误统计"])
    ws.append([])
    ws.append(["错误类型", "数量", "占比"])
    _style_header_row(ws, 3, 3)
    for error_type, count in counts.most_common():
        ws.append([error_type_label(error_type), count, f"{count / total * 100:.1f}%"])
    _style_title(ws)
    ws.column_dimensions["A"].width = 18


def _write_images(ws: Worksheet, images: ImageValidationSummary) -> None:
    ws.append(["图片验证结果汇总"])
    ws.append([])
    ws.append(["总图片数", images.total_images])
    ws.append(["模糊图片", images.blurry_images])
    ws.append(["重复图片组", images.duplicate_groups])
    ws.append([])
    header_row = ws.max_row + 1
    ws.append(["图片ID", "文件名", "位置", "清晰度分数", "是否模糊", "重复图片"])
    _style_header_row(ws, header_row, 6)
    for image in images.results:
        ws.append([
            image.id,
            image.name,
            image.position or "",
            round(image.sharpness, 2),
            "是" if image.is_blurry else "否",
            "; ".join(ref.position or ref.id for ref in image.duplicates),
        ])
    if images.duplicate_placements:
        ws.append([])
        ws.append(["重复放置", "单元格"])
        for media, cells in images.duplicate_placements.items():
            ws.append([media, ", ".join(cells)])
    _style_title(ws)
    for letter, width in zip("ABCDEF", (15, 18, 10, 12, 10, 30)):
        ws.column_dimensions[letter].width = width


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_error_report(
    result: ValidationResult,
    task_name: str | None = None,
    file_name: str | None = None,
) -> bytes:
    """Render *result* as ``.xlsx`` bytes.

    Args:
        result: A completed validation result.
        task_name: Shown on the summary sheet.
        file_name: Name of the validated upload, shown on the summary sheet.

    Returns:
        The workbook serialized to bytes.
    """
    wb = Workbook()
    summary_ws = wb.active
    summary_ws.title = SUMMARY_SHEET
    _write_summary(summary_ws, result, task_name, file_name)

    if result.errors:
        _write_details(wb.create_sheet(DETAIL_SHEET), result)
    _write_stats(wb.create_sheet(STATS_SHEET), result)

    images = result.image_validation
    if images is not None and images.total_images > 0:
        _write_images(wb.create_sheet(IMAGE_SHEET), images)

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.debug(
        "sheetguard | stage=report | errors=%d | sheets=%s",
        len(result.errors),
        ",".join(wb.sheetnames),
    )
    return buffer.getvalue()
