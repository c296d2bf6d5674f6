"""Pydantic data models, enumerations, and event types for sheetguard.

This module defines the data model layer shared by every stage: the
caller-supplied ``ValidationTemplate`` and its ``Rule`` entries, header and
field-mapping artifacts, row-level and image-level results, and the event
types emitted by :class:`~sheetguard.router.SheetValidationRouter`.

Transient per-row and per-image records that never leave the pipeline are
plain dataclasses; everything that crosses the public boundary is a
Pydantic model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from sheetguard.errors import ErrorCode, SheetGuardError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class RuleType(str, Enum):
    """Every rule kind a template may declare.

    The first seven are evaluated row by row; the last three need the
    whole row set and run in the cross-row pass.
    """

    REQUIRED = "required"
    DATE_FORMAT = "dateFormat"
    MEDICAL_LEVEL = "medicalLevel"
    DURATION = "duration"
    TIME_RANGE = "timeRange"
    MIN_VALUE = "minValue"
    PROHIBITED_CONTENT = "prohibitedContent"
    UNIQUE = "unique"
    FREQUENCY = "frequency"
    DATE_INTERVAL = "dateInterval"


CROSS_ROW_RULE_TYPES: frozenset[RuleType] = frozenset(
    {RuleType.UNIQUE, RuleType.FREQUENCY, RuleType.DATE_INTERVAL}
)


class ParserUsed(str, Enum):
    """Which parser produced the 2D cell array for the selected sheet."""

    OPENPYXL = "openpyxl"
    PANDAS_FALLBACK = "pandas_fallback"


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------


class Rule(BaseModel):
    """One declarative validation rule bound to a canonical field.

    ``params`` holds the type-specific settings, e.g. ``{"minMinutes": 30}``
    for ``duration`` or ``{"maxPerDay": 5, "groupBy": "implementer"}`` for
    ``frequency``.
    """

    model_config = ConfigDict(frozen=True)

    field: str
    type: RuleType
    message: str
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_cross_row(self) -> bool:
        return self.type in CROSS_ROW_RULE_TYPES


class ValidationTemplate(BaseModel):
    """Caller-supplied description of what a conforming sheet looks like.

    Accepts both snake_case names and the camelCase keys used by template
    JSON files (``requiredFields``, ``fieldMappings``, ``validationRules``,
    ``sheetNames``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    required_fields: list[str] = Field(default_factory=list, alias="requiredFields")
    field_mappings: dict[str, str] = Field(default_factory=dict, alias="fieldMappings")
    validation_rules: list[Rule] = Field(default_factory=list, alias="validationRules")
    sheet_names: list[str] = Field(default_factory=list, alias="sheetNames")

    @classmethod
    def from_file(cls, path: str) -> ValidationTemplate:
        """Load a template from a YAML or JSON file."""
        from sheetguard.config import load_mapping_file

        return cls.model_validate(load_mapping_file(path))

    def canonical_name(self, label: str) -> str:
        """Return the canonical field name for a header label or field name."""
        return self.field_mappings.get(label, label)


# ---------------------------------------------------------------------------
# Header / mapping artifacts
# ---------------------------------------------------------------------------


class HeaderRow(BaseModel):
    """The chosen header row: raw header strings and its 0-based row index."""

    model_config = ConfigDict(frozen=True)

    index: int
    cells: list[str]
    score: float = 0.0


class FieldMapping(BaseModel):
    """Column lookup derived from a header row and a template.

    ``columns`` maps canonical field names *and* raw/cleaned header text to a
    0-based column index; ``missing`` lists required fields no strategy
    could resolve.
    """

    columns: dict[str, int] = Field(default_factory=dict)
    missing: list[str] = Field(default_factory=list)
    unmatched_headers: list[str] = Field(default_factory=list)
    suggestions: dict[str, str] = Field(default_factory=dict)

    def column_for(self, name: str) -> int | None:
        return self.columns.get(name)


class HeaderValidation(BaseModel):
    """Outcome of header detection and required-field resolution."""

    is_valid: bool
    missing_fields: list[str] = Field(default_factory=list)
    header_row_index: int | None = None
    unmatched_fields: list[str] = Field(default_factory=list)
    suggestions: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Row-level records and results
# ---------------------------------------------------------------------------


@dataclass
class RowRecord:
    """A parsed data row, keyed by canonical field name."""

    row_number: int  # 1-based, as seen in the sheet
    fields: dict[str, Any]
    originals: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        return self.fields.get(name)

    def original(self, name: str) -> Any:
        """Value before date normalization, falling back to the parsed value."""
        if name in self.originals:
            return self.originals[name]
        return self.fields.get(name)


class ValidationError(BaseModel):
    """One rule violation located at a sheet row and column."""

    row: int
    column: str
    field: str
    value: Any = None
    message: str
    error_type: str


class ValidationSummary(BaseModel):
    """Row counts for a completed validation run."""

    total_rows: int = 0
    valid_rows: int = 0
    error_count: int = 0


# ---------------------------------------------------------------------------
# Image artifacts
# ---------------------------------------------------------------------------


class ImagePosition(BaseModel):
    """A worksheet cell an image is placed in.

    ``position`` is ``None`` for images that are not anchored to a cell
    (header/footer pictures).
    """

    model_config = ConfigDict(frozen=True)

    position: str | None
    row: int | None = None  # 1-based
    column: int | None = None  # 0-based
    type: str | None = None
    sheet: str | None = None
    estimated: bool = False


@dataclass
class ImageRecord:
    """An extracted image with its raw bytes, released after analysis."""

    id: str
    name: str
    size: int
    raw_bytes: bytes | None
    position: str | None = None
    row: int | None = None
    column: int | None = None
    sheet: str | None = None
    type: str | None = None
    media_path: str = ""


class DuplicateRef(BaseModel):
    """Reference to another image confirmed as a near-duplicate."""

    model_config = ConfigDict(frozen=True)

    id: str
    position: str | None = None


class ImageAnalysisResult(BaseModel):
    """Quality and duplicate findings for one image."""

    id: str
    name: str = ""
    sharpness: float
    is_blurry: bool
    hash: str = ""
    duplicates: list[DuplicateRef] = Field(default_factory=list)
    position: str | None = None
    row: int | None = None
    column: int | None = None
    mime_type: str = "application/octet-stream"
    size: int = 0


class ImageValidationSummary(BaseModel):
    """Aggregated image findings attached to a validation result."""

    total_images: int = 0
    blurry_images: int = 0
    duplicate_groups: int = 0
    duplicate_placements: dict[str, list[str]] = Field(default_factory=dict)
    results: list[ImageAnalysisResult] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------


class SheetInfo(BaseModel):
    """A worksheet available in the workbook."""

    name: str
    has_data: bool
    max_row: int = 0
    max_column: int = 0


# ---------------------------------------------------------------------------
# Request and events
# ---------------------------------------------------------------------------


class ValidateRequest(BaseModel):
    """Everything the validator needs for one run."""

    file_bytes: bytes
    task_name: str = ""
    selected_sheet: str | None = None
    template: ValidationTemplate
    include_images: bool = False


class ProgressEvent(BaseModel):
    """Non-terminal progress notification."""

    kind: Literal["progress"] = "progress"
    progress: int = Field(ge=0, le=100)
    message: str


class NeedSheetSelection(BaseModel):
    """Terminal: the caller must pick a worksheet and re-invoke."""

    kind: Literal["need_sheet_selection"] = "need_sheet_selection"
    available_sheets: list[SheetInfo]


class ValidationResult(BaseModel):
    """Terminal: the completed validation outcome."""

    kind: Literal["result"] = "result"
    is_valid: bool
    sheet_name: str | None = None
    header_validation: HeaderValidation
    errors: list[ValidationError] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
    image_validation: ImageValidationSummary | None = None
    warnings: list[SheetGuardError] = Field(default_factory=list)
    parser_used: ParserUsed | None = None
    processing_time_seconds: float = 0.0


class ErrorEvent(BaseModel):
    """Terminal: an unrecoverable failure."""

    kind: Literal["error"] = "error"
    message: str
    code: ErrorCode = ErrorCode.E_PARSE_FAILED


TerminalEvent = Union[NeedSheetSelection, ValidationResult, ErrorEvent]
Event = Union[ProgressEvent, NeedSheetSelection, ValidationResult, ErrorEvent]
