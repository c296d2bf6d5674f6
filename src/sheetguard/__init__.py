"""sheetguard -- streaming validator for Excel (.xlsx) uploads.

Public API exports for the orchestrator, models, errors, configuration and
pluggable collaborator protocols.
"""

from sheetguard.config import ValidatorConfig
from sheetguard.container import XlsxContainer
from sheetguard.context import CancellationToken, ValidationContext
from sheetguard.cross_row import CrossRowValidator
from sheetguard.errors import ErrorCode, SheetGuardError, SheetGuardException
from sheetguard.header import FieldMapper, HeaderLocator
from sheetguard.models import (
    DuplicateRef,
    ErrorEvent,
    FieldMapping,
    HeaderRow,
    HeaderValidation,
    ImageAnalysisResult,
    ImagePosition,
    ImageValidationSummary,
    NeedSheetSelection,
    ParserUsed,
    ProgressEvent,
    Rule,
    RuleType,
    SheetInfo,
    ValidateRequest,
    ValidationError,
    ValidationResult,
    ValidationSummary,
    ValidationTemplate,
)
from sheetguard.protocols import LayoutClassifier, PositionStrategy
from sheetguard.report import build_error_report
from sheetguard.router import SheetValidationRouter
from sheetguard.rules import RowValidator
from sheetguard.security import WorkbookSecurityScanner
from sheetguard.workbook import WorkbookParser, select_sheet

__all__ = [
    # Orchestrator
    "SheetValidationRouter",
    "CancellationToken",
    "ValidationContext",
    # Enums
    "RuleType",
    "ParserUsed",
    # Template
    "Rule",
    "ValidationTemplate",
    # Header / mapping
    "HeaderRow",
    "FieldMapping",
    "HeaderValidation",
    # Results
    "ValidationError",
    "ValidationSummary",
    "ImagePosition",
    "DuplicateRef",
    "ImageAnalysisResult",
    "ImageValidationSummary",
    "SheetInfo",
    # Request / events
    "ValidateRequest",
    "ProgressEvent",
    "NeedSheetSelection",
    "ValidationResult",
    "ErrorEvent",
    # Components
    "XlsxContainer",
    "WorkbookSecurityScanner",
    "WorkbookParser",
    "select_sheet",
    "HeaderLocator",
    "FieldMapper",
    "RowValidator",
    "CrossRowValidator",
    # Report
    "build_error_report",
    # Errors
    "ErrorCode",
    "SheetGuardError",
    "SheetGuardException",
    # Config
    "ValidatorConfig",
    # Protocols
    "LayoutClassifier",
    "PositionStrategy",
]
