"""Error codes, the structured error record and its raisable wrapper."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Stable codes for every failure and degradation.

    ``E_`` codes end a run with an :class:`~sheetguard.models.ErrorEvent`;
    ``W_`` codes are collected in ``ValidationResult.warnings`` and never
    stop validation.
    """

    # Container / parse errors
    E_CONTAINER_EMPTY = "E_CONTAINER_EMPTY"
    E_CONTAINER_CORRUPT = "E_CONTAINER_CORRUPT"
    E_FILE_TOO_LARGE = "E_FILE_TOO_LARGE"
    E_PARSE_FAILED = "E_PARSE_FAILED"

    # Sheet errors
    E_SHEET_NOT_FOUND = "E_SHEET_NOT_FOUND"
    E_SHEET_EMPTY = "E_SHEET_EMPTY"
    E_ROWS_LIMIT = "E_ROWS_LIMIT"

    # Template errors
    E_TEMPLATE_INVALID = "E_TEMPLATE_INVALID"

    # Warnings (non-fatal)
    W_PARSER_FALLBACK = "W_PARSER_FALLBACK"
    W_ANCHOR_UNSUPPORTED = "W_ANCHOR_UNSUPPORTED"
    W_IMAGE_DECODE_FAILED = "W_IMAGE_DECODE_FAILED"
    W_IMAGE_POSITION_UNKNOWN = "W_IMAGE_POSITION_UNKNOWN"
    W_IMAGE_ESTIMATE_DISCARDED = "W_IMAGE_ESTIMATE_DISCARDED"
    W_DUPLICATE_PLACEMENT = "W_DUPLICATE_PLACEMENT"
    W_IMAGE_VALIDATION_FAILED = "W_IMAGE_VALIDATION_FAILED"


class SheetGuardError(BaseModel):
    """One failure or warning: code, message and where it happened.

    ``stage`` names the pipeline step (``security``, ``parse``, ``images``
    ...); ``recoverable`` is True for warnings the run continued past.
    """

    code: ErrorCode
    message: str
    sheet_name: str | None = None
    stage: str | None = None
    recoverable: bool = False


class SheetGuardException(Exception):
    """Raised by pipeline components for fatal failures.

    The router catches it and emits the wrapped :class:`SheetGuardError`
    as an error event.
    """

    def __init__(self, **fields: object) -> None:
        self.error = SheetGuardError(**fields)  # type: ignore[arg-type]
        super().__init__(f"{self.error.code.value}: {self.error.message}")

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def stage(self) -> str | None:
        return self.error.stage

    @property
    def recoverable(self) -> bool:
        return self.error.recoverable
