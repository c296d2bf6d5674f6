"""Pre-flight checks on raw workbook bytes.

Validates size and container signature before any parsing begins, so
oversized or non-OOXML uploads are rejected with an actionable message
instead of failing deep inside a parser.
"""

from __future__ import annotations

import logging

from sheetguard.config import ValidatorConfig
from sheetguard.errors import ErrorCode, SheetGuardError

logger = logging.getLogger("sheetguard")

# ---------------------------------------------------------------------------
# Magic byte signatures
# ---------------------------------------------------------------------------

_ZIP_MAGIC: tuple[bytes, ...] = (b"PK\x03\x04", b"PK\x05\x06")
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


class WorkbookSecurityScanner:
    """Run pre-flight checks on the raw bytes of an upload.

    Returns a list of errors.  Any ``E_*`` code means the bytes must not be
    processed further.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self.config = config

    def scan(self, data: bytes) -> list[SheetGuardError]:
        """Run all pre-flight checks and return the errors found."""
        errors: list[SheetGuardError] = []

        # --- 1. Empty input ---
        if not data:
            errors.append(
                SheetGuardError(
                    code=ErrorCode.E_CONTAINER_EMPTY,
                    message="Workbook is empty (0 bytes).",
                    stage="security",
                )
            )
            return errors

        # --- 2. Size ceiling ---
        max_bytes = self.config.max_file_size_mb * 1024 * 1024
        if len(data) > max_bytes:
            errors.append(
                SheetGuardError(
                    code=ErrorCode.E_FILE_TOO_LARGE,
                    message=(
                        f"File size {len(data)} bytes exceeds the limit of "
                        f"{self.config.max_file_size_mb} MB; split the workbook "
                        "and validate the parts separately."
                    ),
                    stage="security",
                )
            )
            return errors

        # --- 3. Container signature ---
        if data.startswith(_OLE_MAGIC):
            errors.append(
                SheetGuardError(
                    code=ErrorCode.E_CONTAINER_CORRUPT,
                    message=(
                        "File is a legacy .xls (or encrypted) workbook; "
                        "save it as .xlsx and retry."
                    ),
                    stage="security",
                )
            )
            return errors

        if not data.startswith(_ZIP_MAGIC):
            errors.append(
                SheetGuardError(
                    code=ErrorCode.E_CONTAINER_CORRUPT,
                    message="File is not an .xlsx workbook (missing ZIP signature).",
                    stage="security",
                )
            )
            return errors

        logger.debug("sheetguard | stage=security | bytes=%d | ok", len(data))
        return errors
