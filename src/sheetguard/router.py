"""SheetValidationRouter -- orchestrator and public API for sheetguard.

Drives one validation run through the pipeline:

1. Pre-flight checks on the raw bytes (:class:`WorkbookSecurityScanner`).
2. Sheet listing and selection (explicit choice, then template hints).
3. Sheet loading with the row ceiling (:class:`WorkbookParser`).
4. Header location and field mapping (:class:`HeaderLocator`,
   :class:`FieldMapper`).
5. Chunked single-row validation (:class:`RowValidator`).
6. Cross-row validation (:class:`CrossRowValidator`).
7. Optional image pipeline: position mapping, extraction, quality
   analysis and duplicate detection, one image at a time.

Progress is reported as :class:`ProgressEvent` objects followed by exactly
one terminal event.  Cancellation is cooperative and silent: once the token
is set, the generator stops without a terminal event.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import Union

import numpy as np

from sheetguard.config import ValidatorConfig
from sheetguard.container import XlsxContainer
from sheetguard.context import CancellationToken, ValidationContext
from sheetguard.cross_row import CrossRowValidator
from sheetguard.errors import ErrorCode, SheetGuardError, SheetGuardException
from sheetguard.header import FieldMapper, HeaderLocator
from sheetguard.images.duplicates import DuplicateDetector, count_duplicate_groups
from sheetguard.images.extract import extract_images, load_image_bytes, release_image_bytes
from sheetguard.images.positions import WORKBOOK_PART, ImagePositionMapper
from sheetguard.images.quality import ImageQualityAnalyzer
from sheetguard.models import (
    ErrorEvent,
    Event,
    HeaderValidation,
    ImageAnalysisResult,
    ImageValidationSummary,
    NeedSheetSelection,
    ParserUsed,
    ProgressEvent,
    RowRecord,
    SheetInfo,
    TerminalEvent,
    ValidateRequest,
    ValidationError,
    ValidationResult,
    ValidationSummary,
)
from sheetguard.protocols import LayoutClassifier
from sheetguard.rules import RowValidator, template_problems
from sheetguard.security import WorkbookSecurityScanner
from sheetguard.workbook import WorkbookParser, select_sheet

__all__ = ["CancellationToken", "SheetValidationRouter", "ValidationContext"]

logger = logging.getLogger("sheetguard")

_ImageStageItem = Union[ProgressEvent, ImageValidationSummary]


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class SheetValidationRouter:
    """Orchestrator that drives the full validation pipeline.

    Builds every pipeline component from *config* and exposes
    :meth:`avalidate` (event stream) and :meth:`process` (blocking) as the
    public API.

    Parameters
    ----------
    config:
        Validator configuration. Uses defaults when *None*.
    layout_classifier:
        Optional record-layout classifier used to estimate positions of
        vendor cell images that no formula places.
    """

    def __init__(
        self,
        config: ValidatorConfig | None = None,
        layout_classifier: LayoutClassifier | None = None,
    ) -> None:
        self._config = config or ValidatorConfig()

        self._scanner = WorkbookSecurityScanner(self._config)
        self._parser = WorkbookParser(self._config)
        self._header_locator = HeaderLocator(self._config)
        self._field_mapper = FieldMapper(self._config)
        self._row_validator = RowValidator(self._config)
        self._cross_row_validator = CrossRowValidator(self._config)
        self._position_mapper = ImagePositionMapper(self._config, layout_classifier)
        self._quality_analyzer = ImageQualityAnalyzer(self._config)
        self._duplicate_detector = DuplicateDetector(self._config)

    @property
    def config(self) -> ValidatorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def avalidate(
        self,
        request: ValidateRequest,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[Event]:
        """Validate one workbook, yielding progress and a terminal event.

        Parameters
        ----------
        request:
            File bytes, template and options for this run.
        token:
            Cancellation flag polled between chunks and images.

        Yields
        ------
        Event
            Any number of :class:`ProgressEvent` followed by one of
            :class:`NeedSheetSelection`, :class:`ValidationResult` or
            :class:`ErrorEvent`.  Nothing terminal is yielded after
            cancellation.
        """
        ctx = ValidationContext(
            request=request,
            config=self._config,
            token=token or CancellationToken(),
        )
        start = time.monotonic()
        try:
            async for event in self._run(ctx, start):
                yield event
        except SheetGuardException as exc:
            logger.error(
                "sheetguard | stage=%s | code=%s | %s",
                exc.stage or "validate",
                exc.code.value,
                exc.message,
            )
            yield ErrorEvent(message=exc.message, code=exc.code)
        except Exception as exc:
            logger.exception("sheetguard | stage=validate | unexpected failure")
            yield ErrorEvent(
                message=f"Validation failed: {exc}",
                code=ErrorCode.E_PARSE_FAILED,
            )

    def process(
        self,
        request: ValidateRequest,
        token: CancellationToken | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> TerminalEvent | None:
        """Blocking wrapper around :meth:`avalidate`.

        Returns the terminal event, or ``None`` if the run was cancelled.
        Must not be called from a running event loop.
        """

        async def _drive() -> TerminalEvent | None:
            terminal: TerminalEvent | None = None
            async for event in self.avalidate(request, token):
                if isinstance(event, ProgressEvent):
                    if on_progress is not None:
                        on_progress(event)
                else:
                    terminal = event
            return terminal

        return asyncio.run(_drive())

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, ctx: ValidationContext, start: float) -> AsyncIterator[Event]:
        request = ctx.request
        template = request.template

        # ----------------------------------------------------------
        # Step 1: Pre-flight checks
        # ----------------------------------------------------------
        yield ProgressEvent(progress=5, message="Checking file")
        fatal = [
            e for e in self._scanner.scan(request.file_bytes)
            if e.code.value.startswith("E_")
        ]
        if fatal:
            logger.error(
                "sheetguard | stage=security | code=%s | %s",
                fatal[0].code.value,
                fatal[0].message,
            )
            yield ErrorEvent(message=fatal[0].message, code=fatal[0].code)
            return

        problems = template_problems(template.validation_rules)
        if problems:
            raise SheetGuardException(
                code=ErrorCode.E_TEMPLATE_INVALID,
                message="Invalid template: " + "; ".join(problems),
                stage="template",
            )

        with XlsxContainer(request.file_bytes) as container:
            if not container.has(WORKBOOK_PART):
                raise SheetGuardException(
                    code=ErrorCode.E_CONTAINER_CORRUPT,
                    message="Archive has no xl/workbook.xml; it is not an .xlsx workbook.",
                    stage="container",
                )

            # ----------------------------------------------------------
            # Step 2: Sheet selection
            # ----------------------------------------------------------
            yield ProgressEvent(progress=10, message="Reading workbook")
            sheets = self._parser.list_sheets(request.file_bytes)
            sheet_name = self._choose_sheet(request, sheets)
            if sheet_name is None:
                logger.info(
                    "sheetguard | stage=sheets | no sheet matched hints=%s | sheets=%d",
                    template.sheet_names,
                    len(sheets),
                )
                yield NeedSheetSelection(available_sheets=sheets)
                return

            # ----------------------------------------------------------
            # Step 3: Load sheet (row ceiling enforced while streaming)
            # ----------------------------------------------------------
            yield ProgressEvent(progress=20, message=f"Parsing sheet {sheet_name}")
            sheet = self._parser.load_sheet(request.file_bytes, sheet_name)
            ctx.warnings.extend(sheet.warnings)
            rows = sheet.rows
            if ctx.cancelled:
                return

            # ----------------------------------------------------------
            # Step 4: Header row and field mapping
            # ----------------------------------------------------------
            yield ProgressEvent(progress=30, message="Validating header")
            header = self._header_locator.locate(rows, template)
            if header is None:
                yield self._header_failure(
                    ctx,
                    sheet_name,
                    sheet.parser_used,
                    HeaderValidation(is_valid=False, missing_fields=list(template.required_fields)),
                    start,
                )
                return

            mapping = self._field_mapper.build(header, template)
            header_validation = HeaderValidation(
                is_valid=not mapping.missing,
                missing_fields=mapping.missing,
                header_row_index=header.index,
                unmatched_fields=mapping.unmatched_headers,
                suggestions=mapping.suggestions,
            )
            if mapping.missing:
                yield self._header_failure(
                    ctx, sheet_name, sheet.parser_used, header_validation, start
                )
                return

            if self._config.log_sample_data and header.index + 1 < len(rows):
                logger.debug(
                    "sheetguard | stage=header | sheet=%s | first data row: %s",
                    sheet_name,
                    rows[header.index + 1],
                )

            # ----------------------------------------------------------
            # Step 5: Single-row rules, chunk by chunk
            # ----------------------------------------------------------
            errors: list[ValidationError] = []
            records: list[RowRecord] = []
            rules = list(template.validation_rules)
            processed = 0
            async for report in self._row_validator.avalidate(
                rows, header.index, mapping, rules, ctx.token
            ):
                errors.extend(report.errors)
                records.extend(report.records)
                processed = report.processed
                yield ProgressEvent(
                    progress=40 + int(40 * report.processed / max(1, report.total)),
                    message=f"Validated rows {report.processed}/{report.total}",
                )
            if ctx.cancelled:
                return

            # ----------------------------------------------------------
            # Step 6: Cross-row rules
            # ----------------------------------------------------------
            yield ProgressEvent(progress=80, message="Running cross-row checks")
            errors.extend(self._cross_row_validator.validate(records, rules, mapping))

            total_rows = max(0, len(rows) - (header.index + 1))
            error_rows = {e.row for e in errors}
            summary = ValidationSummary(
                total_rows=total_rows,
                valid_rows=max(0, total_rows - len(error_rows)),
                error_count=len(errors),
            )
            logger.info(
                "sheetguard | stage=rows | sheet=%s | rows=%d | processed=%d | errors=%d",
                sheet_name,
                total_rows,
                processed,
                len(errors),
            )

            # ----------------------------------------------------------
            # Step 7: Images (optional; failure never drops the row result)
            # ----------------------------------------------------------
            image_summary: ImageValidationSummary | None = None
            if request.include_images:
                yield ProgressEvent(progress=85, message="Validating images")
                try:
                    async for item in self._validate_images(container, ctx):
                        if isinstance(item, ProgressEvent):
                            yield item
                        else:
                            image_summary = item
                except Exception as exc:
                    logger.warning(
                        "sheetguard | stage=images | image validation failed: %s", exc
                    )
                    ctx.warnings.append(
                        SheetGuardError(
                            code=ErrorCode.W_IMAGE_VALIDATION_FAILED,
                            message=f"Image validation failed: {exc}",
                            stage="images",
                            recoverable=True,
                        )
                    )
                    image_summary = None
                if ctx.cancelled:
                    return

            elapsed = time.monotonic() - start
            yield ProgressEvent(progress=100, message="Validation complete")
            logger.info(
                "sheetguard | stage=done | sheet=%s | valid=%s | errors=%d | images=%s | %.3fs",
                sheet_name,
                summary.error_count == 0,
                summary.error_count,
                image_summary.total_images if image_summary else "-",
                elapsed,
            )
            yield ValidationResult(
                is_valid=summary.error_count == 0,
                sheet_name=sheet_name,
                header_validation=header_validation,
                errors=errors,
                summary=summary,
                image_validation=image_summary,
                warnings=ctx.warnings,
                parser_used=sheet.parser_used,
                processing_time_seconds=elapsed,
            )

    # ------------------------------------------------------------------
    # Image stage
    # ------------------------------------------------------------------

    async def _validate_images(
        self, container: XlsxContainer, ctx: ValidationContext
    ) -> AsyncIterator[_ImageStageItem]:
        """Analyze images strictly one at a time, then detect duplicates.

        Yields progress events and, unless cancelled, a final
        :class:`ImageValidationSummary`.
        """
        config = self._config
        stage_start = time.monotonic()

        resolution = self._position_mapper.resolve(container)
        ctx.warnings.extend(resolution.warnings)
        records = extract_images(container, resolution, config)
        total = len(records)

        results: list[ImageAnalysisResult] = []
        thumbnails: dict[str, np.ndarray | None] = {}
        for index, record in enumerate(records):
            if ctx.cancelled:
                logger.info("sheetguard | stage=images | cancelled at image %d/%d", index, total)
                return
            load_image_bytes(container, record)
            try:
                analysis = self._quality_analyzer.analyze(record)
            finally:
                release_image_bytes(record)
            results.append(analysis.result)
            thumbnails[record.id] = analysis.thumbnail
            if analysis.warning is not None:
                ctx.warnings.append(analysis.warning)

            yield ProgressEvent(
                progress=85 + int(14 * (index + 1) / total),
                message=f"Analyzed images {index + 1}/{total}",
            )
            await asyncio.sleep(config.image_pause_seconds)

        if ctx.cancelled:
            return
        self._duplicate_detector.find_duplicates(results, thumbnails)
        thumbnails.clear()

        summary = ImageValidationSummary(
            total_images=len(results),
            blurry_images=sum(1 for r in results if r.is_blurry),
            duplicate_groups=count_duplicate_groups(results),
            duplicate_placements=resolution.duplicate_placements,
            results=results,
        )
        logger.info(
            "sheetguard | stage=images | strategy=%s | images=%d | blurry=%d | groups=%d | %.3fs",
            resolution.strategy,
            summary.total_images,
            summary.blurry_images,
            summary.duplicate_groups,
            time.monotonic() - stage_start,
        )
        yield summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _choose_sheet(self, request: ValidateRequest, sheets: list[SheetInfo]) -> str | None:
        """Explicit selection first, then the template's sheet-name hints."""
        selected = request.selected_sheet
        if selected:
            if any(s.name == selected for s in sheets):
                return selected
            logger.warning(
                "sheetguard | stage=sheets | selected sheet %r not found, using hints",
                selected,
            )
        return select_sheet(
            sheets, request.template.sheet_names, self._config.fuzzy_sheet_threshold
        )

    @staticmethod
    def _header_failure(
        ctx: ValidationContext,
        sheet_name: str,
        parser_used: ParserUsed,
        header_validation: HeaderValidation,
        start: float,
    ) -> ValidationResult:
        logger.info(
            "sheetguard | stage=header | sheet=%s | header invalid | missing=%s",
            sheet_name,
            ",".join(header_validation.missing_fields),
        )
        return ValidationResult(
            is_valid=False,
            sheet_name=sheet_name,
            header_validation=header_validation,
            errors=[],
            summary=ValidationSummary(),
            warnings=ctx.warnings,
            parser_used=parser_used,
            processing_time_seconds=time.monotonic() - start,
        )
