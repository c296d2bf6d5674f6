"""Map embedded media files to the worksheet cells they are placed in.

Two strategies are tried in priority order, first non-empty result wins:

1. :class:`CellImagesStrategy` -- the vendor ``xl/cellimages.xml`` layout,
   where each picture carries an identifier and worksheet cells place it
   with a ``DISPIMG("<id>", 1)`` formula.
2. :class:`DrawingStrategy` -- standard DrawingML anchors reached through
   each worksheet's drawing relationship.

The result maps a media file basename (``image3.png``) to an ordered list
of :class:`~sheetguard.models.ImagePosition`; one file may back several
cells.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field

from sheetguard.cellref import (
    cell_ref,
    column_index_to_letter,
    letter_to_column_index,
    split_cell_ref,
)
from sheetguard.config import ValidatorConfig
from sheetguard.container import XlsxContainer
from sheetguard.errors import ErrorCode, SheetGuardError
from sheetguard.images.layouts import first_sheet_max_row
from sheetguard.models import ImagePosition
from sheetguard.protocols import LayoutClassifier, PositionStrategy
from sheetguard.xmlmatch import XmlElement, find_elements

logger = logging.getLogger("sheetguard")

CELLIMAGES_PART = "xl/cellimages.xml"
CELLIMAGES_RELS = "xl/_rels/cellimages.xml.rels"
WORKBOOK_PART = "xl/workbook.xml"

_DISPIMG_RE = re.compile(r"DISPIMG\(\s*\"([^\"]+)\"")
_DRAWING_REL_SUFFIX = "/drawing"
_VML_REL_SUFFIX = "/vmlDrawing"
HEADER_FOOTER_TYPE = "header_footer"


@dataclass
class PositionResolution:
    """Output of one position strategy."""

    strategy: str
    positions: dict[str, list[ImagePosition]] = field(default_factory=dict)
    duplicate_placements: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[SheetGuardError] = field(default_factory=list)

    def add(self, media: str, position: ImagePosition) -> None:
        bucket = self.positions.setdefault(media, [])
        if position not in bucket:
            bucket.append(position)

    def __bool__(self) -> bool:
        return bool(self.positions)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def relationship_targets(
    container: XlsxContainer, source_part: str, type_suffix: str | None = None
) -> dict[str, str]:
    """``Id -> resolved part path`` for the relationships of *source_part*."""
    xml = container.read_text(XlsxContainer.rels_path_for(source_part))
    if not xml:
        return {}
    targets: dict[str, str] = {}
    for rel in find_elements(xml, "Relationship"):
        rel_id = rel.get_attribute("Id")
        target = rel.get_attribute("Target")
        if not rel_id or not target:
            continue
        if type_suffix and not (rel.get_attribute("Type") or "").endswith(type_suffix):
            continue
        if rel.get_attribute("TargetMode") == "External":
            continue
        targets[rel_id] = XlsxContainer.resolve_target(source_part, target)
    return targets


def workbook_sheets(container: XlsxContainer) -> list[tuple[str, str]]:
    """``(sheet name, worksheet part)`` pairs in workbook order."""
    xml = container.read_text(WORKBOOK_PART)
    sheets: list[tuple[str, str]] = []
    if xml:
        targets = relationship_targets(container, WORKBOOK_PART)
        for sheet in find_elements(xml, "sheet"):
            name = sheet.get_attribute("name")
            rel_id = sheet.get_attribute("r:id")
            part = targets.get(rel_id or "")
            if name and part and container.has(part):
                sheets.append((name, part))
    if sheets:
        return sheets
    # No usable workbook part: fall back to worksheet files in name order.
    parts = sorted(
        n for n in container.names
        if n.lower().startswith("xl/worksheets/") and n.lower().endswith(".xml")
        and "/_rels/" not in n.lower()
    )
    return [(posixpath.splitext(posixpath.basename(p))[0], p) for p in parts]


def image_type_for(column_letter: str, labels: dict[str, str], default: str) -> str:
    return labels.get(column_letter, default)


# ---------------------------------------------------------------------------
# Vendor cell-image layout
# ---------------------------------------------------------------------------


class CellImagesStrategy:
    """Resolve pictures of the vendor ``cellimages.xml`` part.

    A formula placement is authoritative.  An identifier placed in more than
    one cell is a real duplicate placement: every cell is kept and the media
    file is reported.  Without a formula placement, a layout classifier (if
    given) estimates the cell from the picture's index; estimates outside
    the layout's photo columns or data rows are discarded.
    """

    name = "cellimages"

    def __init__(
        self,
        config: ValidatorConfig,
        classifier: LayoutClassifier | None = None,
    ) -> None:
        self._config = config
        self._classifier = classifier

    def resolve(self, container: XlsxContainer) -> PositionResolution | None:
        xml = container.read_text(CELLIMAGES_PART)
        rels_xml = container.read_text(CELLIMAGES_RELS)
        if not xml or not rels_xml:
            return None

        media_by_rel = {
            rel_id: posixpath.basename(target)
            for rel_id, target in relationship_targets(container, CELLIMAGES_PART).items()
        }
        entries = find_elements(xml, "cellImage")
        if not entries:
            return None

        placements = self.scan_formulas(container)
        resolution = PositionResolution(strategy=self.name)
        layout = None
        layout_checked = False
        max_row: int | None = None
        labels = self._config.image_type_labels

        for index, entry in enumerate(entries):
            media = self._media_for(entry, media_by_rel)
            if media is None:
                continue
            image_id = self._image_id(entry)
            cells = placements.get(image_id, []) if image_id else []

            if cells:
                for sheet, ref in cells:
                    parsed = split_cell_ref(ref)
                    if parsed is None:
                        continue
                    letter, row = parsed
                    resolution.add(
                        media,
                        ImagePosition(
                            position=ref,
                            row=row,
                            column=letter_to_column_index(letter),
                            type=image_type_for(letter, labels, self._config.default_image_type),
                            sheet=sheet,
                        ),
                    )
                if len(cells) > 1:
                    refs = [ref for _, ref in cells]
                    resolution.duplicate_placements[media] = refs
                    resolution.warnings.append(
                        SheetGuardError(
                            code=ErrorCode.W_DUPLICATE_PLACEMENT,
                            message=(
                                f"Image {image_id} ({media}) is placed in "
                                f"{len(cells)} cells: {', '.join(refs)}"
                            ),
                            stage="images",
                            recoverable=True,
                        )
                    )
                    logger.warning(
                        "sheetguard | stage=images | duplicate_placement | id=%s | cells=%s",
                        image_id,
                        ",".join(refs),
                    )
                continue

            # --- No formula placement: estimate from the record layout ---
            if self._classifier is not None and not layout_checked:
                layout = self._classifier.classify(container)
                max_row = first_sheet_max_row(container)
                layout_checked = True

            if layout is None:
                resolution.positions.setdefault(media, [])
                resolution.warnings.append(
                    SheetGuardError(
                        code=ErrorCode.W_IMAGE_POSITION_UNKNOWN,
                        message=f"No cell placement found for image {image_id or media}.",
                        stage="images",
                        recoverable=True,
                    )
                )
                continue

            letter, row, label = layout.estimate(index)
            if not layout.is_plausible(letter, row, max_row):
                resolution.positions.setdefault(media, [])
                resolution.warnings.append(
                    SheetGuardError(
                        code=ErrorCode.W_IMAGE_ESTIMATE_DISCARDED,
                        message=(
                            f"Estimated position {letter}{row} for image "
                            f"{image_id or media} is outside layout '{layout.name}'."
                        ),
                        stage="images",
                        recoverable=True,
                    )
                )
                continue
            resolution.add(
                media,
                ImagePosition(
                    position=f"{letter}{row}",
                    row=row,
                    column=letter_to_column_index(letter),
                    type=label,
                    estimated=True,
                ),
            )

        if not resolution:
            return None
        logger.info(
            "sheetguard | stage=images | strategy=%s | media=%d | duplicates=%d",
            self.name,
            len(resolution.positions),
            len(resolution.duplicate_placements),
        )
        return resolution

    # ------------------------------------------------------------------

    @staticmethod
    def _image_id(entry: XmlElement) -> str | None:
        nv = entry.find("cNvPr")
        if nv is None:
            return None
        return nv.get_attribute("name") or None

    @staticmethod
    def _media_for(entry: XmlElement, media_by_rel: dict[str, str]) -> str | None:
        blip = entry.find("blip")
        if blip is None:
            return None
        embed = blip.get_attribute("r:embed")
        return media_by_rel.get(embed or "")

    @staticmethod
    def scan_formulas(container: XlsxContainer) -> dict[str, list[tuple[str, str]]]:
        """``image id -> [(sheet, cell ref), ...]`` for every ``DISPIMG`` cell."""
        placements: dict[str, list[tuple[str, str]]] = {}
        for sheet_name, part in workbook_sheets(container):
            xml = container.read_text(part)
            if not xml or "DISPIMG" not in xml:
                continue
            for cell in find_elements(xml, "c"):
                if "DISPIMG" not in cell.inner:
                    continue
                ref = cell.get_attribute("r")
                match = _DISPIMG_RE.search(cell.text)
                if not ref or not match:
                    continue
                cells = placements.setdefault(match.group(1), [])
                if (sheet_name, ref) not in cells:
                    cells.append((sheet_name, ref))
        return placements


# ---------------------------------------------------------------------------
# Standard DrawingML layout
# ---------------------------------------------------------------------------


class DrawingStrategy:
    """Resolve pictures anchored through worksheet drawing parts.

    Two-cell and one-cell anchors map to their ``from`` cell.  Absolute
    anchors have no cell and are skipped with a warning.  Header/footer
    pictures are collected with no position.
    """

    name = "drawing"

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config

    def resolve(self, container: XlsxContainer) -> PositionResolution | None:
        resolution = PositionResolution(strategy=self.name)
        for sheet_name, sheet_part in workbook_sheets(container):
            for drawing_part in relationship_targets(
                container, sheet_part, _DRAWING_REL_SUFFIX
            ).values():
                self._read_drawing(container, sheet_name, drawing_part, resolution)
            self._read_header_footer(container, sheet_name, sheet_part, resolution)

        if not resolution and not resolution.warnings:
            return None
        logger.info(
            "sheetguard | stage=images | strategy=%s | media=%d",
            self.name,
            len(resolution.positions),
        )
        return resolution

    def _read_drawing(
        self,
        container: XlsxContainer,
        sheet_name: str,
        drawing_part: str,
        resolution: PositionResolution,
    ) -> None:
        xml = container.read_text(drawing_part)
        if not xml:
            return
        media_by_rel = {
            rel_id: posixpath.basename(target)
            for rel_id, target in relationship_targets(container, drawing_part).items()
        }
        labels = self._config.image_type_labels

        for tag in ("twoCellAnchor", "oneCellAnchor"):
            for anchor in find_elements(xml, tag):
                origin = anchor.find("from")
                if origin is None:
                    continue
                col_el, row_el = origin.find("col"), origin.find("row")
                try:
                    col = int(col_el.text.strip()) if col_el is not None else None
                    row = int(row_el.text.strip()) + 1 if row_el is not None else None
                except ValueError:
                    continue
                if col is None or row is None:
                    continue
                ref = cell_ref(col, row)
                letter = column_index_to_letter(col)
                for blip in anchor.find_all("blip"):
                    media = media_by_rel.get(blip.get_attribute("r:embed") or "")
                    if media is None:
                        continue
                    resolution.add(
                        media,
                        ImagePosition(
                            position=ref,
                            row=row,
                            column=col,
                            type=image_type_for(letter, labels, self._config.default_image_type),
                            sheet=sheet_name,
                        ),
                    )

        for anchor in find_elements(xml, "absoluteAnchor"):
            for blip in anchor.find_all("blip"):
                media = media_by_rel.get(blip.get_attribute("r:embed") or "")
                resolution.warnings.append(
                    SheetGuardError(
                        code=ErrorCode.W_ANCHOR_UNSUPPORTED,
                        message=(
                            f"Image {media or '?'} on sheet '{sheet_name}' uses an "
                            "absolute anchor; it has no cell position and is skipped."
                        ),
                        sheet_name=sheet_name,
                        stage="images",
                        recoverable=True,
                    )
                )
                logger.warning(
                    "sheetguard | stage=images | absolute anchor skipped | sheet=%s | media=%s",
                    sheet_name,
                    media,
                )

    @staticmethod
    def _read_header_footer(
        container: XlsxContainer,
        sheet_name: str,
        sheet_part: str,
        resolution: PositionResolution,
    ) -> None:
        xml = container.read_text(sheet_part) or ""
        if "legacyDrawingHF" not in xml:
            return
        vml_targets = relationship_targets(container, sheet_part, _VML_REL_SUFFIX)
        for element in find_elements(xml, "legacyDrawingHF"):
            vml_part = vml_targets.get(element.get_attribute("r:id") or "")
            if vml_part is None:
                continue
            for target in relationship_targets(container, vml_part).values():
                resolution.add(
                    posixpath.basename(target),
                    ImagePosition(position=None, type=HEADER_FOOTER_TYPE, sheet=sheet_name),
                )


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


class ImagePositionMapper:
    """Try each position strategy in order and return the first non-empty result.

    Parameters
    ----------
    config:
        Validator configuration (image type labels).
    layout_classifier:
        Optional record-layout classifier used by the vendor strategy for
        pictures that have no formula placement.
    strategies:
        Override the default ``[CellImagesStrategy, DrawingStrategy]`` order.
    """

    def __init__(
        self,
        config: ValidatorConfig,
        layout_classifier: LayoutClassifier | None = None,
        strategies: list[PositionStrategy] | None = None,
    ) -> None:
        self._strategies: list[PositionStrategy] = strategies or [
            CellImagesStrategy(config, layout_classifier),
            DrawingStrategy(config),
        ]

    def resolve(self, container: XlsxContainer) -> PositionResolution:
        # A strategy that found no placements may still carry warnings.
        fallback: PositionResolution | None = None
        for strategy in self._strategies:
            result = strategy.resolve(container)
            if result:
                return result
            if result is not None and result.warnings and fallback is None:
                fallback = result
        if fallback is not None:
            return fallback
        return PositionResolution(strategy="none")
