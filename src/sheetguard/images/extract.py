"""Turn the media files of a workbook into :class:`ImageRecord` entries.

Records are created without their bytes; :func:`load_image_bytes` reads
one image at a time so the analysis loop never holds more than one decoded
picture in memory.
"""

from __future__ import annotations

import logging
import posixpath

from sheetguard.config import ValidatorConfig
from sheetguard.container import XlsxContainer
from sheetguard.images.positions import PositionResolution
from sheetguard.models import ImageRecord

logger = logging.getLogger("sheetguard")

_MIME_BY_EXTENSION: dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
}


def mime_type_for(name: str) -> str:
    ext = posixpath.splitext(name)[1].lstrip(".").lower()
    return _MIME_BY_EXTENSION.get(ext, "application/octet-stream")


def _sort_key(record: ImageRecord) -> tuple[int, int, int, str]:
    if record.row is None:
        return (1, 0, 0, record.name)
    return (0, record.row, record.column if record.column is not None else 0, record.name)


def extract_images(
    container: XlsxContainer,
    resolution: PositionResolution,
    config: ValidatorConfig,
) -> list[ImageRecord]:
    """One record per placement of every supported media file, in sheet order.

    A media file placed in several cells yields one record per cell; a file
    with no known placement yields a single record with no position.
    """
    allowed = {ext.lower().lstrip(".") for ext in config.image_extensions}
    records: list[ImageRecord] = []
    used_ids: set[str] = set()

    for path in container.media_files():
        name = posixpath.basename(path)
        ext = posixpath.splitext(name)[1].lstrip(".").lower()
        if ext not in allowed:
            continue
        size = container.entry_size(path)
        positions = [p for p in resolution.positions.get(name, []) if p.position]

        if not positions:
            image_id = _unique_id(name, used_ids)
            records.append(
                ImageRecord(
                    id=image_id,
                    name=name,
                    size=size,
                    raw_bytes=None,
                    media_path=path,
                )
            )
            continue

        for pos in positions:
            candidate = pos.position or name
            if candidate in used_ids and pos.sheet:
                candidate = f"{pos.sheet}!{candidate}"
            image_id = _unique_id(candidate, used_ids)
            records.append(
                ImageRecord(
                    id=image_id,
                    name=name,
                    size=size,
                    raw_bytes=None,
                    position=pos.position,
                    row=pos.row,
                    column=pos.column,
                    sheet=pos.sheet,
                    type=pos.type,
                    media_path=path,
                )
            )

    records.sort(key=_sort_key)
    logger.debug("sheetguard | stage=images | extracted=%d", len(records))
    return records


def _unique_id(candidate: str, used: set[str]) -> str:
    image_id = candidate
    suffix = 2
    while image_id in used:
        image_id = f"{candidate}#{suffix}"
        suffix += 1
    used.add(image_id)
    return image_id


def load_image_bytes(container: XlsxContainer, record: ImageRecord) -> bytes:
    """Read the bytes of *record* into ``raw_bytes`` and return them."""
    data = container.read_bytes(record.media_path) or b""
    record.raw_bytes = data
    return data


def release_image_bytes(record: ImageRecord) -> None:
    record.raw_bytes = None
