"""Per-image quality analysis: sharpness score and perceptual hash.

Sharpness is the mean squared response of an 8-neighbour Laplacian over a
downscaled grayscale copy, divided by 10 and clamped to ``[0, 100]``.  The
perceptual hash is a block-mean value hash over the full-resolution image,
rendered as a hex string.  A small grayscale thumbnail is kept alongside
the result for the duplicate detector's pixel comparisons, so the raw
bytes can be released immediately.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image

from sheetguard.config import ValidatorConfig
from sheetguard.errors import ErrorCode, SheetGuardError
from sheetguard.images.extract import mime_type_for
from sheetguard.models import ImageAnalysisResult, ImageRecord

logger = logging.getLogger("sheetguard")

NEUTRAL_SHARPNESS = 50.0
_LUMA = np.array([0.299, 0.587, 0.114], dtype=np.float64)


# ---------------------------------------------------------------------------
# Pixel helpers
# ---------------------------------------------------------------------------


def to_luma(image: Image.Image) -> np.ndarray:
    """Grayscale float array using ``0.299R + 0.587G + 0.114B``."""
    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    return rgb @ _LUMA


def downscale(image: Image.Image, max_short_side: int) -> Image.Image:
    """Shrink so the shorter side is at most *max_short_side* pixels."""
    short = min(image.width, image.height)
    if short <= max_short_side:
        return image
    scale = max_short_side / short
    size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
    return image.resize(size, Image.BILINEAR)


def laplacian_sharpness(gray: np.ndarray) -> float:
    """Mean squared 8-neighbour Laplacian response over interior pixels, / 10, clamped."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return NEUTRAL_SHARPNESS
    center = gray[1:-1, 1:-1]
    neighbours = (
        gray[:-2, :-2] + gray[:-2, 1:-1] + gray[:-2, 2:]
        + gray[1:-1, :-2] + gray[1:-1, 2:]
        + gray[2:, :-2] + gray[2:, 1:-1] + gray[2:, 2:]
    )
    response = 8.0 * center - neighbours
    variance = float(np.mean(response * response))
    return float(min(100.0, max(0.0, variance / 10.0)))


def block_mean_hash(gray: np.ndarray, bits: int = 12) -> str:
    """Block-mean value hash of a grayscale image as a hex string.

    The image is split into a ``bits x bits`` grid; each block's mean is
    compared with the median of its horizontal band (four bands), giving
    ``bits * bits`` bits.
    """
    height, width = gray.shape
    if height < bits or width < bits:
        rows = np.linspace(0, height - 1, num=max(height, bits)).round().astype(int)
        cols = np.linspace(0, width - 1, num=max(width, bits)).round().astype(int)
        gray = gray[np.ix_(rows, cols)]
        height, width = gray.shape

    row_edges = np.linspace(0, height, bits + 1).astype(int)
    col_edges = np.linspace(0, width, bits + 1).astype(int)
    # Sum per column-block first, then per row-block.
    col_sums = np.add.reduceat(gray, col_edges[:-1], axis=1)
    block_sums = np.add.reduceat(col_sums, row_edges[:-1], axis=0)
    areas = np.outer(np.diff(row_edges), np.diff(col_edges))
    means = (block_sums / areas).flatten()

    band_size = means.size // 4
    out = np.zeros(means.size, dtype=np.uint8)
    for band in range(4):
        start = band * band_size
        end = means.size if band == 3 else start + band_size
        segment = means[start:end]
        out[start:end] = segment > np.median(segment)

    padded = np.concatenate([out, np.zeros((-out.size) % 4, dtype=np.uint8)])
    nibbles = padded.reshape(-1, 4) @ np.array([8, 4, 2, 1])
    return "".join(f"{int(n):x}" for n in nibbles)


def thumbnail(image: Image.Image, size: int) -> np.ndarray:
    """``size x size`` grayscale array for pixel-domain comparisons."""
    return to_luma(image.convert("RGB").resize((size, size), Image.BILINEAR))


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


@dataclass
class ImageAnalysis:
    """Quality result plus the comparison thumbnail (None if undecodable)."""

    result: ImageAnalysisResult
    thumbnail: np.ndarray | None
    warning: SheetGuardError | None = None


class ImageQualityAnalyzer:
    """Decode one image and score it.

    Decode failures degrade to a neutral sharpness and an empty hash so a
    single corrupt picture never aborts the batch.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config

    def analyze(self, record: ImageRecord) -> ImageAnalysis:
        config = self._config
        data = record.raw_bytes or b""
        try:
            with Image.open(io.BytesIO(data)) as img:
                if img.width * img.height > config.max_image_pixels:
                    raise ValueError(
                        f"{img.width}x{img.height} exceeds {config.max_image_pixels} pixels"
                    )
                img.load()
                mime = Image.MIME.get(img.format or "", mime_type_for(record.name))
                rgb = img.convert("RGB")
            sharpness = laplacian_sharpness(to_luma(downscale(rgb, config.sharpness_max_side)))
            image_hash = block_mean_hash(to_luma(rgb), config.hash_bits)
            thumb = thumbnail(rgb, config.compare_size)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning(
                "sheetguard | stage=images | id=%s | decode failed: %s", record.id, exc
            )
            return ImageAnalysis(
                result=self._build(record, NEUTRAL_SHARPNESS, "", mime_type_for(record.name)),
                thumbnail=None,
                warning=SheetGuardError(
                    code=ErrorCode.W_IMAGE_DECODE_FAILED,
                    message=f"Image {record.id} could not be decoded: {exc}",
                    sheet_name=record.sheet,
                    stage="images",
                    recoverable=True,
                ),
            )

        return ImageAnalysis(result=self._build(record, sharpness, image_hash, mime), thumbnail=thumb)

    def _build(
        self, record: ImageRecord, sharpness: float, image_hash: str, mime: str
    ) -> ImageAnalysisResult:
        return ImageAnalysisResult(
            id=record.id,
            name=record.name,
            sharpness=round(sharpness, 2),
            is_blurry=sharpness < self._config.blur_threshold,
            hash=image_hash,
            position=record.position,
            row=record.row,
            column=record.column,
            mime_type=mime,
            size=record.size,
        )
