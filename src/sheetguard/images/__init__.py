"""Image pipeline: position mapping, extraction, quality and duplicate checks."""

from sheetguard.images.duplicates import (
    DuplicateDetector,
    count_duplicate_groups,
    global_ssim,
    hamming_distance,
    mean_absolute_difference,
)
from sheetguard.images.extract import extract_images
from sheetguard.images.layouts import (
    DEFAULT_LAYOUTS,
    KeywordLayoutClassifier,
    TableLayout,
)
from sheetguard.images.positions import (
    CellImagesStrategy,
    DrawingStrategy,
    ImagePositionMapper,
    PositionResolution,
)
from sheetguard.images.quality import (
    ImageQualityAnalyzer,
    block_mean_hash,
    laplacian_sharpness,
)

__all__ = [
    "ImagePositionMapper",
    "CellImagesStrategy",
    "DrawingStrategy",
    "PositionResolution",
    "KeywordLayoutClassifier",
    "TableLayout",
    "DEFAULT_LAYOUTS",
    "extract_images",
    "ImageQualityAnalyzer",
    "laplacian_sharpness",
    "block_mean_hash",
    "DuplicateDetector",
    "hamming_distance",
    "mean_absolute_difference",
    "global_ssim",
    "count_duplicate_groups",
]
