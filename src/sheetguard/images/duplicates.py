"""Near-duplicate image detection.

Confirmation is a short-circuiting pipeline of pure gates:

1. Hamming distance between perceptual hashes must be within
   ``duplicate_threshold + near_margin``.
2. Mean absolute difference of the two grayscale thumbnails must be at
   most ``mad_threshold``.
3. Pairs in the near band (``distance > duplicate_threshold``) must also
   reach ``ssim_threshold`` on a single-window SSIM.

Hashing alone confuses visually distinct photos with a similar structure
(store fronts shot from the same angle), hence the pixel-domain gates.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping, Sequence

import numpy as np

from sheetguard.config import ValidatorConfig
from sheetguard.models import DuplicateRef, ImageAnalysisResult

logger = logging.getLogger("sheetguard")

_SSIM_C1 = (0.01 * 255) ** 2
_SSIM_C2 = (0.03 * 255) ** 2


# ---------------------------------------------------------------------------
# Pure gates
# ---------------------------------------------------------------------------


def hamming_distance(a: str, b: str) -> int:
    """Number of differing bits between two equal-length hex hashes."""
    if len(a) != len(b):
        raise ValueError(f"hash length mismatch: {len(a)} != {len(b)}")
    if not a:
        return 0
    return bin(int(a, 16) ^ int(b, 16)).count("1")


def mean_absolute_difference(a: np.ndarray, b: np.ndarray) -> float:
    """Average per-pixel absolute grayscale difference of two same-size arrays."""
    if a.shape != b.shape:
        raise ValueError(f"shape mismatch: {a.shape} != {b.shape}")
    return float(np.mean(np.abs(a.astype(np.float64) - b.astype(np.float64))))


def global_ssim(a: np.ndarray, b: np.ndarray) -> float:
    """SSIM computed over the whole image as one window."""
    if a.shape != b.shape:
        raise ValueError(f"shape mismatch: {a.shape} != {b.shape}")
    x = a.astype(np.float64)
    y = b.astype(np.float64)
    mu_x = x.mean()
    mu_y = y.mean()
    var_x = x.var()
    var_y = y.var()
    cov = float(np.mean((x - mu_x) * (y - mu_y)))
    numerator = (2 * mu_x * mu_y + _SSIM_C1) * (2 * cov + _SSIM_C2)
    denominator = (mu_x**2 + mu_y**2 + _SSIM_C1) * (var_x + var_y + _SSIM_C2)
    return float(numerator / denominator)


def is_duplicate_pair(
    distance: int,
    thumb_a: np.ndarray | None,
    thumb_b: np.ndarray | None,
    config: ValidatorConfig,
) -> bool:
    """Run the gates for one pair whose hash distance is already known."""
    if distance > config.duplicate_threshold + config.near_margin:
        return False
    if thumb_a is None or thumb_b is None:
        return False
    if mean_absolute_difference(thumb_a, thumb_b) > config.mad_threshold:
        return False
    if distance <= config.duplicate_threshold:
        return True
    return global_ssim(thumb_a, thumb_b) >= config.ssim_threshold


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class DuplicateDetector:
    """Pairwise comparison of analyzed images.

    Parameters
    ----------
    config:
        Supplies the hash threshold, near margin, MAD and SSIM thresholds.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config

    def find_duplicates(
        self,
        results: Sequence[ImageAnalysisResult],
        thumbnails: Mapping[str, np.ndarray | None],
    ) -> int:
        """Populate ``duplicates`` on *results* in place; return confirmed pair count.

        Images with an empty hash are skipped.  Pairs whose hashes differ in
        length are never compared.
        """
        hashed = [r for r in results if r.hash]
        pairs = 0
        for i, first in enumerate(hashed):
            for second in hashed[i + 1:]:
                if len(first.hash) != len(second.hash):
                    continue
                distance = hamming_distance(first.hash, second.hash)
                if not is_duplicate_pair(
                    distance,
                    thumbnails.get(first.id),
                    thumbnails.get(second.id),
                    self._config,
                ):
                    continue
                _link(first, second)
                pairs += 1
                logger.debug(
                    "sheetguard | stage=duplicates | pair=%s,%s | distance=%d",
                    first.id,
                    second.id,
                    distance,
                )
        return pairs


def _link(a: ImageAnalysisResult, b: ImageAnalysisResult) -> None:
    if not any(ref.id == b.id for ref in a.duplicates):
        a.duplicates.append(DuplicateRef(id=b.id, position=b.position))
    if not any(ref.id == a.id for ref in b.duplicates):
        b.duplicates.append(DuplicateRef(id=a.id, position=a.position))


def count_duplicate_groups(results: Sequence[ImageAnalysisResult]) -> int:
    """Number of connected components among images that have duplicates."""
    adjacency = {r.id: [ref.id for ref in r.duplicates] for r in results if r.duplicates}
    seen: set[str] = set()
    groups = 0
    for start in adjacency:
        if start in seen:
            continue
        groups += 1
        queue = deque([start])
        seen.add(start)
        while queue:
            node = queue.popleft()
            for neighbour in adjacency.get(node, []):
                if neighbour not in seen:
                    seen.add(neighbour)
                    queue.append(neighbour)
    return groups
