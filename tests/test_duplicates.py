"""Tests for the duplicate gates, DuplicateDetector and group counting."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import gradient_image
from sheetguard.config import ValidatorConfig
from sheetguard.images.duplicates import (
    DuplicateDetector,
    count_duplicate_groups,
    global_ssim,
    hamming_distance,
    is_duplicate_pair,
    mean_absolute_difference,
)
from sheetguard.images.quality import block_mean_hash, to_luma
from sheetguard.models import DuplicateRef, ImageAnalysisResult


def _checkerboard(low: float, high: float, size: int = 64) -> np.ndarray:
    grid = np.indices((size, size)).sum(axis=0) % 2
    return np.where(grid == 0, low, high).astype(np.float64)


def _result(image_id: str, image_hash: str, position: str | None = None) -> ImageAnalysisResult:
    return ImageAnalysisResult(
        id=image_id, sharpness=80.0, is_blurry=False, hash=image_hash, position=position
    )


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestHammingDistance:
    def test_counts_differing_bits(self) -> None:
        assert hamming_distance("ff", "00") == 8
        assert hamming_distance("a0", "50") == 4
        assert hamming_distance("", "") == 0

    def test_symmetric(self) -> None:
        assert hamming_distance("1f3c", "8e01") == hamming_distance("8e01", "1f3c")

    def test_length_mismatch(self) -> None:
        with pytest.raises(ValueError, match="length"):
            hamming_distance("ff", "fff")

    def test_gradient_directions(self) -> None:
        horizontal = block_mean_hash(to_luma(gradient_image(horizontal=True)), 12)
        vertical = block_mean_hash(to_luma(gradient_image(horizontal=False)), 12)
        # Per band: 6 bits in each of two block rows, plus 6 in the third.
        assert hamming_distance(horizontal, vertical) == 72


@pytest.mark.unit
class TestPixelGates:
    def test_mad(self) -> None:
        a = np.full((4, 4), 100.0)
        b = np.full((4, 4), 103.0)
        assert mean_absolute_difference(a, b) == pytest.approx(3.0)

    def test_ssim_identical_is_one(self) -> None:
        a = _checkerboard(0, 255)
        assert global_ssim(a, a) == pytest.approx(1.0)

    def test_ssim_inverted_pattern_is_low(self) -> None:
        a = _checkerboard(120, 130)
        b = _checkerboard(130, 120)
        assert global_ssim(a, b) < 0.1

    def test_shape_mismatch(self) -> None:
        with pytest.raises(ValueError):
            mean_absolute_difference(np.zeros((2, 2)), np.zeros((3, 3)))
        with pytest.raises(ValueError):
            global_ssim(np.zeros((2, 2)), np.zeros((3, 3)))


@pytest.mark.unit
class TestIsDuplicatePair:
    def test_close_hash_and_pixels(self, sample_config: ValidatorConfig) -> None:
        a = np.full((64, 64), 100.0)
        b = np.full((64, 64), 103.0)
        assert is_duplicate_pair(5, a, b, sample_config) is True

    def test_far_hash_rejected_without_pixel_checks(self, sample_config: ValidatorConfig) -> None:
        a = np.full((64, 64), 100.0)
        assert is_duplicate_pair(20, a, a, sample_config) is False

    def test_large_pixel_difference_rejected(self, sample_config: ValidatorConfig) -> None:
        a = np.full((64, 64), 100.0)
        b = np.full((64, 64), 140.0)
        assert is_duplicate_pair(0, a, b, sample_config) is False

    def test_near_band_needs_structural_similarity(self, sample_config: ValidatorConfig) -> None:
        a = _checkerboard(120, 130)
        b = _checkerboard(130, 120)
        assert mean_absolute_difference(a, b) == pytest.approx(10.0)
        # Within the hash threshold, MAD alone decides.
        assert is_duplicate_pair(5, a, b, sample_config) is True
        # In the near band (12 < d <= 16) the SSIM gate rejects the pair.
        assert is_duplicate_pair(14, a, b, sample_config) is False
        assert is_duplicate_pair(14, a, a.copy(), sample_config) is True

    def test_missing_thumbnail(self, sample_config: ValidatorConfig) -> None:
        a = np.zeros((64, 64))
        assert is_duplicate_pair(0, a, None, sample_config) is False

    def test_symmetric(self, sample_config: ValidatorConfig) -> None:
        a = _checkerboard(120, 130)
        b = _checkerboard(128, 122)
        for distance in (0, 13, 16, 17):
            assert is_duplicate_pair(distance, a, b, sample_config) == is_duplicate_pair(
                distance, b, a, sample_config
            )


# ---------------------------------------------------------------------------
# Detector and groups
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestDuplicateDetector:
    def test_links_confirmed_pairs_both_ways(self, sample_config: ValidatorConfig) -> None:
        thumb = np.full((64, 64), 90.0)
        other = _checkerboard(0, 255)
        results = [
            _result("M4", "ff00", "M4"),
            _result("N4", "ff00", "N4"),
            _result("M5", "00ff", "M5"),
        ]
        pairs = DuplicateDetector(sample_config).find_duplicates(
            results, {"M4": thumb, "N4": thumb.copy(), "M5": other}
        )
        assert pairs == 1
        assert results[0].duplicates == [DuplicateRef(id="N4", position="N4")]
        assert results[1].duplicates == [DuplicateRef(id="M4", position="M4")]
        assert results[2].duplicates == []

    def test_empty_and_mismatched_hashes_skipped(self, sample_config: ValidatorConfig) -> None:
        thumb = np.full((64, 64), 90.0)
        results = [_result("a", ""), _result("b", "ff"), _result("c", "ffff")]
        pairs = DuplicateDetector(sample_config).find_duplicates(
            results, {"a": thumb, "b": thumb, "c": thumb}
        )
        assert pairs == 0
        assert all(r.duplicates == [] for r in results)

    def test_rerun_does_not_repeat_refs(self, sample_config: ValidatorConfig) -> None:
        thumb = np.full((64, 64), 90.0)
        results = [_result("a", "ff"), _result("b", "ff")]
        detector = DuplicateDetector(sample_config)
        detector.find_duplicates(results, {"a": thumb, "b": thumb})
        detector.find_duplicates(results, {"a": thumb, "b": thumb})
        assert [ref.id for ref in results[0].duplicates] == ["b"]


@pytest.mark.unit
class TestDuplicateGroups:
    def test_connected_components(self) -> None:
        a, b, c, d, e, f = (_result(x, "00") for x in "abcdef")
        a.duplicates.append(DuplicateRef(id="b"))
        b.duplicates.extend([DuplicateRef(id="a"), DuplicateRef(id="c")])
        c.duplicates.append(DuplicateRef(id="b"))
        d.duplicates.append(DuplicateRef(id="e"))
        e.duplicates.append(DuplicateRef(id="d"))
        assert count_duplicate_groups([a, b, c, d, e, f]) == 2

    def test_no_duplicates(self) -> None:
        assert count_duplicate_groups([_result("a", "00")]) == 0
        assert count_duplicate_groups([]) == 0
