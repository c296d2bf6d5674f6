"""Header row detection and field-to-column mapping.

``HeaderLocator`` scores the first few rows of a sheet as header
candidates; ``FieldMapper`` then resolves every required template field to
a column of the chosen row using exact, synonym, substring and edit
distance matching, in that order.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sheetguard.config import ValidatorConfig
from sheetguard.models import FieldMapping, HeaderRow, ValidationTemplate

logger = logging.getLogger("sheetguard")

_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------


def clean_header(value: Any) -> str:
    """Trim a header cell and remove newlines and all internal whitespace."""
    if value is None:
        return ""
    return _WHITESPACE_RE.sub("", str(value).strip())


def levenshtein_distance(s1: str, s2: str) -> int:
    """Minimum number of single-character edits turning *s1* into *s2*."""
    if s1 == s2:
        return 0
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    v0 = list(range(len(s2) + 1))
    v1 = [0] * (len(s2) + 1)
    for i in range(len(s1)):
        v1[0] = i + 1
        for j in range(len(s2)):
            deletion_cost = v0[j + 1] + 1
            insertion_cost = v1[j] + 1
            substitution_cost = v0[j] if s1[i] == s2[j] else v0[j] + 1
            v1[j + 1] = min(deletion_cost, insertion_cost, substitution_cost)
        v0, v1 = v1, v0
    return v0[len(s2)]


def similarity(s1: str, s2: str) -> float:
    """Edit-distance similarity in ``[0, 1]``: ``(maxLen - distance) / maxLen``."""
    if not s1 and not s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    max_len = max(len(s1), len(s2))
    return (max_len - levenshtein_distance(s1, s2)) / max_len


def header_matches(header: str, field: str, threshold: float) -> bool:
    """Exact, substring (either direction) or similarity match of two labels."""
    if not header or not field:
        return False
    if header == field:
        return True
    if field in header or header in field:
        return True
    return similarity(header, field) > threshold


# ---------------------------------------------------------------------------
# Header Locator
# ---------------------------------------------------------------------------


class HeaderLocator:
    """Pick the most header-like row among the first few rows of a sheet.

    Each candidate row is scored as ``non_empty_weight * non-empty cells``
    plus ``required_field_weight`` per required field it matches, plus
    ``keyword_bonus`` if any header contains a domain keyword.  Only rows
    with at least ``min_header_cells`` non-empty cells qualify; the first
    row with the highest score wins.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config
        self._keywords = [k.lower() for k in config.header_keywords]

    def score_row(self, row: list[Any], template: ValidationTemplate) -> tuple[float, int]:
        """Return ``(score, non_empty_count)`` for one candidate row."""
        config = self._config
        cleaned = [clean_header(cell) for cell in row]
        non_empty = [h for h in cleaned if h]

        score = config.non_empty_weight * len(non_empty)
        for required in template.required_fields:
            target = clean_header(required)
            if any(
                header_matches(h, target, config.similarity_threshold)
                for h in non_empty
            ):
                score += config.required_field_weight

        lowered = [h.lower() for h in non_empty]
        if any(keyword in h for h in lowered for keyword in self._keywords):
            score += config.keyword_bonus
        return score, len(non_empty)

    def locate(
        self, rows: list[list[Any]], template: ValidationTemplate
    ) -> HeaderRow | None:
        """Return the best header candidate, or None if no row qualifies."""
        best: HeaderRow | None = None
        limit = min(self._config.header_scan_rows, len(rows))
        for index in range(limit):
            row = rows[index]
            if not row:
                continue
            score, non_empty = self.score_row(row, template)
            if non_empty < self._config.min_header_cells:
                continue
            if best is None or score > best.score:
                best = HeaderRow(
                    index=index,
                    cells=["" if cell is None else str(cell) for cell in row],
                    score=score,
                )

        if best is None:
            logger.info("sheetguard | stage=header | no header row found in first %d rows", limit)
        else:
            logger.debug(
                "sheetguard | stage=header | row_index=%d | score=%.1f",
                best.index,
                best.score,
            )
        return best


# ---------------------------------------------------------------------------
# Field Mapper
# ---------------------------------------------------------------------------


class FieldMapper:
    """Build the column lookup used by every row-level validator.

    The lookup holds raw and cleaned header text plus canonical field names.
    A column is claimed by at most one canonical field; substring and
    similarity matches skip columns another canonical field already owns.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self._config = config

    def build(self, header: HeaderRow, template: ValidationTemplate) -> FieldMapping:
        threshold = self._config.similarity_threshold
        columns: dict[str, int] = {}
        owners: dict[int, str] = {}
        cleaned: list[str] = [clean_header(cell) for cell in header.cells]
        synonyms = {clean_header(k): v for k, v in template.field_mappings.items()}

        # --- Header text and synonym-table canonical names ---
        for index, raw in enumerate(header.cells):
            text = cleaned[index]
            if not text:
                continue
            columns[raw] = index
            columns[text] = index

            canonical = template.field_mappings.get(raw) or synonyms.get(text)
            if canonical is None:
                for label, mapped in synonyms.items():
                    if similarity(text, label) > threshold:
                        canonical = mapped
                        break
            if canonical is not None and canonical not in owners.values():
                columns[canonical] = index
                owners[index] = canonical

        # --- Required fields ---
        # Every field gets its exact and synonym match before any field may
        # claim a column by substring or similarity, so the result does not
        # depend on the order of required fields.
        pending = [(r, template.canonical_name(r)) for r in template.required_fields]
        resolved: dict[str, int] = {}
        strong: set[int] = set()

        def claim(required: str, canonical: str, index: int, exact: bool) -> None:
            previous = owners.get(index)
            if previous is not None and previous != canonical and columns.get(previous) == index:
                # A header-table claim yields to a required field's exact header.
                del columns[previous]
            owners[index] = canonical
            columns[required] = index
            columns[canonical] = index
            resolved[required] = index
            if exact:
                strong.add(index)

        for required, canonical in pending:
            index = self._match_exact(required, canonical, cleaned, synonyms, owners, strong)
            if index is not None:
                claim(required, canonical, index, exact=True)

        for required, canonical in pending:
            if required in resolved:
                continue
            index = self._match_loose(required, canonical, cleaned, owners, threshold)
            if index is not None:
                claim(required, canonical, index, exact=False)

        missing = [r for r, _ in pending if r not in resolved]
        unmatched = [
            cleaned[i] for i in range(len(cleaned)) if cleaned[i] and i not in owners
        ]
        suggestions = self._suggest(missing, cleaned)

        if missing:
            logger.info(
                "sheetguard | stage=mapping | missing=%s", ",".join(missing)
            )
        return FieldMapping(
            columns=columns,
            missing=missing,
            unmatched_headers=unmatched,
            suggestions=suggestions,
        )

    @staticmethod
    def _match_exact(
        required: str,
        canonical: str,
        cleaned: list[str],
        synonyms: dict[str, str],
        owners: dict[int, str],
        strong: set[int],
    ) -> int | None:
        """Exact header text, then the synonym table.

        Columns already held by another required field's exact or synonym
        match are skipped.
        """
        target = clean_header(required)

        def available(index: int) -> bool:
            return index not in strong or owners.get(index) == canonical

        for index, text in enumerate(cleaned):
            if text and text == target and available(index):
                return index
        for index, text in enumerate(cleaned):
            if (
                text
                and (synonyms.get(text) == canonical or text == canonical)
                and available(index)
            ):
                return index
        return None

    @staticmethod
    def _match_loose(
        required: str,
        canonical: str,
        cleaned: list[str],
        owners: dict[int, str],
        threshold: float,
    ) -> int | None:
        """Substring in either direction, then best edit-distance similarity."""
        target = clean_header(required)

        def available(index: int) -> bool:
            return owners.get(index, canonical) == canonical

        for index, text in enumerate(cleaned):
            if text and target and (target in text or text in target) and available(index):
                return index

        best_index: int | None = None
        best_score = threshold
        for index, text in enumerate(cleaned):
            if not text or not available(index):
                continue
            score = similarity(text, target)
            if score > best_score:
                best_index, best_score = index, score
        return best_index

    def _suggest(self, missing: list[str], cleaned: list[str]) -> dict[str, str]:
        suggestions: dict[str, str] = {}
        for field in missing:
            target = clean_header(field)
            scored = [(similarity(text, target), text) for text in cleaned if text]
            if not scored:
                continue
            score, text = max(scored, key=lambda pair: pair[0])
            if score > self._config.suggestion_threshold:
                suggestions[field] = text
        return suggestions
