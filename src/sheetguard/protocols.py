"""Pluggable collaborator interfaces for the sheetguard pipeline.

All protocols are ``runtime_checkable`` so concrete implementations can be
validated with ``isinstance()`` without inheriting from them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sheetguard.container import XlsxContainer
    from sheetguard.images.layouts import TableLayout
    from sheetguard.images.positions import PositionResolution

__all__ = [
    "LayoutClassifier",
    "PositionStrategy",
]


@runtime_checkable
class LayoutClassifier(Protocol):
    """Recognise which known record layout a workbook follows.

    Used only to estimate cell positions for vendor cell images that carry
    no formula placement.
    """

    def classify(self, container: XlsxContainer) -> TableLayout | None:
        """Return the detected layout, or None when no layout matches."""
        ...


@runtime_checkable
class PositionStrategy(Protocol):
    """One way of mapping embedded media files to worksheet cells."""

    name: str

    def resolve(self, container: XlsxContainer) -> PositionResolution | None:
        """Return the mapping, or None when this layout is not present."""
        ...
