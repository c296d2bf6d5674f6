"""Read-only access to the ZIP container behind an ``.xlsx`` file.

``XlsxContainer`` exposes named-entry lookup and text extraction over an
in-memory ZIP archive.  It is the leaf dependency for every OOXML-aware
component (image position mapping, image extraction, sheet listing).
"""

from __future__ import annotations

import io
import logging
import posixpath
import zipfile

from sheetguard.errors import ErrorCode, SheetGuardException

logger = logging.getLogger("sheetguard")

MEDIA_PREFIX = "xl/media/"


class XlsxContainer:
    """In-memory view of an ``.xlsx`` ZIP archive.

    Parameters
    ----------
    data:
        Raw bytes of the workbook file.

    Raises
    ------
    SheetGuardException
        ``E_CONTAINER_EMPTY`` for zero-length input, ``E_CONTAINER_CORRUPT``
        when the bytes are not a readable ZIP archive.
    """

    def __init__(self, data: bytes) -> None:
        if not data:
            raise SheetGuardException(
                code=ErrorCode.E_CONTAINER_EMPTY,
                message="Workbook is empty (0 bytes).",
                stage="container",
            )
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, OSError) as exc:
            raise SheetGuardException(
                code=ErrorCode.E_CONTAINER_CORRUPT,
                message=f"Workbook is not a readable .xlsx container: {exc}",
                stage="container",
            ) from exc
        self._names = self._zip.namelist()
        # Entry names are case-insensitive in practice (some writers emit
        # "xl/Media/..."), so keep a lowered index for lookups.
        self._lookup = {name.lower(): name for name in self._names}
        self.size = len(data)

    def __enter__(self) -> XlsxContainer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._zip.close()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def resolve(self, name: str) -> str | None:
        """Return the stored entry name for *name*, or None if absent."""
        return self._lookup.get(name.lstrip("/").lower())

    def has(self, name: str) -> bool:
        return self.resolve(name) is not None

    def read_bytes(self, name: str) -> bytes | None:
        stored = self.resolve(name)
        if stored is None:
            return None
        return self._zip.read(stored)

    def read_text(self, name: str) -> str | None:
        """Read an entry as UTF-8 text (BOM tolerated)."""
        raw = self.read_bytes(name)
        if raw is None:
            return None
        return raw.decode("utf-8-sig", errors="replace")

    def entry_size(self, name: str) -> int:
        """Uncompressed size of an entry in bytes (0 if absent)."""
        stored = self.resolve(name)
        if stored is None:
            return 0
        return self._zip.getinfo(stored).file_size

    def media_files(self) -> list[str]:
        """All entries under ``xl/media/``, in archive order."""
        return [n for n in self._names if n.lower().startswith(MEDIA_PREFIX)]

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    @staticmethod
    def rels_path_for(part: str) -> str:
        """Relationship part for *part*: ``a/b/c.xml`` -> ``a/b/_rels/c.xml.rels``."""
        directory, base = posixpath.split(part.lstrip("/"))
        return posixpath.join(directory, "_rels", f"{base}.rels")

    @staticmethod
    def resolve_target(source_part: str, target: str) -> str:
        """Resolve a relationship target against the part that declares it.

        Absolute targets (leading ``/``) are package-rooted; relative ones
        are resolved against the source part's directory.
        """
        if target.startswith("/"):
            return posixpath.normpath(target.lstrip("/"))
        base_dir = posixpath.dirname(source_part.lstrip("/"))
        return posixpath.normpath(posixpath.join(base_dir, target))
