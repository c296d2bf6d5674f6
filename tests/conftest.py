"""Shared test fixtures for sheetguard tests.

Provides a default ``ValidatorConfig``, a visit-record template, and
builders for real ``.xlsx`` payloads: plain openpyxl workbooks, workbooks
with anchored pictures, workbooks carrying the vendor ``cellimages.xml``
layout, and hand-assembled containers for anchor variants openpyxl does
not write.
"""

from __future__ import annotations

import io
import zipfile
from typing import Any

import numpy as np
import openpyxl
import pytest
from openpyxl.drawing.image import Image as XlImage
from PIL import Image

from sheetguard.config import ValidatorConfig
from sheetguard.models import Rule, RuleType, ValidationTemplate

VISIT_HEADERS = ["实施人", "对接人", "拜访开始时间", "零售渠道", "渠道地址"]

_NS_MAIN = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
_NS_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
_NS_PKG_REL = "http://schemas.openxmlformats.org/package/2006/relationships"
_NS_XDR = "http://schemas.openxmlformats.org/drawingml/2006/spreadsheetDrawing"
_NS_A = "http://schemas.openxmlformats.org/drawingml/2006/main"
_REL_IMAGE = f"{_NS_REL}/image"
_REL_DRAWING = f"{_NS_REL}/drawing"
_REL_SHEET = f"{_NS_REL}/worksheet"


# ---------------------------------------------------------------------------
# Image builders
# ---------------------------------------------------------------------------


def png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def noise_image(size: int = 96, seed: int = 0) -> Image.Image:
    """Random grayscale noise: maximally sharp."""
    rng = np.random.RandomState(seed)
    pixels = rng.randint(0, 256, size=(size, size), dtype=np.uint8)
    return Image.fromarray(pixels).convert("RGB")


def flat_image(size: int = 96, value: int = 128) -> Image.Image:
    """A single flat colour: no edges at all."""
    return Image.new("RGB", (size, size), (value, value, value))


def gradient_image(size: int = 96, horizontal: bool = True) -> Image.Image:
    ramp = np.linspace(0, 255, size, dtype=np.float64)
    grid = np.tile(ramp, (size, 1)) if horizontal else np.tile(ramp[:, None], (1, size))
    return Image.fromarray(grid.astype(np.uint8)).convert("RGB")


# ---------------------------------------------------------------------------
# Workbook builders
# ---------------------------------------------------------------------------


def build_xlsx(
    rows: list[list[Any]],
    title: str = "Sheet1",
    extra_sheets: dict[str, list[list[Any]]] | None = None,
    images: list[tuple[str, bytes]] | None = None,
) -> bytes:
    """Write *rows* to a new workbook and return its bytes.

    ``images`` is a list of ``(cell, png bytes)`` anchored on the first sheet.
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    for cell, data in images or []:
        ws.add_image(XlImage(io.BytesIO(data)), cell)
    for name, sheet_rows in (extra_sheets or {}).items():
        other = wb.create_sheet(name)
        for row in sheet_rows:
            other.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    wb.close()
    return buffer.getvalue()


def add_zip_entries(data: bytes, entries: dict[str, bytes | str]) -> bytes:
    """Copy an archive and add (or replace) entries."""
    source = zipfile.ZipFile(io.BytesIO(data))
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as target:
        for info in source.infolist():
            if info.filename in entries:
                continue
            target.writestr(info, source.read(info.filename))
        for name, content in entries.items():
            target.writestr(name, content)
    return out.getvalue()


def cellimages_parts(pictures: dict[str, bytes]) -> dict[str, bytes | str]:
    """``xl/cellimages.xml``, its relationships and the media for *pictures*.

    *pictures* maps an image identifier (the ``DISPIMG`` argument) to PNG
    bytes; media files are named ``image1.png``, ``image2.png``... in order.
    """
    entries: dict[str, bytes | str] = {}
    cell_images = []
    rels = []
    for index, (image_id, data) in enumerate(pictures.items(), start=1):
        rel_id = f"rId{index}"
        cell_images.append(
            "<etc:cellImage><xdr:pic><xdr:nvPicPr>"
            f'<xdr:cNvPr id="{index}" name="{image_id}" descr=""/>'
            "<xdr:cNvPicPr/></xdr:nvPicPr>"
            f'<xdr:blipFill><a:blip r:embed="{rel_id}"/><a:stretch/></xdr:blipFill>'
            "</xdr:pic></etc:cellImage>"
        )
        rels.append(
            f'<Relationship Id="{rel_id}" Type="{_REL_IMAGE}" Target="media/image{index}.png"/>'
        )
        entries[f"xl/media/image{index}.png"] = data
    entries["xl/cellimages.xml"] = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<etc:cellImages xmlns:xdr="{_NS_XDR}" xmlns:r="{_NS_REL}" xmlns:a="{_NS_A}" '
        'xmlns:etc="http://www.wps.cn/officeDocument/2017/etCustomData">'
        + "".join(cell_images)
        + "</etc:cellImages>"
    )
    entries["xl/_rels/cellimages.xml.rels"] = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<Relationships xmlns="{_NS_PKG_REL}">' + "".join(rels) + "</Relationships>"
    )
    return entries


def build_cellimages_xlsx(
    rows: list[list[Any]],
    placements: dict[str, str],
    pictures: dict[str, bytes],
    title: str = "Sheet1",
) -> bytes:
    """Workbook whose cells place vendor cell images via ``DISPIMG`` formulas.

    *placements* maps a cell reference to an image identifier.
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    for ref, image_id in placements.items():
        ws[ref] = f'=DISPIMG("{image_id}",1)'
    buffer = io.BytesIO()
    wb.save(buffer)
    wb.close()
    return add_zip_entries(buffer.getvalue(), cellimages_parts(pictures))


def build_drawing_container(
    anchors: str,
    media: dict[str, bytes],
    extra_sheet_xml: str = "",
    extra_sheet_rels: str = "",
    extra_entries: dict[str, bytes | str] | None = None,
) -> bytes:
    """Hand-assembled container with one worksheet and one drawing part.

    *anchors* is the inner markup of ``xdr:wsDr``; ``rIdN`` embeds resolve to
    the *media* files in insertion order.
    """
    drawing_rels = "".join(
        f'<Relationship Id="rId{i}" Type="{_REL_IMAGE}" Target="../media/{name}"/>'
        for i, name in enumerate(media, start=1)
    )
    entries: dict[str, bytes | str] = {
        "[Content_Types].xml": (
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types"/>'
        ),
        "xl/workbook.xml": (
            f'<workbook xmlns="{_NS_MAIN}" xmlns:r="{_NS_REL}"><sheets>'
            '<sheet name="拜访记录" sheetId="1" r:id="rId1"/></sheets></workbook>'
        ),
        "xl/_rels/workbook.xml.rels": (
            f'<Relationships xmlns="{_NS_PKG_REL}">'
            f'<Relationship Id="rId1" Type="{_REL_SHEET}" Target="worksheets/sheet1.xml"/>'
            "</Relationships>"
        ),
        "xl/worksheets/sheet1.xml": (
            f'<worksheet xmlns="{_NS_MAIN}" xmlns:r="{_NS_REL}"><sheetData/>'
            f'<drawing r:id="rId1"/>{extra_sheet_xml}</worksheet>'
        ),
        "xl/worksheets/_rels/sheet1.xml.rels": (
            f'<Relationships xmlns="{_NS_PKG_REL}">'
            f'<Relationship Id="rId1" Type="{_REL_DRAWING}" Target="../drawings/drawing1.xml"/>'
            f"{extra_sheet_rels}"
            "</Relationships>"
        ),
        "xl/drawings/drawing1.xml": (
            f'<xdr:wsDr xmlns:xdr="{_NS_XDR}" xmlns:a="{_NS_A}" xmlns:r="{_NS_REL}">'
            f"{anchors}</xdr:wsDr>"
        ),
        "xl/drawings/_rels/drawing1.xml.rels": (
            f'<Relationships xmlns="{_NS_PKG_REL}">{drawing_rels}</Relationships>'
        ),
    }
    for name, data in media.items():
        entries[f"xl/media/{name}"] = data
    entries.update(extra_entries or {})

    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return out.getvalue()


def anchor_xml(kind: str, col: int, row: int, rel_id: str) -> str:
    """One ``twoCellAnchor`` / ``oneCellAnchor`` picture anchored at (col, row), 0-based."""
    origin = (
        f"<xdr:from><xdr:col>{col}</xdr:col><xdr:colOff>0</xdr:colOff>"
        f"<xdr:row>{row}</xdr:row><xdr:rowOff>0</xdr:rowOff></xdr:from>"
    )
    to = ""
    if kind == "twoCellAnchor":
        to = (
            f"<xdr:to><xdr:col>{col + 1}</xdr:col><xdr:colOff>0</xdr:colOff>"
            f"<xdr:row>{row + 1}</xdr:row><xdr:rowOff>0</xdr:rowOff></xdr:to>"
        )
    return (
        f"<xdr:{kind}>{origin}{to}<xdr:pic><xdr:blipFill>"
        f'<a:blip r:embed="{rel_id}"/></xdr:blipFill></xdr:pic>'
        f"<xdr:clientData/></xdr:{kind}>"
    )


def absolute_anchor_xml(rel_id: str) -> str:
    return (
        '<xdr:absoluteAnchor><xdr:pos x="0" y="0"/><xdr:ext cx="100" cy="100"/>'
        f'<xdr:pic><xdr:blipFill><a:blip r:embed="{rel_id}"/></xdr:blipFill></xdr:pic>'
        "<xdr:clientData/></xdr:absoluteAnchor>"
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_config() -> ValidatorConfig:
    """Return a ValidatorConfig with all defaults."""
    return ValidatorConfig()


@pytest.fixture()
def visit_template() -> ValidationTemplate:
    """Pharmacy-visit style template keyed by the raw Chinese headers."""
    return ValidationTemplate(
        requiredFields=VISIT_HEADERS,
        fieldMappings={},
        sheetNames=["拜访记录"],
        validationRules=[
            Rule(field="实施人", type=RuleType.REQUIRED, message="实施人不能为空"),
            Rule(field="拜访开始时间", type=RuleType.DATE_FORMAT, message="日期格式错误"),
            Rule(
                field="零售渠道",
                type=RuleType.DATE_INTERVAL,
                message="同一药店7日内不能重复拜访",
                params={"days": 7, "groupBy": "渠道地址"},
            ),
        ],
    )


@pytest.fixture()
def visit_rows() -> list[list[Any]]:
    return [
        VISIT_HEADERS,
        ["张三", "李医生", "2024-01-01", "康美药店", "人民路1号"],
        ["张三", "王医生", "2024-01-05", "康美药店", "人民路1号"],
        ["李四", "赵医生", "2024-01-03", "大参林", "解放路8号"],
    ]
