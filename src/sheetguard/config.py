"""Tunable thresholds and limits for a validation run.

``ValidatorConfig`` carries the defaults every component reads.  The same
loader backs ``ValidatorConfig.from_file()`` and
``ValidationTemplate.from_file()``, so configs and templates can live on
disk as YAML or JSON.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

_YAML_SUFFIXES = (".yaml", ".yml")


def load_mapping_file(path: str) -> dict[str, Any]:
    """Parse a YAML or JSON document into a dict.

    An empty document yields ``{}``.

    Raises:
        FileNotFoundError: *path* is missing.
        ValueError: the suffix is neither YAML nor JSON.
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"No such config or template file: {path}")

    suffix = source.suffix.lower()
    with source.open(encoding="utf-8") as fh:
        if suffix in _YAML_SUFFIXES:
            data = yaml.safe_load(fh)
        elif suffix == ".json":
            data = json.load(fh)
        else:
            raise ValueError(
                f"Cannot load '{path}': expected a .yaml, .yml or .json file, "
                f"got '{suffix or 'no extension'}'."
            )
    return data or {}


class ValidatorConfig(BaseModel):
    """Every limit and threshold used during validation.

    Defaults suit the pharmacy/hospital visit workbooks this validator was
    built for; pass keyword overrides or use :meth:`from_file`.
    """

    # --- Limits ---
    max_rows: int = 50_000
    max_file_size_mb: int = 100  # whole upload
    chunk_size: int = 1000

    # --- Header detection ---
    header_scan_rows: int = 5
    min_header_cells: int = 3
    similarity_threshold: float = 0.8
    non_empty_weight: float = 0.1
    required_field_weight: float = 10.0
    keyword_bonus: float = 5.0
    header_keywords: list[str] = [
        "实施",
        "对接",
        "时间",
        "姓名",
        "机构",
        "渠道",
        "科室",
        "地址",
        "类型",
        "时长",
        "time",
        "name",
        "address",
        "type",
        "duration",
    ]
    suggestion_threshold: float = 0.5

    # --- Sheet selection ---
    fuzzy_sheet_threshold: float = 0.8

    # --- Cross-row rules ---
    date_fields: list[str] = [
        "visitStartTime",
        "拜访开始时间",
        "visit_date",
        "拜访日期",
        "visit_time",
        "拜访时间",
    ]
    address_fields: list[str] = ["channelAddress", "渠道地址", "pharmacy_address"]

    # --- Images ---
    image_extensions: list[str] = ["png", "jpg", "jpeg", "gif", "bmp", "webp"]
    blur_threshold: float = 60.0
    sharpness_max_side: int = 256
    hash_bits: int = 12
    duplicate_threshold: int = 12
    near_margin: int = 4
    compare_size: int = 64
    mad_threshold: float = 10.0
    ssim_threshold: float = 0.7
    image_pause_seconds: float = 0.01  # slept after each analyzed image
    max_image_pixels: int = 100_000_000
    image_type_labels: dict[str, str] = {"M": "门头", "N": "内部"}
    default_image_type: str = "图片"

    # --- Logging ---
    log_sample_data: bool = False  # cell values in debug logs

    @classmethod
    def from_file(cls, path: str) -> ValidatorConfig:
        """Build a config from a YAML/JSON file; absent keys keep their defaults."""
        return cls(**load_mapping_file(path))
