"""Lookup tables shared by the crop coefficient and budget calculations.

Tables are built on first use, cached, and handed out as fresh ``polars``
clones so callers can never mutate the shared copy.  A custom crop
coefficient table can be read from CSV instead of the built-in FAO-56 one,
which is handy for sensitivity runs and tests.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Union

import polars as pl

from agriwater.cropclass import CropType

PathLike = Union[str, Path]

KC_COLUMNS = ("Crop", "Kc_mid")

# FAO-56 Table 12 mid-season values for the crops of the Satara/Sangli/Kolhapur
# belt. OtherCrop and Background carry a single representative value.
CROP_COEFFICIENT_ROWS = [
    ("Sugarcane", 1.25),
    ("Cotton", 1.15),
    ("Soybean", 1.15),
    ("Wheat", 1.15),
    ("OtherCrop", 0.90),
    ("Background", 0.70),
]


def _ensure_exists(path: Path, *, description: str) -> Path:
    """Ensure ``path`` exists before attempting to read it."""

    if not path.exists():
        raise FileNotFoundError(f"Expected {description} at '{path}'.")
    return path


def _check_columns(table: pl.DataFrame) -> pl.DataFrame:
    missing = [column for column in KC_COLUMNS if column not in table.columns]
    if missing:
        raise ValueError(f"Crop coefficient table is missing columns {missing}.")
    return table


@lru_cache(maxsize=None)
def _build_crop_coefficient_table() -> pl.DataFrame:
    """Create the built-in crop coefficient table."""

    return pl.DataFrame(
        CROP_COEFFICIENT_ROWS,
        schema={"Crop": pl.Utf8, "Kc_mid": pl.Float64},
        orient="row",
    )


@lru_cache(maxsize=None)
def _read_crop_coefficient_table(path: Path) -> pl.DataFrame:
    path = _ensure_exists(path, description="crop coefficient table")
    return _check_columns(pl.read_csv(path))


def get_crop_coefficient_table(path: Optional[PathLike] = None) -> pl.DataFrame:
    """Return a cached copy of the crop coefficient table.

    Parameters
    ----------
    path:
        Optional CSV with at least ``Crop`` and ``Kc_mid`` columns. When
        omitted the built-in FAO-56 table is used.
    """

    if path is None:
        return _build_crop_coefficient_table().clone()
    return _read_crop_coefficient_table(Path(path).resolve()).clone()


def kc_lookup_mapping(
    column: str = "Kc_mid",
    *,
    table: Optional[pl.DataFrame] = None,
) -> Dict[CropType, float]:
    """Map every :class:`CropType` to its coefficient from ``column``."""

    table = table if table is not None else get_crop_coefficient_table()
    if column not in table.columns:
        raise KeyError(f"Column '{column}' not found in crop coefficient table.")

    mapping: Dict[CropType, float] = {}
    for crop_name, value in zip(table["Crop"].to_list(), table[column].to_list()):
        if value is None:
            continue
        mapping[CropType.from_label(crop_name)] = float(value)

    missing = [crop.label for crop in CropType if crop not in mapping]
    if missing:
        raise KeyError(f"No '{column}' value for crops {missing}.")
    return mapping
