"""Crop coefficient (Kc) grids.

Two interchangeable strategies are available:

* ``KcMethod.LOOKUP`` assigns the mid-season FAO-56 coefficient of each
  pixel's crop class.
* ``KcMethod.NDVI`` (default) derives Kc from vegetation vigour,
  ``Kc = clamp(1.2 * NDVI + 0.1, 0.1, 1.3)``, independent of crop class,
  which keeps field-to-field variation that a class lookup flattens.

:func:`crop_coefficient` returns the chosen grid together with a
provenance record so the analysis output always states which strategy
produced its ETc.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from agriwater.cropclass import CropType, CropTypeGrid
from agriwater.data_loader import kc_lookup_mapping
from agriwater.errors import MissingInputBand
from agriwater.grid import Grid, pixelwise
from agriwater.log import LOGGER
from agriwater.tiles import TilePlan

log = LOGGER.getChild("crop_coefficient")

NDVI_KC_SLOPE = 1.2
NDVI_KC_INTERCEPT = 0.1
NDVI_KC_MIN = 0.1
NDVI_KC_MAX = 1.3


class KcMethod(str, Enum):
    LOOKUP = "lookup"
    NDVI = "ndvi"

    @classmethod
    def parse(cls, value: "KcMethod | str") -> "KcMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown Kc method '{value}'; expected one of {[m.value for m in cls]}."
            ) from None


def kc_ndvi_kernel(ndvi: np.ndarray) -> np.ndarray:
    return np.clip(NDVI_KC_SLOPE * ndvi + NDVI_KC_INTERCEPT, NDVI_KC_MIN, NDVI_KC_MAX)


def kc_lookup_kernel(codes: np.ndarray, table: Mapping[CropType, float]) -> np.ndarray:
    out = np.full(codes.shape, np.nan)
    for crop, kc in table.items():
        out[codes == int(crop)] = kc
    return out


def kc_from_ndvi(ndvi: Grid, *, plan: Optional[TilePlan] = None) -> Grid:
    return pixelwise(kc_ndvi_kernel, ndvi, plan=plan, names="Kc")


def kc_from_lookup(
    crop_type: CropTypeGrid,
    table: Optional[Mapping[CropType, float]] = None,
    *,
    plan: Optional[TilePlan] = None,
) -> Grid:
    """Assign each pixel the coefficient of its crop class; nodata stays nodata."""

    table = dict(table) if table is not None else kc_lookup_mapping()

    def _kernel(codes):
        return kc_lookup_kernel(codes, table)

    return pixelwise(_kernel, crop_type, plan=plan, names="Kc")


def crop_coefficient(
    method: "KcMethod | str",
    *,
    crop_type: Optional[CropTypeGrid] = None,
    ndvi: Optional[Grid] = None,
    kc_table: Optional[Mapping[CropType, float]] = None,
    plan: Optional[TilePlan] = None,
) -> Tuple[Grid, Dict[str, Any]]:
    """Build the Kc grid with the selected strategy.

    Returns
    -------
    Tuple[Grid, Dict[str, Any]]
        The Kc grid and a provenance dictionary naming the method and its
        parameters.
    """

    method = KcMethod.parse(method)

    if method is KcMethod.NDVI:
        if ndvi is None:
            raise MissingInputBand("ndvi_composite", stage="crop_coefficient")
        kc = kc_from_ndvi(ndvi, plan=plan)
        provenance = {
            "kc_method": method.value,
            "kc_formula": (
                f"clamp({NDVI_KC_SLOPE}*NDVI + {NDVI_KC_INTERCEPT}, {NDVI_KC_MIN}, {NDVI_KC_MAX})"
            ),
        }
    else:
        if crop_type is None:
            raise MissingInputBand("crop_type", stage="crop_coefficient")
        table = dict(kc_table) if kc_table is not None else kc_lookup_mapping()
        kc = kc_from_lookup(crop_type, table, plan=plan)
        provenance = {
            "kc_method": method.value,
            "kc_table": {crop.label: value for crop, value in sorted(table.items())},
        }

    log.info("Kc grid built with '%s' method", method.value)
    return kc, provenance
