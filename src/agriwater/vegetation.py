"""Vegetation indices and NDVI phenology aggregates.

Reflectance inputs are Sentinel-2 style digital numbers (scale 1e-4) with a
QA60 band whose bits 10 and 11 flag opaque clouds and cirrus.  The NDVI
time series is reduced to the per-pixel seasonal statistics that drive crop
classification and the NDVI based crop coefficient.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence, Tuple

import numpy as np

from agriwater.config import WaterBalanceConfig
from agriwater.errors import MissingInputBand
from agriwater.grid import Grid, pixelwise
from agriwater.log import LOGGER
from agriwater.tiles import TilePlan

log = LOGGER.getChild("vegetation")

REFLECTANCE_SCALE = 10000.0
CLOUD_BIT = 1 << 10
CIRRUS_BIT = 1 << 11

NdviSeries = Sequence[Tuple[date, Grid]]


##### Reflectance indices #####
def _ratio(numerator, denominator):
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.asarray(numerator / denominator, dtype="float64")
    return np.where(np.isfinite(out), out, np.nan)


def ndvi(nir, red):
    return _ratio(nir - red, nir + red)


def evi(nir, red, blue):
    """Enhanced vegetation index, ``2.5 (N - R) / (N + 6R - 7.5B + 1)``."""
    return _ratio(2.5 * (nir - red), nir + 6.0 * red - 7.5 * blue + 1.0)


def savi(nir, red, soil_factor: float = 0.5):
    """Soil adjusted vegetation index with ``L = soil_factor``."""
    return _ratio((1.0 + soil_factor) * (nir - red), nir + red + soil_factor)


def ndwi(green, nir):
    return _ratio(green - nir, green + nir)


def lai_from_evi(evi_values):
    """Empirical leaf area index ``3.618 EVI - 0.118`` bounded to [0, 7]."""
    return np.clip(3.618 * np.asarray(evi_values, dtype="float64") - 0.118, 0.0, 7.0)


def cloud_mask(qa60) -> np.ndarray:
    """``True`` where the pixel is clear (QA60 bits 10 and 11 both unset)."""

    qa = np.asarray(qa60, dtype="float64")
    finite = np.isfinite(qa)
    bits = np.where(finite, qa, 0).astype("int64")
    return finite & ((bits & (CLOUD_BIT | CIRRUS_BIT)) == 0)


def scale_reflectance(digital_number, qa60) -> np.ndarray:
    """Surface reflectance from digital numbers; cloudy pixels become NaN."""

    reflectance = np.asarray(digital_number, dtype="float64") / REFLECTANCE_SCALE
    return np.where(cloud_mask(qa60), reflectance, np.nan)


def ndvi_from_bands(
    nir: Grid, red: Grid, qa60: Grid, *, plan: Optional[TilePlan] = None
) -> Grid:
    """Cloud-masked NDVI grid from raw NIR/red digital numbers and QA60."""

    def _kernel(nir_dn, red_dn, qa):
        return ndvi(scale_reflectance(nir_dn, qa), scale_reflectance(red_dn, qa))

    return pixelwise(_kernel, nir, red, qa60, plan=plan, names="ndvi")


##### Phenology aggregates #####
def _stack(grids: Sequence[Grid]) -> np.ndarray:
    return np.stack([grid.data for grid in grids], axis=0)


def _reduce(grids: Sequence[Grid], reducer, template: Grid, name: str, season: str) -> Grid:
    if not grids:
        log.warning("No NDVI observations in the %s season; '%s' is all nodata", season, name)
        return Grid.full_like(template, np.nan, name=name)
    with warnings.catch_warnings():
        # all-NaN pixels reduce to NaN, which is the intended nodata
        warnings.simplefilter("ignore", category=RuntimeWarning)
        values = reducer(_stack(grids), axis=0)
    return template.with_values(values, name=name, units="")


def _in_window(day: date, window: Tuple[date, date]) -> bool:
    return window[0] <= day < window[1]


@dataclass(frozen=True)
class VegetationGridSet:
    """NDVI series and the per-pixel statistics derived from it.

    ``cropland`` is 1 where land cover is the cropland class, 0 elsewhere
    and NaN where land cover is missing.
    """

    series: Tuple[Tuple[date, Grid], ...]
    kharif_mean: Grid
    rabi_mean: Grid
    annual_max: Grid
    annual_std: Grid
    composite: Grid
    cropland: Grid

    @classmethod
    def from_series(
        cls,
        series: NdviSeries,
        landcover: Grid,
        config: Optional[WaterBalanceConfig] = None,
        *,
        composite: Optional[Grid] = None,
    ) -> "VegetationGridSet":
        """Aggregate a dated NDVI series into seasonal statistics.

        Parameters
        ----------
        series:
            ``(date, Grid)`` pairs; every grid must be aligned with
            ``landcover``.
        landcover:
            ESA WorldCover style class codes.
        config:
            Supplies the date windows and the cropland class code.
        composite:
            Annual NDVI composite. When omitted the per-pixel median of the
            observations inside ``config.annual_dates`` is used.
        """

        config = config or WaterBalanceConfig()
        series = tuple(sorted(series, key=lambda item: item[0]))
        if not series:
            raise MissingInputBand("ndvi_series", stage="vegetation", detail="no observations")

        for day, grid in series:
            landcover.check_aligned(grid, operation=f"ndvi_series:{day.isoformat()}")
        if composite is not None:
            landcover.check_aligned(composite, operation="ndvi_composite")

        kharif = [grid for day, grid in series if _in_window(day, config.kharif_dates)]
        rabi = [grid for day, grid in series if _in_window(day, config.rabi_dates)]
        annual: List[Grid] = [grid for day, grid in series if _in_window(day, config.annual_dates)]
        log.info(
            "NDVI series: %d observations (%d kharif, %d rabi, %d in year)",
            len(series),
            len(kharif),
            len(rabi),
            len(annual),
        )

        if composite is None:
            composite = _reduce(annual, np.nanmedian, landcover, "ndvi_composite", "annual")

        lc = landcover.data
        cropland = np.where(np.isnan(lc), np.nan, (lc == config.cropland_class).astype("float64"))

        return cls(
            series=series,
            kharif_mean=_reduce(kharif, np.nanmean, landcover, "ndvi_kharif_mean", "kharif"),
            rabi_mean=_reduce(rabi, np.nanmean, landcover, "ndvi_rabi_mean", "rabi"),
            annual_max=_reduce(annual, np.nanmax, landcover, "ndvi_annual_max", "annual"),
            annual_std=_reduce(annual, np.nanstd, landcover, "ndvi_annual_std", "annual"),
            composite=composite,
            cropland=landcover.with_values(cropland, name="cropland", units=""),
        )
