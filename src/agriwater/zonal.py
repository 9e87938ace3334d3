"""Region and crop-class aggregation of output grids.

Every reduction is independent of pixel visitation order: sums go through
:func:`math.fsum` (exactly rounded) and means are accumulated about the
region minimum, so a constant region reports its value exactly.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import polars as pl
from rasterio.features import rasterize

from agriwater.config import WaterBalanceConfig
from agriwater.cropclass import CROP_CLASSES, CropTypeGrid
from agriwater.errors import MissingInputBand
from agriwater.grid import Grid
from agriwater.log import LOGGER

log = LOGGER.getChild("zonal")

ZonalRecord = Dict[str, Union[float, str]]
MaskLike = Union[Grid, np.ndarray]

# output field -> key of the grid bundle it is averaged from
DISTRICT_FIELDS: Dict[str, str] = {
    "annual_precip": "precipitation_mm",
    "ET0_annual": "ET0_annual",
    "ETc_annual": "ETc_annual",
    "ETa_annual": "ETa_annual",
    "runoff_annual": "runoff_annual",
    "deep_percolation": "deep_percolation",
    "effective_precip": "effective_precip",
    "irrigation_requirement": "irrigation_requirement",
    "gross_irrigation_req": "gross_irrigation_req",
    "water_deficit": "water_deficit",
}

CROP_BUDGET_FIELDS = ("crop", "area_ha", "et0_mm", "etc_mm", "precip_mm", "irrigation_mm")
MONTHLY_FIELDS = ("month", "precipitation", "et0", "soil_moisture")


class Reduction(str, Enum):
    MEAN = "mean"
    SUM = "sum"
    COUNT = "count"
    AREA_HA = "area_ha"


def _as_mask(grid: Grid, mask: Optional[MaskLike]) -> np.ndarray:
    if mask is None:
        return np.ones(grid.shape, dtype=bool)
    if isinstance(mask, Grid):
        grid.check_aligned(mask, operation="zonal mask")
        return np.nan_to_num(mask.data, nan=0.0) > 0
    mask = np.asarray(mask)
    if mask.shape != grid.shape:
        raise ValueError(f"Mask shape {mask.shape} does not match grid shape {grid.shape}.")
    return mask.astype(bool)


def _mean(values: np.ndarray) -> float:
    if values.size == 0:
        return math.nan
    shift = float(values.min())
    return shift + math.fsum((values - shift).tolist()) / values.size


def reduce_grid(grid: Grid, mask: Optional[MaskLike] = None, reduction: Reduction = Reduction.MEAN) -> float:
    """Reduce the valid pixels of ``grid`` inside ``mask`` to one number.

    ``MEAN`` and ``SUM`` of an empty selection are NaN; ``COUNT`` and
    ``AREA_HA`` are 0.
    """

    reduction = Reduction(reduction)
    selected = _as_mask(grid, mask) & grid.valid

    if reduction is Reduction.COUNT:
        return float(np.count_nonzero(selected))
    if reduction is Reduction.AREA_HA:
        return math.fsum(grid.pixel_area_m2()[selected].tolist()) / 10000.0

    values = grid.data[selected]
    if reduction is Reduction.SUM:
        return math.fsum(values.tolist()) if values.size else math.nan
    return _mean(values)


##### Region masks #####
def region_masks(
    template: Grid,
    regions: Union[gpd.GeoDataFrame, Mapping[str, MaskLike]],
    names: Optional[Sequence[str]] = None,
    name_column: str = "district",
) -> Dict[str, Grid]:
    """Boolean (0/1) mask grids per region name, on ``template``'s placement.

    ``regions`` is either a GeoDataFrame with a ``name_column``, reprojected
    to the template CRS and rasterised pixel-centre style, or a mapping of
    name to mask.  Requested names that are absent raise
    :class:`MissingInputBand`.
    """

    masks: Dict[str, Grid] = {}

    if isinstance(regions, gpd.GeoDataFrame):
        if name_column not in regions.columns:
            raise MissingInputBand(name_column, stage="zonal", detail="region name column not found")
        gdf = regions
        if gdf.crs is not None and template.crs is not None:
            gdf = gdf.to_crs(template.crs)
        wanted = list(names) if names is not None else list(dict.fromkeys(gdf[name_column].tolist()))
        for name in wanted:
            rows = gdf[gdf[name_column] == name]
            if rows.empty:
                raise MissingInputBand(f"district:{name}", stage="zonal", detail="no geometry")
            burned = rasterize(
                [(geom, 1) for geom in rows.geometry if geom is not None and not geom.is_empty],
                out_shape=template.shape,
                transform=template.transform,
                fill=0,
                all_touched=False,
                dtype="uint8",
            )
            masks[name] = template.with_values(burned, name=str(name), units="")
    else:
        wanted = list(names) if names is not None else list(regions)
        for name in wanted:
            if name not in regions:
                raise MissingInputBand(f"district:{name}", stage="zonal", detail="no mask")
            mask = _as_mask(template, regions[name])
            masks[name] = template.with_values(mask.astype("uint8"), name=str(name), units="")

    for name, mask in masks.items():
        if not np.any(mask.values):
            log.warning("Region '%s' covers no pixels of the analysis grid", name)
    return masks


##### Tabular products #####
def district_statistics(bundle: Mapping[str, Grid], masks: Mapping[str, Grid]) -> pl.DataFrame:
    """One row per district with the mean of every water balance quantity.

    ``n_pixels`` counts district pixels where every reported quantity is
    defined.
    """

    missing = [key for key in DISTRICT_FIELDS.values() if key not in bundle]
    if missing:
        raise MissingInputBand(missing[0], stage="district_statistics")

    rows: List[ZonalRecord] = []
    for district, mask in masks.items():
        row: ZonalRecord = {"district": district}
        joint = _as_mask(bundle["ETc_annual"], mask)
        for field, key in DISTRICT_FIELDS.items():
            grid = bundle[key]
            row[field] = reduce_grid(grid, mask, Reduction.MEAN)
            joint = joint & grid.valid
        row["n_pixels"] = int(np.count_nonzero(joint))
        if row["n_pixels"] == 0:
            log.warning("District '%s' has no valid pixels; its statistics are NaN", district)
        rows.append(row)

    schema = {"district": pl.Utf8, **{field: pl.Float64 for field in DISTRICT_FIELDS}, "n_pixels": pl.Int64}
    return pl.DataFrame(rows, schema=schema)


def crop_water_budgets(
    crop_type: CropTypeGrid,
    et0_annual: Grid,
    precipitation: Grid,
    runoff: Grid,
    region: Optional[MaskLike] = None,
    config: Optional[WaterBalanceConfig] = None,
) -> pl.DataFrame:
    """Area and mean water budget of each crop class inside ``region``.

    ETc uses the class's lookup Kc whatever the configured Kc method, and
    irrigation is the class mean of ``max(ETc - (P - Q) * factor, 0)``.
    """

    config = config or WaterBalanceConfig()
    for grid in (et0_annual, precipitation, runoff):
        crop_type.check_aligned(grid, operation="crop_water_budgets")
    region_mask = _as_mask(crop_type, region)
    factor = config.effective_precip_factor

    rows: List[ZonalRecord] = []
    for crop in CROP_CLASSES:
        mask = region_mask & crop_type.class_mask(crop)
        kc = config.kc_lookup[crop]
        etc = et0_annual * kc
        irrigation = (etc - (precipitation - runoff) * factor).clip(lower=0.0)
        rows.append(
            {
                "crop": crop.label,
                "area_ha": reduce_grid(crop_type, mask, Reduction.AREA_HA),
                "et0_mm": reduce_grid(et0_annual, mask),
                "etc_mm": reduce_grid(etc, mask),
                "precip_mm": reduce_grid(precipitation, mask),
                "irrigation_mm": reduce_grid(irrigation, mask),
            }
        )

    log.info("Crop water budgets computed for %d classes", len(rows))
    schema = {"crop": pl.Utf8, **{field: pl.Float64 for field in CROP_BUDGET_FIELDS[1:]}}
    return pl.DataFrame(rows, schema=schema)


def monthly_water_balance(
    et0_daily: Grid,
    region: Optional[MaskLike] = None,
    *,
    monthly_precip: Optional[Sequence[Grid]] = None,
    monthly_soil_moisture: Optional[Sequence[Grid]] = None,
    days: int = 30,
) -> pl.DataFrame:
    """Regional mean precipitation, ET0 and soil moisture for months 1-12.

    Monthly ET0 is ``et0_daily * days`` for every month.  Missing monthly
    precipitation or soil moisture series leave their column null.
    """

    for label, series in (("monthly_precip", monthly_precip), ("monthly_soil_moisture", monthly_soil_moisture)):
        if series is not None and len(series) != 12:
            raise ValueError(f"'{label}' must hold 12 monthly grids; got {len(series)}.")

    et0_month = reduce_grid(et0_daily, region) * days
    rows: List[ZonalRecord] = []
    for index in range(12):
        rows.append(
            {
                "month": index + 1,
                "precipitation": reduce_grid(monthly_precip[index], region) if monthly_precip else None,
                "et0": et0_month,
                "soil_moisture": (
                    reduce_grid(monthly_soil_moisture[index], region) if monthly_soil_moisture else None
                ),
            }
        )

    schema = {"month": pl.Int64, "precipitation": pl.Float64, "et0": pl.Float64, "soil_moisture": pl.Float64}
    return pl.DataFrame(rows, schema=schema)


def to_records(frame: pl.DataFrame) -> List[ZonalRecord]:
    return frame.to_dicts()
