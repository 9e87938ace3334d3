"""End-to-end water balance analysis over aligned input grids.

Stage order::

    inputs -> meteorology -> vegetation/soil -> crop classes -> ET0
           -> Kc -> water balance -> stress indices -> zonal products

Inputs are validated before any computation: a mandatory variable that is
absent or entirely nodata raises :class:`MissingInputBand`, and any grid
not aligned with precipitation raises :class:`GridMisalignment`.  No
partial result is returned when a stage fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import geopandas as gpd
import numpy as np
import polars as pl

from agriwater.config import WaterBalanceConfig
from agriwater.crop_coefficient import crop_coefficient
from agriwater.cropclass import classify_crops
from agriwater.errors import MissingInputBand
from agriwater.grid import Grid
from agriwater.indices import stress_indices
from agriwater.log import LOGGER
from agriwater.meteorology import ClimateGridSet
from agriwater.reference_et import reference_et
from agriwater.soil import SoilGridSet
from agriwater.vegetation import VegetationGridSet
from agriwater.water_balance import compute_water_balance, curve_number_grid
from agriwater.zonal import crop_water_budgets, district_statistics, monthly_water_balance, region_masks

log = LOGGER.getChild("pipeline")

REQUIRED_VARIABLES: Tuple[str, ...] = (
    "precipitation_mm",
    "temperature_mean_C",
    "temperature_max_C",
    "temperature_min_C",
    "wind_u",
    "wind_v",
    "dewpoint_C",
    "albedo",
    "elevation_m",
    "soil_moisture_surface",
    "soil_moisture_rootzone",
    "sand_fraction",
    "clay_fraction",
    "landcover_class",
)

# Names handed to rendering/export collaborators
OUTPUT_GRIDS: Tuple[str, ...] = (
    "ET0_annual",
    "ETc_annual",
    "ETa_annual",
    "runoff_annual",
    "effective_precip",
    "irrigation_requirement",
    "gross_irrigation_req",
    "deep_percolation",
    "water_deficit",
    "CWSI",
    "ESI",
    "crop_type",
)


@dataclass(frozen=True)
class AnalysisInputs:
    """Everything one analysis run reads.

    ``variables`` maps the names in :data:`REQUIRED_VARIABLES` to grids on
    one common placement; ``ndvi_series`` holds dated NDVI grids on the
    same placement.
    """

    variables: Mapping[str, Grid]
    ndvi_series: Sequence[Tuple[date, Grid]]
    regions: Union[gpd.GeoDataFrame, Mapping[str, Any]]
    districts: Sequence[str]
    ndvi_composite: Optional[Grid] = None
    field_capacity: Optional[Grid] = None
    wilting_point: Optional[Grid] = None
    monthly_precip: Optional[Sequence[Grid]] = None
    monthly_soil_moisture: Optional[Sequence[Grid]] = None
    region_name_column: str = "district"


@dataclass(frozen=True)
class AnalysisResult:
    grids: Dict[str, Grid]
    district_statistics: pl.DataFrame
    crop_water_budgets: pl.DataFrame
    monthly_water_balance: Optional[pl.DataFrame]
    provenance: Dict[str, Any] = field(default_factory=dict)

    def output_bundle(self) -> Dict[str, Grid]:
        """The contract subset of :attr:`grids`."""
        return {name: self.grids[name] for name in OUTPUT_GRIDS}


def validate_inputs(inputs: AnalysisInputs) -> Grid:
    """Check presence and alignment of every input; return the reference grid."""

    for name in REQUIRED_VARIABLES:
        grid = inputs.variables.get(name)
        if grid is None:
            raise MissingInputBand(name)
        if grid.valid_count == 0:
            raise MissingInputBand(name, detail="every pixel is nodata")

    if not inputs.ndvi_series:
        raise MissingInputBand("ndvi", detail="empty NDVI time series")
    if not inputs.districts:
        raise MissingInputBand("districts", detail="no district names given")

    reference = inputs.variables["precipitation_mm"]
    for name in REQUIRED_VARIABLES:
        reference.check_aligned(inputs.variables[name], operation=f"inputs:{name}")
    for day, grid in inputs.ndvi_series:
        reference.check_aligned(grid, operation=f"inputs:ndvi:{day.isoformat()}")

    optional = {
        "ndvi_composite": inputs.ndvi_composite,
        "field_capacity": inputs.field_capacity,
        "wilting_point": inputs.wilting_point,
    }
    for label, series in (("monthly_precip", inputs.monthly_precip), ("monthly_soil_moisture", inputs.monthly_soil_moisture)):
        for index, grid in enumerate(series or ()):
            optional[f"{label}[{index + 1}]"] = grid
    for name, grid in optional.items():
        if grid is not None:
            reference.check_aligned(grid, operation=f"inputs:{name}")

    return reference


def run_analysis(inputs: AnalysisInputs, config: Optional[WaterBalanceConfig] = None) -> AnalysisResult:
    """Run every stage and assemble the grid bundle and tabular products."""

    config = config or WaterBalanceConfig()
    precipitation = validate_inputs(inputs)
    v = inputs.variables
    plan = config.tile_plan()
    log.info(
        "Starting water balance analysis on a %dx%d grid (%s Kc)",
        precipitation.height,
        precipitation.width,
        config.kc_method.value,
    )

    climate = ClimateGridSet(
        precipitation=precipitation,
        temperature_mean=v["temperature_mean_C"],
        temperature_max=v["temperature_max_C"],
        temperature_min=v["temperature_min_C"],
        wind_u=v["wind_u"],
        wind_v=v["wind_v"],
        dewpoint=v["dewpoint_C"],
        albedo=v["albedo"],
        elevation=v["elevation_m"],
    )
    met = climate.derive(config, plan)

    landcover = v["landcover_class"]
    vegetation = VegetationGridSet.from_series(
        inputs.ndvi_series, landcover, config, composite=inputs.ndvi_composite
    )
    soil = SoilGridSet.from_texture(
        v["sand_fraction"],
        v["clay_fraction"],
        soil_moisture_surface=v["soil_moisture_surface"],
        soil_moisture_rootzone=v["soil_moisture_rootzone"],
        field_capacity_grid=inputs.field_capacity,
        wilting_point_grid=inputs.wilting_point,
        root_depth_mm=config.root_zone_depth_mm,
        plan=plan,
    )

    crop_type = classify_crops(vegetation, plan=plan)
    et0 = reference_et(met, config, plan=plan)
    kc, kc_provenance = crop_coefficient(
        config.kc_method,
        crop_type=crop_type,
        ndvi=vegetation.composite,
        kc_table=config.kc_lookup,
        plan=plan,
    )
    curve_number = curve_number_grid(crop_type, landcover, config, plan=plan)
    balance = compute_water_balance(
        precipitation, et0.et0_annual, kc, curve_number, soil, config, plan=plan
    )
    stress = stress_indices(balance, vegetation.composite, plan=plan)

    grids: Dict[str, Grid] = {
        "precipitation_mm": precipitation,
        "ET0_annual": et0.et0_annual,
        "ETc_annual": balance.etc,
        "ETa_annual": balance.eta,
        "runoff_annual": balance.runoff,
        "effective_precip": balance.effective_precip,
        "irrigation_requirement": balance.irrigation_net,
        "gross_irrigation_req": balance.irrigation_gross,
        "deep_percolation": balance.deep_percolation,
        "water_deficit": balance.deficit,
        "CWSI": stress.cwsi,
        "ESI": stress.esi,
        "crop_type": crop_type,
        "Kc": kc,
        "Ks": balance.ks,
        "ET0_daily": et0.et0_daily,
        "ET0_suspect": et0.suspect,
        "water_productivity": stress.water_productivity,
        "ETc_kharif": balance.etc_kharif,
        "ETc_rabi": balance.etc_rabi,
        "curve_number": curve_number,
    }

    masks = region_masks(precipitation, inputs.regions, inputs.districts, inputs.region_name_column)
    study_area = np.any([mask.values > 0 for mask in masks.values()], axis=0)

    district_frame = district_statistics(grids, masks)
    budgets = crop_water_budgets(
        crop_type, et0.et0_annual, precipitation, balance.runoff, study_area, config
    )
    monthly = None
    if inputs.monthly_precip is not None or inputs.monthly_soil_moisture is not None:
        monthly = monthly_water_balance(
            et0.et0_daily,
            study_area,
            monthly_precip=inputs.monthly_precip,
            monthly_soil_moisture=inputs.monthly_soil_moisture,
            days=config.days_per_month,
        )

    provenance = {
        **kc_provenance,
        "et0_suspect_count": et0.suspect_count,
        "districts": list(masks),
        "config": config.to_dict(),
    }
    log.info("Analysis finished: %d districts, %d crop classes", district_frame.height, budgets.height)
    return AnalysisResult(
        grids=grids,
        district_statistics=district_frame,
        crop_water_budgets=budgets,
        monthly_water_balance=monthly,
        provenance=provenance,
    )
