"""Soil hydraulic properties from texture fractions.

Field capacity and wilting point use linear pedotransfer functions fitted
for Deccan plateau soils (volumetric fractions, sand and clay given
as 0-1 fractions).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from agriwater.errors import InvalidParameterRange
from agriwater.grid import Grid, pixelwise
from agriwater.log import LOGGER
from agriwater.tiles import TilePlan

log = LOGGER.getChild("soil")


def silt_fraction(sand, clay):
    """Residual texture fraction; NaN where sand and clay exceed 1."""
    silt = 1.0 - sand - clay
    return np.where(silt < 0.0, np.nan, silt)


def field_capacity(sand, clay):
    return -0.251 * sand + 0.195 * clay + 0.505


def wilting_point(sand, clay):
    return -0.024 * sand + 0.487 * clay + 0.006


def available_water_capacity(fc, wp):
    """Plant available water in mm per metre of soil."""
    return (fc - wp) * 1000.0


@dataclass(frozen=True)
class SoilGridSet:
    sand: Grid
    clay: Grid
    silt: Grid
    field_capacity: Grid
    wilting_point: Grid
    awc: Grid
    total_awc: Grid
    root_depth_mm: float = 1000.0
    soil_moisture_surface: Optional[Grid] = None
    soil_moisture_rootzone: Optional[Grid] = None

    @classmethod
    def from_texture(
        cls,
        sand: Grid,
        clay: Grid,
        *,
        soil_moisture_surface: Optional[Grid] = None,
        soil_moisture_rootzone: Optional[Grid] = None,
        field_capacity_grid: Optional[Grid] = None,
        wilting_point_grid: Optional[Grid] = None,
        root_depth_mm: float = 1000.0,
        plan: Optional[TilePlan] = None,
    ) -> "SoilGridSet":
        """Derive hydraulic grids from sand and clay fractions.

        Explicit field capacity or wilting point grids replace the
        pedotransfer estimate for that property.
        """

        if root_depth_mm <= 0:
            raise InvalidParameterRange("root_depth_mm", root_depth_mm, "> 0 mm")
        for optional in (soil_moisture_surface, soil_moisture_rootzone, field_capacity_grid, wilting_point_grid):
            if optional is not None:
                sand.check_aligned(optional, operation="soil")

        silt = pixelwise(silt_fraction, sand, clay, plan=plan, names="silt_fraction")
        fc = field_capacity_grid
        if fc is None:
            fc = pixelwise(field_capacity, sand, clay, plan=plan, names="field_capacity", units="m3/m3")
        wp = wilting_point_grid
        if wp is None:
            wp = pixelwise(wilting_point, sand, clay, plan=plan, names="wilting_point", units="m3/m3")

        awc = pixelwise(available_water_capacity, fc, wp, plan=plan, names="awc", units="mm/m")
        total = awc * (root_depth_mm / 1000.0)
        log.info("Soil hydraulic properties derived for %d pixels", fc.valid_count)

        return cls(
            sand=sand,
            clay=clay,
            silt=silt,
            field_capacity=fc,
            wilting_point=wp,
            awc=awc,
            total_awc=total.with_values(total.data, name="total_awc", units="mm"),
            root_depth_mm=float(root_depth_mm),
            soil_moisture_surface=soil_moisture_surface,
            soil_moisture_rootzone=soil_moisture_rootzone,
        )
