"""Per-pixel annual water balance.

Closes the budget of each pixel independently (no lateral routing):

* SCS curve number runoff, ``S = 25400/CN - 254``, ``Ia = 0.2 S`` and
  ``Q = (P - Ia)^2 / (P + 0.8 S)`` for ``P > Ia``.
* effective precipitation ``(P - Q) * factor``.
* net and gross irrigation requirement.
* deep percolation, a fixed share of the surplus ``P - ETc``.
* soil water stress coefficient Ks from root-zone soil moisture, and the
  actual ET and deficit that follow from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from agriwater.config import WaterBalanceConfig
from agriwater.cropclass import CropType, CropTypeGrid
from agriwater.errors import MissingInputBand
from agriwater.grid import Grid, pixelwise
from agriwater.log import LOGGER
from agriwater.soil import SoilGridSet
from agriwater.tiles import TilePlan

log = LOGGER.getChild("water_balance")


##### Curve number #####
def curve_number_grid(
    crop_type: CropTypeGrid,
    landcover: Grid,
    config: Optional[WaterBalanceConfig] = None,
    *,
    plan: Optional[TilePlan] = None,
) -> Grid:
    """Assign a curve number to every pixel with known land cover.

    Default CN first, sugarcane next, forest last, so forest wins where the
    masks overlap.  Unclassified crop pixels keep the default.
    """

    config = config or WaterBalanceConfig()

    def _kernel(codes, lc):
        cn = np.full(lc.shape, float(config.curve_number_default))
        cn[codes == int(CropType.SUGARCANE)] = config.curve_number_sugarcane
        cn[lc == config.forest_class] = config.curve_number_forest
        cn[np.isnan(lc)] = np.nan
        return cn

    return pixelwise(_kernel, crop_type, landcover, plan=plan, names="curve_number")


##### Budget terms #####
def scs_runoff(precipitation, curve_number):
    """Direct runoff depth (mm); zero while P does not exceed Ia."""

    p = np.asarray(precipitation, dtype="float64")
    cn = np.asarray(curve_number, dtype="float64")
    s_max = 25400.0 / cn - 254.0
    ia = 0.2 * s_max
    with np.errstate(divide="ignore", invalid="ignore"):
        q = np.where(p > ia, (p - ia) ** 2 / (p + 0.8 * s_max), 0.0)
    return np.where(np.isnan(p) | np.isnan(cn), np.nan, q)


def effective_precipitation(precipitation, runoff, factor: float = 0.75):
    return (precipitation - runoff) * factor


def net_irrigation(etc, effective_precip):
    return np.maximum(etc - effective_precip, 0.0)


def gross_irrigation(irrigation_net, efficiency: float = 0.70):
    return irrigation_net / efficiency


def deep_percolation(precipitation, etc, fraction: float = 0.20):
    return np.maximum(precipitation - etc, 0.0) * fraction


def stress_coefficient(soil_moisture, field_capacity, wilting_point):
    """``clamp((SM - WP) / (FC - WP), 0, 1)``; NaN where FC equals WP."""

    span = np.asarray(field_capacity - wilting_point, dtype="float64")
    with np.errstate(divide="ignore", invalid="ignore"):
        ks = np.clip((soil_moisture - wilting_point) / span, 0.0, 1.0)
    return np.where(span == 0.0, np.nan, ks)


def actual_et(etc, ks):
    return etc * ks


def water_deficit(etc, eta):
    return etc - eta


@dataclass(frozen=True)
class WaterBalanceGridSet:
    et0: Grid
    kc: Grid
    etc: Grid
    eta: Grid
    ks: Grid
    runoff: Grid
    effective_precip: Grid
    irrigation_net: Grid
    irrigation_gross: Grid
    deep_percolation: Grid
    deficit: Grid
    etc_kharif: Grid
    etc_rabi: Grid


def compute_water_balance(
    precipitation: Grid,
    et0_annual: Grid,
    kc: Grid,
    curve_number: Grid,
    soil: SoilGridSet,
    config: Optional[WaterBalanceConfig] = None,
    *,
    plan: Optional[TilePlan] = None,
) -> WaterBalanceGridSet:
    """Evaluate every budget term in one pass over the tiles.

    ``precipitation`` and ``et0_annual`` are annual totals in mm.  Seasonal
    ETc scales the mean daily crop ET by the configured season lengths.
    """

    config = config or WaterBalanceConfig()
    if soil.soil_moisture_rootzone is None:
        raise MissingInputBand("soil_moisture_rootzone", stage="water_balance")

    factor = config.effective_precip_factor
    efficiency = config.irrigation_efficiency
    fraction = config.deep_percolation_fraction
    kharif_days = config.kharif_days
    rabi_days = config.rabi_days

    def _kernel(p, et0, kc_values, cn, sm, fc, wp):
        etc = et0 * kc_values
        q = scs_runoff(p, cn)
        peff = effective_precipitation(p, q, factor)
        ir_net = net_irrigation(etc, peff)
        ir_gross = gross_irrigation(ir_net, efficiency)
        dp = deep_percolation(p, etc, fraction)
        ks = stress_coefficient(sm, fc, wp)
        eta = actual_et(etc, ks)
        deficit = water_deficit(etc, eta)
        etc_daily = etc / 365.0
        return etc, eta, ks, q, peff, ir_net, ir_gross, dp, deficit, etc_daily * kharif_days, etc_daily * rabi_days

    log.info("Closing the water balance")
    etc, eta, ks, q, peff, ir_net, ir_gross, dp, deficit, etc_kharif, etc_rabi = pixelwise(
        _kernel,
        precipitation,
        et0_annual,
        kc,
        curve_number,
        soil.soil_moisture_rootzone,
        soil.field_capacity,
        soil.wilting_point,
        plan=plan,
        names=(
            "ETc_annual",
            "ETa_annual",
            "Ks",
            "runoff_annual",
            "effective_precip",
            "irrigation_requirement",
            "gross_irrigation_req",
            "deep_percolation",
            "water_deficit",
            "ETc_kharif",
            "ETc_rabi",
        ),
        units=("mm", "mm", "", "mm", "mm", "mm", "mm", "mm", "mm", "mm", "mm"),
    )

    degenerate = int(np.count_nonzero(np.isnan(ks.data) & ~np.isnan(etc.data)))
    if degenerate:
        log.debug("%d pixels have no soil stress coefficient (missing moisture or FC == WP)", degenerate)

    return WaterBalanceGridSet(
        et0=et0_annual,
        kc=kc,
        etc=etc,
        eta=eta,
        ks=ks,
        runoff=q,
        effective_precip=peff,
        irrigation_net=ir_net,
        irrigation_gross=ir_gross,
        deep_percolation=dp,
        deficit=deficit,
        etc_kharif=etc_kharif,
        etc_rabi=etc_rabi,
    )
