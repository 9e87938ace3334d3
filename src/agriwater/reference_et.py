"""FAO-56 Penman-Monteith reference evapotranspiration.

Daily ET0 is computed from annual-mean meteorology and therefore
represents a typical day; the annual total is a flat 365-day scaling and
the monthly breakdown is a flat per-month scaling of the same value.
Pixels whose raw ET0 falls outside ``[0, et0_max_daily]`` are clamped and
flagged rather than dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from agriwater.config import WaterBalanceConfig
from agriwater.grid import Grid, pixelwise
from agriwater.log import LOGGER
from agriwater.meteorology import MeteorologyGridSet
from agriwater.tiles import TilePlan

log = LOGGER.getChild("reference_et")

DAYS_PER_YEAR = 365


def penman_monteith_daily(delta, gamma, rn, tmean, wind, vpd, g=0.0):
    """Unclamped daily ET0 (mm/day), FAO-56 eq. 6.

    Parameters
    ----------
    delta : slope of the vapour pressure curve (kPa/°C)
    gamma : psychrometric constant (kPa/°C)
    rn : net radiation (MJ m-2 day-1)
    tmean : mean air temperature (°C)
    wind : wind speed at 2 m (m/s)
    vpd : vapour pressure deficit (kPa)
    g : soil heat flux (MJ m-2 day-1), zero for daily steps
    """

    numerator = 0.408 * delta * (rn - g) + gamma * (900.0 / (tmean + 273.0)) * wind * vpd
    denominator = delta + gamma * (1.0 + 0.34 * wind)
    return numerator / denominator


@dataclass(frozen=True)
class ReferenceET:
    et0_daily: Grid
    et0_annual: Grid
    suspect: Grid
    suspect_count: int


def reference_et(
    met: MeteorologyGridSet,
    config: Optional[WaterBalanceConfig] = None,
    *,
    plan: Optional[TilePlan] = None,
) -> ReferenceET:
    """Daily and annual ET0 grids with out-of-range pixels clamped.

    ``suspect`` is 1 where the raw value was negative or above the
    configured ceiling, 0 where it was plausible, NaN where ET0 is nodata.
    """

    config = config or WaterBalanceConfig()
    ceiling = config.et0_max_daily

    def _kernel(delta, gamma, rn, tmean, wind, vpd):
        raw = penman_monteith_daily(delta, gamma, rn, tmean, wind, vpd)
        missing = np.isnan(raw)
        outside = (raw < 0.0) | (raw > ceiling)
        suspect = np.where(missing, np.nan, outside.astype("float64"))
        return np.clip(raw, 0.0, ceiling), suspect

    et0_daily, suspect = pixelwise(
        _kernel,
        met.delta,
        met.gamma,
        met.net_radiation,
        met.temperature_mean,
        met.wind,
        met.vpd,
        plan=plan,
        names=("ET0_daily", "ET0_suspect"),
        units=("mm/day", ""),
    )

    suspect_count = int(np.nansum(suspect.data))
    if suspect_count:
        log.warning(
            "%d pixels had ET0 outside [0, %g] mm/day and were clamped", suspect_count, ceiling
        )

    et0_annual = et0_daily * DAYS_PER_YEAR
    log.info("ET0 computed for %d pixels", et0_daily.valid_count)
    return ReferenceET(
        et0_daily=et0_daily,
        et0_annual=et0_annual.with_values(et0_annual.data, name="ET0_annual", units="mm/year"),
        suspect=suspect,
        suspect_count=suspect_count,
    )


def monthly_et0(et0_daily: Grid, days: int = 30) -> List[Grid]:
    """Twelve monthly ET0 grids, each ``et0_daily * days``.

    Every month gets the same value; there is no seasonal shape.
    """

    monthly = et0_daily.data * days
    return [
        et0_daily.with_values(monthly, name=f"ET0_month_{month:02d}", units="mm/month")
        for month in range(1, 13)
    ]
