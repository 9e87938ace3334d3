"""Crop water stress and water productivity indices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from agriwater.grid import Grid, pixelwise
from agriwater.log import LOGGER
from agriwater.tiles import TilePlan
from agriwater.water_balance import WaterBalanceGridSet

log = LOGGER.getChild("indices")

ESI_MAX = 1.2


def _safe_divide(numerator, denominator):
    denominator = np.asarray(denominator, dtype="float64")
    with np.errstate(divide="ignore", invalid="ignore"):
        out = numerator / denominator
    return np.where(denominator == 0.0, np.nan, out)


def cwsi(etc, eta):
    """Crop water stress index ``clamp((ETc - ETa) / ETc, 0, 1)``."""
    return np.clip(_safe_divide(etc - eta, etc), 0.0, 1.0)


def esi(etc, eta):
    """Evaporative stress index ``clamp(ETa / ETc, 0, 1.2)``."""
    return np.clip(_safe_divide(eta, etc), 0.0, ESI_MAX)


def water_productivity(ndvi, eta):
    """NDVI per metre of actual ET; undefined where ETa is zero."""
    return _safe_divide(ndvi, np.asarray(eta, dtype="float64") / 1000.0)


@dataclass(frozen=True)
class StressIndices:
    cwsi: Grid
    esi: Grid
    water_productivity: Grid


def stress_indices(
    balance: WaterBalanceGridSet,
    ndvi: Grid,
    *,
    plan: Optional[TilePlan] = None,
) -> StressIndices:
    def _kernel(etc, eta, ndvi_values):
        return cwsi(etc, eta), esi(etc, eta), water_productivity(ndvi_values, eta)

    cwsi_grid, esi_grid, wp_grid = pixelwise(
        _kernel,
        balance.etc,
        balance.eta,
        ndvi,
        plan=plan,
        names=("CWSI", "ESI", "water_productivity"),
        units=("", "", "1/m"),
    )
    undefined = int(np.count_nonzero(balance.etc.data == 0.0))
    if undefined:
        log.debug("%d pixels with ETc = 0 have undefined CWSI/ESI", undefined)
    return StressIndices(cwsi=cwsi_grid, esi=esi_grid, water_productivity=wp_grid)
