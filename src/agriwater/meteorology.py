"""Meteorological quantities for the Penman-Monteith equation.

The formulas follow FAO Irrigation and Drainage Paper 56 (Allen et al.,
1998), chapter 3, except for net radiation.  Net radiation here is a
deliberate simplification: incoming shortwave is estimated from latitude
and a single mid-year solar declination, and net longwave loss is a
constant offset.  It is not the FAO-56 radiation balance (no
extraterrestrial radiation, sunshine duration or Stefan-Boltzmann term),
so ET0 under cloudy or humid conditions is approximate.

Every formula below operates on NumPy arrays or scalars;
:func:`derive_meteorology` applies them to aligned
:class:`~agriwater.grid.Grid` inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Dict, Optional, Tuple

import numpy as np

from agriwater.config import WaterBalanceConfig
from agriwater.grid import Grid, pixelwise
from agriwater.log import LOGGER
from agriwater.tiles import TilePlan

log = LOGGER.getChild("meteorology")

KELVIN_OFFSET = 273.15
MODIS_LST_SCALE = 0.02


##### Vapour pressure #####
def saturation_vapour_pressure(temperature):
    """Tetens approximation e(T) = 0.6108 exp(17.27 T / (T + 237.3)) in kPa."""
    return 0.6108 * np.exp(17.27 * temperature / (temperature + 237.3))


def vapour_pressure_slope(tmean):
    """Slope of the saturation vapour pressure curve (kPa/°C), FAO-56 eq. 13."""
    return 4098.0 * saturation_vapour_pressure(tmean) / (tmean + 237.3) ** 2


def humidity(temperature, dewpoint) -> Tuple[np.ndarray, np.ndarray]:
    """Relative humidity (%) and vapour pressure deficit (kPa).

    Actual vapour pressure is the saturation pressure at the dew point.
    A negative deficit (dew point above air temperature) is physically
    impossible and is clamped to zero.
    """
    es = saturation_vapour_pressure(temperature)
    ea = saturation_vapour_pressure(dewpoint)
    rh = 100.0 * ea / es
    vpd = np.maximum(es - ea, 0.0)
    return rh, vpd


##### Pressure #####
def atmospheric_pressure(elevation):
    """Atmospheric pressure (kPa) from elevation (m), FAO-56 eq. 7."""
    return 101.3 * ((293.0 - 0.0065 * elevation) / 293.0) ** 5.26


def psychrometric_constant(elevation):
    """Psychrometric constant (kPa/°C), FAO-56 eq. 8."""
    return 0.000665 * atmospheric_pressure(elevation)


##### Radiation #####
def solar_declination(day_of_year):
    """Solar declination (radians) for ``day_of_year``."""
    return np.radians(23.45 * np.sin(2.0 * np.pi / 365.0 * (day_of_year - 81)))


def incoming_shortwave(latitude_deg, day_of_year: int = 180, factor: float = 15.392):
    """Rough incoming shortwave radiation (MJ m-2 day-1).

    ``cos(lat) * cos(decl) * 24 * factor`` for a single declination.
    """
    decl = solar_declination(day_of_year)
    return np.cos(np.radians(latitude_deg)) * np.cos(decl) * 24.0 * factor


def net_radiation(shortwave, albedo, longwave_offset: float = 5.0):
    """Net radiation (MJ m-2 day-1) as ``Rs * (1 - albedo) - offset``."""
    return shortwave * (1.0 - albedo) - longwave_offset


##### Wind #####
def wind_speed(u, v):
    """Horizontal wind magnitude (m/s) from its two components."""
    return np.hypot(u, v)


##### Land surface temperature #####
def lst_to_celsius(digital_number, scale: float = MODIS_LST_SCALE):
    """Convert scaled land surface temperature counts (Kelvin) to °C."""
    return digital_number * scale - KELVIN_OFFSET


def temperature_from_lst(day: Grid, night: Grid, *, scale: float = MODIS_LST_SCALE) -> Tuple[Grid, Grid, Grid]:
    """Mean, max and min temperature grids from day/night LST counts.

    Day LST stands in for Tmax, night LST for Tmin, and their average for
    Tmean.
    """

    def _kernel(day_dn, night_dn):
        tmax = lst_to_celsius(day_dn, scale)
        tmin = lst_to_celsius(night_dn, scale)
        return (tmax + tmin) / 2.0, tmax, tmin

    return pixelwise(
        _kernel,
        day,
        night,
        names=("temperature_mean_C", "temperature_max_C", "temperature_min_C"),
        units="degC",
    )


##### Grid sets #####
@dataclass(frozen=True)
class ClimateGridSet:
    """Annual-mean climate grids, all on one placement."""

    precipitation: Grid
    temperature_mean: Grid
    temperature_max: Grid
    temperature_min: Grid
    wind_u: Grid
    wind_v: Grid
    dewpoint: Grid
    albedo: Grid
    elevation: Grid

    def grids(self) -> Dict[str, Grid]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def check_aligned(self) -> None:
        for name, grid in self.grids().items():
            self.precipitation.check_aligned(grid, operation=f"climate:{name}")

    def derive(
        self, config: Optional[WaterBalanceConfig] = None, plan: Optional[TilePlan] = None
    ) -> "MeteorologyGridSet":
        return derive_meteorology(self, config, plan=plan)


@dataclass(frozen=True)
class MeteorologyGridSet:
    latitude: Grid
    delta: Grid
    pressure: Grid
    gamma: Grid
    relative_humidity: Grid
    vpd: Grid
    shortwave: Grid
    net_radiation: Grid
    wind: Grid
    temperature_mean: Grid


def derive_meteorology(
    climate: ClimateGridSet,
    config: Optional[WaterBalanceConfig] = None,
    *,
    plan: Optional[TilePlan] = None,
) -> MeteorologyGridSet:
    """Derive every ET0 input from the raw climate grids.

    No resampling happens here; inputs must already share a placement.
    """

    config = config or WaterBalanceConfig()

    climate.check_aligned()
    log.info("Deriving meteorological variables")

    latitude = climate.precipitation.latitude()
    delta = pixelwise(vapour_pressure_slope, climate.temperature_mean, plan=plan, names="delta", units="kPa/degC")

    def _pressure_kernel(z):
        pressure = atmospheric_pressure(z)
        return pressure, 0.000665 * pressure

    pressure, gamma = pixelwise(
        _pressure_kernel,
        climate.elevation,
        plan=plan,
        names=("pressure", "gamma"),
        units=("kPa", "kPa/degC"),
    )

    rh, vpd = pixelwise(
        humidity,
        climate.temperature_mean,
        climate.dewpoint,
        plan=plan,
        names=("relative_humidity", "vpd"),
        units=("%", "kPa"),
    )

    doy = config.solar_day_of_year
    factor = config.radiation_factor
    offset = config.longwave_offset

    def _shortwave_kernel(lat):
        return incoming_shortwave(lat, doy, factor)

    def _net_radiation_kernel(rs, albedo):
        return net_radiation(rs, albedo, offset)

    shortwave = pixelwise(_shortwave_kernel, latitude, plan=plan, names="shortwave", units="MJ/m2/day")
    rn = pixelwise(
        _net_radiation_kernel, shortwave, climate.albedo, plan=plan, names="net_radiation", units="MJ/m2/day"
    )
    wind = pixelwise(wind_speed, climate.wind_u, climate.wind_v, plan=plan, names="wind_speed", units="m/s")

    return MeteorologyGridSet(
        latitude=latitude,
        delta=delta,
        pressure=pressure,
        gamma=gamma,
        relative_humidity=rh,
        vpd=vpd,
        shortwave=shortwave,
        net_radiation=rn,
        wind=wind,
        temperature_mean=climate.temperature_mean,
    )
