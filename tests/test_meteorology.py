import math

import numpy as np
import numpy.testing as npt
import pytest
from rasterio.transform import from_origin

from agriwater.config import WaterBalanceConfig
from agriwater.errors import GridMisalignment
from agriwater.grid import Grid
from agriwater.meteorology import (
    ClimateGridSet,
    atmospheric_pressure,
    humidity,
    incoming_shortwave,
    lst_to_celsius,
    net_radiation,
    psychrometric_constant,
    saturation_vapour_pressure,
    temperature_from_lst,
    vapour_pressure_slope,
    wind_speed,
)

TRANSFORM = from_origin(74.0, 17.5, 0.01, 0.01)


def _full(value, shape=(2, 2), name="g"):
    return Grid(np.full(shape, value, dtype=float), TRANSFORM, "EPSG:4326", name=name)


def _climate(**overrides):
    values = dict(
        precipitation=800.0,
        temperature_mean=25.0,
        temperature_max=32.0,
        temperature_min=18.0,
        wind_u=1.2,
        wind_v=1.6,
        dewpoint=15.0,
        albedo=0.2,
        elevation=600.0,
    )
    values.update(overrides)
    return ClimateGridSet(**{key: _full(value, name=key) for key, value in values.items()})


def test_vapour_pressure_slope_at_20c():
    npt.assert_allclose(vapour_pressure_slope(20.0), 0.1447, atol=5e-4)


def test_pressure_and_gamma_at_sea_level():
    npt.assert_allclose(atmospheric_pressure(0.0), 101.3)
    npt.assert_allclose(psychrometric_constant(0.0), 0.0673645, rtol=1e-9)


def test_humidity_clamps_negative_deficit():
    rh, vpd = humidity(np.array([25.0, 20.0]), np.array([15.0, 22.0]))

    es = saturation_vapour_pressure(25.0)
    ea = saturation_vapour_pressure(15.0)
    npt.assert_allclose(vpd[0], es - ea)
    npt.assert_allclose(rh[0], 100.0 * ea / es)
    assert vpd[1] == 0.0


def test_radiation_follows_simplified_balance():
    decl = math.radians(23.45 * math.sin(2 * math.pi / 365 * (180 - 81)))
    expected_rs = math.cos(math.radians(17.0)) * math.cos(decl) * 24 * 15.392

    rs = incoming_shortwave(17.0, 180)
    npt.assert_allclose(rs, expected_rs)
    npt.assert_allclose(net_radiation(rs, 0.2), expected_rs * 0.8 - 5.0)


def test_wind_speed_is_vector_magnitude():
    npt.assert_allclose(wind_speed(3.0, -4.0), 5.0)


def test_lst_conversion_and_temperature_grids():
    npt.assert_allclose(lst_to_celsius(15000), 26.85)

    day = _full(15500.0)
    night = _full(14500.0)
    tmean, tmax, tmin = temperature_from_lst(day, night)

    npt.assert_allclose(tmax.data, 36.85)
    npt.assert_allclose(tmin.data, 16.85)
    npt.assert_allclose(tmean.data, 26.85)


def test_derive_meteorology_grids():
    met = _climate().derive(WaterBalanceConfig())

    npt.assert_allclose(met.wind.data, 2.0)
    npt.assert_allclose(met.delta.data, vapour_pressure_slope(25.0))
    npt.assert_allclose(met.gamma.data, psychrometric_constant(600.0))
    # latitude of the first pixel centre
    npt.assert_allclose(met.latitude.data[0, 0], 17.495)
    assert np.all(met.net_radiation.data < met.shortwave.data)


def test_missing_pixel_propagates():
    climate = _climate()
    temps = climate.temperature_mean.data.copy()
    temps[0, 1] = np.nan
    climate = ClimateGridSet(
        **{**climate.grids(), "temperature_mean": climate.temperature_mean.with_values(temps)}
    )

    met = climate.derive()
    assert np.isnan(met.delta.data[0, 1])
    assert np.isnan(met.vpd.data[0, 1])
    assert not np.isnan(met.delta.data[0, 0])


def test_misaligned_climate_grid_is_rejected():
    climate = _climate()
    bad = Grid(np.ones((3, 3)), TRANSFORM, "EPSG:4326", name="albedo")

    with pytest.raises(GridMisalignment):
        ClimateGridSet(**{**climate.grids(), "albedo": bad}).derive()
