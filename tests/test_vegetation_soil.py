import logging
from datetime import date

import numpy as np
import numpy.testing as npt
import pytest
from rasterio.transform import from_origin

from agriwater.config import WaterBalanceConfig
from agriwater.errors import GridMisalignment, MissingInputBand
from agriwater.grid import Grid
from agriwater.soil import SoilGridSet
from agriwater.vegetation import (
    VegetationGridSet,
    cloud_mask,
    evi,
    lai_from_evi,
    ndvi,
    ndvi_from_bands,
    savi,
    scale_reflectance,
)

TRANSFORM = from_origin(500000, 1900000, 100, 100)


def _grid(values, name="g"):
    return Grid(np.asarray(values, dtype=float), TRANSFORM, "EPSG:32643", name=name)


def test_reflectance_indices():
    npt.assert_allclose(ndvi(0.5, 0.1), 0.4 / 0.6)
    npt.assert_allclose(evi(0.5, 0.1, 0.05), 2.5 * 0.4 / (0.5 + 0.6 - 0.375 + 1.0))
    npt.assert_allclose(savi(0.5, 0.1), 1.5 * 0.4 / 1.1)
    assert np.isnan(ndvi(np.array(0.0), np.array(0.0)))


def test_lai_is_bounded():
    npt.assert_allclose(lai_from_evi(np.array([-1.0, 0.5, 5.0])), [0.0, 3.618 * 0.5 - 0.118, 7.0])


def test_cloud_mask_reads_bits_10_and_11():
    qa = np.array([0, 1 << 10, 1 << 11, (1 << 10) | (1 << 11), 1 << 9])
    npt.assert_array_equal(cloud_mask(qa), [True, False, False, False, True])

    reflectance = scale_reflectance(np.array([2000, 2000]), np.array([0, 1024]))
    npt.assert_allclose(reflectance[0], 0.2)
    assert np.isnan(reflectance[1])


def test_ndvi_from_bands_masks_clouds():
    out = ndvi_from_bands(_grid([[3000, 3000]]), _grid([[1000, 1000]]), _grid([[0, 2048]]))

    npt.assert_allclose(out.data[0, 0], 0.5)
    assert np.isnan(out.data[0, 1])


def _landcover():
    return _grid([[40, 40]], name="landcover")


def test_seasonal_aggregates():
    series = [
        (date(2024, 7, 1), _grid([[0.4, 0.6]])),
        (date(2024, 9, 1), _grid([[0.6, np.nan]])),
        (date(2025, 1, 1), _grid([[0.2, 0.2]])),
    ]
    veg = VegetationGridSet.from_series(series, _landcover(), WaterBalanceConfig())

    npt.assert_allclose(veg.kharif_mean.data, [[0.5, 0.6]])
    npt.assert_allclose(veg.rabi_mean.data, [[0.2, 0.2]])
    # the 2025 observation is rabi only; annual statistics cover 2024
    npt.assert_allclose(veg.annual_max.data, [[0.6, 0.6]])
    npt.assert_allclose(veg.annual_std.data, [[0.1, 0.0]], atol=1e-12)
    npt.assert_allclose(veg.composite.data, [[0.5, 0.6]])
    npt.assert_array_equal(veg.cropland.data, [[1.0, 1.0]])


@pytest.mark.parametrize(
    "day, kharif, rabi",
    [
        (date(2024, 6, 1), 0.55, np.nan),
        (date(2024, 11, 29), 0.55, 0.9),
        (date(2024, 11, 30), 0.2, 0.9),
        (date(2025, 3, 30), 0.2, 0.9),
        (date(2025, 3, 31), 0.2, np.nan),
    ],
)
def test_season_windows_exclude_end_date(day, kharif, rabi):
    series = [(date(2024, 7, 1), _grid([[0.2, 0.2]])), (day, _grid([[0.9, 0.9]]))]

    veg = VegetationGridSet.from_series(series, _landcover())

    npt.assert_allclose(veg.kharif_mean.data, [[kharif, kharif]])
    npt.assert_allclose(veg.rabi_mean.data, [[rabi, rabi]])


def test_annual_statistics_ignore_other_years():
    series = [
        (date(2023, 12, 1), _grid([[0.95, 0.95]])),
        (date(2024, 1, 1), _grid([[0.3, 0.3]])),
        (date(2024, 8, 1), _grid([[0.5, 0.5]])),
        (date(2024, 12, 31), _grid([[0.99, 0.99]])),
    ]

    veg = VegetationGridSet.from_series(series, _landcover())

    npt.assert_allclose(veg.annual_max.data, [[0.5, 0.5]])
    npt.assert_allclose(veg.composite.data, [[0.4, 0.4]])

    config = WaterBalanceConfig(analysis_year=2023, annual_window=("12-01", "12-02"))
    veg = VegetationGridSet.from_series(series, _landcover(), config)

    npt.assert_allclose(veg.annual_max.data, [[0.95, 0.95]])


def test_empty_season_is_all_nodata(caplog):
    series = [(date(2024, 7, 1), _grid([[0.4, 0.6]]))]

    with caplog.at_level(logging.WARNING, logger="agriwater"):
        veg = VegetationGridSet.from_series(series, _landcover())

    assert np.all(np.isnan(veg.rabi_mean.data))
    assert "rabi" in caplog.text


def test_series_must_be_present_and_aligned():
    with pytest.raises(MissingInputBand):
        VegetationGridSet.from_series([], _landcover())

    bad = Grid(np.ones((2, 2)), TRANSFORM, "EPSG:32643")
    with pytest.raises(GridMisalignment):
        VegetationGridSet.from_series([(date(2024, 7, 1), bad)], _landcover())


def test_soil_pedotransfer():
    soil = SoilGridSet.from_texture(_grid([[0.4, 0.8]]), _grid([[0.3, 0.3]]), root_depth_mm=500)

    fc = -0.251 * 0.4 + 0.195 * 0.3 + 0.505
    wp = -0.024 * 0.4 + 0.487 * 0.3 + 0.006
    npt.assert_allclose(soil.field_capacity.data[0, 0], fc)
    npt.assert_allclose(soil.wilting_point.data[0, 0], wp)
    npt.assert_allclose(soil.awc.data[0, 0], (fc - wp) * 1000)
    npt.assert_allclose(soil.total_awc.data[0, 0], (fc - wp) * 500)
    npt.assert_allclose(soil.silt.data[0, 0], 0.3)
    assert np.isnan(soil.silt.data[0, 1])  # sand + clay > 1


def test_explicit_hydraulic_grids_override_texture():
    soil = SoilGridSet.from_texture(
        _grid([[0.4]]),
        _grid([[0.3]]),
        field_capacity_grid=_grid([[0.35]]),
        wilting_point_grid=_grid([[0.15]]),
    )
    npt.assert_allclose(soil.awc.data, [[200.0]])
