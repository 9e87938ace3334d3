import logging
import math

import geopandas as gpd
import numpy as np
import numpy.testing as npt
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from agriwater.config import WaterBalanceConfig
from agriwater.cropclass import CropTypeGrid
from agriwater.errors import MissingInputBand
from agriwater.grid import Grid
from agriwater.zonal import (
    DISTRICT_FIELDS,
    Reduction,
    crop_water_budgets,
    district_statistics,
    monthly_water_balance,
    reduce_grid,
    region_masks,
    to_records,
)

UTM = "EPSG:32643"
TRANSFORM = from_origin(500000, 1900000, 100, 100)


def _grid(values, name="g"):
    return Grid(np.asarray(values, dtype=float), TRANSFORM, UTM, name=name)


def test_constant_region_mean_is_exact():
    value = 1234.5678901234
    grid = _grid(np.full((9, 11), value))

    assert reduce_grid(grid, None, Reduction.MEAN) == value


def test_reductions_ignore_nodata_and_respect_mask():
    grid = _grid([[1.0, 2.0, np.nan], [4.0, 5.0, 6.0]])
    mask = np.array([[True, True, True], [False, True, False]])

    assert reduce_grid(grid, mask, Reduction.SUM) == 8.0
    npt.assert_allclose(reduce_grid(grid, mask, Reduction.MEAN), 8.0 / 3)
    assert reduce_grid(grid, mask, Reduction.COUNT) == 3.0
    npt.assert_allclose(reduce_grid(grid, mask, Reduction.AREA_HA), 3.0)  # 100 m pixels = 1 ha


def test_empty_region():
    grid = _grid([[np.nan, 1.0]])
    mask = np.array([[True, False]])

    assert math.isnan(reduce_grid(grid, mask, Reduction.MEAN))
    assert math.isnan(reduce_grid(grid, mask, "sum"))
    assert reduce_grid(grid, mask, Reduction.AREA_HA) == 0.0


def test_reduction_is_independent_of_pixel_order():
    rng = np.random.default_rng(3)
    values = rng.uniform(-1e6, 1e6, 400) * rng.choice([1e-6, 1.0, 1e6], 400)
    grid = _grid(values.reshape(20, 20))
    shuffled = _grid(rng.permutation(values).reshape(20, 20))

    assert reduce_grid(grid, None, Reduction.SUM) == reduce_grid(shuffled, None, Reduction.SUM)
    assert reduce_grid(grid, None, Reduction.MEAN) == reduce_grid(shuffled, None, Reduction.MEAN)


def _districts(crs=UTM):
    # grid spans x 500000..500400, y 1899800..1900000 (4x2 pixels)
    return gpd.GeoDataFrame(
        {"district": ["Satara", "Sangli"]},
        geometry=[box(500000, 1899800, 500200, 1900000), box(500200, 1899800, 500400, 1900000)],
        crs=crs,
    )


def test_region_masks_from_geodataframe():
    template = _grid(np.zeros((2, 4)))
    masks = region_masks(template, _districts().to_crs("EPSG:4326"), ["Satara", "Sangli"])

    npt.assert_array_equal(masks["Satara"].values, [[1, 1, 0, 0], [1, 1, 0, 0]])
    npt.assert_array_equal(masks["Sangli"].values, [[0, 0, 1, 1], [0, 0, 1, 1]])


def test_region_masks_missing_district():
    template = _grid(np.zeros((2, 4)))

    with pytest.raises(MissingInputBand) as excinfo:
        region_masks(template, _districts(), ["Satara", "Kolhapur"])
    assert "Kolhapur" in str(excinfo.value)

    with pytest.raises(MissingInputBand):
        region_masks(template, {"Satara": np.ones((2, 4), dtype=bool)}, ["Kolhapur"])


def test_district_statistics_records(caplog):
    template = _grid(np.zeros((2, 4)))
    bundle = {key: _grid(np.full((2, 4), float(i))) for i, key in enumerate(DISTRICT_FIELDS.values())}
    eta = np.full((2, 4), 50.0)
    eta[0, 0] = np.nan
    bundle["ETa_annual"] = _grid(eta)
    masks = {
        "Satara": template.with_values(np.array([[1, 1, 0, 0], [1, 1, 0, 0]], dtype="uint8")),
        "Kolhapur": template.with_values(np.zeros((2, 4), dtype="uint8")),
    }

    with caplog.at_level(logging.WARNING, logger="agriwater"):
        frame = district_statistics(bundle, masks)
    records = to_records(frame)

    assert frame.columns == ["district", *DISTRICT_FIELDS, "n_pixels"]
    satara = records[0]
    assert satara["district"] == "Satara"
    assert satara["ET0_annual"] == 1.0
    assert satara["ETa_annual"] == 50.0
    assert satara["n_pixels"] == 3
    assert math.isnan(records[1]["ETc_annual"])
    assert "Kolhapur" in caplog.text


def test_crop_water_budgets():
    template = _grid(np.zeros((2, 2)))
    crop = CropTypeGrid.from_codes(template, np.array([[1, 1], [4, 0]], dtype=float))
    et0 = _grid([[1200.0, 1000.0], [1100.0, 900.0]])
    precip = _grid(np.full((2, 2), 800.0))
    runoff = _grid(np.full((2, 2), 100.0))
    config = WaterBalanceConfig()

    frame = crop_water_budgets(crop, et0, precip, runoff, None, config)
    rows = {row["crop"]: row for row in to_records(frame)}

    assert list(rows) == ["Sugarcane", "Cotton", "Soybean", "Wheat", "OtherCrop"]
    sugarcane = rows["Sugarcane"]
    npt.assert_allclose(sugarcane["area_ha"], 2.0)
    npt.assert_allclose(sugarcane["et0_mm"], 1100.0)
    npt.assert_allclose(sugarcane["etc_mm"], 1100.0 * 1.25)
    npt.assert_allclose(sugarcane["precip_mm"], 800.0)
    # mean of per-pixel max(ETc - (P - Q) * 0.75, 0)
    expected = np.mean([1200.0 * 1.25 - 525.0, 1000.0 * 1.25 - 525.0])
    npt.assert_allclose(sugarcane["irrigation_mm"], expected)
    npt.assert_allclose(rows["Wheat"]["etc_mm"], 1100.0 * 1.15)
    assert rows["Cotton"]["area_ha"] == 0.0
    assert math.isnan(rows["Cotton"]["et0_mm"])


def test_monthly_water_balance():
    et0_daily = _grid([[4.0, 6.0]])
    precip = [_grid([[float(m), float(m)]]) for m in range(1, 13)]

    frame = monthly_water_balance(et0_daily, None, monthly_precip=precip, days=30)

    assert frame.height == 12
    npt.assert_allclose(frame["et0"].to_numpy(), 150.0)
    npt.assert_allclose(frame["precipitation"].to_numpy(), np.arange(1, 13))
    assert frame["soil_moisture"].null_count() == 12

    with pytest.raises(ValueError):
        monthly_water_balance(et0_daily, None, monthly_precip=precip[:3])
