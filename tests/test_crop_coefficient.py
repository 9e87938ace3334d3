import numpy as np
import numpy.testing as npt
import polars as pl
import pytest
from rasterio.transform import from_origin

from agriwater.crop_coefficient import KcMethod, crop_coefficient, kc_from_lookup, kc_from_ndvi
from agriwater.cropclass import CROP_NODATA, CropType, CropTypeGrid
from agriwater.data_loader import get_crop_coefficient_table, kc_lookup_mapping
from agriwater.errors import MissingInputBand
from agriwater.grid import Grid

TRANSFORM = from_origin(500000, 1900000, 100, 100)


def _crop_grid(codes):
    template = Grid(np.zeros((1, len(codes))), TRANSFORM, "EPSG:32643")
    return CropTypeGrid.from_codes(template, np.array([codes], dtype=float))


def test_ndvi_kc_is_clamped():
    ndvi = Grid(np.array([[-0.5, 0.5, 1.0, np.nan]]), TRANSFORM, "EPSG:32643")
    kc = kc_from_ndvi(ndvi)

    npt.assert_allclose(kc.data, [[0.1, 0.7, 1.3, np.nan]])


def test_lookup_kc_per_class():
    crop = _crop_grid([1, 2, 4, 5, 0, np.nan])
    kc = kc_from_lookup(crop)

    npt.assert_allclose(kc.data, [[1.25, 1.15, 1.15, 0.90, 0.70, np.nan]])
    assert crop.values[0, 5] == CROP_NODATA


def test_crop_coefficient_records_provenance():
    ndvi = Grid(np.array([[0.5]]), TRANSFORM, "EPSG:32643")
    _, provenance = crop_coefficient("ndvi", ndvi=ndvi)
    assert provenance["kc_method"] == "ndvi"
    assert "kc_formula" in provenance

    _, provenance = crop_coefficient(KcMethod.LOOKUP, crop_type=_crop_grid([1]))
    assert provenance["kc_method"] == "lookup"
    assert provenance["kc_table"]["Sugarcane"] == 1.25


def test_crop_coefficient_requires_its_input():
    with pytest.raises(MissingInputBand):
        crop_coefficient(KcMethod.NDVI)
    with pytest.raises(MissingInputBand):
        crop_coefficient("lookup")


def test_table_copies_are_independent():
    table = get_crop_coefficient_table()
    table = table.with_columns(pl.lit(9.9).alias("Kc_mid"))

    assert get_crop_coefficient_table()["Kc_mid"].max() == 1.25
    assert kc_lookup_mapping()[CropType.WHEAT] == 1.15


def test_custom_table_from_csv(tmp_path):
    path = tmp_path / "kc.csv"
    rows = ["Crop,Kc_mid"] + [f"{crop.label},1.0" for crop in CropType]
    path.write_text("\n".join(rows))

    mapping = kc_lookup_mapping(table=get_crop_coefficient_table(path))
    assert set(mapping.values()) == {1.0}

    with pytest.raises(KeyError):
        kc_lookup_mapping("Kc_end")


def test_custom_table_with_blank_value(tmp_path):
    path = tmp_path / "kc_blank.csv"
    rows = ["Crop,Kc_mid"] + [f"{crop.label},1.0" for crop in CropType if crop is not CropType.WHEAT]
    rows.append("Wheat,")
    path.write_text("\n".join(rows))

    with pytest.raises(KeyError, match="Wheat"):
        kc_lookup_mapping(table=get_crop_coefficient_table(path))


def test_builtin_table_columns():
    assert get_crop_coefficient_table().columns == ["Crop", "Kc_mid"]
