"""agriwater: agricultural water balance and evapotranspiration over rasters.

The top-level package re-exports the workflows most analyses need so
notebooks can depend on a stable surface.  The curated groups are:

* Grid model (:mod:`agriwater.grid`, :mod:`agriwater.tiles`)
  - :class:`Grid`, :func:`pixelwise`, :class:`TilePlan`
* Configuration and errors (:mod:`agriwater.config`, :mod:`agriwater.errors`)
  - :class:`WaterBalanceConfig`, :func:`load_config`
  - :class:`AgriwaterError`, :class:`MissingInputBand`,
    :class:`GridMisalignment`, :class:`InvalidParameterRange`
* Inputs (:mod:`agriwater.meteorology`, :mod:`agriwater.vegetation`, :mod:`agriwater.soil`)
  - :class:`ClimateGridSet`, :class:`MeteorologyGridSet`, :func:`derive_meteorology`
  - :func:`temperature_from_lst`
  - :class:`VegetationGridSet`, :func:`ndvi_from_bands`, :func:`cloud_mask`
  - :class:`SoilGridSet`
* Crop classes and coefficients (:mod:`agriwater.cropclass`, :mod:`agriwater.crop_coefficient`)
  - :class:`CropType`, :class:`CropTypeGrid`, :func:`classify_crops`
  - :class:`KcMethod`, :func:`crop_coefficient`
  - :func:`get_crop_coefficient_table`, :func:`kc_lookup_mapping`
* Evapotranspiration and water balance
  - :func:`penman_monteith_daily`, :func:`reference_et`, :func:`monthly_et0`
  - :func:`curve_number_grid`, :func:`scs_runoff`, :func:`compute_water_balance`
  - :func:`stress_indices`
* Aggregation (:mod:`agriwater.zonal`)
  - :class:`Reduction`, :func:`reduce_grid`, :func:`region_masks`
  - :func:`district_statistics`, :func:`crop_water_budgets`,
    :func:`monthly_water_balance`, :func:`to_records`
* Pipeline and I/O
  - :class:`AnalysisInputs`, :class:`AnalysisResult`, :func:`run_analysis`
  - :func:`load_grid`, :func:`load_series`, :func:`write_grid`, :func:`write_bundle`
"""

from .config import WaterBalanceConfig, load_config
from .crop_coefficient import KcMethod, crop_coefficient
from .cropclass import CropType, CropTypeGrid, classify_crops
from .data_loader import get_crop_coefficient_table, kc_lookup_mapping
from .errors import AgriwaterError, GridMisalignment, InvalidParameterRange, MissingInputBand
from .grid import Grid, pixelwise
from .indices import stress_indices
from .meteorology import ClimateGridSet, MeteorologyGridSet, derive_meteorology, temperature_from_lst
from .pipeline import REQUIRED_VARIABLES, AnalysisInputs, AnalysisResult, run_analysis
from .raster_io import load_grid, load_series, write_bundle, write_grid
from .reference_et import monthly_et0, penman_monteith_daily, reference_et
from .soil import SoilGridSet
from .tiles import TilePlan
from .vegetation import VegetationGridSet, cloud_mask, ndvi_from_bands
from .water_balance import compute_water_balance, curve_number_grid, scs_runoff
from .zonal import (
    Reduction,
    crop_water_budgets,
    district_statistics,
    monthly_water_balance,
    reduce_grid,
    region_masks,
    to_records,
)


_GRID_EXPORTS = ["Grid", "pixelwise", "TilePlan"]
_CONFIG_EXPORTS = [
    "WaterBalanceConfig",
    "load_config",
    "AgriwaterError",
    "MissingInputBand",
    "GridMisalignment",
    "InvalidParameterRange",
]
_INPUT_EXPORTS = [
    "ClimateGridSet",
    "MeteorologyGridSet",
    "derive_meteorology",
    "temperature_from_lst",
    "VegetationGridSet",
    "ndvi_from_bands",
    "cloud_mask",
    "SoilGridSet",
]
_CROP_EXPORTS = [
    "CropType",
    "CropTypeGrid",
    "classify_crops",
    "KcMethod",
    "crop_coefficient",
    "get_crop_coefficient_table",
    "kc_lookup_mapping",
]
_BALANCE_EXPORTS = [
    "penman_monteith_daily",
    "reference_et",
    "monthly_et0",
    "curve_number_grid",
    "scs_runoff",
    "compute_water_balance",
    "stress_indices",
]
_ZONAL_EXPORTS = [
    "Reduction",
    "reduce_grid",
    "region_masks",
    "district_statistics",
    "crop_water_budgets",
    "monthly_water_balance",
    "to_records",
]
_PIPELINE_EXPORTS = [
    "REQUIRED_VARIABLES",
    "AnalysisInputs",
    "AnalysisResult",
    "run_analysis",
    "load_grid",
    "load_series",
    "write_grid",
    "write_bundle",
]


__all__ = (
    _GRID_EXPORTS
    + _CONFIG_EXPORTS
    + _INPUT_EXPORTS
    + _CROP_EXPORTS
    + _BALANCE_EXPORTS
    + _ZONAL_EXPORTS
    + _PIPELINE_EXPORTS
    + ["__version__", "__author__"]
)

# Package metadata
from importlib import metadata as _metadata
from pathlib import Path


try:
    __version__ = _metadata.version("agriwater")
except _metadata.PackageNotFoundError:
    import tomllib

    _pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    if _pyproject.exists():
        with _pyproject.open("rb") as _fp:
            __version__ = tomllib.load(_fp)["project"]["version"]
    else:
        __version__ = "0.0.0.dev1"

__author__ = "agriwater contributors"
