"""GeoTIFF adapters at the edge of the pipeline.

The computational stages never touch disk; these helpers turn files into
:class:`~agriwater.grid.Grid` objects and back.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import rasterio
import rioxarray as rxr

from agriwater.grid import Grid
from agriwater.log import LOGGER

log = LOGGER.getChild("raster_io")

PathLike = Union[str, Path]


def _as_path(path: PathLike) -> Path:
    return path if isinstance(path, Path) else Path(path)


def load_grid(path: PathLike, *, name: Optional[str] = None, band: int = 1, units: str = "") -> Grid:
    """Read one band of a raster; its nodata sentinel becomes NaN."""

    path = _as_path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expected raster at '{path}'.")
    da = rxr.open_rasterio(path, masked=True)
    da = da.sel(band=band) if "band" in da.dims else da
    return Grid.from_dataarray(da, name=name if name is not None else path.stem, units=units)


def load_series(paths_by_date: Mapping[date, PathLike], *, name: str = "ndvi") -> List[Tuple[date, Grid]]:
    """Load a dated series of single-band rasters, oldest first."""

    series = []
    for day in sorted(paths_by_date):
        series.append((day, load_grid(paths_by_date[day], name=f"{name}_{day.isoformat()}")))
    return series


def write_grid(grid: Grid, path: PathLike) -> Path:
    """Write ``grid`` as a float32 GeoTIFF with NaN nodata."""

    path = _as_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    profile = {
        "driver": "GTiff",
        "height": grid.height,
        "width": grid.width,
        "count": 1,
        "dtype": "float32",
        "crs": grid.crs,
        "transform": grid.transform,
        "nodata": np.nan,
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(grid.data.astype("float32"), 1)
        if grid.units:
            dst.update_tags(1, units=grid.units)
    return path


def write_bundle(grids: Mapping[str, Grid], directory: PathLike) -> Dict[str, Path]:
    """Write every grid of a bundle to ``<directory>/<name>.tif``."""

    directory = _as_path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    written = {name: write_grid(grid, directory / f"{name}.tif") for name, grid in grids.items()}
    log.info("Wrote %d rasters to %s", len(written), directory)
    return written
