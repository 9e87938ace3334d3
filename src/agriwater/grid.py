"""Immutable, georeferenced raster values.

A :class:`Grid` couples a 2-D array with the affine transform and CRS that
place it on the ground, plus the sentinel that marks missing pixels.  All
pipeline stages consume and produce grids; none of them resample, so two
grids can only be combined when they share shape, transform and CRS.

Internally every computation works on :attr:`Grid.data`, a float view in
which nodata pixels are NaN.  NaN propagates through NumPy arithmetic,
which is how a missing input pixel becomes a hole in every downstream
output without aborting the run.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import cached_property
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401 - ensures the rio accessor is registered
from rasterio.crs import CRS
from rasterio.transform import Affine, array_bounds
from rasterio.warp import transform as warp_transform

from agriwater.errors import GridMisalignment
from agriwater.tiles import Kernel, TilePlan

CRSLike = Union[str, int, dict, CRS]
Number = Union[int, float]

_EARTH_RADIUS_M = 6371008.8
_TRANSFORM_PRECISION = 1e-9


def _as_crs(value: Optional[CRSLike]) -> Optional[CRS]:
    if value is None or isinstance(value, CRS):
        return value
    return CRS.from_user_input(value)


def _as_affine(value) -> Affine:
    if isinstance(value, Affine):
        return value
    return Affine(*tuple(value)[:6])


@dataclass(frozen=True, eq=False)
class Grid:
    """A read-only raster with geographic placement and nodata semantics.

    Parameters
    ----------
    values:
        2-D array of samples. A private read-only copy is stored.
    transform:
        Affine transform from pixel to CRS coordinates.
    crs:
        Coordinate reference system; anything accepted by
        :meth:`rasterio.crs.CRS.from_user_input`.
    nodata:
        Sentinel marking missing pixels. NaN is always treated as missing
        for floating point arrays.
    name, units:
        Descriptive metadata used in log and error messages.
    """

    values: np.ndarray
    transform: Affine
    crs: Optional[CRS] = None
    nodata: Optional[Number] = None
    name: str = ""
    units: str = ""

    def __post_init__(self) -> None:
        array = np.array(self.values, copy=True)
        if array.ndim != 2:
            raise ValueError(f"Grid '{self.name}' must be 2-D; got shape {array.shape}.")
        array.setflags(write=False)
        object.__setattr__(self, "values", array)
        object.__setattr__(self, "transform", _as_affine(self.transform))
        object.__setattr__(self, "crs", _as_crs(self.crs))

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def height(self) -> int:
        return self.values.shape[0]

    @property
    def width(self) -> int:
        return self.values.shape[1]

    @property
    def res(self) -> Tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """``(west, south, east, north)`` in CRS units."""
        return array_bounds(self.height, self.width, self.transform)

    def _label(self) -> str:
        return self.name or "<unnamed>"

    def is_aligned(self, other: "Grid") -> bool:
        return (
            self.shape == other.shape
            and self.crs == other.crs
            and self.transform.almost_equals(other.transform, precision=_TRANSFORM_PRECISION)
        )

    def check_aligned(self, other: "Grid", operation: str = "") -> None:
        """Raise :class:`GridMisalignment` unless ``other`` shares this grid's placement."""

        if self.shape != other.shape:
            detail = f"shape {self.shape} != {other.shape}"
        elif self.crs != other.crs:
            detail = f"CRS {self.crs} != {other.crs}"
        elif not self.transform.almost_equals(other.transform, precision=_TRANSFORM_PRECISION):
            detail = "transforms differ"
        else:
            return
        raise GridMisalignment(self._label(), other._label(), operation=operation, detail=detail)

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------
    @cached_property
    def data(self) -> np.ndarray:
        """Float64 copy of :attr:`values` with nodata replaced by NaN."""

        out = self.values.astype("float64", copy=True)
        if self.nodata is not None and not np.isnan(self.nodata):
            out[self.values == self.nodata] = np.nan
        out.setflags(write=False)
        return out

    @property
    def valid(self) -> np.ndarray:
        return ~np.isnan(self.data)

    @property
    def valid_count(self) -> int:
        return int(np.count_nonzero(self.valid))

    def with_values(
        self,
        values: np.ndarray,
        *,
        name: Optional[str] = None,
        units: Optional[str] = None,
        nodata: Optional[Number] = None,
    ) -> "Grid":
        """Return a new grid on this grid's placement holding ``values``."""

        values = np.asarray(values)
        if values.shape != self.shape:
            values = np.broadcast_to(values, self.shape)
        return Grid(
            values,
            self.transform,
            self.crs,
            nodata=nodata,
            name=self.name if name is None else name,
            units=self.units if units is None else units,
        )

    @classmethod
    def full_like(cls, template: "Grid", value: Number, *, name: str = "", units: str = "") -> "Grid":
        return template.with_values(
            np.full(template.shape, value, dtype="float64"), name=name, units=units
        )

    # ------------------------------------------------------------------
    # Arithmetic; grids must be aligned, scalars broadcast
    # ------------------------------------------------------------------
    def _binary(self, other, op: Callable, symbol: str, *, reflected: bool = False) -> "Grid":
        if isinstance(other, Grid):
            self.check_aligned(other, operation=symbol)
            rhs = other.data
            other_label = other._label()
        else:
            rhs = other
            other_label = repr(other)

        lhs = self.data
        if reflected:
            lhs, rhs = rhs, lhs
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            result = np.asarray(op(lhs, rhs), dtype="float64")
        if symbol == "/":
            result = np.where(np.isfinite(result), result, np.nan)

        if reflected:
            name = f"({other_label} {symbol} {self._label()})"
        else:
            name = f"({self._label()} {symbol} {other_label})"
        return self.with_values(result, name=name)

    def __add__(self, other):
        return self._binary(other, np.add, "+")

    def __radd__(self, other):
        return self._binary(other, np.add, "+", reflected=True)

    def __sub__(self, other):
        return self._binary(other, np.subtract, "-")

    def __rsub__(self, other):
        return self._binary(other, np.subtract, "-", reflected=True)

    def __mul__(self, other):
        return self._binary(other, np.multiply, "*")

    def __rmul__(self, other):
        return self._binary(other, np.multiply, "*", reflected=True)

    def __truediv__(self, other):
        return self._binary(other, np.divide, "/")

    def __rtruediv__(self, other):
        return self._binary(other, np.divide, "/", reflected=True)

    def __neg__(self):
        return self.with_values(-self.data, name=f"-{self._label()}")

    def clip(self, lower: Optional[float] = None, upper: Optional[float] = None) -> "Grid":
        return self.with_values(np.clip(self.data, lower, upper))

    # ------------------------------------------------------------------
    # Coordinates
    # ------------------------------------------------------------------
    def _centre_coordinates(self) -> Tuple[np.ndarray, np.ndarray]:
        cols, rows = np.meshgrid(np.arange(self.width) + 0.5, np.arange(self.height) + 0.5)
        t = self.transform
        x = t.a * cols + t.b * rows + t.c
        y = t.d * cols + t.e * rows + t.f
        return x, y

    def latitude(self) -> "Grid":
        """Latitude (degrees) of every pixel centre."""

        x, y = self._centre_coordinates()
        if self.crs is None or self.crs.is_geographic:
            lat = y
        else:
            _, lat = warp_transform(self.crs, "EPSG:4326", x.ravel().tolist(), y.ravel().tolist())
            lat = np.asarray(lat, dtype="float64").reshape(self.shape)
        return self.with_values(lat, name="latitude", units="deg")

    def pixel_area_m2(self) -> np.ndarray:
        """Per-pixel ground area in square metres.

        Projected rasters use ``|a * e|`` from the transform (north-up);
        geographic rasters use the spherical area of each cell row.
        """

        t = self.transform
        if self.crs is not None and self.crs.is_geographic:
            rows = np.arange(self.height)
            top = np.radians(t.f + rows * t.e)
            bottom = np.radians(t.f + (rows + 1) * t.e)
            row_area = (
                _EARTH_RADIUS_M ** 2
                * abs(math.radians(t.a))
                * np.abs(np.sin(top) - np.sin(bottom))
            )
            return np.repeat(row_area[:, None], self.width, axis=1)
        return np.full(self.shape, abs(t.a * t.e), dtype="float64")

    # ------------------------------------------------------------------
    # xarray interchange
    # ------------------------------------------------------------------
    @classmethod
    def from_dataarray(cls, da: xr.DataArray, *, name: Optional[str] = None, units: str = "") -> "Grid":
        """Build a grid from a single-band ``rioxarray`` DataArray."""

        da = da.squeeze(drop=True)
        nodata = da.rio.nodata
        if nodata is None:
            nodata = da.rio.encoded_nodata
        if nodata is not None and np.isnan(nodata):
            # NaN is already treated as missing
            nodata = None
        return cls(
            da.values,
            da.rio.transform(),
            da.rio.crs,
            nodata=nodata,
            name=name if name is not None else (da.name or ""),
            units=units or str(da.attrs.get("units", "")),
        )

    def to_dataarray(self) -> xr.DataArray:
        x, y = self._centre_coordinates()
        da = xr.DataArray(
            np.array(self.values),
            dims=("y", "x"),
            coords={"y": y[:, 0], "x": x[0, :]},
            name=self.name or None,
            attrs={"units": self.units} if self.units else {},
        )
        da = da.rio.write_transform(self.transform)
        if self.crs is not None:
            da = da.rio.write_crs(self.crs)
        if self.nodata is not None:
            da = da.rio.write_nodata(self.nodata)
        elif np.issubdtype(self.values.dtype, np.floating):
            da = da.rio.write_nodata(np.nan)
        return da


def pixelwise(
    kernel: Kernel,
    *grids: Grid,
    plan: Optional[TilePlan] = None,
    names: Union[str, Sequence[str]] = "",
    units: Union[str, Sequence[str]] = "",
) -> Union[Grid, Tuple[Grid, ...]]:
    """Evaluate a pure per-pixel ``kernel`` over aligned grids.

    The kernel receives NaN-filled float arrays (one per grid, same order)
    and returns one array or a tuple of arrays.  When ``plan`` is given the
    grids are evaluated window by window across the plan's workers.
    """

    if not grids:
        raise ValueError("pixelwise requires at least one grid.")

    template = grids[0]
    operation = names if isinstance(names, str) and names else getattr(kernel, "__name__", "kernel")
    for other in grids[1:]:
        template.check_aligned(other, operation=str(operation))

    arrays = [grid.data for grid in grids]
    if plan is None:
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            result = kernel(*arrays)
    else:
        result = plan.run(kernel, arrays, template.shape)

    if isinstance(result, tuple):
        count = len(result)
        name_list = [names] * count if isinstance(names, str) else list(names)
        unit_list = [units] * count if isinstance(units, str) else list(units)
        return tuple(
            template.with_values(np.asarray(part, dtype="float64"), name=n, units=u)
            for part, n, u in zip(result, name_list, unit_list)
        )

    return template.with_values(
        np.asarray(result, dtype="float64"),
        name=names if isinstance(names, str) else names[0],
        units=units if isinstance(units, str) else units[0],
    )
