"""Run configuration and its validation.

Every empirical coefficient of the pipeline lives on
:class:`WaterBalanceConfig`.  Validation runs at construction time, so an
out-of-range curve number or efficiency is rejected before a single pixel
is processed.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from agriwater.crop_coefficient import KcMethod
from agriwater.cropclass import CropType
from agriwater.data_loader import kc_lookup_mapping
from agriwater.errors import InvalidParameterRange
from agriwater.tiles import TilePlan

PathLike = Union[str, Path]


def _parse_month_day(value: str, parameter: str) -> Tuple[int, int]:
    try:
        month, day = (int(part) for part in str(value).split("-"))
        date(2000, month, day)  # leap year so 02-29 is accepted
    except (TypeError, ValueError):
        raise InvalidParameterRange(parameter, value, "'MM-DD'") from None
    return month, day


def _as_crop(key: Union[str, int, CropType]) -> CropType:
    if isinstance(key, str):
        return CropType.from_label(key)
    return CropType(int(key))


def _normalise_kc_lookup(table: Mapping[Any, Any]) -> Dict[CropType, float]:
    try:
        return {_as_crop(key): float(value) for key, value in dict(table).items()}
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidParameterRange(
            "kc_lookup", table, f"crop labels mapped to numbers ({exc})"
        ) from None


def _default_kc_lookup() -> Mapping[CropType, float]:
    return MappingProxyType(kc_lookup_mapping("Kc_mid"))


@dataclass(frozen=True)
class WaterBalanceConfig:
    """Coefficients and switches for one analysis run.

    Date windows are ``MM-DD`` pairs interpreted in ``analysis_year``.  They
    include the start date and exclude the end date, and a window whose end
    precedes its start (rabi) ends in the following year.  ``annual_window``
    bounds the observations behind the annual NDVI statistics.
    """

    analysis_year: int = 2024
    kharif_window: Tuple[str, str] = ("06-01", "11-30")
    rabi_window: Tuple[str, str] = ("11-01", "03-31")
    annual_window: Tuple[str, str] = ("01-01", "12-31")

    kc_method: KcMethod = KcMethod.NDVI
    kc_lookup: Mapping[CropType, float] = field(default_factory=_default_kc_lookup)

    curve_number_default: float = 75.0
    curve_number_sugarcane: float = 80.0
    curve_number_forest: float = 50.0
    cropland_class: int = 40
    forest_class: int = 10

    effective_precip_factor: float = 0.75
    irrigation_efficiency: float = 0.70
    deep_percolation_fraction: float = 0.20

    et0_max_daily: float = 15.0
    solar_day_of_year: int = 180
    longwave_offset: float = 5.0
    radiation_factor: float = 15.392

    root_zone_depth_mm: float = 1000.0
    kharif_days: int = 180
    rabi_days: int = 150
    days_per_month: int = 30

    tile_size: int = 512
    max_workers: Optional[int] = None
    progress: bool = False

    def __post_init__(self) -> None:
        try:
            kc_method = KcMethod.parse(self.kc_method)
        except ValueError:
            raise InvalidParameterRange(
                "kc_method", self.kc_method, str([m.value for m in KcMethod])
            ) from None
        object.__setattr__(self, "kc_method", kc_method)
        object.__setattr__(self, "kc_lookup", MappingProxyType(_normalise_kc_lookup(self.kc_lookup)))
        object.__setattr__(self, "kharif_window", tuple(self.kharif_window))
        object.__setattr__(self, "rabi_window", tuple(self.rabi_window))
        object.__setattr__(self, "annual_window", tuple(self.annual_window))
        self.validate()

    # ------------------------------------------------------------------
    def validate(self) -> None:
        """Raise :class:`InvalidParameterRange` for the first invalid value."""

        def _check(name: str, ok: bool, valid: str) -> None:
            if not ok:
                raise InvalidParameterRange(name, getattr(self, name), valid)

        for name in ("curve_number_default", "curve_number_sugarcane", "curve_number_forest"):
            value = getattr(self, name)
            _check(name, 0 < value <= 100, "0 < CN <= 100")

        missing = [crop.label for crop in CropType if crop not in self.kc_lookup]
        if missing:
            raise InvalidParameterRange("kc_lookup", dict(self.kc_lookup), f"values for {missing}")
        for crop, kc in self.kc_lookup.items():
            if not 0 < kc <= 2.0:
                raise InvalidParameterRange(f"kc_lookup[{crop.label}]", kc, "0 < Kc <= 2")

        _check("effective_precip_factor", 0 < self.effective_precip_factor <= 1, "0 < factor <= 1")
        _check("irrigation_efficiency", 0 < self.irrigation_efficiency <= 1, "0 < efficiency <= 1")
        _check("deep_percolation_fraction", 0 <= self.deep_percolation_fraction <= 1, "0 <= fraction <= 1")
        _check("et0_max_daily", self.et0_max_daily > 0, "> 0 mm/day")
        _check("solar_day_of_year", 1 <= self.solar_day_of_year <= 366, "1..366")
        _check("longwave_offset", self.longwave_offset >= 0, ">= 0")
        _check("radiation_factor", self.radiation_factor > 0, "> 0")
        _check("root_zone_depth_mm", self.root_zone_depth_mm > 0, "> 0 mm")
        for name in ("kharif_days", "rabi_days", "days_per_month"):
            _check(name, 1 <= getattr(self, name) <= 366, "1..366 days")
        _check("tile_size", self.tile_size >= 1, ">= 1")
        _check("max_workers", self.max_workers is None or self.max_workers >= 1, ">= 1 or None")
        _check("analysis_year", 1 <= self.analysis_year <= 9998, "a calendar year")

        for name in ("kharif_window", "rabi_window", "annual_window"):
            window = getattr(self, name)
            if len(window) != 2:
                raise InvalidParameterRange(name, window, "a (start, end) pair")
            start = _parse_month_day(window[0], name)
            end = _parse_month_day(window[1], name)
            if start == end:
                raise InvalidParameterRange(name, window, "start != end")

    # ------------------------------------------------------------------
    def _window_dates(self, window: Tuple[str, str], name: str) -> Tuple[date, date]:
        start_md = _parse_month_day(window[0], name)
        end_md = _parse_month_day(window[1], name)
        start = date(self.analysis_year, *start_md)
        end_year = self.analysis_year + 1 if end_md < start_md else self.analysis_year
        return start, date(end_year, *end_md)

    @property
    def kharif_dates(self) -> Tuple[date, date]:
        return self._window_dates(self.kharif_window, "kharif_window")

    @property
    def rabi_dates(self) -> Tuple[date, date]:
        return self._window_dates(self.rabi_window, "rabi_window")

    @property
    def annual_dates(self) -> Tuple[date, date]:
        return self._window_dates(self.annual_window, "annual_window")

    def tile_plan(self) -> TilePlan:
        return TilePlan(tile_size=self.tile_size, max_workers=self.max_workers, progress=self.progress)

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        """Plain, serialisable snapshot used for run provenance."""

        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "kc_lookup":
                value = {crop.label: kc for crop, kc in sorted(value.items())}
            elif f.name == "kc_method":
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            out[f.name] = value
        return out

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "WaterBalanceConfig":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                raise InvalidParameterRange(key, value, "a known configuration key")
            if key == "kc_lookup":
                merged = dict(kc_lookup_mapping("Kc_mid"))
                merged.update(_normalise_kc_lookup(value))
                value = merged
            elif key in ("kharif_window", "rabi_window", "annual_window"):
                value = tuple(value)
            kwargs[key] = value
        return cls(**kwargs)


def load_config(path: PathLike) -> WaterBalanceConfig:
    """Read a TOML configuration file.

    Keys mirror :class:`WaterBalanceConfig` fields and may sit at the top
    level or under an ``[agriwater]`` table.  ``kc_lookup`` is a table of
    crop label to coefficient; crops that are not listed keep their FAO-56
    mid-season value.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expected configuration file at '{path}'.")
    with path.open("rb") as fp:
        data = tomllib.load(fp)
    if "agriwater" in data and isinstance(data["agriwater"], dict):
        data = data["agriwater"]
    return WaterBalanceConfig.from_mapping(data)
