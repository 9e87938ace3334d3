"""Crop type classification from NDVI phenology.

Each cropland pixel is tested against an ordered list of rules built on
seasonal NDVI statistics.  The first rule that matches assigns the class;
later rules are not consulted for that pixel.  Pixels outside the cropland
mask are Background whatever their vegetation signal.

Phenology heuristics (semi-arid Deccan plateau):

* Sugarcane: high NDVI all year with little variability (12-month crop).
* Cotton: moderate-high kharif NDVI with a clear seasonal swing.
* Soybean: moderate kharif NDVI, strong seasonal swing.
* Wheat: high NDVI in the rabi (winter) season.
* Other crops: any remaining vegetated cropland.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Callable, Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from agriwater.grid import Grid, Number, pixelwise
from agriwater.log import LOGGER
from agriwater.tiles import TilePlan

if TYPE_CHECKING:
    from agriwater.vegetation import VegetationGridSet

log = LOGGER.getChild("cropclass")

CROP_NODATA = 255


class CropType(IntEnum):
    """Closed set of crop labels; values are the codes stored in crop grids."""

    BACKGROUND = 0
    SUGARCANE = 1
    COTTON = 2
    SOYBEAN = 3
    WHEAT = 4
    OTHER_CROP = 5

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def from_label(cls, value: str) -> "CropType":
        """Resolve ``'Sugarcane'``, ``'SUGARCANE'`` or ``'other_crop'`` to a member."""

        key = "".join(ch for ch in str(value).lower() if ch.isalnum())
        for crop in cls:
            if key in (crop.label.lower(), crop.name.lower().replace("_", "")):
                return crop
        raise KeyError(f"Unknown crop type '{value}'.")


_LABELS = {
    CropType.BACKGROUND: "Background",
    CropType.SUGARCANE: "Sugarcane",
    CropType.COTTON: "Cotton",
    CropType.SOYBEAN: "Soybean",
    CropType.WHEAT: "Wheat",
    CropType.OTHER_CROP: "OtherCrop",
}

CROP_CLASSES: Tuple[CropType, ...] = tuple(crop for crop in CropType if crop is not CropType.BACKGROUND)


class Phenology(NamedTuple):
    kharif_mean: np.ndarray
    rabi_mean: np.ndarray
    annual_max: np.ndarray
    annual_std: np.ndarray
    composite: np.ndarray


@dataclass(frozen=True)
class ClassificationRule:
    """A labelled predicate over :class:`Phenology` arrays.

    ``fields`` names the statistics the predicate reads; when any of them is
    missing for a pixel the rule cannot be decided there and the pixel
    becomes nodata instead of falling through to a lower-priority class.
    """

    crop: CropType
    fields: Tuple[str, ...]
    predicate: Callable[[Phenology], np.ndarray]


CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        CropType.SUGARCANE,
        ("annual_max", "annual_std"),
        lambda p: (p.annual_max > 0.7) & (p.annual_std < 0.1),
    ),
    ClassificationRule(
        CropType.COTTON,
        ("kharif_mean", "annual_std"),
        lambda p: (p.kharif_mean > 0.6) & (p.kharif_mean < 0.8) & (p.annual_std > 0.15),
    ),
    ClassificationRule(
        CropType.SOYBEAN,
        ("kharif_mean", "annual_std"),
        lambda p: (p.kharif_mean > 0.5) & (p.kharif_mean < 0.7) & (p.annual_std > 0.2),
    ),
    ClassificationRule(
        CropType.WHEAT,
        ("rabi_mean",),
        lambda p: p.rabi_mean > 0.6,
    ),
    ClassificationRule(
        CropType.OTHER_CROP,
        ("composite",),
        lambda p: p.composite > 0.3,
    ),
)


def classify_pixels(
    kharif_mean: np.ndarray,
    rabi_mean: np.ndarray,
    annual_max: np.ndarray,
    annual_std: np.ndarray,
    composite: np.ndarray,
    cropland: np.ndarray,
    rules: Sequence[ClassificationRule] = CLASSIFICATION_RULES,
) -> np.ndarray:
    """Return crop codes (float, NaN for nodata) for arrays of phenology stats."""

    pheno = Phenology(
        *(np.asarray(a, dtype="float64") for a in (kharif_mean, rabi_mean, annual_max, annual_std, composite))
    )
    cropland = np.asarray(cropland, dtype="float64")

    out = np.full(cropland.shape, float(CropType.BACKGROUND))
    unresolved = cropland == 1

    for rule in rules:
        undecidable = unresolved & np.any(
            [np.isnan(getattr(pheno, field)) for field in rule.fields], axis=0
        )
        out[undecidable] = np.nan
        unresolved &= ~undecidable

        hit = unresolved & rule.predicate(pheno)
        out[hit] = float(rule.crop)
        unresolved &= ~hit

    out[np.isnan(cropland)] = np.nan
    return out


@dataclass(frozen=True, eq=False)
class CropTypeGrid(Grid):
    """Categorical grid of :class:`CropType` codes (uint8, nodata 255)."""

    nodata: Optional[Number] = CROP_NODATA
    name: str = "crop_type"

    @classmethod
    def from_codes(cls, template: Grid, codes: np.ndarray) -> "CropTypeGrid":
        codes = np.asarray(codes, dtype="float64")
        values = np.where(np.isnan(codes), CROP_NODATA, codes).astype("uint8")
        return cls(values, template.transform, template.crs, nodata=CROP_NODATA, name="crop_type")

    def class_mask(self, crop: CropType) -> np.ndarray:
        return self.values == int(crop)

    def counts(self) -> Dict[CropType, int]:
        return {crop: int(np.count_nonzero(self.class_mask(crop))) for crop in CropType}


def classify_crops(
    vegetation: "VegetationGridSet",
    *,
    plan: Optional[TilePlan] = None,
    rules: Sequence[ClassificationRule] = CLASSIFICATION_RULES,
) -> CropTypeGrid:
    """Classify every pixel of ``vegetation`` into a :class:`CropTypeGrid`."""

    def _kernel(kharif, rabi, vmax, std, composite, cropland):
        return classify_pixels(kharif, rabi, vmax, std, composite, cropland, rules)

    codes = pixelwise(
        _kernel,
        vegetation.kharif_mean,
        vegetation.rabi_mean,
        vegetation.annual_max,
        vegetation.annual_std,
        vegetation.composite,
        vegetation.cropland,
        plan=plan,
        names="crop_type",
    )
    crop_grid = CropTypeGrid.from_codes(codes, codes.data)

    counts = crop_grid.counts()
    log.info(
        "Crop classification: %s",
        ", ".join(f"{crop.label}={n}" for crop, n in counts.items()),
    )
    nodata = int(np.count_nonzero(crop_grid.values == CROP_NODATA))
    if nodata:
        log.debug("%d pixels left unclassified (missing phenology or land cover)", nodata)
    return crop_grid
