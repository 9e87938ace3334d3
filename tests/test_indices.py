import numpy as np
import numpy.testing as npt
from rasterio.transform import from_origin

from agriwater.grid import Grid
from agriwater.indices import cwsi, esi, stress_indices, water_productivity
from agriwater.water_balance import WaterBalanceGridSet

TRANSFORM = from_origin(500000, 1900000, 1000, 1000)


def test_cwsi_and_esi_ranges():
    etc = np.array([1000.0, 1000.0, 1000.0, 0.0])
    eta = np.array([500.0, 1500.0, -10.0, 0.0])

    npt.assert_allclose(cwsi(etc, eta), [0.5, 0.0, 1.0, np.nan])
    npt.assert_allclose(esi(etc, eta), [0.5, 1.2, 0.0, np.nan])


def test_water_productivity_undefined_without_et():
    npt.assert_allclose(water_productivity(np.array([0.6, 0.6]), np.array([600.0, 0.0])), [1.0, np.nan])


def test_stress_indices_from_balance():
    grid = lambda values, name: Grid(np.array([values], dtype=float), TRANSFORM, "EPSG:32643", name=name)  # noqa: E731
    etc = grid([1320.0, 0.0], "ETc")
    eta = grid([660.0, 0.0], "ETa")
    filler = grid([0.0, 0.0], "x")
    balance = WaterBalanceGridSet(
        et0=filler,
        kc=filler,
        etc=etc,
        eta=eta,
        ks=filler,
        runoff=filler,
        effective_precip=filler,
        irrigation_net=filler,
        irrigation_gross=filler,
        deep_percolation=filler,
        deficit=filler,
        etc_kharif=filler,
        etc_rabi=filler,
    )

    indices = stress_indices(balance, grid([0.66, 0.5], "ndvi"))

    npt.assert_allclose(indices.cwsi.data, [[0.5, np.nan]])
    npt.assert_allclose(indices.esi.data, [[0.5, np.nan]])
    npt.assert_allclose(indices.water_productivity.data, [[1.0, np.nan]])
    assert indices.cwsi.name == "CWSI"
