"""
Shared pytest fixtures for step-selection tests.

Provides a simulated GPS track, a small bathymetry GeoTIFF covering it and
case/control data sets with a known selection coefficient.
"""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.transform import from_origin

from stepgam.data.covariates import CovariateRaster, extract_covariates
from stepgam.data.random_steps import random_steps
from stepgam.data.tracks import make_track, steps


# ============================================================================
# Track and raster fixtures
# ============================================================================

RASTER_ORIGIN = (300_000.0, 4_200_000.0)
RASTER_RESOLUTION = 1000.0
RASTER_SIZE = 400
NODATA = -9999.0


def bathymetry_values() -> np.ndarray:
    """Elevation in metres, getting deeper to the east and south."""
    rows, cols = np.mgrid[0:RASTER_SIZE, 0:RASTER_SIZE]
    values = -(1000.0 + 5.0 * cols + 2.5 * rows)
    values[0, 0] = NODATA
    return values


@pytest.fixture
def fixes():
    """Hourly fixes of a correlated random walk (projected metres)."""
    np.random.seed(42)
    n = 80
    step_lengths = np.random.gamma(2.0, 1000.0, n - 1)
    turns = np.random.vonmises(0.0, 2.0, n - 1)
    headings = np.cumsum(turns)

    x = 500_000.0 + np.r_[0.0, np.cumsum(step_lengths * np.cos(headings))]
    y = 4_000_000.0 + np.r_[0.0, np.cumsum(step_lengths * np.sin(headings))]
    times = pd.date_range("2019-01-10 00:00", periods=n, freq="h")

    return pd.DataFrame({"x": x, "y": y, "time": times})


@pytest.fixture
def fixes_csv(tmp_path, fixes):
    path = tmp_path / "fixes.csv"
    fixes.to_csv(path, index=False)
    return path


@pytest.fixture
def bathymetry_tif(tmp_path):
    """400 x 400 km GeoTIFF with 1 km cells around the simulated track."""
    path = tmp_path / "bathymetry.tif"
    values = bathymetry_values()
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=values.shape[0],
        width=values.shape[1],
        count=1,
        dtype="float64",
        crs="EPSG:32613",
        transform=from_origin(*RASTER_ORIGIN, RASTER_RESOLUTION, RASTER_RESOLUTION),
        nodata=NODATA
    ) as dst:
        dst.write(values, 1)
    return path


@pytest.fixture
def depth_raster():
    """In-memory depth layer (km, positive downward) matching bathymetry_tif."""
    raster = CovariateRaster(
        bathymetry_values(),
        from_origin(*RASTER_ORIGIN, RASTER_RESOLUTION, RASTER_RESOLUTION),
        crs="EPSG:32613",
        name="depth",
        nodata=NODATA
    )
    return raster.rescale(-0.001)


@pytest.fixture
def track(fixes):
    return make_track(fixes, x="x", y="y", t="time")


@pytest.fixture
def track_steps(track):
    return steps(track)


@pytest.fixture
def ssf_data(track_steps, depth_raster):
    """Observed and control steps with depth at the step end points."""
    data = random_steps(track_steps, n_control=20, seed=1)
    return extract_covariates(data, depth_raster, where="end")


# ============================================================================
# Data with known selection
# ============================================================================

def simulate_selection(n_strata=300, n_control=10, beta=1.0, seed=0):
    """
    Strata of one chosen and n_control available locations.

    The chosen location is drawn with probability proportional to
    exp(beta * z), so a conditional logit fit should recover beta.
    """
    rng = np.random.default_rng(seed)
    size = n_control + 1
    z = rng.normal(size=(n_strata, size))
    w = rng.normal(size=(n_strata, size))
    weights = np.exp(beta * z)
    chosen = [rng.choice(size, p=row / row.sum()) for row in weights]

    case = np.zeros((n_strata, size), dtype=bool)
    case[np.arange(n_strata), chosen] = True

    return pd.DataFrame({
        "step_id_": np.repeat(np.arange(1, n_strata + 1), size),
        "case_": case.ravel(),
        "z": z.ravel(),
        "w": w.ravel(),
    })


@pytest.fixture
def selection_data():
    return simulate_selection()
