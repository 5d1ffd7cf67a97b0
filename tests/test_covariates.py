"""
Tests for raster covariates and their extraction at step locations.
"""

import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin

from stepgam.data.covariates import CovariateRaster, extract_covariates


@pytest.fixture
def small_raster():
    """3 x 4 raster with 10 m cells, origin at (0, 30)."""
    values = np.arange(12, dtype=float).reshape(3, 4)
    values[2, 3] = -1.0
    return CovariateRaster(values, from_origin(0.0, 30.0, 10.0, 10.0), name="value", nodata=-1.0)


@pytest.mark.unit
class TestCovariateRaster:
    """Test in-memory raster layers."""

    def test_nodata_becomes_nan(self, small_raster):
        assert np.isnan(small_raster.values[2, 3])
        assert small_raster.max() == 10.0

    def test_bounds_and_extent(self, small_raster):
        assert small_raster.bounds == pytest.approx((0.0, 0.0, 40.0, 30.0))
        assert small_raster.extent == pytest.approx((0.0, 40.0, 0.0, 30.0))

    def test_sample_cell_values(self, small_raster):
        values = small_raster.sample([5.0, 15.0, 35.0], [25.0, 25.0, 5.0])
        # Top-left cell, its east neighbour and the nodata cell
        assert values[0] == 0.0
        assert values[1] == 1.0
        assert np.isnan(values[2])

    def test_sample_outside(self, small_raster):
        values = small_raster.sample([-5.0, 45.0, 5.0], [25.0, 25.0, 35.0])
        assert np.isnan(values).all()

    def test_sample_nan_coordinates(self, small_raster):
        values = small_raster.sample([np.nan, 5.0], [25.0, 25.0])
        assert np.isnan(values[0])
        assert values[1] == 0.0

    def test_sample_shape_mismatch(self, small_raster):
        with pytest.raises(ValueError):
            small_raster.sample([1.0, 2.0], [1.0])

    def test_rescale(self, small_raster):
        depth = small_raster.rescale(-0.5, 1.0, name="depth")
        assert depth.name == "depth"
        assert depth.values[0, 1] == pytest.approx(0.5)
        assert np.isnan(depth.values[2, 3])

    def test_rejects_non_2d(self):
        with pytest.raises(ValueError):
            CovariateRaster(np.zeros(5), from_origin(0, 0, 1, 1))

    def test_from_file(self, bathymetry_tif):
        raster = CovariateRaster.from_file(bathymetry_tif, name="elevation")
        assert raster.shape == (400, 400)
        assert raster.name == "elevation"
        assert np.isnan(raster.values[0, 0])
        assert raster.values[0, 1] == pytest.approx(-1005.0)
        assert raster.crs is not None

    def test_from_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CovariateRaster.from_file(tmp_path / "missing.tif")

    def test_from_file_bad_band(self, bathymetry_tif):
        with pytest.raises(ValueError, match="Band"):
            CovariateRaster.from_file(bathymetry_tif, band=2)


@pytest.mark.unit
class TestExtractCovariates:
    """Test covariate extraction at step start and end points."""

    @pytest.fixture
    def two_steps(self):
        return pd.DataFrame({
            "x1_": [5.0, 15.0],
            "y1_": [25.0, 25.0],
            "x2_": [15.0, 100.0],
            "y2_": [15.0, 100.0],
        })

    def test_end(self, small_raster, two_steps):
        result = extract_covariates(two_steps, small_raster)
        assert result["value"].iloc[0] == 5.0
        assert np.isnan(result["value"].iloc[1])
        assert "value" not in two_steps.columns

    def test_start(self, small_raster, two_steps):
        result = extract_covariates(two_steps, small_raster, where="start")
        assert result["value"].tolist() == [0.0, 1.0]

    def test_both(self, small_raster, two_steps):
        result = extract_covariates(two_steps, small_raster, where="both")
        assert result["value_start"].tolist() == [0.0, 1.0]
        assert result["value_end"].iloc[0] == 5.0

    def test_several_layers(self, small_raster, two_steps):
        doubled = small_raster.rescale(2.0, name="doubled")
        result = extract_covariates(two_steps, [small_raster, doubled])
        assert result["doubled"].iloc[0] == 10.0

    def test_invalid_where(self, small_raster, two_steps):
        with pytest.raises(ValueError):
            extract_covariates(two_steps, small_raster, where="middle")

    def test_simulated_steps_inside_raster(self, ssf_data):
        assert ssf_data["depth"].notna().all()
        assert ssf_data["depth"].between(1.0, 4.0).all()
