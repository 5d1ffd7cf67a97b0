"""
Tests for analysis configuration.
"""

from pathlib import Path

import pytest

from stepgam.analysis.config import MODEL_NAMES, AnalysisConfig


@pytest.fixture
def config():
    return AnalysisConfig(fixes_path="fixes.csv", raster_path="bathymetry.tif")


@pytest.mark.unit
class TestAnalysisConfig:
    """Test defaults and validation."""

    def test_defaults(self, config):
        assert config.fixes_path == Path("fixes.csv")
        assert config.output_dir == Path("results")
        assert config.models == MODEL_NAMES
        assert config.n_control == 100
        assert config.seed == 25
        assert config.covariate_scale == -0.001
        config.validate()

    def test_models_not_shared(self):
        first = AnalysisConfig("a.csv", "a.tif")
        first.models.remove("tensor")
        assert AnalysisConfig("b.csv", "b.tif").models == MODEL_NAMES

    @pytest.mark.parametrize("changes, message", [
        ({"proposal": "gaussian"}, "proposal"),
        ({"n_control": 0}, "n_control"),
        ({"n_random": 0}, "n_random"),
        ({"step_length_scale": 0.0}, "step_length_scale"),
        ({"varying_k": 2}, "varying_k"),
        ({"models": ["linear", "quadratic"]}, "Unknown models"),
        ({"models": []}, "At least one model"),
        ({"spatial_reference": [(1.0, 2.0)]}, "spatial_reference"),
    ])
    def test_invalid(self, changes, message):
        config = AnalysisConfig("fixes.csv", "bathymetry.tif", **changes)
        with pytest.raises(ValueError, match=message):
            config.validate()

    def test_to_dict(self, config):
        values = config.to_dict()
        assert values["fixes_path"] == "fixes.csv"
        assert values["output_dir"] == "results"
        assert values["models"] == MODEL_NAMES
