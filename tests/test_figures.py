"""
Tests for figures.
"""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from stepgam.models.fitting import StepSelectionGAM
from stepgam.models.kernels import MovementKernel
from stepgam.models.terms import linear, smooth, tensor, varying
from stepgam.plotting.figures import (
    draw,
    plot_covariate_map,
    plot_histograms,
    plot_movement_kernel,
    plot_random_steps,
    plot_step_length_distribution,
)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def smooth_results(selection_data):
    """Fixed smoothing parameters keep these fits fast."""
    data = selection_data.assign(time=np.tile(np.linspace(0, 10, 11), 300))
    terms = [smooth("z", k=6), varying("time", by="w", k=5)]
    return StepSelectionGAM(terms, sp=[1.0, 1.0]).fit(data)


@pytest.fixture
def tensor_results(selection_data):
    return StepSelectionGAM([tensor(["z", "w"], k=4)], sp=[1.0, 1.0]).fit(selection_data)


@pytest.mark.unit
class TestDataFigures:
    """Test figures of inputs and control steps."""

    def test_covariate_map(self, depth_raster, fixes):
        fig = plot_covariate_map(depth_raster, fixes)
        assert isinstance(fig, plt.Figure)

    def test_random_steps(self, ssf_data):
        fig = plot_random_steps(ssf_data, step_ids=(4, 5, 6))
        assert isinstance(fig, plt.Figure)

    def test_random_steps_unknown_ids(self, ssf_data):
        with pytest.raises(ValueError):
            plot_random_steps(ssf_data, step_ids=(10_000,))

    def test_histograms(self, ssf_data):
        fig = plot_histograms(ssf_data, ["depth", "sl_", "ta_"], labels=["depth", "step", "turn"])
        assert len(fig.axes) == 3
        assert fig.axes[1].get_xlabel() == "step"


@pytest.mark.unit
class TestModelFigures:
    """Test figures of fitted models."""

    def test_movement_kernel(self):
        fig = plot_movement_kernel(MovementKernel(shape=2.0, scale=1.5, kappa=0.7))
        assert len(fig.axes) == 2

    def test_draw_all_smooths(self, smooth_results):
        fig = draw(smooth_results)
        titles = [ax.get_title() for ax in fig.axes if ax.get_title()]
        assert titles == ["s(z)", "s(time):w"]

    def test_draw_select_by_index(self, smooth_results):
        fig = draw(smooth_results, select=1, fun=np.exp)
        assert fig.axes[0].get_title() == "s(z)"

    def test_draw_2d_with_points(self, selection_data, tensor_results):
        fig = draw(tensor_results, select="te(z,w)", n_2d=20, points=selection_data.head(50))
        assert fig.axes[0].get_xlabel() == "z"
        assert fig.axes[0].get_ylabel() == "w"

    def test_draw_varying_label(self, smooth_results):
        fig = draw(smooth_results, select="s(time):w")
        assert fig.axes[0].get_ylabel() == "coefficient of w"

    def test_draw_unknown_smooth(self, smooth_results):
        with pytest.raises(KeyError):
            draw(smooth_results, select="s(depth)")

    def test_draw_without_smooths(self, selection_data):
        results = StepSelectionGAM([linear("z")]).fit(selection_data)
        with pytest.raises(ValueError):
            draw(results)

    def test_step_length_distribution(self):
        distribution = pd.DataFrame({"sl_": np.linspace(0, 5, 20), "distribution": np.linspace(0, 1, 20)})
        fig = plot_step_length_distribution(distribution)
        assert fig.axes[0].get_xlabel() == "sl_"
