"""
Figures for step-selection data and fitted models.

Every function returns a matplotlib Figure and leaves saving/closing to
the caller.
"""

from typing import Callable, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from ..data.covariates import CovariateRaster
from ..models.fitting import StepSelectionResults
from ..models.kernels import MovementKernel
from ..models.terms import VaryingCoefficientTerm

logger = logging.getLogger(__name__)


def plot_covariate_map(
    raster: CovariateRaster,
    fixes: Optional[pd.DataFrame] = None,
    x: str = "x",
    y: str = "y",
    cmap: str = "viridis"
) -> plt.Figure:
    """Raster covariate with the GPS fixes on top."""
    fig, ax = plt.subplots(figsize=(8, 7))
    image = ax.imshow(raster.values, extent=raster.extent, origin="upper", cmap=cmap)
    fig.colorbar(image, ax=ax, label=raster.name)
    if fixes is not None:
        ax.plot(fixes[x], fixes[y], "o", color="black", markersize=2, markerfacecolor="none")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_aspect("equal")
    return fig


def plot_random_steps(
    data: pd.DataFrame,
    step_ids: Sequence[int] = (4, 5, 6)
) -> plt.Figure:
    """End points of control steps (coloured by step) and observed steps (black)."""
    subset = data[data["step_id_"].isin(step_ids)]
    if subset.empty:
        raise ValueError(f"None of the step ids {list(step_ids)} are in the data")
    controls = subset[~subset["case_"]]
    observed = subset[subset["case_"]]

    fig, ax = plt.subplots(figsize=(7, 7))
    sns.scatterplot(
        data=controls.assign(step=controls["step_id_"].astype(str)),
        x="x2_",
        y="y2_",
        hue="step",
        s=12,
        ax=ax
    )
    ax.scatter(observed["x2_"], observed["y2_"], color="black", s=40, label="observed")
    ax.scatter(observed["x1_"], observed["y1_"], color="black", marker="x", s=40, label="start")
    ax.legend(loc="best", fontsize=8)
    ax.set_aspect("equal")
    return fig


def plot_histograms(
    data: pd.DataFrame,
    columns: Sequence[str],
    labels: Optional[Sequence[str]] = None,
    case: str = "case_"
) -> plt.Figure:
    """Histograms of covariates at the observed steps."""
    observed = data[data[case]] if case in data.columns else data
    labels = list(labels) if labels is not None else list(columns)

    fig, axes = plt.subplots(1, len(columns), figsize=(4 * len(columns), 3.5), squeeze=False)
    for ax, column, label in zip(axes[0], columns, labels):
        sns.histplot(observed[column].dropna(), color="0.75", edgecolor="0.25", ax=ax)
        ax.set_xlabel(label)
    fig.tight_layout()
    return fig


def plot_movement_kernel(
    kernel: MovementKernel,
    step_grid: Optional[np.ndarray] = None,
    angle_grid: Optional[np.ndarray] = None,
    step_label: str = "step length"
) -> plt.Figure:
    """Step-length and turning-angle densities side by side."""
    if step_grid is None:
        step_grid = np.linspace(0, kernel.mean_step + 5 * kernel.sd_step, 350)
    if angle_grid is None:
        angle_grid = np.arange(-np.pi, np.pi, 0.01)

    fig, (ax_step, ax_angle) = plt.subplots(1, 2, figsize=(10, 4))
    ax_step.plot(step_grid, kernel.step_density(step_grid), color="black")
    ax_step.set_xlabel(step_label)
    ax_step.set_ylabel("density")

    ax_angle.plot(angle_grid, kernel.angle_density(angle_grid), color="black")
    ax_angle.set_xlabel("turning angle (radians)")
    ax_angle.set_ylabel("density")
    fig.tight_layout()
    return fig


def _smooth_labels(results: StepSelectionResults, select) -> List[str]:
    smooths = [term.label for term in results.model.terms if term.penalized]
    if select is None:
        return smooths
    if isinstance(select, (str, int)):
        select = [select]
    labels = []
    for item in select:
        if isinstance(item, int):
            # 1-based like gratia's select
            labels.append(smooths[item - 1])
        elif item in smooths:
            labels.append(item)
        else:
            raise KeyError(f"No smooth '{item}'. Available: {smooths}")
    return labels


def draw(
    results: StepSelectionResults,
    select: Union[None, str, int, Sequence[Union[str, int]]] = None,
    fun: Optional[Callable] = None,
    n: int = 100,
    n_2d: int = 50,
    points: Optional[pd.DataFrame] = None,
    point_columns: Optional[Tuple[str, str]] = None,
    xlabel: Optional[str] = None,
    ylabel: Optional[str] = None
) -> plt.Figure:
    """
    Plot estimated smooths, one panel per term.

    Args:
        results: Fitted model
        select: Term labels or 1-based smooth indices (default: all smooths)
        fun: Transformation applied to estimates and intervals (e.g. np.exp)
        n: Grid size for 1-D smooths
        n_2d: Grid size per axis for 2-D smooths
        points: Points drawn over 2-D smooths
        point_columns: Columns of points to use as (x, y)
        xlabel, ylabel: Axis label overrides for 1-D panels
    """
    labels = _smooth_labels(results, select)
    if not labels:
        raise ValueError("Model has no smooth terms to draw")

    fig, axes = plt.subplots(1, len(labels), figsize=(5 * len(labels), 4.5), squeeze=False)
    for ax, label in zip(axes[0], labels):
        term = results.term(label)
        two_d = len(term.variables) == 2 and not isinstance(term, VaryingCoefficientTerm)

        if two_d:
            estimates = results.smooth_estimates(label, n=n_2d)
            x_var, y_var = term.variables
            values = estimates[".estimate"].to_numpy()
            if fun is not None:
                values = fun(values)
            grid = values.reshape(n_2d, n_2d)
            xs = estimates[x_var].to_numpy().reshape(n_2d, n_2d)
            ys = estimates[y_var].to_numpy().reshape(n_2d, n_2d)
            contour = ax.contourf(xs, ys, grid, levels=20, cmap="RdBu_r")
            fig.colorbar(contour, ax=ax, label=label)
            if points is not None:
                px, py = point_columns or (x_var, y_var)
                ax.scatter(points[px], points[py], color="black", s=4)
            ax.set_xlabel(x_var)
            ax.set_ylabel(y_var)
        else:
            estimates = results.smooth_estimates(label, n=n)
            x_var = term.variables[0]
            x = estimates[x_var].to_numpy()
            mid = estimates[".estimate"].to_numpy()
            lower = estimates[".lower_ci"].to_numpy()
            upper = estimates[".upper_ci"].to_numpy()
            if fun is not None:
                mid, lower, upper = fun(mid), fun(lower), fun(upper)
            ax.fill_between(x, lower, upper, color="0.8")
            ax.plot(x, mid, color="black")
            ax.set_xlabel(xlabel or x_var)
            if ylabel is not None:
                ax.set_ylabel(ylabel)
            elif isinstance(term, VaryingCoefficientTerm):
                ax.set_ylabel(f"coefficient of {term.by}")
            else:
                ax.set_ylabel("partial effect")
        ax.set_title(label)

    fig.tight_layout()
    return fig


def plot_step_length_distribution(distribution: pd.DataFrame, column: str = "distribution") -> plt.Figure:
    """Step-length distribution derived from a step-length smooth."""
    x_var = distribution.columns[0]
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.plot(distribution[x_var], distribution[column], color="black")
    ax.set_xlabel(x_var)
    ax.set_ylabel(column)
    return fig
