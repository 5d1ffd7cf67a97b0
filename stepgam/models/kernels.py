"""
Movement kernels implied by fitted step-selection models.

The control-step proposal defines a tentative gamma step-length and von
Mises turning-angle distribution. Movement coefficients update those
distributions: a coefficient on step length shifts the gamma rate, one on
log step length shifts the shape, and one on cos(turning angle) adds to
the concentration. With the uniform disc proposal (gamma shape 2, rate 0;
kappa 0) this reduces to shape = 2, scale = -1 / beta_sl, kappa = beta_cos.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from scipy.integrate import trapezoid

from ..data.random_steps import ControlStepGenerator
from .fitting import StepSelectionResults


def update_gamma(
    shape: float,
    rate: float,
    beta_sl: float = 0.0,
    beta_log_sl: float = 0.0
) -> Tuple[float, float]:
    """
    Update a tentative gamma step-length distribution.

    Returns:
        (shape, scale) of the updated distribution
    """
    new_shape = shape + beta_log_sl
    new_rate = rate - beta_sl
    if new_shape <= 0 or new_rate <= 0:
        raise ValueError(
            f"Implied step-length distribution is improper "
            f"(shape={new_shape:.4g}, rate={new_rate:.4g})"
        )
    return new_shape, 1.0 / new_rate


def update_vonmises(
    kappa: float,
    mu: float = 0.0,
    beta_cos_ta: float = 0.0,
    beta_sin_ta: float = 0.0
) -> Tuple[float, float]:
    """
    Update a tentative von Mises turning-angle distribution.

    Returns:
        (kappa, mu) of the updated distribution; a negative cosine
        coefficient turns into a positive kappa around mu = pi
    """
    c = kappa * np.cos(mu) + beta_cos_ta
    s = kappa * np.sin(mu) + beta_sin_ta
    return float(np.hypot(c, s)), float(np.arctan2(s, c))


@dataclass
class MovementKernel:
    """Gamma step lengths and von Mises turning angles"""
    shape: float
    scale: float
    kappa: float
    mu: float = 0.0

    @property
    def mean_step(self) -> float:
        return self.shape * self.scale

    @property
    def sd_step(self) -> float:
        return float(np.sqrt(self.shape) * self.scale)

    def step_density(self, grid) -> np.ndarray:
        return stats.gamma.pdf(np.asarray(grid, dtype=float), self.shape, scale=self.scale)

    def angle_density(self, grid) -> np.ndarray:
        grid = np.asarray(grid, dtype=float)
        if self.kappa == 0:
            return np.full(grid.shape, 1.0 / (2 * np.pi))
        return stats.vonmises.pdf(grid, self.kappa, loc=self.mu)

    def as_dict(self) -> Dict[str, float]:
        return {
            "shape": self.shape,
            "scale": self.scale,
            "kappa": self.kappa,
            "mu": self.mu,
            "mean_step": self.mean_step,
            "sd_step": self.sd_step,
        }


def kernel_from_linear(
    results: StepSelectionResults,
    generator: ControlStepGenerator,
    sl: Optional[str] = "sl_",
    cos_ta: Optional[str] = "cos(ta_)",
    log_sl: Optional[str] = None,
    sin_ta: Optional[str] = None,
    sl_scale: float = 1.0
) -> MovementKernel:
    """
    Movement kernel implied by the parametric movement terms of a fit.

    Args:
        results: Fitted model with parametric movement coefficients
        generator: Proposal that produced the control steps
        sl, cos_ta, log_sl, sin_ta: Coefficient names (None if absent)
        sl_scale: Factor applied to step lengths after control steps were
            drawn (e.g. 0.001 for metres -> km); the proposal rate is
            converted to the same units

    Returns:
        MovementKernel in the model's step-length units
    """
    def coefficient(name):
        if name is None:
            return 0.0
        if name not in results.params.index:
            raise KeyError(f"No coefficient '{name}'. Available: {list(results.params.index)}")
        return float(results.params[name])

    tentative = generator.tentative_kernel()
    shape, scale = update_gamma(
        tentative["shape"],
        tentative["rate"] / sl_scale,
        beta_sl=coefficient(sl),
        beta_log_sl=coefficient(log_sl)
    )
    kappa, mu = update_vonmises(
        tentative["kappa"],
        tentative["mu"],
        beta_cos_ta=coefficient(cos_ta),
        beta_sin_ta=coefficient(sin_ta)
    )
    return MovementKernel(shape=shape, scale=scale, kappa=kappa, mu=mu)


def step_length_distribution(
    results: StepSelectionResults,
    term: str = "s(sl_)",
    n: int = 200
) -> pd.DataFrame:
    """
    Step-length distribution from a smooth of step length.

    Under the uniform disc proposal availability is proportional to step
    length, so the distribution is ``exp(s(sl)) * sl`` up to a constant.
    """
    estimates = results.smooth_estimates(term, n=n)
    var = results.term(term).variables[0]
    sl = estimates[var].to_numpy(dtype=float)

    distribution = np.exp(estimates[".estimate"].to_numpy()) * sl
    area = trapezoid(distribution, sl)

    return pd.DataFrame({
        var: sl,
        "distribution": distribution,
        "density": distribution / area if area > 0 else np.nan,
    })
