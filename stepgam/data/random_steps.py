"""
Control (available) steps for step-selection analysis.

Each observed step is paired with random control steps that start at the
same location. Control step lengths and turning angles are drawn from a
proposal distribution; the proposal determines how model coefficients map
back to a movement kernel (see stepgam.models.kernels).
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
import logging

import numpy as np
import pandas as pd
import geopandas as gpd
from scipy import stats

from .tracks import wrap_angle

logger = logging.getLogger(__name__)


class ControlStepGenerator(ABC):
    """Abstract base class for proposal distributions of control steps.

    Subclasses draw step lengths and turning angles, and report the
    tentative movement kernel they correspond to as gamma (shape, rate)
    and von Mises (kappa, mu) parameters.
    """

    name = "base"

    def __init__(self, n_random: int = 100_000):
        """
        Args:
            n_random: Size of the pools of random step lengths and angles
                that control steps are resampled from
        """
        if n_random < 1:
            raise ValueError(f"n_random must be positive, got {n_random}")
        self.n_random = n_random

    @abstractmethod
    def sample_step_lengths(self, n: int, rng: np.random.Generator) -> np.ndarray:
        pass

    @abstractmethod
    def sample_turning_angles(self, n: int, rng: np.random.Generator) -> np.ndarray:
        pass

    @abstractmethod
    def tentative_kernel(self) -> Dict[str, float]:
        """Proposal as {"shape", "rate", "kappa", "mu"}."""
        pass

    def draw_pools(self, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
        """Draw the pools of step lengths and turning angles."""
        sl = self.sample_step_lengths(self.n_random, rng)
        ta = self.sample_turning_angles(self.n_random, rng)
        return sl, ta


class UniformDiscGenerator(ControlStepGenerator):
    """Control end points uniformly distributed over a disc.

    Step lengths are ``sqrt(U(0, max_step^2))`` and turning angles
    ``U(-pi, pi)``. The density of step length under this proposal is
    proportional to the length itself, which is why a linear step-length
    coefficient implies a gamma distribution with shape 2.
    """

    name = "uniform"

    def __init__(self, max_step: float, n_random: int = 100_000):
        super().__init__(n_random)
        if not np.isfinite(max_step) or max_step <= 0:
            raise ValueError(f"max_step must be a positive number, got {max_step}")
        self.max_step = float(max_step)

    @classmethod
    def from_steps(cls, steps: pd.DataFrame, n_random: int = 100_000) -> "UniformDiscGenerator":
        """Use the longest observed step as the disc radius."""
        return cls(float(np.nanmax(steps["sl_"].to_numpy(dtype=float))), n_random=n_random)

    def sample_step_lengths(self, n: int, rng: np.random.Generator) -> np.ndarray:
        return np.sqrt(rng.uniform(0.0, self.max_step ** 2, size=n))

    def sample_turning_angles(self, n: int, rng: np.random.Generator) -> np.ndarray:
        return rng.uniform(-np.pi, np.pi, size=n)

    def tentative_kernel(self) -> Dict[str, float]:
        return {"shape": 2.0, "rate": 0.0, "kappa": 0.0, "mu": 0.0}


class FittedDistributionGenerator(ControlStepGenerator):
    """Control steps from a gamma (step length) and von Mises (turning angle) fit."""

    name = "fitted"

    def __init__(
        self,
        shape: float,
        scale: float,
        kappa: float,
        mu: float = 0.0,
        n_random: int = 100_000
    ):
        super().__init__(n_random)
        if shape <= 0 or scale <= 0:
            raise ValueError(f"Gamma shape and scale must be positive, got {shape}, {scale}")
        if kappa < 0:
            raise ValueError(f"von Mises kappa must be non-negative, got {kappa}")
        self.shape = float(shape)
        self.scale = float(scale)
        self.kappa = float(kappa)
        self.mu = float(mu)

    @classmethod
    def from_steps(cls, steps: pd.DataFrame, n_random: int = 100_000) -> "FittedDistributionGenerator":
        """Fit the proposal distributions to the observed steps."""
        sl = steps["sl_"].to_numpy(dtype=float)
        sl = sl[np.isfinite(sl) & (sl > 0)]
        ta = steps["ta_"].to_numpy(dtype=float)
        ta = ta[np.isfinite(ta)]
        if sl.size < 2 or ta.size < 2:
            raise ValueError("Need at least two step lengths and turning angles to fit proposals")

        shape, _, scale = stats.gamma.fit(sl, floc=0)
        kappa, mu, _ = stats.vonmises.fit(ta, fscale=1)
        logger.info(
            f"Fitted proposal: gamma(shape={shape:.3f}, scale={scale:.3f}), "
            f"von Mises(kappa={kappa:.3f}, mu={mu:.3f})"
        )
        return cls(shape, scale, kappa, mu, n_random=n_random)

    def sample_step_lengths(self, n: int, rng: np.random.Generator) -> np.ndarray:
        return stats.gamma.rvs(self.shape, scale=self.scale, size=n, random_state=rng)

    def sample_turning_angles(self, n: int, rng: np.random.Generator) -> np.ndarray:
        return wrap_angle(stats.vonmises.rvs(self.kappa, loc=self.mu, size=n, random_state=rng))

    def tentative_kernel(self) -> Dict[str, float]:
        return {"shape": self.shape, "rate": 1.0 / self.scale, "kappa": self.kappa, "mu": self.mu}


def random_steps(
    steps: pd.DataFrame,
    n_control: int = 100,
    generator: Optional[ControlStepGenerator] = None,
    seed: Optional[int] = None,
    include_observed: bool = True
) -> pd.DataFrame:
    """
    Pair every observed step with random control steps.

    Steps are numbered ``step_id_`` = 1..n in order. Steps without a
    previous heading (NaN ``ta_`` or ``direction_p``) are dropped because a
    control step cannot be oriented relative to them.

    Args:
        steps: Output of stepgam.data.tracks.steps
        n_control: Number of control steps per observed step
        generator: Proposal distribution (default: uniform disc with the
            longest observed step as radius)
        seed: Seed for numpy's random Generator
        include_observed: Keep the observed steps (case_ == True)

    Returns:
        DataFrame ordered by step_id_, the observed step first in each stratum
    """
    if n_control < 1:
        raise ValueError(f"n_control must be at least 1, got {n_control}")

    rng = np.random.default_rng(seed)
    if generator is None:
        generator = UniformDiscGenerator.from_steps(steps)

    data = steps.copy().reset_index(drop=True)
    data["step_id_"] = np.arange(1, len(data) + 1)
    data["case_"] = True

    usable = data["ta_"].notna() & data["direction_p"].notna()
    n_dropped = int((~usable).sum())
    if n_dropped:
        logger.info(f"Dropped {n_dropped:,} steps without a turning angle")
    observed = data.loc[usable]
    if observed.empty:
        raise ValueError("No steps with a turning angle; cannot generate control steps")

    sl_pool, ta_pool = generator.draw_pools(rng)

    controls = observed.loc[observed.index.repeat(n_control)].copy()
    n = len(controls)
    sl = rng.choice(sl_pool, size=n, replace=True)
    ta = rng.choice(ta_pool, size=n, replace=True)

    heading = controls["direction_p"].to_numpy(dtype=float) + ta
    controls["x2_"] = controls["x1_"].to_numpy(dtype=float) + sl * np.cos(heading)
    controls["y2_"] = controls["y1_"].to_numpy(dtype=float) + sl * np.sin(heading)
    controls["sl_"] = sl
    controls["ta_"] = ta
    controls["case_"] = False

    frames = [observed, controls] if include_observed else [controls]
    result = pd.concat(frames, ignore_index=True)
    result = result.sort_values(
        ["step_id_", "case_"], ascending=[True, False], kind="mergesort"
    ).reset_index(drop=True)

    logger.info(
        f"Generated {n:,} control steps ({n_control} per step, {generator.name} proposal) "
        f"for {len(observed):,} observed steps"
    )
    return result


def to_geodataframe(data: pd.DataFrame, crs=None, where: str = "end") -> gpd.GeoDataFrame:
    """Step end (or start) points as a GeoDataFrame."""
    if where not in ("end", "start"):
        raise ValueError(f"where must be 'end' or 'start', got '{where}'")
    x_col, y_col = ("x2_", "y2_") if where == "end" else ("x1_", "y1_")

    frame = data.copy()
    if "dt_" in frame.columns:
        frame["dt_"] = frame["dt_"] / pd.Timedelta(1, unit="min")
    return gpd.GeoDataFrame(
        frame,
        geometry=gpd.points_from_xy(frame[x_col], frame[y_col]),
        crs=crs
    )
