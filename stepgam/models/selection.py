"""
Relative selection strength (RSS).

RSS compares two locations (or covariate scenarios) through the model's
linear predictor: ``exp(eta(x2) - eta(x1))`` is how many times more likely
the animal is to take a step ending at x2 than at x1, all else equal.
"""

from typing import Dict, Union

import numpy as np
import pandas as pd
from scipy import stats

from .fitting import StepSelectionResults


def relative_selection_strength(
    results: StepSelectionResults,
    x1: Union[pd.DataFrame, Dict],
    x2: Union[pd.DataFrame, Dict],
    level: float = 0.95
) -> pd.DataFrame:
    """
    RSS of scenario x2 relative to x1 with a delta-method confidence interval.

    Args:
        results: Fitted step-selection model
        x1: Reference scenario (one row, or one row per row of x2)
        x2: Scenario(s) of interest
        level: Confidence level of the interval

    Returns:
        DataFrame with log_rss, se, rss, lower and upper (one row per x2 row)
    """
    x1 = pd.DataFrame(x1).reset_index(drop=True)
    x2 = pd.DataFrame(x2).reset_index(drop=True)
    if len(x1) == 1 and len(x2) > 1:
        x1 = x1.loc[np.zeros(len(x2), dtype=int)].reset_index(drop=True)
    if len(x1) != len(x2):
        raise ValueError(f"x1 must have one row or as many rows as x2 ({len(x1)} vs {len(x2)})")

    difference = results.model_matrix(x2) - results.model_matrix(x1)
    log_rss = difference @ results.params.to_numpy()
    se = np.sqrt(np.einsum("ij,jk,ik->i", difference, results.cov.to_numpy(), difference))
    crit = stats.norm.ppf(0.5 + level / 2.0)

    return pd.DataFrame({
        "log_rss": log_rss,
        "se": se,
        "rss": np.exp(log_rss),
        "lower": np.exp(log_rss - crit * se),
        "upper": np.exp(log_rss + crit * se),
    })


def linear_rss(results: StepSelectionResults, name: str) -> float:
    """RSS for a one-unit increase of a parametric covariate: exp(beta)."""
    if name not in results.params.index:
        raise KeyError(f"No coefficient '{name}'. Available: {list(results.params.index)}")
    return float(np.exp(results.params[name]))
