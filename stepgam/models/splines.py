"""
Penalised cubic regression spline bases.

Bases come from patsy's mgcv-compatible ``cr``/``cc``/``te`` transforms,
which parameterise a spline by its values at the knots. The matching
wiggliness penalty (integrated squared second derivative) is
``S = D' B^-1 D`` (Wood 2017, Generalized Additive Models, section 5.3).
"""

from functools import reduce
from typing import List, Optional, Sequence, Tuple

import numpy as np
from patsy import cc, cr, te


def place_knots(x, k: int, bounds: Optional[Tuple[float, float]] = None) -> np.ndarray:
    """
    Place k knots at evenly spaced quantiles of the unique values of x.

    When bounds are given they become the end knots (e.g. (-pi, pi) for a
    cyclic turning-angle smooth).
    """
    x = np.asarray(x, dtype=float)
    x = x[np.isfinite(x)]
    if bounds is not None:
        lower, upper = bounds
        if not lower < upper:
            raise ValueError(f"Invalid knot bounds {bounds}")
        x = np.r_[lower, x[(x >= lower) & (x <= upper)], upper]

    values = np.unique(x)
    if values.size < k:
        raise ValueError(
            f"Covariate has {values.size} unique values, fewer than the {k} knots requested"
        )
    return np.quantile(values, np.linspace(0.0, 1.0, k))


def cr_basis(x, knots: np.ndarray) -> np.ndarray:
    """Cubic regression spline basis, one column per knot."""
    return np.asarray(cr(
        np.asarray(x, dtype=float),
        knots=knots[1:-1],
        lower_bound=knots[0],
        upper_bound=knots[-1]
    ))


def cc_basis(x, knots: np.ndarray) -> np.ndarray:
    """Cyclic cubic regression spline basis; the last knot wraps onto the first."""
    return np.asarray(cc(
        np.asarray(x, dtype=float),
        knots=knots[1:-1],
        lower_bound=knots[0],
        upper_bound=knots[-1]
    ))


def cr_penalty(knots: np.ndarray) -> np.ndarray:
    """Second-derivative penalty for a natural cubic regression spline."""
    k = knots.size
    if k < 3:
        raise ValueError(f"Cubic regression splines need at least 3 knots, got {k}")
    h = np.diff(knots)

    d = np.zeros((k - 2, k))
    b = np.zeros((k - 2, k - 2))
    for i in range(k - 2):
        d[i, i] = 1.0 / h[i]
        d[i, i + 2] = 1.0 / h[i + 1]
        d[i, i + 1] = -d[i, i] - d[i, i + 2]
        b[i, i] = (h[i] + h[i + 1]) / 3.0
        if i < k - 3:
            b[i, i + 1] = b[i + 1, i] = h[i + 1] / 6.0

    return d.T @ np.linalg.solve(b, d)


def cc_penalty(knots: np.ndarray) -> np.ndarray:
    """Second-derivative penalty for a cyclic cubic regression spline."""
    if knots.size < 4:
        raise ValueError(f"Cyclic splines need at least 4 knots, got {knots.size}")
    h = np.diff(knots)
    n = knots.size - 1

    d = np.zeros((n, n))
    b = np.zeros((n, n))
    for i in range(n):
        # h[i - 1] wraps to the last interval for i == 0
        prev, nxt = (i - 1) % n, (i + 1) % n
        b[i, i] = (h[i - 1] + h[i]) / 3.0
        b[i, prev] = h[i - 1] / 6.0
        b[i, nxt] = h[i] / 6.0
        d[i, i] = -1.0 / h[i - 1] - 1.0 / h[i]
        d[i, prev] = 1.0 / h[i - 1]
        d[i, nxt] = 1.0 / h[i]

    return d.T @ np.linalg.solve(b, d)


def tensor_basis(marginals: Sequence[np.ndarray]) -> np.ndarray:
    """Row-wise tensor product of marginal bases (first margin varies slowest)."""
    return np.asarray(te(*marginals))


def tensor_penalties(penalties: Sequence[np.ndarray], sizes: Sequence[int]) -> List[np.ndarray]:
    """One Kronecker-product penalty per margin: S_1 (x) I, I (x) S_2, ..."""
    result = []
    for j, penalty in enumerate(penalties):
        factors = [penalty if i == j else np.eye(size) for i, size in enumerate(sizes)]
        result.append(reduce(np.kron, factors))
    return result


def centering_constraint(X: np.ndarray) -> np.ndarray:
    """
    Null-space basis Z of the sum-to-zero constraint ``1' X beta = 0``.

    The constrained basis is ``X @ Z`` and penalties become ``Z' S Z``.
    """
    column_sums = X.sum(axis=0).reshape(-1, 1)
    q, _ = np.linalg.qr(column_sums, mode="complete")
    return q[:, 1:]


def scale_penalty(S: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Rescale S so its norm is comparable to the squared norm of its design block."""
    x_norm = np.linalg.norm(X, ord=np.inf) ** 2
    s_norm = np.linalg.norm(S, ord=1)
    if s_norm == 0 or x_norm == 0:
        return S
    return S * (x_norm / s_norm)
