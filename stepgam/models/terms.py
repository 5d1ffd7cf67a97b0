"""
Model terms for step-selection GAMs.

Each term learns its basis from the fitting data (``setup``) and can then
build its block of the model matrix for any data (``basis``), so the same
term predicts on new data. Labels follow mgcv (``s(x)``, ``te(x,y)``,
``s(t):z``).
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple, Union
import re

import numpy as np
import pandas as pd
from patsy import EvalEnvironment, NAAction, build_design_matrices, dmatrix

from .splines import (
    cc_basis,
    cc_penalty,
    centering_constraint,
    cr_basis,
    cr_penalty,
    place_knots,
    scale_penalty,
    tensor_basis,
    tensor_penalties,
)

# Functions available inside parametric term expressions
FORMULA_FUNCTIONS = {
    "np": np,
    "cos": np.cos,
    "sin": np.sin,
    "log": np.log,
    "exp": np.exp,
    "sqrt": np.sqrt,
    "abs": np.abs,
}

BASES = {
    "cr": (cr_basis, cr_penalty),
    "cc": (cc_basis, cc_penalty),
}

# Keep NaN rows so the design lines up with the data
_KEEP_NA = NAAction(NA_types=[])


class BaseTerm(ABC):
    """Base class for all model terms"""

    def __init__(self, variables: List[str], label: str):
        self.variables = list(variables)
        self.label = label
        self._penalties: List[np.ndarray] = []
        self.ranges: Dict[str, Tuple[float, float]] = {}
        self.is_setup = False

    @abstractmethod
    def setup(self, data: pd.DataFrame) -> None:
        """Learn knots, constraints and penalties from the fitting data."""
        pass

    @abstractmethod
    def basis(self, data: pd.DataFrame) -> np.ndarray:
        """Design block (rows of data x coefficients of this term)."""
        pass

    @abstractmethod
    def coef_names(self) -> List[str]:
        pass

    @property
    def penalties(self) -> List[np.ndarray]:
        return self._penalties

    @property
    def penalized(self) -> bool:
        return len(self._penalties) > 0

    @property
    def n_coef(self) -> int:
        return len(self.coef_names())

    def penalty_labels(self) -> List[str]:
        """Names of the smoothing parameters, one per penalty."""
        if len(self._penalties) == 1:
            return [self.label]
        return [f"{self.label}{i + 1}" for i in range(len(self._penalties))]

    def check_variables(self, data: pd.DataFrame) -> None:
        missing = [v for v in self.variables if v not in data.columns]
        if missing:
            raise KeyError(f"Term {self.label} needs columns {missing} that are not in the data")

    def _require_setup(self) -> None:
        if not self.is_setup:
            raise RuntimeError(f"Term {self.label} has not been set up; fit a model first")

    def _store_range(self, data: pd.DataFrame, var: str, bounds: Optional[Tuple[float, float]] = None) -> None:
        if bounds is not None:
            self.ranges[var] = (float(bounds[0]), float(bounds[1]))
        else:
            values = data[var].to_numpy(dtype=float)
            self.ranges[var] = (float(np.nanmin(values)), float(np.nanmax(values)))

    def grid(self, n: int = 100) -> pd.DataFrame:
        """Evenly spaced evaluation grid over the range of the term's variables."""
        self._require_setup()
        if len(self.variables) == 1:
            lower, upper = self.ranges[self.variables[0]]
            return pd.DataFrame({self.variables[0]: np.linspace(lower, upper, n)})

        axes = [np.linspace(*self.ranges[v], n) for v in self.variables]
        mesh = np.meshgrid(*axes, indexing="ij")
        return pd.DataFrame({v: m.ravel() for v, m in zip(self.variables, mesh)})

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label})"


class LinearTerm(BaseTerm):
    """Parametric term from a patsy expression such as ``cos(ta_)``."""

    def __init__(self, expr: str):
        names = set(re.findall(r"\b[A-Za-z_]\w*", expr)) - set(FORMULA_FUNCTIONS) - {"I"}
        if not names:
            raise ValueError(f"Expression '{expr}' does not reference any variable")
        super().__init__(sorted(names), expr)
        self.expr = expr
        self._design_info = None

    def setup(self, data: pd.DataFrame) -> None:
        self.check_variables(data)
        design = dmatrix(
            f"{self.expr} - 1",
            data,
            eval_env=EvalEnvironment([FORMULA_FUNCTIONS]),
            NA_action=_KEEP_NA
        )
        self._design_info = design.design_info
        for var in self.variables:
            if pd.api.types.is_numeric_dtype(data[var]):
                self._store_range(data, var)
        self.is_setup = True

    def basis(self, data: pd.DataFrame) -> np.ndarray:
        self._require_setup()
        self.check_variables(data)
        (design,) = build_design_matrices([self._design_info], data, NA_action=_KEEP_NA)
        return np.asarray(design, dtype=float)

    def coef_names(self) -> List[str]:
        self._require_setup()
        return list(self._design_info.column_names)


class SmoothTerm(BaseTerm):
    """Centred one-dimensional penalised smooth ``s(var)``."""

    def __init__(self, var: str, k: int = 10, bs: str = "cr", bounds: Optional[Tuple[float, float]] = None):
        if bs not in BASES:
            raise ValueError(f"Unknown basis '{bs}'. Available: {list(BASES)}")
        super().__init__([var], f"s({var})")
        self.var = var
        self.k = k
        self.bs = bs
        self.bounds = bounds
        self.knots = None
        self._Z = None

    def _raw_basis(self, x) -> np.ndarray:
        basis_fn, _ = BASES[self.bs]
        return basis_fn(x, self.knots)

    def setup(self, data: pd.DataFrame) -> None:
        self.check_variables(data)
        x = data[self.var].to_numpy(dtype=float)
        self.knots = place_knots(x, self.k, self.bounds)

        raw = self._raw_basis(x)
        self._Z = centering_constraint(raw)
        _, penalty_fn = BASES[self.bs]
        penalty = self._Z.T @ penalty_fn(self.knots) @ self._Z
        self._penalties = [scale_penalty(penalty, raw @ self._Z)]

        self._store_range(data, self.var, self.bounds)
        self.is_setup = True

    def basis(self, data: pd.DataFrame) -> np.ndarray:
        self._require_setup()
        self.check_variables(data)
        return self._raw_basis(data[self.var].to_numpy(dtype=float)) @ self._Z

    def coef_names(self) -> List[str]:
        self._require_setup()
        return [f"{self.label}.{i + 1}" for i in range(self._Z.shape[1])]


class TensorTerm(BaseTerm):
    """Centred tensor-product smooth with one penalty per margin."""

    def __init__(
        self,
        variables: Sequence[str],
        k: Union[int, Sequence[int]] = 5,
        bs: Union[str, Sequence[str]] = "cr",
        bounds: Optional[Dict[str, Tuple[float, float]]] = None,
        label: Optional[str] = None
    ):
        variables = list(variables)
        if len(variables) < 2:
            raise ValueError("Tensor products need at least two variables")
        ks = [k] * len(variables) if isinstance(k, int) else list(k)
        bss = [bs] * len(variables) if isinstance(bs, str) else list(bs)
        if len(ks) != len(variables) or len(bss) != len(variables):
            raise ValueError("k and bs must have one entry per variable")
        for basis_type in bss:
            if basis_type not in BASES:
                raise ValueError(f"Unknown basis '{basis_type}'. Available: {list(BASES)}")

        super().__init__(variables, label or f"te({','.join(variables)})")
        self.ks = ks
        self.bss = bss
        self.bounds = bounds or {}
        self.knots: List[np.ndarray] = []
        self._Z = None

    def _raw_basis(self, data: pd.DataFrame) -> np.ndarray:
        marginals = []
        for var, bs, knots in zip(self.variables, self.bss, self.knots):
            basis_fn, _ = BASES[bs]
            marginals.append(basis_fn(data[var].to_numpy(dtype=float), knots))
        return tensor_basis(marginals)

    def setup(self, data: pd.DataFrame) -> None:
        self.check_variables(data)
        self.knots = [
            place_knots(data[var].to_numpy(dtype=float), k, self.bounds.get(var))
            for var, k in zip(self.variables, self.ks)
        ]

        raw = self._raw_basis(data)
        self._Z = centering_constraint(raw)
        constrained = raw @ self._Z

        marginal_penalties = [BASES[bs][1](knots) for bs, knots in zip(self.bss, self.knots)]
        sizes = [p.shape[0] for p in marginal_penalties]
        self._penalties = [
            scale_penalty(self._Z.T @ penalty @ self._Z, constrained)
            for penalty in tensor_penalties(marginal_penalties, sizes)
        ]

        for var in self.variables:
            self._store_range(data, var, self.bounds.get(var))
        self.is_setup = True

    def basis(self, data: pd.DataFrame) -> np.ndarray:
        self._require_setup()
        self.check_variables(data)
        return self._raw_basis(data) @ self._Z

    def coef_names(self) -> List[str]:
        self._require_setup()
        return [f"{self.label}.{i + 1}" for i in range(self._Z.shape[1])]


class VaryingCoefficientTerm(BaseTerm):
    """Smooth of ``var`` multiplied by a numeric ``by`` covariate.

    The smooth is the coefficient of ``by`` as a function of ``var``, so it
    is not centred.
    """

    def __init__(self, var: str, by: str, k: int = 10, bs: str = "cr"):
        if bs not in BASES:
            raise ValueError(f"Unknown basis '{bs}'. Available: {list(BASES)}")
        super().__init__([var, by], f"s({var}):{by}")
        self.var = var
        self.by = by
        self.k = k
        self.bs = bs
        self.knots = None

    def _raw_basis(self, x) -> np.ndarray:
        return BASES[self.bs][0](x, self.knots)

    def setup(self, data: pd.DataFrame) -> None:
        self.check_variables(data)
        x = data[self.var].to_numpy(dtype=float)
        self.knots = place_knots(x, self.k)
        design = self._raw_basis(x) * data[self.by].to_numpy(dtype=float)[:, None]
        self._penalties = [scale_penalty(BASES[self.bs][1](self.knots), design)]
        self._store_range(data, self.var)
        self.is_setup = True

    def basis(self, data: pd.DataFrame) -> np.ndarray:
        self._require_setup()
        self.check_variables(data)
        raw = self._raw_basis(data[self.var].to_numpy(dtype=float))
        return raw * data[self.by].to_numpy(dtype=float)[:, None]

    def coef_names(self) -> List[str]:
        self._require_setup()
        return [f"{self.label}.{i + 1}" for i in range(self.knots.size)]

    def grid(self, n: int = 100) -> pd.DataFrame:
        """Grid over ``var`` with ``by`` fixed at 1, i.e. the coefficient itself."""
        self._require_setup()
        lower, upper = self.ranges[self.var]
        return pd.DataFrame({self.var: np.linspace(lower, upper, n), self.by: 1.0})


def linear(expr: str) -> LinearTerm:
    """Parametric term, e.g. ``linear("cos(ta_)")``."""
    return LinearTerm(expr)


def smooth(var: str, k: int = 10, bs: str = "cr", bounds: Optional[Tuple[float, float]] = None) -> SmoothTerm:
    """Penalised smooth, e.g. ``smooth("ta_", bs="cc", bounds=(-np.pi, np.pi))``."""
    return SmoothTerm(var, k=k, bs=bs, bounds=bounds)


def tensor(
    variables: Sequence[str],
    k: Union[int, Sequence[int]] = 5,
    bs: Union[str, Sequence[str]] = "cr",
    bounds: Optional[Dict[str, Tuple[float, float]]] = None
) -> TensorTerm:
    """Tensor-product smooth, e.g. ``tensor(["sl_", "ta_"], bs=("cr", "cc"))``."""
    return TensorTerm(variables, k=k, bs=bs, bounds=bounds)


def spatial_smooth(x: str = "x2_", y: str = "y2_", k: int = 6) -> TensorTerm:
    """Smooth surface over space, built as a tensor product of cubic splines."""
    return TensorTerm([x, y], k=k, bs="cr", label=f"s({x},{y})")


def varying(var: str, by: str, k: int = 10) -> VaryingCoefficientTerm:
    """Coefficient of ``by`` varying smoothly with ``var``."""
    return VaryingCoefficientTerm(var, by, k=k)
