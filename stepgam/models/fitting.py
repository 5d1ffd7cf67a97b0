"""
Step-selection GAMs fitted as stratified Cox proportional-hazards models.

Every stratum (``step_id_``) holds one observed step and its controls. With
all event times set to 1, the observed step as the only event and Breslow
ties, the Cox partial likelihood is the conditional logistic likelihood of
a step-selection function. statsmodels' PHReg supplies the likelihood, its
score and Hessian; smooth terms add a quadratic penalty whose weights
(smoothing parameters) are chosen by a Laplace approximate marginal
likelihood (LAML).
"""

from typing import Dict, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd
from scipy import stats
from scipy.optimize import minimize
from statsmodels.duration.hazard_regression import PHReg

from .terms import BaseTerm, LinearTerm

logger = logging.getLogger(__name__)

# Search range for log smoothing parameters
LOG_SP_BOUNDS = (-12.0, 15.0)
# Nelder-Mead tolerances on log(sp) and on the LAML criterion
SP_XATOL = 1e-2
SP_FATOL = 1e-4


class ModelFitError(Exception):
    """Raised when the penalised partial likelihood cannot be maximised."""
    pass


class StepSelectionGAM:
    """Conditional-logit (stratified Cox) GAM for used vs. available steps.

    Usage:
        model = StepSelectionGAM([smooth("sl_"), smooth("ta_", bs="cc",
                                  bounds=(-np.pi, np.pi)), smooth("depth")])
        results = model.fit(data)
        print(results.summary())
    """

    def __init__(
        self,
        terms: Sequence[BaseTerm],
        strata: str = "step_id_",
        case: str = "case_",
        sp: Optional[Sequence[float]] = None,
        max_iter: int = 200,
        tol: float = 1e-6,
        sp_max_iter: int = 100
    ):
        """
        Args:
            terms: Model terms (see stepgam.models.terms)
            strata: Column identifying the observed step each row belongs to
            case: Boolean column, True for the observed step
            sp: Fixed smoothing parameters (one per penalty); estimated when None
            max_iter: Iteration limit for the inner penalised fit
            tol: Gradient tolerance for the inner penalised fit
            sp_max_iter: Nelder-Mead iterations per smoothing parameter when
                sp is estimated
        """
        if not terms:
            raise ValueError("A model needs at least one term")
        labels = [term.label for term in terms]
        duplicated = {label for label in labels if labels.count(label) > 1}
        if duplicated:
            raise ValueError(f"Duplicated model terms: {sorted(duplicated)}")

        self.terms = list(terms)
        self.strata = strata
        self.case = case
        self.sp = None if sp is None else np.asarray(sp, dtype=float)
        self.max_iter = max_iter
        self.tol = tol
        self.sp_max_iter = sp_max_iter

    @property
    def variables(self) -> List[str]:
        seen = []
        for term in self.terms:
            for var in term.variables:
                if var not in seen:
                    seen.append(var)
        return seen

    def _prepare_frame(self, data: pd.DataFrame) -> pd.DataFrame:
        """Keep complete rows of the used columns and strata that contain a case."""
        needed = self.variables + [self.strata, self.case]
        missing = [col for col in needed if col not in data.columns]
        if missing:
            raise KeyError(f"Data is missing columns {missing}")

        frame = data[needed].copy()
        n_before = len(frame)
        frame = frame.dropna()
        if len(frame) < n_before:
            logger.warning(f"Dropped {n_before - len(frame):,} rows with missing values")

        frame[self.case] = frame[self.case].astype(bool)
        has_case = frame.groupby(self.strata)[self.case].transform("any")
        n_orphans = int(frame.loc[~has_case, self.strata].nunique())
        if n_orphans:
            logger.warning(f"Dropped {n_orphans:,} strata without an observed step")
            frame = frame.loc[has_case]

        if not frame[self.case].any():
            raise ValueError("No observed steps left to fit")
        return frame.reset_index(drop=True)

    def model_matrix(self, data: pd.DataFrame) -> Tuple[np.ndarray, Dict[str, slice]]:
        """Stack term design blocks; returns the matrix and each term's columns."""
        blocks = {}
        columns = []
        start = 0
        for term in self.terms:
            block = term.basis(data)
            blocks[term.label] = slice(start, start + block.shape[1])
            start += block.shape[1]
            columns.append(block)
        return np.hstack(columns), blocks

    def fit(self, data: pd.DataFrame) -> "StepSelectionResults":
        """Fit the model to case/control steps."""
        frame = self._prepare_frame(data)
        for term in self.terms:
            term.setup(frame)

        X, blocks = self.model_matrix(frame)
        coef_names = [name for term in self.terms for name in term.coef_names()]
        n_strata = int(frame[self.strata].nunique())
        logger.info(
            f"Fitting {len(coef_names)} coefficients to {len(frame):,} rows "
            f"in {n_strata:,} strata"
        )

        model = PHReg(
            np.ones(len(frame)),
            X,
            status=frame[self.case].astype(int).to_numpy(),
            strata=frame[self.strata].to_numpy(),
            ties="breslow"
        )

        penalties = self._penalty_list(blocks)
        if not penalties:
            fitted = model.fit(disp=False)
            params = np.asarray(fitted.params)
            cov = np.asarray(fitted.cov_params())
            sp = pd.Series(dtype=float)
            penalty = np.zeros((X.shape[1], X.shape[1]))
        else:
            labels = [label for label, _, _ in penalties]
            if self.sp is not None:
                if self.sp.size != len(penalties):
                    raise ValueError(f"Expected {len(penalties)} smoothing parameters, got {self.sp.size}")
                lambdas = self.sp
            else:
                lambdas = self._select_smoothing(model, penalties, X.shape[1])
            sp = pd.Series(lambdas, index=labels)

            penalty = self._total_penalty(penalties, lambdas, X.shape[1])
            params = self._penalized_fit(model, penalty, np.zeros(X.shape[1]))
            hessian = -model.hessian(params) + penalty
            cov = np.linalg.inv(hessian)

        information = -model.hessian(params)
        return StepSelectionResults(
            model=self,
            params=pd.Series(params, index=coef_names),
            cov=pd.DataFrame(cov, index=coef_names, columns=coef_names),
            information=information,
            llf=float(model.loglike(params)),
            sp=sp,
            blocks=blocks,
            n_obs=len(frame),
            n_strata=n_strata
        )

    # ==================== Penalties ====================

    def _penalty_list(self, blocks: Dict[str, slice]) -> List[Tuple[str, slice, np.ndarray]]:
        penalties = []
        for term in self.terms:
            for label, matrix in zip(term.penalty_labels(), term.penalties):
                penalties.append((label, blocks[term.label], matrix))
        return penalties

    @staticmethod
    def _total_penalty(penalties, lambdas, p: int) -> np.ndarray:
        total = np.zeros((p, p))
        for lam, (_, block, matrix) in zip(lambdas, penalties):
            total[block, block] += lam * matrix
        return total

    @staticmethod
    def _penalty_groups(penalties) -> List[Tuple[slice, List[int], int]]:
        """Group penalties acting on the same block, with the rank of their sum."""
        groups = {}
        for i, (_, block, _) in enumerate(penalties):
            groups.setdefault((block.start, block.stop), []).append(i)

        result = []
        for (start, stop), members in groups.items():
            combined = sum(penalties[i][2] for i in members)
            rank = int(np.linalg.matrix_rank(combined))
            result.append((slice(start, stop), members, rank))
        return result

    @staticmethod
    def _log_pdet(penalties, groups, lambdas) -> float:
        """Log pseudo-determinant of the total penalty, block by block."""
        total = 0.0
        for _, members, rank in groups:
            combined = sum(lambdas[i] * penalties[i][2] for i in members)
            eigenvalues = np.sort(np.linalg.eigvalsh(combined))[::-1][:rank]
            total += float(np.sum(np.log(np.maximum(eigenvalues, np.finfo(float).tiny))))
        return total

    # ==================== Optimisation ====================

    def _penalized_fit(self, model: PHReg, penalty: np.ndarray, start: np.ndarray) -> np.ndarray:
        """Maximise loglike(b) - b' S b / 2."""

        def objective(b):
            return -model.loglike(b) + 0.5 * b @ penalty @ b

        def gradient(b):
            return -model.score(b) + penalty @ b

        def hessian(b):
            return -model.hessian(b) + penalty

        result = minimize(
            objective,
            start,
            jac=gradient,
            hess=hessian,
            method="trust-exact",
            options={"gtol": self.tol, "maxiter": self.max_iter}
        )

        if not result.success:
            grad_norm = float(np.max(np.abs(gradient(result.x))))
            if not np.isfinite(result.fun) or grad_norm > 1e-4 * max(1.0, abs(result.fun)):
                raise ModelFitError(
                    f"Penalised fit did not converge after {result.nit} iterations: "
                    f"{result.message} (max gradient {grad_norm:.3g})"
                )
            logger.debug(f"Penalised fit stopped early ({result.message}), gradient {grad_norm:.3g}")
        return result.x

    def _laml(self, rho, model, penalties, groups, p, state) -> float:
        """Negative Laplace approximate marginal log-likelihood at log(sp) = rho."""
        state["evaluations"] += 1
        lambdas = np.exp(rho)
        penalty = self._total_penalty(penalties, lambdas, p)
        try:
            beta = self._penalized_fit(model, penalty, state["beta"])
        except ModelFitError:
            return np.inf
        state["beta"] = beta

        hessian = -model.hessian(beta) + penalty
        sign, log_det_h = np.linalg.slogdet(hessian)
        if sign <= 0:
            return np.inf

        return (
            -model.loglike(beta)
            + 0.5 * beta @ penalty @ beta
            + 0.5 * log_det_h
            - 0.5 * self._log_pdet(penalties, groups, lambdas)
        )

    def _select_smoothing(self, model, penalties, p: int) -> np.ndarray:
        """Choose smoothing parameters by minimising the LAML criterion."""
        groups = self._penalty_groups(penalties)
        state = {"beta": np.zeros(p), "evaluations": 0}
        m = len(penalties)

        def progress(xk):
            logger.debug(
                f"LAML search: {state['evaluations']} evaluations, "
                f"log(sp) = {np.round(xk, 3).tolist()}"
            )

        result = minimize(
            self._laml,
            np.zeros(m),
            args=(model, penalties, groups, p, state),
            method="Nelder-Mead",
            bounds=[LOG_SP_BOUNDS] * m,
            callback=progress,
            options={"xatol": SP_XATOL, "fatol": SP_FATOL, "maxiter": self.sp_max_iter * m}
        )
        if not np.isfinite(result.fun):
            raise ModelFitError("Smoothing parameter selection failed: criterion is not finite")
        if not result.success:
            logger.warning(f"Smoothing parameter search stopped early: {result.message}")

        lambdas = np.exp(result.x)
        logger.info(
            f"Selected smoothing parameters after {state['evaluations']} LAML evaluations: "
            + ", ".join(f"{label}={lam:.4g}" for (label, _, _), lam in zip(penalties, lambdas))
        )
        return lambdas


class StepSelectionResults:
    """Fitted step-selection GAM."""

    def __init__(
        self,
        model: StepSelectionGAM,
        params: pd.Series,
        cov: pd.DataFrame,
        information: np.ndarray,
        llf: float,
        sp: pd.Series,
        blocks: Dict[str, slice],
        n_obs: int,
        n_strata: int
    ):
        self.model = model
        self.params = params
        self.cov = cov
        self.information = information
        self.llf = llf
        self.sp = sp
        self.blocks = blocks
        self.n_obs = n_obs
        self.n_strata = n_strata

    @property
    def coef(self) -> pd.Series:
        return self.params

    @property
    def bse(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.cov.to_numpy())), index=self.params.index)

    @property
    def edf(self) -> pd.Series:
        """Effective degrees of freedom per term, from diag((H + S)^-1 H)."""
        influence = np.diag(self.cov.to_numpy() @ self.information)
        return pd.Series(
            {label: float(influence[block].sum()) for label, block in self.blocks.items()}
        )

    @property
    def aic(self) -> float:
        return -2.0 * self.llf + 2.0 * float(self.edf.sum())

    def term(self, label: str) -> BaseTerm:
        for term in self.model.terms:
            if term.label == label:
                return term
        raise KeyError(f"No term '{label}'. Available: {list(self.blocks)}")

    def model_matrix(self, data: Union[pd.DataFrame, Dict]) -> np.ndarray:
        data = pd.DataFrame(data)
        X, _ = self.model.model_matrix(data)
        return X

    # ==================== Tables ====================

    def parametric_table(self) -> pd.DataFrame:
        """Estimates, standard errors, Wald z tests and exp(estimate) of parametric terms."""
        names = [
            name
            for term in self.model.terms if isinstance(term, LinearTerm)
            for name in term.coef_names()
        ]
        estimate = self.params[names]
        se = self.bse[names]
        z = estimate / se
        return pd.DataFrame({
            "estimate": estimate,
            "std_err": se,
            "z": z,
            "p_value": 2.0 * stats.norm.sf(np.abs(z)),
            "exp_estimate": np.exp(estimate),
        })

    def smooth_table(self) -> pd.DataFrame:
        """Approximate Wald tests for smooth terms."""
        rows = {}
        edf = self.edf
        for term in self.model.terms:
            if not term.penalized:
                continue
            block = self.blocks[term.label]
            beta = self.params.to_numpy()[block]
            cov = self.cov.to_numpy()[block, block]
            rank = max(1, int(round(edf[term.label])))

            eigenvalues, eigenvectors = np.linalg.eigh(cov)
            order = np.argsort(eigenvalues)[::-1][:rank]
            projected = eigenvectors[:, order].T @ beta
            statistic = float(np.sum(projected ** 2 / eigenvalues[order]))

            rows[term.label] = {
                "edf": edf[term.label],
                "ref_df": rank,
                "chi_sq": statistic,
                "p_value": float(stats.chi2.sf(statistic, rank)),
            }
        return pd.DataFrame.from_dict(
            rows, orient="index", columns=["edf", "ref_df", "chi_sq", "p_value"]
        )

    def summary(self) -> str:
        lines = [
            "Step-selection GAM (stratified Cox PH / conditional logit)",
            "=" * 60,
            "Terms: " + " + ".join(term.label for term in self.model.terms),
            f"Observations: {self.n_obs:,}   Strata: {self.n_strata:,}",
            f"Log partial likelihood: {self.llf:.3f}   AIC: {self.aic:.2f}",
        ]

        parametric = self.parametric_table()
        if not parametric.empty:
            lines += ["", "Parametric coefficients:", parametric.to_string(float_format=lambda v: f"{v:.4g}")]

        smooths = self.smooth_table()
        if not smooths.empty:
            lines += ["", "Approximate significance of smooth terms:", smooths.to_string(float_format=lambda v: f"{v:.4g}")]

        if not self.sp.empty:
            lines += ["", "Smoothing parameters:", self.sp.to_string(float_format=lambda v: f"{v:.4g}")]

        return "\n".join(lines)

    # ==================== Prediction ====================

    def predict(self, newdata: Union[pd.DataFrame, Dict], se_fit: bool = False):
        """
        Linear predictor (no intercept) for new data.

        Args:
            newdata: Values for every variable used by the model
            se_fit: Also return standard errors

        Returns:
            Series of predictions, or a DataFrame with "fit" and "se" columns
        """
        newdata = pd.DataFrame(newdata)
        X = self.model_matrix(newdata)
        fit = X @ self.params.to_numpy()
        if not se_fit:
            return pd.Series(fit, index=newdata.index)
        se = np.sqrt(np.einsum("ij,jk,ik->i", X, self.cov.to_numpy(), X))
        return pd.DataFrame({"fit": fit, "se": se}, index=newdata.index)

    def smooth_estimates(
        self,
        term: str,
        n: int = 100,
        data: Optional[pd.DataFrame] = None,
        level: float = 0.95
    ) -> pd.DataFrame:
        """
        Evaluate one smooth term with pointwise confidence intervals.

        Args:
            term: Term label such as "s(sl_)" or "te(sl_,ta_)"
            n: Grid size per variable when data is not given
            data: Values to evaluate at (defaults to an even grid)
            level: Confidence level

        Returns:
            DataFrame with the term's variables and .estimate, .se,
            .lower_ci, .upper_ci
        """
        smooth_term = self.term(term)
        if not smooth_term.penalized:
            raise ValueError(f"Term {term} is not a smooth")

        grid = smooth_term.grid(n) if data is None else pd.DataFrame(data).reset_index(drop=True)
        block = self.blocks[term]
        basis = smooth_term.basis(grid)
        beta = self.params.to_numpy()[block]
        cov = self.cov.to_numpy()[block, block]

        estimate = basis @ beta
        se = np.sqrt(np.einsum("ij,jk,ik->i", basis, cov, basis))
        crit = stats.norm.ppf(0.5 + level / 2.0)

        result = grid.copy()
        result.insert(0, ".smooth", term)
        result[".estimate"] = estimate
        result[".se"] = se
        result[".lower_ci"] = estimate - crit * se
        result[".upper_ci"] = estimate + crit * se
        return result
