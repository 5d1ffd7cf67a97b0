"""
End-to-end step-selection analysis.

Stages:
    1. prepare: fixes -> track -> steps -> control steps -> covariates
    2. fit_models: linear, smooth, spatial, varying-coefficient and
       tensor-product movement kernel models
    3. report: summaries, coefficient tables, derived quantities and figures
"""

from typing import Any, Dict, List, Optional
from pathlib import Path
import json
import logging

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from ..data.covariates import extract_covariates
from ..data.loaders import load_covariate_raster, load_fixes
from ..data.random_steps import (
    FittedDistributionGenerator,
    UniformDiscGenerator,
    random_steps,
    to_geodataframe,
)
from ..data.tracks import add_elapsed_time, make_track, steps, summarize_sampling_rate
from ..models.fitting import StepSelectionGAM, StepSelectionResults
from ..models.kernels import MovementKernel, kernel_from_linear, step_length_distribution
from ..models.selection import linear_rss, relative_selection_strength
from ..models.terms import BaseTerm, linear, smooth, spatial_smooth, tensor, varying
from ..plotting import figures
from .config import AnalysisConfig

logger = logging.getLogger(__name__)

TURNING_ANGLE_BOUNDS = (-np.pi, np.pi)


class SSFAnalysis:
    """Runs the step-selection workflow described by an AnalysisConfig"""

    def __init__(self, config: AnalysisConfig):
        config.validate()
        self.config = config

        self.fixes: Optional[pd.DataFrame] = None
        self.raster = None
        self.track: Optional[pd.DataFrame] = None
        self.steps: Optional[pd.DataFrame] = None
        self.generator = None
        self.data: Optional[pd.DataFrame] = None

        self.results: Dict[str, StepSelectionResults] = {}
        self.derived: Dict[str, Dict[str, Any]] = {}

    # ==================== Stage 1 ====================

    def prepare(self) -> pd.DataFrame:
        """Load inputs and build the case/control step table."""
        cfg = self.config

        self.fixes = load_fixes(cfg.fixes_path, x=cfg.x_column, y=cfg.y_column, time=cfg.time_column)
        self.raster = load_covariate_raster(
            cfg.raster_path,
            name=cfg.covariate_name,
            scale=cfg.covariate_scale,
            offset=cfg.covariate_offset
        )

        self.track = make_track(self.fixes, x=cfg.x_column, y=cfg.y_column, t=cfg.time_column, id=cfg.id_column)
        rate = summarize_sampling_rate(self.track)
        logger.info(f"Sampling rate: median {rate['median']:.1f} min (range {rate['min']:.1f} to {rate['max']:.1f})")

        self.steps = steps(self.track)
        if cfg.proposal == "uniform":
            self.generator = UniformDiscGenerator.from_steps(self.steps, n_random=cfg.n_random)
        else:
            self.generator = FittedDistributionGenerator.from_steps(self.steps, n_random=cfg.n_random)

        data = random_steps(self.steps, n_control=cfg.n_control, generator=self.generator, seed=cfg.seed)
        data = extract_covariates(data, self.raster, where="end")
        data["sl_"] = data["sl_"] * cfg.step_length_scale
        data = add_elapsed_time(data, column="time", unit="h", track=self.track)

        self.data = data
        return data

    # ==================== Stage 2 ====================

    def build_terms(self, name: str) -> List[BaseTerm]:
        """Terms of one of the named models."""
        cov = self.config.covariate_name
        cyclic_ta = smooth("ta_", bs="cc", bounds=TURNING_ANGLE_BOUNDS)

        if name == "linear":
            return [linear("sl_"), linear("cos(ta_)"), linear(cov)]
        if name == "smooth":
            return [smooth("sl_"), cyclic_ta, smooth(cov)]
        if name == "spatial":
            return [smooth("sl_"), cyclic_ta, linear(cov), spatial_smooth("x2_", "y2_")]
        if name == "varying":
            return [linear("sl_"), linear("cos(ta_)"), varying("time", by=cov, k=self.config.varying_k)]
        if name == "tensor":
            return [
                tensor(["sl_", "ta_"], bs=("cr", "cc"), bounds={"ta_": TURNING_ANGLE_BOUNDS}),
                linear(cov),
            ]
        raise ValueError(f"Unknown model '{name}'")

    def fit_models(self) -> Dict[str, StepSelectionResults]:
        """Fit every configured model and derive its interpretable quantities."""
        if self.data is None:
            self.prepare()

        for name in self.config.models:
            logger.info(f"Fitting {name} model...")
            model = StepSelectionGAM(self.build_terms(name))
            results = model.fit(self.data)
            self.results[name] = results
            self.derived[name] = self._interpret(name, results)
            logger.info(f"✓ {name}: log-likelihood {results.llf:.2f}, AIC {results.aic:.2f}")

        return self.results

    def _interpret(self, name: str, results: StepSelectionResults) -> Dict[str, Any]:
        cov = self.config.covariate_name
        derived: Dict[str, Any] = {
            "llf": results.llf,
            "aic": results.aic,
            "edf": results.edf.to_dict(),
            "sp": results.sp.to_dict(),
        }

        if name == "linear":
            try:
                kernel = kernel_from_linear(results, self.generator, sl_scale=self.config.step_length_scale)
                derived["kernel"] = kernel.as_dict()
                logger.info(
                    f"Movement kernel: kappa={kernel.kappa:.3f}, mean step {kernel.mean_step:.3f}, "
                    f"sd {kernel.sd_step:.3f}"
                )
            except ValueError as e:
                logger.warning(f"No movement kernel for the linear model: {e}")
                derived["kernel"] = None
            derived[f"rss_{cov}"] = linear_rss(results, cov)

        elif name in ("smooth", "tensor"):
            base = {"sl_": [0.0], "ta_": [0.0], cov: [0.0]}
            rss = relative_selection_strength(results, base, {**base, cov: [1.0]})
            derived[f"rss_{cov}_1_vs_0"] = rss.iloc[0].to_dict()

        elif name == "spatial":
            (xa, ya), (xb, yb) = self._spatial_reference()
            base = {"sl_": [0.0], "ta_": [0.0], cov: [0.0]}
            rss = relative_selection_strength(
                results,
                {**base, "x2_": [xa], "y2_": [ya]},
                {**base, "x2_": [xb], "y2_": [yb]}
            )
            derived["spatial_reference"] = [[xa, ya], [xb, yb]]
            derived["rss_spatial"] = rss.iloc[0].to_dict()

        elif name == "varying":
            estimates = results.smooth_estimates(f"s(time):{cov}")
            derived[f"{cov}_coefficient_range"] = [
                float(estimates[".estimate"].min()),
                float(estimates[".estimate"].max()),
            ]

        return derived

    def _spatial_reference(self):
        if self.config.spatial_reference is not None:
            return [tuple(map(float, p)) for p in self.config.spatial_reference]
        observed = self.data[self.data["case_"]]
        x = float(observed["x2_"].median())
        return [
            (x, float(observed["y2_"].quantile(0.25))),
            (x, float(observed["y2_"].quantile(0.75))),
        ]

    # ==================== Stage 3 ====================

    def report(self) -> Dict[str, Path]:
        """Write tables, derived quantities and figures to the output directory."""
        out = self.config.output_dir
        out.mkdir(parents=True, exist_ok=True)
        written: Dict[str, Path] = {}

        table = self.data.copy()
        table["dt_"] = table["dt_"] / pd.Timedelta(1, unit="min")
        written["steps"] = out / "steps.csv"
        table.to_csv(written["steps"], index=False)

        written["points"] = out / "step_ends.geojson"
        to_geodataframe(self.data, crs=self.raster.crs).drop(
            columns=["t1_", "t2_"]
        ).to_file(written["points"], driver="GeoJSON")

        for name, results in self.results.items():
            path = out / f"{name}_summary.txt"
            path.write_text(results.summary() + "\n")
            written[f"{name}_summary"] = path

            coefficients = pd.DataFrame({"estimate": results.params, "std_err": results.bse})
            path = out / f"{name}_coefficients.csv"
            coefficients.to_csv(path, index_label="term")
            written[f"{name}_coefficients"] = path

        written["derived"] = out / "derived_quantities.json"
        with open(written["derived"], "w") as f:
            json.dump(
                {"config": self.config.to_dict(), "models": self.derived},
                f,
                indent=2,
                default=float
            )

        if self.config.make_figures:
            written.update(self._write_figures(out / "figures"))

        logger.info(f"Wrote {len(written)} outputs to {out}")
        return written

    def _write_figures(self, fig_dir: Path) -> Dict[str, Path]:
        fig_dir.mkdir(parents=True, exist_ok=True)
        cov = self.config.covariate_name
        figs = {
            "covariate_map": figures.plot_covariate_map(
                self.raster, self.fixes, x=self.config.x_column, y=self.config.y_column
            ),
            "histograms": figures.plot_histograms(
                self.data, [cov, "sl_", "ta_"], labels=[cov, "step length", "turning angle"]
            ),
        }

        step_ids = sorted(self.data["step_id_"].unique())[3:6]
        if step_ids:
            figs["random_steps"] = figures.plot_random_steps(self.data, step_ids)

        for name, results in self.results.items():
            if name == "linear":
                kernel = self.derived[name].get("kernel")
                if kernel:
                    figs["linear_kernel"] = figures.plot_movement_kernel(
                        MovementKernel(kernel["shape"], kernel["scale"], kernel["kappa"], kernel["mu"])
                    )
                continue

            if name == "spatial":
                figs["spatial_smooth"] = figures.draw(
                    results,
                    select="s(x2_,y2_)",
                    points=self.data[self.data["case_"]],
                    point_columns=("x1_", "y1_")
                )
            elif name == "varying":
                figs["varying_coefficient"] = figures.draw(
                    results, xlabel="time (hours since start of series)"
                )
            else:
                figs[f"{name}_smooths"] = figures.draw(
                    results, fun=np.exp if name == "smooth" else None
                )

            if name == "smooth":
                figs["step_length_distribution"] = figures.plot_step_length_distribution(
                    step_length_distribution(results, "s(sl_)")
                )

        written = {}
        for key, fig in figs.items():
            path = fig_dir / f"{key}.png"
            fig.savefig(path, dpi=150, bbox_inches="tight")
            plt.close(fig)
            written[f"figure_{key}"] = path
        return written

    def run(self) -> Dict[str, Dict[str, Any]]:
        """Run all stages and return the derived quantities per model."""
        self.prepare()
        self.fit_models()
        self.report()
        return self.derived
