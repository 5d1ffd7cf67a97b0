from .loaders import load_fixes, load_covariate_raster
from .covariates import CovariateRaster, extract_covariates
from .tracks import make_track, steps, summarize_sampling_rate, add_elapsed_time, wrap_angle
from .random_steps import (
    ControlStepGenerator,
    UniformDiscGenerator,
    FittedDistributionGenerator,
    random_steps,
    to_geodataframe,
)

__all__ = [
    "load_fixes",
    "load_covariate_raster",
    "CovariateRaster",
    "extract_covariates",
    "make_track",
    "steps",
    "summarize_sampling_rate",
    "add_elapsed_time",
    "wrap_angle",
    "ControlStepGenerator",
    "UniformDiscGenerator",
    "FittedDistributionGenerator",
    "random_steps",
    "to_geodataframe",
]
