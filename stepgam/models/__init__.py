# Import term classes and constructors
from .terms import (
    BaseTerm,
    LinearTerm,
    SmoothTerm,
    TensorTerm,
    VaryingCoefficientTerm,
    linear,
    smooth,
    tensor,
    spatial_smooth,
    varying,
)

# Import fitting and interpretation
from .fitting import StepSelectionGAM, StepSelectionResults, ModelFitError
from .selection import relative_selection_strength, linear_rss
from .kernels import (
    MovementKernel,
    update_gamma,
    update_vonmises,
    kernel_from_linear,
    step_length_distribution,
)

__all__ = [
    "BaseTerm",
    "LinearTerm",
    "SmoothTerm",
    "TensorTerm",
    "VaryingCoefficientTerm",
    "linear",
    "smooth",
    "tensor",
    "spatial_smooth",
    "varying",
    "StepSelectionGAM",
    "StepSelectionResults",
    "ModelFitError",
    "relative_selection_strength",
    "linear_rss",
    "MovementKernel",
    "update_gamma",
    "update_vonmises",
    "kernel_from_linear",
    "step_length_distribution",
]
