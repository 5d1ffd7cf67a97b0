from .figures import (
    plot_covariate_map,
    plot_random_steps,
    plot_histograms,
    plot_movement_kernel,
    draw,
    plot_step_length_distribution,
)

__all__ = [
    "plot_covariate_map",
    "plot_random_steps",
    "plot_histograms",
    "plot_movement_kernel",
    "draw",
    "plot_step_length_distribution",
]
