"""
Configuration for the step-selection analysis workflow.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

MODEL_NAMES = ["linear", "smooth", "spatial", "varying", "tensor"]
PROPOSALS = ["uniform", "fitted"]


@dataclass
class AnalysisConfig:
    """Inputs, sampling settings and outputs of one analysis run."""
    fixes_path: Path
    raster_path: Path
    output_dir: Path = Path("results")

    # Column names in the fixes CSV
    x_column: str = "x"
    y_column: str = "y"
    time_column: str = "time"
    id_column: Optional[str] = None

    # Raster covariate: value * scale + offset (bathymetry m -> depth km)
    covariate_name: str = "depth"
    covariate_scale: float = -0.001
    covariate_offset: float = 0.0

    # Control steps
    n_control: int = 100
    n_random: int = 100_000
    seed: Optional[int] = 25
    proposal: str = "uniform"

    # Applied to step lengths after control steps are drawn (m -> km)
    step_length_scale: float = 0.001

    models: List[str] = field(default_factory=lambda: list(MODEL_NAMES))
    varying_k: int = 12
    # Two (x, y) locations compared with the spatial model
    spatial_reference: Optional[List[Tuple[float, float]]] = None
    make_figures: bool = True

    def __post_init__(self):
        self.fixes_path = Path(self.fixes_path)
        self.raster_path = Path(self.raster_path)
        self.output_dir = Path(self.output_dir)

    def validate(self) -> None:
        """Raise ValueError for settings the workflow cannot run with."""
        if self.proposal not in PROPOSALS:
            raise ValueError(f"Invalid proposal '{self.proposal}'. Must be one of: {PROPOSALS}")
        if self.n_control < 1:
            raise ValueError(f"n_control must be at least 1, got {self.n_control}")
        if self.n_random < 1:
            raise ValueError(f"n_random must be at least 1, got {self.n_random}")
        if self.step_length_scale <= 0:
            raise ValueError(f"step_length_scale must be positive, got {self.step_length_scale}")
        if self.varying_k < 3:
            raise ValueError(f"varying_k must be at least 3, got {self.varying_k}")

        unknown = [name for name in self.models if name not in MODEL_NAMES]
        if unknown:
            raise ValueError(f"Unknown models {unknown}. Available: {MODEL_NAMES}")
        if not self.models:
            raise ValueError("At least one model must be selected")

        if self.spatial_reference is not None:
            if len(self.spatial_reference) != 2 or any(len(p) != 2 for p in self.spatial_reference):
                raise ValueError("spatial_reference must be two (x, y) pairs")

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        for key in ("fixes_path", "raster_path", "output_dir"):
            values[key] = str(values[key])
        return values
