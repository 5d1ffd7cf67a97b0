from .config import AnalysisConfig, MODEL_NAMES, PROPOSALS
from .engine import SSFAnalysis

__all__ = ["AnalysisConfig", "MODEL_NAMES", "PROPOSALS", "SSFAnalysis"]
