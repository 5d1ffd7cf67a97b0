"""
stepgam - step-selection functions fitted as GAMs.

Subpackages:
    - data: fixes, rasters, steps and control steps
    - models: spline terms, stratified Cox GAM fitting, RSS, movement kernels
    - plotting: figures for data and fitted models
    - analysis: end-to-end workflow and its configuration
"""

__version__ = "0.1.0"
