"""
Input loaders for GPS fixes and raster covariates.
"""

from typing import Optional
from pathlib import Path
import logging

import pandas as pd

from .covariates import CovariateRaster

logger = logging.getLogger(__name__)


def load_fixes(
    path: Path,
    x: str = "x",
    y: str = "y",
    time: str = "time",
    time_format: Optional[str] = None
) -> pd.DataFrame:
    """
    Load processed GPS fixes from a CSV file.

    Args:
        path: CSV file with one row per fix
        x: Name of the easting column
        y: Name of the northing column
        time: Name of the timestamp column
        time_format: Optional strptime format for the timestamps

    Returns:
        DataFrame with the time column parsed to datetimes
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Fixes file not found: {path}")

    fixes = pd.read_csv(path)
    logger.info(f"Loaded {len(fixes):,} fixes from {path}")

    missing = [col for col in (x, y, time) if col not in fixes.columns]
    if missing:
        raise ValueError(
            f"Fixes file {path} is missing required columns: {missing}. "
            f"Available: {list(fixes.columns)}"
        )

    try:
        fixes[time] = pd.to_datetime(fixes[time], format=time_format)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Could not parse timestamps in column '{time}': {e}") from e

    return fixes


def load_covariate_raster(
    path: Path,
    name: str,
    band: int = 1,
    scale: float = 1.0,
    offset: float = 0.0
) -> CovariateRaster:
    """
    Load a single raster band as a named covariate layer.

    The stored values are ``value * scale + offset``, so bathymetry in
    metres becomes depth in km (positive downward) with ``scale=-0.001``.
    """
    raster = CovariateRaster.from_file(path, name=name, band=band)
    if scale != 1.0 or offset != 0.0:
        raster = raster.rescale(scale, offset)
    logger.info(
        f"Loaded covariate '{name}' {raster.shape[0]}x{raster.shape[1]} "
        f"(range {raster.min():.3f} to {raster.max():.3f})"
    )
    return raster
