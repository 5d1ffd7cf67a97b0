"""
Raster covariates sampled at step locations.

Values are looked up in the cell containing each point (no interpolation).
Points that fall outside the raster or on nodata cells get NaN.
"""

from typing import Iterable, List, Optional, Tuple, Union
from pathlib import Path
import logging

import numpy as np
import pandas as pd
import rasterio
from rasterio.transform import array_bounds, rowcol

logger = logging.getLogger(__name__)


class CovariateRaster:
    """A single-band raster layer held in memory with its georeferencing."""

    def __init__(
        self,
        values: np.ndarray,
        transform,
        crs=None,
        name: str = "value",
        nodata: Optional[float] = None
    ):
        """
        Args:
            values: 2-D array of cell values (rows, cols)
            transform: Affine transform mapping (col, row) to map coordinates
            crs: Coordinate reference system of the layer
            name: Covariate name used as column name on extraction
            nodata: Value marking missing cells (converted to NaN)
        """
        values = np.asarray(values, dtype=float)
        if values.ndim != 2:
            raise ValueError(f"Raster values must be 2-D, got shape {values.shape}")
        if nodata is not None and not np.isnan(nodata):
            values = np.where(values == nodata, np.nan, values)

        self.values = values
        self.transform = transform
        self.crs = crs
        self.name = name
        self.nodata = nodata

    @classmethod
    def from_file(cls, path: Path, name: Optional[str] = None, band: int = 1) -> "CovariateRaster":
        """Read one band of a raster file (e.g. GeoTIFF)."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Raster not found: {path}")

        with rasterio.open(path) as src:
            if band < 1 or band > src.count:
                raise ValueError(f"Band {band} out of range for {path} ({src.count} bands)")
            data = src.read(band, masked=True).astype("float64").filled(np.nan)
            return cls(
                data,
                src.transform,
                crs=src.crs,
                name=name or path.stem,
                nodata=src.nodata
            )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) in map units."""
        height, width = self.values.shape
        return array_bounds(height, width, self.transform)

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """(west, east, south, north), the order matplotlib's imshow expects."""
        west, south, east, north = self.bounds
        return west, east, south, north

    def min(self) -> float:
        return float(np.nanmin(self.values))

    def max(self) -> float:
        return float(np.nanmax(self.values))

    def rescale(self, scale: float, offset: float = 0.0, name: Optional[str] = None) -> "CovariateRaster":
        """Return a new layer with values ``value * scale + offset``."""
        return CovariateRaster(
            self.values * scale + offset,
            self.transform,
            crs=self.crs,
            name=name or self.name
        )

    def sample(self, x: Iterable[float], y: Iterable[float]) -> np.ndarray:
        """Value of the cell containing each (x, y) point."""
        xs = np.asarray(x, dtype=float)
        ys = np.asarray(y, dtype=float)
        if xs.shape != ys.shape:
            raise ValueError(f"x and y must have the same shape, got {xs.shape} and {ys.shape}")

        out = np.full(xs.shape, np.nan)
        finite = np.isfinite(xs) & np.isfinite(ys)
        if not finite.any():
            return out

        rows, cols = rowcol(self.transform, xs[finite], ys[finite])
        rows = np.atleast_1d(np.asarray(rows, dtype=int))
        cols = np.atleast_1d(np.asarray(cols, dtype=int))

        height, width = self.values.shape
        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)

        sampled = np.full(rows.shape, np.nan)
        sampled[inside] = self.values[rows[inside], cols[inside]]
        out[finite] = sampled
        return out


def extract_covariates(
    data: pd.DataFrame,
    covariates: Union[CovariateRaster, List[CovariateRaster]],
    where: str = "end"
) -> pd.DataFrame:
    """
    Add covariate values at step start and/or end points.

    Args:
        data: Steps with x1_, y1_, x2_, y2_ columns
        covariates: One layer or a list of layers
        where: "end" (at x2_, y2_), "start" (at x1_, y1_) or "both"
            (adds <name>_start and <name>_end)

    Returns:
        Copy of data with one new column per layer (two for "both")
    """
    if where not in ("end", "start", "both"):
        raise ValueError(f"where must be 'end', 'start' or 'both', got '{where}'")
    if isinstance(covariates, CovariateRaster):
        covariates = [covariates]

    data = data.copy()
    for layer in covariates:
        if where == "end":
            targets = [(layer.name, "x2_", "y2_")]
        elif where == "start":
            targets = [(layer.name, "x1_", "y1_")]
        else:
            targets = [
                (f"{layer.name}_start", "x1_", "y1_"),
                (f"{layer.name}_end", "x2_", "y2_"),
            ]

        for column, x_col, y_col in targets:
            data[column] = layer.sample(data[x_col].to_numpy(), data[y_col].to_numpy())
            n_missing = int(data[column].isna().sum())
            if n_missing:
                logger.warning(
                    f"{n_missing:,} of {len(data):,} locations have no '{column}' value "
                    f"(outside raster or nodata)"
                )

    return data
