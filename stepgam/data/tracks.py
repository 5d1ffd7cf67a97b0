"""
Tracks of GPS fixes and the movement steps between consecutive fixes.

Column naming follows the conventions of the R package amt (trailing
underscores), so results line up with published step-selection analyses:

    x_, y_, t_                      one row per fix
    x1_, y1_, x2_, y2_, sl_,        one row per step
    direction_p, ta_, t1_, t2_, dt_
"""

from typing import Optional
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

STEP_COLUMNS = ["x1_", "y1_", "x2_", "y2_", "sl_", "direction_p", "ta_", "t1_", "t2_", "dt_"]


def wrap_angle(angle):
    """Wrap angles (radians) to the interval (-pi, pi]."""
    return np.pi - np.mod(np.pi - np.asarray(angle, dtype=float), 2 * np.pi)


def make_track(
    fixes: pd.DataFrame,
    x: str = "x",
    y: str = "y",
    t: str = "time",
    id: Optional[str] = None
) -> pd.DataFrame:
    """
    Standardise raw fixes into a track.

    Args:
        fixes: DataFrame with coordinates and timestamps
        x: Easting column (projected, map units)
        y: Northing column
        t: Timestamp column
        id: Optional animal identifier column for multi-animal data

    Returns:
        DataFrame with columns [id,] x_, y_, t_ sorted by time within animal
    """
    required = [x, y, t] + ([id] if id else [])
    missing = [col for col in required if col not in fixes.columns]
    if missing:
        raise ValueError(f"Fixes are missing columns {missing}. Available: {list(fixes.columns)}")

    track = pd.DataFrame({
        "x_": pd.to_numeric(fixes[x], errors="coerce").to_numpy(dtype=float),
        "y_": pd.to_numeric(fixes[y], errors="coerce").to_numpy(dtype=float),
        "t_": pd.to_datetime(fixes[t]).to_numpy(),
    })
    if id:
        track.insert(0, "id", fixes[id].to_numpy())

    n_before = len(track)
    track = track.dropna()
    if len(track) < n_before:
        logger.warning(f"Dropped {n_before - len(track):,} fixes with missing coordinates or time")

    keys = ["id", "t_"] if id else ["t_"]
    if id:
        ordered = track.groupby("id", sort=False)["t_"].apply(lambda s: s.is_monotonic_increasing).all()
    else:
        ordered = track["t_"].is_monotonic_increasing
    if not ordered:
        logger.info("Fixes were not in time order, sorting")
    track = track.sort_values(keys, kind="mergesort").reset_index(drop=True)

    duplicated = track.duplicated(subset=keys)
    if duplicated.any():
        first = track.loc[duplicated, "t_"].iloc[0]
        raise ValueError(
            f"Track has {int(duplicated.sum())} duplicated timestamps (first at {first})"
        )

    return track


def steps(track: pd.DataFrame) -> pd.DataFrame:
    """
    Convert a track into steps between consecutive fixes.

    ``direction_p`` is the heading of the previous step, so the turning
    angle is ``ta_ = direction - direction_p`` wrapped to (-pi, pi]. The
    first step of each animal has no previous heading and gets NaN, as do
    angles involving zero-length steps.
    """
    if "id" in track.columns:
        groups = track.groupby("id", sort=False)
    else:
        groups = [(None, track)]

    frames = []
    for key, fixes in groups:
        if len(fixes) < 2:
            logger.warning(f"Track {key} has fewer than two fixes, no steps created")
            continue

        x = fixes["x_"].to_numpy(dtype=float)
        y = fixes["y_"].to_numpy(dtype=float)
        t = pd.to_datetime(fixes["t_"]).reset_index(drop=True)

        dx = np.diff(x)
        dy = np.diff(y)
        sl = np.hypot(dx, dy)
        with np.errstate(invalid="ignore"):
            direction = np.where(sl > 0, np.arctan2(dy, dx), np.nan)
        direction_p = np.r_[np.nan, direction[:-1]]

        frame = pd.DataFrame({
            "x1_": x[:-1],
            "y1_": y[:-1],
            "x2_": x[1:],
            "y2_": y[1:],
            "sl_": sl,
            "direction_p": direction_p,
            "ta_": wrap_angle(direction - direction_p),
            "t1_": t.iloc[:-1].to_numpy(),
            "t2_": t.iloc[1:].to_numpy(),
        })
        frame["dt_"] = frame["t2_"] - frame["t1_"]
        if key is not None:
            frame.insert(0, "id", key)
        frames.append(frame)

    if not frames:
        raise ValueError("No steps could be created: every track has fewer than two fixes")

    result = pd.concat(frames, ignore_index=True)
    logger.info(f"Created {len(result):,} steps from {len(track):,} fixes")
    return result


def summarize_sampling_rate(track: pd.DataFrame, unit: str = "min") -> pd.Series:
    """
    Summary statistics of the time between consecutive fixes.

    Args:
        track: Output of make_track
        unit: pandas time unit for the summary ("s", "min", "h", ...)
    """
    if "id" in track.columns:
        lags = track.groupby("id", sort=False)["t_"].diff()
    else:
        lags = track["t_"].diff()
    lags = lags.dropna() / pd.Timedelta(1, unit=unit)

    if lags.empty:
        raise ValueError("Sampling rate needs at least two fixes")

    return pd.Series({
        "min": lags.min(),
        "q1": lags.quantile(0.25),
        "median": lags.median(),
        "mean": lags.mean(),
        "q3": lags.quantile(0.75),
        "max": lags.max(),
        "sd": lags.std(),
        "n": int(lags.size),
        "unit": unit,
    })


def add_elapsed_time(
    data: pd.DataFrame,
    column: str = "time",
    unit: str = "h",
    track: Optional[pd.DataFrame] = None
) -> pd.DataFrame:
    """
    Add time since the start of the series (per animal) in the given unit.

    The origin is the first fix of ``track`` when given, otherwise the
    earliest step start in ``data``. Once steps without a turning angle
    are dropped, the earliest step start is the second fix.
    """
    data = data.copy()
    by_id = "id" in data.columns
    if track is not None:
        if by_id:
            start = data["id"].map(track.groupby("id")["t_"].min())
        else:
            start = track["t_"].min()
    elif by_id:
        start = data.groupby("id")["t1_"].transform("min")
    else:
        start = data["t1_"].min()
    data[column] = (data["t1_"] - start) / pd.Timedelta(1, unit=unit)
    return data
