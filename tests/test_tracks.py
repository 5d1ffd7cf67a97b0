"""
Tests for tracks and steps.
"""

import numpy as np
import pandas as pd
import pytest

from stepgam.data.tracks import (
    STEP_COLUMNS,
    add_elapsed_time,
    make_track,
    steps,
    summarize_sampling_rate,
    wrap_angle,
)


@pytest.fixture
def square_fixes():
    """Four fixes walking east, north, then west, 30 minutes apart."""
    return pd.DataFrame({
        "x": [0.0, 1.0, 1.0, 0.0],
        "y": [0.0, 0.0, 1.0, 1.0],
        "time": pd.date_range("2020-01-01", periods=4, freq="30min"),
    })


@pytest.mark.unit
class TestWrapAngle:
    """Test angle wrapping."""

    def test_values_inside_range_unchanged(self):
        angles = np.array([-3.0, -1.0, 0.0, 1.0, 3.0])
        np.testing.assert_allclose(wrap_angle(angles), angles)

    def test_wraps_to_half_open_interval(self):
        np.testing.assert_allclose(wrap_angle(3 * np.pi / 2), -np.pi / 2)
        np.testing.assert_allclose(wrap_angle(-3 * np.pi / 2), np.pi / 2)
        np.testing.assert_allclose(wrap_angle(-np.pi), np.pi)
        np.testing.assert_allclose(wrap_angle(np.pi), np.pi)


@pytest.mark.unit
class TestMakeTrack:
    """Test track construction from raw fixes."""

    def test_standard_columns(self, square_fixes):
        track = make_track(square_fixes, x="x", y="y", t="time")
        assert list(track.columns) == ["x_", "y_", "t_"]
        assert len(track) == 4

    def test_sorts_by_time(self, square_fixes):
        shuffled = square_fixes.iloc[[2, 0, 3, 1]]
        track = make_track(shuffled, x="x", y="y", t="time")
        assert track["t_"].is_monotonic_increasing
        np.testing.assert_allclose(track["x_"], [0.0, 1.0, 1.0, 0.0])

    def test_missing_columns(self, square_fixes):
        with pytest.raises(ValueError, match="missing columns"):
            make_track(square_fixes, x="lon", y="y", t="time")

    def test_duplicated_timestamps(self, square_fixes):
        fixes = square_fixes.copy()
        fixes.loc[1, "time"] = fixes.loc[0, "time"]
        with pytest.raises(ValueError, match="duplicated timestamps"):
            make_track(fixes, x="x", y="y", t="time")

    def test_drops_missing_coordinates(self, square_fixes):
        fixes = square_fixes.copy()
        fixes.loc[2, "x"] = np.nan
        track = make_track(fixes, x="x", y="y", t="time")
        assert len(track) == 3

    def test_with_id(self, square_fixes):
        fixes = pd.concat([square_fixes.assign(bird="a"), square_fixes.assign(bird="b")])
        track = make_track(fixes, x="x", y="y", t="time", id="bird")
        assert list(track.columns) == ["id", "x_", "y_", "t_"]
        assert len(track) == 8


@pytest.mark.unit
class TestSteps:
    """Test step construction."""

    def test_columns_and_count(self, square_fixes):
        result = steps(make_track(square_fixes, x="x", y="y", t="time"))
        assert list(result.columns) == STEP_COLUMNS
        assert len(result) == 3

    def test_lengths_and_angles(self, square_fixes):
        result = steps(make_track(square_fixes, x="x", y="y", t="time"))

        np.testing.assert_allclose(result["sl_"], [1.0, 1.0, 1.0])
        assert np.isnan(result["direction_p"].iloc[0])
        np.testing.assert_allclose(result["direction_p"].iloc[1:], [0.0, np.pi / 2])
        assert np.isnan(result["ta_"].iloc[0])
        # Two left turns of 90 degrees
        np.testing.assert_allclose(result["ta_"].iloc[1:], [np.pi / 2, np.pi / 2])

    def test_time_columns(self, square_fixes):
        result = steps(make_track(square_fixes, x="x", y="y", t="time"))
        assert (result["dt_"] == pd.Timedelta(minutes=30)).all()
        assert (result["t2_"] - result["t1_"] == result["dt_"]).all()

    def test_zero_length_step_has_no_direction(self):
        fixes = pd.DataFrame({
            "x": [0.0, 1.0, 1.0, 2.0],
            "y": [0.0, 0.0, 0.0, 0.0],
            "time": pd.date_range("2020-01-01", periods=4, freq="h"),
        })
        result = steps(make_track(fixes, x="x", y="y", t="time"))
        assert result["sl_"].iloc[1] == 0.0
        assert np.isnan(result["ta_"].iloc[1])
        assert np.isnan(result["ta_"].iloc[2])

    def test_steps_do_not_cross_animals(self, square_fixes):
        fixes = pd.concat([square_fixes.assign(bird="a"), square_fixes.assign(bird="b")])
        result = steps(make_track(fixes, x="x", y="y", t="time", id="bird"))
        assert len(result) == 6
        assert result.groupby("id")["ta_"].apply(lambda s: s.isna().sum()).tolist() == [1, 1]

    def test_single_fix_raises(self, square_fixes):
        track = make_track(square_fixes.iloc[:1], x="x", y="y", t="time")
        with pytest.raises(ValueError, match="No steps"):
            steps(track)

    def test_simulated_track(self, track, track_steps):
        assert len(track_steps) == len(track) - 1
        np.testing.assert_allclose(
            track_steps["sl_"],
            np.hypot(track_steps["x2_"] - track_steps["x1_"], track_steps["y2_"] - track_steps["y1_"])
        )
        assert track_steps["ta_"].iloc[1:].between(-np.pi, np.pi).all()


@pytest.mark.unit
class TestSamplingRate:
    """Test sampling rate summaries."""

    def test_regular_track(self, square_fixes):
        summary = summarize_sampling_rate(make_track(square_fixes, x="x", y="y", t="time"))
        assert summary["median"] == 30.0
        assert summary["min"] == summary["max"] == 30.0
        assert summary["n"] == 3
        assert summary["unit"] == "min"

    def test_unit(self, track):
        summary = summarize_sampling_rate(track, unit="h")
        assert summary["median"] == pytest.approx(1.0)


@pytest.mark.unit
class TestElapsedTime:
    """Test elapsed time column."""

    def test_hours_since_first_step(self, square_fixes):
        result = add_elapsed_time(steps(make_track(square_fixes, x="x", y="y", t="time")))
        np.testing.assert_allclose(result["time"], [0.0, 0.5, 1.0])

    def test_per_animal(self, square_fixes):
        later = square_fixes.assign(time=square_fixes["time"] + pd.Timedelta(days=1))
        fixes = pd.concat([square_fixes.assign(bird="a"), later.assign(bird="b")])
        result = add_elapsed_time(steps(make_track(fixes, x="x", y="y", t="time", id="bird")))
        assert result.groupby("id")["time"].min().tolist() == [0.0, 0.0]

    def test_origin_from_track(self, square_fixes):
        track = make_track(square_fixes, x="x", y="y", t="time")
        usable = steps(track).dropna(subset=["ta_"])
        assert add_elapsed_time(usable)["time"].tolist() == [0.0, 0.5]
        np.testing.assert_allclose(add_elapsed_time(usable, track=track)["time"], [0.5, 1.0])

    def test_origin_from_track_per_animal(self, square_fixes):
        later = square_fixes.assign(time=square_fixes["time"] + pd.Timedelta(days=1))
        fixes = pd.concat([square_fixes.assign(bird="a"), later.assign(bird="b")])
        track = make_track(fixes, x="x", y="y", t="time", id="bird")
        usable = steps(track).dropna(subset=["ta_"])
        result = add_elapsed_time(usable, unit="min", track=track)
        assert result.groupby("id")["time"].min().tolist() == [30.0, 30.0]
