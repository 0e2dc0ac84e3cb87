from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.stats.calibration import (
    average_curves,
    calibration_curve,
    rejection_rate,
    summarize_reps,
    threshold_summary,
)


def test_uniform_pvalues_are_calibrated_on_the_stable_range():
    m = 10_000
    rng = np.random.default_rng(0)
    # one draw per stratum ((i + u) / m): uniform, without clumping at the low end
    p = rng.permutation((np.arange(m) + rng.uniform(size=m)) / m)
    curve = calibration_curve(p)
    x, r = curve.stable_points()
    assert curve.m == m
    assert x.size > 0.99 * m
    assert np.all(np.abs(r - 1.0) < 0.15)


def test_iid_uniform_pvalues_are_calibrated_away_from_the_edge():
    p = np.random.default_rng(0).uniform(size=100_000)
    curve = calibration_curve(p)
    x, r = curve.stable_points()
    assert np.all(np.abs(r[x >= 0.01] - 1.0) < 0.15)
    assert abs(np.median(r) - 1.0) < 0.05


def test_curve_counts_strictly_below_level():
    p = np.array([0.1, 0.1, 0.5, 0.9])
    curve = calibration_curve(p, min_count=1)
    np.testing.assert_allclose(curve.expected, [0.125, 0.375, 0.625, 0.875])
    np.testing.assert_array_equal(curve.n_below, [2, 2, 3, 3])
    np.testing.assert_allclose(curve.ratio, curve.observed / curve.expected)


def test_small_counts_are_flagged_unstable():
    p = np.random.default_rng(1).uniform(size=100)
    curve = calibration_curve(p)
    assert not curve.stable[: 10].any()
    frame = curve.to_frame(stable_only=True)
    assert (frame["n_below"] >= 20).all()
    assert len(curve.to_frame(stable_only=False)) == 100


def test_liberal_pvalues_have_ratio_above_one():
    rng = np.random.default_rng(2)
    p = rng.uniform(size=5000) ** 2
    _, r = calibration_curve(p).stable_points()
    assert np.median(r) > 1.2


def test_calibration_rejects_bad_input():
    with pytest.raises(DegenerateInput):
        calibration_curve(np.array([]))
    with pytest.raises(InvalidParameter):
        calibration_curve(np.array([0.2, 1.5]))


def test_rejection_rate_and_threshold_summary():
    assert rejection_rate(np.array([0.01, 0.05, 0.5, 1.0]), 0.05) == 0.5
    per_rep, summary = threshold_summary({0: np.array([0.01, 0.5]), 1: np.array([0.2, 0.3])})
    assert list(per_rep.columns) == ["rep_id", "error_0.01", "error_0.05"]
    row = summary.set_index("metric").loc["error_0.05"]
    assert row["max"] == 0.5
    assert row["min"] == 0.0


def test_summarize_reps_skips_non_numeric_and_nan():
    df = pd.DataFrame({"rep_id": [0, 1, 2], "x": [1.0, np.nan, 3.0], "label": ["a", "b", "c"]})
    out = summarize_reps(df)
    assert out["metric"].tolist() == ["x"]
    assert out.loc[0, "n"] == 2
    assert out.loc[0, "mean"] == pytest.approx(2.0)


def test_average_curves_on_shared_grid():
    rng = np.random.default_rng(3)
    curves = [calibration_curve(rng.uniform(size=4000)) for _ in range(3)]
    avg = average_curves(curves, n_grid=30)
    assert list(avg.columns) == ["expected", "mean_ratio", "n_curves"]
    assert (avg["n_curves"] <= 3).all()
    inside = avg.loc[(avg["n_curves"] == 3) & (avg["expected"] >= 0.05), "mean_ratio"]
    assert np.all(np.abs(inside - 1.0) < 0.2)
    with pytest.raises(DegenerateInput):
        average_curves([])
