"""Type-I error diagnostics for null p-values."""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.core.types import CalibrationCurve
from dbpitfalls.core.utils import pvalue_1d

MIN_STABLE_COUNT = 20
DEFAULT_ALPHAS: tuple[float, ...] = (0.01, 0.05)


def calibration_curve(
    null_pvalues: np.ndarray, min_count: int = MIN_STABLE_COUNT
) -> CalibrationCurve:
    """Observed/expected rejection proportions over the nominal levels (i-0.5)/m.

    `n_below[i]` counts p-values strictly below the i-th level, i.e. the
    position of that level within the sorted p-values. Ratios resting on
    fewer than `min_count` p-values are flagged unstable.
    """
    p = np.sort(pvalue_1d("null_pvalues", null_pvalues))
    m = int(p.size)
    if m == 0:
        raise DegenerateInput("No null p-values available for calibration.")
    if int(min_count) < 1:
        raise InvalidParameter("min_count must be at least 1.")
    expected = (np.arange(1, m + 1, dtype=float) - 0.5) / m
    n_below = np.searchsorted(p, expected, side="left")
    observed = n_below / float(m)
    return CalibrationCurve(
        expected=expected,
        observed=observed,
        n_below=n_below.astype(int),
        ratio=observed / expected,
        stable=n_below >= int(min_count),
        min_count=int(min_count),
    )


def rejection_rate(pvalues: np.ndarray, alpha: float) -> float:
    p = pvalue_1d("pvalues", pvalues)
    if p.size == 0:
        return float("nan")
    return float(np.mean(p <= float(alpha)))


def summarize_reps(values: pd.DataFrame, group_cols: Sequence[str] = ()) -> pd.DataFrame:
    """min/median/max/mean of every numeric column across repetitions."""
    numeric = [c for c in values.columns if c not in group_cols and c != "rep_id"]
    numeric = [c for c in numeric if pd.api.types.is_numeric_dtype(values[c])]
    rows = []
    for col in numeric:
        col_vals = values[col].to_numpy(dtype=float)
        col_vals = col_vals[np.isfinite(col_vals)]
        if col_vals.size == 0:
            rows.append({"metric": col, "n": 0, "min": np.nan, "median": np.nan, "max": np.nan, "mean": np.nan})
            continue
        rows.append(
            {
                "metric": col,
                "n": int(col_vals.size),
                "min": float(np.min(col_vals)),
                "median": float(np.median(col_vals)),
                "max": float(np.max(col_vals)),
                "mean": float(np.mean(col_vals)),
            }
        )
    return pd.DataFrame(rows, columns=["metric", "n", "min", "median", "max", "mean"])


def threshold_summary(
    pvalues_by_rep: Mapping[int, np.ndarray],
    alphas: Sequence[float] = DEFAULT_ALPHAS,
    label: str = "error",
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Per-repetition rejection rates at fixed cutoffs, plus their summary.

    Pass null p-values for type-I error rates or non-null p-values for power.
    """
    rows = []
    for rep_id, pvals in pvalues_by_rep.items():
        row: dict[str, float | int] = {"rep_id": int(rep_id)}
        for a in alphas:
            row[f"{label}_{float(a):g}"] = rejection_rate(pvals, a)
        rows.append(row)
    per_rep = pd.DataFrame(rows)
    if per_rep.empty:
        raise DegenerateInput("No repetitions to summarise.")
    return per_rep, summarize_reps(per_rep)


def average_curves(curves: Sequence[CalibrationCurve], n_grid: int = 50) -> pd.DataFrame:
    """Mean ratio across repetitions on a shared log-spaced grid.

    Each curve is interpolated over its stable range only; grid points
    outside a curve's stable range do not contribute for that curve.
    """
    if not curves:
        raise DegenerateInput("No calibration curves to average.")
    stable = [c.stable_points() for c in curves]
    stable = [(x, y) for x, y in stable if x.size > 0]
    if not stable:
        raise DegenerateInput("No calibration curve has a stable range.")
    lo = min(float(x[0]) for x, _ in stable)
    hi = max(float(x[-1]) for x, _ in stable)
    grid = np.unique(np.geomspace(lo, hi, int(n_grid)))

    mat = np.full((len(stable), grid.size), np.nan)
    for i, (x, y) in enumerate(stable):
        inside = (grid >= x[0]) & (grid <= x[-1])
        mat[i, inside] = np.interp(np.log(grid[inside]), np.log(x), y)
    n_curves = np.sum(np.isfinite(mat), axis=0)
    sums = np.nansum(mat, axis=0)
    mean_ratio = np.where(n_curves > 0, sums / np.maximum(n_curves, 1), np.nan)
    return pd.DataFrame({"expected": grid, "mean_ratio": mean_ratio, "n_curves": n_curves})
