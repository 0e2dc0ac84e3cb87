"""Calibration-curve and p-value histogram figures."""

from __future__ import annotations

from typing import Sequence

import matplotlib.figure
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from dbpitfalls.core.types import CalibrationCurve
from dbpitfalls.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle


def plot_calibration_curve(
    curves: Sequence[CalibrationCurve] = (),
    mean_curve: pd.DataFrame | None = None,
    *,
    title: str = "",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> matplotlib.figure.Figure:
    """Observed/expected ratio against the nominal level on a log x-axis.

    Individual repetitions are drawn over their stable range only. The dashed
    line at 1 marks exact type-I error control; points above it are liberal.
    """
    fig, ax = plt.subplots(figsize=style.figsize_calibration)
    for curve in curves:
        x, r = curve.stable_points()
        if x.size:
            ax.plot(
                x,
                r,
                color=style.rep_color,
                alpha=style.rep_alpha,
                linewidth=style.rep_linewidth,
            )
    if mean_curve is not None and not mean_curve.empty:
        ax.plot(
            mean_curve["expected"],
            mean_curve["mean_ratio"],
            color=style.mean_color,
            linewidth=style.mean_linewidth,
            label="mean over repetitions",
        )
        ax.legend(loc="best", frameon=False)
    ax.axhline(1.0, color=style.reference_color, linestyle="--", linewidth=1.0)
    ax.set_xscale("log")
    ax.set_xlabel("Expected proportion (nominal level)")
    ax.set_ylabel("Observed / expected")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    return fig


def plot_pvalue_histogram(
    pvalues: np.ndarray,
    *,
    title: str = "",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> matplotlib.figure.Figure:
    p = np.asarray(pvalues, dtype=float).ravel()
    fig, ax = plt.subplots(figsize=style.figsize_histogram)
    ax.hist(
        p,
        bins=style.hist_bins,
        range=(0.0, 1.0),
        density=True,
        color="steelblue",
        edgecolor="black",
        alpha=0.7,
    )
    ax.axhline(1.0, color=style.reference_color, linestyle="--", linewidth=1.0)
    ax.set_xlabel("p-value")
    ax.set_ylabel("Density")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    return fig
