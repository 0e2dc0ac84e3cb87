from __future__ import annotations

import os

os.environ.setdefault("MPLCONFIGDIR", "/tmp/mpl-test")

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd

from dbpitfalls.plotting import plot_calibration_curve, plot_pvalue_histogram, save_figure
from dbpitfalls.stats.calibration import average_curves, calibration_curve


def test_calibration_plot_draws_reps_mean_and_reference(tmp_path):
    rng = np.random.default_rng(0)
    curves = [calibration_curve(rng.uniform(size=2000)) for _ in range(2)]
    fig = plot_calibration_curve(curves, average_curves(curves), title="demo")
    ax = fig.axes[0]
    assert ax.get_xscale() == "log"
    # two repetitions + mean curve + reference line at one
    assert len(ax.lines) == 4
    out = tmp_path / "figs" / "calibration.png"
    save_figure(fig, out)
    assert out.exists() and out.stat().st_size > 0


def test_histogram_and_empty_mean_curve(tmp_path):
    fig = plot_calibration_curve([], pd.DataFrame())
    assert len(fig.axes[0].lines) == 1
    save_figure(fig, tmp_path / "empty.png")

    fig = plot_pvalue_histogram(np.random.default_rng(1).uniform(size=500), title="null")
    assert fig.axes[0].get_title() == "null"
    save_figure(fig, tmp_path / "hist.png", bbox_tight=True)
    assert (tmp_path / "hist.png").exists()
