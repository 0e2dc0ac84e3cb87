"""Plotting helpers for scenario outputs."""

from dbpitfalls.plotting.calibration import plot_calibration_curve, plot_pvalue_histogram
from dbpitfalls.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle, apply_plot_style
from dbpitfalls.plotting.utils import save_figure

__all__ = [
    "DEFAULT_PLOT_STYLE",
    "PlotStyle",
    "apply_plot_style",
    "plot_calibration_curve",
    "plot_pvalue_histogram",
    "save_figure",
]
