"""Shared plotting style settings for deterministic figure outputs."""

from __future__ import annotations

from dataclasses import dataclass

import matplotlib.pyplot as plt


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults used across scenario figures."""

    dpi: int = 200
    figsize_calibration: tuple[float, float] = (5.5, 4.5)
    figsize_histogram: tuple[float, float] = (5.0, 4.0)
    rep_color: str = "0.65"
    rep_alpha: float = 0.6
    rep_linewidth: float = 0.8
    mean_color: str = "black"
    mean_linewidth: float = 1.8
    reference_color: str = "red"
    hist_bins: int = 40
    legend_fontsize: int = 8
    axis_label_fontsize: int = 10
    title_fontsize: int = 11


DEFAULT_PLOT_STYLE = PlotStyle()


def apply_plot_style(style: PlotStyle = DEFAULT_PLOT_STYLE) -> None:
    """Apply deterministic matplotlib rcParams for scenario plots."""
    plt.rcParams.update(
        {
            "figure.dpi": style.dpi,
            "savefig.dpi": style.dpi,
            "savefig.facecolor": "white",
            "font.family": "DejaVu Sans",
            "axes.titlesize": style.title_fontsize,
            "axes.labelsize": style.axis_label_fontsize,
            "legend.fontsize": style.legend_fontsize,
            "axes.grid": False,
        }
    )
