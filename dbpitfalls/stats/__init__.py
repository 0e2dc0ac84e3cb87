"""Statistical utilities for dbpitfalls."""

from dbpitfalls.stats.calibration import (
    average_curves,
    calibration_curve,
    rejection_rate,
    summarize_reps,
    threshold_summary,
)
from dbpitfalls.stats.fdr import bh_fdr, empirical_sign_fdr, true_fdp
from dbpitfalls.stats.glm import DifferentialTester, QLFTester, estimate_common_dispersion
from dbpitfalls.stats.glm_statsmodels import StatsmodelsQLTester
from dbpitfalls.stats.normalization import calc_norm_factors_tmm
from dbpitfalls.stats.testers import TESTERS, get_tester

__all__ = [
    "DifferentialTester",
    "QLFTester",
    "StatsmodelsQLTester",
    "TESTERS",
    "average_curves",
    "bh_fdr",
    "calc_norm_factors_tmm",
    "calibration_curve",
    "empirical_sign_fdr",
    "estimate_common_dispersion",
    "get_tester",
    "rejection_rate",
    "summarize_reps",
    "threshold_summary",
    "true_fdp",
]
