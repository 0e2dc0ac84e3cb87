"""Ad hoc peak-selection filters and type-I error control.

Sites are ranked by a count-based score and only the top `keep_fraction` are
tested. Scores that look at individual libraries (second-highest count,
maximum count) enrich for differential sites. The maximum count also favours
null rows with one outlying library; the common dispersion estimated from the
retained rows is inflated and the test becomes conservative. The mean count
is blind to a balanced effect: with `balanced=True` the non-null rows get a
dispersion that gives their row sums the null mean and variance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.core.filters import get_filter, nonnull_fraction
from dbpitfalls.core.simulate import group_means, matched_dispersion, simulate_counts
from dbpitfalls.core.types import RetainedSet
from dbpitfalls.harness.contracts import RepetitionResult, RepetitionSpec, ScenarioSummary
from dbpitfalls.harness.seeding import rng_from_seed
from dbpitfalls.scenarios._common import pvalue_metrics, run_scenario, two_group_design
from dbpitfalls.stats.calibration import calibration_curve
from dbpitfalls.stats.glm import DifferentialTester

logger = logging.getLogger(__name__)

NAME = "peak_selection"


@dataclass(frozen=True)
class PeakSelectionConfig:
    n_sites: int = 20000
    n_per_group: int = 2
    base_mean: float = 20.0
    dispersion: float = 0.05
    prop_nonnull: float = 0.0
    fold_change: float = 3.0
    balanced: bool = False
    filter: str = "second_highest"
    keep_fraction: float = 0.1
    n_reps: int = 10
    seed: int = 42

    def __post_init__(self) -> None:
        if self.filter != "none":
            get_filter(self.filter)
        if not 0.0 < float(self.keep_fraction) <= 1.0:
            raise InvalidParameter("keep_fraction must be in (0, 1].")
        if float(self.fold_change) <= 0.0:
            raise InvalidParameter("fold_change must be positive.")


def nonnull_group_means(config: PeakSelectionConfig) -> list[float]:
    """Group means for differential sites.

    Unbalanced: the second group is `fold_change` times the baseline.
    Balanced: the groups straddle the baseline so the average count is unchanged.
    """
    base = float(config.base_mean)
    fc = float(config.fold_change)
    if config.balanced:
        return [2.0 * base / (1.0 + fc), 2.0 * base * fc / (1.0 + fc)]
    return [base, base * fc]


def nonnull_dispersion(config: PeakSelectionConfig) -> float:
    """Dispersion of differential sites; matched to the null row variance when balanced."""
    if not config.balanced:
        return float(config.dispersion)
    means = nonnull_group_means(config) * int(config.n_per_group)
    return matched_dispersion(config.base_mean, config.dispersion, means)


def select_sites(counts: np.ndarray, config: PeakSelectionConfig, rng: np.random.Generator) -> RetainedSet:
    n = int(counts.shape[0])
    if config.filter == "none":
        return RetainedSet(
            index=np.arange(n), scores=np.zeros(n), n_total=n, filter_name="none"
        )
    return get_filter(config.filter).select_fraction(counts, config.keep_fraction, rng)


def run_peak_selection_rep(
    spec: RepetitionSpec,
    *,
    config: PeakSelectionConfig,
    tester: DifferentialTester,
) -> RepetitionResult:
    rng = rng_from_seed(spec.seed)
    design = two_group_design(config.n_per_group, config.n_per_group)
    sim = simulate_counts(
        design=design,
        n_sites=config.n_sites,
        prop_nonnull=config.prop_nonnull,
        null_means=config.base_mean,
        nonnull_means=group_means(design, nonnull_group_means(config)),
        dispersion=config.dispersion,
        nonnull_dispersion=nonnull_dispersion(config),
        rng=rng,
    )
    retained = select_sites(sim.counts, config, rng)
    if len(retained) == 0:
        raise DegenerateInput("Filter retained no sites.")

    result = tester.test(
        sim.counts[retained.index],
        design,
        lib_sizes=sim.counts.sum(axis=0),
    )
    truth = sim.is_null[retained.index]
    null_p = result.pvalues[truth]
    nonnull_p = result.pvalues[~truth]
    if null_p.size == 0:
        raise DegenerateInput("No null sites among the retained rows.")
    curve = calibration_curve(null_p)

    x_stable, r_stable = curve.stable_points()
    metrics = {
        "n_retained": len(retained),
        "nonnull_fraction": nonnull_fraction(retained, sim.is_null),
        "common_dispersion": float(result.common_dispersion),
        "prior_df": float(result.prior_df),
        "max_stable_ratio": float(np.max(r_stable)) if r_stable.size else float("nan"),
        "min_stable_expected": float(x_stable[0]) if x_stable.size else float("nan"),
        **pvalue_metrics(null_p, nonnull_p),
    }
    return RepetitionResult(
        rep_id=spec.rep_id,
        success=True,
        runtime_sec=0.0,
        metrics=metrics,
        null_pvalues=null_p,
        nonnull_pvalues=nonnull_p,
        curve=curve,
    )


def run_peak_selection(
    config: PeakSelectionConfig | None = None,
    *,
    tester: DifferentialTester | None = None,
    n_jobs: int = 1,
    backend: str = "loky",
) -> ScenarioSummary:
    cfg = config or PeakSelectionConfig()
    return run_scenario(NAME, run_peak_selection_rep, cfg, tester=tester, n_jobs=n_jobs, backend=backend)
