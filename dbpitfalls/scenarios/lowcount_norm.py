"""TMM normalization when most sites have very few reads.

A block of sites is boosted in one group, shifting library composition. At
high counts TMM recovers the composition factors; at low counts most M-values
are undefined (zero in one library) or tied, so trimming no longer removes
the boosted sites and the factors drift toward plain library-size scaling.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from dbpitfalls.core.errors import InvalidParameter
from dbpitfalls.core.simulate import simulate_spiked
from dbpitfalls.harness.contracts import RepetitionResult, RepetitionSpec, ScenarioSummary
from dbpitfalls.harness.seeding import rng_from_seed
from dbpitfalls.scenarios._common import pvalue_metrics, run_scenario, two_group_design
from dbpitfalls.stats.calibration import calibration_curve
from dbpitfalls.stats.glm import DifferentialTester
from dbpitfalls.stats.normalization import calc_norm_factors_tmm

NAME = "lowcount_norm"


@dataclass(frozen=True)
class LowCountNormConfig:
    n_sites: int = 20000
    n_per_group: int = 2
    mean: float = 1.0
    prop_spiked: float = 0.05
    spike_fold: float = 5.0
    dispersion: float = 0.01
    logratio_trim: float = 0.3
    sum_trim: float = 0.05
    run_test: bool = False
    n_reps: int = 10
    seed: int = 42

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.prop_spiked) < 1.0:
            raise InvalidParameter("prop_spiked must be in [0, 1).")
        if float(self.mean) <= 0.0:
            raise InvalidParameter("mean must be positive.")


def run_lowcount_norm_rep(
    spec: RepetitionSpec,
    *,
    config: LowCountNormConfig,
    tester: DifferentialTester,
) -> RepetitionResult:
    rng = rng_from_seed(spec.seed)
    design = two_group_design(config.n_per_group, config.n_per_group)
    sim = simulate_spiked(
        design=design,
        n_sites=config.n_sites,
        mean=config.mean,
        n_spiked=int(round(config.prop_spiked * config.n_sites)),
        spike_fold=config.spike_fold,
        dispersion=config.dispersion,
        rng=rng,
    )
    est = calc_norm_factors_tmm(
        sim.counts, logratio_trim=config.logratio_trim, sum_trim=config.sum_trim
    )
    truth = np.asarray(sim.true_norm_factors, dtype=float)
    err = np.log2(est / truth)

    metrics: dict[str, float] = {
        "mean_abs_log2_error": float(np.mean(np.abs(err))),
        "max_abs_log2_error": float(np.max(np.abs(err))),
        "zero_fraction": float(np.mean(sim.counts == 0)),
    }
    factors = pd.DataFrame(
        {
            "library": np.arange(design.n_libs),
            "group": list(design.groups),
            "true_factor": truth,
            "tmm_factor": est,
            "log2_error": err,
        }
    )

    curve = None
    null_p = nonnull_p = None
    if config.run_test:
        result = tester.test(sim.counts, design, norm_factors=est)
        null_p = result.pvalues[sim.is_null]
        nonnull_p = result.pvalues[~sim.is_null]
        curve = calibration_curve(null_p)
        metrics["common_dispersion"] = float(result.common_dispersion)
        metrics.update(pvalue_metrics(null_p, nonnull_p))

    return RepetitionResult(
        rep_id=spec.rep_id,
        success=True,
        runtime_sec=0.0,
        metrics=metrics,
        null_pvalues=null_p,
        nonnull_pvalues=nonnull_p,
        curve=curve,
        tables={"norm_factors": factors},
    )


def run_lowcount_norm(
    config: LowCountNormConfig | None = None,
    *,
    tester: DifferentialTester | None = None,
    n_jobs: int = 1,
    backend: str = "loky",
) -> ScenarioSummary:
    cfg = config or LowCountNormConfig()
    return run_scenario(NAME, run_lowcount_norm_rep, cfg, tester=tester, n_jobs=n_jobs, backend=backend)
