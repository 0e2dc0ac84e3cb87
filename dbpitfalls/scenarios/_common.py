"""Helpers shared by the scenario runners."""

from __future__ import annotations

import logging
from dataclasses import asdict
from functools import partial
from typing import Any, Callable, Sequence

import numpy as np

from dbpitfalls.core.errors import InvalidParameter
from dbpitfalls.core.types import Design
from dbpitfalls.harness.contracts import RepetitionResult, RepetitionSpec, ScenarioSummary
from dbpitfalls.harness.runner import aggregate, make_specs, run_repetitions
from dbpitfalls.stats.calibration import DEFAULT_ALPHAS, rejection_rate
from dbpitfalls.stats.glm import DifferentialTester, QLFTester

logger = logging.getLogger(__name__)


def two_group_design(n_first: int, n_second: int, labels: tuple[str, str] = ("A", "B")) -> Design:
    if int(n_first) <= 0 or int(n_second) <= 0:
        raise InvalidParameter("Each group needs at least one library.")
    return Design(groups=tuple([labels[0]] * int(n_first) + [labels[1]] * int(n_second)))


def pvalue_metrics(
    null_p: np.ndarray,
    nonnull_p: np.ndarray,
    alphas: Sequence[float] = DEFAULT_ALPHAS,
    prefix: str = "",
) -> dict[str, float]:
    """Type-I error at each cutoff for nulls and power for non-nulls.

    Columns are only emitted for the site classes that are present.
    """
    out: dict[str, float] = {}
    for a in alphas:
        if null_p.size:
            out[f"{prefix}error_{float(a):g}"] = rejection_rate(null_p, a)
        if nonnull_p.size:
            out[f"{prefix}power_{float(a):g}"] = rejection_rate(nonnull_p, a)
    return out


def run_scenario(
    name: str,
    rep_fn: Callable[..., RepetitionResult],
    config: Any,
    *,
    tester: DifferentialTester | None = None,
    n_jobs: int = 1,
    backend: str = "loky",
) -> ScenarioSummary:
    """Seed, run and aggregate `config.n_reps` repetitions of a scenario."""
    specs: list[RepetitionSpec] = make_specs(name, config.n_reps, config.seed)
    logger.info("%s: %d repetitions, master seed %d", name, len(specs), int(config.seed))
    bound = partial(rep_fn, config=config, tester=tester or QLFTester())
    results = run_repetitions(bound, specs, n_jobs=n_jobs, backend=backend)
    return aggregate(name, results, config=asdict(config))
