"""Run independent repetitions and aggregate the survivors."""

from __future__ import annotations

import logging
import time
from functools import partial
from typing import Any, Callable, Sequence

import numpy as np
import pandas as pd

from dbpitfalls.core.errors import DegenerateInput, TestFailure
from dbpitfalls.harness.contracts import RepetitionResult, RepetitionSpec, ScenarioSummary
from dbpitfalls.harness.parallel import parallel_map
from dbpitfalls.harness.seeding import rep_seeds
from dbpitfalls.stats.calibration import average_curves, summarize_reps

logger = logging.getLogger(__name__)

RepFn = Callable[[RepetitionSpec], RepetitionResult]


def make_specs(
    scenario: str, n_reps: int, master_seed: int, params: dict[str, Any] | None = None
) -> list[RepetitionSpec]:
    if int(n_reps) <= 0:
        raise DegenerateInput(f"n_reps must be positive, got {n_reps!r}.")
    return [
        RepetitionSpec(rep_id=i, seed=seed, params=dict(params or {}))
        for i, seed in enumerate(rep_seeds(master_seed, scenario, n_reps))
    ]


def _guarded(rep_fn: RepFn, spec: RepetitionSpec) -> RepetitionResult:
    t0 = time.time()
    try:
        res = rep_fn(spec)
    except (TestFailure, DegenerateInput) as exc:
        return RepetitionResult(
            rep_id=spec.rep_id,
            success=False,
            runtime_sec=time.time() - t0,
            error=f"{type(exc).__name__}: {exc}",
        )
    if not isinstance(res, RepetitionResult):
        raise TypeError("Repetition functions must return RepetitionResult.")
    res.runtime_sec = time.time() - t0
    return res


def run_repetitions(
    rep_fn: RepFn,
    specs: Sequence[RepetitionSpec],
    *,
    n_jobs: int = 1,
    backend: str = "loky",
) -> list[RepetitionResult]:
    """Execute repetitions; a failed test is recorded, not zero-filled.

    Only `TestFailure` and `DegenerateInput` are caught; any other error
    propagates.
    """
    results: list[RepetitionResult | None] = [None] * len(specs)
    outputs = parallel_map(partial(_guarded, rep_fn), specs, n_jobs=n_jobs, backend=backend)
    for i, res in enumerate(outputs):
        results[i] = res
        if not res.success:
            logger.warning("Repetition %d failed and is skipped: %s", res.rep_id, res.error)
        else:
            logger.info("Repetition %d done in %.2fs", res.rep_id, res.runtime_sec)
    return [r for r in results if r is not None]


def aggregate(
    scenario: str,
    results: Sequence[RepetitionResult],
    config: dict[str, Any] | None = None,
) -> ScenarioSummary:
    """Summaries across surviving repetitions, with the dropped count."""
    status = pd.DataFrame(
        [
            {
                "rep_id": r.rep_id,
                "success": bool(r.success),
                "runtime_sec": float(r.runtime_sec),
                "error": str(r.error or ""),
            }
            for r in results
        ]
    )
    ok = [r for r in results if r.success]
    n_failed = len(results) - len(ok)
    if not ok:
        raise DegenerateInput(f"All {len(results)} repetitions of '{scenario}' failed.")
    if n_failed:
        logger.warning("%s: %d of %d repetitions dropped", scenario, n_failed, len(results))

    per_rep = pd.DataFrame([{"rep_id": r.rep_id, **r.metrics} for r in ok])
    summary = summarize_reps(per_rep)

    curves = [r.curve for r in ok if r.curve is not None]
    calibration = pd.DataFrame()
    if curves:
        try:
            calibration = average_curves(curves)
        except DegenerateInput as exc:
            logger.warning("%s: calibration curve not reported: %s", scenario, exc)

    null_parts = [r.null_pvalues for r in ok if r.null_pvalues is not None]
    pooled = np.concatenate(null_parts) if null_parts else np.zeros(0)

    tables: dict[str, pd.DataFrame] = {}
    names = sorted({name for r in ok for name in r.tables})
    for name in names:
        parts = [r.tables[name].assign(rep_id=r.rep_id) for r in ok if name in r.tables]
        tables[name] = pd.concat(parts, ignore_index=True)

    return ScenarioSummary(
        scenario=scenario,
        per_rep=per_rep,
        summary=summary,
        calibration=calibration,
        status=status,
        tables=tables,
        n_reps=len(results),
        n_failed=n_failed,
        config=dict(config or {}),
        curves=curves,
        null_pvalues=pooled,
    )
