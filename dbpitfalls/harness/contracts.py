"""Per-repetition specs and results shared by every scenario."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from dbpitfalls.core.types import CalibrationCurve


@dataclass(frozen=True)
class RepetitionSpec:
    rep_id: int
    seed: int
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class RepetitionResult:
    rep_id: int
    success: bool
    runtime_sec: float
    metrics: dict[str, Any] = field(default_factory=dict)
    null_pvalues: np.ndarray | None = None
    nonnull_pvalues: np.ndarray | None = None
    curve: CalibrationCurve | None = None
    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    error: str | None = None


@dataclass
class ScenarioSummary:
    """Aggregated output of one scenario run.

    - `per_rep`: one row of metrics per surviving repetition.
    - `summary`: min/median/max/mean of each metric across repetitions.
    - `calibration`: mean calibration ratio over a shared grid (may be empty).
    - `curves`, `null_pvalues`: per-repetition curves and pooled null p-values
      kept for plotting.
    """

    scenario: str
    per_rep: pd.DataFrame
    summary: pd.DataFrame
    calibration: pd.DataFrame = field(default_factory=pd.DataFrame)
    status: pd.DataFrame = field(default_factory=pd.DataFrame)
    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    n_reps: int = 0
    n_failed: int = 0
    config: dict[str, Any] = field(default_factory=dict)
    curves: list[CalibrationCurve] = field(default_factory=list)
    null_pvalues: np.ndarray = field(default_factory=lambda: np.zeros(0))
