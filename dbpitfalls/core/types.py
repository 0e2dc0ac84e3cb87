"""Typed containers for simulated counts, designs and evaluation results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
import pandas as pd

from dbpitfalls.core.errors import InvalidParameter


def _levels(values: Sequence[Any]) -> list[Any]:
    # first-appearance order, so the first group is the reference level
    seen: list[Any] = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


@dataclass(frozen=True)
class Design:
    """Assignment of libraries to groups (and optionally to blocks).

    The first group level is the reference; the test drops every group
    coefficient, i.e. it is a one-way ANOVA-style test that reduces to a
    two-group comparison when there are two levels.
    """

    groups: tuple[Any, ...]
    blocks: tuple[Any, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", tuple(self.groups))
        if self.blocks is not None:
            object.__setattr__(self, "blocks", tuple(self.blocks))
            if len(self.blocks) != len(self.groups):
                raise InvalidParameter(
                    f"blocks has {len(self.blocks)} entries but groups has {len(self.groups)}."
                )
        if len(self.groups) == 0:
            raise InvalidParameter("Design needs at least one library.")
        if len(_levels(self.groups)) < 2:
            raise InvalidParameter("Design needs at least two groups to compare.")

    @classmethod
    def two_group(cls, n_first: int, n_second: int) -> "Design":
        if int(n_first) <= 0 or int(n_second) <= 0:
            raise InvalidParameter("Both groups need at least one library.")
        return cls(groups=tuple(["A"] * int(n_first) + ["B"] * int(n_second)))

    @property
    def n_libs(self) -> int:
        return len(self.groups)

    @property
    def group_levels(self) -> list[Any]:
        return _levels(self.groups)

    def group_index(self) -> np.ndarray:
        levels = self.group_levels
        return np.array([levels.index(g) for g in self.groups], dtype=int)

    def matrix(self) -> np.ndarray:
        """Full-rank design matrix: intercept, group effects, block effects."""
        cols = [np.ones(self.n_libs, dtype=float)]
        for level in self.group_levels[1:]:
            cols.append(np.array([g == level for g in self.groups], dtype=float))
        if self.blocks is not None:
            for level in _levels(self.blocks)[1:]:
                cols.append(np.array([b == level for b in self.blocks], dtype=float))
        X = np.column_stack(cols)
        if np.linalg.matrix_rank(X) < X.shape[1]:
            raise InvalidParameter("Design matrix is not of full rank.")
        if X.shape[1] >= self.n_libs:
            raise InvalidParameter("Design leaves no residual degrees of freedom.")
        return X

    def tested_coefficients(self) -> list[int]:
        return list(range(1, len(self.group_levels)))


@dataclass(frozen=True)
class SimulatedCounts:
    """A sites x libraries count matrix with its ground truth.

    `is_null` is for evaluation only; filters and testers take `counts`.
    """

    counts: np.ndarray
    is_null: np.ndarray
    design: Design
    spiked: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=int))
    true_norm_factors: np.ndarray | None = None
    control: np.ndarray | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def n_sites(self) -> int:
        return int(self.counts.shape[0])

    @property
    def n_libs(self) -> int:
        return int(self.counts.shape[1])

    @property
    def null_index(self) -> np.ndarray:
        return np.flatnonzero(self.is_null)

    @property
    def nonnull_index(self) -> np.ndarray:
        return np.flatnonzero(~self.is_null)

    @property
    def prop_nonnull(self) -> float:
        return float(np.mean(~self.is_null))


@dataclass(frozen=True)
class RetainedSet:
    """Rows kept by a site filter, in ascending row order."""

    index: np.ndarray
    scores: np.ndarray
    n_total: int
    filter_name: str = ""

    def __len__(self) -> int:
        return int(self.index.size)

    @property
    def mask(self) -> np.ndarray:
        out = np.zeros(int(self.n_total), dtype=bool)
        out[self.index] = True
        return out


@dataclass(frozen=True)
class TestResult:
    """Output of a differential test, aligned to the input rows."""

    __test__ = False

    pvalues: np.ndarray
    logfc: np.ndarray
    common_dispersion: float
    prior_df: float = float("nan")
    ql_prior: float = float("nan")
    f_stat: np.ndarray | None = None

    def __len__(self) -> int:
        return int(self.pvalues.size)


@dataclass(frozen=True)
class CalibrationCurve:
    """Observed / expected rejection proportions of null p-values.

    - `expected`: nominal levels (i - 0.5) / m.
    - `n_below`: number of p-values strictly below each nominal level.
    - `stable`: points with at least `min_count` p-values below the level.
    """

    expected: np.ndarray
    observed: np.ndarray
    n_below: np.ndarray
    ratio: np.ndarray
    stable: np.ndarray
    min_count: int = 20

    @property
    def m(self) -> int:
        return int(self.expected.size)

    def stable_points(self) -> tuple[np.ndarray, np.ndarray]:
        return self.expected[self.stable], self.ratio[self.stable]

    def to_frame(self, stable_only: bool = True) -> pd.DataFrame:
        df = pd.DataFrame(
            {
                "expected": self.expected,
                "observed": self.observed,
                "n_below": self.n_below,
                "ratio": self.ratio,
                "stable": self.stable,
            }
        )
        if stable_only:
            df = df.loc[df["stable"]].reset_index(drop=True)
        return df
