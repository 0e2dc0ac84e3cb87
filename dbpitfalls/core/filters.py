"""Count-based site filters that keep the top-k scoring rows."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.core.types import RetainedSet
from dbpitfalls.core.utils import as_count_matrix


def rank_descending(scores: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Row order by descending score, ties broken by a random key.

    Equivalent to a stable sort on (-score, key) pairs; `np.lexsort` uses the
    last key as the primary one.
    """
    s = np.asarray(scores, dtype=float).ravel()
    tie_key = rng.random(s.size)
    return np.lexsort((tie_key, -s))


@dataclass(frozen=True)
class SiteFilter:
    """Base filter; subclasses define `score`."""

    name: str = "base"

    def score(self, counts: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def select(self, counts: np.ndarray, k: int, rng: np.random.Generator) -> RetainedSet:
        mat = as_count_matrix(counts)
        n = int(mat.shape[0])
        k_i = int(k)
        if k_i <= 0:
            raise DegenerateInput(f"Filter '{self.name}' asked to retain {k} sites.")
        if k_i > n:
            raise InvalidParameter(f"Cannot retain {k_i} of {n} sites.")
        scores = np.asarray(self.score(mat), dtype=float)
        order = rank_descending(scores, rng)
        keep = np.sort(order[:k_i])
        return RetainedSet(index=keep, scores=scores, n_total=n, filter_name=self.name)

    def select_fraction(
        self, counts: np.ndarray, fraction: float, rng: np.random.Generator
    ) -> RetainedSet:
        frac = float(fraction)
        if not 0.0 < frac <= 1.0:
            raise InvalidParameter(f"fraction must be in (0, 1], got {fraction!r}.")
        n = int(np.asarray(counts).shape[0])
        return self.select(counts, max(1, int(round(frac * n))), rng)


@dataclass(frozen=True)
class SecondHighestFilter(SiteFilter):
    """Second-largest count per row; mimics "called as a peak in >= 2 libraries"."""

    name: str = "second_highest"

    def score(self, counts: np.ndarray) -> np.ndarray:
        mat = as_count_matrix(counts)
        if mat.shape[1] < 2:
            raise InvalidParameter("second_highest needs at least two libraries.")
        return np.sort(mat, axis=1)[:, -2].astype(float)


@dataclass(frozen=True)
class MaximumFilter(SiteFilter):
    """Largest count per row; the union of per-library peak calls."""

    name: str = "maximum"

    def score(self, counts: np.ndarray) -> np.ndarray:
        return as_count_matrix(counts).max(axis=1).astype(float)


@dataclass(frozen=True)
class MeanFilter(SiteFilter):
    """Average count across all libraries; independent of the group labels."""

    name: str = "mean"

    def score(self, counts: np.ndarray) -> np.ndarray:
        return as_count_matrix(counts).mean(axis=1)


FILTERS: dict[str, SiteFilter] = {
    f.name: f for f in (SecondHighestFilter(), MaximumFilter(), MeanFilter())
}
FILTERS["union"] = FILTERS["maximum"]


def get_filter(name: str) -> SiteFilter:
    key = str(name).strip().lower().replace("-", "_")
    if key not in FILTERS:
        raise InvalidParameter(
            f"Unknown filter '{name}'. Choose from: {', '.join(sorted(FILTERS))}."
        )
    return FILTERS[key]


def nonnull_fraction(retained: RetainedSet, is_null: np.ndarray) -> float:
    """Fraction of retained rows that are truly non-null."""
    truth = np.asarray(is_null, dtype=bool).ravel()
    if truth.size != retained.n_total:
        raise InvalidParameter("is_null length does not match the filtered matrix.")
    if len(retained) == 0:
        raise DegenerateInput("No retained sites.")
    return float(np.mean(~truth[retained.index]))
