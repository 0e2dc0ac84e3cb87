"""Trimmed mean of M-values (TMM) normalization factors."""

from __future__ import annotations

import numpy as np
from scipy.stats import rankdata

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.core.utils import as_count_matrix


def upper_quartile_reference(counts: np.ndarray, lib_sizes: np.ndarray) -> int:
    """Library whose upper-quartile proportion is closest to the mean one."""
    props = counts / lib_sizes[None, :]
    f75 = np.quantile(props, 0.75, axis=0)
    return int(np.argmin(np.abs(f75 - np.mean(f75))))


def tmm_factor(
    obs: np.ndarray,
    ref: np.ndarray,
    lib_obs: float,
    lib_ref: float,
    *,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    weighted: bool = True,
) -> float:
    """TMM scaling factor of one library against a reference library."""
    o = np.asarray(obs, dtype=float)
    r = np.asarray(ref, dtype=float)
    n_o = float(lib_obs)
    n_r = float(lib_ref)

    with np.errstate(divide="ignore", invalid="ignore"):
        log_r = np.log2((o / n_o) / (r / n_r))
        abs_e = (np.log2(o / n_o) + np.log2(r / n_r)) / 2.0
        var = (n_o - o) / n_o / o + (n_r - r) / n_r / r

    fin = np.isfinite(log_r) & np.isfinite(abs_e)
    log_r, abs_e, var = log_r[fin], abs_e[fin], var[fin]
    if log_r.size == 0:
        raise DegenerateInput("No sites with non-zero counts in both libraries.")
    if np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = log_r.size
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s
    rank_r = rankdata(log_r)
    rank_e = rankdata(abs_e)
    keep = (rank_r >= lo_l) & (rank_r <= hi_l) & (rank_e >= lo_s) & (rank_e <= hi_s)
    if not np.any(keep):
        return 1.0

    if weighted:
        f = np.sum(log_r[keep] / var[keep]) / np.sum(1.0 / var[keep])
    else:
        f = np.mean(log_r[keep])
    if not np.isfinite(f):
        f = 0.0
    return float(2.0**f)


def calc_norm_factors_tmm(
    counts: np.ndarray,
    lib_sizes: np.ndarray | None = None,
    *,
    ref_column: int | None = None,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    weighted: bool = True,
) -> np.ndarray:
    """TMM normalization factors for every library, geometric mean one."""
    mat = as_count_matrix(counts).astype(float)
    n_libs = mat.shape[1]
    lib = mat.sum(axis=0) if lib_sizes is None else np.asarray(lib_sizes, dtype=float).ravel()
    if lib.size != n_libs:
        raise InvalidParameter("lib_sizes must have one entry per library.")
    if np.any(lib <= 0):
        raise DegenerateInput("Every library needs at least one read.")
    if not (0.0 <= logratio_trim < 0.5 and 0.0 <= sum_trim < 0.5):
        raise InvalidParameter("Trim fractions must lie in [0, 0.5).")

    ref = upper_quartile_reference(mat, lib) if ref_column is None else int(ref_column)
    if ref < 0 or ref >= n_libs:
        raise InvalidParameter(f"ref_column {ref_column!r} is out of range.")

    factors = np.array(
        [
            tmm_factor(
                mat[:, j],
                mat[:, ref],
                lib[j],
                lib[ref],
                logratio_trim=logratio_trim,
                sum_trim=sum_trim,
                weighted=weighted,
            )
            for j in range(n_libs)
        ]
    )
    return factors / np.exp(np.mean(np.log(factors)))
