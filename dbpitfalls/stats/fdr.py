"""False discovery rate estimators: Benjamini-Hochberg and a sign-based empirical FDR."""

from __future__ import annotations

import numpy as np

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.core.utils import pvalue_1d


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    arr = np.asarray(pvals, dtype=float)
    flat = arr.ravel()
    q = np.ones_like(flat)
    finite = np.isfinite(flat)
    if np.any((flat[finite] < 0.0) | (flat[finite] > 1.0)):
        raise InvalidParameter("p-values must be in [0,1] or NaN.")
    if np.any(finite):
        p = flat[finite]
        m = int(p.size)
        order = np.argsort(p, kind="mergesort")
        ranked = p[order]
        ranks = np.arange(1, m + 1, dtype=float)
        adj = ranked * (float(m) / ranks)
        adj = np.minimum.accumulate(adj[::-1])[::-1]
        adj = np.clip(adj, 0.0, 1.0)
        q_valid = np.empty_like(adj)
        q_valid[order] = adj
        q[finite] = q_valid
    return q.reshape(arr.shape)


def empirical_sign_fdr(pvalues: np.ndarray, signs: np.ndarray) -> np.ndarray:
    """FDR estimated from wrong-direction rejections, one value per p-value.

    At threshold t = p_i the estimate is
    #(sign < 0, p <= t) / #(sign > 0, p <= t), capped at 1 (and 1 when no
    right-direction site is rejected). A cumulative minimum taken from the
    largest p-value downward makes the estimate non-increasing as the
    threshold tightens. p-values equal to 1 are assigned FDR 1.

    Signs of zero count as neither direction.
    """
    p = pvalue_1d("pvalues", pvalues)
    s = np.sign(np.asarray(signs, dtype=float).ravel())
    if s.size != p.size:
        raise InvalidParameter(f"signs has {s.size} entries but pvalues has {p.size}.")
    if p.size == 0:
        raise DegenerateInput("No p-values to estimate FDR from.")

    order = np.argsort(p, kind="mergesort")
    p_sorted = p[order]
    right = np.cumsum(s[order] > 0)
    wrong = np.cumsum(s[order] < 0)
    # ties share the counts at their last position
    last = np.searchsorted(p_sorted, p_sorted, side="right") - 1
    right = right[last].astype(float)
    wrong = wrong[last].astype(float)

    with np.errstate(divide="ignore", invalid="ignore"):
        est = np.where(right > 0, wrong / right, 1.0)
    est = np.minimum(est, 1.0)
    est[p_sorted >= 1.0] = 1.0
    est = np.minimum.accumulate(est[::-1])[::-1]

    out = np.empty_like(est)
    out[order] = est
    return out


def true_fdp(pvalues: np.ndarray, is_null: np.ndarray, threshold: float) -> float:
    """Realised false discovery proportion among p-values <= threshold."""
    p = pvalue_1d("pvalues", pvalues)
    truth = np.asarray(is_null, dtype=bool).ravel()
    if truth.size != p.size:
        raise InvalidParameter("is_null length does not match pvalues.")
    rejected = p <= float(threshold)
    n_rej = int(rejected.sum())
    if n_rej == 0:
        return 0.0
    return float(np.sum(rejected & truth) / n_rej)
