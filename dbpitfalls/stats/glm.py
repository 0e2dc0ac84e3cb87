"""Negative-binomial GLMs with quasi-likelihood F-tests.

All sites are fitted at once: IRLS is vectorised over rows with batched
``numpy.linalg.solve``. The NB dispersion is a single common value chosen by
maximising the Cox-Reid adjusted profile likelihood; per-site quasi-likelihood
dispersions (residual deviance / residual df) are squeezed towards a common
prior with a scaled-F empirical Bayes fit before the F-test. Libraries whose
count and fitted value are both zero do not count towards a row's residual df.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Protocol

import numpy as np
from scipy import stats
from scipy.optimize import minimize_scalar
from scipy.special import digamma, gammaln, polygamma

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter, TestFailure
from dbpitfalls.core.types import Design, TestResult
from dbpitfalls.core.utils import as_count_matrix

logger = logging.getLogger(__name__)

LOG_MU_MIN = -30.0
LOG_MU_MAX = 30.0
DISPERSION_BOUNDS = (1e-4, 10.0)


class DifferentialTester(Protocol):
    def test(
        self,
        counts: np.ndarray,
        design: Design,
        *,
        lib_sizes: np.ndarray | None = None,
        norm_factors: np.ndarray | None = None,
    ) -> TestResult: ...


@dataclass(frozen=True)
class GLMFit:
    beta: np.ndarray
    mu: np.ndarray
    deviance: np.ndarray
    converged: np.ndarray
    n_iter: int


def nb_unit_deviance(y: np.ndarray, mu: np.ndarray, dispersion: float) -> np.ndarray:
    y = np.asarray(y, dtype=float)
    mu = np.asarray(mu, dtype=float)
    ylogy = np.where(y > 0, y * np.log(np.where(y > 0, y, 1.0) / mu), 0.0)
    if dispersion <= 0.0:
        dev = 2.0 * (ylogy - (y - mu))
    else:
        phi = float(dispersion)
        dev = 2.0 * (ylogy - (y + 1.0 / phi) * np.log1p(phi * y) + (y + 1.0 / phi) * np.log1p(phi * mu))
    return np.maximum(dev, 0.0)


def nb_loglik(y: np.ndarray, mu: np.ndarray, dispersion: float) -> np.ndarray:
    y = np.asarray(y, dtype=float)
    mu = np.asarray(mu, dtype=float)
    if dispersion <= 0.0:
        return y * np.log(mu) - mu - gammaln(y + 1.0)
    r = 1.0 / float(dispersion)
    return (
        gammaln(y + r)
        - gammaln(r)
        - gammaln(y + 1.0)
        + r * np.log(r / (r + mu))
        + y * np.log(mu / (r + mu))
    )


def _offsets(
    y: np.ndarray, lib_sizes: np.ndarray | None, norm_factors: np.ndarray | None
) -> np.ndarray:
    n_libs = y.shape[1]
    lib = y.sum(axis=0).astype(float) if lib_sizes is None else np.asarray(lib_sizes, dtype=float).ravel()
    nf = np.ones(n_libs) if norm_factors is None else np.asarray(norm_factors, dtype=float).ravel()
    if lib.size != n_libs or nf.size != n_libs:
        raise InvalidParameter("lib_sizes and norm_factors must have one entry per library.")
    eff = lib * nf
    if not np.all(np.isfinite(eff)) or np.any(eff <= 0):
        raise DegenerateInput("Every library needs a positive effective library size.")
    return np.log(eff)


def fit_nb_glm(
    y: np.ndarray,
    X: np.ndarray,
    offset: np.ndarray,
    dispersion: float,
    *,
    max_iter: int = 50,
    tol: float = 1e-8,
) -> GLMFit:
    """Fit one NB GLM per row of `y` by iteratively reweighted least squares."""
    Y = np.asarray(y, dtype=float)
    Xm = np.asarray(X, dtype=float)
    off = np.asarray(offset, dtype=float)
    n_rows, n_libs = Y.shape
    if Xm.shape[0] != n_libs:
        raise InvalidParameter("Design matrix rows must match library count.")
    phi = float(dispersion)

    beta = (np.log(Y + 0.5) - off) @ np.linalg.pinv(Xm).T
    eta = np.clip(beta @ Xm.T + off, LOG_MU_MIN, LOG_MU_MAX)
    mu = np.exp(eta)
    dev = nb_unit_deviance(Y, mu, phi).sum(axis=1)
    converged = np.zeros(n_rows, dtype=bool)

    it = 0
    for it in range(1, int(max_iter) + 1):
        w = np.maximum(mu / (1.0 + phi * mu), 1e-10)
        z = eta - off + (Y - mu) / mu
        xtwx = np.einsum("ij,gi,ik->gjk", Xm, w, Xm)
        xtwz = np.einsum("ij,gi->gj", Xm, w * z)
        try:
            beta = np.linalg.solve(xtwx, xtwz[..., None])[..., 0]
        except np.linalg.LinAlgError as exc:
            raise TestFailure(f"IRLS normal equations are singular: {exc}") from exc
        eta = np.clip(beta @ Xm.T + off, LOG_MU_MIN, LOG_MU_MAX)
        mu = np.exp(eta)
        dev_new = nb_unit_deviance(Y, mu, phi).sum(axis=1)
        converged = np.abs(dev_new - dev) <= tol * (np.abs(dev_new) + 0.1)
        dev = dev_new
        if converged.all():
            break

    if not (np.all(np.isfinite(beta)) and np.all(np.isfinite(dev))):
        raise TestFailure("NB GLM fit produced non-finite coefficients or deviances.")
    return GLMFit(beta=beta, mu=mu, deviance=dev, converged=converged, n_iter=it)


def adjusted_profile_loglik(
    y: np.ndarray, X: np.ndarray, offset: np.ndarray, dispersion: float
) -> float:
    """Summed Cox-Reid adjusted profile log-likelihood at a given dispersion."""
    fit = fit_nb_glm(y, X, offset, dispersion, max_iter=30, tol=1e-6)
    ll = nb_loglik(y, fit.mu, dispersion).sum(axis=1)
    w = fit.mu / (1.0 + dispersion * fit.mu)
    info = np.einsum("ij,gi,ik->gjk", X, w, X)
    _, logdet = np.linalg.slogdet(info)
    return float(np.sum(ll - 0.5 * logdet))


def estimate_common_dispersion(
    y: np.ndarray,
    X: np.ndarray,
    offset: np.ndarray,
    bounds: tuple[float, float] = DISPERSION_BOUNDS,
) -> float:
    Y = np.asarray(y, dtype=float)
    if Y.shape[0] == 0:
        raise DegenerateInput("No non-zero rows to estimate the dispersion from.")
    lo, hi = np.log(bounds[0]), np.log(bounds[1])
    res = minimize_scalar(
        lambda logd: -adjusted_profile_loglik(Y, X, offset, float(np.exp(logd))),
        bounds=(lo, hi),
        method="bounded",
        options={"xatol": 1e-4},
    )
    if not res.success or not np.isfinite(res.x):
        raise TestFailure(f"Common dispersion estimation failed: {res.message}")
    disp = float(np.exp(res.x))
    if res.x - lo < 1e-3 or hi - res.x < 1e-3:
        warnings.warn(
            f"Common dispersion {disp:.3g} is at the search bound {bounds}.",
            RuntimeWarning,
            stacklevel=2,
        )
    return disp


def trigamma_inverse(x: float) -> float:
    """Solve trigamma(y) = x by Newton's method (as in limma)."""
    val = float(x)
    if val > 1e7:
        return 1.0 / np.sqrt(val)
    if val < 1e-6:
        return 1.0 / val
    y = 0.5 + 1.0 / val
    for _ in range(50):
        tri = float(polygamma(1, y))
        dif = tri * (1.0 - tri / val) / float(polygamma(2, y))
        y += dif
        if -dif / y < 1e-8:
            break
    return float(y)


def zero_fit_residual_df(
    y: np.ndarray, mu: np.ndarray, X: np.ndarray, tol: float = 1e-4
) -> np.ndarray:
    """Residual df per row after dropping libraries whose count and fit are both zero.

    A group observed only as zeros is fitted exactly, so its libraries carry no
    information about the quasi-likelihood dispersion.
    """
    Xm = np.asarray(X, dtype=float)
    n_libs, n_coef = Xm.shape
    zero = (np.asarray(y) < tol) & (np.asarray(mu) < tol)
    df = np.full(zero.shape[0], float(n_libs - n_coef))
    rows = np.flatnonzero(zero.any(axis=1))
    if rows.size == 0:
        return df
    patterns, inverse = np.unique(zero[rows], axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    for i, pattern in enumerate(patterns):
        keep = ~pattern
        n_keep = int(keep.sum())
        rank = int(np.linalg.matrix_rank(Xm[keep])) if n_keep else 0
        df[rows[inverse == i]] = float(max(n_keep - rank, 0))
    return df


def fit_f_dist(s2: np.ndarray, df1: np.ndarray | float) -> tuple[float, float]:
    """Moment fit of a scaled F prior to variance estimates.

    `df1` may be a scalar or one value per estimate. Rows with no residual df
    are ignored, and so are estimates that are zero up to rounding: exact fits
    come from the discreteness of small counts, not from low variability, and
    their logs would dominate the spread.

    Returns `(s2_prior, df_prior)`; `df_prior` is inf when the observed
    spread is no larger than sampling variability alone.
    """
    x = np.asarray(s2, dtype=float).ravel()
    d = np.broadcast_to(np.asarray(df1, dtype=float), x.shape).ravel()
    ok = np.isfinite(x) & (d > 1e-15)
    x, d = x[ok], d[ok]
    pos = x[x > 0]
    med = float(np.median(pos)) if pos.size else 0.0
    keep = x > 1e-5 * med
    x, d = x[keep], d[keep]
    if x.size < 2:
        raise DegenerateInput("Need at least two positive variance estimates to fit a prior.")
    half = d / 2.0
    e = np.log(x) - digamma(half) + np.log(half)
    emean = float(np.mean(e))
    evar = float(np.var(e, ddof=1)) - float(np.mean(polygamma(1, half)))
    if evar > 0:
        df2 = 2.0 * trigamma_inverse(evar)
        s20 = float(np.exp(emean + digamma(df2 / 2.0) - np.log(df2 / 2.0)))
    else:
        df2 = float("inf")
        s20 = float(np.exp(emean))
    return s20, df2


def squeeze_var(
    s2: np.ndarray, df1: np.ndarray | float, s20: float, df2: float
) -> np.ndarray:
    s2 = np.asarray(s2, dtype=float)
    if not np.isfinite(df2):
        return np.full_like(s2, float(s20))
    d = np.broadcast_to(np.asarray(df1, dtype=float), s2.shape)
    return (df2 * s20 + d * s2) / (df2 + d)


@dataclass(frozen=True)
class QLResult:
    pvalues: np.ndarray
    f_stat: np.ndarray
    s2_prior: float
    df_prior: float


def ql_ftest(
    y: np.ndarray,
    full: GLMFit,
    null: GLMFit,
    X: np.ndarray,
    df_test: float,
) -> QLResult:
    """Quasi-likelihood F-test of nested NB fits to the same rows."""
    df_rows = zero_fit_residual_df(y, full.mu, X)
    has_df = df_rows > 0
    s2 = np.zeros_like(full.deviance)
    s2[has_df] = full.deviance[has_df] / df_rows[has_df]
    s20, df_prior = fit_f_dist(s2[has_df], df_rows[has_df])
    # Rows without residual df take the prior value.
    s2_post = np.maximum(squeeze_var(s2, df_rows, s20, df_prior), 1e-12)

    lr = np.maximum(null.deviance - full.deviance, 0.0)
    f = lr / df_test / s2_post
    if np.isfinite(df_prior):
        p = stats.f.sf(f, df_test, df_prior + df_rows)
    else:
        p = stats.chi2.sf(f * df_test, df_test)
    if not np.all(np.isfinite(p)):
        raise TestFailure("QL F-test produced non-finite p-values.")
    return QLResult(pvalues=np.clip(p, 0.0, 1.0), f_stat=f, s2_prior=s20, df_prior=df_prior)


@dataclass(frozen=True)
class PreparedTest:
    y: np.ndarray
    X: np.ndarray
    X0: np.ndarray
    offset: np.ndarray
    tested: list[int]
    active: np.ndarray


def prepare_test(
    counts: np.ndarray,
    design: Design,
    lib_sizes: np.ndarray | None,
    norm_factors: np.ndarray | None,
) -> PreparedTest:
    """Validate inputs and build the full and reduced design matrices."""
    y = as_count_matrix(counts).astype(float)
    if y.shape[1] != design.n_libs:
        raise InvalidParameter(
            f"counts have {y.shape[1]} libraries but the design has {design.n_libs}."
        )
    X = design.matrix()
    tested = design.tested_coefficients()
    active = y.sum(axis=1) > 0
    if int(active.sum()) < 2:
        raise DegenerateInput("Fewer than two rows with non-zero counts.")
    return PreparedTest(
        y=y,
        X=X,
        X0=np.delete(X, tested, axis=1),
        offset=_offsets(y, lib_sizes, norm_factors),
        tested=tested,
        active=active,
    )


def check_dispersion(value: float) -> float:
    disp = float(value)
    if not np.isfinite(disp) or disp < 0:
        raise InvalidParameter(f"dispersion must be >= 0, got {value!r}.")
    return disp


def assemble_result(
    prep: PreparedTest, full: GLMFit, ql: QLResult, dispersion: float
) -> TestResult:
    """Scatter active-row statistics back; all-zero rows get p = 1 and logFC = 0."""
    n_rows = prep.y.shape[0]
    pvalues = np.ones(n_rows)
    logfc = np.zeros(n_rows)
    f_stat = np.zeros(n_rows)
    pvalues[prep.active] = ql.pvalues
    logfc[prep.active] = full.beta[:, prep.tested[0]] / np.log(2.0)
    f_stat[prep.active] = ql.f_stat
    return TestResult(
        pvalues=pvalues,
        logfc=logfc,
        common_dispersion=float(dispersion),
        prior_df=float(ql.df_prior),
        ql_prior=float(ql.s2_prior),
        f_stat=f_stat,
    )


@dataclass(frozen=True)
class QLFTester:
    """NB GLM quasi-likelihood F-test on every row of a count matrix.

    `dispersion=None` estimates a common NB dispersion from the data.
    """

    dispersion: float | None = None
    max_iter: int = 50
    tol: float = 1e-8

    def test(
        self,
        counts: np.ndarray,
        design: Design,
        *,
        lib_sizes: np.ndarray | None = None,
        norm_factors: np.ndarray | None = None,
    ) -> TestResult:
        prep = prepare_test(counts, design, lib_sizes, norm_factors)
        ya = prep.y[prep.active]
        if self.dispersion is None:
            disp = estimate_common_dispersion(ya, prep.X, prep.offset)
        else:
            disp = check_dispersion(self.dispersion)

        full = fit_nb_glm(ya, prep.X, prep.offset, disp, max_iter=self.max_iter, tol=self.tol)
        null = fit_nb_glm(ya, prep.X0, prep.offset, disp, max_iter=self.max_iter, tol=self.tol)
        n_unconverged = int((~full.converged).sum() + (~null.converged).sum())
        if n_unconverged:
            logger.debug("%d row fits did not reach the deviance tolerance", n_unconverged)

        ql = ql_ftest(ya, full, null, prep.X, float(len(prep.tested)))
        return assemble_result(prep, full, ql, disp)
