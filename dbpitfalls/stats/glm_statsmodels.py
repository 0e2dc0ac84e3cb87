"""Quasi-likelihood F-tests on NB GLMs fitted one site at a time by statsmodels.

Same test as ``QLFTester`` but every GLM fit, including those inside the
Cox-Reid dispersion search, goes through ``statsmodels.GLM``. It is much
slower than the vectorised fitter and is meant for moderate numbers of sites
or for checking the vectorised results.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import statsmodels.api as sm
from scipy.optimize import minimize_scalar
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from dbpitfalls.core.errors import DegenerateInput, TestFailure
from dbpitfalls.core.types import Design, TestResult
from dbpitfalls.stats.glm import (
    DISPERSION_BOUNDS,
    GLMFit,
    assemble_result,
    check_dispersion,
    prepare_test,
    ql_ftest,
)

logger = logging.getLogger(__name__)


def _family(dispersion: float) -> sm.families.Family:
    if dispersion <= 0.0:
        return sm.families.Poisson()
    return sm.families.NegativeBinomial(alpha=float(dispersion))


def fit_rows_statsmodels(
    y: np.ndarray,
    X: np.ndarray,
    offset: np.ndarray,
    dispersion: float,
    *,
    max_iter: int = 100,
) -> tuple[GLMFit, np.ndarray]:
    """Fit one NB GLM per row; also return each row's log-likelihood."""
    Y = np.asarray(y, dtype=float)
    Xm = np.asarray(X, dtype=float)
    family = _family(dispersion)
    n_rows = Y.shape[0]
    beta = np.zeros((n_rows, Xm.shape[1]))
    mu = np.zeros_like(Y)
    deviance = np.zeros(n_rows)
    llf = np.zeros(n_rows)
    converged = np.zeros(n_rows, dtype=bool)
    with warnings.catch_warnings():
        # Groups observed only as zeros drive a coefficient towards -inf.
        warnings.simplefilter("ignore", ConvergenceWarning)
        for i in range(n_rows):
            res = sm.GLM(Y[i], Xm, family=family, offset=offset).fit(maxiter=max_iter)
            beta[i] = res.params
            mu[i] = res.mu
            deviance[i] = res.deviance
            llf[i] = res.llf
            converged[i] = bool(getattr(res, "converged", True))
    if not (np.all(np.isfinite(beta)) and np.all(np.isfinite(deviance))):
        raise TestFailure("statsmodels NB GLM fits produced non-finite estimates.")
    fit = GLMFit(
        beta=beta, mu=mu, deviance=np.maximum(deviance, 0.0), converged=converged, n_iter=max_iter
    )
    return fit, llf


def estimate_common_dispersion_statsmodels(
    y: np.ndarray,
    X: np.ndarray,
    offset: np.ndarray,
    bounds: tuple[float, float] = DISPERSION_BOUNDS,
) -> float:
    """Common dispersion maximising the Cox-Reid adjusted profile likelihood."""
    Y = np.asarray(y, dtype=float)
    Xm = np.asarray(X, dtype=float)
    if Y.shape[0] == 0:
        raise DegenerateInput("No non-zero rows to estimate the dispersion from.")

    def neg_apl(logd: float) -> float:
        disp = float(np.exp(logd))
        fit, llf = fit_rows_statsmodels(Y, Xm, offset, disp, max_iter=50)
        w = fit.mu / (1.0 + disp * fit.mu)
        _, logdet = np.linalg.slogdet(np.einsum("ij,gi,ik->gjk", Xm, w, Xm))
        return -float(np.sum(llf - 0.5 * logdet))

    lo, hi = np.log(bounds[0]), np.log(bounds[1])
    res = minimize_scalar(neg_apl, bounds=(lo, hi), method="bounded", options={"xatol": 1e-3})
    if not res.success or not np.isfinite(res.x):
        raise TestFailure(f"Common dispersion estimation failed: {res.message}")
    return float(np.exp(res.x))


@dataclass(frozen=True)
class StatsmodelsQLTester:
    """``QLFTester`` with per-site ``statsmodels.GLM`` fits."""

    dispersion: float | None = None
    max_iter: int = 100

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
            disp = estimate_common_dispersion_statsmodels(ya, prep.X, prep.offset)
        else:
            disp = check_dispersion(self.dispersion)
        logger.debug("Fitting %d sites with statsmodels at dispersion %.4g", ya.shape[0], disp)

        full, _ = fit_rows_statsmodels(ya, prep.X, prep.offset, disp, max_iter=self.max_iter)
        null, _ = fit_rows_statsmodels(ya, prep.X0, prep.offset, disp, max_iter=self.max_iter)
        ql = ql_ftest(ya, full, null, prep.X, float(len(prep.tested)))
        return assemble_result(prep, full, ql, disp)
