from __future__ import annotations

import numpy as np
import pytest

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.stats.fdr import bh_fdr, empirical_sign_fdr, true_fdp


def test_sign_fdr_small_example():
    p = np.array([0.01, 0.02, 0.03, 0.04])
    signs = np.array([1, -1, 1, 1])
    np.testing.assert_allclose(empirical_sign_fdr(p, signs), [0.0, 1 / 3, 1 / 3, 1 / 3])


def test_sign_fdr_is_monotone_in_p():
    rng = np.random.default_rng(0)
    p = rng.uniform(size=2000)
    signs = rng.choice([-1, 1], size=2000)
    est = empirical_sign_fdr(p, signs)
    order = np.argsort(p)
    assert np.all(np.diff(est[order]) >= 0)
    assert np.all((est >= 0) & (est <= 1))


def test_sign_fdr_ties_share_an_estimate_and_p_one_is_one():
    p = np.array([0.2, 0.2, 0.2, 1.0, 1.0])
    signs = np.array([1, -1, 1, 1, 1])
    est = empirical_sign_fdr(p, signs)
    assert est[0] == est[1] == est[2] == pytest.approx(0.5)
    assert est[3] == est[4] == 1.0


def test_no_right_direction_rejections_gives_one():
    est = empirical_sign_fdr(np.array([0.01, 0.02]), np.array([-1, -1]))
    np.testing.assert_allclose(est, [1.0, 1.0])


def test_asymmetric_null_signs_underestimate_the_fdr():
    # all sites are null, but 70% of them lean the "right" way
    rng = np.random.default_rng(1)
    p = rng.uniform(size=20_000)
    signs = np.where(rng.uniform(size=20_000) < 0.7, 1, -1)
    est = empirical_sign_fdr(p, signs)
    sel = p <= 0.05
    assert 0.25 < np.median(est[sel]) < 0.55
    assert true_fdp(p, np.ones(p.size, dtype=bool), 0.05) == 1.0


def test_sign_fdr_validates_inputs():
    with pytest.raises(InvalidParameter):
        empirical_sign_fdr(np.array([0.1, 0.2]), np.array([1]))
    with pytest.raises(DegenerateInput):
        empirical_sign_fdr(np.array([]), np.array([]))


def test_bh_fdr_matches_hand_computation():
    q = bh_fdr(np.array([0.01, 0.04, 0.03, 0.2]))
    np.testing.assert_allclose(q, [0.04, 0.0533333, 0.0533333, 0.2], rtol=1e-5)
    with pytest.raises(InvalidParameter):
        bh_fdr(np.array([1.5]))


def test_true_fdp():
    p = np.array([0.01, 0.02, 0.5])
    is_null = np.array([True, False, True])
    assert true_fdp(p, is_null, 0.05) == 0.5
    assert true_fdp(p, is_null, 0.001) == 0.0
