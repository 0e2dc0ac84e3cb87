from __future__ import annotations

import numpy as np
import pytest

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.core.simulate import simulate_spiked
from dbpitfalls.core.types import Design
from dbpitfalls.stats.normalization import calc_norm_factors_tmm


def _tmm_error(mean: float, seed: int) -> float:
    sim = simulate_spiked(
        design=Design.two_group(2, 2),
        n_sites=20_000,
        mean=mean,
        n_spiked=1000,
        spike_fold=5.0,
        dispersion=0.01,
        rng=np.random.default_rng(seed),
    )
    est = calc_norm_factors_tmm(sim.counts)
    return float(np.mean(np.abs(np.log2(est / sim.true_norm_factors))))


def test_identical_proportions_give_unit_factors():
    col = np.random.default_rng(0).poisson(20.0, size=500)
    counts = np.column_stack([col, 2 * col, col])
    np.testing.assert_allclose(calc_norm_factors_tmm(counts), 1.0)


def test_factors_have_unit_geometric_mean():
    counts = np.random.default_rng(1).poisson(30.0, size=(1000, 4))
    f = calc_norm_factors_tmm(counts)
    assert np.exp(np.mean(np.log(f))) == pytest.approx(1.0)


def test_tmm_recovers_composition_at_high_counts_not_low():
    high = np.mean([_tmm_error(200.0, s) for s in range(3)])
    low = np.mean([_tmm_error(1.0, s) for s in range(3)])
    assert high < 0.1
    assert low > high


def test_tmm_validates_inputs():
    counts = np.ones((10, 3), dtype=int)
    with pytest.raises(InvalidParameter):
        calc_norm_factors_tmm(counts, logratio_trim=0.6)
    with pytest.raises(InvalidParameter):
        calc_norm_factors_tmm(counts, ref_column=5)
    with pytest.raises(DegenerateInput):
        calc_norm_factors_tmm(np.column_stack([np.ones(10), np.zeros(10)]).astype(int))
