from __future__ import annotations

import numpy as np
import pytest

from dbpitfalls.core.errors import InvalidParameter
from dbpitfalls.core.simulate import (
    group_means,
    resolve_dispersion,
    rnbinom,
    simulate_counts,
    simulate_spiked,
    simulate_with_control,
    subtract_control,
)
from dbpitfalls.core.types import Design
from dbpitfalls.core.utils import as_count_matrix


def test_rnbinom_matches_nb_moments():
    rng = np.random.default_rng(0)
    draws = rnbinom(np.full(200_000, 50.0), 0.1, rng)
    assert draws.dtype == np.int64
    assert abs(draws.mean() - 50.0) < 0.5
    # var = mu + phi * mu^2
    assert abs(draws.var() - (50.0 + 0.1 * 2500.0)) / 300.0 < 0.05


def test_rnbinom_zero_dispersion_is_poisson():
    rng = np.random.default_rng(1)
    draws = rnbinom(np.full(100_000, 10.0), 0.0, rng)
    assert abs(draws.var() - 10.0) < 0.3

    mixed = rnbinom(np.full((50_000, 2), 10.0), np.array([0.0, 0.5]), rng)
    assert mixed[:, 0].var() < 12.0
    assert mixed[:, 1].var() > 40.0


def test_resolve_dispersion_accepts_callable_and_rejects_negative():
    assert resolve_dispersion(0.2, 10) == 0.2
    assert resolve_dispersion(lambda n: 1.0 / n, 4) == 0.25
    with pytest.raises(InvalidParameter):
        resolve_dispersion(-0.1, 10)


def test_simulate_counts_shape_and_truth():
    design = Design.two_group(2, 2)
    rng = np.random.default_rng(2)
    sim = simulate_counts(
        design=design,
        n_sites=1000,
        prop_nonnull=0.1,
        null_means=20.0,
        nonnull_means=group_means(design, [20.0, 60.0]),
        dispersion=0.05,
        rng=rng,
    )
    assert sim.counts.shape == (1000, 4)
    assert int((~sim.is_null).sum()) == 100
    assert sim.prop_nonnull == pytest.approx(0.1)
    nonnull = sim.counts[sim.nonnull_index]
    assert nonnull[:, 2:].mean() > 2.0 * nonnull[:, :2].mean()
    # non-null rows are scattered, not a block at the start
    assert sim.nonnull_index.max() > 500


def test_simulate_counts_requires_nonnull_means():
    with pytest.raises(InvalidParameter, match="nonnull_means"):
        simulate_counts(
            design=Design.two_group(2, 2),
            n_sites=10,
            prop_nonnull=0.5,
            null_means=10.0,
            rng=np.random.default_rng(0),
        )


def test_simulate_counts_is_deterministic_given_seed():
    design = Design.two_group(2, 2)
    kwargs = dict(design=design, n_sites=200, prop_nonnull=0.0, null_means=15.0)
    a = simulate_counts(**kwargs, rng=np.random.default_rng(7))
    b = simulate_counts(**kwargs, rng=np.random.default_rng(7))
    np.testing.assert_array_equal(a.counts, b.counts)


def test_group_means_by_label():
    design = Design(groups=("ctl", "ctl", "chip"))
    mu = group_means(design, {"ctl": 1.0, "chip": 3.0})
    np.testing.assert_allclose(mu, [1.0, 1.0, 3.0])
    with pytest.raises(InvalidParameter):
        group_means(design, [1.0])


def test_simulate_spiked_true_factors():
    design = Design.two_group(2, 2)
    sim = simulate_spiked(
        design=design,
        n_sites=5000,
        mean=100.0,
        n_spiked=500,
        spike_fold=5.0,
        dispersion=0.01,
        rng=np.random.default_rng(3),
    )
    f = sim.true_norm_factors
    assert f.shape == (4,)
    assert np.exp(np.mean(np.log(f))) == pytest.approx(1.0)
    # boosted libraries carry a smaller share of background reads
    assert f[2:].max() < f[:2].min()
    assert int((~sim.is_null).sum()) == 500


def test_control_subtraction_clamps_at_zero():
    design = Design.two_group(3, 3)
    sim = simulate_with_control(
        design=design,
        n_sites=500,
        prop_nonnull=0.0,
        null_means=20.0,
        control_mean=20.0,
        rng=np.random.default_rng(4),
    )
    assert sim.control.shape == sim.counts.shape
    # pooled control: the same column for every library
    assert np.all(sim.control == sim.control[:, :1])
    sub = subtract_control(sim.counts, sim.control)
    assert sub.min() >= 0
    assert np.all(sub <= sim.counts)
    with pytest.raises(InvalidParameter, match="shape"):
        subtract_control(sim.counts, sim.control[:, :2])


def test_count_matrices_must_hold_whole_numbers():
    whole = as_count_matrix(np.array([[1.0, 2.0], [0.0, 7.0]]))
    assert whole.dtype == np.int64
    np.testing.assert_array_equal(whole, [[1, 2], [0, 7]])
    with pytest.raises(InvalidParameter, match="whole-number"):
        as_count_matrix(np.array([[1.5, 2.0], [0.0, 7.0]]))
    with pytest.raises(InvalidParameter, match="whole-number"):
        subtract_control(np.array([[3.2, 4.0]]), np.array([[1.0, 1.0]]))
