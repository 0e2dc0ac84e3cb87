"""Negative-binomial count simulators for null and differentially bound sites."""

from __future__ import annotations

from typing import Any, Callable, Sequence, Union

import numpy as np

from dbpitfalls.core.errors import InvalidParameter
from dbpitfalls.core.types import Design, SimulatedCounts
from dbpitfalls.core.utils import as_count_matrix, check_proportion

DispersionLike = Union[float, Callable[[int], float]]


def resolve_dispersion(dispersion: DispersionLike, n: int) -> float:
    """Evaluate a dispersion setting for a sample of `n` sites.

    Dispersion depends on how many sites it was estimated from, not on the
    site itself, so callables take an integer count and return a scalar.
    """
    value = dispersion(int(n)) if callable(dispersion) else dispersion
    try:
        val = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameter(f"dispersion must be a scalar, got {value!r}.") from exc
    if not np.isfinite(val) or val < 0.0:
        raise InvalidParameter(f"dispersion must be finite and >= 0, got {val!r}.")
    return val


def _per_library(name: str, means: float | Sequence[float], n_libs: int) -> np.ndarray:
    arr = np.asarray(means, dtype=float).ravel()
    if arr.size == 1:
        arr = np.repeat(arr, n_libs)
    if arr.size != n_libs:
        raise InvalidParameter(
            f"{name} has {arr.size} entries but the design has {n_libs} libraries."
        )
    if not np.all(np.isfinite(arr)) or np.any(arr < 0.0):
        raise InvalidParameter(f"{name} must be finite and non-negative.")
    return arr


def group_means(design: Design, means_by_group: dict[Any, float] | Sequence[float]) -> np.ndarray:
    """Expand per-group means to a per-library mean vector."""
    levels = design.group_levels
    if isinstance(means_by_group, dict):
        missing = [g for g in levels if g not in means_by_group]
        if missing:
            raise InvalidParameter(f"No mean given for groups: {missing}.")
        lookup = [float(means_by_group[g]) for g in levels]
    else:
        lookup = [float(m) for m in means_by_group]
        if len(lookup) != len(levels):
            raise InvalidParameter(
                f"Expected {len(levels)} group means, got {len(lookup)}."
            )
    return np.asarray([lookup[i] for i in design.group_index()], dtype=float)


def rnbinom(
    mean: np.ndarray,
    dispersion: float | np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw NB counts with the given mean and dispersion (size = 1/dispersion).

    `dispersion` broadcasts against `mean`; zero dispersion means Poisson.
    """
    mu = np.asarray(mean, dtype=float)
    phi = np.broadcast_to(np.asarray(dispersion, dtype=float), mu.shape)
    if np.all(phi <= 0.0):
        return rng.poisson(mu).astype(np.int64)
    size = 1.0 / np.where(phi > 0.0, phi, 1.0)
    draws = rng.negative_binomial(size, size / (size + mu)).astype(np.int64)
    if np.any(phi <= 0.0):
        draws = np.where(phi > 0.0, draws, rng.poisson(mu))
    return draws


def simulate_counts(
    *,
    design: Design,
    n_sites: int,
    prop_nonnull: float,
    null_means: float | Sequence[float],
    nonnull_means: float | Sequence[float] | None = None,
    dispersion: DispersionLike = 0.1,
    dispersion_scale: float | Sequence[float] = 1.0,
    nonnull_dispersion: DispersionLike | None = None,
    rng: np.random.Generator,
) -> SimulatedCounts:
    """Simulate a sites x libraries matrix with a known set of non-null sites.

    Null rows are NB with mean `null_means` in every library; non-null rows
    use `nonnull_means`, which should differ between groups. Row positions of
    non-null sites are randomly permuted. `dispersion_scale` multiplies the
    dispersion per library, e.g. to make ChIP libraries noisier than inputs.
    `nonnull_dispersion` overrides `dispersion` for non-null rows.
    """
    n = int(n_sites)
    if n <= 0:
        raise InvalidParameter(f"n_sites must be positive, got {n_sites!r}.")
    p = check_proportion("prop_nonnull", prop_nonnull)
    n_libs = design.n_libs

    null_mu = _per_library("null_means", null_means, n_libs)
    scale = _per_library("dispersion_scale", dispersion_scale, n_libs)
    n_null = int(round(n * (1.0 - p)))
    n_nonnull = n - n_null
    if n_nonnull > 0 and nonnull_means is None:
        raise InvalidParameter("nonnull_means is required when prop_nonnull > 0.")
    nonnull_mu = (
        _per_library("nonnull_means", nonnull_means, n_libs)
        if nonnull_means is not None
        else null_mu
    )

    counts = np.empty((n, n_libs), dtype=np.int64)
    order = rng.permutation(n)
    null_rows = np.sort(order[:n_null])
    nonnull_rows = np.sort(order[n_null:])

    if n_null > 0:
        disp_null = resolve_dispersion(dispersion, n_null)
        counts[null_rows] = rnbinom(np.tile(null_mu, (n_null, 1)), disp_null * scale, rng)
    if n_nonnull > 0:
        disp_nonnull = resolve_dispersion(
            dispersion if nonnull_dispersion is None else nonnull_dispersion, n_nonnull
        )
        counts[nonnull_rows] = rnbinom(
            np.tile(nonnull_mu, (n_nonnull, 1)), disp_nonnull * scale, rng
        )

    is_null = np.zeros(n, dtype=bool)
    is_null[null_rows] = True
    return SimulatedCounts(
        counts=counts,
        is_null=is_null,
        design=design,
        metadata={
            "null_means": null_mu.tolist(),
            "nonnull_means": nonnull_mu.tolist(),
            "prop_nonnull": p,
        },
    )


def matched_dispersion(
    null_mean: float, dispersion: float, means: Sequence[float] | np.ndarray
) -> float:
    """Dispersion giving `means` the same summed NB variance as null rows.

    With group means that straddle `null_mean`, row sums of null and non-null
    sites then share their mean and variance, so a filter on the row mean
    cannot tell them apart.
    """
    mu = np.asarray(means, dtype=float).ravel()
    if mu.size == 0 or np.any(mu < 0.0) or not np.any(mu > 0.0):
        raise InvalidParameter("means must be non-negative with at least one positive entry.")
    mu0 = float(null_mean)
    target = mu.size * (mu0 + float(dispersion) * mu0 * mu0)
    phi = (target - mu.sum()) / float(np.sum(mu * mu))
    if phi < 0.0:
        raise InvalidParameter(
            "Non-null means alone exceed the null variance; no dispersion matches."
        )
    return float(phi)


def composition_norm_factors(counts: np.ndarray, reference_rows: np.ndarray) -> np.ndarray:
    """Normalization factors that equalise `reference_rows` across libraries.

    Reference rows have the same mean in every library, so the effective
    library sizes `lib_size * factor` must be equal; factors are scaled to a
    geometric mean of one, as TMM factors are.
    """
    mat = as_count_matrix(counts)
    lib_sizes = mat.sum(axis=0).astype(float)
    ref = mat[np.asarray(reference_rows, dtype=int)].sum(axis=0).astype(float)
    if np.any(lib_sizes <= 0) or np.any(ref <= 0):
        raise InvalidParameter("Every library needs reads in the reference rows.")
    f = ref / lib_sizes
    return f / np.exp(np.mean(np.log(f)))


def simulate_spiked(
    *,
    design: Design,
    n_sites: int,
    mean: float,
    n_spiked: int,
    spike_fold: float = 5.0,
    spiked_group: Any = None,
    dispersion: DispersionLike = 0.05,
    rng: np.random.Generator,
) -> SimulatedCounts:
    """Constant-mean background plus a block of sites boosted in one group.

    The boosted block changes library composition, so the true normalization
    factors (computed from the background rows) differ from one.
    """
    n = int(n_sites)
    k = int(n_spiked)
    if n <= 0:
        raise InvalidParameter(f"n_sites must be positive, got {n_sites!r}.")
    if k < 0 or k >= n:
        raise InvalidParameter(f"n_spiked must be in [0, n_sites), got {n_spiked!r}.")
    if float(mean) <= 0.0 or float(spike_fold) <= 0.0:
        raise InvalidParameter("mean and spike_fold must be positive.")

    levels = design.group_levels
    target = levels[-1] if spiked_group is None else spiked_group
    if target not in levels:
        raise InvalidParameter(f"spiked_group {target!r} is not a design group.")
    boost = np.array([float(spike_fold) if g == target else 1.0 for g in design.groups])

    spiked = np.sort(rng.choice(n, size=k, replace=False)) if k > 0 else np.zeros(0, dtype=int)
    mu = np.full((n, design.n_libs), float(mean))
    mu[spiked] *= boost
    counts = rnbinom(mu, resolve_dispersion(dispersion, n), rng)

    is_null = np.ones(n, dtype=bool)
    is_null[spiked] = False
    return SimulatedCounts(
        counts=counts,
        is_null=is_null,
        design=design,
        spiked=spiked.astype(int),
        true_norm_factors=composition_norm_factors(counts, np.flatnonzero(is_null)),
        metadata={"mean": float(mean), "spike_fold": float(spike_fold), "spiked_group": target},
    )


def simulate_with_control(
    *,
    design: Design,
    n_sites: int,
    prop_nonnull: float,
    null_means: float | Sequence[float],
    nonnull_means: float | Sequence[float] | None = None,
    control_mean: float = 20.0,
    dispersion: DispersionLike = 0.1,
    control_dispersion: DispersionLike = 0.05,
    pooled_control: bool = True,
    rng: np.random.Generator,
) -> SimulatedCounts:
    """Treatment counts plus control (input) counts for the same sites.

    With `pooled_control` a single control library is matched to every
    treatment library, as when one input sample serves the whole experiment;
    otherwise each treatment library gets its own control.
    """
    if float(control_mean) < 0.0:
        raise InvalidParameter("control_mean must be non-negative.")
    sim = simulate_counts(
        design=design,
        n_sites=n_sites,
        prop_nonnull=prop_nonnull,
        null_means=null_means,
        nonnull_means=nonnull_means,
        dispersion=dispersion,
        rng=rng,
    )
    n_ctrl = 1 if pooled_control else design.n_libs
    disp = resolve_dispersion(control_dispersion, sim.n_sites)
    control = rnbinom(np.full((sim.n_sites, n_ctrl), float(control_mean)), disp, rng)
    if pooled_control:
        control = np.repeat(control, design.n_libs, axis=1)
    meta = dict(sim.metadata)
    meta.update({"control_mean": float(control_mean), "pooled_control": bool(pooled_control)})
    return SimulatedCounts(
        counts=sim.counts,
        is_null=sim.is_null,
        design=design,
        control=control,
        metadata=meta,
    )


def subtract_control(treatment: np.ndarray, control: np.ndarray) -> np.ndarray:
    """Subtract matched control counts, clamping negative results to zero."""
    treat = as_count_matrix(treatment, "treatment")
    ctrl = as_count_matrix(control, "control")
    if treat.shape != ctrl.shape:
        raise InvalidParameter(
            f"control shape {ctrl.shape} does not match treatment shape {treat.shape}."
        )
    return np.clip(treat - ctrl, 0, None)
