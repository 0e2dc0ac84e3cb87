"""Small pure helpers for core computations."""

from __future__ import annotations

import numpy as np

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter


def as_count_matrix(counts: np.ndarray, name: str = "counts") -> np.ndarray:
    """Return ``counts`` as a 2D int64 array, rejecting negative or fractional values."""
    arr = np.asarray(counts)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise InvalidParameter(f"{name} must be a sites x libraries matrix.")
    if arr.shape[0] == 0:
        raise DegenerateInput(f"{name} has no rows.")
    if arr.shape[1] == 0:
        raise InvalidParameter(f"{name} has no library columns.")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameter(f"{name} must be finite.")
    if np.any(arr < 0):
        raise InvalidParameter(f"{name} must be non-negative.")
    if not np.issubdtype(arr.dtype, np.integer):
        vals = arr.astype(float, copy=False)
        if np.any(vals != np.floor(vals)):
            raise InvalidParameter(f"{name} must hold whole-number counts.")
    return arr.astype(np.int64, copy=False)


def pvalue_1d(name: str, values: np.ndarray) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    if not np.all(np.isfinite(arr)):
        raise InvalidParameter(f"{name} must be finite.")
    if np.any((arr < 0.0) | (arr > 1.0)):
        raise InvalidParameter(f"{name} must lie in [0, 1].")
    return arr


def check_proportion(name: str, value: float) -> float:
    val = float(value)
    if not np.isfinite(val) or val < 0.0 or val > 1.0:
        raise InvalidParameter(f"{name} must be in [0, 1], got {value!r}.")
    return val
