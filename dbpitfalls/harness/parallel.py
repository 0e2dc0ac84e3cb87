"""Deterministic parallel map for independent repetitions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from joblib import Parallel, delayed

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def _item_seed(item: Any) -> int | None:
    if isinstance(item, dict):
        seed = item.get("seed")
        return int(seed) if seed is not None else None
    if hasattr(item, "seed"):
        seed = getattr(item, "seed")
        return int(seed) if seed is not None else None
    return None


def _validate_items_have_seed(items: list[Any]) -> None:
    missing = [idx for idx, item in enumerate(items) if _item_seed(item) is None]
    if missing:
        head = ",".join(str(i) for i in missing[:5])
        raise ValueError(
            "parallel_map requires every item to carry a deterministic `seed` "
            f"(missing at indices: {head}{'...' if len(missing) > 5 else ''})."
        )


def _call_indexed(func: Callable[[T], R], indexed: tuple[int, T]) -> tuple[int, R]:
    idx, item = indexed
    return idx, func(item)


def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    *,
    n_jobs: int = 1,
    backend: str = "loky",
    batch_size: int | str = "auto",
) -> list[R]:
    """Apply `func` to items with order-stable aggregation.

    Every item must carry a deterministic `seed`, so the result does not depend
    on scheduling or on the number of workers.
    """
    seq = list(items)
    if not seq:
        return []
    _validate_items_have_seed(seq)

    jobs = max(1, int(n_jobs))
    if backend not in {"loky", "multiprocessing", "threading"}:
        raise ValueError(f"Unknown backend '{backend}'.")

    if jobs == 1 or len(seq) == 1:
        logger.debug("parallel_map serial execution: n_items=%d", len(seq))
        return [func(item) for item in seq]

    logger.debug("parallel_map n_items=%d n_jobs=%d backend=%s", len(seq), jobs, backend)
    rows = Parallel(n_jobs=jobs, backend=backend, batch_size=batch_size)(
        delayed(_call_indexed)(func, pair) for pair in enumerate(seq)
    )
    rows.sort(key=lambda x: x[0])
    return [row for _, row in rows]
