from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, Iterable, Sequence, TypeVar

import numpy as np

from meshkmeans.exceptions import InvalidRangeError

if TYPE_CHECKING:
    import numpy.typing as npt

T = TypeVar("T")
R = TypeVar("R")


def as_points_array(points: npt.ArrayLike | Sequence) -> npt.NDArray[np.float64]:
    """
    Convert a point set to a contiguous (N, D) float64 array.

    Accepts an array-like of coordinates or a sequence of objects exposing
    `to_array()` (such as Point).
    """
    if isinstance(points, np.ndarray):
        array = points
    else:
        items = list(points)
        if items and hasattr(items[0], "to_array"):
            array = np.array([item.to_array() for item in items], dtype=np.float64)
        else:
            array = np.asarray(items, dtype=np.float64)

    array = np.ascontiguousarray(array, dtype=np.float64)
    if array.size == 0:
        raise InvalidRangeError("The point set is empty.")
    if array.ndim == 1:
        array = array.reshape(-1, 1)
    if array.ndim != 2:
        raise ValueError(f"Expected an (N, D) point array, got shape {array.shape}.")
    return array


def ordered_map(fn: Callable[[T], R], items: Iterable[T], n_jobs: int = 1) -> list[R]:
    """
    Apply `fn` to every item, optionally on a thread pool.

    Results are returned in input order whatever the number of workers, so any
    reduction over them happens in a fixed order.

    Args:
        fn: Task applied to each item. Must only read shared state.
        items: Task inputs.
        n_jobs: Number of worker threads. 1 runs sequentially.

    Returns:
        List of results, aligned with `items`.
    """
    items = list(items)
    if n_jobs <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=n_jobs) as executor:
        return list(executor.map(fn, items))


def squared_distances(points: npt.NDArray[np.float64], centers: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """(N, k) matrix of squared Euclidean distances."""
    diff = points[:, None, :] - centers[None, :, :]
    return np.einsum("ijk,ijk->ij", diff, diff)
