from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import TYPE_CHECKING, Optional

import numpy as np

from meshkmeans.exceptions import InvalidRangeError
from meshkmeans.utils import as_points_array, squared_distances

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def check_cluster_count(n_points: int, k: int) -> None:
    """Raise InvalidRangeError unless 1 <= k <= n_points."""
    if n_points == 0:
        raise InvalidRangeError("Cannot initialize centroids on an empty point set.")
    if k < 1 or k > n_points:
        raise InvalidRangeError(f"Cannot pick k={k} centroids from {n_points} points: expected 1 <= k <= {n_points}.")


def farthest_points(
    data: npt.NDArray[np.float64],
    centers: npt.NDArray[np.float64],
    count: int,
    exclude: Optional[npt.ArrayLike] = None,
) -> npt.NDArray[np.int64]:
    """
    Greedy farthest-point sampling starting from existing centers.

    Each pick maximizes the distance to the nearest center chosen so far
    (ties go to the lowest index). A point is never picked twice.

    Args:
        data: (N, D) candidates.
        centers: (m, D) already chosen centers, may be empty.
        count: Number of points to add.
        exclude: Indices that must not be picked (e.g. the centers themselves).

    Returns:
        (count,) indices into `data`.
    """
    if len(centers):
        min_dist = squared_distances(data, np.atleast_2d(centers)).min(axis=1)
    else:
        min_dist = np.full(len(data), np.inf)
    excluded = np.asarray([] if exclude is None else exclude, dtype=np.int64)
    if count > len(data) - len(excluded):
        raise InvalidRangeError(f"Cannot pick {count} distinct points out of {len(data) - len(excluded)}.")
    min_dist[excluded] = -np.inf

    picks = np.empty(count, dtype=np.int64)
    for n in range(count):
        index = int(np.argmax(min_dist))
        picks[n] = index
        diff = data - data[index]
        min_dist = np.minimum(min_dist, np.einsum("ij,ij->i", diff, diff))
        min_dist[picks[:n + 1]] = -np.inf
        min_dist[excluded] = -np.inf
    return picks


class CentroidInitMethod(ABC):
    """
    Base class of the centroid initialization strategies.

    Args:
        seed: Seed of the random generator, None for a non-deterministic run.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed = seed

    @property
    def rng(self) -> np.random.Generator:
        """A fresh generator, so repeated calls with a seed give identical picks."""
        return np.random.default_rng(self.seed)

    def find_centroids(self, data: npt.ArrayLike, k: int) -> npt.NDArray[np.float64]:
        """
        Produce k initial centroids.

        Args:
            data: (N, D) points or a sequence of Point.
            k: Number of centroids.

        Returns:
            (k, D) centroid coordinates.

        Raises:
            InvalidRangeError: Empty data or k outside [1, N].
        """
        points = as_points_array(data)
        check_cluster_count(len(points), k)
        centroids = self._find(points, k)
        logger.debug(f"{self.__class__.__name__} picked {len(centroids)} centroid(s).")
        return centroids

    @abstractmethod
    def _find(self, data: npt.NDArray[np.float64], k: int) -> npt.NDArray[np.float64]:
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(seed={self.seed})"


class RandomCentroidInit(CentroidInitMethod):
    """k distinct data points sampled uniformly without replacement."""

    def _find(self, data: npt.NDArray[np.float64], k: int) -> npt.NDArray[np.float64]:
        indices = self.rng.choice(len(data), size=k, replace=False)
        return data[indices].copy()


class MostDistantCentroidInit(CentroidInitMethod):
    """
    Farthest-point sampling.

    The first centroid is `first_index` when given, otherwise a seeded random
    pick. Every following centroid is the data point farthest from the
    centroids already chosen.
    """

    def __init__(self, seed: Optional[int] = None, first_index: Optional[int] = None) -> None:
        super().__init__(seed)
        self.first_index = first_index

    def _find(self, data: npt.NDArray[np.float64], k: int) -> npt.NDArray[np.float64]:
        if self.first_index is not None:
            if not 0 <= self.first_index < len(data):
                raise InvalidRangeError(f"first_index={self.first_index} outside [0, {len(data)}).")
            first = self.first_index
        else:
            first = int(self.rng.integers(len(data)))

        rest = farthest_points(data, data[[first]], k - 1, exclude=[first])
        return data[np.concatenate([[first], rest]).astype(np.int64)].copy()
