from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Optional

import numpy as np

from meshkmeans.utils import as_points_array

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

UNASSIGNED = -1


@dataclass
class IterationResult:
    """
    Outcome of one assign-then-update step.

    Attributes:
        centroids: (k, D) updated centroids. Empty clusters keep their previous position.
        assignment: (N,) centroid index of every point, UNASSIGNED when no centroid is reachable.
        counts: (k,) number of points assigned to each centroid.
    """
    centroids: npt.NDArray[np.float64]
    assignment: npt.NDArray[np.int64]
    counts: npt.NDArray[np.int64]

    @property
    def empty_clusters(self) -> npt.NDArray[np.int64]:
        return np.flatnonzero(self.counts == 0)


class Metric(ABC):
    """
    Abstract distance bound to a point set.

    A metric knows how to measure distances in its space and how to run one
    Lloyd iteration (assignment then centroid update) over its points.
    """

    def __init__(self, points: npt.ArrayLike) -> None:
        self.points = as_points_array(points)

    @property
    def n_points(self) -> int:
        return len(self.points)

    @property
    def dim(self) -> int:
        return self.points.shape[1]

    @abstractmethod
    def distance(self, a: Any, b: Any) -> float:
        """Distance between two items of the metric's space."""

    @abstractmethod
    def distances_to(self, centroids: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Distances of every point to every centroid.

        Args:
            centroids: (k, D) centroid coordinates.

        Returns:
            (N, k) matrix, np.inf where a centroid is unreachable.
        """

    @abstractmethod
    def fit_cpu(self, centroids: npt.NDArray[np.float64]) -> IterationResult:
        """Assign every point to its nearest centroid, then recompute the centroids."""

    @abstractmethod
    def update(
        self,
        assignment: npt.NDArray[np.int64],
        centroids: npt.NDArray[np.float64],
    ) -> IterationResult:
        """Recompute centroids for a fixed assignment."""

    @abstractmethod
    def pairwise_distances(self, indices: Optional[npt.NDArray[np.int64]] = None) -> npt.NDArray[np.float64]:
        """(m, m) distances between the selected points (all points when None)."""

    def assign(self, centroids: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float64]]:
        """
        Nearest centroid of every point by exhaustive comparison.

        Returns:
            assignment: (N,) centroid indices, UNASSIGNED where every centroid is unreachable.
            distance: (N,) distance to the assigned centroid (np.inf when unassigned).
        """
        distances = self.distances_to(centroids)
        assignment = np.argmin(distances, axis=1).astype(np.int64)
        nearest = distances[np.arange(self.n_points), assignment]
        assignment[~np.isfinite(nearest)] = UNASSIGNED
        return assignment, nearest

    def inertia(self, centroids: npt.NDArray[np.float64], assignment: npt.NDArray[np.int64]) -> float:
        """Sum of squared distances of assigned points to their centroid."""
        assigned = assignment != UNASSIGNED
        if not np.any(assigned):
            return 0.0
        distances = self.distances_to(centroids)
        selected = distances[np.flatnonzero(assigned), assignment[assigned]]
        return float(np.sum(selected ** 2))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_points={self.n_points}, dim={self.dim})"
