"""
K-Means (Lloyd's algorithm) over a pluggable metric.

The loop alternates assignment and centroid update through `Metric.fit_cpu`
and stops on the first of:
    - unchanged assignment between two iterations,
    - total centroid movement at or below the tolerance,
    - the iteration cap (reported as non-convergence, not as an error).

Clusters left empty by an iteration are reseeded on the point farthest from
its own centroid, so every returned cluster has at least one member. An
iteration that reseeds only counts as stable when it reproduces the previous
iteration's reseeded assignment and centroids.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import TYPE_CHECKING, Optional, Union

import numpy as np

from meshkmeans.clustering.centroid_init import (
    CentroidInitMethod,
    MostDistantCentroidInit,
    RandomCentroidInit,
    check_cluster_count,
)
from meshkmeans.clustering.kde import KDE3DCentroidInit, KDECentroidInit
from meshkmeans.clustering.kinit import Kinit, make_k_init
from meshkmeans.config import (
    CentroidInit,
    DEFAULT_K_RANGE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOLERANCE,
    KInitMethod,
    KernelType,
)
from meshkmeans.geometry.point import Point
from meshkmeans.metrics.euclidean import EuclideanMetric
from meshkmeans.metrics.metric import IterationResult, Metric, UNASSIGNED
from meshkmeans.utils import as_points_array

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

InitSpec = Union[CentroidInit, str, CentroidInitMethod, "npt.NDArray[np.float64]"]


class KMeansState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


class TerminationReason(StrEnum):
    ASSIGNMENT_STABLE = "assignment_stable"
    CENTROID_TOLERANCE = "centroid_tolerance"
    MAX_ITERATIONS = "max_iterations"


@dataclass
class KMeansResult:
    """
    Output of a K-Means run.

    Attributes:
        centroids: (k, D) final centroids, in discovery order.
        assignment: (N,) centroid index of every point (UNASSIGNED for points
            no centroid could reach).
        n_iterations: Iterations performed.
        reason: Why the loop stopped.
        inertia: Sum of squared metric distances to the assigned centroid.
        inertia_history: Inertia after every iteration.
    """
    centroids: npt.NDArray[np.float64]
    assignment: npt.NDArray[np.int64]
    n_iterations: int
    reason: TerminationReason
    inertia: float
    inertia_history: list[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.reason != TerminationReason.MAX_ITERATIONS

    @property
    def n_clusters(self) -> int:
        return len(self.centroids)

    @property
    def unassigned(self) -> npt.NDArray[np.int64]:
        return np.flatnonzero(self.assignment == UNASSIGNED)

    def centroid_points(self) -> list[Point]:
        return [Point.from_array(c, id=j) for j, c in enumerate(self.centroids)]

    def clusters(self) -> list[npt.NDArray[np.int64]]:
        """Member indices of every cluster."""
        return [np.flatnonzero(self.assignment == j) for j in range(self.n_clusters)]

    def counts(self) -> npt.NDArray[np.int64]:
        return np.bincount(self.assignment[self.assignment != UNASSIGNED], minlength=self.n_clusters)


def make_centroid_init(
    method: CentroidInit | str,
    seed: Optional[int] = None,
    kernel: KernelType | str = KernelType.GAUSSIAN,
) -> CentroidInitMethod:
    """Centroid initializer by name."""
    method = CentroidInit(method)
    if method == CentroidInit.RANDOM:
        return RandomCentroidInit(seed=seed)
    if method == CentroidInit.MOST_DISTANT:
        return MostDistantCentroidInit(seed=seed)
    if method == CentroidInit.KDE:
        return KDECentroidInit(kernel=kernel, seed=seed)
    return KDE3DCentroidInit(kernel=kernel, seed=seed)


class KMeans:
    """
    Generalized K-Means.

    Args:
        n_clusters: Number of clusters. None selects it with `k_init` inside `k_range`
            (or uses the row count of an explicit initial centroid array).
        metric: Metric bound to the data. None builds an EuclideanMetric in `fit`.
        init: Initialization method (name or instance) or an explicit (k, D) array.
        k_init: K selection strategy (name or instance), used when n_clusters is None.
        k_range: Inclusive (min, max) bounds of the K sweep.
        max_iterations: Iteration cap.
        tolerance: Total centroid movement under which the run has converged.
        seed: Seed used by initializers built from a name.
        kernel: Kernel of KDE initializers built from a name.
        n_jobs: Worker threads for the K sweep.
    """

    def __init__(
        self,
        n_clusters: Optional[int] = None,
        *,
        metric: Optional[Metric] = None,
        init: InitSpec = CentroidInit.RANDOM,
        k_init: Optional[Kinit | KInitMethod | str] = None,
        k_range: tuple[int, int] = DEFAULT_K_RANGE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        tolerance: float = DEFAULT_TOLERANCE,
        seed: Optional[int] = None,
        kernel: KernelType | str = KernelType.GAUSSIAN,
        n_jobs: int = 1,
    ) -> None:
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}.")
        if tolerance < 0.0:
            raise ValueError(f"tolerance must be non-negative, got {tolerance}.")

        self.n_clusters = n_clusters
        self.metric = metric
        self.seed = seed
        self.kernel = KernelType(kernel)
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.k_range = k_range
        self.n_jobs = n_jobs

        self.initial_centroids: Optional[npt.NDArray[np.float64]] = None
        if isinstance(init, CentroidInitMethod):
            self.init = init
        elif isinstance(init, (str, CentroidInit)):
            self.init = make_centroid_init(init, seed=seed, kernel=self.kernel)
        else:
            self.initial_centroids = np.atleast_2d(np.asarray(init, dtype=np.float64))
            self.init = None

        if k_init is None or isinstance(k_init, (str, KInitMethod)):
            self.k_init = make_k_init(
                k_init or KInitMethod.ELBOW,
                seed=seed,
                kernel=self.kernel,
                max_iterations=max_iterations,
                tolerance=tolerance,
                n_jobs=n_jobs,
            )
        else:
            self.k_init = k_init

        self.state = KMeansState.UNINITIALIZED

    def fit(self, points: Optional[npt.ArrayLike] = None) -> KMeansResult:
        """
        Cluster the points.

        Args:
            points: (N, D) data or sequence of Point. May be omitted when the
                metric already holds the data.

        Returns:
            The clustering result.

        Raises:
            InvalidRangeError: Empty data, or a cluster count outside [1, N].
        """
        self.state = KMeansState.UNINITIALIZED
        metric = self._resolve_metric(points)
        data = metric.points

        k = self.n_clusters
        if k is None and self.initial_centroids is not None:
            k = len(self.initial_centroids)
        if k is None:
            k_min, k_max = self.k_range
            k = self.k_init.find_k(data, k_min, k_max, metric=metric)
            logger.info(f"{self.k_init.__class__.__name__} selected k={k}.")
        check_cluster_count(len(data), k)

        centroids = self._initial_centroids(data, k)
        self.state = KMeansState.INITIALIZED
        logger.info(f"Running K-Means: k={k}, {len(data)} points, metric={metric.__class__.__name__}.")
        return self._iterate(metric, centroids)

    def _resolve_metric(self, points: Optional[npt.ArrayLike]) -> Metric:
        if self.metric is None:
            if points is None:
                raise ValueError("KMeans.fit() needs points when no metric is given.")
            return EuclideanMetric(points)
        if points is not None:
            data = as_points_array(points)
            if data.shape != self.metric.points.shape:
                raise ValueError(
                    f"Points of shape {data.shape} do not match the metric's points of shape "
                    f"{self.metric.points.shape}."
                )
        return self.metric

    def _initial_centroids(self, data: npt.NDArray[np.float64], k: int) -> npt.NDArray[np.float64]:
        if self.initial_centroids is None:
            return self.init.find_centroids(data, k)
        if self.initial_centroids.shape != (k, data.shape[1]):
            raise ValueError(
                f"Initial centroids of shape {self.initial_centroids.shape} do not match "
                f"k={k} and dimension {data.shape[1]}."
            )
        return self.initial_centroids.copy()

    def _iterate(self, metric: Metric, centroids: npt.NDArray[np.float64]) -> KMeansResult:
        self.state = KMeansState.ITERATING
        previous: Optional[npt.NDArray[np.int64]] = None
        history: list[float] = []
        reason = TerminationReason.MAX_ITERATIONS
        iteration = 0

        for iteration in range(1, self.max_iterations + 1):
            step = metric.fit_cpu(centroids)
            step, reseeded = self._reseed_empty(metric, step)

            movement = float(np.linalg.norm(step.centroids - centroids, axis=1).sum())
            centroids = step.centroids
            assignment = step.assignment
            history.append(metric.inertia(centroids, assignment))
            logger.debug(f"Iteration {iteration}: movement={movement:.6g}, inertia={history[-1]:.6g}")

            if reseeded:
                # The same reseed recurring leaves the state unchanged
                if previous is not None and np.array_equal(assignment, previous) and movement <= self.tolerance:
                    reason = TerminationReason.ASSIGNMENT_STABLE
                    break
            else:
                if previous is not None and np.array_equal(assignment, previous):
                    reason = TerminationReason.ASSIGNMENT_STABLE
                    break
                if movement <= self.tolerance:
                    reason = TerminationReason.CENTROID_TOLERANCE
                    break
            previous = assignment

        if reason == TerminationReason.MAX_ITERATIONS:
            self.state = KMeansState.MAX_ITERATIONS_REACHED
            logger.warning(f"K-Means stopped at the iteration cap ({self.max_iterations}) before converging.")
        else:
            self.state = KMeansState.CONVERGED
            logger.info(f"K-Means converged after {iteration} iteration(s) ({reason}).")

        return KMeansResult(
            centroids=centroids,
            assignment=assignment,
            n_iterations=iteration,
            reason=reason,
            inertia=history[-1],
            inertia_history=history,
        )

    def _reseed_empty(self, metric: Metric, step: IterationResult) -> tuple[IterationResult, bool]:
        """
        Move every empty centroid onto the point farthest from its own centroid.

        Candidates are unassigned points and members of clusters with more than
        one point, so reseeding never empties another cluster.
        """
        empty = step.empty_clusters
        if len(empty) == 0:
            return step, False

        assignment = step.assignment.copy()
        centroids = step.centroids.copy()
        counts = step.counts.copy()
        rows = np.arange(len(assignment))
        own = metric.distances_to(centroids)[rows, np.maximum(assignment, 0)]
        own[assignment == UNASSIGNED] = np.inf

        for j in empty:
            donor_sizes = np.where(assignment == UNASSIGNED, 0, counts[np.maximum(assignment, 0)])
            eligible = (assignment == UNASSIGNED) | (donor_sizes > 1)
            if not np.any(eligible):
                logger.warning(f"Cluster {j} is empty and no point can be moved into it.")
                continue
            p = int(np.argmax(np.where(eligible, own, -np.inf)))
            if assignment[p] != UNASSIGNED:
                counts[assignment[p]] -= 1
            assignment[p] = j
            counts[j] = 1
            centroids[j] = metric.points[p]
            own[p] = 0.0
            logger.warning(f"Cluster {j} was empty; reseeded on point {p}.")

        return metric.update(assignment, centroids), True

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_clusters={self.n_clusters}, state={self.state}, "
            f"max_iterations={self.max_iterations}, tolerance={self.tolerance})"
        )
