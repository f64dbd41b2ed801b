"""
Automatic selection of the number of clusters.

Every strategy scores candidate values of k and keeps the sweep (`ks`,
`scores`) so that it can be inspected or plotted afterwards.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import TYPE_CHECKING, Optional

import numpy as np
import matplotlib.pyplot as plt

from meshkmeans.clustering.centroid_init import CentroidInitMethod, MostDistantCentroidInit
from meshkmeans.clustering.kde import KDECentroidInit
from meshkmeans.config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOLERANCE,
    KInitMethod,
    KernelType,
    SILHOUETTE_SAMPLE_SIZE,
)
from meshkmeans.exceptions import InvalidRangeError
from meshkmeans.metrics.euclidean import EuclideanMetric
from meshkmeans.metrics.metric import UNASSIGNED
from meshkmeans.utils import as_points_array, ordered_map

if TYPE_CHECKING:
    import numpy.typing as npt

    from meshkmeans.clustering.kmeans import KMeansResult
    from meshkmeans.metrics.metric import Metric

logger = logging.getLogger(__name__)


def silhouette_samples(
    distances: npt.NDArray[np.float64],
    labels: npt.NDArray[np.int64],
) -> npt.NDArray[np.float64]:
    """
    Silhouette coefficient of every point.

        s(i) = (b(i) - a(i)) / max(a(i), b(i))

    a(i) is the mean distance to the other members of its cluster, b(i) the
    smallest mean distance to the members of another cluster. Points alone in
    their cluster score 0, unassigned points are NaN.

    Args:
        distances: (m, m) pairwise distances.
        labels: (m,) cluster labels, UNASSIGNED for points to ignore.
    """
    scores = np.full(len(labels), np.nan)
    valid = np.flatnonzero(labels != UNASSIGNED)
    clusters, local = np.unique(labels[valid], return_inverse=True)
    if len(clusters) < 2:
        scores[valid] = 0.0
        return scores

    block = distances[np.ix_(valid, valid)]
    membership = np.zeros((len(valid), len(clusters)))
    membership[np.arange(len(valid)), local] = 1.0
    sizes = membership.sum(axis=0)
    with np.errstate(invalid="ignore"):
        sums = block @ membership

    own_size = sizes[local]
    rows = np.arange(len(valid))
    with np.errstate(divide="ignore", invalid="ignore"):
        a = sums[rows, local] / np.maximum(own_size - 1.0, 1.0)
        means = sums / sizes
        means[rows, local] = np.inf
        b = means.min(axis=1)
        s = (b - a) / np.maximum(a, b)
    s[own_size == 1] = 0.0
    scores[valid] = s
    return scores


def silhouette_score(distances: npt.NDArray[np.float64], labels: npt.NDArray[np.int64]) -> float:
    """Mean silhouette coefficient over the assigned points."""
    samples = silhouette_samples(distances, labels)
    return float(np.nanmean(samples)) if np.any(~np.isnan(samples)) else 0.0


class Kinit(ABC):
    """
    Base class of the K selection strategies.

    Args:
        init: Initializer of the K-Means runs. Defaults to farthest-point sampling.
        max_iterations: Iteration cap of every run.
        tolerance: Convergence tolerance of every run.
        seed: Seed of the default initializer and of any sampling.
        n_jobs: Worker threads for independent runs.
    """
    NAME: str = "K selection"
    SCORE_LABEL: str = "Score"

    def __init__(
        self,
        init: Optional[CentroidInitMethod] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        tolerance: float = DEFAULT_TOLERANCE,
        seed: Optional[int] = None,
        n_jobs: int = 1,
    ) -> None:
        self.init = init if init is not None else MostDistantCentroidInit(seed=seed)
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.seed = seed
        self.n_jobs = n_jobs
        self.ks: list[int] = []
        self.scores: list[float] = []
        self.selected_k: Optional[int] = None

    @staticmethod
    def validate_range(n_points: int, k_min: int, k_max: int) -> tuple[int, int]:
        """
        Check the sweep bounds and clip k_max to the number of points.

        Raises:
            InvalidRangeError: k_min < 1, k_min > k_max or fewer points than k_min.
        """
        if k_min < 1:
            raise InvalidRangeError(f"k_min must be at least 1, got {k_min}.")
        if k_min > k_max:
            raise InvalidRangeError(f"k_min={k_min} is larger than k_max={k_max}.")
        if n_points < k_min:
            raise InvalidRangeError(f"Cannot form k_min={k_min} clusters from {n_points} points.")
        return k_min, min(k_max, n_points)

    def find_k(
        self,
        data: npt.ArrayLike,
        k_min: int,
        k_max: int,
        metric: Optional[Metric] = None,
    ) -> int:
        """
        Choose the number of clusters in [k_min, k_max].

        Args:
            data: (N, D) points.
            k_min: Smallest candidate.
            k_max: Largest candidate.
            metric: Metric bound to the same points. Defaults to Euclidean.

        Returns:
            The selected k.
        """
        points = as_points_array(data)
        k_min, k_max = self.validate_range(len(points), k_min, k_max)
        if metric is None:
            metric = EuclideanMetric(points)
        self.ks, self.scores = [], []
        self.selected_k = self._select(points, k_min, k_max, metric)
        logger.debug(f"{self.__class__.__name__}: ks={self.ks}, scores={self.scores}")
        return self.selected_k

    @abstractmethod
    def _select(self, points: npt.NDArray[np.float64], k_min: int, k_max: int, metric: Metric) -> int:
        ...

    def _run(self, metric: Metric, k: int, init: CentroidInitMethod | npt.NDArray[np.float64]) -> KMeansResult:
        from meshkmeans.clustering.kmeans import KMeans

        kmeans = KMeans(
            k,
            metric=metric,
            init=init,
            max_iterations=self.max_iterations,
            tolerance=self.tolerance,
        )
        return kmeans.fit()

    def plot(self) -> None:
        """
        Plot the score of every candidate k and mark the selected one.
        """
        if not self.ks:
            raise RuntimeError("Nothing to plot: call find_k() first.")

        plt.rcParams["figure.constrained_layout.use"] = True
        fig = plt.figure(figsize=(7, 5))

        plt.plot(self.ks, self.scores, 'o-', color='b', lw=2)
        if self.selected_k is not None:
            plt.axvline(self.selected_k, color='r', linestyle='--', lw=1)

        plt.grid(visible=True, which='major', axis='both', linestyle='-', color='gray', lw=0.5)
        plt.minorticks_on()
        plt.grid(visible=True, which='minor', axis='both', linestyle=':', color='gray', lw=0.5)

        plt.title(f"{self.NAME} (selected k = {self.selected_k})")
        plt.xlabel("k")
        plt.ylabel(self.SCORE_LABEL)
        plt.show()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(init={self.init}, max_iterations={self.max_iterations})"


class ElbowMethod(Kinit):
    """
    Knee of the within-cluster sum of squares curve.

    The sweep is incremental: the run for k+1 starts from the centroids found
    for k plus the point farthest from them, so with the Euclidean metric the
    curve never increases. The knee is the k with the largest second
    difference s[k-1] - 2 s[k] + s[k+1].

    Args:
        curvature_threshold: With only two candidates, the larger k is chosen
            when its score is below (1 - threshold) times the smaller k's score.
    """
    NAME = "Elbow method"
    SCORE_LABEL = "Within-cluster sum of squares"

    def __init__(self, *args, curvature_threshold: float = 0.5, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        if not 0.0 <= curvature_threshold <= 1.0:
            raise ValueError(f"curvature_threshold must lie in [0, 1], got {curvature_threshold}.")
        self.curvature_threshold = curvature_threshold

    def _select(self, points: npt.NDArray[np.float64], k_min: int, k_max: int, metric: Metric) -> int:
        centroids = self.init.find_centroids(points, k_min)
        for k in range(k_min, k_max + 1):
            if k > k_min:
                nearest = metric.distances_to(centroids).min(axis=1)
                farthest = int(np.argmax(nearest))
                centroids = np.vstack([centroids, points[farthest]])
            result = self._run(metric, k, init=centroids)
            centroids = result.centroids
            self.ks.append(k)
            self.scores.append(result.inertia)

        scores = np.asarray(self.scores)
        if len(scores) == 1:
            return self.ks[0]
        if len(scores) == 2:
            dropped = scores[1] < (1.0 - self.curvature_threshold) * scores[0]
            return self.ks[1] if dropped else self.ks[0]

        second = scores[:-2] - 2.0 * scores[1:-1] + scores[2:]
        return self.ks[int(np.argmax(second)) + 1]


class SilhouetteMethod(Kinit):
    """
    Maximum mean silhouette coefficient.

    k = 1 is never a candidate (the coefficient is undefined), nor is k = N.
    Runs for different k are independent and use the worker pool with the
    Euclidean metric.

    Args:
        sample_size: Above this many points the score uses a seeded sample.
    """
    NAME = "Silhouette method"
    SCORE_LABEL = "Mean silhouette coefficient"

    def __init__(self, *args, sample_size: int = SILHOUETTE_SAMPLE_SIZE, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.sample_size = sample_size

    def _select(self, points: npt.NDArray[np.float64], k_min: int, k_max: int, metric: Metric) -> int:
        n = len(points)
        ks = list(range(max(2, k_min), min(k_max, n - 1) + 1))
        if not ks:
            logger.warning(f"No k in [{k_min}, {k_max}] admits a silhouette score for {n} points; using k={k_min}.")
            self.ks, self.scores = [k_min], [0.0]
            return k_min

        # Geodesic metrics cache fields internally and are not shared between threads
        n_jobs = self.n_jobs if isinstance(metric, EuclideanMetric) else 1
        results = ordered_map(lambda k: self._run(metric, k, init=self.init), ks, n_jobs)

        if n > self.sample_size:
            sample = np.sort(np.random.default_rng(self.seed).choice(n, self.sample_size, replace=False))
        else:
            sample = np.arange(n)
        distances = metric.pairwise_distances(sample)

        self.ks = ks
        self.scores = [silhouette_score(distances, result.assignment[sample]) for result in results]
        return ks[int(np.argmax(self.scores))]


class KDEMethod(Kinit):
    """
    Number of density modes, found without any K-Means run.

    The mode count is clipped into [k_min, k_max]. The stored sweep holds the
    density of every mode, strongest first.
    """
    NAME = "Density modes"
    SCORE_LABEL = "Mode density"

    def __init__(self, *args, kde_init: Optional[KDECentroidInit] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.kde_init = kde_init if kde_init is not None else KDECentroidInit(seed=self.seed)

    def _select(self, points: npt.NDArray[np.float64], k_min: int, k_max: int, metric: Metric) -> int:
        modes, values = self.kde_init.local_maxima(points, self.kde_init.bandwidth_for(points))
        self.ks = list(range(1, len(modes) + 1))
        self.scores = [float(v) for v in values]

        k = int(np.clip(len(modes), k_min, k_max))
        if k != len(modes):
            logger.warning(f"Found {len(modes)} density mode(s); clipped to k={k} within [{k_min}, {k_max}].")
        return k


def make_k_init(
    method: KInitMethod | str,
    seed: Optional[int] = None,
    kernel: KernelType | str = KernelType.GAUSSIAN,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = DEFAULT_TOLERANCE,
    n_jobs: int = 1,
) -> Kinit:
    """K selection strategy by name."""
    method = KInitMethod(method)
    options = dict(max_iterations=max_iterations, tolerance=tolerance, seed=seed, n_jobs=n_jobs)
    if method == KInitMethod.ELBOW:
        return ElbowMethod(**options)
    if method == KInitMethod.SILHOUETTE:
        return SilhouetteMethod(**options)
    return KDEMethod(kde_init=KDECentroidInit(kernel=kernel, seed=seed), **options)
