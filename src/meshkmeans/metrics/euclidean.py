from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import numpy as np
import scipy as sp
import scipy.spatial

from meshkmeans.config import BRUTE_FORCE_THRESHOLD, KDTREE_LEAF_SIZE
from meshkmeans.exceptions import EmptyAccumulatorError
from meshkmeans.geometry.kdtree import KdNode, KdTree
from meshkmeans.geometry.point import CentroidPoint, Point
from meshkmeans.metrics.metric import IterationResult, Metric, UNASSIGNED
from meshkmeans.utils import squared_distances

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def _is_farther(
    z: npt.NDArray[np.float64],
    z_star: npt.NDArray[np.float64],
    node: KdNode,
) -> bool:
    """
    True when `z` is farther than `z_star` from every point of the node's cell.

    It suffices to test the cell corner lying furthest in the direction
    z - z_star. Equal distances keep `z` as a candidate.
    """
    u = z - z_star
    corner = np.where(u > 0.0, node.cell_max, node.cell_min)
    d_z = corner - z
    d_star = corner - z_star
    return float(d_z @ d_z) > float(d_star @ d_star)


class EuclideanMetric(Metric):
    """
    Straight-line L2 distance with KdTree accelerated assignment.

    The assignment step is the filtering algorithm: candidate centroids are
    pruned while descending the tree, and a cell left with a single candidate
    is assigned wholesale by merging its precomputed aggregate.

    Args:
        points: (N, D) data.
        leaf_size: KdTree leaf capacity.
        brute_force_threshold: Point sets smaller than this skip the KdTree.
    """

    def __init__(
        self,
        points: npt.ArrayLike,
        leaf_size: int = KDTREE_LEAF_SIZE,
        brute_force_threshold: int = BRUTE_FORCE_THRESHOLD,
    ) -> None:
        super().__init__(points)
        self.use_kdtree = self.n_points >= brute_force_threshold
        self.tree: Optional[KdTree] = KdTree(self.points, leaf_size=leaf_size) if self.use_kdtree else None

    def distance(self, a: Point | npt.ArrayLike, b: Point | npt.ArrayLike) -> float:
        a = a.to_array() if isinstance(a, Point) else np.asarray(a, dtype=np.float64)
        b = b.to_array() if isinstance(b, Point) else np.asarray(b, dtype=np.float64)
        return float(np.linalg.norm(a - b))

    def distances_to(self, centroids: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return sp.spatial.distance.cdist(self.points, np.atleast_2d(centroids))

    def pairwise_distances(self, indices: Optional[npt.NDArray[np.int64]] = None) -> npt.NDArray[np.float64]:
        selected = self.points if indices is None else self.points[indices]
        return sp.spatial.distance.cdist(selected, selected)

    def inertia(self, centroids: npt.NDArray[np.float64], assignment: npt.NDArray[np.int64]) -> float:
        assigned = assignment != UNASSIGNED
        diff = self.points[assigned] - centroids[assignment[assigned]]
        return float(np.einsum("ij,ij->", diff, diff))

    def fit_cpu(self, centroids: npt.NDArray[np.float64]) -> IterationResult:
        centroids = np.asarray(centroids, dtype=np.float64)
        accumulators = [CentroidPoint(c, index=j) for j, c in enumerate(centroids)]
        assignment = np.full(self.n_points, UNASSIGNED, dtype=np.int64)

        if self.tree is not None:
            candidates = np.arange(len(centroids), dtype=np.int64)
            self._filter(self.tree.root, candidates, centroids, accumulators, assignment)
        else:
            assignment = np.argmin(squared_distances(self.points, centroids), axis=1).astype(np.int64)
            for j, accumulator in enumerate(accumulators):
                accumulator.accumulate_many(self.points[assignment == j])

        return self._finalize(accumulators, centroids, assignment)

    def update(
        self,
        assignment: npt.NDArray[np.int64],
        centroids: npt.NDArray[np.float64],
    ) -> IterationResult:
        accumulators = [CentroidPoint(c, index=j) for j, c in enumerate(centroids)]
        for j, accumulator in enumerate(accumulators):
            accumulator.accumulate_many(self.points[assignment == j])
        return self._finalize(accumulators, centroids, assignment)

    def _finalize(
        self,
        accumulators: list[CentroidPoint],
        centroids: npt.NDArray[np.float64],
        assignment: npt.NDArray[np.int64],
    ) -> IterationResult:
        new_centroids = np.array(centroids, dtype=np.float64, copy=True)
        counts = np.zeros(len(accumulators), dtype=np.int64)
        for j, accumulator in enumerate(accumulators):
            counts[j] = int(round(accumulator.count))
            try:
                new_centroids[j] = accumulator.finalize().to_array()
            except EmptyAccumulatorError:
                # Keep the previous position, KMeans reseeds the cluster
                logger.debug(f"Centroid {j} received no points.")
        return IterationResult(centroids=new_centroids, assignment=assignment, counts=counts)

    def _filter(
        self,
        node: KdNode,
        candidates: npt.NDArray[np.int64],
        centroids: npt.NDArray[np.float64],
        accumulators: list[CentroidPoint],
        assignment: npt.NDArray[np.int64],
    ) -> None:
        """
        Recursive filtering step.

        Args:
            node: Current KdTree node.
            candidates: Ascending indices of the centroids still competing for the node.
            centroids: (k, D) centroids of this iteration.
            accumulators: One accumulator per centroid, updated in place.
            assignment: (N,) assignment, written in place.
        """
        to_mid = squared_distances(node.midpoint[None, :], centroids[candidates])[0]
        z_star = int(candidates[np.argmin(to_mid)])
        survivors = np.array(
            [z for z in candidates if z == z_star or not _is_farther(centroids[z], centroids[z_star], node)],
            dtype=np.int64,
        )

        if len(survivors) == 1:
            accumulators[z_star].merge(node)
            assignment[self.tree.indices_of(node)] = z_star
            return

        if node.is_leaf:
            ids = self.tree.indices_of(node)
            points = self.points[ids]
            nearest = survivors[np.argmin(squared_distances(points, centroids[survivors]), axis=1)]
            assignment[ids] = nearest
            for j in np.unique(nearest):
                accumulators[j].accumulate_many(points[nearest == j])
            return

        self._filter(node.left, survivors, centroids, accumulators, assignment)
        self._filter(node.right, survivors, centroids, accumulators, assignment)
