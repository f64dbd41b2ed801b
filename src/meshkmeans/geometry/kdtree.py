"""
KdTree over a static Euclidean point set.

Every node owns a bounding cell and the weighted-centroid aggregate (sum and
count) of its subtree, which lets the Euclidean metric assign whole cells to a
centroid at once. The tree is never updated in place: a new tree is built when
the point set changes.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import numpy as np

from meshkmeans.config import KDTREE_LEAF_SIZE
from meshkmeans.exceptions import EmptyIndexError
from meshkmeans.geometry.point import HasWeightedCentroid

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class KdNode(HasWeightedCentroid):
    """
    Node covering the slice [start, end) of the tree's index permutation.

    Args:
        points: (m, D) coordinates of the points under the node.
        start: First position in the permutation.
        end: One past the last position in the permutation.
    """

    def __init__(self, points: npt.NDArray[np.float64], start: int, end: int) -> None:
        super().__init__(points.shape[1])
        self.start = start
        self.end = end
        self.cell_min = points.min(axis=0)
        self.cell_max = points.max(axis=0)
        self.accumulate_many(points)
        self.left: Optional[KdNode] = None
        self.right: Optional[KdNode] = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None

    @property
    def midpoint(self) -> npt.NDArray[np.float64]:
        return 0.5 * (self.cell_min + self.cell_max)

    def min_distance_to(self, query: npt.NDArray[np.float64]) -> float:
        """Smallest possible distance between `query` and any point of the cell."""
        gap = np.maximum(np.maximum(self.cell_min - query, query - self.cell_max), 0.0)
        return float(np.sqrt(gap @ gap))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(start={self.start}, end={self.end}, count={self.count:g})"


class KdTree:
    """
    Balanced KdTree built by median split on the axis of greatest spread.

    Args:
        points: (N, D) coordinates. Zero points give an empty tree.
        leaf_size: Maximum number of points stored in a leaf.
    """

    def __init__(self, points: npt.ArrayLike, leaf_size: int = KDTREE_LEAF_SIZE) -> None:
        if leaf_size < 1:
            raise ValueError(f"leaf_size must be positive, got {leaf_size}.")
        self.points = np.ascontiguousarray(points, dtype=np.float64)
        if self.points.ndim == 1:
            self.points = self.points.reshape(-1, 1) if self.points.size else self.points.reshape(0, 1)
        self.leaf_size = leaf_size
        self.indices = np.arange(len(self.points), dtype=np.int64)
        self.root: Optional[KdNode] = None
        self.n_nodes = 0

        if len(self.points) > 0:
            self.root = self._build(0, len(self.points))
            logger.debug(f"Built KdTree over {len(self.points)} points ({self.n_nodes} nodes).")

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return self.root is None

    def _build(self, start: int, end: int) -> KdNode:
        node = KdNode(self.points[self.indices[start:end]], start, end)
        self.n_nodes += 1
        if end - start <= self.leaf_size:
            return node

        spread = node.cell_max - node.cell_min
        axis = int(np.argmax(spread))
        if spread[axis] == 0.0:
            # All points coincide: keep them in one leaf
            return node

        mid = (start + end) // 2
        segment = self.indices[start:end]
        order = np.argpartition(self.points[segment, axis], mid - start, kind="introselect")
        self.indices[start:end] = segment[order]

        node.left = self._build(start, mid)
        node.right = self._build(mid, end)
        return node

    def indices_of(self, node: KdNode) -> npt.NDArray[np.int64]:
        """Data indices of the points under `node`."""
        return self.indices[node.start:node.end]

    def _require_points(self) -> KdNode:
        if self.root is None:
            raise EmptyIndexError("Cannot query a KdTree built on zero points.")
        return self.root

    def nearest(self, query: npt.ArrayLike) -> tuple[int, float]:
        """
        Nearest data point to `query`.

        Returns:
            (index, distance) of the nearest point. Ties go to the lowest index.

        Raises:
            EmptyIndexError: The tree holds no points.
        """
        root = self._require_points()
        q = np.asarray(query, dtype=np.float64).ravel()
        best = [-1, np.inf]

        def visit(node: KdNode) -> None:
            if node.min_distance_to(q) > best[1]:
                return
            if node.is_leaf:
                ids = self.indices_of(node)
                distances = np.linalg.norm(self.points[ids] - q, axis=1)
                for index, distance in zip(ids, distances):
                    if distance < best[1] or (distance == best[1] and index < best[0]):
                        best[0], best[1] = int(index), float(distance)
                return
            # Descend into the closer child first
            first, second = node.left, node.right
            if second.min_distance_to(q) < first.min_distance_to(q):
                first, second = second, first
            visit(first)
            visit(second)

        visit(root)
        return best[0], best[1]

    def query_radius(self, query: npt.ArrayLike, radius: float) -> npt.NDArray[np.int64]:
        """
        Indices of every point within `radius` of `query` (closed ball), sorted.

        Raises:
            EmptyIndexError: The tree holds no points.
        """
        root = self._require_points()
        q = np.asarray(query, dtype=np.float64).ravel()
        found: list[npt.NDArray[np.int64]] = []

        stack = [root]
        while stack:
            node = stack.pop()
            if node.min_distance_to(q) > radius:
                continue
            if node.is_leaf:
                ids = self.indices_of(node)
                distances = np.linalg.norm(self.points[ids] - q, axis=1)
                found.append(ids[distances <= radius])
            else:
                stack.append(node.left)
                stack.append(node.right)

        if not found:
            return np.empty(0, dtype=np.int64)
        return np.sort(np.concatenate(found))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_points={len(self)}, leaf_size={self.leaf_size}, n_nodes={self.n_nodes})"
