from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import numpy as np
import scipy as sp
import scipy.sparse.csgraph

from meshkmeans.config import MEDOID_CANDIDATES
from meshkmeans.exceptions import DisconnectedGeometryError
from meshkmeans.geometry.kdtree import KdTree
from meshkmeans.metrics.metric import IterationResult, Metric, UNASSIGNED
from meshkmeans.utils import ordered_map

if TYPE_CHECKING:
    import numpy.typing as npt

    from meshkmeans.geometry.mesh import Mesh

logger = logging.getLogger(__name__)


class GeodesicMetric(Metric):
    """
    Geodesic distance over the face graph of a mesh, computed with Dijkstra.

    Faces are graph nodes; two faces sharing a vertex are joined by an edge
    whose weight is the distance between their centers, optionally increased
    by a dihedral angle term so that paths crossing sharp creases cost more:

        w = |c_a - c_b| + dihedral_weight * sin(angle(n_a, n_b)) * mean_edge

    Centroids live on face centers. The update step picks, per cluster, the
    member face minimizing the total geodesic distance to the other members
    (a discrete medoid).

    Args:
        mesh: Mesh whose faces are clustered.
        dihedral_weight: Weight of the crease term. 0 gives plain center distances.
        medoid_candidates: Members (closest to the cluster's Euclidean mean)
            evaluated as medoid. None evaluates every member.
        n_jobs: Worker threads used to compute independent distance fields.
    """

    def __init__(
        self,
        mesh: Mesh,
        dihedral_weight: float = 0.0,
        medoid_candidates: Optional[int] = MEDOID_CANDIDATES,
        n_jobs: int = 1,
    ) -> None:
        super().__init__(mesh.face_centers)
        if dihedral_weight < 0.0:
            raise ValueError(f"dihedral_weight must be non-negative, got {dihedral_weight}.")
        if medoid_candidates is not None and medoid_candidates < 1:
            raise ValueError(f"medoid_candidates must be positive or None, got {medoid_candidates}.")

        self.mesh = mesh
        self.dihedral_weight = dihedral_weight
        self.medoid_candidates = medoid_candidates
        self.n_jobs = n_jobs

        self.face_tree = KdTree(self.points)
        self.graph = self._build_graph()
        self.centroid_faces = np.empty(0, dtype=np.int64)
        self._fields: dict[int, npt.NDArray[np.float64]] = {}

    def _build_graph(self) -> sp.sparse.csr_matrix:
        adjacency = sp.sparse.triu(self.mesh.face_adjacency, k=1).tocoo()
        rows, cols = adjacency.row, adjacency.col
        centers = self.mesh.face_centers
        lengths = np.linalg.norm(centers[rows] - centers[cols], axis=1)
        mean_length = float(lengths.mean()) if len(lengths) else 0.0

        weights = lengths
        if self.dihedral_weight > 0.0:
            normals = self.mesh.face_normals
            cos_angle = np.clip(np.einsum("ij,ij->i", normals[rows], normals[cols]), -1.0, 1.0)
            sin_angle = np.sqrt(1.0 - cos_angle ** 2)
            weights = lengths + self.dihedral_weight * sin_angle * mean_length

        # Explicit zeros would be read as missing edges by csgraph
        floor = np.finfo(np.float64).eps * max(mean_length, 1.0)
        weights = np.maximum(weights, floor)

        n = self.mesh.n_faces
        return sp.sparse.coo_matrix((weights, (rows, cols)), shape=(n, n)).tocsr()

    def compute_distances(self, source_face: int) -> npt.NDArray[np.float64]:
        """
        Distance field from one face.

        Returns:
            (F,) shortest path lengths, np.inf for faces on other components.
        """
        return sp.sparse.csgraph.dijkstra(self.graph, directed=False, indices=int(source_face))

    def field(self, source_face: int) -> npt.NDArray[np.float64]:
        """Cached `compute_distances`."""
        source_face = int(source_face)
        if source_face not in self._fields:
            self._fields[source_face] = self.compute_distances(source_face)
        return self._fields[source_face]

    def fields(self, faces: npt.ArrayLike) -> list[npt.NDArray[np.float64]]:
        """Cached distance fields of several faces, computed on the worker pool when missing."""
        faces = [int(f) for f in np.asarray(faces).ravel()]
        missing = [f for f in dict.fromkeys(faces) if f not in self._fields]
        for face, values in zip(missing, ordered_map(self.compute_distances, missing, self.n_jobs)):
            self._fields[face] = values
        return [self._fields[f] for f in faces]

    def _retain_fields(self, faces: npt.NDArray[np.int64]) -> None:
        keep = {int(f) for f in faces}
        self._fields = {face: values for face, values in self._fields.items() if face in keep}

    def closest_faces(self, centroids: npt.NDArray[np.float64]) -> npt.NDArray[np.int64]:
        """Face whose center is closest to each centroid."""
        return np.array([self.face_tree.nearest(c)[0] for c in np.atleast_2d(centroids)], dtype=np.int64)

    def distance(self, a: int, b: int) -> float:
        """
        Geodesic distance between two faces.

        Raises:
            DisconnectedGeometryError: `b` cannot be reached from `a`.
        """
        value = float(self.field(a)[int(b)])
        if not np.isfinite(value):
            raise DisconnectedGeometryError(int(a), int(b))
        return value

    def distances_to(self, centroids: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        faces = self.closest_faces(centroids)
        return np.column_stack(self.fields(faces))

    def pairwise_distances(self, indices: Optional[npt.NDArray[np.int64]] = None) -> npt.NDArray[np.float64]:
        if indices is None:
            indices = np.arange(self.n_points, dtype=np.int64)
        rows = ordered_map(self.compute_distances, [int(i) for i in indices], self.n_jobs)
        return np.vstack(rows)[:, indices]

    def fit_cpu(self, centroids: npt.NDArray[np.float64]) -> IterationResult:
        centroids = np.asarray(centroids, dtype=np.float64)
        faces = self.closest_faces(centroids)
        self._retain_fields(faces)
        self.centroid_faces = faces

        distances = np.column_stack(self.fields(faces))
        assignment = np.argmin(distances, axis=1).astype(np.int64)
        reachable = np.isfinite(distances[np.arange(self.n_points), assignment])
        assignment[~reachable] = UNASSIGNED
        if not np.all(reachable):
            logger.warning(
                f"{int((~reachable).sum())} face(s) are unreachable from every centroid "
                "and were left out of this iteration."
            )
        return self.update(assignment, centroids)

    def update(
        self,
        assignment: npt.NDArray[np.int64],
        centroids: npt.NDArray[np.float64],
    ) -> IterationResult:
        new_centroids = np.array(centroids, dtype=np.float64, copy=True)
        counts = np.zeros(len(centroids), dtype=np.int64)
        centroid_faces = self.closest_faces(centroids)

        for j in range(len(centroids)):
            members = np.flatnonzero(assignment == j)
            counts[j] = len(members)
            if counts[j] == 0:
                continue
            medoid = self._medoid(members)
            centroid_faces[j] = medoid
            new_centroids[j] = self.points[medoid]

        self.centroid_faces = centroid_faces
        return IterationResult(centroids=new_centroids, assignment=assignment, counts=counts)

    def _medoid(self, members: npt.NDArray[np.int64]) -> int:
        """Member face with the smallest total geodesic distance to the other members."""
        candidates = members
        if self.medoid_candidates is not None and len(members) > self.medoid_candidates:
            offsets = self.points[members] - self.points[members].mean(axis=0)
            closest = np.argsort(np.einsum("ij,ij->i", offsets, offsets), kind="stable")
            candidates = np.sort(members[closest[:self.medoid_candidates]])

        costs = np.array([values[members].sum() for values in self.fields(candidates)])
        return int(candidates[np.argmin(costs)])

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_faces={self.n_points}, "
            f"dihedral_weight={self.dihedral_weight}, medoid_candidates={self.medoid_candidates})"
        )
