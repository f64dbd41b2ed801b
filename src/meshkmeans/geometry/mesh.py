from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy as sp
import scipy.sparse.csgraph
import meshio

from meshkmeans.geometry.point import Point

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

TRIANGLE_CELL_TYPE = "triangle"


@dataclass(frozen=True)
class Face:
    """
    A triangle of a mesh.

    Attributes:
        id: Zero-based face index in the owning mesh.
        vertices: Vertex indices in winding order.
        center: Barycenter of the three vertices.
        normal: Unit normal following the winding order.
        area: Triangle area.
    """
    id: int
    vertices: tuple[int, int, int]
    center: Point
    normal: Point
    area: float


class Mesh:
    """
    Triangle mesh with cached per-face geometry.

    Faces are immutable after construction. Every derived array (centers,
    normals, areas, adjacency) is computed once on first access.
    """

    def __init__(
        self,
        vertices: npt.ArrayLike,
        faces: npt.ArrayLike,
        filename: str | None = None,
    ) -> None:
        """
        Initialize the Mesh class.

        Args:
            vertices: (V, 3) vertex coordinates.
            faces: (F, 3) vertex indices of each triangle.
            filename: Source file, if the mesh was loaded from disk.
        """
        self.vertices = np.ascontiguousarray(vertices, dtype=np.float64)
        self.face_vertices = np.ascontiguousarray(faces, dtype=np.int64)
        self.filename = filename

        if self.vertices.ndim != 2 or self.vertices.shape[1] != 3:
            raise ValueError(f"Vertices must be a (V, 3) array, got shape {self.vertices.shape}.")
        if self.face_vertices.ndim != 2 or self.face_vertices.shape[1] != 3:
            raise ValueError(
                f"Faces must be a (F, 3) array of triangles, got shape {self.face_vertices.shape}. "
                "Only triangle meshes are supported."
            )
        if self.face_vertices.size and (
            self.face_vertices.min() < 0 or self.face_vertices.max() >= len(self.vertices)
        ):
            raise ValueError(
                f"Face vertex indices must lie in [0, {len(self.vertices) - 1}], "
                f"got [{self.face_vertices.min()}, {self.face_vertices.max()}]."
            )

    @classmethod
    def from_file(cls, filename: str) -> Mesh:
        """
        Load a triangle mesh with meshio (OBJ, OFF, PLY, STL, VTK, ...).

        Non-triangle cells are ignored with a warning.
        """
        data = meshio.read(filename)
        triangles = [block.data for block in data.cells if block.type == TRIANGLE_CELL_TYPE]
        skipped = sorted({block.type for block in data.cells if block.type != TRIANGLE_CELL_TYPE})
        if not triangles:
            raise ValueError(
                f"Mesh file '{filename}' contains no triangle cells (found: {skipped}). "
                "Only triangle meshes are supported."
            )
        if skipped:
            logger.warning(f"Ignoring non-triangle cells {skipped} in '{filename}'.")

        points = np.asarray(data.points, dtype=np.float64)
        if points.shape[1] == 2:
            points = np.column_stack([points, np.zeros(len(points))])
        mesh = cls(points, np.vstack(triangles), filename=filename)
        logger.info(f"Loaded mesh '{filename}': {mesh.n_vertices} vertices, {mesh.n_faces} faces.")
        return mesh

    def to_meshio(self) -> meshio.Mesh:
        return meshio.Mesh(self.vertices, [(TRIANGLE_CELL_TYPE, self.face_vertices)])

    @property
    def n_vertices(self) -> int:
        return len(self.vertices)

    @property
    def n_faces(self) -> int:
        return len(self.face_vertices)

    @cached_property
    def _face_cross(self) -> npt.NDArray[np.float64]:
        p0, p1, p2 = (self.vertices[self.face_vertices[:, i]] for i in range(3))
        return np.cross(p1 - p0, p2 - p0)

    @cached_property
    def face_centers(self) -> npt.NDArray[np.float64]:
        """(F, 3) barycenters."""
        return self.vertices[self.face_vertices].mean(axis=1)

    @cached_property
    def face_areas(self) -> npt.NDArray[np.float64]:
        """(F,) triangle areas, 0.5 * |e1 x e2|."""
        return 0.5 * np.linalg.norm(self._face_cross, axis=1)

    @cached_property
    def face_normals(self) -> npt.NDArray[np.float64]:
        """(F, 3) unit normals. Degenerate faces get a zero normal."""
        lengths = np.linalg.norm(self._face_cross, axis=1)
        normals = np.zeros_like(self._face_cross)
        valid = lengths > 0.0
        normals[valid] = self._face_cross[valid] / lengths[valid, None]
        return normals

    @property
    def total_area(self) -> float:
        return float(self.face_areas.sum())

    def face(self, face_id: int) -> Face:
        if not 0 <= face_id < self.n_faces:
            raise IndexError(f"Face id {face_id} out of range [0, {self.n_faces}).")
        return Face(
            id=face_id,
            vertices=tuple(int(v) for v in self.face_vertices[face_id]),
            center=Point.from_array(self.face_centers[face_id], id=face_id),
            normal=Point.from_array(self.face_normals[face_id]),
            area=float(self.face_areas[face_id]),
        )

    @property
    def faces(self) -> list[Face]:
        return [self.face(i) for i in range(self.n_faces)]

    @cached_property
    def edges(self) -> npt.NDArray[np.int64]:
        """(E, 2) unique undirected edges, smaller vertex index first."""
        f = self.face_vertices
        all_edges = np.vstack([f[:, [0, 1]], f[:, [1, 2]], f[:, [2, 0]]])
        all_edges.sort(axis=1)
        return np.unique(all_edges, axis=0)

    @cached_property
    def boundary_vertices(self) -> npt.NDArray[np.int64]:
        """Sorted vertices lying on an edge used by a single face."""
        f = self.face_vertices
        all_edges = np.vstack([f[:, [0, 1]], f[:, [1, 2]], f[:, [2, 0]]])
        all_edges.sort(axis=1)
        edges, counts = np.unique(all_edges, axis=0, return_counts=True)
        return np.unique(edges[counts == 1])

    @cached_property
    def mean_edge_length(self) -> float:
        if len(self.edges) == 0:
            return 0.0
        vectors = self.vertices[self.edges[:, 1]] - self.vertices[self.edges[:, 0]]
        return float(np.linalg.norm(vectors, axis=1).mean())

    @cached_property
    def face_vertex_incidence(self) -> sp.sparse.csr_matrix:
        """(F, V) 0/1 incidence matrix."""
        rows = np.repeat(np.arange(self.n_faces), 3)
        cols = self.face_vertices.ravel()
        data = np.ones(len(rows), dtype=np.float64)
        return sp.sparse.coo_matrix((data, (rows, cols)), shape=(self.n_faces, self.n_vertices)).tocsr()

    @cached_property
    def face_adjacency(self) -> sp.sparse.csr_matrix:
        """
        (F, F) boolean adjacency: two faces are neighbours when they share at
        least one vertex. The diagonal is empty.
        """
        incidence = self.face_vertex_incidence
        adjacency = (incidence @ incidence.T).tocoo()
        off_diagonal = adjacency.row != adjacency.col
        return sp.sparse.coo_matrix(
            (np.ones(off_diagonal.sum(), dtype=bool), (adjacency.row[off_diagonal], adjacency.col[off_diagonal])),
            shape=(self.n_faces, self.n_faces),
        ).tocsr()

    def neighbours(self, face_id: int) -> npt.NDArray[np.int64]:
        adjacency = self.face_adjacency
        return adjacency.indices[adjacency.indptr[face_id]:adjacency.indptr[face_id + 1]].astype(np.int64)

    @cached_property
    def vertex_components(self) -> tuple[int, npt.NDArray[np.int32]]:
        """Number of connected components and the component label of each vertex."""
        edges = self.edges
        graph = sp.sparse.coo_matrix(
            (np.ones(len(edges)), (edges[:, 0], edges[:, 1])),
            shape=(self.n_vertices, self.n_vertices),
        )
        return sp.sparse.csgraph.connected_components(graph, directed=False)

    @property
    def face_components(self) -> npt.NDArray[np.int32]:
        """Component label of each face."""
        return self.vertex_components[1][self.face_vertices[:, 0]]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_vertices={self.n_vertices}, n_faces={self.n_faces})"
