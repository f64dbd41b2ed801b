"""
Geodesic distances with the heat method.

1. Integrate the heat flow (M + tL) u = u0 for a short time t from the source.
   On open meshes the Neumann and Dirichlet solutions are averaged.
2. Evaluate X = -grad(u) / |grad(u)| on every face.
3. Solve the Poisson equation L phi = -div(X).

L is the positive semi-definite cotangent Laplacian and M the lumped mass
matrix. Both factorizations are built once per mesh and reused for every
source. The Poisson problem is singular (constants are in the kernel of L),
so it is solved per connected component with a mass-weighted zero-mean
constraint enforced by a Lagrange multiplier.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np
import scipy as sp
import scipy.sparse.linalg

from meshkmeans.config import MEDOID_CANDIDATES
from meshkmeans.metrics.geodesic import GeodesicMetric

if TYPE_CHECKING:
    import numpy.typing as npt

    from meshkmeans.geometry.mesh import Mesh

logger = logging.getLogger(__name__)

factorized = sp.sparse.linalg.factorized

# Guards cotangents of degenerate triangles
_MIN_DOUBLE_AREA = 1e-300


def cotangent_weights(
    vertices: npt.NDArray[np.float64],
    faces: npt.NDArray[np.int64],
) -> npt.NDArray[np.float64]:
    """
    Cotangent of the interior angle at each corner.

    Args:
        vertices: (V, 3) coordinates.
        faces: (F, 3) vertex indices.

    Returns:
        (F, 3) array; column c holds the cotangent of the angle at faces[:, c].
    """
    cots = np.empty(faces.shape, dtype=np.float64)
    for c in range(3):
        a = vertices[faces[:, c]]
        u = vertices[faces[:, (c + 1) % 3]] - a
        w = vertices[faces[:, (c + 2) % 3]] - a
        dot = np.einsum("ij,ij->i", u, w)
        cross = np.linalg.norm(np.cross(u, w), axis=1)
        cots[:, c] = dot / np.maximum(cross, _MIN_DOUBLE_AREA)
    return cots


def cotangent_laplacian(
    vertices: npt.NDArray[np.float64],
    faces: npt.NDArray[np.int64],
    cots: Optional[npt.NDArray[np.float64]] = None,
) -> sp.sparse.csr_matrix:
    """
    Positive semi-definite cotangent Laplacian.

    Each corner c contributes 0.5 * cot(angle at c) to the edge opposite to it:
    L_ij -= w, L_ji -= w, L_ii += w, L_jj += w.
    """
    if cots is None:
        cots = cotangent_weights(vertices, faces)
    n = len(vertices)

    rows, cols, data = [], [], []
    for c in range(3):
        i = faces[:, (c + 1) % 3]
        j = faces[:, (c + 2) % 3]
        w = 0.5 * cots[:, c]
        rows += [i, j, i, j]
        cols += [j, i, i, j]
        data += [-w, -w, w, w]

    return sp.sparse.coo_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(n, n),
    ).tocsr()


def lumped_mass(
    vertices: npt.NDArray[np.float64],
    faces: npt.NDArray[np.int64],
    areas: npt.NDArray[np.float64],
) -> npt.NDArray[np.float64]:
    """Barycentric vertex areas: one third of the area of every incident face."""
    n = len(vertices)
    mass = np.zeros(n, dtype=np.float64)
    for c in range(3):
        mass += np.bincount(faces[:, c], weights=areas / 3.0, minlength=n)
    return mass


class GeodesicHeatMetric(GeodesicMetric):
    """
    Geodesic metric whose distance fields come from the heat method.

    Faster than Dijkstra on dense meshes at the cost of exactness. Vertex
    distances are shifted so the source vertices sit at zero and clamped to be
    non-negative; a face's distance is the mean over its three vertices.
    Faces on another connected component are np.inf.

    Args:
        mesh: Mesh whose faces are clustered.
        time_factor: Diffusion time as a multiple of mean_edge_length**2.
        medoid_candidates: See GeodesicMetric.
        n_jobs: Ignored, sparse solves run sequentially.
    """

    def __init__(
        self,
        mesh: Mesh,
        time_factor: float = 1.0,
        medoid_candidates: Optional[int] = MEDOID_CANDIDATES,
        n_jobs: int = 1,
    ) -> None:
        if time_factor <= 0.0:
            raise ValueError(f"time_factor must be positive, got {time_factor}.")
        if n_jobs > 1:
            logger.debug("Heat method solves run sequentially; ignoring n_jobs.")
        super().__init__(mesh, dihedral_weight=0.0, medoid_candidates=medoid_candidates, n_jobs=1)

        self.time_factor = time_factor
        self.time = time_factor * mesh.mean_edge_length ** 2
        self._precompute()

    def _precompute(self) -> None:
        vertices = self.mesh.vertices
        faces = self.mesh.face_vertices
        n = self.mesh.n_vertices

        self._cots = cotangent_weights(vertices, faces)
        self.laplacian = cotangent_laplacian(vertices, faces, self._cots)
        mass = lumped_mass(vertices, faces, self.mesh.face_areas)
        # Vertices outside every face carry no mass; keep the heat system regular
        mass[mass <= 0.0] = 1.0
        self.mass = mass

        heat_matrix = (sp.sparse.diags(mass) + self.time * self.laplacian).tocsc()
        self._heat_solve: Callable = factorized(heat_matrix)

        # Open meshes average the Neumann and Dirichlet (u = 0 on the boundary) heat flows
        self._interior: Optional[npt.NDArray[np.int64]] = None
        boundary = self.mesh.boundary_vertices
        if len(boundary) and len(boundary) < n:
            interior = np.setdiff1d(np.arange(n), boundary)
            self._interior = interior
            self._dirichlet_solve: Callable = factorized(heat_matrix[interior][:, interior].tocsc())

        # Gradient basis: grad(u) on a face is sum_c u[f_c] * basis[:, c, :],
        # basis = (N x e_c) / (2A) with e_c the edge opposite corner c
        p = [vertices[faces[:, c]] for c in range(3)]
        double_area = 2.0 * self.mesh.face_areas
        safe = np.where(double_area > 0.0, double_area, 1.0)
        normals = self.mesh.face_normals
        self._grad_basis = np.empty((len(faces), 3, 3), dtype=np.float64)
        for c in range(3):
            edge = p[(c + 2) % 3] - p[(c + 1) % 3]
            self._grad_basis[:, c, :] = np.cross(normals, edge) / safe[:, None]
        self._grad_basis[double_area <= 0.0] = 0.0

        # Edges leaving each corner, used by the divergence
        self._corner_edges = [
            (p[(c + 1) % 3] - p[c], p[(c + 2) % 3] - p[c]) for c in range(3)
        ]

        n_components, labels = self.mesh.vertex_components
        self._vertex_labels = labels
        self._local_index = np.empty(n, dtype=np.int64)
        self._poisson: dict[int, tuple[npt.NDArray[np.int64], Callable]] = {}

        face_labels = np.unique(labels[faces[:, 0]]) if len(faces) else np.empty(0, dtype=np.int64)
        for component in face_labels:
            members = np.flatnonzero(labels == component)
            self._local_index[members] = np.arange(len(members))
            block = self.laplacian[members][:, members]
            weights = sp.sparse.csr_matrix(mass[members][None, :])
            augmented = sp.sparse.bmat([[block, weights.T], [weights, None]]).tocsc()
            self._poisson[int(component)] = (members, factorized(augmented))

        logger.debug(
            f"Heat method ready: t={self.time:.4g}, {len(self._poisson)} component(s) "
            f"out of {n_components}."
        )

    def gradient(self, u: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """(F, 3) per-face gradient of a vertex scalar field."""
        values = u[self.mesh.face_vertices]
        return np.einsum("fc,fcd->fd", values, self._grad_basis)

    def divergence(self, field: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """(V,) integrated divergence of a per-face vector field."""
        faces = self.mesh.face_vertices
        n = self.mesh.n_vertices
        div = np.zeros(n, dtype=np.float64)
        for c in range(3):
            e1, e2 = self._corner_edges[c]
            # e1 is opposite corner c+2, e2 is opposite corner c+1
            contribution = 0.5 * (
                self._cots[:, (c + 2) % 3] * np.einsum("ij,ij->i", e1, field)
                + self._cots[:, (c + 1) % 3] * np.einsum("ij,ij->i", e2, field)
            )
            div += np.bincount(faces[:, c], weights=contribution, minlength=n)
        return div

    def vertex_distances(self, source_vertices: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Heat method distances from a set of vertices on one component.

        Returns:
            (V,) distances, np.inf on other components.
        """
        sources = np.atleast_1d(np.asarray(source_vertices, dtype=np.int64))
        component = int(self._vertex_labels[sources[0]])
        members, poisson_solve = self._poisson[component]

        u0 = np.zeros(self.mesh.n_vertices, dtype=np.float64)
        u0[sources] = 1.0
        u = self._heat_solve(u0)
        if self._interior is not None:
            dirichlet = np.zeros_like(u)
            dirichlet[self._interior] = self._dirichlet_solve(u0[self._interior])
            u = 0.5 * (u + dirichlet)

        grad = self.gradient(u)
        lengths = np.linalg.norm(grad, axis=1)
        direction = np.zeros_like(grad)
        valid = lengths > 0.0
        direction[valid] = -grad[valid] / lengths[valid, None]

        div = self.divergence(direction)
        rhs = np.append(-div[members], 0.0)
        phi_local = poisson_solve(rhs)[:-1]
        phi_local -= phi_local[self._local_index[sources]].min()

        distances = np.full(self.mesh.n_vertices, np.inf)
        distances[members] = np.maximum(phi_local, 0.0)
        return distances

    def compute_distances(self, source_face: int) -> npt.NDArray[np.float64]:
        vertex_values = self.vertex_distances(self.mesh.face_vertices[int(source_face)])
        return vertex_values[self.mesh.face_vertices].mean(axis=1)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_faces={self.n_points}, t={self.time:.4g}, "
            f"medoid_candidates={self.medoid_candidates})"
        )
