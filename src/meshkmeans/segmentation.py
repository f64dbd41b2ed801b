"""
Mesh Segmentation
=================
Applies K-Means to the faces of a mesh and turns the result into a
Segmentation: a face id -> segment id mapping.

Segment ids are centroid indices, so segments are numbered 0..k-1 in the
order in which their centroids were discovered by the initializer. Each call
to `MeshSegmentation.fit` produces a fresh Segmentation; previous results are
never modified.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Optional

import numpy as np
import matplotlib.pyplot as plt

from meshkmeans.clustering.kinit import Kinit
from meshkmeans.clustering.kmeans import KMeans, KMeansResult
from meshkmeans.config import HEAT_METHOD_FACE_THRESHOLD, MetricType, SegmentationConfig
from meshkmeans.metrics.euclidean import EuclideanMetric
from meshkmeans.metrics.geodesic import GeodesicMetric
from meshkmeans.metrics.heat import GeodesicHeatMetric
from meshkmeans.metrics.metric import UNASSIGNED

if TYPE_CHECKING:
    import numpy.typing as npt

    from meshkmeans.geometry.mesh import Mesh
    from meshkmeans.metrics.metric import Metric

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    """
    A set of faces forming one region.

    Attributes:
        index: Segment id.
        face_ids: Sorted ids of the member faces.
        area: Total area of the member faces.
    """
    index: int
    face_ids: tuple[int, ...]
    area: float

    def __len__(self) -> int:
        return len(self.face_ids)


class Segmentation:
    """
    Face id -> segment id mapping over a mesh.

    Args:
        mesh: The segmented mesh.
        face_segments: (F,) segment id of every face, UNASSIGNED (-1) for faces
            that belong to no segment.
        centroids: Optional (k, 3) segment centroids.
        n_segments: Number of segments. Defaults to max(face_segments) + 1.
    """

    def __init__(
        self,
        mesh: Mesh,
        face_segments: npt.ArrayLike,
        centroids: Optional[npt.NDArray[np.float64]] = None,
        n_segments: Optional[int] = None,
    ) -> None:
        self.mesh = mesh
        self.face_segments = np.asarray(face_segments, dtype=np.int64).copy()
        if self.face_segments.shape != (mesh.n_faces,):
            raise ValueError(
                f"Expected one segment id per face ({mesh.n_faces}), got shape {self.face_segments.shape}."
            )
        if np.any(self.face_segments < UNASSIGNED):
            raise ValueError("Segment ids must be non-negative (or -1 for unassigned faces).")

        inferred = int(self.face_segments.max()) + 1 if mesh.n_faces else 0
        self.n_segments = inferred if n_segments is None else n_segments
        if self.n_segments < inferred:
            raise ValueError(f"n_segments={self.n_segments} is smaller than the largest segment id + 1 ({inferred}).")
        self.centroids = centroids

    @classmethod
    def from_result(cls, mesh: Mesh, result: KMeansResult) -> Segmentation:
        return cls(mesh, result.assignment, centroids=result.centroids, n_segments=result.n_clusters)

    @property
    def segments(self) -> list[Segment]:
        areas = self.mesh.face_areas
        return [
            Segment(index=j, face_ids=tuple(int(f) for f in faces), area=float(areas[faces].sum()))
            for j, faces in enumerate(self.face_ids_by_segment())
        ]

    def face_ids_by_segment(self) -> list[npt.NDArray[np.int64]]:
        return [np.flatnonzero(self.face_segments == j) for j in range(self.n_segments)]

    def segment_of(self, face_id: int) -> int:
        return int(self.face_segments[face_id])

    @property
    def unassigned_faces(self) -> npt.NDArray[np.int64]:
        return np.flatnonzero(self.face_segments == UNASSIGNED)

    def segment_sizes(self) -> npt.NDArray[np.int64]:
        assigned = self.face_segments[self.face_segments != UNASSIGNED]
        return np.bincount(assigned, minlength=self.n_segments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "n_segments": self.n_segments,
            "face_segments": self.face_segments.tolist(),
            "centroids": None if self.centroids is None else self.centroids.tolist(),
        }

    def plot(self) -> None:
        """
        Scatter the face centers in 3D, colored by segment.
        """
        centers = self.mesh.face_centers
        plt.rcParams["figure.constrained_layout.use"] = True
        fig = plt.figure(figsize=(7, 6))
        ax = fig.add_subplot(projection="3d")

        cmap = plt.get_cmap("tab10" if self.n_segments <= 10 else "tab20")
        for segment in range(self.n_segments):
            members = self.face_segments == segment
            ax.scatter(*centers[members].T, s=6, color=cmap(segment % cmap.N), label=f"Segment {segment}")
        unassigned = self.face_segments == UNASSIGNED
        if np.any(unassigned):
            ax.scatter(*centers[unassigned].T, s=6, color="gray", label="Unassigned")
        if self.centroids is not None:
            ax.scatter(*self.centroids.T, s=60, color="k", marker="x", label="Centroids")

        ax.set_title(f"Segmentation ({self.n_segments} segments)")
        ax.set_xlabel("x")
        ax.set_ylabel("y")
        ax.set_zlabel("z")
        ax.legend(loc="upper right", fontsize="small")
        plt.show()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Segmentation):
            return NotImplemented
        return self.n_segments == other.n_segments and np.array_equal(self.face_segments, other.face_segments)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_faces={len(self.face_segments)}, n_segments={self.n_segments})"


class MeshSegmentation:
    """
    Segments meshes with K-Means over face centers.

    Args:
        config: Configuration record. Defaults to SegmentationConfig().
        **overrides: Fields replacing those of `config`.

    Raises:
        ValueError: An override names no configuration field.
    """

    def __init__(self, config: Optional[SegmentationConfig] = None, **overrides: Any) -> None:
        base = (config or SegmentationConfig()).to_dict()
        base.update(overrides)
        self.config = SegmentationConfig.from_dict(base, strict=True)
        self.metric: Optional[Metric] = None
        self.result: Optional[KMeansResult] = None

    def metric_type_for(self, mesh: Mesh) -> MetricType:
        if self.config.metric is not None:
            return self.config.metric
        if mesh.n_faces > HEAT_METHOD_FACE_THRESHOLD:
            return MetricType.GEODESIC_HEAT
        return MetricType.GEODESIC_GRAPH

    def build_metric(self, mesh: Mesh) -> Metric:
        """Metric of the configured type, bound to the mesh's faces."""
        metric_type = self.metric_type_for(mesh)
        if metric_type == MetricType.EUCLIDEAN:
            return EuclideanMetric(mesh.face_centers)
        if metric_type == MetricType.GEODESIC_HEAT:
            return GeodesicHeatMetric(mesh, time_factor=self.config.heat_time_factor, n_jobs=self.config.n_jobs)
        return GeodesicMetric(mesh, dihedral_weight=self.config.dihedral_weight, n_jobs=self.config.n_jobs)

    def fit(self, mesh: Mesh, k: Optional[int] = None, k_init: Optional[Kinit] = None) -> Segmentation:
        """
        Segment a mesh.

        Args:
            mesh: Mesh to segment.
            k: Number of segments. Falls back to the configured k, then to the
                K selection strategy.
            k_init: K selection strategy replacing the configured one.

        Returns:
            A new Segmentation.
        """
        if mesh.n_faces == 0:
            raise ValueError("Cannot segment a mesh without faces.")
        config = self.config
        self.metric = self.build_metric(mesh)
        logger.info(f"Segmenting {mesh} with {self.metric.__class__.__name__}.")

        kmeans = KMeans(
            k if k is not None else config.k,
            metric=self.metric,
            init=config.init,
            k_init=k_init if k_init is not None else config.k_init,
            k_range=config.k_range,
            max_iterations=config.max_iterations,
            tolerance=config.tolerance,
            seed=config.seed,
            kernel=config.kernel,
            n_jobs=config.n_jobs,
        )
        self.result = kmeans.fit()
        segmentation = Segmentation.from_result(mesh, self.result)
        logger.info(f"Segmentation done: sizes {segmentation.segment_sizes().tolist()}.")
        return segmentation

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(config={self.config})"
