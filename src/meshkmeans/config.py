"""
Configuration & Global Constants
================================
This module is the central registry of tuning constants and of the
configuration record consumed by MeshSegmentation.

Why is this file needed?
------------------------
1. Single source of defaults: grid resolutions, iteration caps and tolerances
   used by several modules live in one place.
2. Runtime selection: the metric, the initialization method and the K selection
   strategy are chosen by name (StrEnum members), so a configuration can be
   stored as plain JSON and restored with `SegmentationConfig.from_dict`.

Exports:
    SegmentationConfig: The configuration record.
    MetricType, CentroidInit, KInitMethod, KernelType: Selection enums.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import StrEnum
import logging
from typing import Any, Dict, Optional

from meshkmeans.exceptions import InvalidRangeError

logger = logging.getLogger(__name__)

# Minimum number of grid divisions per axis for KDE mode search
RANGE_MIN: int = 9
# Neighborhood half-width (in grid steps) used when looking for local maxima
RAY_MIN: int = 3
# Upper bound of the default K sweep
MAX_CLUSTER: int = 10
# Bandwidth multiplier applied when the KDE finds fewer modes than requested
BANDWIDTH_SHRINK: float = 0.4
MAX_BANDWIDTH_REFINEMENTS: int = 3

DEFAULT_MAX_ITERATIONS: int = 100
DEFAULT_TOLERANCE: float = 1e-4
DEFAULT_K_RANGE: tuple[int, int] = (2, MAX_CLUSTER)

# Below this many points the Euclidean assignment skips the KdTree
BRUTE_FORCE_THRESHOLD: int = 64
KDTREE_LEAF_SIZE: int = 8

# Meshes with more faces use the heat method unless a metric is configured
HEAT_METHOD_FACE_THRESHOLD: int = 10000
MEDOID_CANDIDATES: int = 16
SILHOUETTE_SAMPLE_SIZE: int = 2000


class MetricType(StrEnum):
    EUCLIDEAN = "euclidean"
    GEODESIC_GRAPH = "geodesic_graph"
    GEODESIC_HEAT = "geodesic_heat"


class CentroidInit(StrEnum):
    RANDOM = "random"
    KDE = "kde"
    KDE3D = "kde3d"
    MOST_DISTANT = "most_distant"


class KInitMethod(StrEnum):
    ELBOW = "elbow"
    SILHOUETTE = "silhouette"
    KDE = "kde"


class KernelType(StrEnum):
    GAUSSIAN = "gaussian"
    EPANECHNIKOV = "epanechnikov"
    UNIFORM = "uniform"
    TRIANGULAR = "triangular"
    BIWEIGHT = "biweight"
    TRIWEIGHT = "triweight"
    COSINE = "cosine"


@dataclass
class SegmentationConfig:
    """
    Options recognized by MeshSegmentation.

    Attributes:
        k: Target number of segments. None runs the K selection strategy.
        k_range: Inclusive (min, max) bounds of the K sweep.
        metric: Distance used for clustering. None picks the heat method for
            large meshes and Dijkstra otherwise.
        init: Centroid initialization method.
        k_init: K selection strategy used when k is None.
        kernel: Density kernel of the KDE based methods.
        max_iterations: Iteration cap of the K-Means loop.
        tolerance: Total centroid movement under which the loop stops.
        seed: Seed of every random choice. None is non-deterministic.
        n_jobs: Worker threads for independent tasks.
        dihedral_weight: Weight of the dihedral angle term in Dijkstra edges.
        heat_time_factor: Multiplier of mean_edge_length**2 for the heat step.
    """
    k: Optional[int] = None
    k_range: tuple[int, int] = DEFAULT_K_RANGE
    metric: Optional[MetricType] = None
    init: CentroidInit = CentroidInit.MOST_DISTANT
    k_init: KInitMethod = KInitMethod.ELBOW
    kernel: KernelType = KernelType.GAUSSIAN
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    tolerance: float = DEFAULT_TOLERANCE
    seed: Optional[int] = None
    n_jobs: int = 1
    dihedral_weight: float = 0.0
    heat_time_factor: float = 1.0

    def __post_init__(self) -> None:
        self.k_range = (int(self.k_range[0]), int(self.k_range[1]))
        if self.metric is not None:
            self.metric = MetricType(self.metric)
        self.init = CentroidInit(self.init)
        self.k_init = KInitMethod(self.k_init)
        self.kernel = KernelType(self.kernel)

        k_min, k_max = self.k_range
        if k_min < 1 or k_min > k_max:
            raise InvalidRangeError(f"Invalid k range {self.k_range}: expected 1 <= min <= max.")
        if self.k is not None and self.k < 1:
            raise InvalidRangeError(f"Invalid k={self.k}: expected a positive number of clusters.")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}.")
        if self.tolerance < 0.0:
            raise ValueError(f"tolerance must be non-negative, got {self.tolerance}.")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be at least 1, got {self.n_jobs}.")
        if self.heat_time_factor <= 0.0:
            raise ValueError(f"heat_time_factor must be positive, got {self.heat_time_factor}.")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["k_range"] = list(self.k_range)
        for key in ("metric", "init", "k_init", "kernel"):
            if data[key] is not None:
                data[key] = str(data[key])
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any], strict: bool = False) -> SegmentationConfig:
        """
        Build a configuration from a plain dictionary.

        Unknown keys are logged and ignored, or rejected with a ValueError when
        `strict` is set.
        """
        known = set(SegmentationConfig.__dataclass_fields__)
        unknown = set(data) - known
        if unknown and strict:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {sorted(unknown)}")
        values = {key: value for key, value in data.items() if key in known}
        if "k_range" in values:
            values["k_range"] = tuple(values["k_range"])
        return SegmentationConfig(**values)
