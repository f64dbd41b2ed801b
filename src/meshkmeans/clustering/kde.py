"""
Kernel density based centroid initialization.

The density of the point set is estimated with a kernel, its local maxima
(modes) are located and used as initial centroids. Dense regions thus start
with a centroid, which makes the K-Means result far less dependent on luck than
a random pick.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, Optional

import numpy as np
import scipy as sp
import scipy.ndimage

from meshkmeans.clustering.centroid_init import CentroidInitMethod, farthest_points
from meshkmeans.clustering.kernel import kernel_density
from meshkmeans.config import BANDWIDTH_SHRINK, KernelType, MAX_BANDWIDTH_REFINEMENTS, RANGE_MIN, RAY_MIN
from meshkmeans.geometry.kdtree import KdTree
from meshkmeans.utils import as_points_array

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

# Grid candidates are only used up to this dimension
MAX_GRID_DIMENSION = 3


def rule_of_thumb_bandwidth(data: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """
    Per-axis bandwidth from the normal reference rule:

        h_j = sigma_j * n^(-1/(d+4)) * (4/(d+2))^(1/(d+4))

    Axes without spread fall back to the mean spread of the others (or 1).
    """
    n, d = data.shape
    sigma = data.std(axis=0, ddof=1) if n > 1 else np.zeros(d)
    positive = sigma[sigma > 0.0]
    sigma = np.where(sigma > 0.0, sigma, positive.mean() if len(positive) else 1.0)
    return sigma * n ** (-1.0 / (d + 4)) * (4.0 / (d + 2)) ** (1.0 / (d + 4))


class KDECentroidInit(CentroidInitMethod):
    """
    Density mode initialization in any dimension.

    Args:
        kernel: Density kernel.
        bandwidth: Per-axis (or scalar) bandwidth. None uses the rule of thumb.
        grid_divisions: Grid nodes per axis. None uses max(RANGE_MIN, cbrt(n)).
        radius_steps: A candidate is a mode when no candidate within
            radius_steps grid steps is denser.
        candidates: "grid" evaluates a regular grid over the bounding box,
            "data" evaluates the data points. Dimensions above 3 always use "data".
        max_refinements: Bandwidth shrink attempts when fewer than k modes are found.
        seed: Unused by the density itself, kept for a uniform interface.
    """

    def __init__(
        self,
        kernel: KernelType | str = KernelType.GAUSSIAN,
        bandwidth: Optional[float | npt.ArrayLike] = None,
        grid_divisions: Optional[int] = None,
        radius_steps: int = RAY_MIN,
        candidates: Literal["grid", "data"] = "grid",
        max_refinements: int = MAX_BANDWIDTH_REFINEMENTS,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__(seed)
        if candidates not in ("grid", "data"):
            raise ValueError(f"candidates must be 'grid' or 'data', got '{candidates}'.")
        if grid_divisions is not None and grid_divisions < 2:
            raise ValueError(f"grid_divisions must be at least 2, got {grid_divisions}.")
        if radius_steps < 1:
            raise ValueError(f"radius_steps must be positive, got {radius_steps}.")
        self.kernel = KernelType(kernel)
        self.bandwidth = bandwidth
        self.grid_divisions = grid_divisions
        self.radius_steps = radius_steps
        self.candidates = candidates
        self.max_refinements = max_refinements

    def bandwidth_for(self, data: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        if self.bandwidth is None:
            return rule_of_thumb_bandwidth(data)
        return np.broadcast_to(np.asarray(self.bandwidth, dtype=np.float64), (data.shape[1],)).copy()

    def divisions_for(self, data: npt.NDArray[np.float64]) -> int:
        if self.grid_divisions is not None:
            return self.grid_divisions
        return max(RANGE_MIN, int(np.cbrt(len(data))))

    def grid_axes(self, data: npt.NDArray[np.float64]) -> list[npt.NDArray[np.float64]]:
        """Grid node coordinates along each axis of the bounding box."""
        divisions = self.divisions_for(data)
        lower, upper = data.min(axis=0), data.max(axis=0)
        return [
            np.linspace(lo, hi, divisions) if hi > lo else np.array([lo])
            for lo, hi in zip(lower, upper)
        ]

    def step_size(self, data: npt.NDArray[np.float64]) -> float:
        """Largest grid step over all axes (1 when every axis is flat)."""
        divisions = self.divisions_for(data)
        extent = data.max(axis=0) - data.min(axis=0)
        step = float(extent.max()) / (divisions - 1)
        return step if step > 0.0 else 1.0

    def density(
        self,
        data: npt.NDArray[np.float64],
        queries: npt.NDArray[np.float64],
        bandwidth: npt.NDArray[np.float64],
    ) -> npt.NDArray[np.float64]:
        return kernel_density(queries, data, bandwidth, self.kernel)

    def candidate_points(self, data: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        if self.candidates == "data" or data.shape[1] > MAX_GRID_DIMENSION:
            return data
        axes = self.grid_axes(data)
        mesh = np.meshgrid(*axes, indexing="ij")
        return np.column_stack([m.ravel() for m in mesh])

    def local_maxima(
        self,
        data: npt.NDArray[np.float64],
        bandwidth: npt.NDArray[np.float64],
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Density modes, strongest first.

        Returns:
            modes: (m, D) mode coordinates.
            values: (m,) density at each mode, non-increasing.
        """
        candidates = self.candidate_points(data)
        values = self.density(data, candidates, bandwidth)
        radius = self.radius_steps * self.step_size(data)
        tree = KdTree(candidates)

        is_mode = np.zeros(len(candidates), dtype=bool)
        for i in np.flatnonzero(values > 0.0):
            neighbours = tree.query_radius(candidates[i], radius)
            others = values[neighbours]
            # Equal densities: only the lowest index survives
            denser = (others > values[i]) | ((others == values[i]) & (neighbours < i))
            is_mode[i] = not np.any(denser)

        indices = np.flatnonzero(is_mode)
        order = np.lexsort((indices, -values[indices]))
        return candidates[indices[order]], values[indices[order]]

    def find_modes(self, data: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Every density mode of the data, strongest first, without a target count."""
        points = as_points_array(data)
        modes, _ = self.local_maxima(points, self.bandwidth_for(points))
        return modes

    def _find(self, data: npt.NDArray[np.float64], k: int) -> npt.NDArray[np.float64]:
        bandwidth = self.bandwidth_for(data)
        modes, _ = self.local_maxima(data, bandwidth)
        refinements = 0
        while len(modes) < k and refinements < self.max_refinements:
            bandwidth = bandwidth * BANDWIDTH_SHRINK
            refinements += 1
            modes, _ = self.local_maxima(data, bandwidth)
            logger.debug(f"Bandwidth shrunk to {bandwidth}: {len(modes)} mode(s).")

        if len(modes) >= k:
            return modes[:k].copy()

        logger.info(f"Found {len(modes)} density mode(s) for k={k}; adding farthest points.")
        extra = farthest_points(data, modes, k - len(modes))
        return np.vstack([modes, data[extra]]) if len(modes) else data[extra].copy()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(kernel={self.kernel}, bandwidth={self.bandwidth}, "
            f"candidates={self.candidates})"
        )


class KDE3DCentroidInit(KDECentroidInit):
    """
    3D specialization working on a structured grid.

    Local maxima come from a maximum filter over a (2r+1)^3 block of grid
    cells; modes closer than r cells to a stronger mode are suppressed.
    """

    def local_maxima(
        self,
        data: npt.NDArray[np.float64],
        bandwidth: npt.NDArray[np.float64],
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        if data.shape[1] != 3:
            raise ValueError(f"KDE3DCentroidInit requires 3D data, got {data.shape[1]}D.")
        axes = self.grid_axes(data)
        shape = tuple(len(axis) for axis in axes)
        mesh = np.meshgrid(*axes, indexing="ij")
        nodes = np.column_stack([m.ravel() for m in mesh])
        grid = self.density(data, nodes, bandwidth).reshape(shape)

        size = 2 * self.radius_steps + 1
        peaks = sp.ndimage.maximum_filter(grid, size=size, mode="constant", cval=-np.inf)
        flat = np.flatnonzero(((grid == peaks) & (grid > 0.0)).ravel())
        flat = flat[np.lexsort((flat, -grid.ravel()[flat]))]

        kept: list[int] = []
        cells = np.column_stack(np.unravel_index(flat, shape))
        for n, cell in enumerate(cells):
            if all(np.abs(cell - cells[m]).max() > self.radius_steps for m in kept):
                kept.append(n)
        selected = flat[kept]
        return nodes[selected], grid.ravel()[selected]
