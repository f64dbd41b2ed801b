from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import TYPE_CHECKING, Iterator, Optional

import numpy as np

from meshkmeans.exceptions import EmptyAccumulatorError

if TYPE_CHECKING:
    import numpy.typing as npt


@dataclass(frozen=True)
class Point:
    """
    Immutable point in D-dimensional space.

    Arithmetic always returns a new Point. Equality compares coordinates only.

    Attributes:
        coords: Coordinates of the point.
        id: Optional identifier (e.g. the face a center belongs to).
    """
    coords: tuple[float, ...]
    id: Optional[int] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "coords", tuple(float(c) for c in self.coords))

    @classmethod
    def from_array(cls, array: npt.ArrayLike, id: Optional[int] = None) -> Point:
        return cls(tuple(np.asarray(array, dtype=np.float64).ravel()), id=id)

    @property
    def dim(self) -> int:
        return len(self.coords)

    @property
    def x(self) -> float:
        return self.coords[0]

    @property
    def y(self) -> float:
        return self.coords[1]

    @property
    def z(self) -> float:
        return self.coords[2]

    def __len__(self) -> int:
        return len(self.coords)

    def __iter__(self) -> Iterator[float]:
        return iter(self.coords)

    def __getitem__(self, index: int) -> float:
        return self.coords[index]

    def _check_dim(self, other: Point) -> None:
        if self.dim != other.dim:
            raise ValueError(f"Dimension mismatch: {self.dim} != {other.dim}.")

    def __add__(self, other: Point) -> Point:
        self._check_dim(other)
        return Point(tuple(a + b for a, b in zip(self.coords, other.coords)))

    def __sub__(self, other: Point) -> Point:
        self._check_dim(other)
        return Point(tuple(a - b for a, b in zip(self.coords, other.coords)))

    def __mul__(self, scalar: float) -> Point:
        return Point(tuple(a * scalar for a in self.coords))

    __rmul__ = __mul__

    def __truediv__(self, scalar: float) -> Point:
        return Point(tuple(a / scalar for a in self.coords))

    def __neg__(self) -> Point:
        return Point(tuple(-a for a in self.coords))

    def dot(self, other: Point) -> float:
        self._check_dim(other)
        return sum(a * b for a, b in zip(self.coords, other.coords))

    def cross(self, other: Point) -> Point:
        """Cross product, defined for 3D points only."""
        if self.dim != 3 or other.dim != 3:
            raise ValueError(f"Cross product requires 3D points, got {self.dim}D and {other.dim}D.")
        ax, ay, az = self.coords
        bx, by, bz = other.coords
        return Point((ay * bz - az * by, az * bx - ax * bz, ax * by - ay * bx))

    def norm(self) -> float:
        return math.sqrt(self.dot(self))

    def distance_to(self, other: Point) -> float:
        return (self - other).norm()

    def to_array(self) -> npt.NDArray[np.float64]:
        return np.array(self.coords, dtype=np.float64)

    def __repr__(self) -> str:
        coords = ", ".join(f"{c:g}" for c in self.coords)
        if self.id is None:
            return f"{self.__class__.__name__}({coords})"
        return f"{self.__class__.__name__}(id={self.id}, {coords})"


class HasWeightedCentroid:
    """
    Running weighted sum and count.

    Shared by CentroidPoint (accumulating assigned points during an iteration)
    and KdNode (static aggregate of a subtree).
    """

    def __init__(self, dim: int) -> None:
        self.wgt_cent = np.zeros(dim, dtype=np.float64)
        self.count = 0.0

    def reset(self) -> None:
        self.wgt_cent[:] = 0.0
        self.count = 0.0

    def accumulate(self, point: Point | npt.ArrayLike, weight: float = 1.0) -> None:
        """
        Add `weight * point` to the sum and `weight` to the count.

        Args:
            point: Point or coordinate array. It is never modified.
            weight: Non-negative weight.
        """
        if weight < 0.0:
            raise ValueError(f"Weights must be non-negative, got {weight}.")
        coords = point.to_array() if isinstance(point, Point) else np.asarray(point, dtype=np.float64)
        self.wgt_cent += weight * coords
        self.count += weight

    def accumulate_many(
        self,
        points: npt.NDArray[np.float64],
        weights: Optional[npt.NDArray[np.float64]] = None,
    ) -> None:
        """Vectorized `accumulate` over the rows of an (m, D) array."""
        if len(points) == 0:
            return
        if weights is None:
            self.wgt_cent += points.sum(axis=0)
            self.count += float(len(points))
        else:
            if np.any(weights < 0.0):
                raise ValueError("Weights must be non-negative.")
            self.wgt_cent += weights @ points
            self.count += float(weights.sum())

    def merge(self, other: HasWeightedCentroid) -> None:
        """Add another aggregate (e.g. a whole KdTree cell) to this one."""
        self.wgt_cent += other.wgt_cent
        self.count += other.count


class CentroidPoint(HasWeightedCentroid):
    """
    A centroid position plus the accumulator used to move it.

    Args:
        position: Current centroid position.
        index: Index of the centroid in its centroid set.
    """

    def __init__(self, position: Point | npt.ArrayLike, index: int = -1) -> None:
        if not isinstance(position, Point):
            position = Point.from_array(position)
        super().__init__(position.dim)
        self.position = position
        self.index = index

    def get_centroid(self) -> Point:
        """
        Mean of the accumulated points.

        Raises:
            EmptyAccumulatorError: When nothing was accumulated.
        """
        if self.count <= 0.0:
            raise EmptyAccumulatorError(f"Centroid {self.index} has no accumulated members.")
        return Point.from_array(self.wgt_cent / self.count, id=self.index)

    def finalize(self) -> Point:
        """Move the centroid to the accumulated mean and return the new position."""
        self.position = self.get_centroid()
        return self.position

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(index={self.index}, position={self.position}, count={self.count:g})"
