"""
File I/O
========
Readers and writers around the clustering core:

    - meshes through meshio (any triangle format meshio understands),
    - segmentations as `.seg` files: one integer segment id per line, line i
      holding the segment of face i,
    - point sets as comma separated values.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Union

import numpy as np

from meshkmeans.geometry.mesh import Mesh
from meshkmeans.segmentation import Segmentation
from meshkmeans.utils import as_points_array

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

SEG_EXTENSION = ".seg"

PathLike = Union[str, os.PathLike]


def load_mesh(filename: PathLike) -> Mesh:
    """Load a triangle mesh. See Mesh.from_file."""
    return Mesh.from_file(str(filename))


def save_mesh(filename: PathLike, mesh: Mesh) -> None:
    mesh.to_meshio().write(str(filename))
    logger.info(f"Mesh written to '{filename}'.")


def _check_seg_extension(filename: PathLike) -> Path:
    path = Path(filename)
    if path.suffix != SEG_EXTENSION:
        raise ValueError(f"Segmentation files must have the '{SEG_EXTENSION}' extension, got '{path.name}'.")
    return path


def write_seg(filename: PathLike, segmentation: Segmentation) -> None:
    """Write one segment id per line, in face order."""
    path = _check_seg_extension(filename)
    with path.open("w", encoding="utf-8") as handle:
        for segment in segmentation.face_segments:
            handle.write(f"{int(segment)}\n")
    logger.info(f"Segmentation with {segmentation.n_segments} segment(s) written to '{path}'.")


def read_seg(filename: PathLike, mesh: Mesh) -> Segmentation:
    """
    Read a `.seg` file written for `mesh`.

    Raises:
        ValueError: Wrong extension, a non-integer line, or a line count that
            differs from the mesh's face count.
    """
    path = _check_seg_extension(filename)
    values: list[int] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                values.append(int(text))
            except ValueError as error:
                raise ValueError(f"{path.name}:{line_number}: expected an integer segment id, got '{text}'.") from error

    if len(values) != mesh.n_faces:
        raise ValueError(f"'{path.name}' holds {len(values)} segment ids but the mesh has {mesh.n_faces} faces.")
    segmentation = Segmentation(mesh, np.array(values, dtype=np.int64))
    logger.info(f"Read segmentation with {segmentation.n_segments} segment(s) from '{path}'.")
    return segmentation


def read_points_csv(filename: PathLike, delimiter: str = ",") -> npt.NDArray[np.float64]:
    """
    Read an (N, D) point set. Rows that are not fully numeric (headers) are skipped.
    """
    raw = np.genfromtxt(str(filename), delimiter=delimiter, dtype=np.float64, ndmin=2)
    rows = raw[~np.isnan(raw).any(axis=1)]
    return as_points_array(rows)


def write_points_csv(filename: PathLike, points: npt.ArrayLike, delimiter: str = ",") -> None:
    np.savetxt(str(filename), as_points_array(points), delimiter=delimiter, fmt="%.17g")
