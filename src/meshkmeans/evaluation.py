"""
Segmentation Comparison Metrics
===============================
Scores a segmentation against a reference one defined on the same mesh, with
the measures of the usual mesh segmentation benchmark:

    - Rand index: fraction of face pairs on which both segmentations agree.
    - Hamming distance: directional region mismatch, split into missing rate
      and false alarm rate (area weighted).
    - Consistency error: global (GCE) and local (LCE) refinement error, by face
      count and area weighted (GCEa, LCEa).

All measures are invariant to a permutation of segment ids. Unassigned faces
(-1) are treated as one more region.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

    from meshkmeans.segmentation import Segmentation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HammingDistance:
    distance: float
    missing_rate: float
    false_alarm_rate: float


@dataclass(frozen=True)
class ConsistencyError:
    gce: float
    lce: float
    gce_area: float
    lce_area: float


def _labels(first: Segmentation, second: Segmentation) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    if first.face_segments.shape != second.face_segments.shape:
        raise ValueError(
            f"Segmentations cover different face counts: {len(first.face_segments)} "
            f"vs {len(second.face_segments)}."
        )
    _, a = np.unique(first.face_segments, return_inverse=True)
    _, b = np.unique(second.face_segments, return_inverse=True)
    return a.ravel(), b.ravel()


def contingency(
    a: npt.NDArray[np.int64],
    b: npt.NDArray[np.int64],
    weights: npt.NDArray[np.float64] | None = None,
) -> npt.NDArray[np.float64]:
    """(|A|, |B|) table of the (weighted) overlap between regions of two labelings."""
    table = np.zeros((a.max() + 1, b.max() + 1), dtype=np.float64)
    np.add.at(table, (a, b), 1.0 if weights is None else weights)
    return table


def rand_index(first: Segmentation, second: Segmentation) -> float:
    """Fraction of unordered face pairs grouped consistently by both segmentations."""
    a, b = _labels(first, second)
    n = len(a)
    if n < 2:
        return 1.0
    table = contingency(a, b)

    def pairs(x: npt.NDArray[np.float64]) -> float:
        return float(np.sum(x * (x - 1.0)) / 2.0)

    total = n * (n - 1) / 2.0
    same_both = pairs(table)
    same_first = pairs(table.sum(axis=1))
    same_second = pairs(table.sum(axis=0))
    disagreements = same_first + same_second - 2.0 * same_both
    return 1.0 - disagreements / total


def hamming_distance(segmentation: Segmentation, reference: Segmentation) -> HammingDistance:
    """
    Area weighted directional Hamming distance.

    The missing rate measures reference regions split by the segmentation,
    the false alarm rate segmentation regions that straddle reference regions.
    """
    a, b = _labels(segmentation, reference)
    areas = segmentation.mesh.face_areas
    total = float(areas.sum())
    if total <= 0.0:
        return HammingDistance(0.0, 0.0, 0.0)
    table = contingency(a, b, areas)

    missing = max(0.0, float((table.sum(axis=0) - table.max(axis=0)).sum()) / total)
    false_alarm = max(0.0, float((table.sum(axis=1) - table.max(axis=1)).sum()) / total)
    return HammingDistance(
        distance=0.5 * (missing + false_alarm),
        missing_rate=missing,
        false_alarm_rate=false_alarm,
    )


def consistency_error(first: Segmentation, second: Segmentation) -> ConsistencyError:
    """
    Global and local consistency errors.

    For a face f in region R1 of the first segmentation and R2 of the second,
    the refinement error is |R1 \\ R2| / |R1|. GCE forces one direction of
    refinement for the whole mesh, LCE lets each face pick its own.
    """
    a, b = _labels(first, second)
    areas = first.mesh.face_areas
    n = len(a)

    def errors(weights: npt.NDArray[np.float64] | None) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        table = contingency(a, b, weights)
        overlap = table[a, b]
        size_a = table.sum(axis=1)[a]
        size_b = table.sum(axis=0)[b]
        with np.errstate(divide="ignore", invalid="ignore"):
            e12 = np.where(size_a > 0.0, (size_a - overlap) / size_a, 0.0)
            e21 = np.where(size_b > 0.0, (size_b - overlap) / size_b, 0.0)
        return e12, e21

    e12, e21 = errors(None)
    gce = min(e12.sum(), e21.sum()) / n
    lce = np.minimum(e12, e21).sum() / n

    total = float(areas.sum())
    if total > 0.0:
        e12a, e21a = errors(areas)
        w = areas / total
        gce_area = min(float(w @ e12a), float(w @ e21a))
        lce_area = float(w @ np.minimum(e12a, e21a))
    else:
        gce_area = lce_area = 0.0

    return ConsistencyError(gce=float(gce), lce=float(lce), gce_area=gce_area, lce_area=lce_area)
