"""
Error taxonomy of the clustering core.

Structural misconfiguration (bad k bounds, empty input) fails fast with
InvalidRangeError before any iteration runs. Per-point and per-centroid
conditions (empty cluster, unreachable face) are handled inside a run and only
show up in the logs or in the result's termination reason.
"""


class MeshKMeansError(Exception):
    """Base class for all errors raised by meshkmeans."""


class InvalidRangeError(MeshKMeansError, ValueError):
    """Malformed k bounds, k larger than the data or empty data."""


class EmptyAccumulatorError(MeshKMeansError, ArithmeticError):
    """A centroid was finalized with zero accumulated members."""


class DisconnectedGeometryError(MeshKMeansError):
    """A geodesic query between faces that lie on different mesh components."""

    def __init__(self, source: int, target: int) -> None:
        super().__init__(
            f"Face {target} is unreachable from face {source}: "
            "they belong to different connected components of the mesh."
        )
        self.source = source
        self.target = target


class EmptyIndexError(MeshKMeansError, LookupError):
    """A spatial query was issued against an index built on zero points."""
