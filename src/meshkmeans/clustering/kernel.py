"""
Density kernels.

Every kernel is radial: it only depends on r = |u|, where u is the offset to a
sample scaled by the inverse bandwidth. Compact kernels vanish for r > 1.
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING, Callable

import numpy as np
import numba as nb

from meshkmeans.config import KernelType

if TYPE_CHECKING:
    import numpy.typing as npt


@nb.njit(cache=True, fastmath=True)
def _norm_sq(u: npt.NDArray[np.float64]) -> float:
    total = 0.0
    for i in range(u.shape[0]):
        total += u[i] * u[i]
    return total


@nb.njit(cache=True, fastmath=True)
def gaussian(u: npt.NDArray[np.float64]) -> float:
    d = u.shape[0]
    return (2.0 * math.pi) ** (-0.5 * d) * math.exp(-0.5 * _norm_sq(u))


@nb.njit(cache=True, fastmath=True)
def epanechnikov(u: npt.NDArray[np.float64]) -> float:
    r2 = _norm_sq(u)
    return 0.75 * (1.0 - r2) if r2 <= 1.0 else 0.0


@nb.njit(cache=True, fastmath=True)
def uniform(u: npt.NDArray[np.float64]) -> float:
    return 0.5 if _norm_sq(u) <= 1.0 else 0.0


@nb.njit(cache=True, fastmath=True)
def triangular(u: npt.NDArray[np.float64]) -> float:
    r = math.sqrt(_norm_sq(u))
    return 1.0 - r if r <= 1.0 else 0.0


@nb.njit(cache=True, fastmath=True)
def biweight(u: npt.NDArray[np.float64]) -> float:
    r2 = _norm_sq(u)
    return 15.0 / 16.0 * (1.0 - r2) ** 2 if r2 <= 1.0 else 0.0


@nb.njit(cache=True, fastmath=True)
def triweight(u: npt.NDArray[np.float64]) -> float:
    r2 = _norm_sq(u)
    return 35.0 / 32.0 * (1.0 - r2) ** 3 if r2 <= 1.0 else 0.0


@nb.njit(cache=True, fastmath=True)
def cosine(u: npt.NDArray[np.float64]) -> float:
    r = math.sqrt(_norm_sq(u))
    return math.pi / 4.0 * math.cos(math.pi / 2.0 * r) if r <= 1.0 else 0.0


KERNELS: dict[KernelType, Callable[[npt.NDArray[np.float64]], float]] = {
    KernelType.GAUSSIAN: gaussian,
    KernelType.EPANECHNIKOV: epanechnikov,
    KernelType.UNIFORM: uniform,
    KernelType.TRIANGULAR: triangular,
    KernelType.BIWEIGHT: biweight,
    KernelType.TRIWEIGHT: triweight,
    KernelType.COSINE: cosine,
}

# Stable integer codes for the compiled density loop
KERNEL_CODES: dict[KernelType, int] = {kernel: code for code, kernel in enumerate(KERNELS)}


def get_kernel(kernel: KernelType | str) -> Callable[[npt.NDArray[np.float64]], float]:
    """Kernel function by name. Unknown names raise ValueError."""
    return KERNELS[KernelType(kernel)]


@nb.njit(cache=True, fastmath=True)
def _kernel_value(code: int, u: npt.NDArray[np.float64]) -> float:
    if code == 0:
        return gaussian(u)
    if code == 1:
        return epanechnikov(u)
    if code == 2:
        return uniform(u)
    if code == 3:
        return triangular(u)
    if code == 4:
        return biweight(u)
    if code == 5:
        return triweight(u)
    return cosine(u)


@nb.njit(cache=True, fastmath=True)
def _density(
    queries: npt.NDArray[np.float64],
    samples: npt.NDArray[np.float64],
    inv_bandwidth: npt.NDArray[np.float64],
    code: int,
) -> npt.NDArray[np.float64]:
    m, d = queries.shape
    n = samples.shape[0]
    out = np.zeros(m, dtype=np.float64)
    u = np.empty(d, dtype=np.float64)
    for q in range(m):
        total = 0.0
        for i in range(n):
            for k in range(d):
                u[k] = (queries[q, k] - samples[i, k]) * inv_bandwidth[k]
            total += _kernel_value(code, u)
        out[q] = total
    return out


def kernel_density(
    queries: npt.NDArray[np.float64],
    samples: npt.NDArray[np.float64],
    bandwidth: npt.NDArray[np.float64],
    kernel: KernelType | str = KernelType.GAUSSIAN,
) -> npt.NDArray[np.float64]:
    """
    Kernel density estimate with a diagonal bandwidth matrix H = diag(h^2).

        f(x) = sum_i K(H^(-1/2) (x - x_i)) / (n * sqrt(det H))

    Args:
        queries: (m, D) evaluation points.
        samples: (n, D) data.
        bandwidth: (D,) per-axis bandwidths h, all strictly positive.
        kernel: Kernel name.

    Returns:
        (m,) density values.
    """
    queries = np.ascontiguousarray(queries, dtype=np.float64)
    samples = np.ascontiguousarray(samples, dtype=np.float64)
    bandwidth = np.asarray(bandwidth, dtype=np.float64)
    if np.any(bandwidth <= 0.0):
        raise ValueError(f"Bandwidths must be strictly positive, got {bandwidth}.")
    code = KERNEL_CODES[KernelType(kernel)]
    values = _density(queries, samples, 1.0 / bandwidth, code)
    return values / (len(samples) * float(np.prod(bandwidth)))
