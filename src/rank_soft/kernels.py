"""
Pairwise comparison kernels and the shared rank/Jacobian engine.

Three of the four ranking relaxations have the same shape:

    rank_i = (n - 1) * sum_{j valid} f(alpha * (v_i - v_j)) / count_i

and differ only in the comparison kernel ``f``. Every kernel here satisfies
``f(d) + f(-d) = 1`` and ``f(0) = 0.5``, which is what makes the rank sum
equal n(n-1)/2 for any alpha and makes ties average out.

Kernels:
1. Sigmoid - clamped logistic
2. Gaussian CDF - comparison under Gaussian noise of scale 1/alpha per value
3. Smoothstep - compact support of half-width 1/alpha (exact 0/1 outside)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import numpy as np
from scipy.special import ndtr

from rank_soft.stability import (
    finite_mask,
    logistic_derivative,
    pairwise_valid_mask,
    safe_divide,
    stable_logistic,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray


# =============================================================================
# Kernels
# =============================================================================


@dataclass(frozen=True)
class ComparisonKernel:
    """A sigmoid-shaped comparison f(d) together with its derivative f'(d)."""

    name: str
    forward: Callable[[NDArray[np.float64]], NDArray[np.float64]]
    derivative: Callable[[NDArray[np.float64]], NDArray[np.float64]]


_SQRT2 = math.sqrt(2.0)
_INV_2_SQRT_PI = 1.0 / (2.0 * math.sqrt(math.pi))


def gaussian_cdf(d: NDArray[np.float64]) -> NDArray[np.float64]:
    """P(v_i + e_i > v_j + e_j) with e ~ N(0, 1) per value, d = v_i - v_j."""
    return ndtr(np.asarray(d, dtype=np.float64) / _SQRT2)


def gaussian_cdf_derivative(d: NDArray[np.float64]) -> NDArray[np.float64]:
    # pdf of N(0, 2) at d
    d = np.asarray(d, dtype=np.float64)
    with np.errstate(over="ignore"):
        return _INV_2_SQRT_PI * np.exp(-0.25 * d * d)


def smoothstep(d: NDArray[np.float64]) -> NDArray[np.float64]:
    """Cubic smoothstep on [-1, 1], exactly 0 below and 1 above."""
    t = np.clip((np.asarray(d, dtype=np.float64) + 1.0) * 0.5, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def smoothstep_derivative(d: NDArray[np.float64]) -> NDArray[np.float64]:
    t = np.clip((np.asarray(d, dtype=np.float64) + 1.0) * 0.5, 0.0, 1.0)
    return 3.0 * t * (1.0 - t)


SIGMOID_KERNEL = ComparisonKernel("sigmoid", stable_logistic, logistic_derivative)
GAUSSIAN_CDF_KERNEL = ComparisonKernel("gaussian_cdf", gaussian_cdf, gaussian_cdf_derivative)
SMOOTHSTEP_KERNEL = ComparisonKernel("smoothstep", smoothstep, smoothstep_derivative)


# =============================================================================
# Shared Engine
# =============================================================================


def _scaled_differences(
    values: NDArray[np.float64],
    alpha: float,
    valid: NDArray[np.bool_],
    rows: slice,
) -> NDArray[np.float64]:
    """alpha * (v_i - v_j) for the requested rows, 0 where the pair is invalid."""
    with np.errstate(invalid="ignore", over="ignore"):
        diffs = alpha * (values[rows, np.newaxis] - values[np.newaxis, :])
    return np.where(valid, diffs, 0.0)


def pairwise_kernel_rank(
    values: NDArray[np.float64],
    alpha: float,
    kernel: ComparisonKernel,
) -> NDArray[np.float64]:
    """
    Soft ranks in [0, n-1] from all pairwise kernel comparisons.

    Arguments are assumed validated (float64 1-D array, finite alpha > 0).
    Non-finite elements get NaN and are skipped by every other element;
    an element with no valid comparisons gets 0.

    Args:
        values: Value vector (n,)
        alpha: Regularization / sharpness
        kernel: Comparison kernel

    Returns:
        Soft ranks (n,)
    """
    n = len(values)
    if n == 0:
        return np.array([], dtype=np.float64)

    valid = pairwise_valid_mask(values)
    diffs = _scaled_differences(values, alpha, valid, slice(None))
    comparisons = np.where(valid, kernel.forward(diffs), 0.0)
    counts = valid.sum(axis=1)

    ranks = (n - 1) * safe_divide(comparisons.sum(axis=1), counts, fill=0.0)
    ranks[~finite_mask(values)] = np.nan
    return ranks


def pairwise_kernel_jacobian(
    values: NDArray[np.float64],
    alpha: float,
    kernel: ComparisonKernel,
    start: int = 0,
    stop: int | None = None,
) -> NDArray[np.float64]:
    """
    Rows [start, stop) of d rank / d values for a kernel relaxation.

    J[i, i] = (alpha / count_i) * (n-1) * sum_j f'(alpha * (v_i - v_j))
    J[i, k] = -(alpha / count_i) * (n-1) * f'(alpha * (v_i - v_k))

    Each row sums to zero. Rows of non-finite elements and columns of
    non-finite partners are zero.

    Returns:
        Block of shape (stop - start, n)
    """
    n = len(values)
    stop = n if stop is None else stop
    if n == 0 or stop <= start:
        return np.zeros((max(stop - start, 0), n), dtype=np.float64)

    rows = slice(start, stop)
    valid = pairwise_valid_mask(values)[rows]
    diffs = _scaled_differences(values, alpha, valid, rows)
    deriv = np.where(valid, kernel.derivative(diffs), 0.0)
    scale = safe_divide(alpha * (n - 1), valid.sum(axis=1), fill=0.0)

    block = -scale[:, np.newaxis] * deriv
    local = np.arange(stop - start)
    block[local, start + local] = scale * deriv.sum(axis=1)
    return block


__all__ = [
    "ComparisonKernel",
    "SIGMOID_KERNEL",
    "GAUSSIAN_CDF_KERNEL",
    "SMOOTHSTEP_KERNEL",
    "gaussian_cdf",
    "gaussian_cdf_derivative",
    "smoothstep",
    "smoothstep_derivative",
    "pairwise_kernel_rank",
    "pairwise_kernel_jacobian",
]
