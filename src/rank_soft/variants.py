"""
Alternative ranking relaxations sharing the (values, alpha) -> ranks contract.

All variants return ranks in [0, n-1] (0 = smallest), keep the rank sum at
n(n-1)/2, average ties and converge to the discrete ranks as alpha grows.
Non-finite elements get NaN and are left out of everyone else's comparisons.

Gradient availability:

    method                   backward pass
    ----------------------   -----------------------------------------
    SIGMOID                  closed form (logistic derivative)
    PROBABILISTIC_CDF        closed form (Gaussian pdf)
    WINDOWED_SMOOTHING       closed form (piecewise polynomial, C^1)
    PERMUTATION_RELAXATION   numerical central differences (Sinkhorn)
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import logsumexp

from rank_soft.config import RankingMethod
from rank_soft.errors import ConvergenceWarning
from rank_soft.kernels import (
    GAUSSIAN_CDF_KERNEL,
    SIGMOID_KERNEL,
    SMOOTHSTEP_KERNEL,
    ComparisonKernel,
    pairwise_kernel_rank,
)
from rank_soft.stability import as_values, finite_mask, validate_alpha

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Configuration
# =============================================================================

# Fixed number of Sinkhorn sweeps; a fixed count keeps the relaxation a smooth
# function of its input so finite differences stay meaningful
SINKHORN_ITERATIONS = 100

# Row-sum error above which a ConvergenceWarning is emitted
SINKHORN_TOLERANCE = 1e-6

# Floor for log-weights whose scaled value overflows
LOGIT_LIMIT = 1e300

KERNEL_FOR_METHOD: dict[RankingMethod, ComparisonKernel] = {
    RankingMethod.SIGMOID: SIGMOID_KERNEL,
    RankingMethod.PROBABILISTIC_CDF: GAUSSIAN_CDF_KERNEL,
    RankingMethod.WINDOWED_SMOOTHING: SMOOTHSTEP_KERNEL,
}


# =============================================================================
# Kernel Variants
# =============================================================================


def probabilistic_cdf_rank(values: ArrayLike, alpha: float) -> NDArray[np.float64]:
    """
    Ranks where every comparison is a noisy judgment.

    Each value is observed with independent N(0, 1/alpha^2) noise, so
    P(v_i beats v_j) = Phi(alpha * (v_i - v_j) / sqrt(2)).
    """
    alpha = validate_alpha(alpha)
    return pairwise_kernel_rank(as_values(values), alpha, GAUSSIAN_CDF_KERNEL)


def windowed_smoothing_rank(values: ArrayLike, alpha: float) -> NDArray[np.float64]:
    """
    Ranks from a smoothstep comparison of half-width 1/alpha.

    Pairs further apart than 1/alpha compare exactly as 0 or 1, so only
    values inside each other's window are smoothed.
    """
    alpha = validate_alpha(alpha)
    return pairwise_kernel_rank(as_values(values), alpha, SMOOTHSTEP_KERNEL)


# =============================================================================
# Permutation-Matrix Relaxation
# =============================================================================


def soft_permutation_matrix(
    values: ArrayLike,
    alpha: float,
    num_iterations: int = SINKHORN_ITERATIONS,
) -> NDArray[np.float64]:
    """
    Doubly-stochastic relaxation of the ascending sort permutation.

    Starts from the NeuralSort unimodal matrix
        logits[p, j] = alpha * ((2p + 1 - m) * v_j - sum_k |v_j - v_k|)
    (row p prefers the p-th smallest value), row-normalizes it, then runs
    log-domain Sinkhorn sweeps ending on a column normalization.

    Args:
        values: Finite values (m,)
        alpha: Regularization / sharpness
        num_iterations: Sinkhorn sweeps

    Returns:
        P of shape (m, m); P[p, j] is the weight of item j at position p
    """
    v = as_values(values)
    m = len(v)
    if m == 0:
        return np.zeros((0, 0), dtype=np.float64)

    # Shifting v only adds a constant to each row of the logits, so the row
    # softmax is unchanged. Work on u = (v - centre) / spread in [-1, 1] and
    # fold the spread into alpha so extreme magnitudes cannot overflow.
    centre = 0.5 * v.max() + 0.5 * v.min()
    u = v - centre
    spread = float(np.max(np.abs(u)))
    if spread > 0.0:
        u = u / spread
    else:
        spread = 1.0

    abs_gaps = np.abs(u[:, np.newaxis] - u[np.newaxis, :]).sum(axis=1)
    coefficients = 2.0 * np.arange(m, dtype=np.float64) + 1.0 - m
    scores = coefficients[:, np.newaxis] * u[np.newaxis, :] - abs_gaps[np.newaxis, :]
    scores -= scores.max(axis=1, keepdims=True)
    with np.errstate(over="ignore"):
        logits = (scores * alpha) * spread
    # row maxima stay at 0; overflowed entries become a large finite floor
    logits = np.maximum(np.nan_to_num(logits, neginf=-LOGIT_LIMIT), -LOGIT_LIMIT)

    log_p = logits - logsumexp(logits, axis=1, keepdims=True)
    for _ in range(num_iterations):
        log_p = log_p - logsumexp(log_p, axis=0, keepdims=True)
        log_p = log_p - logsumexp(log_p, axis=1, keepdims=True)
    log_p = log_p - logsumexp(log_p, axis=0, keepdims=True)

    P = np.exp(log_p)
    row_error = float(np.max(np.abs(P.sum(axis=1) - 1.0)))
    if row_error > SINKHORN_TOLERANCE:
        warnings.warn(
            f"Sinkhorn normalization stopped with row-sum error {row_error:.2e} "
            f"after {num_iterations} iterations",
            ConvergenceWarning,
            stacklevel=2,
        )
    return P


def permutation_relaxation_rank(
    values: ArrayLike,
    alpha: float,
    num_iterations: int = SINKHORN_ITERATIONS,
) -> NDArray[np.float64]:
    """
    Ranks read off a soft permutation matrix: rank_j = sum_p p * P[p, j].

    Columns of P sum to one, so every rank is a convex combination of
    positions. Only the m finite values enter P; ranks are rescaled from
    [0, m-1] to [0, n-1].
    """
    alpha = validate_alpha(alpha)
    v = as_values(values)
    n = len(v)
    finite = finite_mask(v)
    m = int(finite.sum())

    ranks = np.full(n, np.nan, dtype=np.float64)
    if m == 1:
        ranks[finite] = 0.0
    elif m > 1:
        P = soft_permutation_matrix(v[finite], alpha, num_iterations)
        positions = np.arange(m, dtype=np.float64)
        ranks[finite] = (positions @ P) * ((n - 1) / (m - 1))
    return ranks


__all__ = [
    "SINKHORN_ITERATIONS",
    "SINKHORN_TOLERANCE",
    "LOGIT_LIMIT",
    "KERNEL_FOR_METHOD",
    "probabilistic_cdf_rank",
    "windowed_smoothing_rank",
    "soft_permutation_matrix",
    "permutation_relaxation_rank",
]
