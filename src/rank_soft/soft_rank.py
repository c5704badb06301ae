"""
Core soft-rank / soft-sort operators.

``soft_rank`` is the sigmoid pairwise relaxation:

    rank_i = (n - 1) * sum_{j valid} s(alpha * (v_i - v_j)) / count_i

It lands in [0, n-1] with 0 for the smallest value, averages tied values and
converges to the discrete rank permutation as alpha grows. ``rank`` is the
single dispatch point over every relaxation family; the sorted-window fast
path is only used when the caller asks for it.

This module is forward-only: importing it does not pull in the gradient
engine.

Usage:
    from rank_soft.soft_rank import soft_rank, soft_sort, rank

    soft_rank([5.0, 1.0, 3.0], alpha=1e4)  # ~[2.0, 0.0, 1.0]
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy.special import logsumexp

from rank_soft.config import DEFAULT_WINDOW, RankingMethod
from rank_soft.kernels import SIGMOID_KERNEL, pairwise_kernel_rank
from rank_soft.sorted_path import soft_rank_sorted_window
from rank_soft.stability import as_values, finite_mask, output_dtype, validate_alpha
from rank_soft.variants import (
    permutation_relaxation_rank,
    probabilistic_cdf_rank,
    windowed_smoothing_rank,
)

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Sigmoid Soft Rank
# =============================================================================


def soft_rank(values: ArrayLike, alpha: float) -> NDArray[np.float64]:
    """
    Sigmoid soft ranks of a value vector.

    Args:
        values: Value vector (n,), float32 or float64, left unmodified
        alpha: Regularization / sharpness, finite and > 0

    Returns:
        Soft ranks (n,) in [0, n-1]. NaN for non-finite inputs, 0 for an
        element with no valid comparisons. Empty input gives empty output.

    Raises:
        InvalidRegularization: alpha is non-positive, NaN or infinite
    """
    alpha = validate_alpha(alpha)
    arr = as_values(values)
    ranks = pairwise_kernel_rank(arr, alpha, SIGMOID_KERNEL)
    return ranks.astype(output_dtype(values), copy=False)


# =============================================================================
# Dispatch
# =============================================================================

_FORWARD = {
    RankingMethod.SIGMOID: soft_rank,
    RankingMethod.PERMUTATION_RELAXATION: permutation_relaxation_rank,
    RankingMethod.PROBABILISTIC_CDF: probabilistic_cdf_rank,
    RankingMethod.WINDOWED_SMOOTHING: windowed_smoothing_rank,
}


def rank(
    values: ArrayLike,
    alpha: float,
    method: RankingMethod | str = RankingMethod.SIGMOID,
    *,
    sorted_approximation: bool = False,
    window: int = DEFAULT_WINDOW,
) -> NDArray[np.float64]:
    """
    Soft ranks with an explicitly selected relaxation.

    Args:
        values: Value vector (n,)
        alpha: Regularization / sharpness
        method: Relaxation family (member or name)
        sorted_approximation: Use the banded approximation for ascending
            input (sigmoid only). Never switched on implicitly.
        window: Neighbours compared on each side by the approximation

    Returns:
        Soft ranks (n,) in [0, n-1]
    """
    method = RankingMethod.parse(method)
    if sorted_approximation:
        if method is not RankingMethod.SIGMOID:
            raise ValueError(
                "sorted_approximation is only available for the sigmoid method, "
                f"got {method.value}"
            )
        ranks = soft_rank_sorted_window(values, alpha, window)
    else:
        ranks = _FORWARD[method](values, alpha)
    return np.asarray(ranks).astype(output_dtype(values), copy=False)


# =============================================================================
# Soft Sort
# =============================================================================


def soft_sort(
    values: ArrayLike,
    alpha: float,
    method: RankingMethod | str = RankingMethod.SIGMOID,
) -> NDArray[np.float64]:
    """
    Differentiable ascending sort.

    Output position p is a weighted average of the inputs with weights
    proportional to exp(-alpha * (rank_j - p)^2), where rank_j are the soft
    ranks of the finite inputs. Converges to np.sort(values) as alpha grows.
    Non-finite inputs are dropped and reported as trailing NaN.

    Args:
        values: Value vector (n,)
        alpha: Regularization / sharpness
        method: Relaxation used for the underlying ranks

    Returns:
        Softly sorted values (n,)
    """
    alpha = validate_alpha(alpha)
    arr = as_values(values)
    finite = finite_mask(arr)
    kept = arr[finite]
    m = len(kept)

    out = np.full(len(arr), np.nan, dtype=np.float64)
    if m > 0:
        ranks = np.asarray(rank(kept, alpha, method), dtype=np.float64)
        positions = np.arange(m, dtype=np.float64)
        logits = -alpha * (positions[:, np.newaxis] - ranks[np.newaxis, :]) ** 2
        weights = np.exp(logits - logsumexp(logits, axis=1, keepdims=True))
        out[:m] = weights @ kept
    return out.astype(output_dtype(values), copy=False)


__all__ = [
    "soft_rank",
    "rank",
    "soft_sort",
]
