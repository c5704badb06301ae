"""
Banded approximation of the sigmoid soft rank for sorted input.

For ascending input, element i is compared exactly only with the ``window``
neighbours on each side. Everything further left is assumed to be smaller
(comparison = 1) and everything further right larger (comparison = 0), which
is accurate when values outside the window are at least a few 1/alpha away.

Cost is O(n * window) time and memory instead of O(n^2). Because every pair
still contributes exactly 1 to the rank sum, the sum stays n(n-1)/2.

Accuracy trade-off: the per-element absolute error is bounded by
``sorted_window_error_bound``; it is negligible for well-separated input and
grows quickly when many out-of-window neighbours sit within ~1/alpha, or when
the input is not actually sorted.

This path is opt-in only. It is never chosen from the shape of the input.
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import csr_matrix

from rank_soft.config import DEFAULT_WINDOW
from rank_soft.errors import ApproximationWarning
from rank_soft.stability import (
    as_values,
    finite_mask,
    logistic_derivative,
    safe_divide,
    stable_logistic,
    validate_alpha,
)

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Helpers
# =============================================================================


def _validate_window(window: int) -> int:
    if int(window) != window or window < 1:
        raise ValueError(f"window must be a positive integer, got {window!r}")
    return int(window)


def _warn_if_unsorted(values: NDArray[np.float64]) -> None:
    finite_values = values[finite_mask(values)]
    if np.any(np.diff(finite_values) < 0):
        warnings.warn(
            "sorted-window soft rank received input that is not in ascending order; "
            "out-of-window comparisons will be wrong",
            ApproximationWarning,
            stacklevel=3,
        )


def _band(
    values: NDArray[np.float64], alpha: float, window: int
) -> tuple[NDArray[np.int64], NDArray[np.bool_], NDArray[np.float64]]:
    """
    Neighbour indices, validity and scaled differences inside the window.

    Returns:
        (neighbours, valid, diffs) each of shape (n, 2 * window)
    """
    n = len(values)
    offsets = np.concatenate([np.arange(-window, 0), np.arange(1, window + 1)])
    neighbours = np.arange(n)[:, np.newaxis] + offsets[np.newaxis, :]
    in_range = (neighbours >= 0) & (neighbours < n)
    neighbours = np.clip(neighbours, 0, max(n - 1, 0))

    finite = finite_mask(values)
    valid = in_range & finite[:, np.newaxis] & finite[neighbours]
    with np.errstate(invalid="ignore", over="ignore"):
        diffs = alpha * (values[:, np.newaxis] - values[neighbours])
    diffs = np.where(valid, diffs, 0.0)
    return neighbours, valid, diffs


def _outside_counts(
    finite: NDArray[np.bool_], window: int
) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
    """Finite elements strictly left / right of each element's window."""
    n = len(finite)
    prefix = np.concatenate([[0], np.cumsum(finite)])
    idx = np.arange(n)
    below = prefix[np.clip(idx - window, 0, n)]
    above = prefix[n] - prefix[np.clip(idx + window + 1, 0, n)]
    return below, above


# =============================================================================
# Forward
# =============================================================================


def soft_rank_sorted_window(
    values: ArrayLike,
    alpha: float,
    window: int = DEFAULT_WINDOW,
) -> NDArray[np.float64]:
    """
    Approximate sigmoid soft ranks of ascending input.

    Args:
        values: Value vector (n,), expected in ascending order
        alpha: Regularization / sharpness
        window: Neighbours compared exactly on each side

    Returns:
        Approximate soft ranks (n,) in [0, n-1]; NaN for non-finite inputs

    Warns:
        ApproximationWarning: the finite values are not in ascending order
    """
    alpha = validate_alpha(alpha)
    window = _validate_window(window)
    arr = as_values(values)
    n = len(arr)
    if n == 0:
        return np.array([], dtype=np.float64)
    window = min(window, max(n - 1, 1))

    _warn_if_unsorted(arr)
    finite = finite_mask(arr)
    _, valid, diffs = _band(arr, alpha, window)
    below, above = _outside_counts(finite, window)

    inside = np.where(valid, stable_logistic(diffs), 0.0).sum(axis=1)
    counts = valid.sum(axis=1) + below + above
    ranks = (n - 1) * safe_divide(inside + below, counts, fill=0.0)
    ranks[~finite] = np.nan
    return ranks


def sorted_window_error_bound(
    values: ArrayLike,
    alpha: float,
    window: int = DEFAULT_WINDOW,
) -> NDArray[np.float64]:
    """
    Upper bound on |approximate - exact| soft rank per element.

    Each assumed-smaller neighbour j contributes an error of
    s(alpha * (v_j - v_i)), which is at most s(alpha * (max_left - v_i));
    symmetrically on the right with the smallest out-of-window value. The
    bound holds for any input order and is tight-ish for sorted input.

    Returns:
        Bound (n,); NaN for non-finite inputs
    """
    alpha = validate_alpha(alpha)
    window = _validate_window(window)
    arr = as_values(values)
    n = len(arr)
    if n == 0:
        return np.array([], dtype=np.float64)
    window = min(window, max(n - 1, 1))

    finite = finite_mask(arr)
    below, above = _outside_counts(finite, window)

    # prefix max over finite values left of the window, suffix min right of it
    left_vals = np.where(finite, arr, -np.inf)
    right_vals = np.where(finite, arr, np.inf)
    prefix_max = np.concatenate([[-np.inf], np.maximum.accumulate(left_vals)])
    suffix_min = np.concatenate([np.minimum.accumulate(right_vals[::-1])[::-1], [np.inf]])
    idx = np.arange(n)
    max_left = prefix_max[np.clip(idx - window, 0, n)]
    min_right = suffix_min[np.clip(idx + window + 1, 0, n)]

    with np.errstate(invalid="ignore", over="ignore"):
        left_err = below * np.where(below > 0, stable_logistic(alpha * (max_left - arr)), 0.0)
        right_err = above * np.where(above > 0, stable_logistic(alpha * (arr - min_right)), 0.0)
    counts = np.maximum(finite.sum() - 1, 0)
    bound = (n - 1) * safe_divide(left_err + right_err, np.full(n, counts), fill=0.0)
    bound[~finite] = np.nan
    return bound


# =============================================================================
# Backward
# =============================================================================


def soft_rank_sorted_window_gradient(
    values: ArrayLike,
    alpha: float,
    window: int = DEFAULT_WINDOW,
) -> csr_matrix:
    """
    Banded Jacobian of ``soft_rank_sorted_window``.

    Out-of-window comparisons are constants, so only the 2 * window + 1
    central diagonals are non-zero. Rows sum to zero.

    Returns:
        csr_matrix of shape (n, n)
    """
    alpha = validate_alpha(alpha)
    window = _validate_window(window)
    arr = as_values(values)
    n = len(arr)
    if n == 0:
        return csr_matrix((0, 0), dtype=np.float64)
    window = min(window, max(n - 1, 1))

    finite = finite_mask(arr)
    neighbours, valid, diffs = _band(arr, alpha, window)
    below, above = _outside_counts(finite, window)
    counts = valid.sum(axis=1) + below + above

    deriv = np.where(valid, logistic_derivative(diffs), 0.0)
    scale = safe_divide(alpha * (n - 1), counts, fill=0.0)
    off_diagonal = -scale[:, np.newaxis] * deriv
    diagonal = scale * deriv.sum(axis=1)

    rows = np.repeat(np.arange(n), neighbours.shape[1])
    keep = valid.ravel()
    row_idx = np.concatenate([rows[keep], np.arange(n)])
    col_idx = np.concatenate([neighbours.ravel()[keep], np.arange(n)])
    data = np.concatenate([off_diagonal.ravel()[keep], diagonal])
    return csr_matrix((data, (row_idx, col_idx)), shape=(n, n))


__all__ = [
    "soft_rank_sorted_window",
    "sorted_window_error_bound",
    "soft_rank_sorted_window_gradient",
]
