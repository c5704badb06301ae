"""
Analytic backward pass for the soft-rank relaxations.

The Jacobian J[i, k] = d rank_i / d value_k always matches the forward
variant that produced the ranks:

- Kernel variants (sigmoid, Gaussian CDF, smoothstep) use the closed form
  from ``rank_soft.kernels``.
- The Sinkhorn permutation relaxation has no closed form here and falls back
  to central differences.
- The sorted-window approximation has a banded closed form.

Invariants: every row sums to zero (ranks are unchanged by a global shift of
the values), the diagonal is non-negative, and rows of non-finite elements
and columns of non-finite partners are zero.

Usage:
    from rank_soft.gradients import soft_rank_gradient, soft_rank_vjp
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import numpy as np
from scipy.sparse import csr_matrix

from rank_soft.config import DEFAULT_WINDOW, RankingMethod
from rank_soft.errors import LengthMismatch
from rank_soft.kernels import pairwise_kernel_jacobian
from rank_soft.sorted_path import soft_rank_sorted_window_gradient
from rank_soft.stability import as_values, finite_mask, validate_alpha
from rank_soft.variants import KERNEL_FOR_METHOD, permutation_relaxation_rank

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Configuration
# =============================================================================

# Central-difference step for the numerical fallback
NUMERICAL_STEP = 1e-6

# Entries with |J| at or below this are dropped by the sparse representation
SPARSE_THRESHOLD = 1e-12

# Rows materialized at once when building the sparse representation
SPARSE_BLOCK_SIZE = 256


# =============================================================================
# Numerical Differentiation
# =============================================================================


def numerical_jacobian(
    fn: Callable[[NDArray[np.float64]], NDArray[np.float64]],
    values: ArrayLike,
    step: float = NUMERICAL_STEP,
    columns: NDArray[np.int64] | None = None,
) -> NDArray[np.float64]:
    """
    Central-difference Jacobian of a vector-valued function.

    Args:
        fn: Function mapping (n,) -> (m,)
        values: Point to differentiate at (n,)
        step: Perturbation size
        columns: Only differentiate with respect to these inputs (others
            are left zero). Defaults to all inputs.

    Returns:
        Jacobian of shape (m, n)
    """
    x = as_values(values)
    n = len(x)
    m = len(np.asarray(fn(x)))
    jac = np.zeros((m, n), dtype=np.float64)
    for j in range(n) if columns is None else columns:
        xp = x.copy()
        xm = x.copy()
        xp[j] += step
        xm[j] -= step
        jac[:, j] = (np.asarray(fn(xp), dtype=np.float64) - np.asarray(fn(xm), dtype=np.float64)) / (
            2.0 * step
        )
    return jac


def _permutation_relaxation_jacobian(
    values: NDArray[np.float64], alpha: float, step: float
) -> NDArray[np.float64]:
    finite = finite_mask(values)
    jac = numerical_jacobian(
        lambda x: permutation_relaxation_rank(x, alpha),
        values,
        step=step,
        columns=np.flatnonzero(finite),
    )
    jac[~finite, :] = 0.0
    return jac


# =============================================================================
# Dense Jacobian
# =============================================================================


def soft_rank_gradient(
    values: ArrayLike,
    alpha: float,
    method: RankingMethod | str = RankingMethod.SIGMOID,
    *,
    sorted_approximation: bool = False,
    window: int = DEFAULT_WINDOW,
    step: float = NUMERICAL_STEP,
) -> NDArray[np.float64]:
    """
    Dense Jacobian of the soft ranks with respect to the values.

    For the sigmoid method:
        J[i, i] = (alpha / count_i) * (n-1) * sum_{j != i} s'(alpha * (v_i - v_j))
        J[i, k] = -(alpha / count_i) * (n-1) * s'(alpha * (v_i - v_k))

    Args:
        values: Value vector (n,)
        alpha: Regularization / sharpness
        method: Relaxation that produced the ranks
        sorted_approximation: Differentiate the sorted-window approximation
        window: Window of the approximation
        step: Central-difference step for the permutation relaxation

    Returns:
        Jacobian (n, n)

    Raises:
        InvalidRegularization: alpha is non-positive, NaN or infinite
    """
    alpha = validate_alpha(alpha)
    method = RankingMethod.parse(method)
    arr = as_values(values)

    if sorted_approximation:
        if method is not RankingMethod.SIGMOID:
            raise ValueError(
                "sorted_approximation is only available for the sigmoid method, "
                f"got {method.value}"
            )
        return soft_rank_sorted_window_gradient(arr, alpha, window).toarray()

    kernel = KERNEL_FOR_METHOD.get(method)
    if kernel is not None:
        return pairwise_kernel_jacobian(arr, alpha, kernel)
    return _permutation_relaxation_jacobian(arr, alpha, step)


# =============================================================================
# Sparse Jacobian
# =============================================================================


def soft_rank_gradient_sparse(
    values: ArrayLike,
    alpha: float,
    method: RankingMethod | str = RankingMethod.SIGMOID,
    *,
    threshold: float = SPARSE_THRESHOLD,
    block_size: int = SPARSE_BLOCK_SIZE,
) -> csr_matrix:
    """
    Jacobian with negligible entries dropped.

    Values are identical to ``soft_rank_gradient``; only entries with
    |J| <= threshold are removed. Kernel methods are computed block_size
    rows at a time so the dense (n, n) matrix never exists at once; the
    permutation relaxation is computed densely and then filtered.

    Returns:
        csr_matrix of shape (n, n)
    """
    alpha = validate_alpha(alpha)
    method = RankingMethod.parse(method)
    arr = as_values(values)
    n = len(arr)
    if block_size < 1:
        raise ValueError(f"block_size must be >= 1, got {block_size}")

    kernel = KERNEL_FOR_METHOD.get(method)
    if kernel is None:
        blocks = [(0, soft_rank_gradient(arr, alpha, method))]
    else:
        blocks = (
            (start, pairwise_kernel_jacobian(arr, alpha, kernel, start, min(start + block_size, n)))
            for start in range(0, n, block_size)
        )

    rows, cols, data = [], [], []
    for start, block in blocks:
        r, c = np.nonzero(np.abs(block) > threshold)
        rows.append(r + start)
        cols.append(c)
        data.append(block[r, c])

    if not data:
        return csr_matrix((n, n), dtype=np.float64)
    return csr_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(n, n),
    )


# =============================================================================
# Vector-Jacobian Product
# =============================================================================


def soft_rank_vjp(
    values: ArrayLike,
    alpha: float,
    grad_output: ArrayLike,
    method: RankingMethod | str = RankingMethod.SIGMOID,
    *,
    sorted_approximation: bool = False,
    window: int = DEFAULT_WINDOW,
) -> NDArray[np.float64]:
    """
    Pull an upstream gradient on the ranks back to the values: J^T g.

    Callers must pass the same values and settings they used for the
    forward pass.

    Raises:
        LengthMismatch: grad_output does not have one entry per value
    """
    arr = as_values(values)
    g = as_values(grad_output)
    if len(g) != len(arr):
        raise LengthMismatch(len(arr), len(g))
    jac = soft_rank_gradient(
        arr,
        alpha,
        method,
        sorted_approximation=sorted_approximation,
        window=window,
    )
    return jac.T @ g


__all__ = [
    "NUMERICAL_STEP",
    "SPARSE_THRESHOLD",
    "SPARSE_BLOCK_SIZE",
    "numerical_jacobian",
    "soft_rank_gradient",
    "soft_rank_gradient_sparse",
    "soft_rank_vjp",
]
