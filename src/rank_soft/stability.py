"""
Numeric-stability primitives shared by every forward and backward pass.

Every sigmoid-shaped comparison in the package goes through
``stable_logistic`` so overflow handling lives in exactly one place:

1. Clamped logistic - exact 0/1 beyond +-LOGISTIC_CLAMP, branch-stable inside
2. Logistic derivative - s(x) * s(-x), exactly 0 beyond the clamp
3. Safe division - fill value instead of inf/nan on zero denominators
4. Validity masks - which elements / pairs take part in a comparison

Usage:
    from rank_soft.stability import stable_logistic, validate_alpha
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, overload

import numpy as np

from rank_soft.errors import InvalidRegularization

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Configuration
# =============================================================================

# Beyond this magnitude the logistic is returned as exactly 0.0 or 1.0
LOGISTIC_CLAMP = 500.0


# =============================================================================
# Clamped Logistic
# =============================================================================


@overload
def stable_logistic(x: float) -> float: ...


@overload
def stable_logistic(x: NDArray[np.float64]) -> NDArray[np.float64]: ...


def stable_logistic(x):
    """
    Logistic function that never overflows.

    For x >= 0 computes 1 / (1 + exp(-x)); for x < 0 computes
    exp(x) / (1 + exp(x)), so exp is only ever taken of a non-positive
    argument. Inputs beyond +-LOGISTIC_CLAMP (including +-inf) map to
    exactly 1.0 / 0.0.

    Args:
        x: Scalar or array of logits

    Returns:
        Python float for scalar input, float64 array otherwise
    """
    if np.ndim(x) == 0:
        x = float(x)
        if x > LOGISTIC_CLAMP:
            return 1.0
        if x < -LOGISTIC_CLAMP:
            return 0.0
        if x >= 0:
            return 1.0 / (1.0 + math.exp(-x))
        z = math.exp(x)
        return z / (1.0 + z)

    x = np.asarray(x, dtype=np.float64)
    clipped = np.clip(x, -LOGISTIC_CLAMP, LOGISTIC_CLAMP)
    # exp(-|x|) <= 1 on both branches
    z = np.exp(-np.abs(clipped))
    out = np.where(clipped >= 0, 1.0 / (1.0 + z), z / (1.0 + z))
    out = np.where(x > LOGISTIC_CLAMP, 1.0, out)
    out = np.where(x < -LOGISTIC_CLAMP, 0.0, out)
    return out


def logistic_derivative(x):
    """Derivative of ``stable_logistic``: s(x) * s(-x)."""
    if np.ndim(x) == 0:
        x = float(x)
        return stable_logistic(x) * stable_logistic(-x)
    x = np.asarray(x, dtype=np.float64)
    return stable_logistic(x) * stable_logistic(-x)


def log_sigmoid(x: NDArray[np.float64]) -> NDArray[np.float64]:
    """log(s(x)) = -softplus(-x), computed without overflow."""
    x = np.asarray(x, dtype=np.float64)
    return -(np.maximum(-x, 0.0) + np.log1p(np.exp(-np.abs(x))))


# =============================================================================
# Safe Division
# =============================================================================


def safe_divide(
    numerator: ArrayLike,
    denominator: ArrayLike,
    fill: float = 0.0,
) -> NDArray[np.float64]:
    """
    Elementwise numerator / denominator.

    Positions where the denominator is zero or non-finite get ``fill``
    instead of inf/nan.
    """
    num = np.asarray(numerator, dtype=np.float64)
    den = np.asarray(denominator, dtype=np.float64)
    num, den = np.broadcast_arrays(num, den)
    ok = (den != 0) & np.isfinite(den)
    out = np.full(num.shape, fill, dtype=np.float64)
    np.divide(num, den, out=out, where=ok)
    return out


# =============================================================================
# Validation and Masks
# =============================================================================


def validate_alpha(alpha: float, name: str = "alpha") -> float:
    """Return alpha as float, raising InvalidRegularization unless finite and > 0."""
    try:
        value = float(alpha)
    except (TypeError, ValueError) as exc:
        raise InvalidRegularization(alpha, name) from exc
    if not math.isfinite(value) or value <= 0.0:
        raise InvalidRegularization(alpha, name)
    return value


def as_values(values: ArrayLike) -> NDArray[np.float64]:
    """View any 1-D array-like of floats as a float64 array (copying if needed)."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-D value vector, got shape {arr.shape}")
    return arr


def output_dtype(values: ArrayLike) -> np.dtype:
    """float32 if the caller passed a float32 array, float64 otherwise."""
    dtype = getattr(values, "dtype", None)
    if dtype is not None and dtype == np.float32:
        return np.dtype(np.float32)
    return np.dtype(np.float64)


def finite_mask(values: NDArray[np.float64]) -> NDArray[np.bool_]:
    """True where the element can take part in comparisons."""
    return np.isfinite(values)


def pairwise_valid_mask(values: NDArray[np.float64]) -> NDArray[np.bool_]:
    """
    (n, n) mask of comparisons that produce a finite result.

    A pair is valid when both elements are finite and i != j.
    """
    finite = finite_mask(values)
    valid = finite[:, np.newaxis] & finite[np.newaxis, :]
    np.fill_diagonal(valid, False)
    return valid


__all__ = [
    "LOGISTIC_CLAMP",
    "stable_logistic",
    "logistic_derivative",
    "log_sigmoid",
    "safe_divide",
    "validate_alpha",
    "as_values",
    "output_dtype",
    "finite_mask",
    "pairwise_valid_mask",
]
