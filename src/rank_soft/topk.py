"""
Gumbel-perturbed soft top-k selection.

Each draw perturbs scores / temperature with Gumbel(0, 1) noise and builds a
relaxed k-hot vector from k successive softmaxes, softly removing what was
already selected:

    p_j = softmax(a_j)
    a_{j+1} = a_j + log(1 - p_j)
    mask = sum_j p_j

Taking the element-wise max over ``m_draws`` independent draws sharpens the
mask at m times the cost. Randomness always comes from an explicit
``np.random.Generator`` (or an int seed for one); there is no global state.

Usage:
    from rank_soft.topk import gumbel_soft_topk

    gumbel_soft_topk([0.1, 0.9, 0.3, 0.7], k=2, rng=42, temperature=0.05)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy.special import softmax

from rank_soft.config import DEFAULT_M_DRAWS, DEFAULT_TEMPERATURE
from rank_soft.stability import as_values, finite_mask, validate_alpha

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Configuration
# =============================================================================

# Floor for 1 - p in the soft-removal step
REMOVAL_EPS = 1e-12


# =============================================================================
# Helpers
# =============================================================================


def _as_generator(rng: np.random.Generator | int) -> np.random.Generator:
    if isinstance(rng, np.random.Generator):
        return rng
    if isinstance(rng, (int, np.integer)) and not isinstance(rng, bool):
        return np.random.default_rng(int(rng))
    raise ValueError(f"rng must be a numpy Generator or an int seed, got {type(rng).__name__}")


def _validate_topk_args(n: int, k: int, temperature: float, m_draws: int) -> tuple[int, float, int]:
    if int(k) != k or not 0 <= k <= n:
        raise ValueError(f"k must be an integer in [0, {n}], got {k!r}")
    temperature = validate_alpha(temperature, name="temperature")
    if int(m_draws) != m_draws or m_draws < 1:
        raise ValueError(f"m_draws must be a positive integer, got {m_draws!r}")
    return int(k), temperature, int(m_draws)


def sample_gumbel(shape: int | tuple[int, ...], rng: np.random.Generator | int) -> NDArray[np.float64]:
    """Standard Gumbel(0, 1) noise of the given shape."""
    rng = _as_generator(rng)
    uniform = rng.uniform(low=np.finfo(np.float64).tiny, high=1.0, size=shape)
    return -np.log(-np.log(uniform))


def _relaxed_khot(
    logits: NDArray[np.float64], k: int, temperature: float, with_jacobian: bool
) -> tuple[NDArray[np.float64], NDArray[np.float64] | None]:
    """
    One draw of the successive-softmax relaxation.

    The Jacobian is carried forward alongside the logits: with
    A_j = d a_j / d scores (A_1 = I / temperature) and S_j = diag(p_j) - p_j p_j^T,

        d p_j / d scores = S_j A_j
        A_{j+1} = A_j - diag(1 / (1 - p_j)) S_j A_j
    """
    n = len(logits)
    a = logits.copy()
    mask = np.zeros(n, dtype=np.float64)
    jac = np.zeros((n, n), dtype=np.float64) if with_jacobian else None
    tangent = np.eye(n) / temperature if with_jacobian else None

    for _ in range(k):
        p = softmax(a)
        mask += p
        remaining = 1.0 - p
        if with_jacobian:
            dp = p[:, np.newaxis] * tangent - np.outer(p, p @ tangent)
            jac += dp
            inv_remaining = np.where(remaining > REMOVAL_EPS, 1.0 / np.maximum(remaining, REMOVAL_EPS), 0.0)
            tangent = tangent - inv_remaining[:, np.newaxis] * dp
        a = a + np.log(np.maximum(remaining, REMOVAL_EPS))

    return mask, jac


def _soft_topk(
    scores: ArrayLike,
    k: int,
    rng: np.random.Generator | int,
    temperature: float,
    m_draws: int,
    with_jacobian: bool,
) -> tuple[NDArray[np.float64], NDArray[np.float64] | None]:
    arr = as_values(scores)
    n = len(arr)
    k, temperature, m_draws = _validate_topk_args(n, k, temperature, m_draws)
    rng = _as_generator(rng)

    # non-finite scores are never selected; k shrinks to the usable count
    finite = finite_mask(arr)
    idx = np.flatnonzero(finite)
    m = len(idx)
    k = min(k, m)

    mask = np.zeros(n, dtype=np.float64)
    jac = np.zeros((n, n), dtype=np.float64) if with_jacobian else None
    if k == 0:
        return mask, jac
    if k == m:
        mask[idx] = 1.0
        return mask, jac

    noise = sample_gumbel((m_draws, m), rng)
    draws = [
        _relaxed_khot(arr[idx] / temperature + noise[d], k, temperature, with_jacobian)
        for d in range(m_draws)
    ]
    draw_masks = np.stack([d[0] for d in draws])
    winner = np.argmax(draw_masks, axis=0)
    sub_mask = draw_masks[winner, np.arange(m)]

    # successive softmaxes can overshoot 1 for a dominant element
    clipped = sub_mask >= 1.0
    mask[idx] = np.minimum(sub_mask, 1.0)

    if with_jacobian:
        sub_jac = np.stack([draws[winner[i]][1][i] for i in range(m)])
        sub_jac[clipped] = 0.0
        jac[np.ix_(idx, idx)] = sub_jac
    return mask, jac


# =============================================================================
# Public API
# =============================================================================


def gumbel_soft_topk(
    scores: ArrayLike,
    k: int,
    rng: np.random.Generator | int,
    temperature: float = DEFAULT_TEMPERATURE,
    m_draws: int = DEFAULT_M_DRAWS,
) -> NDArray[np.float64]:
    """
    Relaxed top-k membership mask.

    Args:
        scores: Score vector (n,)
        k: Number of elements to select, 0 <= k <= n
        rng: numpy Generator or int seed
        temperature: Softmax temperature (> 0); lower is closer to hard top-k
        m_draws: Independent noise draws combined by element-wise max

    Returns:
        Mask (n,) in [0, 1]; all zeros for k = 0, all ones for k = n

    Raises:
        ValueError: k out of range, m_draws < 1 or rng of the wrong type
        InvalidRegularization: temperature non-positive, NaN or infinite
    """
    return _soft_topk(scores, k, rng, temperature, m_draws, with_jacobian=False)[0]


def gumbel_soft_topk_with_jacobian(
    scores: ArrayLike,
    k: int,
    rng: np.random.Generator | int,
    temperature: float = DEFAULT_TEMPERATURE,
    m_draws: int = DEFAULT_M_DRAWS,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Relaxed top-k mask and its Jacobian with respect to the scores.

    The noise is held fixed, so the Jacobian is exact for the sampled draw.
    Row i comes from the draw that won the max for element i; rows of
    elements clipped at 1 are zero.

    Returns:
        (mask (n,), jacobian (n, n))
    """
    return _soft_topk(scores, k, rng, temperature, m_draws, with_jacobian=True)


__all__ = [
    "REMOVAL_EPS",
    "sample_gumbel",
    "gumbel_soft_topk",
    "gumbel_soft_topk_with_jacobian",
]
