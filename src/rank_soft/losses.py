"""
Ranking losses built on the soft-rank relaxations.

Every loss takes predictions (model scores) and a target / relevance vector
that is treated as a constant, and returns ``(loss, grad)`` where ``grad``
is the gradient with respect to the predictions only.

Losses:
1. Spearman - 1 - Pearson correlation of the two soft-rank vectors
2. RankNet - logistic loss on score differences of mis-ordered pairs
3. LambdaRank - RankNet pairs weighted by |delta NDCG@k| of swapping them
4. Pairwise hinge - Ranking SVM margin loss
5. ListNet / softmax - listwise cross entropies
6. ApproxNDCG - NDCG computed on soft positions

Data anomalies (NaN scores, zero variance, no informative pairs) give a
defined loss value instead of NaN; only argument errors raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import log_softmax, softmax

from rank_soft.config import RankingMethod
from rank_soft.errors import LengthMismatch
from rank_soft.gradients import soft_rank_vjp
from rank_soft.metrics import discounts, gains, ideal_dcg, ranks_from_scores
from rank_soft.soft_rank import rank
from rank_soft.stability import as_values, log_sigmoid, stable_logistic, validate_alpha

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Configuration
# =============================================================================

# Loss returned when either rank vector has no variance (correlation
# undefined): the maximum of 1 - rho
DEGENERATE_SPEARMAN_LOSS = 2.0

# Rank vectors with a centered norm at or below this count as zero-variance
ZERO_VARIANCE_TOL = 1e-12

# Relevance labels closer than this are treated as equal
RELEVANCE_EPS = 1e-10

LossResult = tuple[float, "NDArray[np.float64]"]


def _paired(predictions: ArrayLike, targets: ArrayLike) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    pred = as_values(predictions)
    targ = as_values(targets)
    if len(pred) != len(targ):
        raise LengthMismatch(len(pred), len(targ))
    return pred, targ


def _preference_pairs(scores: NDArray[np.float64], relevance: NDArray[np.float64]) -> NDArray[np.bool_]:
    """pairs[i, j] is True when i is strictly more relevant than j and both are usable."""
    usable = np.isfinite(scores) & np.isfinite(relevance)
    pairs = (relevance[:, np.newaxis] - relevance[np.newaxis, :]) > RELEVANCE_EPS
    return pairs & usable[:, np.newaxis] & usable[np.newaxis, :]


def _score_differences(scores: NDArray[np.float64], pairs: NDArray[np.bool_]) -> NDArray[np.float64]:
    with np.errstate(invalid="ignore", over="ignore"):
        diffs = scores[:, np.newaxis] - scores[np.newaxis, :]
    return np.where(pairs, diffs, 0.0)


def _scatter_pair_gradient(coefficients: NDArray[np.float64]) -> NDArray[np.float64]:
    """coefficients[i, j] is dL/ds_i of pair (i, j); s_j receives the negation."""
    return coefficients.sum(axis=1) - coefficients.sum(axis=0)


# =============================================================================
# Spearman
# =============================================================================


def spearman_loss(
    predictions: ArrayLike,
    targets: ArrayLike,
    alpha: float,
    method: RankingMethod | str = RankingMethod.SIGMOID,
) -> LossResult:
    """
    Differentiable Spearman loss: 1 - corr(soft_rank(pred), soft_rank(targets)).

    The gradient flows through the prediction-side soft rank only, via the
    chain rule with the soft-rank Jacobian.

    Args:
        predictions: Model scores (n,)
        targets: Ground-truth values (n,), constant
        alpha: Regularization / sharpness for both soft ranks
        method: Relaxation used for both soft ranks

    Returns:
        (loss in [0, 2], gradient (n,)). When either rank vector has zero
        variance, or fewer than two elements have finite ranks on both
        sides, returns (DEGENERATE_SPEARMAN_LOSS, zeros).
    """
    alpha = validate_alpha(alpha)
    pred, targ = _paired(predictions, targets)
    n = len(pred)
    grad = np.zeros(n, dtype=np.float64)

    pred_ranks = np.asarray(rank(pred, alpha, method), dtype=np.float64)
    targ_ranks = np.asarray(rank(targ, alpha, method), dtype=np.float64)
    keep = np.isfinite(pred_ranks) & np.isfinite(targ_ranks)
    if keep.sum() < 2:
        return DEGENERATE_SPEARMAN_LOSS, grad

    a = pred_ranks[keep] - pred_ranks[keep].mean()
    b = targ_ranks[keep] - targ_ranks[keep].mean()
    norm_a = float(np.sqrt(a @ a))
    norm_b = float(np.sqrt(b @ b))
    if norm_a <= ZERO_VARIANCE_TOL or norm_b <= ZERO_VARIANCE_TOL:
        return DEGENERATE_SPEARMAN_LOSS, grad

    rho = float(a @ b) / (norm_a * norm_b)
    d_rho = b / (norm_a * norm_b) - rho * a / (norm_a * norm_a)

    upstream = np.zeros(n, dtype=np.float64)
    upstream[keep] = -d_rho
    grad = soft_rank_vjp(pred, alpha, upstream, method)
    return 1.0 - rho, grad


# =============================================================================
# RankNet
# =============================================================================


def ranknet_loss(
    scores: ArrayLike,
    relevance: ArrayLike,
    sigma: float = 1.0,
) -> LossResult:
    """
    RankNet pairwise logistic loss.

    Mean over pairs with rel_i > rel_j of log(1 + exp(-sigma * (s_i - s_j))).

    Returns:
        (loss, gradient (n,)); (0.0, zeros) when no pair has differing
        relevance.
    """
    sigma = validate_alpha(sigma, name="sigma")
    s, rel = _paired(scores, relevance)
    pairs = _preference_pairs(s, rel)
    n_pairs = int(pairs.sum())
    if n_pairs == 0:
        return 0.0, np.zeros(len(s), dtype=np.float64)

    z = sigma * _score_differences(s, pairs)
    loss = float(-log_sigmoid(z)[pairs].sum()) / n_pairs
    coefficients = np.where(pairs, -sigma * stable_logistic(-z), 0.0) / n_pairs
    return loss, _scatter_pair_gradient(coefficients)


# =============================================================================
# LambdaRank
# =============================================================================


@dataclass
class LambdaRankParams:
    """
    LambdaRank options.

    sigma: sharpness of the pairwise logistic
    query_normalization: divide pair weights by the number of pairs and
        rescale lambdas by log2(1 + S) / S, S = sum |lambda_ij| (as in
        LightGBM / XGBoost)
    cost_sensitivity: weight pairs by 1 / ln(2 + higher position)
    score_normalization: divide |delta NDCG| by the normalized score gap
    exponential_gain: 2^rel - 1 gains instead of raw labels
    """

    sigma: float = 1.0
    query_normalization: bool = True
    cost_sensitivity: bool = True
    score_normalization: bool = False
    exponential_gain: bool = True

    def __post_init__(self) -> None:
        self.sigma = validate_alpha(self.sigma, name="sigma")


def delta_ndcg(
    gain_i: ArrayLike,
    gain_j: ArrayLike,
    position_i: ArrayLike,
    position_j: ArrayLike,
    k: int | None = None,
    inv_idcg: float = 1.0,
) -> NDArray[np.float64]:
    """
    |change in NDCG@k| from swapping the documents at two positions.

    Swapping exchanges the discounts, so the DCG changes by
    (g_i - g_j) * (D_j - D_i); positions at or past k have D = 0.
    """
    d_i = discounts(position_i, k)
    d_j = discounts(position_j, k)
    g_i = np.asarray(gain_i, dtype=np.float64)
    g_j = np.asarray(gain_j, dtype=np.float64)
    return np.abs((g_i - g_j) * (d_i - d_j)) * inv_idcg


def _lambda_pair_weights(
    s: NDArray[np.float64],
    rel: NDArray[np.float64],
    params: LambdaRankParams,
    k: int | None,
) -> tuple[NDArray[np.bool_], NDArray[np.float64]]:
    """Preference pairs and their |delta NDCG|-based weights."""
    pairs = _preference_pairs(s, rel)
    positions = ranks_from_scores(s)
    g = gains(rel, params.exponential_gain)
    idcg = ideal_dcg(rel[np.isfinite(rel)], k, params.exponential_gain)
    inv_idcg = 1.0 / idcg if idcg > 0 else 0.0

    weights = delta_ndcg(
        g[:, np.newaxis],
        g[np.newaxis, :],
        positions[:, np.newaxis],
        positions[np.newaxis, :],
        k,
        inv_idcg,
    )

    if params.cost_sensitivity:
        top = np.minimum(positions[:, np.newaxis], positions[np.newaxis, :])
        weights = weights / np.log(top + 2.0)

    if params.score_normalization:
        finite_scores = s[np.isfinite(s)]
        score_range = 1.0
        if finite_scores.size and finite_scores.max() != finite_scores.min():
            score_range = float(finite_scores.max() - finite_scores.min())
        gap = np.abs(_score_differences(s, pairs))
        weights = weights / (0.01 + gap / max(score_range, 0.01))

    n_pairs = int(pairs.sum())
    if params.query_normalization and n_pairs > 0:
        weights = weights / n_pairs

    return pairs, np.where(pairs, weights, 0.0)


def _lambdas_and_loss(
    scores: ArrayLike,
    relevance: ArrayLike,
    params: LambdaRankParams,
    k: int | None,
) -> LossResult:
    s, rel = _paired(scores, relevance)
    if k is not None and k < 0:
        raise ValueError(f"k must be >= 0, got {k}")
    pairs, weights = _lambda_pair_weights(s, rel, params, k)
    z = params.sigma * _score_differences(s, pairs)

    coefficients = np.where(pairs, -params.sigma * stable_logistic(-z) * weights, 0.0)
    lambdas = _scatter_pair_gradient(coefficients)
    loss = float(np.where(pairs, -log_sigmoid(z) * weights, 0.0).sum())

    if params.query_normalization:
        total = 2.0 * float(np.abs(coefficients).sum())
        if total > 0:
            factor = np.log2(1.0 + total) / total
            lambdas = lambdas * factor
            loss = loss * factor
    return loss, lambdas


def compute_lambdas(
    scores: ArrayLike,
    relevance: ArrayLike,
    params: LambdaRankParams | None = None,
    k: int | None = None,
) -> NDArray[np.float64]:
    """
    LambdaRank gradients for one query.

    For each pair where document i is more relevant than j:

        lambda_ij = -sigma / (1 + exp(sigma * (s_i - s_j))) * |delta NDCG@k|

    lambda_ij is added to document i and subtracted from document j.
    Positions come from the current score order (highest first, ties by
    index). The result is the gradient of the loss: a descent step
    (scores -= lr * lambdas) pushes more relevant documents up.

    Args:
        scores: Model scores (n,)
        relevance: Graded relevance labels (n,), constant
        params: LambdaRank options (defaults if None)
        k: NDCG cutoff (None for all positions)

    Returns:
        Lambdas (n,)
    """
    params = params or LambdaRankParams()
    return _lambdas_and_loss(scores, relevance, params, k)[1]


def compute_lambdas_batch(
    batch_scores: Sequence[ArrayLike],
    batch_relevance: Sequence[ArrayLike],
    params: LambdaRankParams | None = None,
    k: int | None = None,
) -> list[NDArray[np.float64]]:
    """
    LambdaRank gradients for several queries.

    With query normalization on, each query's lambdas are further scaled by
    pairs_q / max_pairs so queries with many pairs do not dominate.
    """
    params = params or LambdaRankParams()
    if len(batch_scores) != len(batch_relevance):
        raise LengthMismatch(len(batch_scores), len(batch_relevance))

    pair_counts = []
    for scores, relevance in zip(batch_scores, batch_relevance):
        s, rel = _paired(scores, relevance)
        pair_counts.append(int(_preference_pairs(s, rel).sum()))
    max_pairs = max(pair_counts, default=0)

    results = []
    for scores, relevance, n_pairs in zip(batch_scores, batch_relevance, pair_counts):
        lambdas = compute_lambdas(scores, relevance, params, k)
        if params.query_normalization and max_pairs > 0:
            lambdas = lambdas * (n_pairs / max_pairs)
        results.append(lambdas)
    return results


def lambdarank_loss(
    scores: ArrayLike,
    relevance: ArrayLike,
    k: int | None = None,
    params: LambdaRankParams | None = None,
) -> LossResult:
    """
    |delta NDCG|-weighted RankNet loss and its LambdaRank gradient.

    Pair weights are held constant while differentiating (they only change
    when the score order changes), so the returned gradient equals
    ``compute_lambdas``.
    """
    params = params or LambdaRankParams()
    return _lambdas_and_loss(scores, relevance, params, k)


# =============================================================================
# Pairwise Hinge (Ranking SVM)
# =============================================================================


def pairwise_hinge_loss(
    scores: ArrayLike,
    relevance: ArrayLike,
    margin: float = 1.0,
) -> LossResult:
    """
    Ranking SVM loss: mean over pairs with rel_i > rel_j of max(0, margin - (s_i - s_j)).

    The subgradient at the hinge point is taken as 0.
    """
    s, rel = _paired(scores, relevance)
    pairs = _preference_pairs(s, rel)
    n_pairs = int(pairs.sum())
    if n_pairs == 0:
        return 0.0, np.zeros(len(s), dtype=np.float64)

    hinge = np.where(pairs, margin - _score_differences(s, pairs), 0.0)
    active = pairs & (hinge > 0)
    loss = float(hinge[active].sum()) / n_pairs
    coefficients = np.where(active, -1.0, 0.0) / n_pairs
    return loss, _scatter_pair_gradient(coefficients)


# =============================================================================
# Listwise
# =============================================================================


def _listwise_cross_entropy(
    s: NDArray[np.float64], target: NDArray[np.float64], keep: NDArray[np.bool_]
) -> LossResult:
    grad = np.zeros(len(s), dtype=np.float64)
    if not keep.any():
        return 0.0, grad
    log_q = log_softmax(s[keep])
    loss = float(-(target * log_q).sum())
    grad[keep] = np.exp(log_q) * target.sum() - target
    return loss, grad


def listnet_loss(scores: ArrayLike, relevance: ArrayLike) -> LossResult:
    """
    ListNet top-one loss: cross entropy between softmax(relevance) and softmax(scores).

    Elements with a non-finite score or label are left out.
    """
    s, rel = _paired(scores, relevance)
    keep = np.isfinite(s) & np.isfinite(rel)
    target = softmax(rel[keep]) if keep.any() else np.array([], dtype=np.float64)
    return _listwise_cross_entropy(s, target, keep)


def softmax_loss(scores: ArrayLike, relevance: ArrayLike) -> LossResult:
    """
    Softmax cross entropy against the relevance-weighted target distribution.

    The target is relevance / sum(relevance). Labels must be non-negative;
    a list with zero total relevance has nothing to learn from and gives
    (0.0, zeros).
    """
    s, rel = _paired(scores, relevance)
    keep = np.isfinite(s) & np.isfinite(rel)
    if np.any(rel[keep] < 0):
        raise ValueError("softmax_loss requires non-negative relevance labels")
    total = float(rel[keep].sum())
    if total <= 0:
        return 0.0, np.zeros(len(s), dtype=np.float64)
    return _listwise_cross_entropy(s, rel[keep] / total, keep)


def approx_ndcg_loss(
    scores: ArrayLike,
    relevance: ArrayLike,
    alpha: float,
    exponential_gain: bool = True,
    method: RankingMethod | str = RankingMethod.SIGMOID,
) -> LossResult:
    """
    1 - NDCG evaluated at soft positions.

    The soft position of document i is (n-1) - soft_rank_i (0 = highest
    score), so DCG = sum_i g_i / log2(2 + position_i) is differentiable in
    the scores through the soft-rank Jacobian.

    Returns:
        (loss in [0, 1] up to relaxation error, gradient (n,)); (0.0, zeros)
        when the ideal DCG is zero
    """
    alpha = validate_alpha(alpha)
    s, rel = _paired(scores, relevance)
    n = len(s)
    grad = np.zeros(n, dtype=np.float64)

    g = gains(np.where(np.isfinite(rel), rel, 0.0), exponential_gain)
    idcg = ideal_dcg(np.where(np.isfinite(rel), rel, 0.0), None, exponential_gain)
    if n == 0 or idcg <= 0:
        return 0.0, grad

    positions = (n - 1) - np.asarray(rank(s, alpha, method), dtype=np.float64)
    keep = np.isfinite(positions)
    log_term = np.log2(np.where(keep, positions, 0.0) + 2.0)
    dcg = float(np.sum(np.where(keep, g / log_term, 0.0)))

    # d/d position of g / log2(position + 2); d position / d rank = -1
    d_discount = -1.0 / ((np.where(keep, positions, 0.0) + 2.0) * np.log(2.0) * log_term**2)
    upstream = np.where(keep, g * d_discount / idcg, 0.0)
    grad = soft_rank_vjp(s, alpha, upstream, method)
    return 1.0 - dcg / idcg, grad


__all__ = [
    "DEGENERATE_SPEARMAN_LOSS",
    "ZERO_VARIANCE_TOL",
    "RELEVANCE_EPS",
    "spearman_loss",
    "ranknet_loss",
    "LambdaRankParams",
    "delta_ndcg",
    "compute_lambdas",
    "compute_lambdas_batch",
    "lambdarank_loss",
    "pairwise_hinge_loss",
    "listnet_loss",
    "softmax_loss",
    "approx_ndcg_loss",
]
