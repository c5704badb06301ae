import numpy as np


def gains(relevance: np.ndarray, exponential_gain: bool = True) -> np.ndarray:
    """
    Computes per-document DCG gains.

    Args:
        relevance: 1D array of graded relevance labels.
        exponential_gain: Use 2^rel - 1 instead of the raw label.

    Returns:
        Gain for each document.
    """
    relevance = np.asarray(relevance, dtype=np.float64)
    if exponential_gain:
        return np.exp2(relevance) - 1.0
    return relevance


def discounts(positions: np.ndarray, k: int | None = None) -> np.ndarray:
    """
    Computes DCG discounts 1 / log2(position + 2) for 0-based positions.

    Positions at or beyond the cutoff k get a discount of 0.
    """
    positions = np.asarray(positions, dtype=np.float64)
    out = 1.0 / np.log2(positions + 2.0)
    if k is not None:
        out = np.where(positions < k, out, 0.0)
    return out


def ideal_dcg(relevance: np.ndarray, k: int | None = None, exponential_gain: bool = True) -> float:
    """
    Computes the DCG of the best possible ordering of the given labels.

    Args:
        relevance: 1D array of graded relevance labels (any order).
        k: Top-k cutoff (None for all positions).
        exponential_gain: Use 2^rel - 1 instead of the raw label.

    Returns:
        Ideal DCG.
    """
    ideal = np.sort(gains(relevance, exponential_gain))[::-1]
    return float(np.sum(ideal * discounts(np.arange(len(ideal)), k)))


def ranks_from_scores(scores: np.ndarray) -> np.ndarray:
    """
    Computes 0-based positions when sorting by score, highest first.

    Ties are broken by original index so the result is deterministic.
    """
    scores = np.asarray(scores, dtype=np.float64)
    order = np.argsort(-scores, kind="stable")
    positions = np.empty(len(scores), dtype=np.int64)
    positions[order] = np.arange(len(scores))
    return positions
