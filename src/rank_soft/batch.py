"""
Row-wise batch helpers for the soft-rank operators.

Every row is an independent problem; soft ranks are never computed across
rows. Small batches run sequentially, larger ones through a
ThreadPoolExecutor (numpy releases the GIL inside the pairwise kernels).
Results are identical either way.

Usage:
    from rank_soft.batch import batch_soft_rank, batch_spearman_loss
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, TypeVar

import numpy as np

from rank_soft.config import RankingMethod
from rank_soft.errors import LengthMismatch
from rank_soft.losses import spearman_loss
from rank_soft.soft_rank import rank
from rank_soft.stability import validate_alpha

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray


# =============================================================================
# Configuration
# =============================================================================

# Default number of workers for parallel row processing
DEFAULT_NUM_WORKERS = 8

# Minimum rows before enabling parallelism
MIN_ROWS_FOR_PARALLEL = 10

T = TypeVar("T")
R = TypeVar("R")


def _map_rows(
    fn: Callable[[T], R],
    rows: Sequence[T],
    num_workers: int,
    min_rows_for_parallel: int,
) -> list[R]:
    if len(rows) < min_rows_for_parallel or num_workers <= 1:
        return [fn(row) for row in rows]
    with ThreadPoolExecutor(max_workers=num_workers) as executor:
        return list(executor.map(fn, rows))


# =============================================================================
# Batch Operators
# =============================================================================


def batch_soft_rank(
    rows: Sequence[ArrayLike],
    alpha: float,
    method: RankingMethod | str = RankingMethod.SIGMOID,
    num_workers: int = DEFAULT_NUM_WORKERS,
    min_rows_for_parallel: int = MIN_ROWS_FOR_PARALLEL,
) -> list[NDArray[np.float64]]:
    """
    Soft ranks of each row independently.

    Rows may have different lengths.

    Args:
        rows: Value vectors, as a list of 1-D arrays or the rows of a 2-D array
        alpha: Regularization / sharpness shared by all rows
        method: Relaxation family
        num_workers: Number of parallel workers
        min_rows_for_parallel: Minimum rows before enabling parallelism

    Returns:
        One soft-rank vector per row
    """
    alpha = validate_alpha(alpha)
    method = RankingMethod.parse(method)
    if len(rows) == 0:
        return []
    return _map_rows(lambda row: rank(row, alpha, method), rows, num_workers, min_rows_for_parallel)


def batch_spearman_loss(
    batch_predictions: Sequence[ArrayLike],
    batch_targets: Sequence[ArrayLike],
    alpha: float,
    method: RankingMethod | str = RankingMethod.SIGMOID,
    num_workers: int = DEFAULT_NUM_WORKERS,
    min_rows_for_parallel: int = MIN_ROWS_FOR_PARALLEL,
) -> tuple[float, list[NDArray[np.float64]]]:
    """
    Mean Spearman loss over rows and the per-row gradients.

    Each row's gradient is that of its own loss; divide by the number of
    rows to get the gradient of the mean.

    Returns:
        (mean loss, gradients per row); (0.0, []) for an empty batch

    Raises:
        LengthMismatch: different number of prediction and target rows
    """
    alpha = validate_alpha(alpha)
    method = RankingMethod.parse(method)
    if len(batch_predictions) != len(batch_targets):
        raise LengthMismatch(len(batch_predictions), len(batch_targets))
    if len(batch_predictions) == 0:
        return 0.0, []

    pairs = list(zip(batch_predictions, batch_targets))
    results = _map_rows(
        lambda pair: spearman_loss(pair[0], pair[1], alpha, method),
        pairs,
        num_workers,
        min_rows_for_parallel,
    )
    losses = [loss for loss, _ in results]
    return float(np.mean(losses)), [grad for _, grad in results]


__all__ = [
    "DEFAULT_NUM_WORKERS",
    "MIN_ROWS_FOR_PARALLEL",
    "batch_soft_rank",
    "batch_spearman_loss",
]
