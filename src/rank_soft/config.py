"""
Configuration surface for the ranking relaxations.

The recognized options are deliberately few:

- method: which relaxation family computes ranks and gradients
- alpha: regularization / sharpness (required, finite, > 0)
- sorted_approximation / window: opt-in banded fast path for sorted input
- top_k / m_draws / temperature: stochastic top-k relaxation

Everything is passed explicitly; nothing here holds state between calls.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import TYPE_CHECKING, Any

from rank_soft.stability import validate_alpha

if TYPE_CHECKING:
    from collections.abc import Mapping

    import numpy as np
    from numpy.typing import ArrayLike, NDArray
    from scipy.sparse import csr_matrix


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_ALPHA = 1.0

# Neighbours compared on each side by the sorted-window approximation
DEFAULT_WINDOW = 8

DEFAULT_TOP_K = 1
DEFAULT_M_DRAWS = 1
DEFAULT_TEMPERATURE = 0.1


# =============================================================================
# Ranking Methods
# =============================================================================


class RankingMethod(Enum):
    """Closed set of relaxation families sharing the (values, alpha) -> ranks contract."""

    SIGMOID = "sigmoid"
    PERMUTATION_RELAXATION = "permutation_relaxation"
    PROBABILISTIC_CDF = "probabilistic_cdf"
    WINDOWED_SMOOTHING = "windowed_smoothing"

    @classmethod
    def parse(cls, value: str | RankingMethod) -> RankingMethod:
        """
        Accept a member or a name in any common spelling.

        "sigmoid", "SIGMOID", "PermutationRelaxation" and
        "permutation-relaxation" all resolve.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown ranking method: {value!r}")
        key = value.strip().replace("-", "").replace("_", "").lower()
        for member in cls:
            if member.value.replace("_", "") == key:
                return member
        raise ValueError(f"Unknown ranking method: {value!r}")

    @property
    def has_closed_form_gradient(self) -> bool:
        """False when the backward pass falls back to numerical differentiation."""
        return self is not RankingMethod.PERMUTATION_RELAXATION


# =============================================================================
# Config Object
# =============================================================================


@dataclass(frozen=True)
class RankingConfig:
    """
    Validated bundle of every recognized option.

    Build one directly or from a plain mapping with ``from_dict``; the
    convenience methods just forward to the pure functions with these
    settings.
    """

    method: RankingMethod = RankingMethod.SIGMOID
    alpha: float = DEFAULT_ALPHA
    sorted_approximation: bool = False
    window: int = DEFAULT_WINDOW
    top_k: int = DEFAULT_TOP_K
    m_draws: int = DEFAULT_M_DRAWS
    temperature: float = DEFAULT_TEMPERATURE

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", RankingMethod.parse(self.method))
        object.__setattr__(self, "alpha", validate_alpha(self.alpha))
        object.__setattr__(
            self, "temperature", validate_alpha(self.temperature, name="temperature")
        )
        if self.window < 1:
            raise ValueError(f"window must be >= 1, got {self.window}")
        if self.top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {self.top_k}")
        if self.m_draws < 1:
            raise ValueError(f"m_draws must be >= 1, got {self.m_draws}")
        if self.sorted_approximation and self.method is not RankingMethod.SIGMOID:
            raise ValueError(
                "sorted_approximation is only available for the sigmoid method, "
                f"got {self.method.value}"
            )

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> RankingConfig:
        """Build a config from a mapping, rejecting unrecognized keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(f"Unrecognized ranking options: {', '.join(unknown)}")
        return cls(**dict(options))

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["method"] = self.method.value
        return data

    # ----- Delegates -----

    def rank(self, values: ArrayLike) -> NDArray[np.float64]:
        from rank_soft.soft_rank import rank

        return rank(
            values,
            self.alpha,
            self.method,
            sorted_approximation=self.sorted_approximation,
            window=self.window,
        )

    def gradient(self, values: ArrayLike) -> NDArray[np.float64]:
        from rank_soft.gradients import soft_rank_gradient

        return soft_rank_gradient(
            values,
            self.alpha,
            self.method,
            sorted_approximation=self.sorted_approximation,
            window=self.window,
        )

    def gradient_sparse(self, values: ArrayLike) -> csr_matrix:
        from rank_soft.gradients import soft_rank_gradient_sparse

        return soft_rank_gradient_sparse(values, self.alpha, self.method)

    def topk(
        self, scores: ArrayLike, rng: np.random.Generator | int
    ) -> NDArray[np.float64]:
        from rank_soft.topk import gumbel_soft_topk

        return gumbel_soft_topk(
            scores,
            self.top_k,
            rng,
            temperature=self.temperature,
            m_draws=self.m_draws,
        )


__all__ = [
    "DEFAULT_ALPHA",
    "DEFAULT_WINDOW",
    "DEFAULT_TOP_K",
    "DEFAULT_M_DRAWS",
    "DEFAULT_TEMPERATURE",
    "RankingMethod",
    "RankingConfig",
]
