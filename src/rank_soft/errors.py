"""
Error and warning types raised by the ranking relaxations.

Parameter problems (bad regularization, mismatched lengths) are raised as
``ValueError`` subclasses so callers can catch them the usual way. Data-level
anomalies (NaN/Inf values, zero variance) are never raised; the operators fall
back to documented values instead.
"""

from __future__ import annotations


class RankingError(ValueError):
    """Base class for invalid arguments passed to a ranking operator."""


class InvalidRegularization(RankingError):
    """Regularization (alpha) or temperature is non-positive, NaN or infinite."""

    def __init__(self, value: float, name: str = "alpha"):
        self.value = value
        self.name = name
        super().__init__(
            f"Invalid regularization: {name} must be a finite positive number, got {value!r}"
        )


class LengthMismatch(RankingError):
    """Paired inputs (predictions/targets, forward/backward) differ in length."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Length mismatch: expected {expected} elements, got {actual}")


class ApproximationWarning(UserWarning):
    """The sorted-window approximation was given input it is not accurate for."""


class ConvergenceWarning(UserWarning):
    """An iterative normalization stopped before reaching its tolerance."""


__all__ = [
    "RankingError",
    "InvalidRegularization",
    "LengthMismatch",
    "ApproximationWarning",
    "ConvergenceWarning",
]
