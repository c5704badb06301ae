import numpy as np
import pytest
from scipy.sparse import issparse

from rank_soft.errors import ApproximationWarning
from rank_soft.gradients import numerical_jacobian
from rank_soft.soft_rank import rank, soft_rank
from rank_soft.sorted_path import (
    soft_rank_sorted_window,
    soft_rank_sorted_window_gradient,
    sorted_window_error_bound,
)


@pytest.fixture
def sorted_values():
    rng = np.random.default_rng(11)
    # strictly increasing with gaps well above the finite-difference step
    return np.cumsum(rng.uniform(0.05, 1.0, size=60))


def test_matches_exact_for_separated_input():
    values = np.arange(50, dtype=np.float64)
    approx = soft_rank_sorted_window(values, 10.0, window=4)
    assert np.allclose(approx, soft_rank(values, 10.0), atol=1e-12)


@pytest.mark.parametrize("alpha", [0.1, 1.0, 10.0])
def test_rank_sum_preserved(sorted_values, alpha):
    n = len(sorted_values)
    approx = soft_rank_sorted_window(sorted_values, alpha, window=3)
    assert approx.sum() == pytest.approx(n * (n - 1) / 2, rel=1e-10)


@pytest.mark.parametrize("alpha, window", [(0.5, 2), (2.0, 3), (5.0, 8)])
def test_error_bound_holds(sorted_values, alpha, window):
    approx = soft_rank_sorted_window(sorted_values, alpha, window)
    exact = soft_rank(sorted_values, alpha)
    bound = sorted_window_error_bound(sorted_values, alpha, window)
    assert np.all(np.abs(approx - exact) <= bound + 1e-12)


def test_window_clipped_to_length():
    values = np.array([0.0, 0.1, 0.2, 0.3, 0.4])
    assert np.allclose(soft_rank_sorted_window(values, 3.0, window=100), soft_rank(values, 3.0))
    assert np.all(sorted_window_error_bound(values, 3.0, window=100) == 0.0)


def test_unsorted_input_warns():
    with pytest.warns(ApproximationWarning):
        soft_rank_sorted_window([3.0, 1.0, 2.0], 1.0, window=1)


def test_sorted_input_does_not_warn(recwarn):
    soft_rank_sorted_window([1.0, 2.0, 3.0], 1.0, window=1)
    assert not [w for w in recwarn if issubclass(w.category, ApproximationWarning)]


@pytest.mark.parametrize("window", [0, -1, 2.5])
def test_invalid_window(window):
    with pytest.raises(ValueError):
        soft_rank_sorted_window([1.0, 2.0], 1.0, window=window)


def test_non_finite_marked():
    ranks = soft_rank_sorted_window([0.0, np.nan, 1.0, 2.0], 100.0, window=1)
    assert np.isnan(ranks[1])
    assert np.allclose(ranks[[0, 2, 3]], [0.0, 1.5, 3.0])


def test_empty():
    assert soft_rank_sorted_window([], 1.0).shape == (0,)
    assert soft_rank_sorted_window_gradient([], 1.0).shape == (0, 0)


def test_dispatch_through_rank(sorted_values):
    direct = soft_rank_sorted_window(sorted_values, 2.0, window=5)
    assert np.array_equal(rank(sorted_values, 2.0, sorted_approximation=True, window=5), direct)


class TestSortedWindowGradient:
    def test_banded_sparse(self, sorted_values):
        window = 3
        jac = soft_rank_sorted_window_gradient(sorted_values, 1.0, window)
        assert issparse(jac)
        rows, cols = jac.nonzero()
        assert np.all(np.abs(rows - cols) <= window)

    def test_rows_sum_to_zero(self, sorted_values):
        jac = soft_rank_sorted_window_gradient(sorted_values, 1.0, 4)
        assert np.allclose(np.asarray(jac.sum(axis=1)).ravel(), 0.0, atol=1e-10)

    def test_matches_numerical(self, sorted_values):
        alpha, window = 1.5, 4
        analytic = soft_rank_sorted_window_gradient(sorted_values, alpha, window).toarray()
        numerical = numerical_jacobian(
            lambda x: soft_rank_sorted_window(x, alpha, window), sorted_values
        )
        rel = np.linalg.norm(analytic - numerical) / np.linalg.norm(numerical)
        assert rel < 1e-4
