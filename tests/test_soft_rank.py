import numpy as np
import pytest

from rank_soft.errors import InvalidRegularization
from rank_soft.soft_rank import rank, soft_rank, soft_sort


@pytest.fixture
def random_values():
    rng = np.random.default_rng(7)
    return rng.normal(size=40)


class TestSoftRank:
    """Sigmoid soft rank."""

    @pytest.mark.parametrize("alpha", [1e-3, 0.1, 1.0, 10.0, 1e4])
    def test_bounds(self, random_values, alpha):
        ranks = soft_rank(random_values, alpha)
        n = len(random_values)
        assert np.all(ranks >= 0.0)
        assert np.all(ranks <= n - 1)

    @pytest.mark.parametrize("alpha", [1e-3, 0.5, 5.0, 1e3])
    def test_rank_sum(self, random_values, alpha):
        n = len(random_values)
        assert soft_rank(random_values, alpha).sum() == pytest.approx(n * (n - 1) / 2, rel=1e-10)

    def test_converges_to_discrete_ranks(self):
        assert np.allclose(soft_rank([5.0, 1.0, 3.0], 1e4), [2.0, 0.0, 1.0], atol=1e-6)

    def test_ties_average(self):
        assert np.allclose(soft_rank([3.0, 3.0, 3.0], 7.0), [1.0, 1.0, 1.0])

    def test_end_to_end(self):
        ranks = soft_rank([5.0, 1.0, 2.0, 4.0, 3.0], 10.0)
        assert np.allclose(ranks, [4.0, 0.0, 1.0, 3.0, 2.0], atol=0.1)

    def test_empty_and_single(self):
        assert soft_rank([], 1.0).shape == (0,)
        assert np.array_equal(soft_rank([42.0], 1.0), [0.0])

    @pytest.mark.parametrize("bad", [np.nan, np.inf, -np.inf])
    def test_non_finite_elements(self, bad):
        ranks = soft_rank([1.0, bad, 2.0], 1e3)
        assert np.isnan(ranks[1])
        assert np.allclose(ranks[[0, 2]], [0.0, 2.0])

    def test_all_nan_except_one(self):
        ranks = soft_rank([np.nan, 3.0, np.nan], 1.0)
        assert ranks[1] == 0.0
        assert np.isnan(ranks[0]) and np.isnan(ranks[2])

    def test_float32_preserved(self):
        values = np.array([0.3, 0.1, 0.2], dtype=np.float32)
        ranks = soft_rank(values, 500.0)
        assert ranks.dtype == np.float32
        assert np.allclose(ranks, [2.0, 0.0, 1.0], atol=1e-3)

    def test_input_not_modified(self, random_values):
        before = random_values.copy()
        soft_rank(random_values, 2.0)
        assert np.array_equal(before, random_values)

    @pytest.mark.parametrize("alpha", [0.0, -2.0, np.nan, np.inf])
    def test_invalid_alpha(self, alpha):
        with pytest.raises(InvalidRegularization):
            soft_rank([1.0, 2.0], alpha)

    def test_extreme_values_stay_finite(self):
        ranks = soft_rank([-1e300, 0.0, 1e300], 1e6)
        assert np.allclose(ranks, [0.0, 1.0, 2.0])


class TestRankDispatch:
    def test_method_by_name(self, random_values):
        assert np.array_equal(rank(random_values, 1.0, "sigmoid"), soft_rank(random_values, 1.0))

    def test_sorted_approximation_requires_sigmoid(self):
        with pytest.raises(ValueError):
            rank([1.0, 2.0, 3.0], 1.0, "probabilistic_cdf", sorted_approximation=True)

    def test_sorted_approximation_is_opt_in(self):
        values = np.arange(30, dtype=np.float64)
        exact = rank(values, 0.05)
        approx = rank(values, 0.05, sorted_approximation=True, window=2)
        assert np.allclose(exact, soft_rank(values, 0.05))
        assert not np.allclose(exact, approx)

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            rank([1.0, 2.0], 1.0, "quicksort")


class TestSoftSort:
    def test_converges_to_sorted(self):
        values = np.array([3.0, 1.0, 2.0, 5.0, 4.0])
        assert np.allclose(soft_sort(values, 50.0), np.sort(values), atol=1e-3)

    def test_non_finite_trail(self):
        out = soft_sort([2.0, np.nan, 1.0], 50.0)
        assert np.allclose(out[:2], [1.0, 2.0], atol=1e-3)
        assert np.isnan(out[2])

    def test_stays_within_range(self, random_values):
        out = soft_sort(random_values, 0.5)
        assert np.all(out >= random_values.min() - 1e-12)
        assert np.all(out <= random_values.max() + 1e-12)

    def test_empty(self):
        assert soft_sort([], 1.0).shape == (0,)
