import numpy as np
import pytest
from scipy.sparse import issparse

from rank_soft.config import RankingMethod
from rank_soft.errors import ConvergenceWarning, LengthMismatch
from rank_soft.gradients import (
    numerical_jacobian,
    soft_rank_gradient,
    soft_rank_gradient_sparse,
    soft_rank_vjp,
)
from rank_soft.soft_rank import rank

pytestmark = pytest.mark.filterwarnings("ignore", category=ConvergenceWarning)

CLOSED_FORM_METHODS = [m for m in RankingMethod if m.has_closed_form_gradient]


def relative_error(analytic, numerical):
    return np.linalg.norm(analytic - numerical) / max(np.linalg.norm(numerical), 1e-12)


@pytest.fixture
def values():
    rng = np.random.default_rng(5)
    return rng.normal(size=15)


@pytest.mark.parametrize("method", list(RankingMethod))
def test_rows_sum_to_zero(values, method):
    jac = soft_rank_gradient(values, 1.0, method)
    assert jac.shape == (len(values), len(values))
    assert np.allclose(jac.sum(axis=1), 0.0, atol=1e-5)


# (values, alpha): tied groups at a soft setting, magnitudes near the float
# limit at a sharp one
HARD_INPUTS = {
    "tied": (np.array([1.0, 1.0, 1.0, 2.0, 2.0, 0.5]), 1.0),
    "extreme": (np.array([-1e300, 0.0, 1e300]), 1e3),
}


@pytest.mark.parametrize("case", list(HARD_INPUTS))
@pytest.mark.parametrize("method", list(RankingMethod))
def test_rows_sum_to_zero_on_hard_inputs(case, method):
    x, alpha = HARD_INPUTS[case]
    jac = soft_rank_gradient(x, alpha, method)
    assert np.all(np.isfinite(jac))
    assert np.allclose(jac.sum(axis=1), 0.0, atol=1e-5)


@pytest.mark.parametrize("case", list(HARD_INPUTS))
@pytest.mark.parametrize("method", list(RankingMethod))
def test_matches_numerical_on_hard_inputs(case, method):
    x, alpha = HARD_INPUTS[case]
    analytic = soft_rank_gradient(x, alpha, method)
    numerical = numerical_jacobian(lambda v: rank(v, alpha, method), x)
    assert np.all(np.isfinite(numerical))
    assert relative_error(analytic, numerical) < 1e-4


@pytest.mark.parametrize("method", CLOSED_FORM_METHODS)
def test_diagonal_non_negative(values, method):
    assert np.all(np.diag(soft_rank_gradient(values, 2.0, method)) >= 0.0)


@pytest.mark.parametrize("n", [2, 3, 5, 10, 25, 50])
@pytest.mark.parametrize("method", CLOSED_FORM_METHODS)
def test_analytic_matches_numerical(n, method):
    rng = np.random.default_rng(n)
    x = rng.normal(size=n)
    analytic = soft_rank_gradient(x, 1.0, method)
    numerical = numerical_jacobian(lambda v: rank(v, 1.0, method), x)
    assert relative_error(analytic, numerical) < 1e-4


def test_end_to_end_diagonal_positive():
    jac = soft_rank_gradient([5.0, 1.0, 2.0, 4.0, 3.0], 10.0)
    assert np.all(np.diag(jac) > 0.0)


def test_permutation_relaxation_uses_numerical_fallback(values):
    jac = soft_rank_gradient(values, 1.0, RankingMethod.PERMUTATION_RELAXATION)
    expected = numerical_jacobian(lambda v: rank(v, 1.0, "permutation_relaxation"), values)
    assert np.allclose(jac, expected)


def test_non_finite_rows_and_columns_zero():
    x = np.array([0.5, np.nan, -1.0, 2.0])
    for method in RankingMethod:
        jac = soft_rank_gradient(x, 1.0, method)
        assert np.all(jac[1, :] == 0.0)
        assert np.all(jac[:, 1] == 0.0)
        assert np.all(np.isfinite(jac))


def test_single_element():
    assert np.array_equal(soft_rank_gradient([3.0], 1.0), [[0.0]])


def test_sorted_approximation_gradient_dense():
    x = np.arange(20, dtype=np.float64)
    jac = soft_rank_gradient(x, 1.0, sorted_approximation=True, window=3)
    assert jac.shape == (20, 20)
    assert jac[0, 10] == 0.0
    assert np.allclose(jac.sum(axis=1), 0.0)


def test_sorted_approximation_requires_sigmoid():
    with pytest.raises(ValueError):
        soft_rank_gradient([1.0, 2.0], 1.0, "probabilistic_cdf", sorted_approximation=True)


class TestSparseGradient:
    @pytest.mark.parametrize("method", list(RankingMethod))
    def test_matches_dense(self, values, method):
        dense = soft_rank_gradient(values, 1.0, method)
        sparse = soft_rank_gradient_sparse(values, 1.0, method, block_size=4)
        assert issparse(sparse)
        assert np.allclose(sparse.toarray(), dense)

    def test_threshold_drops_small_entries(self):
        x = np.arange(40, dtype=np.float64)
        sparse = soft_rank_gradient_sparse(x, 20.0, threshold=1e-12)
        # only immediate neighbours survive for well-separated values at high alpha
        assert sparse.nnz <= 3 * len(x)

    def test_invalid_block_size(self, values):
        with pytest.raises(ValueError):
            soft_rank_gradient_sparse(values, 1.0, block_size=0)

    def test_empty(self):
        assert soft_rank_gradient_sparse([], 1.0).shape == (0, 0)


class TestVJP:
    def test_matches_transpose_product(self, values):
        g = np.linspace(-1, 1, len(values))
        jac = soft_rank_gradient(values, 1.5)
        assert np.allclose(soft_rank_vjp(values, 1.5, g), jac.T @ g)

    def test_length_mismatch(self, values):
        with pytest.raises(LengthMismatch) as excinfo:
            soft_rank_vjp(values, 1.0, np.ones(len(values) - 1))
        assert excinfo.value.expected == len(values)
        assert excinfo.value.actual == len(values) - 1
        assert "Length mismatch" in str(excinfo.value)


def test_numerical_jacobian_linear():
    A = np.array([[1.0, 2.0], [3.0, -4.0], [0.5, 0.0]])
    jac = numerical_jacobian(lambda v: A @ v, [0.3, -0.7])
    assert np.allclose(jac, A)
