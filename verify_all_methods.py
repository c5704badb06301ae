"""
Verify every ranking relaxation satisfies the shared invariants.

Checks, per method and regularization strength:
- bounds: ranks in [0, n-1]
- rank sum: n(n-1)/2
- convergence: large alpha recovers the discrete ranks
- Jacobian: rows sum to zero and agree with central differences
"""

import warnings

import numpy as np

from rank_soft.config import RankingMethod
from rank_soft.errors import ConvergenceWarning
from rank_soft.gradients import numerical_jacobian, soft_rank_gradient
from rank_soft.soft_rank import rank


def check_method(method: RankingMethod, values: np.ndarray, alpha: float) -> dict[str, float]:
    """Compute invariant residuals for one method; smaller is better."""
    n = len(values)
    ranks = rank(values, alpha, method)
    jac = soft_rank_gradient(values, alpha, method)
    numerical = numerical_jacobian(lambda v: rank(v, alpha, method), values)

    return {
        "bounds": float(max(0.0, -ranks.min(), ranks.max() - (n - 1))),
        "rank_sum": float(abs(ranks.sum() - n * (n - 1) / 2)),
        "row_sum": float(np.max(np.abs(jac.sum(axis=1)))),
        "grad_rel": float(np.linalg.norm(jac - numerical) / max(np.linalg.norm(numerical), 1e-12)),
    }


def check_convergence(method: RankingMethod, values: np.ndarray) -> float:
    """Max deviation from the discrete ranks at a sharp regularization."""
    discrete = np.argsort(np.argsort(values)).astype(np.float64)
    return float(np.max(np.abs(rank(values, 1e4, method) - discrete)))


def main():
    print("Soft Rank Method Verification")

    rng = np.random.default_rng(0)
    # well-separated values so the sharp limit is unambiguous
    values = rng.permutation(np.arange(20, dtype=np.float64)) + rng.uniform(-0.2, 0.2, size=20)
    tolerances = {"bounds": 1e-9, "rank_sum": 1e-3, "row_sum": 1e-5, "grad_rel": 1e-4}

    all_pass = True
    for alpha in [0.1, 1.0, 10.0]:
        print(f"\n{'='*72}")
        print(f"alpha = {alpha}, n = {len(values)}")
        print(f"{'='*72}")
        print(f"{'method':<26} {'bounds':>9} {'rank_sum':>10} {'row_sum':>10} {'grad_rel':>10}")

        for method in RankingMethod:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                residuals = check_method(method, values, alpha)
            passed = all(residuals[key] <= tol for key, tol in tolerances.items())
            all_pass = all_pass and passed
            status = "✓" if passed else "✗"
            print(
                f"{method.value:<26} {residuals['bounds']:>9.1e} {residuals['rank_sum']:>10.1e} "
                f"{residuals['row_sum']:>10.1e} {residuals['grad_rel']:>10.1e} {status}"
            )

    print(f"\n{'='*72}")
    print("Convergence at alpha = 1e4 (max |soft - discrete|):")
    for method in RankingMethod:
        deviation = check_convergence(method, values)
        passed = deviation < 1e-3
        all_pass = all_pass and passed
        print(f"  {method.value:<26} {deviation:.2e} {'✓' if passed else '✗'}")

    print(f"\n{'='*72}")
    print("FINAL RESULT:", "ALL PASS ✓" if all_pass else "SOME FAILED ✗")
    print(f"{'='*72}")


if __name__ == "__main__":
    main()
