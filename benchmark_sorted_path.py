"""
Benchmark the sorted-window soft rank against the exact O(n^2) path.

Compares:
- soft_rank: exact pairwise sigmoid relaxation
- soft_rank_sorted_window: banded approximation for ascending input

Reports time per call, the observed max absolute error and the worst-case
error bound for each input size.

Usage:
    uv run python benchmark_sorted_path.py
    uv run python benchmark_sorted_path.py --sizes 1000 4000 --window 16 --alpha 5
"""

import argparse
import time

import numpy as np
from tqdm import tqdm

from rank_soft.soft_rank import soft_rank
from rank_soft.sorted_path import soft_rank_sorted_window, sorted_window_error_bound


def make_sorted_input(n: int, spacing: float, rng: np.random.Generator) -> np.ndarray:
    """Ascending values with exponentially distributed gaps of the given mean."""
    return np.cumsum(rng.exponential(spacing, size=n))


def benchmark_method(fn, values: np.ndarray, num_runs: int = 3) -> tuple[float, float, np.ndarray]:
    """
    Time a ranking function.

    Args:
        fn: Callable taking the value vector
        values: Input vector
        num_runs: Number of runs for averaging

    Returns:
        (mean_time, std_time, result)
    """
    times = []
    result = None

    for _ in range(num_runs):
        start = time.perf_counter()
        result = fn(values)
        times.append(time.perf_counter() - start)

    return float(np.mean(times)), float(np.std(times)), result


def main():
    parser = argparse.ArgumentParser(description="Benchmark exact vs sorted-window soft rank")
    parser.add_argument(
        "--sizes",
        type=int,
        nargs="+",
        default=[250, 500, 1000, 2000],
        help="Input sizes to benchmark (default: 250 500 1000 2000)",
    )
    parser.add_argument(
        "--alpha",
        type=float,
        default=1.0,
        help="Regularization strength (default: 1.0)",
    )
    parser.add_argument(
        "--window",
        type=int,
        default=8,
        help="Neighbours compared on each side (default: 8)",
    )
    parser.add_argument(
        "--spacing",
        type=float,
        default=1.0,
        help="Mean gap between consecutive sorted values (default: 1.0)",
    )
    parser.add_argument(
        "--num-runs",
        type=int,
        default=3,
        help="Number of runs for averaging (default: 3)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for input generation (default: 42)",
    )
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)

    print(f"\n{'='*72}")
    print("Benchmark Configuration:")
    print(f"  Sizes: {args.sizes}")
    print(f"  Alpha: {args.alpha}")
    print(f"  Window: {args.window}")
    print(f"  Mean spacing: {args.spacing}")
    print(f"  Runs: {args.num_runs}")
    print(f"{'='*72}\n")

    rows = []
    for n in tqdm(args.sizes, desc="Benchmarking", unit="size"):
        values = make_sorted_input(n, args.spacing, rng)

        exact_mean, _, exact = benchmark_method(
            lambda v: soft_rank(v, args.alpha), values, args.num_runs
        )
        approx_mean, _, approx = benchmark_method(
            lambda v: soft_rank_sorted_window(v, args.alpha, args.window), values, args.num_runs
        )
        bound = sorted_window_error_bound(values, args.alpha, args.window)

        rows.append(
            (
                n,
                exact_mean,
                approx_mean,
                float(np.max(np.abs(exact - approx))),
                float(np.max(bound)),
            )
        )

    print(f"\n{'n':>8} {'exact (s)':>12} {'window (s)':>12} {'speedup':>9} {'max err':>11} {'bound':>11}")
    print("-" * 68)
    for n, exact_time, approx_time, max_err, max_bound in rows:
        speedup = exact_time / approx_time if approx_time > 0 else float("inf")
        print(
            f"{n:>8} {exact_time:>12.4f} {approx_time:>12.4f} {speedup:>8.1f}x "
            f"{max_err:>11.2e} {max_bound:>11.2e}"
        )

    within_bound = all(max_err <= max_bound + 1e-12 for _, _, _, max_err, max_bound in rows)
    print(f"\n{'='*72}")
    print(f"Error within bound: {'PASS' if within_bound else 'FAIL'}")
    print(f"{'='*72}")


if __name__ == "__main__":
    main()
