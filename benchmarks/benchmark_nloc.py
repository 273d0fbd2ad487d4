#!/usr/bin/env python3
"""
optcon NLOC Benchmark: single- vs multi-threaded backend
"""

import time
import numpy as np

import optcon
from optcon import (
    ControlConstraints,
    MPC,
    MpcSettings,
    NLOCBackend,
    NLOptConSettings,
    OptConProblem,
    QuadraticCost,
    pendulum,
)

print(f"optcon version: {optcon.__version__}")
print()


def make_problem(bounded=False):
    """Pendulum swing to 1 rad."""
    cost = QuadraticCost(
        Q=np.diag([10.0, 1.0]),
        R=np.array([[0.01]]),
        Qf=np.diag([100.0, 10.0]),
        x_ref=np.array([1.0, 0.0]),
    )
    constraints = ControlConstraints.from_bounds(-10.0, 10.0, n_inputs=1) if bounded else None
    return OptConProblem(pendulum(dt=0.05), cost, control_constraints=constraints)


def solve_nloc(problem, horizon, n_threads, lq_solver='riccati'):
    """Solve once and time it."""
    settings = NLOptConSettings(
        horizon=horizon, dt=0.05, max_iterations=50,
        n_threads=n_threads, lq_solver=lq_solver,
    )
    backend = NLOCBackend(problem, settings)

    start = time.perf_counter()
    result = backend.solve(np.zeros(2))
    elapsed = time.perf_counter() - start

    return {
        'time': elapsed,
        'cost': result.cost,
        'status': str(result.reason),
        'iterations': result.iterations,
    }


def benchmark_single(horizon, thread_counts=(1, 2, 4)):
    """Benchmark one horizon length across thread counts."""
    problem = make_problem()
    results = {}

    for n_threads in thread_counts:
        res = solve_nloc(problem, horizon, n_threads)
        results[n_threads] = res
        print(f"    threads={n_threads}: {res['time']*1000:8.1f} ms, cost={res['cost']:10.4f}, "
              f"iters={res['iterations']}, status={res['status']}")

    return results


def benchmark_scaling():
    """Benchmark across horizon lengths."""
    print("=" * 70)
    print("NLOC Horizon Scaling Benchmark")
    print("=" * 70)

    horizons = [20, 50, 100, 200]
    all_results = []

    for horizon in horizons:
        print(f"\nHorizon: {horizon} steps")
        res = benchmark_single(horizon)
        all_results.append((horizon, res))

    # Summary table
    print("\n" + "=" * 70)
    print("Summary")
    print("=" * 70)
    print(f"{'N':>8} {'ST (ms)':>12} {'MT-4 (ms)':>12} {'Speedup':>10} {'|dJ|':>12}")
    print("-" * 70)

    for horizon, res in all_results:
        st_time = res[1]['time'] * 1000
        mt_time = res[4]['time'] * 1000
        diff = abs(res[1]['cost'] - res[4]['cost'])
        print(f"{horizon:>8} {st_time:>12.1f} {mt_time:>12.1f} {st_time / mt_time:>10.2f}x {diff:>12.2e}")


def benchmark_lq_solvers():
    """Riccati vs condensed QP, unconstrained and with torque bounds."""
    print("\n" + "=" * 70)
    print("LQ Solver Benchmark")
    print("=" * 70)

    for bounded in (False, True):
        problem = make_problem(bounded)
        label = "bounded" if bounded else "unconstrained"
        print(f"\n  {label}:")
        for lq_solver in ('riccati', 'condensed_qp'):
            res = solve_nloc(problem, 40, 1, lq_solver)
            print(f"    {lq_solver:>13}: {res['time']*1000:8.1f} ms, cost={res['cost']:10.4f}, "
                  f"iters={res['iterations']}, status={res['status']}")


def benchmark_mpc():
    """Per-cycle MPC latency with warm starting."""
    print("\n" + "=" * 70)
    print("MPC Cycle Benchmark")
    print("=" * 70)

    problem = make_problem()
    backend = NLOCBackend(problem, NLOptConSettings(horizon=40, dt=0.05))
    mpc = MPC(backend, MpcSettings(max_iterations_per_cycle=5))

    start = time.perf_counter()
    _, cycles = mpc.simulate(pendulum(dt=0.05), np.zeros(2), n_cycles=40)
    elapsed = time.perf_counter() - start

    times = np.array([c.solve_result.solve_time for c in cycles]) * 1000
    print(f"  40 cycles in {elapsed*1000:.1f} ms")
    print(f"  First cycle:  {times[0]:8.2f} ms")
    print(f"  Warm cycles:  {np.mean(times[1:]):8.2f} ms mean, {np.max(times[1:]):8.2f} ms max")
    print(f"  Qualities:    {sorted({str(c.quality) for c in cycles})}")


if __name__ == "__main__":
    benchmark_scaling()
    benchmark_lq_solvers()
    benchmark_mpc()
