"""
pytest configuration and fixtures for optcon tests.
"""

import pytest
import numpy as np


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def point_mass_problem():
    """
    Velocity-controlled point mass driven to x = 1.

    x_{n+1} = x_n + 0.1 * u_n
    cost:    sum 1/2 (x - 1)^2 + 1/2 * 0.1 u^2 + 1/2 * 10 (x_N - 1)^2
    """
    from optcon import OptConProblem, QuadraticCost, point_mass_1d

    cost = QuadraticCost(
        Q=np.eye(1),
        R=0.1 * np.eye(1),
        Qf=10.0 * np.eye(1),
        x_ref=np.array([1.0]),
    )
    return OptConProblem(point_mass_1d(dt=0.1), cost)


@pytest.fixture
def double_integrator_problem():
    """Double integrator regulated to the origin."""
    from optcon import OptConProblem, QuadraticCost, double_integrator

    cost = QuadraticCost(
        Q=np.diag([10.0, 1.0]),
        R=np.array([[0.1]]),
        Qf=np.diag([100.0, 10.0]),
    )
    return OptConProblem(double_integrator(dt=0.1), cost)


@pytest.fixture
def pendulum_problem():
    """Damped pendulum moved to 1 rad (nonlinear dynamics)."""
    from optcon import OptConProblem, QuadraticCost, pendulum

    cost = QuadraticCost(
        Q=np.diag([10.0, 1.0]),
        R=np.array([[0.01]]),
        Qf=np.diag([100.0, 10.0]),
        x_ref=np.array([1.0, 0.0]),
    )
    return OptConProblem(pendulum(dt=0.05), cost)


@pytest.fixture
def nloc_settings():
    """Settings for a 20 step horizon at dt = 0.1."""
    from optcon import NLOptConSettings

    return NLOptConSettings(horizon=20, dt=0.1, max_iterations=20)


@pytest.fixture
def finite_horizon_lqr():
    """
    Reference finite-horizon LQR recursion for x_{n+1} = A x + B u,
    cost sum 1/2 x'Qx + 1/2 u'Ru + 1/2 x_N' Qf x_N.

    Returns a function (A, B, Q, R, Qf, N) -> gains (N, n_u, n_x) with
    u_n = K_n x_n.
    """
    def solve(A, B, Q, R, Qf, N):
        P = Qf.copy()
        gains = [None] * N
        for n in range(N - 1, -1, -1):
            K = -np.linalg.solve(R + B.T @ P @ B, B.T @ P @ A)
            P = Q + A.T @ P @ (A + B @ K)
            P = 0.5 * (P + P.T)
            gains[n] = K
        return np.array(gains)

    return solve


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "benchmark: marks benchmark tests")
    config.addinivalue_line("markers", "integration: marks integration tests")
