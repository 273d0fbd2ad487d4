"""
Numerical Integration
=====================

Fixed-step integrators used to propagate continuous-time dynamics over one
sampling interval.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

import numpy as np


class IntegrationType(Enum):
    """Fixed-step integration schemes."""
    EULER = "euler"
    RK4 = "rk4"

    def __str__(self) -> str:
        return self.value


def euler_step(
    f: Callable[[np.ndarray, np.ndarray, float], np.ndarray],
    x: np.ndarray,
    u: np.ndarray,
    t: float,
    h: float,
) -> np.ndarray:
    """One explicit Euler step of dx/dt = f(x, u, t)."""
    return x + h * f(x, u, t)


def rk4_step(
    f: Callable[[np.ndarray, np.ndarray, float], np.ndarray],
    x: np.ndarray,
    u: np.ndarray,
    t: float,
    h: float,
) -> np.ndarray:
    """One classical Runge-Kutta step with the control held constant."""
    k1 = f(x, u, t)
    k2 = f(x + 0.5 * h * k1, u, t + 0.5 * h)
    k3 = f(x + 0.5 * h * k2, u, t + 0.5 * h)
    k4 = f(x + h * k3, u, t + h)
    return x + (h / 6.0) * (k1 + 2 * k2 + 2 * k3 + k4)


_STEPPERS = {
    IntegrationType.EULER: euler_step,
    IntegrationType.RK4: rk4_step,
}


def integrate(
    f: Callable[[np.ndarray, np.ndarray, float], np.ndarray],
    x: np.ndarray,
    u: np.ndarray,
    t: float,
    dt: float,
    n_substeps: int = 1,
    method: IntegrationType = IntegrationType.RK4,
) -> np.ndarray:
    """
    Integrate dx/dt = f(x, u, t) from ``t`` to ``t + dt`` with zero-order
    hold on ``u``.

    Args:
        f: Continuous dynamics
        x: Initial state (n_x,)
        u: Control, held constant over the interval (n_u,)
        t: Start time
        dt: Interval length
        n_substeps: Number of integrator steps inside the interval
        method: Integration scheme

    Returns:
        State at ``t + dt``
    """
    if n_substeps < 1:
        raise ValueError(f"n_substeps must be >= 1, got {n_substeps}")
    method = IntegrationType(method)
    step = _STEPPERS[method]

    h = dt / n_substeps
    x = np.asarray(x, dtype=np.float64)
    for i in range(n_substeps):
        x = step(f, x, u, t + i * h, h)
    return x
