"""
Sensitivity Providers
=====================

Linearization of discrete dynamics around a nominal point:

    x_{n+1} + dx_{n+1} ~= f(x_n, u_n, n) + A dx_n + B du_n

The LQ builder only depends on the ``Sensitivity`` interface; which provider
is used is decided when the problem is set up (``make_sensitivity``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np

from .dynamics import (
    DiscreteDynamics,
    DiscretizedSystem,
    Linearizable,
    discretize_linear,
)
from .integration import integrate


class Sensitivity(ABC):
    """Produces the Jacobians (A, B) of the discrete dynamics."""

    @abstractmethod
    def linearize(
        self, state: np.ndarray, control: np.ndarray, n: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return (A, B) at ``(state, control, n)``."""


class AnalyticSensitivity(Sensitivity):
    """Delegates to the analytic Jacobians of a ``Linearizable`` system."""

    def __init__(self, dynamics: Linearizable) -> None:
        self.dynamics = dynamics

    def linearize(self, state, control, n):
        return self.dynamics.linearize(state, control, n)


class FiniteDifferenceSensitivity(Sensitivity):
    """
    Central finite differences on ``dynamics.propagate``.

    Args:
        dynamics: Discrete dynamics
        eps: Relative perturbation size
    """

    def __init__(self, dynamics: DiscreteDynamics, eps: float = 1e-6) -> None:
        self.dynamics = dynamics
        self.eps = eps

    def _step(self, value: float) -> float:
        return self.eps * max(1.0, abs(value))

    def linearize(self, state, control, n):
        x = np.asarray(state, dtype=np.float64)
        u = np.asarray(control, dtype=np.float64)
        n_x, n_u = len(x), len(u)

        A = np.zeros((n_x, n_x))
        for i in range(n_x):
            h = self._step(x[i])
            xp, xm = x.copy(), x.copy()
            xp[i] += h
            xm[i] -= h
            A[:, i] = (self.dynamics.propagate(xp, u, n) - self.dynamics.propagate(xm, u, n)) / (2 * h)

        B = np.zeros((n_x, n_u))
        for j in range(n_u):
            h = self._step(u[j])
            up, um = u.copy(), u.copy()
            up[j] += h
            um[j] -= h
            B[:, j] = (self.dynamics.propagate(x, up, n) - self.dynamics.propagate(x, um, n)) / (2 * h)

        return A, B


class ContinuousSensitivity(Sensitivity):
    """
    Discrete Jacobians of a ``DiscretizedSystem`` from its continuous
    Jacobians, evaluated along the sub-step trajectory.

    With ``method='euler'`` each sub-step of length h contributes

        A <- (I + h Ac) A
        B <- (I + h Ac) B + h Bc

    With ``method='zoh'`` each sub-step uses the matrix exponential of the
    Jacobians frozen at the sub-step start.

    Args:
        system: Discretized continuous system with analytic Jacobians
        method: 'euler' or 'zoh'
    """

    def __init__(self, system: DiscretizedSystem, method: str = "euler") -> None:
        if method not in ("euler", "zoh"):
            raise ValueError(f"Unknown method '{method}'")
        if not system.system.has_jacobians:
            raise ValueError("continuous system has no analytic Jacobian")
        self.system = system
        self.method = method

    def linearize(self, state, control, n):
        sys = self.system
        cont = sys.system
        x = np.asarray(state, dtype=np.float64)
        u = np.asarray(control, dtype=np.float64)
        n_x, n_u = len(x), len(u)

        h = sys.dt / sys.n_substeps
        t = sys.time_of(n)
        A = np.eye(n_x)
        B = np.zeros((n_x, n_u))

        for i in range(sys.n_substeps):
            Ac, Bc = cont.jacobian(x, u, t)
            Ad, Bd = discretize_linear(Ac, Bc, h, self.method)
            A = Ad @ A
            B = Ad @ B + Bd
            x = integrate(cont.derivative, x, u, t, h, n_substeps=1, method=sys.method)
            t += h

        return A, B


def make_sensitivity(dynamics: DiscreteDynamics) -> Sensitivity:
    """
    Pick the sensitivity provider for ``dynamics``: analytic Jacobians when
    available, otherwise finite differences.
    """
    if isinstance(dynamics, Linearizable) and dynamics.has_jacobians:
        return AnalyticSensitivity(dynamics)
    if isinstance(dynamics, DiscretizedSystem) and dynamics.system.has_jacobians:
        return ContinuousSensitivity(dynamics)
    return FiniteDifferenceSensitivity(dynamics)
