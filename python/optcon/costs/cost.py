"""
Cost Functions
==============

Additive trajectory cost

    J = sum_{n=0}^{N-1} l(x_n, u_n, n) + l_f(x_N)

evaluated with value, gradient and Hessian at a given point. The NLOC
engine treats cost functions as black boxes behind ``CostFunction``.

A cost marked ``continuous`` gives its stage term as a rate; it is
multiplied by the sampling time when the problem is discretized.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np

from ..exceptions import DimensionError
from .reference import Reference


@dataclass
class CostEvaluation:
    """
    Second-order expansion of a cost term at one point.

    Attributes:
        value: Cost value
        gradient_x: dl/dx (n_x,)
        gradient_u: dl/du (n_u,), empty for terminal terms
        hessian_xx: d2l/dx2 (n_x, n_x)
        hessian_uu: d2l/du2 (n_u, n_u)
        hessian_ux: d2l/dudx (n_u, n_x)
    """
    value: float
    gradient_x: np.ndarray
    gradient_u: np.ndarray
    hessian_xx: np.ndarray
    hessian_uu: np.ndarray
    hessian_ux: np.ndarray

    def scaled(self, factor: float) -> "CostEvaluation":
        return CostEvaluation(
            value=self.value * factor,
            gradient_x=self.gradient_x * factor,
            gradient_u=self.gradient_u * factor,
            hessian_xx=self.hessian_xx * factor,
            hessian_uu=self.hessian_uu * factor,
            hessian_ux=self.hessian_ux * factor,
        )

    def is_finite(self) -> bool:
        return bool(
            np.isfinite(self.value)
            and np.all(np.isfinite(self.gradient_x))
            and np.all(np.isfinite(self.gradient_u))
            and np.all(np.isfinite(self.hessian_xx))
            and np.all(np.isfinite(self.hessian_uu))
            and np.all(np.isfinite(self.hessian_ux))
        )


class CostFunction(ABC):
    """Stage and terminal cost with derivatives."""

    #: Stage cost is a rate (scaled by dt when discretized)
    continuous: bool = False

    @abstractmethod
    def stage(self, state: np.ndarray, control: np.ndarray, n: int) -> CostEvaluation:
        """Expansion of the stage cost at time index ``n``."""

    @abstractmethod
    def terminal(self, state: np.ndarray, n: Optional[int] = None) -> CostEvaluation:
        """Expansion of the terminal cost reached at time index ``n``."""

    def stage_value(self, state: np.ndarray, control: np.ndarray, n: int) -> float:
        """Stage cost value only."""
        return self.stage(state, control, n).value

    def terminal_value(self, state: np.ndarray, n: Optional[int] = None) -> float:
        """Terminal cost value only."""
        return self.terminal(state, n).value

    def stage_scale(self, dt: float) -> float:
        return dt if self.continuous else 1.0

    def total(self, trajectory) -> float:
        """Total cost of a ``Trajectory``."""
        scale = self.stage_scale(trajectory.dt)
        stage_values = [
            self.stage_value(trajectory.states[n], trajectory.controls[n], n)
            for n in range(trajectory.horizon)
        ]
        terminal = self.terminal_value(trajectory.states[-1], trajectory.horizon)
        return float(scale * np.sum(stage_values) + terminal)


class QuadraticCost(CostFunction):
    """
    Quadratic (tracking) cost.

        l(x, u, n) = 1/2 dx' Q dx + 1/2 du' R du + du' P dx
        l_f(x, N)  = 1/2 dx' Qf dx

    with dx = x - x_ref(n), du = u - u_ref(n). The terminal target is
    x_ref(N), or the last reference sample when no index is given.

    Args:
        Q: State cost matrix (n_x, n_x)
        R: Input cost matrix (n_u, n_u)
        Qf: Terminal cost matrix (default: Q)
        x_ref: Target state (n_x,), per-step targets (K, n_x) or a Reference
        u_ref: Target input (n_u,) or per-step targets (K, n_u)
        P: Cross term (n_u, n_x), optional
        continuous: Stage cost is a rate

    Example:
        >>> cost = QuadraticCost(Q=np.eye(1), R=0.1 * np.eye(1), Qf=100 * np.eye(1),
        ...                      x_ref=np.array([1.0]))
    """

    def __init__(
        self,
        Q: np.ndarray,
        R: np.ndarray,
        Qf: Optional[np.ndarray] = None,
        x_ref: Optional[Union[np.ndarray, Reference]] = None,
        u_ref: Optional[np.ndarray] = None,
        P: Optional[np.ndarray] = None,
        continuous: bool = False,
    ) -> None:
        self.Q = np.atleast_2d(np.asarray(Q, dtype=np.float64))
        self.R = np.atleast_2d(np.asarray(R, dtype=np.float64))
        self.Qf = np.atleast_2d(np.asarray(Qf, dtype=np.float64)) if Qf is not None else self.Q
        self.continuous = continuous

        n_x = self.Q.shape[0]
        n_u = self.R.shape[0]
        self.n_states = n_x
        self.n_inputs = n_u

        if self.Q.shape != (n_x, n_x):
            raise DimensionError(f"Q must be square, got {self.Q.shape}")
        if self.R.shape != (n_u, n_u):
            raise DimensionError(f"R must be square, got {self.R.shape}")
        if self.Qf.shape != (n_x, n_x):
            raise DimensionError(f"Qf must be ({n_x}, {n_x}), got {self.Qf.shape}")

        self.P = np.zeros((n_u, n_x)) if P is None else np.asarray(P, dtype=np.float64)
        if self.P.shape != (n_u, n_x):
            raise DimensionError(f"P must be ({n_u}, {n_x}), got {self.P.shape}")

        if x_ref is None:
            x_ref = np.zeros(n_x)
        if not isinstance(x_ref, Reference):
            x_ref = np.asarray(x_ref, dtype=np.float64)
            if x_ref.ndim == 0 or x_ref.shape[-1] != n_x:
                raise DimensionError(f"x_ref must have {n_x} states, got shape {x_ref.shape}")
            x_ref = Reference(states=x_ref.reshape(-1, n_x))
        if x_ref.n_states != n_x:
            raise DimensionError(f"x_ref must have {n_x} states, got {x_ref.n_states}")
        self.reference = x_ref

        if u_ref is None:
            u_ref = self.reference.inputs if self.reference.inputs is not None else np.zeros(n_u)
        self.u_ref = np.asarray(u_ref, dtype=np.float64).reshape(-1, n_u)

    def _u_ref(self, n: int) -> np.ndarray:
        return self.u_ref[min(max(n, 0), len(self.u_ref) - 1)]

    def stage(self, state, control, n):
        dx = np.asarray(state, dtype=np.float64) - self.reference.get_state(n)
        du = np.asarray(control, dtype=np.float64) - self._u_ref(n)
        value = 0.5 * dx @ self.Q @ dx + 0.5 * du @ self.R @ du + du @ self.P @ dx
        return CostEvaluation(
            value=float(value),
            gradient_x=self.Q @ dx + self.P.T @ du,
            gradient_u=self.R @ du + self.P @ dx,
            hessian_xx=self.Q,
            hessian_uu=self.R,
            hessian_ux=self.P,
        )

    def stage_value(self, state, control, n):
        dx = np.asarray(state, dtype=np.float64) - self.reference.get_state(n)
        du = np.asarray(control, dtype=np.float64) - self._u_ref(n)
        return float(0.5 * dx @ self.Q @ dx + 0.5 * du @ self.R @ du + du @ self.P @ dx)

    def _terminal_target(self, n: Optional[int]) -> np.ndarray:
        if n is None:
            return self.reference.get_state(self.reference.length - 1)
        return self.reference.get_state(n)

    def terminal(self, state, n=None):
        dx = np.asarray(state, dtype=np.float64) - self._terminal_target(n)
        return CostEvaluation(
            value=float(0.5 * dx @ self.Qf @ dx),
            gradient_x=self.Qf @ dx,
            gradient_u=np.zeros(0),
            hessian_xx=self.Qf,
            hessian_uu=np.zeros((0, 0)),
            hessian_ux=np.zeros((0, self.n_states)),
        )


class FunctionCost(CostFunction):
    """
    Cost given by scalar callables; derivatives by central differences.

    Args:
        stage_fn: ``stage_fn(x, u, n) -> float``
        terminal_fn: ``terminal_fn(x) -> float``, optional (zero)
        eps: Finite-difference step
        continuous: Stage cost is a rate
    """

    def __init__(
        self,
        stage_fn: Callable[[np.ndarray, np.ndarray, int], float],
        terminal_fn: Optional[Callable[[np.ndarray], float]] = None,
        eps: float = 1e-4,
        continuous: bool = False,
    ) -> None:
        self.stage_fn = stage_fn
        self.terminal_fn = terminal_fn
        self.eps = eps
        self.continuous = continuous

    def stage_value(self, state, control, n):
        return float(self.stage_fn(state, control, n))

    def terminal_value(self, state, n=None):
        if self.terminal_fn is None:
            return 0.0
        return float(self.terminal_fn(state))

    def _expand(self, fun: Callable[[np.ndarray], float], z: np.ndarray):
        """Value, central-difference gradient and Hessian of ``fun`` at ``z``."""
        dim = len(z)
        h = self.eps
        f0 = fun(z)
        grad = np.zeros(dim)
        hess = np.zeros((dim, dim))
        eye = np.eye(dim) * h

        for i in range(dim):
            fp = fun(z + eye[i])
            fm = fun(z - eye[i])
            grad[i] = (fp - fm) / (2 * h)
            hess[i, i] = (fp - 2 * f0 + fm) / h**2
            for j in range(i):
                fpp = fun(z + eye[i] + eye[j])
                fpm = fun(z + eye[i] - eye[j])
                fmp = fun(z - eye[i] + eye[j])
                fmm = fun(z - eye[i] - eye[j])
                hess[i, j] = hess[j, i] = (fpp - fpm - fmp + fmm) / (4 * h**2)

        return f0, grad, hess

    def stage(self, state, control, n):
        x = np.asarray(state, dtype=np.float64)
        u = np.asarray(control, dtype=np.float64)
        n_x = len(x)
        value, grad, hess = self._expand(
            lambda z: self.stage_value(z[:n_x], z[n_x:], n),
            np.concatenate([x, u]),
        )
        return CostEvaluation(
            value=value,
            gradient_x=grad[:n_x],
            gradient_u=grad[n_x:],
            hessian_xx=hess[:n_x, :n_x],
            hessian_uu=hess[n_x:, n_x:],
            hessian_ux=hess[n_x:, :n_x],
        )

    def terminal(self, state, n=None):
        x = np.asarray(state, dtype=np.float64)
        value, grad, hess = self._expand(self.terminal_value, x)
        return CostEvaluation(
            value=value,
            gradient_x=grad,
            gradient_u=np.zeros(0),
            hessian_xx=hess,
            hessian_uu=np.zeros((0, 0)),
            hessian_ux=np.zeros((0, len(x))),
        )
