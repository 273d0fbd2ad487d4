"""
Constraints
===========

Constraint handling for nonlinear optimal control.

Supports:
- Box constraints (lb <= u <= ub) on the control, handled exactly by the LQ solver
- Polytope constraints (E @ u <= e) on the control, handled exactly by the LQ solver
- Nonlinear state-input constraints g(x, u, n) <= 0, handled as quadratic penalties
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

import numpy as np

from ..exceptions import DimensionError
from .cost import CostEvaluation


@dataclass
class BoxConstraints:
    """
    Box (bound) constraints.

    Represents: lb <= x <= ub

    Args:
        lower: Lower bound (scalar or vector)
        upper: Upper bound (scalar or vector)
        dim: Dimension (required if bounds are scalar)

    Example:
        >>> box = BoxConstraints(-1.0, 1.0, dim=3)
        >>> box = BoxConstraints(lower=np.array([-1, -2]), upper=np.array([1, 2]))
    """
    lower: Union[float, np.ndarray]
    upper: Union[float, np.ndarray]
    dim: Optional[int] = None

    def __post_init__(self):
        """Process bounds."""
        if np.isscalar(self.lower):
            if self.dim is None:
                raise ValueError("dim required when bounds are scalar")
            self.lower = np.full(self.dim, float(self.lower))
        else:
            self.lower = np.asarray(self.lower, dtype=np.float64)
            if self.dim is None:
                self.dim = len(self.lower)

        if np.isscalar(self.upper):
            self.upper = np.full(self.dim, float(self.upper))
        else:
            self.upper = np.asarray(self.upper, dtype=np.float64)

        if len(self.lower) != len(self.upper):
            raise ValueError("lower and upper must have same length")
        if np.any(self.lower > self.upper):
            raise ValueError("lower bounds must not exceed upper bounds")

    def is_satisfied(self, x: np.ndarray, tol: float = 1e-6) -> bool:
        """Check if x satisfies constraints."""
        return bool((x >= self.lower - tol).all() and (x <= self.upper + tol).all())

    def project(self, x: np.ndarray) -> np.ndarray:
        """Project x onto feasible set."""
        return np.clip(x, self.lower, self.upper)

    def violation(self, x: np.ndarray) -> float:
        """Compute maximum constraint violation."""
        lower_viol = np.maximum(self.lower - x, 0).max()
        upper_viol = np.maximum(x - self.upper, 0).max()
        return float(max(lower_viol, upper_viol))

    @classmethod
    def unbounded(cls, dim: int) -> "BoxConstraints":
        """Create unbounded constraints."""
        return cls(lower=-np.inf, upper=np.inf, dim=dim)


@dataclass
class PolytopeConstraints:
    """
    Polytope (linear inequality) constraints.

    Represents: A @ x <= b

    Args:
        A: Constraint matrix (m, n)
        b: Constraint bounds (m,)
    """
    A: np.ndarray
    b: np.ndarray

    def __post_init__(self):
        """Validate dimensions."""
        self.A = np.atleast_2d(np.asarray(self.A, dtype=np.float64))
        self.b = np.atleast_1d(np.asarray(self.b, dtype=np.float64))

        if self.A.ndim != 2:
            raise ValueError(f"A must be 2D, got shape {self.A.shape}")
        if self.A.shape[0] != len(self.b):
            raise ValueError("A rows must match b length")

    @property
    def n_constraints(self) -> int:
        return len(self.b)

    @property
    def dim(self) -> int:
        return self.A.shape[1]

    def is_satisfied(self, x: np.ndarray, tol: float = 1e-6) -> bool:
        """Check if x satisfies constraints."""
        return bool((self.A @ x <= self.b + tol).all())

    def violation(self, x: np.ndarray) -> float:
        """Compute maximum constraint violation."""
        return float(np.maximum(self.A @ x - self.b, 0).max())


class ControlConstraints:
    """
    Constraints on the control at every time step.

    Args:
        box: Bounds u_min <= u <= u_max
        polytope: Linear inequalities E @ u <= e

    Example:
        >>> cc = ControlConstraints(box=BoxConstraints(-1.0, 1.0, dim=1))
    """

    def __init__(
        self,
        box: Optional[BoxConstraints] = None,
        polytope: Optional[PolytopeConstraints] = None,
    ) -> None:
        if box is None and polytope is None:
            raise ValueError("at least one of box or polytope is required")
        if box is not None and polytope is not None and box.dim != polytope.dim:
            raise DimensionError(f"box dim {box.dim} != polytope dim {polytope.dim}")
        self.box = box
        self.polytope = polytope

    @classmethod
    def from_bounds(cls, u_min, u_max, n_inputs: int) -> "ControlConstraints":
        """Box constraints from scalar or vector bounds."""
        return cls(box=BoxConstraints(u_min, u_max, dim=n_inputs))

    @property
    def n_inputs(self) -> int:
        return self.box.dim if self.box is not None else self.polytope.dim

    def deviation_bounds(self, u_nominal: np.ndarray) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """Bounds on du such that u_nominal + du stays inside the box."""
        if self.box is None:
            return None, None
        return self.box.lower - u_nominal, self.box.upper - u_nominal

    def deviation_polytope(self, u_nominal: np.ndarray) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """(E, e') such that E @ du <= e' keeps u_nominal + du inside the polytope."""
        if self.polytope is None:
            return None, None
        return self.polytope.A, self.polytope.b - self.polytope.A @ u_nominal

    def project(self, u: np.ndarray) -> np.ndarray:
        """Clip to the box; polytope constraints are not projected."""
        if self.box is None:
            return u
        return self.box.project(u)

    def is_satisfied(self, u: np.ndarray, tol: float = 1e-6) -> bool:
        ok = True
        if self.box is not None:
            ok = ok and self.box.is_satisfied(u, tol)
        if self.polytope is not None:
            ok = ok and self.polytope.is_satisfied(u, tol)
        return ok


class StatePenaltyConstraint:
    """
    Nonlinear state-input inequality g(x, u, n) <= 0 enforced by the
    quadratic penalty

        c(x, u, n) = w/2 * || max(g(x, u, n), 0) ||^2

    which is added to the stage cost with a Gauss-Newton expansion.

    Args:
        g: Constraint function returning (m,)
        weight: Penalty weight w
        jacobian: Optional ``jacobian(x, u, n) -> (Gx, Gu)``; central
            differences when omitted
        eps: Finite-difference step

    Example:
        >>> # keep position below 1.5
        >>> c = StatePenaltyConstraint(lambda x, u, n: np.array([x[0] - 1.5]), weight=1e3)
    """

    def __init__(
        self,
        g: Callable[[np.ndarray, np.ndarray, int], np.ndarray],
        weight: float = 100.0,
        jacobian: Optional[Callable[[np.ndarray, np.ndarray, int], Tuple[np.ndarray, np.ndarray]]] = None,
        eps: float = 1e-6,
    ) -> None:
        if weight <= 0:
            raise ValueError(f"weight must be positive, got {weight}")
        self.g = g
        self.weight = weight
        self._jacobian = jacobian
        self.eps = eps

    def evaluate(self, state: np.ndarray, control: np.ndarray, n: int) -> np.ndarray:
        return np.atleast_1d(np.asarray(self.g(state, control, n), dtype=np.float64))

    def jacobian(self, state: np.ndarray, control: np.ndarray, n: int) -> Tuple[np.ndarray, np.ndarray]:
        if self._jacobian is not None:
            Gx, Gu = self._jacobian(state, control, n)
            return np.atleast_2d(Gx), np.atleast_2d(Gu)

        x = np.asarray(state, dtype=np.float64)
        u = np.asarray(control, dtype=np.float64)
        m = len(self.evaluate(x, u, n))
        Gx = np.zeros((m, len(x)))
        Gu = np.zeros((m, len(u)))
        for i in range(len(x)):
            e = np.zeros(len(x))
            e[i] = self.eps
            Gx[:, i] = (self.evaluate(x + e, u, n) - self.evaluate(x - e, u, n)) / (2 * self.eps)
        for j in range(len(u)):
            e = np.zeros(len(u))
            e[j] = self.eps
            Gu[:, j] = (self.evaluate(x, u + e, n) - self.evaluate(x, u - e, n)) / (2 * self.eps)
        return Gx, Gu

    def penalty_value(self, state: np.ndarray, control: np.ndarray, n: int) -> float:
        viol = np.maximum(self.evaluate(state, control, n), 0.0)
        return float(0.5 * self.weight * viol @ viol)

    def violation(self, state: np.ndarray, control: np.ndarray, n: int) -> float:
        return float(np.maximum(self.evaluate(state, control, n), 0.0).max())

    def penalty(self, state: np.ndarray, control: np.ndarray, n: int) -> CostEvaluation:
        """Gauss-Newton expansion of the penalty."""
        viol = np.maximum(self.evaluate(state, control, n), 0.0)
        Gx, Gu = self.jacobian(state, control, n)
        active = viol > 0
        Gx = Gx[active]
        Gu = Gu[active]
        v = viol[active]
        w = self.weight
        return CostEvaluation(
            value=float(0.5 * w * v @ v),
            gradient_x=w * Gx.T @ v,
            gradient_u=w * Gu.T @ v,
            hessian_xx=w * Gx.T @ Gx,
            hessian_uu=w * Gu.T @ Gu,
            hessian_ux=w * Gu.T @ Gx,
        )
