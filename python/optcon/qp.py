"""
optcon Dense QP Interface
=========================

Solves small dense convex QPs of the form

    minimize    (1/2) x' P x + q' x
    subject to  l <= A x <= u
                lb <= x <= ub

with scipy. Used by the Riccati solver for control-constrained steps and by
the condensed QP backend for the whole horizon.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from scipy import linalg
from scipy.optimize import Bounds, LinearConstraint, minimize

from .exceptions import DimensionError, InvalidInputError

logger = logging.getLogger(__name__)

QP_METHODS = ("slsqp", "trust-constr")


class QPStatus(Enum):
    """
    QP solver status codes.

    Attributes:
        OPTIMAL: Solution found within tolerance
        MAX_ITERATIONS: Iteration limit reached, iterate returned
        NUMERICAL_ERROR: Solver failed
    """
    OPTIMAL = "optimal"
    MAX_ITERATIONS = "max_iterations"
    NUMERICAL_ERROR = "numerical_error"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        return self == QPStatus.OPTIMAL

    @property
    def has_solution(self) -> bool:
        """True if a (possibly suboptimal) iterate is available."""
        return self in (QPStatus.OPTIMAL, QPStatus.MAX_ITERATIONS)


@dataclass
class QPResult:
    """
    Result of ``solve_qp``.

    Attributes:
        status: Solver status
        x: Primal solution
        objective: Objective value at ``x``
        iterations: Solver iterations
        solve_time: Wall clock time in seconds
    """
    status: QPStatus
    x: np.ndarray
    objective: float
    iterations: int = 0
    solve_time: float = 0.0

    def __repr__(self) -> str:
        return (
            f"QPResult(status={self.status}, objective={self.objective:.6g}, "
            f"iterations={self.iterations})"
        )


def solve_qp(
    P: np.ndarray,
    q: np.ndarray,
    A: Optional[np.ndarray] = None,
    l: Optional[np.ndarray] = None,
    u: Optional[np.ndarray] = None,
    lb: Optional[np.ndarray] = None,
    ub: Optional[np.ndarray] = None,
    method: str = "slsqp",
    max_iters: int = 200,
    tol: float = 1e-9,
) -> QPResult:
    """
    Solve a dense convex QP.

    Args:
        P: Hessian (n, n), positive definite
        q: Linear term (n,)
        A: Constraint matrix (m, n)
        l: Constraint lower bounds (m,), -inf for none
        u: Constraint upper bounds (m,), +inf for none
        lb: Variable lower bounds (n,)
        ub: Variable upper bounds (n,)
        method: ``"slsqp"`` (active set SQP) or ``"trust-constr"`` (interior point)
        max_iters: Iteration limit
        tol: Solver tolerance

    Returns:
        QPResult

    Example:
        >>> res = solve_qp(np.eye(2), np.array([-2.0, 0.0]), ub=np.array([1.0, 1.0]))
        >>> res.x
        array([1., 0.])
    """
    start_time = time.perf_counter()
    if method not in QP_METHODS:
        raise InvalidInputError(f"Unknown QP method '{method}', expected one of {QP_METHODS}")

    P = np.atleast_2d(np.asarray(P, dtype=np.float64))
    q = np.asarray(q, dtype=np.float64).ravel()
    n = len(q)
    if P.shape != (n, n):
        raise DimensionError(f"P must be ({n},{n}), got {P.shape}")

    lb = np.full(n, -np.inf) if lb is None else np.asarray(lb, dtype=np.float64).ravel()
    ub = np.full(n, np.inf) if ub is None else np.asarray(ub, dtype=np.float64).ravel()
    if len(lb) != n or len(ub) != n:
        raise DimensionError(f"Bounds mismatch: lb={len(lb)}, ub={len(ub)}, n={n}")

    if A is not None:
        A = np.atleast_2d(np.asarray(A, dtype=np.float64))
        m = A.shape[0]
        if A.shape[1] != n:
            raise DimensionError(f"A columns {A.shape[1]} != n={n}")
        l = np.full(m, -np.inf) if l is None else np.asarray(l, dtype=np.float64).ravel()
        u = np.full(m, np.inf) if u is None else np.asarray(u, dtype=np.float64).ravel()
    else:
        m = 0

    has_bounds = np.isfinite(lb).any() or np.isfinite(ub).any()
    if m == 0 and not has_bounds:
        result = _solve_unconstrained(P, q)
    elif method == "slsqp":
        result = _solve_slsqp(P, q, A, l, u, lb, ub, m, max_iters, tol)
    else:
        result = _solve_trust_constr(P, q, A, l, u, lb, ub, m, max_iters, tol)

    result.solve_time = time.perf_counter() - start_time
    return result


def _objective(P, q, x) -> float:
    return float(0.5 * x @ P @ x + q @ x)


def _initial_point(lb, ub) -> np.ndarray:
    x0 = np.clip(np.zeros(len(lb)), lb, ub)
    return np.where(np.isfinite(x0), x0, 0.0)


def _solve_unconstrained(P, q) -> QPResult:
    try:
        x = linalg.solve(P, -q, assume_a="sym")
    except (linalg.LinAlgError, ValueError) as e:
        logger.debug("Unconstrained QP solve failed: %s", e)
        return QPResult(QPStatus.NUMERICAL_ERROR, np.zeros(len(q)), float("nan"))
    return QPResult(QPStatus.OPTIMAL, x, _objective(P, q, x), iterations=1)


def _solve_slsqp(P, q, A, l, u, lb, ub, m, max_iters, tol) -> QPResult:
    n = len(q)
    bounds = [
        (lo if np.isfinite(lo) else None, hi if np.isfinite(hi) else None)
        for lo, hi in zip(lb, ub)
    ]
    constraints = []
    if m > 0:
        eq_mask = np.abs(l - u) < 1e-10
        if eq_mask.any():
            A_eq, b_eq = A[eq_mask], l[eq_mask]
            constraints.append({'type': 'eq', 'fun': lambda x, A=A_eq, b=b_eq: A @ x - b, 'jac': lambda x, A=A_eq: A})
        ineq_mask = ~eq_mask
        lo_mask = ineq_mask & np.isfinite(l)
        hi_mask = ineq_mask & np.isfinite(u)
        if lo_mask.any():
            A_lo, b_lo = A[lo_mask], l[lo_mask]
            constraints.append({'type': 'ineq', 'fun': lambda x, A=A_lo, b=b_lo: A @ x - b, 'jac': lambda x, A=A_lo: A})
        if hi_mask.any():
            A_hi, b_hi = A[hi_mask], u[hi_mask]
            constraints.append({'type': 'ineq', 'fun': lambda x, A=A_hi, b=b_hi: b - A @ x, 'jac': lambda x, A=A_hi: -A})

    try:
        result = minimize(
            lambda x: 0.5 * x @ P @ x + q @ x,
            _initial_point(lb, ub),
            method='SLSQP',
            jac=lambda x: P @ x + q,
            bounds=bounds,
            constraints=constraints,
            options={'maxiter': max_iters, 'ftol': tol},
        )
    except (ValueError, linalg.LinAlgError) as e:
        logger.debug("SLSQP failed: %s", e)
        return QPResult(QPStatus.NUMERICAL_ERROR, np.zeros(n), float("nan"))

    status = QPStatus.OPTIMAL if result.success else QPStatus.MAX_ITERATIONS
    if not np.all(np.isfinite(result.x)):
        status = QPStatus.NUMERICAL_ERROR
    return QPResult(status, result.x, _objective(P, q, result.x), iterations=int(result.nit))


def _solve_trust_constr(P, q, A, l, u, lb, ub, m, max_iters, tol) -> QPResult:
    n = len(q)
    constraints = []
    if m > 0:
        constraints.append(LinearConstraint(A, l, u))

    try:
        result = minimize(
            lambda x: 0.5 * x @ P @ x + q @ x,
            _initial_point(lb, ub),
            method='trust-constr',
            jac=lambda x: P @ x + q,
            hess=lambda x: P,
            bounds=Bounds(lb, ub),
            constraints=constraints,
            options={'maxiter': max_iters, 'gtol': tol, 'xtol': tol},
        )
    except (ValueError, linalg.LinAlgError) as e:
        logger.debug("trust-constr failed: %s", e)
        return QPResult(QPStatus.NUMERICAL_ERROR, np.zeros(n), float("nan"))

    # trust-constr reports success for both gtol and xtol termination
    status = QPStatus.OPTIMAL if result.status in (1, 2) else QPStatus.MAX_ITERATIONS
    x = np.clip(result.x, lb, ub)
    if not np.all(np.isfinite(x)):
        status = QPStatus.NUMERICAL_ERROR
    return QPResult(status, x, _objective(P, q, x), iterations=int(result.nit))
