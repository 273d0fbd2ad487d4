"""
Riccati LQ Solver
=================

Backward Riccati recursion for the time-varying LQ problem built around a
nominal trajectory, including the defect ``b`` of dynamically inconsistent
trajectories:

    Qx  = qx  + A'(s + S b)          Qxx = Qxx + A' S A
    Qu  = qu  + B'(s + S b)          Quu = Quu + B' S B
                                     Qux = Qux + B' S A

    k = -Quu^-1 Qu,   K = -Quu^-1 Qux

    S <- Qxx + K' Quu K + K' Qux + Qux' K
    s <- Qx  + K' Quu k + K' Qu  + Qux' k

Control-constrained steps solve the local QP in ``du`` instead and restrict
the feedback gain to the null space of the active constraints.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from scipy import linalg

from ..qp import solve_qp
from ..result import LQStatus
from .problem import ControlConstraintSegment, LQProblem
from .regularization import RegularizationSettings, regularize

logger = logging.getLogger(__name__)


@dataclass
class ValueFunction:
    """Quadratic value function s0 + s'dx + 1/2 dx'S dx at one time index."""
    S: np.ndarray
    s: np.ndarray
    s0: float


@dataclass
class LQSolution:
    """
    Solution of one LQ sub-problem.

    Attributes:
        gains: Feedback gains K_n (N, n_u, n_x)
        feedforward: Control deviations k_n (N, n_u)
        value_functions: Value functions for n = 0 .. N
        dv1: Linear term of the expected cost change, sum k'Qu
        dv2: Quadratic term of the expected cost change, 1/2 sum k'Quu k
        status: ``LQStatus.DEGRADED`` if heavy regularization was needed
        max_regularization: Largest diagonal shift applied to any Quu
        n_constrained: Number of steps with active control constraints
    """
    gains: np.ndarray
    feedforward: np.ndarray
    value_functions: List[ValueFunction] = field(default_factory=list)
    dv1: float = 0.0
    dv2: float = 0.0
    status: LQStatus = LQStatus.OK
    max_regularization: float = 0.0
    n_constrained: int = 0

    @property
    def horizon(self) -> int:
        return len(self.feedforward)

    @property
    def cost_to_go(self) -> float:
        """Predicted LQ cost from the initial time index."""
        if not self.value_functions:
            return float("nan")
        return self.value_functions[0].s0

    def expected_change(self, alpha: float) -> float:
        """Predicted cost change of a step of size ``alpha``."""
        return alpha * self.dv1 + alpha ** 2 * self.dv2

    def expected_decrease(self, alpha: float = 1.0) -> float:
        return -self.expected_change(alpha)


class LQSolver(ABC):
    """Interface of LQ sub-problem solvers."""

    name: str = "lq"

    @abstractmethod
    def solve_lq(self, lq: LQProblem) -> LQSolution:
        """Solve the LQ problem and return gains and feedforward deviations."""


def _active_rows(
    k: np.ndarray,
    segment: ControlConstraintSegment,
    tol: float,
) -> np.ndarray:
    """Rows of the constraints active at ``k`` (bounds as unit rows)."""
    n_u = len(k)
    rows = []
    if segment.lower is not None:
        eye = np.eye(n_u)
        at_bound = (k <= segment.lower + tol) | (k >= segment.upper - tol)
        rows.extend(eye[at_bound & (np.isfinite(segment.lower) | np.isfinite(segment.upper))])
    if segment.E is not None:
        at_face = segment.E @ k >= segment.e - tol
        rows.extend(segment.E[at_face])
    if not rows:
        return np.zeros((0, n_u))
    return np.vstack(rows)


def _is_feasible(k: np.ndarray, segment: ControlConstraintSegment, tol: float) -> bool:
    if segment.lower is not None:
        if np.any(k < segment.lower - tol) or np.any(k > segment.upper + tol):
            return False
    if segment.E is not None and np.any(segment.E @ k > segment.e + tol):
        return False
    return True


class RiccatiSolver(LQSolver):
    """
    Riccati backward-recursion LQ solver.

    Args:
        regularization: Regularization schedule for the control Hessians
        qp_method: QP method for constrained steps (see ``solve_qp``)
        active_tol: Tolerance for detecting active constraints

    Example:
        >>> solver = RiccatiSolver()
        >>> solution = solver.solve_lq(lq_problem)
        >>> solution.gains.shape
        (20, 1, 2)
    """

    name = "riccati"

    def __init__(
        self,
        regularization: Optional[RegularizationSettings] = None,
        qp_method: str = "slsqp",
        active_tol: float = 1e-7,
    ) -> None:
        self.regularization = regularization or RegularizationSettings()
        self.qp_method = qp_method
        self.active_tol = active_tol

    def solve_lq(self, lq: LQProblem) -> LQSolution:
        N, n_x, n_u = lq.horizon, lq.n_states, lq.n_inputs

        gains = np.zeros((N, n_u, n_x))
        feedforward = np.zeros((N, n_u))
        value_functions: List[Optional[ValueFunction]] = [None] * (N + 1)

        terminal = lq.terminal
        S = 0.5 * (terminal.Qxx + terminal.Qxx.T)
        s = terminal.qx.copy()
        s0 = terminal.q
        value_functions[N] = ValueFunction(S.copy(), s.copy(), s0)

        dv1 = 0.0
        dv2 = 0.0
        degraded = False
        max_mu = 0.0
        n_constrained = 0

        for n in range(N - 1, -1, -1):
            dyn = lq.dynamics[n]
            cost = lq.costs[n]
            A, B, b = dyn.A, dyn.B, dyn.b

            s_plus = s + S @ b
            Qx = cost.qx + A.T @ s_plus
            Qu = cost.qu + B.T @ s_plus
            Qxx = cost.Qxx + A.T @ S @ A
            Quu = cost.Quu + B.T @ S @ B
            Qux = cost.Qux + B.T @ S @ A
            Q0 = cost.q + s0 + s @ b + 0.5 * b @ S @ b

            reg = regularize(Quu, self.regularization)
            if reg.mu > 0 or reg.clamped:
                max_mu = max(max_mu, reg.mu)
                if reg.is_degraded(self.regularization):
                    degraded = True

            segment = lq.constraint(n)
            if segment is not None and segment.is_active:
                k, K, active = self._constrained_step(reg, Qu, Qux, segment)
                n_constrained += int(active)
            else:
                k = -reg.solve(Qu)
                K = -reg.solve(Qux)

            gains[n] = K
            feedforward[n] = k

            S = Qxx + K.T @ Quu @ K + K.T @ Qux + Qux.T @ K
            S = 0.5 * (S + S.T)
            s = Qx + K.T @ Quu @ k + K.T @ Qu + Qux.T @ k
            s0 = Q0 + k @ Qu + 0.5 * k @ Quu @ k
            value_functions[n] = ValueFunction(S.copy(), s.copy(), float(s0))

            dv1 += float(k @ Qu)
            dv2 += float(0.5 * k @ Quu @ k)

        if degraded:
            logger.warning("LQ solve needed heavy regularization (max mu=%.3g)", max_mu)

        return LQSolution(
            gains=gains,
            feedforward=feedforward,
            value_functions=value_functions,
            dv1=dv1,
            dv2=dv2,
            status=LQStatus.DEGRADED if degraded else LQStatus.OK,
            max_regularization=max_mu,
            n_constrained=n_constrained,
        )

    def _constrained_step(
        self,
        reg,
        Qu: np.ndarray,
        Qux: np.ndarray,
        segment: ControlConstraintSegment,
    ) -> Tuple[np.ndarray, np.ndarray, bool]:
        """Feedforward, gain and whether any constraint is active."""
        k = -reg.solve(Qu)
        if _is_feasible(k, segment, self.active_tol):
            return k, -reg.solve(Qux), False

        result = solve_qp(
            reg.matrix, Qu,
            A=segment.E, u=segment.e,
            lb=segment.lower, ub=segment.upper,
            method=self.qp_method,
        )
        if result.status.is_successful:
            k = result.x
        else:
            logger.debug("Local QP %s, clipping unconstrained step", result.status)
            if segment.lower is not None:
                k = np.clip(k, segment.lower, segment.upper)

        C = _active_rows(k, segment, 1e3 * self.active_tol)
        if C.shape[0] == 0:
            return k, -reg.solve(Qux), False

        Z = linalg.null_space(C)
        if Z.shape[1] == 0:
            return k, np.zeros_like(Qux), True
        reduced = Z.T @ reg.matrix @ Z
        K = -Z @ linalg.solve(reduced, Z.T @ Qux, assume_a="pos")
        return k, K, True
