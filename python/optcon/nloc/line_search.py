"""
Closed-Loop Rollout and Line Search
===================================

Forward pass of the NLOC iteration. For a step size ``alpha`` the new
trajectory is obtained by rolling out

    u_n = u_nom_n + alpha * k_n + K_n (x_n - x_nom_n)

from the fixed initial state through the nonlinear dynamics. Candidates are
accepted by the Armijo condition

    J(alpha) <= J_nom - armijo * expected_decrease(alpha)

with ``expected_decrease(alpha) = -(alpha * dv1 + alpha^2 * dv2)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..lq.riccati import LQSolution
from ..problem import OptConProblem
from ..trajectory import Trajectory
from .settings import LineSearchSettings

logger = logging.getLogger(__name__)


@dataclass
class LineSearchResult:
    """
    Outcome of one line search.

    Attributes:
        accepted: True if ``trajectory`` replaces the nominal trajectory
        trajectory: Accepted candidate (None if rejected)
        cost: Cost of the accepted candidate (nan if rejected)
        alpha: Accepted step size (0 if rejected)
        n_backtracks: Step size reductions performed
        expected_decrease: Predicted decrease for ``alpha``
    """
    accepted: bool
    trajectory: Optional[Trajectory] = None
    cost: float = float("nan")
    alpha: float = 0.0
    n_backtracks: int = 0
    expected_decrease: float = 0.0


def rollout(
    problem: OptConProblem,
    nominal: Trajectory,
    solution: LQSolution,
    alpha: float,
) -> Optional[Trajectory]:
    """
    Closed-loop rollout of the LQ update with step size ``alpha``.

    Returns:
        New trajectory, or None if the rollout produced non-finite values
    """
    N = nominal.horizon
    states = np.zeros_like(nominal.states)
    controls = np.zeros_like(nominal.controls)
    states[0] = nominal.states[0]

    for n in range(N):
        dx = states[n] - nominal.states[n]
        u = nominal.controls[n] + alpha * solution.feedforward[n] + solution.gains[n] @ dx
        controls[n] = problem.project_control(u)
        states[n + 1] = problem.dynamics.propagate(states[n], controls[n], n)
        if not np.all(np.isfinite(states[n + 1])):
            return None

    return Trajectory(states=states, controls=controls, dt=nominal.dt, t0=nominal.t0)


class LineSearch:
    """
    Backtracking line search over the closed-loop rollout.

    Args:
        problem: Optimal control problem
        settings: Line search settings
        cost_fn: Trajectory cost evaluation (may run in parallel)
        on_phase: Called with ``"rollout"`` before and ``"evaluate"`` after
            each candidate rollout
    """

    def __init__(
        self,
        problem: OptConProblem,
        settings: LineSearchSettings,
        cost_fn: Callable[[Trajectory], float],
        on_phase: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.problem = problem
        self.settings = settings
        self.cost_fn = cost_fn
        self.on_phase = on_phase

    def _evaluate(self, nominal, solution, alpha):
        if self.on_phase is not None:
            self.on_phase("rollout")
        candidate = rollout(self.problem, nominal, solution, alpha)
        if self.on_phase is not None:
            self.on_phase("evaluate")
        if candidate is None:
            return None, np.inf
        cost = self.cost_fn(candidate)
        if not np.isfinite(cost):
            return candidate, np.inf
        return candidate, cost

    def search(
        self,
        nominal: Trajectory,
        nominal_cost: float,
        solution: LQSolution,
    ) -> LineSearchResult:
        """Find a step size with sufficient decrease."""
        s = self.settings
        alpha = s.alpha_initial

        if not s.active:
            candidate, cost = self._evaluate(nominal, solution, alpha)
            if not np.isfinite(cost):
                return LineSearchResult(accepted=False)
            return LineSearchResult(
                accepted=True,
                trajectory=candidate,
                cost=cost,
                alpha=alpha,
                expected_decrease=solution.expected_decrease(alpha),
            )

        best: Optional[LineSearchResult] = None
        for n_backtracks in range(s.max_backtracks + 1):
            candidate, cost = self._evaluate(nominal, solution, alpha)
            expected = solution.expected_decrease(alpha)

            if cost <= nominal_cost - s.armijo * max(expected, 0.0):
                return LineSearchResult(
                    accepted=True,
                    trajectory=candidate,
                    cost=cost,
                    alpha=alpha,
                    n_backtracks=n_backtracks,
                    expected_decrease=expected,
                )
            if cost <= nominal_cost and (best is None or cost < best.cost):
                best = LineSearchResult(
                    accepted=True,
                    trajectory=candidate,
                    cost=cost,
                    alpha=alpha,
                    n_backtracks=n_backtracks,
                    expected_decrease=expected,
                )

            logger.debug(
                "Rejected alpha=%.4g: cost %.6g vs nominal %.6g (expected decrease %.3g)",
                alpha, cost, nominal_cost, expected,
            )
            alpha *= s.backtracking_factor

        if s.accept_best_on_failure and best is not None:
            logger.debug("Armijo condition not met, accepting best candidate alpha=%.4g", best.alpha)
            return best

        return LineSearchResult(accepted=False, n_backtracks=s.max_backtracks)
