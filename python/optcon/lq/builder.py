"""
LQ Sub-Problem Builder
======================

Linearizes the dynamics and quadraticizes cost and constraints around a
nominal trajectory, producing an ``LQProblem`` for the whole horizon.

Per-step work is independent across time indices. When an executor is
passed, the horizon is split into contiguous chunks of time indices that
are built by worker threads; every worker writes only its own slots of the
output lists.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from typing import List, Optional, Tuple

import numpy as np

from ..exceptions import DimensionError, EvaluationError
from ..problem import OptConProblem
from ..systems.sensitivity import Sensitivity
from ..trajectory import Trajectory
from ..utils.validation import all_finite
from .problem import (
    ControlConstraintSegment,
    LinearDynamicsSegment,
    LQProblem,
    QuadraticCostSegment,
)

logger = logging.getLogger(__name__)


def partition(horizon: int, n_chunks: int) -> List[Tuple[int, int]]:
    """
    Split ``range(horizon)`` into at most ``n_chunks`` contiguous
    ``(start, stop)`` ranges of near-equal size.
    """
    n_chunks = max(1, min(n_chunks, horizon))
    bounds = np.linspace(0, horizon, n_chunks + 1).round().astype(int)
    return [(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]


class LQProblemBuilder:
    """
    Builds LQ sub-problems for an ``OptConProblem``.

    Args:
        problem: Optimal control problem (dynamics, cost, constraints)
        sensitivity: Linearization provider, defaults to ``problem.sensitivity``
        n_workers: Number of chunks used when an executor is given

    Example:
        >>> builder = LQProblemBuilder(problem)
        >>> lq = builder.build(nominal_trajectory)
    """

    def __init__(
        self,
        problem: OptConProblem,
        sensitivity: Optional[Sensitivity] = None,
        n_workers: int = 1,
    ) -> None:
        self.problem = problem
        self.sensitivity = sensitivity if sensitivity is not None else problem.sensitivity
        self.n_workers = max(1, n_workers)

    def build(
        self,
        trajectory: Trajectory,
        executor: Optional[Executor] = None,
    ) -> LQProblem:
        """
        Build the LQ problem around ``trajectory``.

        Args:
            trajectory: Nominal trajectory
            executor: Optional executor for parallel per-step evaluation

        Returns:
            LQProblem with ``trajectory.horizon`` steps

        Raises:
            DimensionError: trajectory dimensions do not match the problem
            EvaluationError: a collaborator returned non-finite output
        """
        if trajectory.n_states != self.problem.n_states or trajectory.n_inputs != self.problem.n_inputs:
            raise DimensionError(
                f"trajectory is ({trajectory.n_states}, {trajectory.n_inputs}), "
                f"problem is ({self.problem.n_states}, {self.problem.n_inputs})"
            )

        N = trajectory.horizon
        dynamics: List[Optional[LinearDynamicsSegment]] = [None] * N
        costs: List[Optional[QuadraticCostSegment]] = [None] * N
        constraints: List[Optional[ControlConstraintSegment]] = [None] * N

        chunks = partition(N, self.n_workers)
        logger.debug("Building LQ problem: N=%d, chunks=%d", N, len(chunks) if executor else 1)
        if executor is None or len(chunks) == 1:
            self._build_range(trajectory, 0, N, dynamics, costs, constraints)
        else:
            futures = [
                executor.submit(self._build_range, trajectory, start, stop, dynamics, costs, constraints)
                for start, stop in chunks
            ]
            # Barrier; re-raises the first worker exception
            for future in futures:
                future.result()

        terminal = self._build_terminal(trajectory)
        has_constraints = self.problem.control_constraints is not None

        return LQProblem(
            dynamics=dynamics,
            costs=costs,
            terminal=terminal,
            constraints=constraints if has_constraints else [],
        )

    def _build_range(self, trajectory, start, stop, dynamics, costs, constraints) -> None:
        for n in range(start, stop):
            dynamics[n], costs[n], constraints[n] = self.build_step(trajectory, n)

    def build_step(
        self,
        trajectory: Trajectory,
        n: int,
    ) -> Tuple[LinearDynamicsSegment, QuadraticCostSegment, Optional[ControlConstraintSegment]]:
        """Linear dynamics, quadratic cost and constraint data of step ``n``."""
        problem = self.problem
        x = trajectory.states[n]
        u = trajectory.controls[n]

        A, B = self.sensitivity.linearize(x, u, n)
        A = np.asarray(A, dtype=np.float64)
        B = np.asarray(B, dtype=np.float64)
        if A.shape != (problem.n_states, problem.n_states) or B.shape != (problem.n_states, problem.n_inputs):
            raise DimensionError(f"Jacobians have shapes {A.shape}, {B.shape} at step {n}")
        defect = problem.dynamics.propagate(x, u, n) - trajectory.states[n + 1]
        if not all_finite(A, B, defect):
            raise EvaluationError("Non-finite dynamics linearization", time_index=n)

        k = n + problem.time_offset
        stage = problem.cost.stage(x, u, k).scaled(problem.cost.stage_scale(trajectory.dt))
        if not stage.is_finite():
            raise EvaluationError("Non-finite cost evaluation", time_index=n)
        q, qx, qu = stage.value, stage.gradient_x, stage.gradient_u
        Qxx, Quu, Qux = stage.hessian_xx, stage.hessian_uu, stage.hessian_ux
        for constraint in problem.penalty_constraints:
            pen = constraint.penalty(x, u, k)
            if not pen.is_finite():
                raise EvaluationError("Non-finite constraint penalty", time_index=n)
            q = q + pen.value
            qx = qx + pen.gradient_x
            qu = qu + pen.gradient_u
            Qxx = Qxx + pen.hessian_xx
            Quu = Quu + pen.hessian_uu
            Qux = Qux + pen.hessian_ux

        cost = QuadraticCostSegment(
            q=float(q),
            qx=np.asarray(qx, dtype=np.float64),
            qu=np.asarray(qu, dtype=np.float64),
            Qxx=np.asarray(Qxx, dtype=np.float64),
            Quu=np.asarray(Quu, dtype=np.float64),
            Qux=np.asarray(Qux, dtype=np.float64),
        )

        constraint_segment = None
        cc = problem.control_constraints
        if cc is not None:
            lower, upper = cc.deviation_bounds(u)
            E, e = cc.deviation_polytope(u)
            constraint_segment = ControlConstraintSegment(lower=lower, upper=upper, E=E, e=e)

        return LinearDynamicsSegment(A=A, B=B, b=defect), cost, constraint_segment

    def _build_terminal(self, trajectory: Trajectory) -> QuadraticCostSegment:
        term = self.problem.terminal(trajectory.states[-1], trajectory.horizon)
        if not term.is_finite():
            raise EvaluationError("Non-finite terminal cost", time_index=trajectory.horizon)
        n_x = self.problem.n_states
        return QuadraticCostSegment(
            q=float(term.value),
            qx=np.asarray(term.gradient_x, dtype=np.float64),
            qu=np.zeros(0),
            Qxx=np.asarray(term.hessian_xx, dtype=np.float64),
            Quu=np.zeros((0, 0)),
            Qux=np.zeros((0, n_x)),
        )
