"""
NLOC Backend
============

Nonlinear optimal control solver iterating

    linearize -> solve LQ (Riccati) -> closed-loop rollout -> line search

until convergence, the iteration budget, or a failure.

Execution modes
---------------
With ``settings.n_threads == 1`` everything runs in the calling thread.
With ``n_threads > 1`` a ``ThreadPoolExecutor`` evaluates the per-step work
of the LQ builder and the rollout cost in contiguous time-index chunks. Each
phase joins all workers before the next one starts, the backward pass and the
rollout itself stay sequential, and partial sums are combined in time order,
so both modes return identical results.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, List, Optional

import numpy as np

from ..exceptions import DimensionError, EvaluationError, InvalidInputError
from ..lq import LQProblemBuilder, LQSolution, LQSolver, make_lq_solver, partition
from ..problem import OptConProblem
from ..result import (
    IterationInfo,
    LQStatus,
    SolveResult,
    SolverState,
    TerminationReason,
)
from ..trajectory import FeedbackPolicy, Trajectory
from ..utils.validation import all_finite, as_vector, require
from .line_search import LineSearch
from .settings import NLOptConSettings

logger = logging.getLogger(__name__)


class NLOCBackend:
    """
    Nonlinear optimal control backend.

    Args:
        problem: Optimal control problem
        settings: Solver settings (default: ``NLOptConSettings()``)
        lq_solver: LQ solver instance; created from ``settings.lq_solver``
            when omitted

    Example:
        >>> problem = OptConProblem(point_mass_1d(dt=0.1), cost)
        >>> backend = NLOCBackend(problem, NLOptConSettings(horizon=20, dt=0.1))
        >>> result = backend.solve(np.array([0.0]))
        >>> result.reason
        <TerminationReason.CONVERGED: 'converged'>
    """

    def __init__(
        self,
        problem: OptConProblem,
        settings: Optional[NLOptConSettings] = None,
        lq_solver: Optional[LQSolver] = None,
    ) -> None:
        self.problem = require(problem, "problem")
        self.settings = settings if settings is not None else NLOptConSettings()
        self.lq_solver = lq_solver
        self.iteration_callback: Optional[Callable[[IterationInfo, Trajectory], None]] = None
        self.state = SolverState.INITIALIZED
        self._abort = threading.Event()

    def __repr__(self) -> str:
        return (
            f"NLOCBackend(n_states={self.problem.n_states}, "
            f"n_inputs={self.problem.n_inputs}, "
            f"horizon={self.settings.horizon}, "
            f"n_threads={self.settings.n_threads})"
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def request_abort(self) -> None:
        """Ask a running ``solve`` to stop after the current iteration."""
        self._abort.set()

    @property
    def abort_requested(self) -> bool:
        return self._abort.is_set()

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(
        self,
        initial_state: np.ndarray,
        initial_guess: Optional[Trajectory] = None,
        settings: Optional[NLOptConSettings] = None,
        warm_start_policy: Optional[FeedbackPolicy] = None,
        time_offset: int = 0,
    ) -> SolveResult:
        """
        Solve the optimal control problem from ``initial_state``.

        Args:
            initial_state: Fixed initial state (n_x,)
            initial_guess: Initial trajectory; its controls are rolled out
                from ``initial_state`` (zero controls when omitted)
            settings: Settings for this call (default: ``self.settings``)
            warm_start_policy: Feedback policy used for the initial rollout
                instead of the guess controls
            time_offset: Steps the horizon start lies past time index zero
                of the cost reference

        Returns:
            SolveResult with exactly ``settings.horizon`` entries

        Raises:
            DimensionError: state, guess or policy dimensions do not match
            InvalidInputError: negative or fractional ``time_offset``
        """
        settings = settings if settings is not None else self.settings
        problem = self.problem.shifted(time_offset)
        x0 = as_vector(initial_state, problem.n_states, "initial_state")
        self._check_inputs(initial_guess, warm_start_policy, settings)

        lq_solver = self.lq_solver
        if lq_solver is None:
            lq_solver = make_lq_solver(settings.lq_solver, settings.regularization)

        self._abort.clear()
        self.state = SolverState.INITIALIZED
        start_time = time.perf_counter()

        args = (problem, x0, initial_guess, warm_start_policy, settings, lq_solver)
        if settings.is_multi_threaded:
            with ThreadPoolExecutor(max_workers=settings.n_threads, thread_name_prefix="nloc") as executor:
                result = self._run(*args, executor, start_time)
        else:
            result = self._run(*args, None, start_time)

        result.solve_time = time.perf_counter() - start_time
        result.problem_info = {
            "n_states": problem.n_states,
            "n_inputs": problem.n_inputs,
            "horizon": settings.horizon,
            "time_offset": problem.time_offset,
            "n_threads": settings.n_threads,
            "lq_solver": getattr(lq_solver, "name", type(lq_solver).__name__),
        }

        level = logging.INFO if settings.verbose else logging.DEBUG
        logger.log(level, "NLOC finished: %r", result)
        return result

    def _check_inputs(self, guess, policy, settings) -> None:
        n_x, n_u, N = self.problem.n_states, self.problem.n_inputs, settings.horizon
        if guess is not None:
            if guess.horizon != N:
                raise DimensionError(f"initial guess has {guess.horizon} steps, horizon is {N}")
            if guess.n_states != n_x or guess.n_inputs != n_u:
                raise DimensionError(
                    f"initial guess is ({guess.n_states}, {guess.n_inputs}), problem is ({n_x}, {n_u})"
                )
            if not np.isclose(guess.dt, settings.dt):
                raise InvalidInputError(f"initial guess dt={guess.dt} differs from settings dt={settings.dt}")
        if policy is not None:
            if policy.horizon != N:
                raise DimensionError(f"warm start policy has {policy.horizon} steps, horizon is {N}")
            if policy.n_states != n_x or policy.n_inputs != n_u:
                raise DimensionError(
                    f"warm start policy is ({policy.n_states}, {policy.n_inputs}), problem is ({n_x}, {n_u})"
                )

    def _initialize(self, x0, guess, policy, settings) -> Trajectory:
        """Roll the initial guess out from the fixed initial state."""
        N, n_x, n_u = settings.horizon, self.problem.n_states, self.problem.n_inputs
        controls = guess.controls.copy() if guess is not None else np.zeros((N, n_u))
        t0 = guess.t0 if guess is not None else (policy.t0 if policy is not None else 0.0)

        states = np.zeros((N + 1, n_x))
        states[0] = x0
        for n in range(N):
            u = policy.control(states[n], n) if policy is not None else controls[n]
            controls[n] = self.problem.project_control(u)
            states[n + 1] = self.problem.dynamics.propagate(states[n], controls[n], n)

        return Trajectory(states=states, controls=controls, dt=settings.dt, t0=t0)

    def _cost(
        self,
        problem: OptConProblem,
        trajectory: Trajectory,
        executor: Optional[Executor],
        n_chunks: int,
    ) -> float:
        """True trajectory cost; stage values are summed in time order."""
        N = trajectory.horizon
        values = np.zeros(N)

        def evaluate(start, stop):
            for n in range(start, stop):
                values[n] = problem.stage_value(
                    trajectory.states[n], trajectory.controls[n], n, trajectory.dt
                )

        chunks = partition(N, n_chunks)
        if executor is None or len(chunks) == 1:
            evaluate(0, N)
        else:
            for future in [executor.submit(evaluate, a, b) for a, b in chunks]:
                future.result()

        return float(np.sum(values) + problem.terminal_value(trajectory.states[-1], N))

    @staticmethod
    def _policy(nominal: Trajectory, solution: Optional[LQSolution]) -> FeedbackPolicy:
        return FeedbackPolicy.from_trajectory(
            nominal,
            gains=solution.gains if solution is not None else None,
        )

    def _run(
        self,
        problem: OptConProblem,
        x0: np.ndarray,
        guess: Optional[Trajectory],
        warm_policy: Optional[FeedbackPolicy],
        settings: NLOptConSettings,
        lq_solver: LQSolver,
        executor: Optional[Executor],
        start_time: float,
    ) -> SolveResult:
        level = logging.INFO if settings.verbose else logging.DEBUG
        builder = LQProblemBuilder(problem, n_workers=settings.n_threads)

        def cost_fn(trajectory):
            return self._cost(problem, trajectory, executor, settings.n_threads)

        phases = {"rollout": SolverState.ROLLING_OUT, "evaluate": SolverState.LINE_SEARCHING}

        def on_phase(phase):
            self.state = phases[phase]

        line_search = LineSearch(problem, settings.line_search, cost_fn, on_phase)

        nominal = self._initialize(x0, guess, warm_policy, settings)
        cost = cost_fn(nominal) if all_finite(nominal.states) else float("nan")
        policy = self._policy(nominal, None)

        if not np.isfinite(cost):
            self.state = SolverState.DIVERGED
            logger.warning("Initial rollout is not finite")
            return SolveResult(
                trajectory=nominal,
                policy=policy,
                reason=TerminationReason.DIVERGED,
                cost=cost,
                iterations=0,
                cost_history=[cost],
                message="non-finite initial rollout",
            )

        cost_history: List[float] = [cost]
        infos: List[IterationInfo] = []
        degraded = False
        aborted = False
        message = ""
        reason = TerminationReason.ITERATION_LIMIT
        iteration = 0

        logger.log(level, "NLOC start: horizon=%d, initial cost=%.6g", settings.horizon, cost)

        while iteration < settings.max_iterations:
            iteration += 1

            self.state = SolverState.LINEARIZING
            try:
                lq = builder.build(nominal, executor)
            except EvaluationError as e:
                reason, message = TerminationReason.DIVERGED, e.message
                logger.warning("Iteration %d diverged: %s", iteration, e.message)
                break

            self.state = SolverState.SOLVING_LQ
            solution = lq_solver.solve_lq(lq)
            if not all_finite(solution.gains, solution.feedforward):
                reason, message = TerminationReason.DIVERGED, "non-finite LQ solution"
                logger.warning("Iteration %d diverged: %s", iteration, message)
                break
            if solution.status == LQStatus.DEGRADED:
                degraded = True

            expected = solution.expected_decrease(1.0)
            tol = max(settings.min_cost_improvement, settings.min_relative_cost_improvement * abs(cost))
            if expected <= tol:
                policy = self._policy(nominal, solution)
                reason, message = TerminationReason.CONVERGED, "expected decrease below tolerance"
                logger.log(level, "Iteration %d: expected decrease %.3g below tolerance", iteration, expected)
                break

            ls = line_search.search(nominal, cost, solution)

            update_norm = (
                float(np.max(np.abs(ls.trajectory.controls - nominal.controls)))
                if ls.accepted else 0.0
            )
            info = IterationInfo(
                iteration=iteration,
                cost=ls.cost if ls.accepted else cost,
                alpha=ls.alpha,
                n_backtracks=ls.n_backtracks,
                update_norm=update_norm,
                expected_decrease=ls.expected_decrease,
                lq_status=solution.status,
                accepted=ls.accepted,
            )
            infos.append(info)

            if not ls.accepted:
                reason, message = TerminationReason.LINE_SEARCH_FAILED, "no step with sufficient decrease"
                logger.warning("Iteration %d: line search failed at cost %.6g", iteration, cost)
                break

            improvement = cost - ls.cost
            previous_cost = cost
            nominal, cost = ls.trajectory, ls.cost
            cost_history.append(cost)
            policy = self._policy(nominal, solution)

            logger.log(
                level,
                "Iteration %d: cost=%.6g alpha=%.3g backtracks=%d update=%.3g",
                iteration, cost, ls.alpha, ls.n_backtracks, update_norm,
            )
            if self.iteration_callback is not None:
                self.iteration_callback(info, nominal)

            if (
                improvement < settings.min_cost_improvement
                or improvement < settings.min_relative_cost_improvement * abs(previous_cost)
                or update_norm < settings.min_update_norm
            ):
                reason, message = TerminationReason.CONVERGED, "cost improvement below tolerance"
                break

            elapsed = time.perf_counter() - start_time
            if self._abort.is_set() or (settings.time_limit is not None and elapsed >= settings.time_limit):
                aborted = True
                reason = TerminationReason.ITERATION_LIMIT
                message = "abort requested" if self._abort.is_set() else "time limit reached"
                logger.log(level, "NLOC stopped after %d iterations: %s", iteration, message)
                break
        else:
            message = "iteration limit reached"

        self.state = {
            TerminationReason.CONVERGED: SolverState.CONVERGED,
            TerminationReason.ITERATION_LIMIT: SolverState.ITERATION_LIMIT,
        }.get(reason, SolverState.DIVERGED)

        if degraded:
            logger.warning("Solve used degraded conditioning")

        return SolveResult(
            trajectory=nominal,
            policy=policy,
            reason=reason,
            cost=cost,
            iterations=iteration,
            cost_history=cost_history,
            iteration_info=infos,
            conditioning_degraded=degraded,
            aborted=aborted,
            message=message,
        )
