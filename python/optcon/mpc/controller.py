"""
MPC Wrapper
===========

Receding-horizon control around the NLOC backend.

Each call to ``MPC.run_cycle``:

1. shifts the previous trajectory/policy by the elapsed time (warm start),
2. updates the prediction horizon according to the time horizon strategy,
3. optionally propagates the measured state over the expected delay,
4. runs the NLOC backend with the per-cycle iteration and time budget,
5. maps the outcome to a quality status, falling back to the warm start
   when the solve failed, and
6. persists the new solution in the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from ..exceptions import InvalidInputError
from ..nloc.backend import NLOCBackend
from ..result import QualityStatus, SolveResult, TerminationReason
from ..systems.controllers import Controller
from ..systems.dynamics import DiscreteDynamics
from ..trajectory import FeedbackPolicy, Trajectory
from ..utils.validation import as_vector, require
from .policy_handler import PolicyHandler, StateFeedbackPolicyHandler
from .settings import MpcSettings
from .time_horizon import MpcTimeHorizon

logger = logging.getLogger(__name__)


@dataclass
class MPCCycleResult:
    """
    Output of one MPC cycle.

    Attributes:
        controller: Controller executing the new policy
        policy: Feedback policy handed to the plant
        trajectory: Predicted trajectory belonging to ``policy``
        quality: Quality of the emitted policy
        solve_result: Raw NLOC result of this cycle
        horizon_time: Prediction horizon used in this cycle
        final_time_reached: True once a fixed final time has been reached
    """
    controller: Controller
    policy: FeedbackPolicy
    trajectory: Trajectory
    quality: QualityStatus
    solve_result: SolveResult
    horizon_time: float
    final_time_reached: bool = False

    def control(self, state: np.ndarray) -> np.ndarray:
        """Control to apply now for ``state``."""
        return self.controller.compute_control_at_time(state, self.trajectory.t0)

    @property
    def is_fallback(self) -> bool:
        return self.quality == QualityStatus.FALLBACK

    def __repr__(self) -> str:
        return (
            f"MPCCycleResult(\n"
            f"  quality={self.quality},\n"
            f"  reason={self.solve_result.reason},\n"
            f"  cost={self.solve_result.cost:.4f},\n"
            f"  solve_time={self.solve_result.solve_time*1000:.2f}ms,\n"
            f"  horizon={self.policy.horizon}\n"
            f")"
        )


@dataclass
class MPCSession:
    """
    Mutable state carried between MPC cycles.

    Attributes:
        trajectory: Last emitted trajectory
        policy: Last emitted policy
        time_since_start: Time elapsed since the first cycle
        cycle: Number of completed cycles
        horizon_time: Horizon of the last cycle
        final_time_reached: True once a fixed final time has been reached
        qualities: Quality status of every completed cycle
    """
    trajectory: Optional[Trajectory] = None
    policy: Optional[FeedbackPolicy] = None
    time_since_start: float = 0.0
    cycle: int = 0
    horizon_time: float = 0.0
    final_time_reached: bool = False
    qualities: List[QualityStatus] = field(default_factory=list)

    @property
    def first_cycle(self) -> bool:
        return self.cycle == 0


class MPC:
    """
    Model predictive controller built on an ``NLOCBackend``.

    Args:
        backend: NLOC backend; its settings define the initial horizon and dt
        settings: MPC settings
        policy_handler: Converts solutions into controllers and warm starts

    Example:
        >>> backend = NLOCBackend(problem, NLOptConSettings(horizon=20, dt=0.1))
        >>> mpc = MPC(backend, MpcSettings(max_iterations_per_cycle=5))
        >>> cycle = mpc.run_cycle(x_measured, elapsed_time=0.0)
        >>> u = cycle.control(x_measured)
    """

    def __init__(
        self,
        backend: NLOCBackend,
        settings: Optional[MpcSettings] = None,
        policy_handler: Optional[PolicyHandler] = None,
    ) -> None:
        self.backend = require(backend, "backend")
        self.settings = settings if settings is not None else MpcSettings()
        self.policy_handler = policy_handler if policy_handler is not None else StateFeedbackPolicyHandler()
        self.nloc_settings = backend.settings
        self.time_horizon = MpcTimeHorizon(
            self.settings,
            initial_horizon_time=self.nloc_settings.time_horizon,
            dt=self.nloc_settings.dt,
        )
        self.session = MPCSession(horizon_time=self.nloc_settings.time_horizon)

    @property
    def dt(self) -> float:
        return self.nloc_settings.dt

    @property
    def first_cycle(self) -> bool:
        return self.session.first_cycle

    @property
    def final_time_reached(self) -> bool:
        return self.session.final_time_reached

    def reset(self) -> None:
        """Forget the previous solution and restart the time base."""
        self.session = MPCSession(horizon_time=self.nloc_settings.time_horizon)

    def run_cycle(self, measured_state: np.ndarray, elapsed_time: float = 0.0) -> MPCCycleResult:
        """
        Run one MPC cycle.

        Args:
            measured_state: Current plant state (n_x,)
            elapsed_time: Time since the previous cycle (ignored on the first cycle)

        Returns:
            MPCCycleResult

        Raises:
            DimensionError: state dimension does not match the problem
            InvalidInputError: negative elapsed time
        """
        if elapsed_time < 0:
            raise InvalidInputError(f"elapsed_time must be non-negative, got {elapsed_time}")

        s = self.settings
        session = self.session
        problem = self.backend.problem
        x = as_vector(measured_state, problem.n_states, "measured_state")

        if session.first_cycle:
            elapsed_time = 0.0
        session.time_since_start += elapsed_time

        horizon_time, reached = self.time_horizon.compute_new_time_horizon(session.time_since_start)
        N = self.time_horizon.to_steps(horizon_time)

        guess: Optional[Trajectory] = None
        warm_policy: Optional[FeedbackPolicy] = None
        if not session.first_cycle and s.warm_start and session.trajectory is not None:
            guess, warm_policy = self.policy_handler.warm_start(
                session.trajectory, session.policy, elapsed_time, N, s.interpolation
            )

        if s.delay_compensation and s.fixed_delay > 0 and warm_policy is not None:
            x, guess, warm_policy = self._compensate_delay(x, guess, warm_policy, N)

        # Cost reference is indexed from the session start
        start = guess.t0 if guess is not None else session.time_since_start
        time_offset = max(int(np.round(start / self.dt)), 0)

        time_limit = s.time_budget if s.time_budget is not None else self.nloc_settings.time_limit
        nloc_settings = self.nloc_settings.replace(
            horizon=N,
            max_iterations=s.max_iterations_per_cycle,
            time_limit=time_limit,
        )
        result = self.backend.solve(
            x,
            initial_guess=guess,
            settings=nloc_settings,
            warm_start_policy=warm_policy,
            time_offset=time_offset,
        )
        if guess is None:
            t0 = session.time_since_start
            result.trajectory.t0 = t0
            result.policy.t0 = t0

        quality = self._quality(result)
        if quality == QualityStatus.FALLBACK:
            trajectory, policy = self._fallback(x, guess, warm_policy, N)
            logger.warning(
                "MPC cycle %d: solve %s, falling back to warm start", session.cycle, result.reason
            )
        else:
            trajectory, policy = result.trajectory, result.policy
            if quality == QualityStatus.DEGRADED_CONDITIONING:
                logger.warning("MPC cycle %d: degraded conditioning", session.cycle)

        controller = self.policy_handler.to_controller(trajectory, policy)

        session.trajectory = trajectory
        session.policy = policy
        session.horizon_time = horizon_time
        session.final_time_reached = reached
        session.qualities.append(quality)
        session.cycle += 1

        logger.debug(
            "MPC cycle %d: t=%.4g horizon=%d quality=%s cost=%.6g",
            session.cycle, session.time_since_start, N, quality, result.cost,
        )

        return MPCCycleResult(
            controller=controller,
            policy=policy,
            trajectory=trajectory,
            quality=quality,
            solve_result=result,
            horizon_time=horizon_time,
            final_time_reached=reached,
        )

    @staticmethod
    def _quality(result: SolveResult) -> QualityStatus:
        if result.reason in (TerminationReason.DIVERGED, TerminationReason.LINE_SEARCH_FAILED):
            return QualityStatus.FALLBACK
        if result.reason == TerminationReason.ITERATION_LIMIT:
            return QualityStatus.NOT_CONVERGED
        if result.conditioning_degraded:
            return QualityStatus.DEGRADED_CONDITIONING
        return QualityStatus.NOMINAL

    def _fallback(
        self,
        x: np.ndarray,
        guess: Optional[Trajectory],
        warm_policy: Optional[FeedbackPolicy],
        N: int,
    ) -> Tuple[Trajectory, FeedbackPolicy]:
        """Warm-started solution, or zero control when there is none."""
        if guess is not None and warm_policy is not None:
            return guess, warm_policy
        problem = self.backend.problem
        trajectory = Trajectory.zeros(problem.n_states, problem.n_inputs, N, dt=self.dt, x0=x)
        trajectory.t0 = self.session.time_since_start
        return trajectory, FeedbackPolicy.from_trajectory(trajectory)

    def _compensate_delay(
        self,
        x: np.ndarray,
        guess: Trajectory,
        warm_policy: FeedbackPolicy,
        N: int,
    ) -> Tuple[np.ndarray, Trajectory, FeedbackPolicy]:
        """Predict the state at the time the new policy takes effect."""
        n_delay = int(np.round(self.settings.fixed_delay / self.dt))
        if n_delay == 0:
            return x, guess, warm_policy

        dynamics = self.backend.problem.dynamics
        for n in range(n_delay):
            u = self.backend.problem.project_control(warm_policy.control(x, n))
            x = dynamics.propagate(x, u, n)

        delay = n_delay * self.dt
        guess, warm_policy = self.policy_handler.warm_start(
            guess, warm_policy, delay, N, self.settings.interpolation
        )
        logger.debug("Compensated delay of %d steps", n_delay)
        return x, guess, warm_policy

    def simulate(
        self,
        plant: DiscreteDynamics,
        x0: np.ndarray,
        n_cycles: int,
        steps_per_cycle: int = 1,
        disturbance: Optional[Union[np.ndarray, Callable[[int], np.ndarray]]] = None,
    ) -> Tuple[np.ndarray, List[MPCCycleResult]]:
        """
        Closed-loop simulation of the plant under MPC.

        Args:
            plant: Plant dynamics (may differ from the prediction model)
            x0: Initial plant state
            n_cycles: Number of MPC cycles
            steps_per_cycle: Plant steps of length ``dt`` between cycles
            disturbance: Additive state disturbance after each cycle, either
                an array (n_cycles, n_x) or a callable of the cycle index

        Returns:
            (states, cycle_results) with states of shape (n_cycles+1, n_x)
        """
        if n_cycles < 1 or steps_per_cycle < 1:
            raise InvalidInputError("n_cycles and steps_per_cycle must be >= 1")

        x = as_vector(x0, plant.n_states, "x0")
        states = [x.copy()]
        results: List[MPCCycleResult] = []
        step = 0

        for cycle in range(n_cycles):
            elapsed = 0.0 if cycle == 0 else steps_per_cycle * self.dt
            result = self.run_cycle(x, elapsed_time=elapsed)
            results.append(result)

            t_now = self.session.time_since_start
            for j in range(steps_per_cycle):
                u = result.controller.compute_control_at_time(x, t_now + j * self.dt)
                x = plant.propagate(x, u, step)
                step += 1

            if disturbance is not None:
                w = disturbance(cycle) if callable(disturbance) else disturbance[cycle]
                x = x + np.asarray(w, dtype=np.float64)
            states.append(x.copy())

        return np.array(states), results
