"""
optcon Result Classes
=====================

Status codes and result containers returned by the NLOC backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np

if TYPE_CHECKING:
    from .trajectory import FeedbackPolicy, Trajectory


class TerminationReason(Enum):
    """
    Why a call to ``NLOCBackend.solve`` stopped.

    Attributes:
        CONVERGED: Cost or update tolerances reached
        ITERATION_LIMIT: Iteration or wall-clock budget exhausted
        DIVERGED: A collaborator returned non-finite output
        LINE_SEARCH_FAILED: No step with sufficient decrease was found
    """
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit"
    DIVERGED = "diverged"
    LINE_SEARCH_FAILED = "line_search_failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        """True if the solver converged."""
        return self == TerminationReason.CONVERGED

    @property
    def has_solution(self) -> bool:
        """True if the returned trajectory is at least as good as the guess."""
        return self in (
            TerminationReason.CONVERGED,
            TerminationReason.ITERATION_LIMIT,
        )


class SolverState(Enum):
    """States of the NLOC outer iteration."""
    INITIALIZED = "initialized"
    LINEARIZING = "linearizing"
    SOLVING_LQ = "solving_lq"
    ROLLING_OUT = "rolling_out"
    LINE_SEARCHING = "line_searching"
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit"
    DIVERGED = "diverged"

    def __str__(self) -> str:
        return self.value


class LQStatus(Enum):
    """
    Status of one LQ sub-problem solve.

    Attributes:
        OK: Control Hessians were (made) positive definite within threshold
        DEGRADED: Regularization beyond the configured threshold was needed
    """
    OK = "ok"
    DEGRADED = "degraded"

    def __str__(self) -> str:
        return self.value


class QualityStatus(Enum):
    """
    Quality of the policy emitted by one MPC cycle.

    Attributes:
        NOMINAL: Converged solution
        NOT_CONVERGED: Best-so-far solution after the cycle budget ran out
        DEGRADED_CONDITIONING: Solution computed with heavy regularization
        FALLBACK: Solve failed, the warm-started policy is returned
    """
    NOMINAL = "nominal"
    NOT_CONVERGED = "not_converged"
    DEGRADED_CONDITIONING = "degraded_conditioning"
    FALLBACK = "fallback"

    def __str__(self) -> str:
        return self.value

    @property
    def is_degraded(self) -> bool:
        return self != QualityStatus.NOMINAL


@dataclass
class IterationInfo:
    """Diagnostics of one accepted or rejected outer iteration."""
    iteration: int
    cost: float
    alpha: float
    n_backtracks: int
    update_norm: float
    expected_decrease: float
    lq_status: LQStatus
    accepted: bool


@dataclass
class SolveResult:
    """
    Result of ``NLOCBackend.solve``.

    Attributes:
        trajectory: Final (best) state/control trajectory
        policy: Time-varying feedback policy around ``trajectory``
        reason: Termination reason
        cost: True rollout cost of ``trajectory``
        iterations: Number of outer iterations performed
        solve_time: Wall clock time in seconds
        cost_history: Cost of the nominal trajectory after every accepted step,
            starting with the initial rollout
        conditioning_degraded: True if any LQ solve needed heavy regularization
        aborted: True if the solve stopped on an abort request or time limit

    Example:
        >>> result = backend.solve(x0)
        >>> if result.reason == TerminationReason.CONVERGED:
        ...     print(result.cost)
    """

    trajectory: "Trajectory"
    policy: "FeedbackPolicy"
    reason: TerminationReason
    cost: float
    iterations: int
    solve_time: float = 0.0

    cost_history: List[float] = field(default_factory=list)
    iteration_info: List[IterationInfo] = field(default_factory=list)
    conditioning_degraded: bool = False
    aborted: bool = False
    message: str = ""
    problem_info: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"SolveResult(reason={self.reason}, "
            f"cost={self.cost:.6g}, "
            f"iterations={self.iterations}, "
            f"time={self.solve_time:.4f}s)"
        )

    @property
    def horizon(self) -> int:
        """Number of control steps in the solution."""
        return self.trajectory.horizon

    @property
    def initial_cost(self) -> float:
        """Cost of the initial rollout."""
        if self.cost_history:
            return self.cost_history[0]
        return float("nan")

    def summary(self) -> str:
        """Return a formatted summary of the solve result."""
        improvement = self.initial_cost - self.cost
        lines = [
            "=" * 50,
            "optcon NLOC Solve Summary",
            "=" * 50,
            f"Termination:      {self.reason}",
            f"Cost:             {self.cost:.10g}",
            f"Initial cost:     {self.initial_cost:.10g}",
            f"Improvement:      {improvement:.6e}",
            f"Iterations:       {self.iterations}",
            f"Solve time:       {self.solve_time:.4f} s",
            "-" * 50,
            f"Horizon:          {self.horizon}",
            f"Conditioning:     {'degraded' if self.conditioning_degraded else 'ok'}",
            f"Aborted:          {self.aborted}",
            "=" * 50,
        ]
        return "\n".join(lines)

    @property
    def final_state(self) -> np.ndarray:
        """Last state of the optimized trajectory."""
        return self.trajectory.states[-1]
