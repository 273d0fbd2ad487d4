"""
LQ Sub-Problem
==============

Time-varying linear-quadratic problem in deviation coordinates around a
nominal trajectory:

    minimize    sum_n [ q_n + qx_n' dx_n + qu_n' du_n
                        + 1/2 dx_n' Qxx_n dx_n + 1/2 du_n' Quu_n du_n
                        + du_n' Qux_n dx_n ]
              + q_N + qx_N' dx_N + 1/2 dx_N' Qxx_N dx_N
    subject to  dx_{n+1} = A_n dx_n + B_n du_n + b_n,   dx_0 = 0
                lb_n <= du_n <= ub_n,  E_n du_n <= e_n
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ..exceptions import DimensionError


@dataclass
class LinearDynamicsSegment:
    """dx_{n+1} = A dx_n + B du_n + b."""
    A: np.ndarray
    B: np.ndarray
    b: np.ndarray


@dataclass
class QuadraticCostSegment:
    """Second-order cost model of one step (u-terms empty for the terminal step)."""
    q: float
    qx: np.ndarray
    qu: np.ndarray
    Qxx: np.ndarray
    Quu: np.ndarray
    Qux: np.ndarray


@dataclass
class ControlConstraintSegment:
    """Deviation bounds lower <= du <= upper and polytope E du <= e."""
    lower: Optional[np.ndarray] = None
    upper: Optional[np.ndarray] = None
    E: Optional[np.ndarray] = None
    e: Optional[np.ndarray] = None

    @property
    def is_active(self) -> bool:
        has_bounds = self.lower is not None and (
            np.any(np.isfinite(self.lower)) or np.any(np.isfinite(self.upper))
        )
        return bool(has_bounds or self.E is not None)


@dataclass
class LQProblem:
    """
    LQ problem over a horizon of N steps.

    Attributes:
        dynamics: N linear dynamics segments
        costs: N stage cost segments
        terminal: Terminal cost segment
        constraints: N constraint segments, or empty when unconstrained
    """
    dynamics: List[LinearDynamicsSegment]
    costs: List[QuadraticCostSegment]
    terminal: QuadraticCostSegment
    constraints: List[ControlConstraintSegment] = field(default_factory=list)

    def __post_init__(self):
        if len(self.dynamics) != len(self.costs):
            raise DimensionError(
                f"{len(self.dynamics)} dynamics segments but {len(self.costs)} cost segments"
            )
        if self.constraints and len(self.constraints) != len(self.dynamics):
            raise DimensionError(
                f"{len(self.constraints)} constraint segments, expected {len(self.dynamics)}"
            )
        if len(self.dynamics) < 1:
            raise DimensionError("LQ problem needs at least one step")

    @property
    def horizon(self) -> int:
        return len(self.dynamics)

    @property
    def n_states(self) -> int:
        return self.dynamics[0].A.shape[0]

    @property
    def n_inputs(self) -> int:
        return self.dynamics[0].B.shape[1]

    @property
    def is_constrained(self) -> bool:
        return any(c.is_active for c in self.constraints)

    def constraint(self, n: int) -> Optional[ControlConstraintSegment]:
        if not self.constraints:
            return None
        return self.constraints[n]

    def cost_of(self, dx: np.ndarray, du: np.ndarray) -> float:
        """Evaluate the LQ cost of deviations dx (N+1, n_x), du (N, n_u)."""
        total = 0.0
        for n, c in enumerate(self.costs):
            total += (
                c.q + c.qx @ dx[n] + c.qu @ du[n]
                + 0.5 * dx[n] @ c.Qxx @ dx[n]
                + 0.5 * du[n] @ c.Quu @ du[n]
                + du[n] @ c.Qux @ dx[n]
            )
        t = self.terminal
        total += t.q + t.qx @ dx[-1] + 0.5 * dx[-1] @ t.Qxx @ dx[-1]
        return float(total)

    def simulate(self, du: np.ndarray) -> np.ndarray:
        """Deviation states dx (N+1, n_x) produced by ``du`` from dx_0 = 0."""
        dx = np.zeros((self.horizon + 1, self.n_states))
        for n, d in enumerate(self.dynamics):
            dx[n + 1] = d.A @ dx[n] + d.B @ du[n] + d.b
        return dx
