"""
Optimal Control Problem
=======================

Bundles the collaborators of one nonlinear optimal control problem:

    minimize    sum_{n=0}^{N-1} l(x_n, u_n, n + s) + l_f(x_N, N + s)
    subject to  x_{n+1} = f(x_n, u_n, n),  x_0 fixed
                u_n in U (box / polytope)
                g(x_n, u_n, n + s) <= 0 (penalized)

where s is the time offset of the horizon into the cost reference (zero
for an offline solve, the elapsed step count in MPC).
"""

from __future__ import annotations

import copy
from typing import Optional, Sequence

import numpy as np

from .costs.constraints import ControlConstraints, StatePenaltyConstraint
from .costs.cost import CostEvaluation, CostFunction
from .exceptions import DimensionError, InvalidInputError
from .systems.dynamics import DiscreteDynamics
from .systems.sensitivity import Sensitivity, make_sensitivity
from .utils.validation import require


class OptConProblem:
    """
    Nonlinear optimal control problem definition.

    Args:
        dynamics: Discrete dynamics
        cost: Cost function
        control_constraints: Optional control constraints
        penalty_constraints: Nonlinear state-input constraints
        sensitivity: Linearization provider (default: ``make_sensitivity``)
        time_offset: Steps added to the horizon index when evaluating
            the cost and penalties

    Example:
        >>> problem = OptConProblem(point_mass_1d(dt=0.1), QuadraticCost(Q, R, Qf, x_ref=[1.0]))
    """

    def __init__(
        self,
        dynamics: DiscreteDynamics,
        cost: CostFunction,
        control_constraints: Optional[ControlConstraints] = None,
        penalty_constraints: Sequence[StatePenaltyConstraint] = (),
        sensitivity: Optional[Sensitivity] = None,
        time_offset: int = 0,
    ) -> None:
        self.dynamics = require(dynamics, "dynamics")
        self.cost = require(cost, "cost")
        self.control_constraints = control_constraints
        self.penalty_constraints = list(penalty_constraints)
        self.sensitivity = sensitivity if sensitivity is not None else make_sensitivity(dynamics)
        self.time_offset = _check_offset(time_offset)

        if control_constraints is not None and control_constraints.n_inputs != dynamics.n_inputs:
            raise DimensionError(
                f"control constraints have {control_constraints.n_inputs} inputs, "
                f"dynamics has {dynamics.n_inputs}"
            )
        cost_inputs = getattr(cost, "n_inputs", None)
        if cost_inputs is not None and cost_inputs != dynamics.n_inputs:
            raise DimensionError(f"cost has {cost_inputs} inputs, dynamics has {dynamics.n_inputs}")
        cost_states = getattr(cost, "n_states", None)
        if cost_states is not None and cost_states != dynamics.n_states:
            raise DimensionError(f"cost has {cost_states} states, dynamics has {dynamics.n_states}")

    @property
    def n_states(self) -> int:
        return self.dynamics.n_states

    @property
    def n_inputs(self) -> int:
        return self.dynamics.n_inputs

    def shifted(self, time_offset: int) -> "OptConProblem":
        """Copy of the problem whose cost is evaluated ``time_offset`` steps later."""
        offset = _check_offset(time_offset)
        if offset == self.time_offset:
            return self
        problem = copy.copy(self)
        problem.time_offset = offset
        return problem

    def project_control(self, u: np.ndarray) -> np.ndarray:
        if self.control_constraints is None:
            return u
        return self.control_constraints.project(u)

    def stage_value(self, state: np.ndarray, control: np.ndarray, n: int, dt: float) -> float:
        """Discretized stage cost including penalties."""
        k = n + self.time_offset
        value = self.cost.stage_scale(dt) * self.cost.stage_value(state, control, k)
        for constraint in self.penalty_constraints:
            value += constraint.penalty_value(state, control, k)
        return value

    def terminal(self, state: np.ndarray, horizon: int) -> CostEvaluation:
        return self.cost.terminal(state, horizon + self.time_offset)

    def terminal_value(self, state: np.ndarray, horizon: int) -> float:
        return self.cost.terminal_value(state, horizon + self.time_offset)

    def total_cost(self, trajectory) -> float:
        """True cost of a trajectory (stage + penalties + terminal)."""
        values = [
            self.stage_value(trajectory.states[n], trajectory.controls[n], n, trajectory.dt)
            for n in range(trajectory.horizon)
        ]
        return float(np.sum(values) + self.terminal_value(trajectory.states[-1], trajectory.horizon))


def _check_offset(time_offset) -> int:
    if int(time_offset) != time_offset or time_offset < 0:
        raise InvalidInputError(f"time_offset must be a non-negative integer, got {time_offset}")
    return int(time_offset)
