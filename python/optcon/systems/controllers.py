"""
Controllers
===========

Controllers map (state, time) to a control. They close the loop between a
solved feedback policy and the dynamics it is executed on.

Classes:
- Controller: interface
- ConstantController: fixed control
- FeedforwardController: time-indexed open-loop controls
- StateFeedbackController: time-varying affine state feedback
- ControlledSystem: dynamics plus an (optional) controller
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ..trajectory import FeedbackPolicy, interpolate_samples
from .dynamics import DiscreteDynamics


class Controller(ABC):
    """Maps a state and a time index (or time) to a control."""

    #: Sampling time used to convert continuous time into time indices
    dt: float = 1.0
    #: Time of index 0
    t0: float = 0.0

    @property
    @abstractmethod
    def n_inputs(self) -> int:
        """Number of inputs."""

    @abstractmethod
    def compute_control(self, state: np.ndarray, n: int) -> np.ndarray:
        """Control at time index ``n``."""

    def compute_control_at_time(self, state: np.ndarray, t: float) -> np.ndarray:
        """Control at absolute time ``t`` (zero-order hold by default)."""
        n = int(np.floor(round((t - self.t0) / self.dt, 9)))
        return self.compute_control(state, max(n, 0))


class ConstantController(Controller):
    """Always returns the same control."""

    def __init__(self, control: np.ndarray) -> None:
        self.control = np.atleast_1d(np.asarray(control, dtype=np.float64))

    @property
    def n_inputs(self) -> int:
        return len(self.control)

    def compute_control(self, state, n):
        return self.control.copy()

    def compute_control_at_time(self, state, t):
        return self.control.copy()


class FeedforwardController(Controller):
    """
    Open-loop controller replaying a control sequence.

    Args:
        controls: Control sequence (N, n_u); indices past the end hold the last entry
        dt: Sampling time
        t0: Time of the first entry
        interpolation: 'zoh' or 'linear' for ``compute_control_at_time``
    """

    def __init__(
        self,
        controls: np.ndarray,
        dt: float = 1.0,
        t0: float = 0.0,
        interpolation: str = "zoh",
    ) -> None:
        controls = np.asarray(controls, dtype=np.float64)
        if controls.ndim == 1:
            controls = controls.reshape(-1, 1)
        self.controls = controls
        self.dt = dt
        self.t0 = t0
        self.interpolation = interpolation

    @property
    def n_inputs(self) -> int:
        return self.controls.shape[1]

    def compute_control(self, state, n):
        n = min(max(int(n), 0), len(self.controls) - 1)
        return self.controls[n].copy()

    def compute_control_at_time(self, state, t):
        return interpolate_samples(self.controls, self.t0, self.dt, [t], self.interpolation)[0]


class StateFeedbackController(Controller):
    """
    Time-varying affine feedback: u = u_ff(t) + K(t) @ (x - x_ref(t)).

    Args:
        policy: Feedback policy holding gains, feedforward and reference states
        interpolation: 'zoh' or 'linear' for ``compute_control_at_time``
        u_min: Optional lower control bound applied to the output
        u_max: Optional upper control bound applied to the output
    """

    def __init__(
        self,
        policy: FeedbackPolicy,
        interpolation: str = "zoh",
        u_min: Optional[np.ndarray] = None,
        u_max: Optional[np.ndarray] = None,
    ) -> None:
        self.policy = policy
        self.dt = policy.dt
        self.t0 = policy.t0
        self.interpolation = interpolation
        self.u_min = u_min
        self.u_max = u_max

    @property
    def n_inputs(self) -> int:
        return self.policy.n_inputs

    def _saturate(self, u: np.ndarray) -> np.ndarray:
        if self.u_min is not None or self.u_max is not None:
            lower = -np.inf if self.u_min is None else self.u_min
            upper = np.inf if self.u_max is None else self.u_max
            u = np.clip(u, lower, upper)
        return u

    def compute_control(self, state, n):
        return self._saturate(self.policy.control(state, n))

    def compute_control_at_time(self, state, t):
        p = self.policy
        K = interpolate_samples(p.gains, p.t0, p.dt, [t], self.interpolation)[0]
        u_ff = interpolate_samples(p.feedforward, p.t0, p.dt, [t], self.interpolation)[0]
        x_ref = interpolate_samples(p.reference_states, p.t0, p.dt, [t], self.interpolation)[0]
        u = u_ff + K @ (np.asarray(state, dtype=np.float64) - x_ref)
        return self._saturate(u)


class ControlledSystem:
    """
    Dynamics closed with a controller: x_{n+1} = f(x_n, g(x_n, n), n).

    Without a controller the control is zero. The controller is owned by this
    object and can be swapped between control cycles.

    Args:
        dynamics: Discrete dynamics
        controller: Optional controller
    """

    def __init__(
        self,
        dynamics: DiscreteDynamics,
        controller: Optional[Controller] = None,
    ) -> None:
        self.dynamics = dynamics
        self.controller = controller

    def set_controller(self, controller: Optional[Controller]) -> None:
        self.controller = controller

    def control(self, state: np.ndarray, n: int) -> np.ndarray:
        if self.controller is None:
            return np.zeros(self.dynamics.n_inputs)
        return self.controller.compute_control(state, n)

    def propagate_closed_loop(self, state: np.ndarray, n: int) -> np.ndarray:
        """Propagate one step under the controller's action."""
        return self.dynamics.propagate(state, self.control(state, n), n)

    def simulate(self, x0: np.ndarray, n_steps: int) -> np.ndarray:
        """
        Closed-loop simulation.

        Returns:
            State trajectory (n_steps+1, n_x)
        """
        states = np.zeros((n_steps + 1, self.dynamics.n_states))
        states[0] = np.asarray(x0, dtype=np.float64)
        for n in range(n_steps):
            states[n + 1] = self.propagate_closed_loop(states[n], n)
        return states
