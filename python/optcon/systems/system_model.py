"""
System Model for State Estimation
=================================

Wraps a controlled continuous-time system into the propagated, discrete
model that state estimators consume: next state, Jacobian w.r.t. the state,
and Jacobian w.r.t. the process noise.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .controllers import Controller
from .dynamics import DiscretizedSystem
from .sensitivity import ContinuousSensitivity, FiniteDifferenceSensitivity, Sensitivity


class SystemModel:
    """
    Discrete propagation model of a controlled continuous system.

    When a controller is attached the control argument of the methods is a
    placeholder: the applied control is computed by the controller.

    Args:
        system: Discretized continuous system (dt and sub-steps taken from it)
        controller: Optional controller generating the control
        noise_jacobian: Derivative w.r.t. process noise, default identity
        sensitivity: Optional sensitivity provider; defaults to the
            continuous Jacobians when available, finite differences otherwise

    Example:
        >>> model = SystemModel(pendulum(dt=0.01))
        >>> x_next = model.compute_dynamics(x, u, t=0.0)
        >>> F = model.derivative_state(x, u, t=0.0)
    """

    def __init__(
        self,
        system: DiscretizedSystem,
        controller: Optional[Controller] = None,
        noise_jacobian: Optional[np.ndarray] = None,
        sensitivity: Optional[Sensitivity] = None,
    ) -> None:
        self.system = system
        self.controller = controller
        n_x = system.n_states
        if noise_jacobian is None:
            noise_jacobian = np.eye(n_x)
        self.noise_jacobian = np.asarray(noise_jacobian, dtype=np.float64)
        if self.noise_jacobian.shape[0] != n_x:
            raise ValueError(f"noise_jacobian rows must match state dim {n_x}")

        if sensitivity is None:
            if system.system.has_jacobians:
                sensitivity = ContinuousSensitivity(system)
            else:
                sensitivity = FiniteDifferenceSensitivity(system)
        self.sensitivity = sensitivity

    def _index(self, t: float) -> int:
        return int(np.floor(round((t - self.system.t0) / self.system.dt, 9)))

    def _control(self, state: np.ndarray, control: np.ndarray, t: float) -> np.ndarray:
        if self.controller is not None:
            return self.controller.compute_control_at_time(state, t)
        return np.asarray(control, dtype=np.float64)

    def compute_dynamics(self, state: np.ndarray, control: np.ndarray, t: float) -> np.ndarray:
        """Propagate ``state`` from ``t`` to ``t + dt``."""
        u = self._control(state, control, t)
        return self.system.propagate(state, u, self._index(t))

    def derivative_state(self, state: np.ndarray, control: np.ndarray, t: float) -> np.ndarray:
        """Jacobian of the propagated state w.r.t. the state."""
        u = self._control(state, control, t)
        A, _ = self.sensitivity.linearize(state, u, self._index(t))
        return A

    def derivative_control(self, state: np.ndarray, control: np.ndarray, t: float) -> np.ndarray:
        """Jacobian of the propagated state w.r.t. the control."""
        u = self._control(state, control, t)
        _, B = self.sensitivity.linearize(state, u, self._index(t))
        return B

    def derivative_noise(self, state: np.ndarray, control: np.ndarray, t: float) -> np.ndarray:
        """Jacobian w.r.t. the additive process noise."""
        return self.noise_jacobian
