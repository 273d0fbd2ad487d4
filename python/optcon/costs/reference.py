"""
Reference Trajectories
======================

Targets for tracking costs. Indices past the end of a reference are
clamped to the last sample, so a reference shorter than the horizon
behaves like a setpoint after its end.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class Reference:
    """
    State (and optional input) reference sampled per time index.

    Args:
        states: State reference (K, n_x)
        inputs: Input reference (K, n_u), optional

    Example:
        >>> ref = ramp_reference(np.zeros(2), np.array([1.0, 0.0]), horizon=50)
        >>> ref.get_state(10)
    """
    states: np.ndarray
    inputs: Optional[np.ndarray] = None

    def __post_init__(self):
        """Validate reference."""
        self.states = np.asarray(self.states, dtype=np.float64)
        if self.states.ndim == 1:
            self.states = self.states.reshape(-1, 1)

        if self.inputs is not None:
            self.inputs = np.asarray(self.inputs, dtype=np.float64)
            if self.inputs.ndim == 1:
                self.inputs = self.inputs.reshape(-1, 1)

    @property
    def length(self) -> int:
        """Number of samples."""
        return len(self.states)

    @property
    def n_states(self) -> int:
        return self.states.shape[1]

    def get_state(self, k: int) -> np.ndarray:
        """State reference at step k (clamped to bounds)."""
        k = min(max(k, 0), len(self.states) - 1)
        return self.states[k]

    def get_input(self, k: int) -> Optional[np.ndarray]:
        """Input reference at step k (clamped), None without inputs."""
        if self.inputs is None:
            return None
        k = min(max(k, 0), len(self.inputs) - 1)
        return self.inputs[k]

    def get_window(self, start: int, length: int) -> "Reference":
        """Reference window of ``length`` samples starting at ``start``."""
        idx = np.clip(np.arange(start, start + length), 0, len(self.states) - 1)
        inputs = None
        if self.inputs is not None:
            inputs = self.inputs[np.clip(idx, 0, len(self.inputs) - 1)]
        return Reference(states=self.states[idx], inputs=inputs)


def constant_reference(
    x_ref: np.ndarray,
    horizon: int,
    u_ref: Optional[np.ndarray] = None,
) -> Reference:
    """Setpoint reference repeated ``horizon`` times."""
    states = np.tile(np.asarray(x_ref, dtype=np.float64), (horizon, 1))
    inputs = None
    if u_ref is not None:
        inputs = np.tile(np.asarray(u_ref, dtype=np.float64), (horizon, 1))
    return Reference(states=states, inputs=inputs)


def step_reference(
    x_initial: np.ndarray,
    x_final: np.ndarray,
    horizon: int,
    step_time: int = 0,
) -> Reference:
    """Reference jumping from ``x_initial`` to ``x_final`` at ``step_time``."""
    x_initial = np.asarray(x_initial, dtype=np.float64)
    x_final = np.asarray(x_final, dtype=np.float64)

    states = np.empty((horizon, len(x_initial)))
    states[:step_time] = x_initial
    states[step_time:] = x_final
    return Reference(states=states)


def ramp_reference(
    x_initial: np.ndarray,
    x_final: np.ndarray,
    horizon: int,
    ramp_duration: Optional[int] = None,
) -> Reference:
    """
    Linear ramp from ``x_initial`` to ``x_final`` over ``ramp_duration``
    steps (default: full horizon), then hold.
    """
    x_initial = np.asarray(x_initial, dtype=np.float64)
    x_final = np.asarray(x_final, dtype=np.float64)

    if ramp_duration is None:
        ramp_duration = horizon
    ramp_duration = min(ramp_duration, horizon)

    alpha = np.ones(horizon)
    alpha[:ramp_duration] = np.arange(ramp_duration) / max(ramp_duration - 1, 1)
    states = (1 - alpha)[:, None] * x_initial + alpha[:, None] * x_final
    return Reference(states=states)
