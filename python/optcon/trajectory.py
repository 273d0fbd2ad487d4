"""
Trajectories and Feedback Policies
==================================

Containers for the nominal state/control trajectory that the NLOC backend
iterates on, and for the time-varying feedback policy it produces.

Both are sampled on a uniform time grid ``t0 + n * dt``. Shifting a
trajectory or policy by an elapsed time re-samples it onto a new grid
starting at ``t0 + elapsed`` (time warping); samples beyond the end hold the
last value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .exceptions import DimensionError, InvalidInputError
from .utils.validation import validate_trajectory_shapes

INTERPOLATION_TYPES = ("linear", "zoh")


def interpolate_samples(
    values: np.ndarray,
    t0: float,
    dt: float,
    times: np.ndarray,
    interpolation: str = "linear",
) -> np.ndarray:
    """
    Evaluate uniformly sampled ``values`` at arbitrary ``times``.

    Args:
        values: Samples (K, ...) taken at ``t0 + k * dt``
        t0: Time of the first sample
        dt: Sampling interval
        times: Query times (M,)
        interpolation: 'linear' or 'zoh' (zero-order hold)

    Returns:
        Interpolated samples (M, ...). Queries outside the sampled range are
        clamped to the first/last sample.
    """
    if interpolation not in INTERPOLATION_TYPES:
        raise InvalidInputError(f"Unknown interpolation '{interpolation}'")

    values = np.asarray(values, dtype=np.float64)
    times = np.atleast_1d(np.asarray(times, dtype=np.float64))
    last = len(values) - 1

    # Snap to the grid to absorb round-off in (t - t0) / dt
    s = np.round((times - t0) / dt, decimals=9)
    s = np.clip(s, 0.0, float(last))

    lower = np.floor(s).astype(int)
    if interpolation == "zoh" or last == 0:
        return values[lower].copy()

    upper = np.minimum(lower + 1, last)
    frac = (s - lower).reshape((-1,) + (1,) * (values.ndim - 1))
    return (1.0 - frac) * values[lower] + frac * values[upper]


@dataclass
class Trajectory:
    """
    Nominal state/control trajectory over a horizon of N steps.

    Entry ``n`` is the triple ``(states[n], controls[n], n)`` for
    ``n in [0, N)``; ``states[N]`` is the state reached after the last
    control step.

    Args:
        states: State trajectory (N+1, n_x)
        controls: Control trajectory (N, n_u)
        dt: Sampling time
        t0: Time of the first entry

    Example:
        >>> traj = Trajectory(states=np.zeros((21, 2)), controls=np.zeros((20, 1)), dt=0.1)
        >>> traj.horizon
        20
        >>> warm = traj.shift(0.1)
    """
    states: np.ndarray
    controls: np.ndarray
    dt: float = 1.0
    t0: float = 0.0

    def __post_init__(self):
        """Validate trajectory."""
        self.states = np.asarray(self.states, dtype=np.float64)
        if self.states.ndim == 1:
            self.states = self.states.reshape(-1, 1)

        self.controls = np.asarray(self.controls, dtype=np.float64)
        if self.controls.ndim == 1:
            self.controls = self.controls.reshape(-1, 1)

        valid, message = validate_trajectory_shapes(self.states, self.controls)
        if not valid:
            raise DimensionError(message)
        if self.dt <= 0:
            raise InvalidInputError(f"dt must be positive, got {self.dt}")

    def __len__(self) -> int:
        return self.horizon

    @property
    def horizon(self) -> int:
        """Number of control steps N."""
        return len(self.controls)

    @property
    def n_states(self) -> int:
        """Number of states."""
        return self.states.shape[1]

    @property
    def n_inputs(self) -> int:
        """Number of inputs."""
        return self.controls.shape[1]

    @property
    def time_horizon(self) -> float:
        """Duration covered by the trajectory."""
        return self.horizon * self.dt

    @property
    def times(self) -> np.ndarray:
        """Time stamps of the states (N+1,)."""
        return self.t0 + self.dt * np.arange(self.horizon + 1)

    @property
    def initial_state(self) -> np.ndarray:
        return self.states[0]

    @property
    def final_state(self) -> np.ndarray:
        return self.states[-1]

    def copy(self) -> "Trajectory":
        """Deep copy."""
        return Trajectory(
            states=self.states.copy(),
            controls=self.controls.copy(),
            dt=self.dt,
            t0=self.t0,
        )

    def state_at(self, t: float, interpolation: str = "linear") -> np.ndarray:
        """State at absolute time ``t``."""
        return interpolate_samples(self.states, self.t0, self.dt, [t], interpolation)[0]

    def control_at(self, t: float, interpolation: str = "zoh") -> np.ndarray:
        """Control at absolute time ``t``."""
        return interpolate_samples(self.controls, self.t0, self.dt, [t], interpolation)[0]

    def shift(
        self,
        elapsed: float,
        horizon: Optional[int] = None,
        interpolation: str = "linear",
    ) -> "Trajectory":
        """
        Time-shift the trajectory for warm starting.

        The result starts at ``t0 + elapsed`` and covers ``horizon`` steps
        (default: unchanged) on the same ``dt`` grid. Samples past the end
        repeat the last state/control.

        Args:
            elapsed: Time since the trajectory was computed (>= 0)
            horizon: Number of steps of the shifted trajectory
            interpolation: 'linear' or 'zoh'

        Returns:
            New Trajectory; shifting by zero returns an identical copy
        """
        if elapsed < 0:
            raise InvalidInputError(f"elapsed must be non-negative, got {elapsed}")
        if horizon is None:
            horizon = self.horizon
        if horizon < 1:
            raise InvalidInputError(f"horizon must be >= 1, got {horizon}")

        if elapsed == 0 and horizon == self.horizon:
            return self.copy()

        t_new = self.t0 + elapsed
        state_times = t_new + self.dt * np.arange(horizon + 1)
        control_times = state_times[:-1]

        return Trajectory(
            states=interpolate_samples(self.states, self.t0, self.dt, state_times, interpolation),
            controls=interpolate_samples(self.controls, self.t0, self.dt, control_times, interpolation),
            dt=self.dt,
            t0=t_new,
        )

    @classmethod
    def from_controls(
        cls,
        dynamics,
        x0: np.ndarray,
        controls: np.ndarray,
        dt: float = 1.0,
        t0: float = 0.0,
    ) -> "Trajectory":
        """
        Open-loop rollout of ``controls`` through ``dynamics`` from ``x0``.

        Args:
            dynamics: Object with ``propagate(state, control, n)``
            x0: Initial state (n_x,)
            controls: Control sequence (N, n_u)
        """
        x0 = np.asarray(x0, dtype=np.float64).ravel()
        controls = np.asarray(controls, dtype=np.float64)
        if controls.ndim == 1:
            controls = controls.reshape(-1, 1)

        states = np.zeros((len(controls) + 1, len(x0)))
        states[0] = x0
        for n in range(len(controls)):
            states[n + 1] = dynamics.propagate(states[n], controls[n], n)

        return cls(states=states, controls=controls, dt=dt, t0=t0)

    @classmethod
    def zeros(
        cls,
        n_states: int,
        n_inputs: int,
        horizon: int,
        dt: float = 1.0,
        x0: Optional[np.ndarray] = None,
    ) -> "Trajectory":
        """Constant trajectory at ``x0`` (default origin) with zero controls."""
        states = np.zeros((horizon + 1, n_states))
        if x0 is not None:
            states[:] = np.asarray(x0, dtype=np.float64)
        return cls(states=states, controls=np.zeros((horizon, n_inputs)), dt=dt)


@dataclass
class FeedbackPolicy:
    """
    Time-varying affine state feedback policy.

    For step ``n`` the control is

        u = feedforward[n] + gains[n] @ (x - reference_states[n])

    Args:
        gains: Feedback gains (N, n_u, n_x)
        feedforward: Feedforward controls (N, n_u)
        reference_states: States the feedback acts around (N, n_x)
        dt: Sampling time
        t0: Time of the first entry
    """
    gains: np.ndarray
    feedforward: np.ndarray
    reference_states: np.ndarray
    dt: float = 1.0
    t0: float = 0.0

    def __post_init__(self):
        """Validate dimensions."""
        self.gains = np.asarray(self.gains, dtype=np.float64)
        self.feedforward = np.asarray(self.feedforward, dtype=np.float64)
        self.reference_states = np.asarray(self.reference_states, dtype=np.float64)

        if self.gains.ndim != 3:
            raise DimensionError(f"gains must be 3D (N, n_u, n_x), got shape {self.gains.shape}")
        N, n_u, n_x = self.gains.shape
        if N < 1:
            raise DimensionError("policy must contain at least one step")
        if self.feedforward.shape != (N, n_u):
            raise DimensionError(
                f"feedforward must have shape ({N}, {n_u}), got {self.feedforward.shape}"
            )
        if self.reference_states.shape != (N, n_x):
            raise DimensionError(
                f"reference_states must have shape ({N}, {n_x}), got {self.reference_states.shape}"
            )

    def __len__(self) -> int:
        return self.horizon

    @property
    def horizon(self) -> int:
        """Number of policy entries N."""
        return self.gains.shape[0]

    @property
    def n_states(self) -> int:
        return self.gains.shape[2]

    @property
    def n_inputs(self) -> int:
        return self.gains.shape[1]

    def control(self, state: np.ndarray, n: int) -> np.ndarray:
        """Control for ``state`` at time index ``n`` (clamped to the horizon)."""
        n = min(max(int(n), 0), self.horizon - 1)
        dx = np.asarray(state, dtype=np.float64) - self.reference_states[n]
        return self.feedforward[n] + self.gains[n] @ dx

    def copy(self) -> "FeedbackPolicy":
        return FeedbackPolicy(
            gains=self.gains.copy(),
            feedforward=self.feedforward.copy(),
            reference_states=self.reference_states.copy(),
            dt=self.dt,
            t0=self.t0,
        )

    def shift(
        self,
        elapsed: float,
        horizon: Optional[int] = None,
        interpolation: str = "linear",
    ) -> "FeedbackPolicy":
        """
        Time-shift the policy by ``elapsed`` onto a grid of ``horizon`` steps.

        Shifting by zero returns an identical copy.
        """
        if elapsed < 0:
            raise InvalidInputError(f"elapsed must be non-negative, got {elapsed}")
        if horizon is None:
            horizon = self.horizon
        if horizon < 1:
            raise InvalidInputError(f"horizon must be >= 1, got {horizon}")

        if elapsed == 0 and horizon == self.horizon:
            return self.copy()

        t_new = self.t0 + elapsed
        times = t_new + self.dt * np.arange(horizon)

        return FeedbackPolicy(
            gains=interpolate_samples(self.gains, self.t0, self.dt, times, interpolation),
            feedforward=interpolate_samples(self.feedforward, self.t0, self.dt, times, interpolation),
            reference_states=interpolate_samples(
                self.reference_states, self.t0, self.dt, times, interpolation
            ),
            dt=self.dt,
            t0=t_new,
        )

    @classmethod
    def from_trajectory(
        cls,
        trajectory: Trajectory,
        gains: Optional[np.ndarray] = None,
    ) -> "FeedbackPolicy":
        """
        Policy that reproduces ``trajectory`` (pure feedforward unless
        ``gains`` are given).
        """
        N = trajectory.horizon
        if gains is None:
            gains = np.zeros((N, trajectory.n_inputs, trajectory.n_states))
        return cls(
            gains=np.asarray(gains, dtype=np.float64).copy(),
            feedforward=trajectory.controls.copy(),
            reference_states=trajectory.states[:-1].copy(),
            dt=trajectory.dt,
            t0=trajectory.t0,
        )
