"""
MPC Time Horizon
================

Computes the prediction horizon of each MPC cycle from the time elapsed
since the first cycle.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ..exceptions import InvalidInputError
from .settings import MpcSettings, TimeHorizonStrategy


class MpcTimeHorizon:
    """
    Horizon update rule.

    Args:
        settings: MPC settings (strategy, final time, minimum horizon)
        initial_horizon_time: Horizon duration of the first cycle
        dt: Sampling time used to convert durations to step counts

    Example:
        >>> settings = MpcSettings(
        ...     horizon_strategy=TimeHorizonStrategy.FIXED_FINAL_TIME, final_time=2.0
        ... )
        >>> th = MpcTimeHorizon(settings, initial_horizon_time=2.0, dt=0.1)
        >>> th.compute_new_time_horizon(0.5)
        (1.5, False)
    """

    def __init__(self, settings: MpcSettings, initial_horizon_time: float, dt: float) -> None:
        if not initial_horizon_time > 0:
            raise InvalidInputError(f"initial horizon must be positive, got {initial_horizon_time}")
        if not dt > 0:
            raise InvalidInputError(f"dt must be positive, got {dt}")
        self.settings = settings
        self.initial_horizon_time = initial_horizon_time
        self.dt = dt

    @property
    def strategy(self) -> TimeHorizonStrategy:
        return self.settings.horizon_strategy

    def compute_new_time_horizon(self, time_since_start: float) -> Tuple[float, bool]:
        """
        Horizon duration for a cycle starting ``time_since_start`` after
        the first one.

        Returns:
            (horizon_time, final_time_reached)
        """
        s = self.settings
        T0 = self.initial_horizon_time

        if self.strategy == TimeHorizonStrategy.CONSTANT_RECEDING_HORIZON:
            return T0, False

        remaining = s.final_time - time_since_start
        reached = remaining <= 0.5 * self.dt

        if self.strategy == TimeHorizonStrategy.FIXED_FINAL_TIME:
            horizon = remaining
        elif self.strategy == TimeHorizonStrategy.FIXED_FINAL_TIME_WITH_MIN_HORIZON:
            horizon = max(remaining, s.min_horizon_time)
        else:
            horizon = min(T0, remaining)

        return max(horizon, self.dt), reached

    def to_steps(self, horizon_time: float) -> int:
        """Number of control steps covering ``horizon_time`` (at least one)."""
        return max(1, int(np.round(horizon_time / self.dt)))

    def compute_new_horizon(self, time_since_start: float) -> Tuple[int, bool]:
        """Like ``compute_new_time_horizon`` but in control steps."""
        horizon_time, reached = self.compute_new_time_horizon(time_since_start)
        return self.to_steps(horizon_time), reached
