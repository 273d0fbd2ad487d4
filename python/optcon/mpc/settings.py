"""MPC settings."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import InvalidInputError
from ..trajectory import INTERPOLATION_TYPES


class TimeHorizonStrategy(Enum):
    """
    How the prediction horizon evolves between MPC cycles.

    Attributes:
        CONSTANT_RECEDING_HORIZON: Horizon length stays at its initial value
        FIXED_FINAL_TIME: Horizon shrinks towards ``final_time``
        FIXED_FINAL_TIME_WITH_MIN_HORIZON: Shrinks towards ``final_time`` but
            never below ``min_horizon_time``
        RECEDING_HORIZON_WITH_FIXED_FINAL_TIME: Constant length until the
            horizon end reaches ``final_time``, then shrinks
    """
    CONSTANT_RECEDING_HORIZON = "constant_receding_horizon"
    FIXED_FINAL_TIME = "fixed_final_time"
    FIXED_FINAL_TIME_WITH_MIN_HORIZON = "fixed_final_time_with_min_horizon"
    RECEDING_HORIZON_WITH_FIXED_FINAL_TIME = "receding_horizon_with_fixed_final_time"

    def __str__(self) -> str:
        return self.value

    @property
    def needs_final_time(self) -> bool:
        return self != TimeHorizonStrategy.CONSTANT_RECEDING_HORIZON


@dataclass(frozen=True)
class MpcSettings:
    """
    Settings of the MPC wrapper.

    Attributes:
        max_iterations_per_cycle: NLOC iteration budget per cycle
        time_budget: Wall-clock budget per cycle in seconds (None keeps the
            backend's own ``time_limit``)
        horizon_strategy: Time horizon strategy
        min_horizon_time: Lower bound of the horizon for
            ``FIXED_FINAL_TIME_WITH_MIN_HORIZON``
        final_time: Final time for the fixed-final-time strategies, measured
            from the first cycle
        delay_compensation: Forward-propagate the measured state over the
            expected delay before solving
        fixed_delay: Expected delay between measurement and policy use (seconds)
        interpolation: 'linear' or 'zoh' for warm-start time shifting
        warm_start: Reuse the previous solution as initial guess

    Example:
        >>> settings = MpcSettings(max_iterations_per_cycle=3, time_budget=0.05)
    """
    max_iterations_per_cycle: int = 10
    time_budget: Optional[float] = None
    horizon_strategy: TimeHorizonStrategy = TimeHorizonStrategy.CONSTANT_RECEDING_HORIZON
    min_horizon_time: float = 0.0
    final_time: Optional[float] = None
    delay_compensation: bool = False
    fixed_delay: float = 0.0
    interpolation: str = "linear"
    warm_start: bool = True

    def __post_init__(self):
        if self.max_iterations_per_cycle < 1:
            raise InvalidInputError(
                f"max_iterations_per_cycle must be >= 1, got {self.max_iterations_per_cycle}"
            )
        if self.time_budget is not None and not self.time_budget > 0:
            raise InvalidInputError(f"time_budget must be positive, got {self.time_budget}")
        if not isinstance(self.horizon_strategy, TimeHorizonStrategy):
            raise InvalidInputError(f"Unknown horizon strategy {self.horizon_strategy!r}")
        if self.horizon_strategy.needs_final_time and self.final_time is None:
            raise InvalidInputError(f"{self.horizon_strategy} requires final_time")
        if self.final_time is not None and not self.final_time > 0:
            raise InvalidInputError(f"final_time must be positive, got {self.final_time}")
        if self.min_horizon_time < 0:
            raise InvalidInputError("min_horizon_time must be non-negative")
        if self.fixed_delay < 0:
            raise InvalidInputError("fixed_delay must be non-negative")
        if self.interpolation not in INTERPOLATION_TYPES:
            raise InvalidInputError(
                f"interpolation must be one of {INTERPOLATION_TYPES}, got '{self.interpolation}'"
            )

    def replace(self, **changes) -> "MpcSettings":
        return dataclasses.replace(self, **changes)
