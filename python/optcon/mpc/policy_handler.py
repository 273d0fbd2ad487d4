"""
Policy Handlers
===============

Translate a solved trajectory/policy into an executable controller and
produce warm starts for the next MPC cycle. The MPC wrapper only depends on
the ``PolicyHandler`` interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np

from ..systems.controllers import Controller, FeedforwardController, StateFeedbackController
from ..trajectory import FeedbackPolicy, Trajectory


class PolicyHandler(ABC):
    """Interface between solver output and the controlled plant."""

    @abstractmethod
    def to_controller(
        self,
        trajectory: Trajectory,
        policy: FeedbackPolicy,
        time_offset: float = 0.0,
    ) -> Controller:
        """
        Controller executing the solution, starting ``time_offset`` after
        the beginning of ``trajectory``.
        """

    @abstractmethod
    def warm_start(
        self,
        trajectory: Trajectory,
        policy: FeedbackPolicy,
        elapsed: float,
        horizon: int,
        interpolation: str = "linear",
    ) -> Tuple[Trajectory, FeedbackPolicy]:
        """Shift the previous solution by ``elapsed`` onto ``horizon`` steps."""


class StateFeedbackPolicyHandler(PolicyHandler):
    """
    Emits time-varying affine state feedback controllers.

    Args:
        interpolation: 'zoh' or 'linear' between policy entries
        u_min: Optional lower bound applied to the controller output
        u_max: Optional upper bound applied to the controller output
    """

    def __init__(
        self,
        interpolation: str = "zoh",
        u_min: Optional[np.ndarray] = None,
        u_max: Optional[np.ndarray] = None,
    ) -> None:
        self.interpolation = interpolation
        self.u_min = u_min
        self.u_max = u_max

    def to_controller(self, trajectory, policy, time_offset=0.0):
        if time_offset > 0:
            policy = policy.shift(time_offset, interpolation=self.interpolation)
        return StateFeedbackController(
            policy,
            interpolation=self.interpolation,
            u_min=self.u_min,
            u_max=self.u_max,
        )

    def warm_start(self, trajectory, policy, elapsed, horizon, interpolation="linear"):
        return (
            trajectory.shift(elapsed, horizon, interpolation),
            policy.shift(elapsed, horizon, interpolation),
        )


class FeedforwardPolicyHandler(PolicyHandler):
    """
    Emits open-loop controllers replaying the optimized controls; the
    warm-start policy carries no feedback.
    """

    def __init__(self, interpolation: str = "zoh") -> None:
        self.interpolation = interpolation

    def to_controller(self, trajectory, policy, time_offset=0.0):
        if time_offset > 0:
            trajectory = trajectory.shift(time_offset, interpolation=self.interpolation)
        return FeedforwardController(
            trajectory.controls,
            dt=trajectory.dt,
            t0=trajectory.t0,
            interpolation=self.interpolation,
        )

    def warm_start(self, trajectory, policy, elapsed, horizon, interpolation="linear"):
        shifted = trajectory.shift(elapsed, horizon, interpolation)
        return shifted, FeedbackPolicy.from_trajectory(shifted)
