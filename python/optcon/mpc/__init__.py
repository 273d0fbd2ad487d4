"""
optcon Model Predictive Control
===============================

Receding-horizon control built on the NLOC backend.

Classes
-------
MPC
    Runs one NLOC solve per control cycle with warm starting
MpcSettings
    Per-cycle budgets, horizon strategy and delay compensation
MpcTimeHorizon
    Horizon update rule of the four time horizon strategies
PolicyHandler
    Converts solutions into controllers and warm starts

Example
-------
>>> import numpy as np
>>> from optcon import OptConProblem, QuadraticCost, point_mass_1d
>>> from optcon.nloc import NLOCBackend, NLOptConSettings
>>> from optcon.mpc import MPC, MpcSettings
>>>
>>> cost = QuadraticCost(Q=np.eye(1), R=0.1 * np.eye(1), Qf=10 * np.eye(1), x_ref=[1.0])
>>> backend = NLOCBackend(OptConProblem(point_mass_1d(dt=0.1), cost),
...                       NLOptConSettings(horizon=20, dt=0.1))
>>> mpc = MPC(backend, MpcSettings(max_iterations_per_cycle=5))
>>> cycle = mpc.run_cycle(np.array([0.0]))
>>> u = cycle.control(np.array([0.0]))
"""

from .settings import MpcSettings, TimeHorizonStrategy
from .time_horizon import MpcTimeHorizon
from .policy_handler import (
    PolicyHandler,
    StateFeedbackPolicyHandler,
    FeedforwardPolicyHandler,
)
from .controller import MPC, MPCCycleResult, MPCSession

__all__ = [
    "MpcSettings",
    "TimeHorizonStrategy",
    "MpcTimeHorizon",
    "PolicyHandler",
    "StateFeedbackPolicyHandler",
    "FeedforwardPolicyHandler",
    "MPC",
    "MPCCycleResult",
    "MPCSession",
]
