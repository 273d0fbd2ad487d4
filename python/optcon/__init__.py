"""
optcon: Nonlinear Optimal Control and MPC
=========================================

optcon solves trajectory optimization problems for nonlinear dynamic
systems by iterating linearization, a Riccati backward pass and a
line-searched closed-loop rollout, and wraps the solver into a
receding-horizon model predictive controller.

Quick Start
-----------
>>> import numpy as np
>>> import optcon
>>> system = optcon.point_mass_1d(dt=0.1)
>>> cost = optcon.QuadraticCost(Q=np.eye(1), R=0.1 * np.eye(1), Qf=10 * np.eye(1), x_ref=[1.0])
>>> problem = optcon.OptConProblem(system, cost)
>>> backend = optcon.NLOCBackend(problem, optcon.NLOptConSettings(horizon=20, dt=0.1))
>>> result = backend.solve(np.array([0.0]))
>>> print(result.reason)
converged

Receding-horizon control:

>>> mpc = optcon.MPC(backend, optcon.MpcSettings(max_iterations_per_cycle=5))
>>> cycle = mpc.run_cycle(np.array([0.0]))
>>> u = cycle.control(np.array([0.0]))
"""

import logging

__version__ = "0.1.0"
__author__ = "optcon Contributors"

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Import public API
from .exceptions import (
    OptconError,
    DimensionError,
    InvalidInputError,
    EvaluationError,
)
from .result import (
    TerminationReason,
    SolverState,
    LQStatus,
    QualityStatus,
    IterationInfo,
    SolveResult,
)
from .trajectory import Trajectory, FeedbackPolicy
from .qp import solve_qp, QPResult, QPStatus
from .systems import (
    LinearSystem,
    DiscreteSystem,
    ContinuousSystem,
    DiscretizedSystem,
    double_integrator,
    point_mass_1d,
    pendulum,
)
from .costs import (
    QuadraticCost,
    FunctionCost,
    BoxConstraints,
    PolytopeConstraints,
    ControlConstraints,
    StatePenaltyConstraint,
)
from .problem import OptConProblem
from .nloc import NLOCBackend, NLOptConSettings, LineSearchSettings
from .lq import RegularizationSettings, RiccatiSolver, CondensedQPSolver, make_lq_solver
from .mpc import (
    MPC,
    MpcSettings,
    TimeHorizonStrategy,
    StateFeedbackPolicyHandler,
    FeedforwardPolicyHandler,
)

__all__ = [
    # Version
    "__version__",

    # Exceptions
    "OptconError",
    "DimensionError",
    "InvalidInputError",
    "EvaluationError",

    # Results
    "TerminationReason",
    "SolverState",
    "LQStatus",
    "QualityStatus",
    "IterationInfo",
    "SolveResult",

    # Trajectories
    "Trajectory",
    "FeedbackPolicy",

    # QP
    "solve_qp",
    "QPResult",
    "QPStatus",

    # Systems
    "LinearSystem",
    "DiscreteSystem",
    "ContinuousSystem",
    "DiscretizedSystem",
    "double_integrator",
    "point_mass_1d",
    "pendulum",

    # Costs and constraints
    "QuadraticCost",
    "FunctionCost",
    "BoxConstraints",
    "PolytopeConstraints",
    "ControlConstraints",
    "StatePenaltyConstraint",

    # Solving
    "OptConProblem",
    "NLOCBackend",
    "NLOptConSettings",
    "LineSearchSettings",
    "RegularizationSettings",
    "RiccatiSolver",
    "CondensedQPSolver",
    "make_lq_solver",

    # MPC
    "MPC",
    "MpcSettings",
    "TimeHorizonStrategy",
    "StateFeedbackPolicyHandler",
    "FeedforwardPolicyHandler",
]


def info() -> str:
    """Return information about the optcon installation."""
    import platform

    import numpy
    import scipy

    lines = [
        f"optcon version: {__version__}",
        f"Python version: {platform.python_version()}",
        f"Platform: {platform.platform()}",
        f"NumPy version: {numpy.__version__}",
        f"SciPy version: {scipy.__version__}",
    ]
    return "\n".join(lines)
