"""
optcon Systems
==============

Dynamics, linearization, integration and controllers consumed by the NLOC
engine.

Classes
-------
DiscreteDynamics, Linearizable
    Capability interfaces
LinearSystem, DiscreteSystem, ContinuousSystem, DiscretizedSystem
    Concrete dynamics
Sensitivity
    Linearization providers (analytic, finite differences, continuous)
Controller
    Controllers executing a solved policy
SystemModel
    Propagated model for state estimation
"""

from .dynamics import (
    DiscreteDynamics,
    Linearizable,
    LinearSystem,
    DiscreteSystem,
    ContinuousSystem,
    DiscretizedSystem,
    discretize_linear,
    double_integrator,
    point_mass_1d,
    pendulum,
)
from .integration import IntegrationType, integrate
from .sensitivity import (
    Sensitivity,
    AnalyticSensitivity,
    FiniteDifferenceSensitivity,
    ContinuousSensitivity,
    make_sensitivity,
)
from .controllers import (
    Controller,
    ConstantController,
    FeedforwardController,
    StateFeedbackController,
    ControlledSystem,
)
from .system_model import SystemModel

__all__ = [
    # Dynamics
    "DiscreteDynamics",
    "Linearizable",
    "LinearSystem",
    "DiscreteSystem",
    "ContinuousSystem",
    "DiscretizedSystem",
    "discretize_linear",
    "double_integrator",
    "point_mass_1d",
    "pendulum",
    # Integration
    "IntegrationType",
    "integrate",
    # Sensitivity
    "Sensitivity",
    "AnalyticSensitivity",
    "FiniteDifferenceSensitivity",
    "ContinuousSensitivity",
    "make_sensitivity",
    # Controllers
    "Controller",
    "ConstantController",
    "FeedforwardController",
    "StateFeedbackController",
    "ControlledSystem",
    "SystemModel",
]
