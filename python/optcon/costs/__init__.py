"""
optcon Costs and Constraints
============================

Cost functions and constraints evaluated by the LQ sub-problem builder.

Classes
-------
CostFunction
    Interface: stage/terminal value, gradient and Hessian
QuadraticCost
    Quadratic regulation/tracking cost
FunctionCost
    Cost from scalar callables with finite-difference derivatives
ControlConstraints
    Box/polytope constraints on the control (handled by the LQ solver)
StatePenaltyConstraint
    Nonlinear state-input constraints as quadratic penalties
"""

from .cost import CostEvaluation, CostFunction, QuadraticCost, FunctionCost
from .constraints import (
    BoxConstraints,
    PolytopeConstraints,
    ControlConstraints,
    StatePenaltyConstraint,
)
from .reference import (
    Reference,
    constant_reference,
    step_reference,
    ramp_reference,
)

__all__ = [
    "CostEvaluation",
    "CostFunction",
    "QuadraticCost",
    "FunctionCost",
    "BoxConstraints",
    "PolytopeConstraints",
    "ControlConstraints",
    "StatePenaltyConstraint",
    "Reference",
    "constant_reference",
    "step_reference",
    "ramp_reference",
]
