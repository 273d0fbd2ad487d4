"""
optcon LQ Sub-Problems
======================

Building and solving the time-varying LQ problem of one NLOC iteration.

Classes
-------
LQProblemBuilder
    Linearizes dynamics and quadraticizes costs around a nominal trajectory
RiccatiSolver
    Backward Riccati recursion with regularization and control constraints
CondensedQPSolver
    Dense interior-point QP over the stacked control deviations
"""

from typing import Optional

from ..exceptions import InvalidInputError
from .problem import (
    LinearDynamicsSegment,
    QuadraticCostSegment,
    ControlConstraintSegment,
    LQProblem,
)
from .builder import LQProblemBuilder, partition
from .regularization import RegularizationSettings, RegularizedHessian, regularize
from .riccati import LQSolver, LQSolution, ValueFunction, RiccatiSolver
from .qp_solver import CondensedQPSolver, condense

LQ_SOLVERS = {
    RiccatiSolver.name: RiccatiSolver,
    CondensedQPSolver.name: CondensedQPSolver,
}


def make_lq_solver(
    name: str = "riccati",
    regularization: Optional[RegularizationSettings] = None,
) -> LQSolver:
    """
    Create an LQ solver by name.

    Args:
        name: ``"riccati"`` or ``"condensed_qp"``
        regularization: Regularization schedule

    Raises:
        InvalidInputError: unknown solver name
    """
    try:
        cls = LQ_SOLVERS[name]
    except KeyError:
        raise InvalidInputError(
            f"Unknown LQ solver '{name}', expected one of {sorted(LQ_SOLVERS)}"
        ) from None
    return cls(regularization)


__all__ = [
    "LinearDynamicsSegment",
    "QuadraticCostSegment",
    "ControlConstraintSegment",
    "LQProblem",
    "LQProblemBuilder",
    "partition",
    "RegularizationSettings",
    "RegularizedHessian",
    "regularize",
    "LQSolver",
    "LQSolution",
    "ValueFunction",
    "RiccatiSolver",
    "CondensedQPSolver",
    "condense",
    "LQ_SOLVERS",
    "make_lq_solver",
]
