"""
Condensed QP LQ Solver
======================

Alternative LQ backend that eliminates the state deviations through the
linear dynamics,

    dx = G du + g,

and solves one dense QP over the stacked control deviations ``du`` with an
interior-point method. Feedback gains come from an unconstrained Riccati pass;
the feedforward terms are chosen so that the closed-loop policy reproduces
the QP optimum on the linear model.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
from scipy import linalg

from ..qp import solve_qp
from ..result import LQStatus
from .problem import LQProblem
from .regularization import RegularizationSettings, regularize
from .riccati import LQSolution, LQSolver, RiccatiSolver

logger = logging.getLogger(__name__)


def condense(lq: LQProblem) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Condense the LQ problem.

    Returns:
        (P, q, G, g): QP Hessian and gradient over the stacked ``du``
        (N * n_u,), and the state map ``dx = G du + g`` over the stacked
        ``dx`` ((N + 1) * n_x,)
    """
    N, n_x, n_u = lq.horizon, lq.n_states, lq.n_inputs
    nX, nU = (N + 1) * n_x, N * n_u

    G = np.zeros((nX, nU))
    g = np.zeros(nX)
    for n, dyn in enumerate(lq.dynamics):
        rows = slice((n + 1) * n_x, (n + 2) * n_x)
        prev = slice(n * n_x, (n + 1) * n_x)
        G[rows] = dyn.A @ G[prev]
        G[rows, n * n_u:(n + 1) * n_u] += dyn.B
        g[rows] = dyn.A @ g[prev] + dyn.b

    Hxx = linalg.block_diag(*[c.Qxx for c in lq.costs], lq.terminal.Qxx)
    Huu = linalg.block_diag(*[c.Quu for c in lq.costs])
    Hux = np.zeros((nU, nX))
    for n, c in enumerate(lq.costs):
        Hux[n * n_u:(n + 1) * n_u, n * n_x:(n + 1) * n_x] = c.Qux
    gx = np.concatenate([c.qx for c in lq.costs] + [lq.terminal.qx])
    gu = np.concatenate([c.qu for c in lq.costs])

    P = Huu + G.T @ Hxx @ G + Hux @ G + G.T @ Hux.T
    q = gu + G.T @ gx + G.T @ Hxx @ g + Hux @ g
    return 0.5 * (P + P.T), q, G, g


def _stack_constraints(lq: LQProblem):
    """Stacked bounds and block-diagonal polytope of all steps."""
    N, n_u = lq.horizon, lq.n_inputs
    lb = np.full(N * n_u, -np.inf)
    ub = np.full(N * n_u, np.inf)
    blocks, rhs = [], []
    for n in range(N):
        segment = lq.constraint(n)
        if segment is None:
            continue
        if segment.lower is not None:
            lb[n * n_u:(n + 1) * n_u] = segment.lower
            ub[n * n_u:(n + 1) * n_u] = segment.upper
        if segment.E is not None:
            row = np.zeros((segment.E.shape[0], N * n_u))
            row[:, n * n_u:(n + 1) * n_u] = segment.E
            blocks.append(row)
            rhs.append(segment.e)
    if blocks:
        return lb, ub, np.vstack(blocks), np.concatenate(rhs)
    return lb, ub, None, None


class CondensedQPSolver(LQSolver):
    """
    Condensed dense-QP LQ solver.

    Args:
        regularization: Regularization of the condensed Hessian
        method: QP method passed to ``solve_qp``
        max_iters: QP iteration limit
    """

    name = "condensed_qp"

    def __init__(
        self,
        regularization: Optional[RegularizationSettings] = None,
        method: str = "trust-constr",
        max_iters: int = 1000,
    ) -> None:
        self.regularization = regularization or RegularizationSettings()
        self.method = method
        self.max_iters = max_iters
        self._riccati = RiccatiSolver(self.regularization)

    def solve_lq(self, lq: LQProblem) -> LQSolution:
        unconstrained = LQProblem(lq.dynamics, lq.costs, lq.terminal)
        riccati = self._riccati.solve_lq(unconstrained)

        P, q, G, g = condense(lq)
        reg = regularize(P, self.regularization)
        degraded = reg.is_degraded(self.regularization)

        lb, ub, E, e = _stack_constraints(lq)
        result = solve_qp(
            reg.matrix, q, A=E, u=e, lb=lb, ub=ub,
            method=self.method, max_iters=self.max_iters,
        )
        if not result.status.has_solution:
            logger.warning("Condensed QP failed (%s), using Riccati solution", result.status)
            return riccati

        N, n_x, n_u = lq.horizon, lq.n_states, lq.n_inputs
        du = result.x
        dx = (G @ du + g).reshape(N + 1, n_x)
        du = du.reshape(N, n_u)

        gains = riccati.gains
        feedforward = np.array([du[n] - gains[n] @ dx[n] for n in range(N)])
        du_flat = du.ravel()

        status = LQStatus.DEGRADED if degraded or riccati.status == LQStatus.DEGRADED else LQStatus.OK
        return LQSolution(
            gains=gains,
            feedforward=feedforward,
            value_functions=riccati.value_functions,
            dv1=float(q @ du_flat),
            dv2=float(0.5 * du_flat @ P @ du_flat),
            status=status,
            max_regularization=max(reg.mu, riccati.max_regularization),
            n_constrained=int(lq.is_constrained),
        )
