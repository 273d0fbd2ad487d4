"""
NLOC Settings
=============

Immutable configuration of the NLOC backend. Settings are validated on
construction and never change during a solve; use ``replace`` to derive a
modified copy.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..exceptions import InvalidInputError
from ..lq import LQ_SOLVERS, RegularizationSettings


@dataclass(frozen=True)
class LineSearchSettings:
    """
    Backtracking line search.

    Attributes:
        active: If False, the full step ``alpha_initial`` is always taken
        alpha_initial: First step size tried
        backtracking_factor: ``alpha <- alpha * backtracking_factor``
        max_backtracks: Number of reductions before giving up
        armijo: Sufficient decrease parameter in [0, 1)
        accept_best_on_failure: Accept the best non-increasing candidate
            when no step satisfies the Armijo condition
    """
    active: bool = True
    alpha_initial: float = 1.0
    backtracking_factor: float = 0.5
    max_backtracks: int = 12
    armijo: float = 1e-4
    accept_best_on_failure: bool = False

    def __post_init__(self):
        if not 0 < self.alpha_initial <= 1:
            raise InvalidInputError(f"alpha_initial must be in (0, 1], got {self.alpha_initial}")
        if not 0 < self.backtracking_factor < 1:
            raise InvalidInputError(
                f"backtracking_factor must be in (0, 1), got {self.backtracking_factor}"
            )
        if self.max_backtracks < 0:
            raise InvalidInputError(f"max_backtracks must be >= 0, got {self.max_backtracks}")
        if not 0 <= self.armijo < 1:
            raise InvalidInputError(f"armijo must be in [0, 1), got {self.armijo}")


@dataclass(frozen=True)
class NLOptConSettings:
    """
    Settings of the NLOC backend.

    Attributes:
        horizon: Number of control steps N
        dt: Sampling time
        max_iterations: Outer iteration budget
        min_cost_improvement: Absolute cost decrease below which the solve converged
        min_relative_cost_improvement: Relative cost decrease below which the solve converged
        min_update_norm: Control update norm below which the solve converged
        n_threads: 1 for sequential execution, > 1 for the thread pool
        lq_solver: ``"riccati"`` or ``"condensed_qp"``
        time_limit: Wall-clock limit in seconds (None for unlimited)
        verbose: Log iteration progress at INFO instead of DEBUG
        line_search: Line search settings
        regularization: Control Hessian regularization settings

    Example:
        >>> settings = NLOptConSettings(horizon=20, dt=0.1)
        >>> settings = settings.replace(n_threads=4)
    """
    horizon: int = 20
    dt: float = 0.1
    max_iterations: int = 50
    min_cost_improvement: float = 1e-9
    min_relative_cost_improvement: float = 1e-9
    min_update_norm: float = 1e-9
    n_threads: int = 1
    lq_solver: str = "riccati"
    time_limit: Optional[float] = None
    verbose: bool = False
    line_search: LineSearchSettings = field(default_factory=LineSearchSettings)
    regularization: RegularizationSettings = field(default_factory=RegularizationSettings)

    def __post_init__(self):
        if self.horizon < 1:
            raise InvalidInputError(f"horizon must be >= 1, got {self.horizon}")
        if not self.dt > 0:
            raise InvalidInputError(f"dt must be positive, got {self.dt}")
        if self.max_iterations < 1:
            raise InvalidInputError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if min(self.min_cost_improvement, self.min_relative_cost_improvement, self.min_update_norm) < 0:
            raise InvalidInputError("convergence tolerances must be non-negative")
        if self.n_threads < 1:
            raise InvalidInputError(f"n_threads must be >= 1, got {self.n_threads}")
        if self.lq_solver not in LQ_SOLVERS:
            raise InvalidInputError(
                f"Unknown LQ solver '{self.lq_solver}', expected one of {sorted(LQ_SOLVERS)}"
            )
        if self.time_limit is not None and not self.time_limit > 0:
            raise InvalidInputError(f"time_limit must be positive, got {self.time_limit}")

    @property
    def time_horizon(self) -> float:
        return self.horizon * self.dt

    @property
    def is_multi_threaded(self) -> bool:
        return self.n_threads > 1

    def replace(self, **changes) -> "NLOptConSettings":
        """Copy with fields replaced (validated again)."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "NLOptConSettings":
        """
        Build settings from a flat ``params`` dict.

        Accepts the short aliases ``max_iters``, ``tol`` (all convergence
        tolerances), ``threads`` and ``solver``, and nested dicts for
        ``line_search`` and ``regularization``.
        """
        params = dict(params or {})
        kwargs: Dict[str, Any] = {}

        if 'max_iterations' in params or 'max_iters' in params:
            kwargs['max_iterations'] = params.pop('max_iterations', params.pop('max_iters', None))
            params.pop('max_iters', None)
        if 'n_threads' in params or 'threads' in params:
            kwargs['n_threads'] = params.pop('n_threads', params.pop('threads', None))
            params.pop('threads', None)
        if 'lq_solver' in params or 'solver' in params:
            kwargs['lq_solver'] = params.pop('lq_solver', params.pop('solver', None))
            params.pop('solver', None)
        if 'tol' in params or 'tolerance' in params:
            tol = params.pop('tolerance', params.pop('tol', None))
            params.pop('tol', None)
            kwargs['min_cost_improvement'] = tol
            kwargs['min_relative_cost_improvement'] = tol
            kwargs['min_update_norm'] = tol

        line_search = params.pop('line_search', None)
        if isinstance(line_search, dict):
            line_search = LineSearchSettings(**line_search)
        if line_search is not None:
            kwargs['line_search'] = line_search

        regularization = params.pop('regularization', None)
        if isinstance(regularization, dict):
            regularization = RegularizationSettings(**regularization)
        if regularization is not None:
            kwargs['regularization'] = regularization

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(params) - known
        if unknown:
            raise InvalidInputError(f"Unknown settings: {sorted(unknown)}")
        kwargs.update(params)
        return cls(**kwargs)
