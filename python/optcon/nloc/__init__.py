"""
optcon NLOC Solver
==================

Iterative nonlinear optimal control: linearize, solve the LQ sub-problem,
roll out with a line search, repeat.

Example:
    >>> from optcon.nloc import NLOCBackend, NLOptConSettings
    >>> backend = NLOCBackend(problem, NLOptConSettings(horizon=20, dt=0.1, n_threads=4))
    >>> result = backend.solve(x0)
"""

from .settings import LineSearchSettings, NLOptConSettings
from .line_search import LineSearch, LineSearchResult, rollout
from .backend import NLOCBackend

__all__ = [
    "LineSearchSettings",
    "NLOptConSettings",
    "LineSearch",
    "LineSearchResult",
    "rollout",
    "NLOCBackend",
]
