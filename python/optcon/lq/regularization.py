"""
Control Hessian Regularization
==============================

Makes the control Hessian ``Quu`` of a Riccati step positive definite:

1. Cholesky check of ``Quu``. A factor whose smallest squared pivot is
   below ``pd_tolerance * max(1, max|diag(Quu)|)`` counts as a failure.
2. On failure, ``Quu + mu * I`` with ``mu = initial * factor**k`` for
   ``k = 0 .. max_attempts - 1``.
3. If still not positive definite, eigenvalues are clamped to
   ``min_eigenvalue``.

The result is always finite. Steps that needed ``mu`` above
``degraded_threshold`` or clamping are reported as degraded.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy import linalg

from ..exceptions import InvalidInputError


@dataclass(frozen=True)
class RegularizationSettings:
    """
    Regularization schedule of the Riccati solver.

    Attributes:
        initial: First diagonal shift tried after a failed Cholesky
        factor: Multiplier between attempts
        max_attempts: Number of shifted Cholesky attempts
        degraded_threshold: Shifts above this mark the solve as degraded (by
            default any shift does)
        min_eigenvalue: Eigenvalue floor of the final clamping fallback
        pd_tolerance: Relative pivot tolerance of the positive definiteness
            check
    """
    initial: float = 1e-6
    factor: float = 10.0
    max_attempts: int = 10
    degraded_threshold: float = 0.0
    min_eigenvalue: float = 1e-8
    pd_tolerance: float = 1e-12

    def __post_init__(self):
        if not self.initial > 0:
            raise InvalidInputError(f"regularization initial must be positive, got {self.initial}")
        if not self.factor > 1:
            raise InvalidInputError(f"regularization factor must be > 1, got {self.factor}")
        if self.max_attempts < 0:
            raise InvalidInputError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.degraded_threshold < 0:
            raise InvalidInputError("degraded_threshold must be non-negative")
        if not self.min_eigenvalue > 0:
            raise InvalidInputError("min_eigenvalue must be positive")
        if self.pd_tolerance < 0:
            raise InvalidInputError(f"pd_tolerance must be non-negative, got {self.pd_tolerance}")


@dataclass
class RegularizedHessian:
    """
    Positive definite replacement of a control Hessian.

    Attributes:
        matrix: Regularized Hessian
        factor: Cholesky factor as returned by ``scipy.linalg.cho_factor``
        mu: Diagonal shift that was applied (0 if none)
        clamped: True if eigenvalue clamping was needed
    """
    matrix: np.ndarray
    factor: tuple
    mu: float = 0.0
    clamped: bool = False

    def is_degraded(self, settings: RegularizationSettings) -> bool:
        return self.clamped or self.mu > settings.degraded_threshold

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        return linalg.cho_solve(self.factor, rhs)


def _try_cholesky(H: np.ndarray, tolerance: float = 0.0):
    try:
        factor = linalg.cho_factor(H, lower=True)
    except linalg.LinAlgError:
        return None
    pivots = np.diag(factor[0])
    if pivots.size and np.min(pivots) ** 2 < tolerance * max(1.0, np.max(np.abs(np.diag(H)))):
        return None
    return factor


def regularize(H: np.ndarray, settings: RegularizationSettings) -> RegularizedHessian:
    """Return a positive definite version of the symmetric matrix ``H``."""
    H = 0.5 * (H + H.T)
    factor = _try_cholesky(H, settings.pd_tolerance)
    if factor is not None:
        return RegularizedHessian(H, factor)

    eye = np.eye(H.shape[0])
    mu = settings.initial
    for _ in range(settings.max_attempts):
        shifted = H + mu * eye
        factor = _try_cholesky(shifted, settings.pd_tolerance)
        if factor is not None:
            return RegularizedHessian(shifted, factor, mu=mu)
        mu *= settings.factor

    w, V = linalg.eigh(H)
    clamped = (V * np.maximum(w, settings.min_eigenvalue)) @ V.T
    clamped = 0.5 * (clamped + clamped.T)
    factor = _try_cholesky(clamped)
    if factor is None:
        # Rounding in the reconstruction; shift by the floor once more
        clamped = clamped + settings.min_eigenvalue * eye
        factor = linalg.cho_factor(clamped, lower=True)
    return RegularizedHessian(clamped, factor, mu=mu / settings.factor if settings.max_attempts else 0.0, clamped=True)
