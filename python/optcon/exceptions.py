"""
optcon Exception Classes
========================

Custom exceptions for optcon error handling.

Only programming-contract violations (wrong dimensions, missing
collaborators, invalid settings) escape the public ``solve`` and
``run_cycle`` operations. Runtime conditions such as non-finite
evaluations or failed line searches are reported through status values.
"""

from typing import Optional


class OptconError(Exception):
    """Base exception for all optcon errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DimensionError(OptconError):
    """
    Raised when matrix/vector dimensions or horizon lengths are incompatible.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Dimension mismatch: {message}")


class InvalidInputError(OptconError):
    """
    Raised when input data or settings are invalid.

    Examples: negative horizon, missing collaborator, unknown solver name.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid input: {message}")


class EvaluationError(OptconError):
    """
    Raised when a collaborator (dynamics, sensitivity, cost) returns
    non-finite output while building the LQ sub-problem.

    The NLOC backend catches this and terminates the solve with
    ``TerminationReason.DIVERGED``.
    """

    def __init__(
        self,
        message: str = "Non-finite evaluation",
        time_index: Optional[int] = None,
    ) -> None:
        self.time_index = time_index
        if time_index is not None:
            message = f"{message} (time index {time_index})"
        super().__init__(message)
