"""Input validation utilities."""

from typing import Optional, Tuple

import numpy as np

from ..exceptions import DimensionError, InvalidInputError


def as_vector(value, dim: Optional[int] = None, name: str = "vector") -> np.ndarray:
    """
    Convert ``value`` to a 1-D float64 array and check its length.

    Raises:
        DimensionError: if ``dim`` is given and does not match
    """
    vec = np.asarray(value, dtype=np.float64).ravel()
    if dim is not None and vec.shape != (dim,):
        raise DimensionError(f"{name} must have shape ({dim},), got {vec.shape}")
    return vec


def all_finite(*arrays) -> bool:
    """True if every given scalar/array is free of NaN and inf."""
    return all(np.all(np.isfinite(a)) for a in arrays)


def require(collaborator, name: str):
    """Fail fast on a missing collaborator reference."""
    if collaborator is None:
        raise InvalidInputError(f"{name} must not be None")
    return collaborator


def validate_trajectory_shapes(
    states: np.ndarray,
    controls: np.ndarray,
) -> Tuple[bool, str]:
    """
    Validate state/control array shapes of a trajectory.

    Returns:
        (is_valid, error_message) tuple
    """
    if states.ndim != 2:
        return False, f"states must be 2D, got shape {states.shape}"
    if controls.ndim != 2:
        return False, f"controls must be 2D, got shape {controls.shape}"
    if len(controls) < 1:
        return False, "trajectory must contain at least one control step"
    if len(states) != len(controls) + 1:
        return False, (
            f"states has {len(states)} rows but controls has {len(controls)}; "
            f"expected {len(controls) + 1} states"
        )
    return True, ""
