"""
System Dynamics Models
======================

Capability interfaces and concrete dynamics used by the NLOC engine.

Every system is a ``DiscreteDynamics``: it propagates a state one time
index forward given a control. Systems that can provide their own Jacobians
additionally implement ``Linearizable``. Continuous-time models are made
discrete by composition with ``DiscretizedSystem``.

Supported models:
- Linear Time-Invariant (LTI): x_{n+1} = A x_n + B u_n
- General discrete: x_{n+1} = f(x_n, u_n, n)
- Continuous: dx/dt = f(x, u, t), discretized with sub-stepping
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from .integration import IntegrationType, integrate


class DiscreteDynamics(ABC):
    """State transition x_{n+1} = f(x_n, u_n, n)."""

    @property
    @abstractmethod
    def n_states(self) -> int:
        """Number of states."""

    @property
    @abstractmethod
    def n_inputs(self) -> int:
        """Number of inputs."""

    @abstractmethod
    def propagate(self, state: np.ndarray, control: np.ndarray, n: int) -> np.ndarray:
        """Propagate ``state`` one step under ``control`` at time index ``n``."""

    def simulate(self, x0: np.ndarray, u_sequence: np.ndarray) -> np.ndarray:
        """
        Simulate system over a sequence of inputs.

        Args:
            x0: Initial state (n_x,)
            u_sequence: Control sequence (N, n_u)

        Returns:
            State trajectory (N+1, n_x) including initial state
        """
        x0 = np.asarray(x0, dtype=np.float64)
        u_sequence = np.asarray(u_sequence, dtype=np.float64)

        N = len(u_sequence)
        trajectory = np.zeros((N + 1, self.n_states))
        trajectory[0] = x0

        for k in range(N):
            trajectory[k + 1] = self.propagate(trajectory[k], u_sequence[k], k)

        return trajectory


class Linearizable(ABC):
    """Capability: analytic Jacobians of the discrete dynamics."""

    @property
    def has_jacobians(self) -> bool:
        return True

    @abstractmethod
    def linearize(
        self, state: np.ndarray, control: np.ndarray, n: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return (A, B) = (df/dx, df/du) at the given point."""


@dataclass
class LinearSystem(DiscreteDynamics, Linearizable):
    """
    Linear Time-Invariant (LTI) discrete-time system.

    Dynamics: x_{n+1} = A @ x_n + B @ u_n (+ c)
    Output:   y_n = C @ x_n + D @ u_n (optional)

    Args:
        A: State transition matrix (n_x, n_x)
        B: Input matrix (n_x, n_u)
        C: Output matrix (n_y, n_x), optional
        D: Feedthrough matrix (n_y, n_u), optional
        c: Constant offset (n_x,), optional
        dt: Sampling time

    Example:
        >>> dt = 0.1
        >>> A = np.array([[1, dt], [0, 1]])
        >>> B = np.array([[0.5*dt**2], [dt]])
        >>> system = LinearSystem(A, B, dt=dt)
        >>> x_next = system.propagate(np.array([0, 1]), np.array([0.5]), 0)
    """
    A: np.ndarray
    B: np.ndarray
    C: Optional[np.ndarray] = None
    D: Optional[np.ndarray] = None
    c: Optional[np.ndarray] = None
    dt: float = 1.0

    def __post_init__(self):
        """Validate dimensions."""
        self.A = np.asarray(self.A, dtype=np.float64)
        self.B = np.asarray(self.B, dtype=np.float64)

        if self.A.ndim != 2:
            raise ValueError(f"A must be 2D, got shape {self.A.shape}")
        if self.B.ndim != 2:
            raise ValueError(f"B must be 2D, got shape {self.B.shape}")

        n_x = self.A.shape[0]
        if self.A.shape != (n_x, n_x):
            raise ValueError(f"A must be square, got shape {self.A.shape}")
        if self.B.shape[0] != n_x:
            raise ValueError(
                f"B rows ({self.B.shape[0]}) must match A ({n_x})"
            )

        if self.C is not None:
            self.C = np.asarray(self.C, dtype=np.float64)
            if self.C.shape[1] != n_x:
                raise ValueError(f"C columns must match state dim {n_x}")

        if self.D is not None:
            self.D = np.asarray(self.D, dtype=np.float64)

        if self.c is not None:
            self.c = np.asarray(self.c, dtype=np.float64)
            if self.c.shape != (n_x,):
                raise ValueError(f"c shape {self.c.shape} must match A ({n_x},)")

    @property
    def n_states(self) -> int:
        return self.A.shape[0]

    @property
    def n_inputs(self) -> int:
        return self.B.shape[1]

    @property
    def n_outputs(self) -> int:
        """Number of outputs."""
        if self.C is not None:
            return self.C.shape[0]
        return self.n_states

    def propagate(self, state: np.ndarray, control: np.ndarray, n: int = 0) -> np.ndarray:
        x_next = self.A @ state + self.B @ control
        if self.c is not None:
            x_next = x_next + self.c
        return x_next

    def linearize(self, state, control, n=0):
        return self.A, self.B

    def output(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        """Compute system output y = C x + D u."""
        if self.C is None:
            return x

        y = self.C @ x
        if self.D is not None:
            y = y + self.D @ u
        return y

    def is_stable(self) -> bool:
        """Check if system is stable (all eigenvalues inside unit circle)."""
        eigenvalues = np.linalg.eigvals(self.A)
        return bool(np.all(np.abs(eigenvalues) < 1.0))

    def is_controllable(self) -> bool:
        """Check if system is controllable (Kalman rank condition)."""
        n = self.n_states
        blocks = [self.B]
        for _ in range(1, n):
            blocks.append(self.A @ blocks[-1])
        return bool(np.linalg.matrix_rank(np.hstack(blocks)) == n)

    @classmethod
    def from_continuous(
        cls,
        Ac: np.ndarray,
        Bc: np.ndarray,
        dt: float,
        method: str = "zoh",
    ) -> "LinearSystem":
        """
        Create discrete system from continuous-time dynamics.

        Continuous: dx/dt = Ac @ x + Bc @ u
        Discrete:   x_{n+1} = A @ x_n + B @ u_n

        Args:
            Ac: Continuous state matrix
            Bc: Continuous input matrix
            dt: Sampling time
            method: Discretization method ('zoh', 'euler', 'tustin')
        """
        A, B = discretize_linear(Ac, Bc, dt, method)
        return cls(A, B, dt=dt)


def discretize_linear(
    Ac: np.ndarray,
    Bc: np.ndarray,
    dt: float,
    method: str = "zoh",
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Discretize a continuous linear(ized) model over one interval.

    Args:
        Ac: Continuous state matrix (n_x, n_x)
        Bc: Continuous input matrix (n_x, n_u)
        dt: Interval length
        method: 'zoh' (matrix exponential), 'euler' or 'tustin'

    Returns:
        (A, B) discrete matrices
    """
    Ac = np.asarray(Ac, dtype=np.float64)
    Bc = np.asarray(Bc, dtype=np.float64)
    n = Ac.shape[0]

    if method == "euler":
        A = np.eye(n) + Ac * dt
        B = Bc * dt

    elif method == "zoh":
        from scipy.linalg import expm

        m = Bc.shape[1]

        # expm of the augmented matrix [Ac, Bc; 0, 0] * dt
        M = np.zeros((n + m, n + m))
        M[:n, :n] = Ac * dt
        M[:n, n:] = Bc * dt

        eM = expm(M)
        A = eM[:n, :n]
        B = eM[:n, n:]

    elif method == "tustin":
        I = np.eye(n)
        inv_term = np.linalg.inv(I - (dt / 2) * Ac)
        A = inv_term @ (I + (dt / 2) * Ac)
        B = inv_term @ Bc * dt

    else:
        raise ValueError(f"Unknown method '{method}'")

    return A, B


class DiscreteSystem(DiscreteDynamics, Linearizable):
    """
    General nonlinear discrete-time system defined by callables.

    Args:
        f: Transition ``f(x, u, n) -> x_next``
        n_states: State dimension
        n_inputs: Input dimension
        jacobian: Optional ``jacobian(x, u, n) -> (A, B)``
        dt: Sampling time

    Example:
        >>> system = DiscreteSystem(lambda x, u, n: x + 0.1 * u, 1, 1,
        ...                         jacobian=lambda x, u, n: (np.eye(1), 0.1 * np.eye(1)))
    """

    def __init__(
        self,
        f: Callable[[np.ndarray, np.ndarray, int], np.ndarray],
        n_states: int,
        n_inputs: int,
        jacobian: Optional[Callable[[np.ndarray, np.ndarray, int], Tuple[np.ndarray, np.ndarray]]] = None,
        dt: float = 1.0,
    ) -> None:
        if n_states < 1 or n_inputs < 1:
            raise ValueError("n_states and n_inputs must be positive")
        self._f = f
        self._n_states = n_states
        self._n_inputs = n_inputs
        self._jacobian = jacobian
        self.dt = dt

    @property
    def n_states(self) -> int:
        return self._n_states

    @property
    def n_inputs(self) -> int:
        return self._n_inputs

    @property
    def has_jacobians(self) -> bool:
        return self._jacobian is not None

    def propagate(self, state, control, n=0):
        return np.asarray(self._f(state, control, n), dtype=np.float64)

    def linearize(self, state, control, n=0):
        if self._jacobian is None:
            raise NotImplementedError("no analytic Jacobian given for this system")
        A, B = self._jacobian(state, control, n)
        return np.asarray(A, dtype=np.float64), np.asarray(B, dtype=np.float64)


class ContinuousSystem:
    """
    Continuous-time system dx/dt = f(x, u, t).

    Args:
        f: Vector field ``f(x, u, t)``
        n_states: State dimension
        n_inputs: Input dimension
        jacobian: Optional ``jacobian(x, u, t) -> (df/dx, df/du)``
    """

    def __init__(
        self,
        f: Callable[[np.ndarray, np.ndarray, float], np.ndarray],
        n_states: int,
        n_inputs: int,
        jacobian: Optional[Callable[[np.ndarray, np.ndarray, float], Tuple[np.ndarray, np.ndarray]]] = None,
    ) -> None:
        if n_states < 1 or n_inputs < 1:
            raise ValueError("n_states and n_inputs must be positive")
        self._f = f
        self.n_states = n_states
        self.n_inputs = n_inputs
        self._jacobian = jacobian

    @property
    def has_jacobians(self) -> bool:
        return self._jacobian is not None

    def derivative(self, x: np.ndarray, u: np.ndarray, t: float) -> np.ndarray:
        return np.asarray(self._f(x, u, t), dtype=np.float64)

    def jacobian(self, x: np.ndarray, u: np.ndarray, t: float) -> Tuple[np.ndarray, np.ndarray]:
        if self._jacobian is None:
            raise NotImplementedError("no analytic Jacobian given for this system")
        Ac, Bc = self._jacobian(x, u, t)
        return np.asarray(Ac, dtype=np.float64), np.asarray(Bc, dtype=np.float64)

    def discretize(
        self,
        dt: float,
        n_substeps: int = 1,
        method: IntegrationType = IntegrationType.RK4,
    ) -> "DiscretizedSystem":
        return DiscretizedSystem(self, dt, n_substeps=n_substeps, method=method)


class DiscretizedSystem(DiscreteDynamics):
    """
    Discrete view of a ``ContinuousSystem`` sampled every ``dt`` seconds,
    integrated with ``n_substeps`` fixed steps per interval.
    """

    def __init__(
        self,
        system: ContinuousSystem,
        dt: float,
        n_substeps: int = 1,
        method: IntegrationType = IntegrationType.RK4,
        t0: float = 0.0,
    ) -> None:
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        if n_substeps < 1:
            raise ValueError(f"n_substeps must be >= 1, got {n_substeps}")
        self.system = system
        self.dt = dt
        self.n_substeps = n_substeps
        self.method = IntegrationType(method)
        self.t0 = t0

    @property
    def n_states(self) -> int:
        return self.system.n_states

    @property
    def n_inputs(self) -> int:
        return self.system.n_inputs

    def time_of(self, n: int) -> float:
        return self.t0 + n * self.dt

    def propagate(self, state, control, n=0):
        return integrate(
            self.system.derivative,
            state,
            np.asarray(control, dtype=np.float64),
            self.time_of(n),
            self.dt,
            n_substeps=self.n_substeps,
            method=self.method,
        )


def double_integrator(dt: float = 0.1) -> LinearSystem:
    """
    Double integrator (point mass) system.

    States: [position, velocity]
    Input: acceleration
    """
    A = np.array([
        [1, dt],
        [0, 1]
    ])
    B = np.array([
        [0.5 * dt**2],
        [dt]
    ])
    return LinearSystem(A, B, dt=dt)


def point_mass_1d(dt: float = 0.1) -> LinearSystem:
    """
    Velocity-controlled point mass: x_{n+1} = x_n + v_n * dt.

    State: [position]
    Input: velocity
    """
    return LinearSystem(np.eye(1), np.array([[dt]]), dt=dt)


def pendulum(
    dt: float = 0.05,
    mass: float = 1.0,
    length: float = 1.0,
    damping: float = 0.1,
    gravity: float = 9.81,
    n_substeps: int = 2,
) -> DiscretizedSystem:
    """
    Damped pendulum driven by a torque.

    States: [angle, angular_velocity] (angle 0 hangs down)
    Input: torque

    Returns:
        DiscretizedSystem with analytic continuous Jacobians
    """
    inertia = mass * length**2

    def f(x, u, t):
        return np.array([
            x[1],
            -gravity / length * np.sin(x[0]) - damping * x[1] + u[0] / inertia,
        ])

    def jacobian(x, u, t):
        Ac = np.array([
            [0.0, 1.0],
            [-gravity / length * np.cos(x[0]), -damping],
        ])
        Bc = np.array([[0.0], [1.0 / inertia]])
        return Ac, Bc

    system = ContinuousSystem(f, n_states=2, n_inputs=1, jacobian=jacobian)
    return system.discretize(dt, n_substeps=n_substeps)
