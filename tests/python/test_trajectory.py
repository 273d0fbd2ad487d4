"""
Tests for Trajectories and Feedback Policies.

Tests covering:
1. Trajectory creation and validation
2. Time shifting for warm starts (zero shift, integer shift, hold past the end)
3. Interpolation of samples
4. FeedbackPolicy evaluation and shifting
"""

import pytest
import numpy as np
from hypothesis import given, settings, strategies as st
from hypothesis.extra import numpy as hnp


def _trajectory(N=5, n_x=2, n_u=1, dt=0.1, t0=0.0):
    from optcon import Trajectory

    states = np.arange((N + 1) * n_x, dtype=float).reshape(N + 1, n_x)
    controls = np.arange(N * n_u, dtype=float).reshape(N, n_u) * 10.0
    return Trajectory(states=states, controls=controls, dt=dt, t0=t0)


class TestTrajectory:
    """Test Trajectory container."""

    def test_basic_creation(self):
        """Horizon and dimensions."""
        traj = _trajectory(N=5)

        assert traj.horizon == 5
        assert len(traj) == 5
        assert traj.n_states == 2
        assert traj.n_inputs == 1
        assert traj.time_horizon == pytest.approx(0.5)
        np.testing.assert_allclose(traj.times, 0.1 * np.arange(6))

    def test_1d_arrays_reshaped(self):
        """Scalar systems may pass 1-D arrays."""
        from optcon import Trajectory

        traj = Trajectory(states=np.zeros(4), controls=np.zeros(3))

        assert traj.states.shape == (4, 1)
        assert traj.controls.shape == (3, 1)

    def test_state_count_mismatch(self):
        """States must have one more row than controls."""
        from optcon import Trajectory, DimensionError

        with pytest.raises(DimensionError, match="expected 4 states"):
            Trajectory(states=np.zeros((3, 2)), controls=np.zeros((3, 1)))

    def test_empty_rejected(self):
        """At least one control step is required."""
        from optcon import Trajectory, DimensionError

        with pytest.raises(DimensionError):
            Trajectory(states=np.zeros((1, 2)), controls=np.zeros((0, 1)))

    def test_invalid_dt(self):
        """dt must be positive."""
        from optcon import Trajectory, InvalidInputError

        with pytest.raises(InvalidInputError, match="dt"):
            Trajectory(states=np.zeros((3, 1)), controls=np.zeros((2, 1)), dt=0.0)

    def test_copy_is_deep(self):
        """Copies do not share arrays."""
        traj = _trajectory()
        clone = traj.copy()
        clone.states[0, 0] = -100.0

        assert traj.states[0, 0] == 0.0

    def test_from_controls(self):
        """Open-loop rollout through the dynamics."""
        from optcon import Trajectory, point_mass_1d

        system = point_mass_1d(dt=0.1)
        traj = Trajectory.from_controls(system, np.array([0.0]), np.ones((10, 1)), dt=0.1)

        assert traj.horizon == 10
        np.testing.assert_allclose(traj.final_state, [1.0])
        np.testing.assert_allclose(traj.states[:, 0], 0.1 * np.arange(11))

    def test_zeros(self):
        """Constant trajectory at a given state."""
        from optcon import Trajectory

        traj = Trajectory.zeros(2, 1, horizon=4, dt=0.5, x0=np.array([1.0, 2.0]))

        assert traj.horizon == 4
        np.testing.assert_allclose(traj.states, np.tile([1.0, 2.0], (5, 1)))
        np.testing.assert_allclose(traj.controls, 0.0)

    def test_state_and_control_at(self):
        """Evaluation at absolute times."""
        traj = _trajectory(N=5, t0=1.0)

        np.testing.assert_allclose(traj.state_at(1.15), [3.0, 4.0])
        np.testing.assert_allclose(traj.control_at(1.15), [10.0])
        np.testing.assert_allclose(traj.control_at(1.15, interpolation="linear"), [15.0])


class TestTrajectoryShift:
    """Test warm-start time shifting."""

    def test_zero_shift_returns_copy(self):
        """Zero shift leaves the trajectory unchanged."""
        traj = _trajectory()
        shifted = traj.shift(0.0)

        assert shifted is not traj
        np.testing.assert_array_equal(shifted.states, traj.states)
        np.testing.assert_array_equal(shifted.controls, traj.controls)
        assert shifted.t0 == traj.t0

    @given(
        states=hnp.arrays(
            np.float64,
            st.tuples(st.integers(2, 12), st.integers(1, 3)),
            elements=st.floats(-1e6, 1e6),
        ),
        dt=st.floats(1e-3, 10.0),
        t0=st.floats(-100.0, 100.0),
        interpolation=st.sampled_from(["linear", "zoh"]),
    )
    @settings(max_examples=50, deadline=None)
    def test_zero_shift_idempotent(self, states, dt, t0, interpolation):
        """Shifting by zero elapsed time is the identity."""
        from optcon import Trajectory

        controls = states[:-1, :1] * 0.5
        traj = Trajectory(states=states, controls=controls, dt=dt, t0=t0)
        shifted = traj.shift(0.0, interpolation=interpolation)

        np.testing.assert_array_equal(shifted.states, traj.states)
        np.testing.assert_array_equal(shifted.controls, traj.controls)
        assert shifted.dt == traj.dt
        assert shifted.t0 == traj.t0

    @given(k=st.integers(0, 8), interpolation=st.sampled_from(["linear", "zoh"]))
    @settings(max_examples=30, deadline=None)
    def test_integer_shift_is_slicing(self, k, interpolation):
        """Shifting by k * dt drops the first k steps and holds the last sample."""
        traj = _trajectory(N=6, dt=0.1)
        shifted = traj.shift(k * 0.1, interpolation=interpolation)

        idx_x = np.minimum(np.arange(7) + k, 6)
        idx_u = np.minimum(np.arange(6) + k, 5)
        np.testing.assert_allclose(shifted.states, traj.states[idx_x])
        np.testing.assert_allclose(shifted.controls, traj.controls[idx_u])
        assert shifted.t0 == pytest.approx(k * 0.1)

    def test_fractional_shift_linear(self):
        """Half-step shift interpolates linearly."""
        traj = _trajectory(N=4, n_x=1, dt=1.0)
        shifted = traj.shift(0.5)

        np.testing.assert_allclose(shifted.states[:4, 0], [0.5, 1.5, 2.5, 3.5])
        np.testing.assert_allclose(shifted.states[-1, 0], 4.0)

    def test_fractional_shift_zoh(self):
        """Half-step shift with zero-order hold."""
        traj = _trajectory(N=4, n_x=1, dt=1.0)
        shifted = traj.shift(0.5, interpolation="zoh")

        np.testing.assert_allclose(shifted.controls[:, 0], [0.0, 10.0, 20.0, 30.0])

    def test_shift_to_new_horizon(self):
        """Horizon can grow or shrink while shifting."""
        traj = _trajectory(N=5)

        longer = traj.shift(0.1, horizon=8)
        shorter = traj.shift(0.1, horizon=2)

        assert longer.horizon == 8
        assert shorter.horizon == 2
        np.testing.assert_allclose(longer.controls[-1], traj.controls[-1])

    def test_negative_shift_rejected(self):
        """Elapsed time must be non-negative."""
        from optcon import InvalidInputError

        with pytest.raises(InvalidInputError, match="elapsed"):
            _trajectory().shift(-0.1)

    def test_unknown_interpolation(self):
        """Only linear and zoh are supported."""
        from optcon import InvalidInputError

        with pytest.raises(InvalidInputError, match="interpolation"):
            _trajectory().shift(0.05, interpolation="cubic")


class TestFeedbackPolicy:
    """Test FeedbackPolicy."""

    def _policy(self, N=4):
        from optcon import FeedbackPolicy

        gains = np.tile(np.array([[[-1.0, -2.0]]]), (N, 1, 1))
        feedforward = np.arange(N, dtype=float).reshape(N, 1)
        reference = np.zeros((N, 2))
        return FeedbackPolicy(gains, feedforward, reference, dt=0.1)

    def test_control(self):
        """Affine feedback law."""
        policy = self._policy()

        u = policy.control(np.array([1.0, 1.0]), 2)

        np.testing.assert_allclose(u, [2.0 - 3.0])

    def test_control_clamps_index(self):
        """Indices beyond the horizon use the last entry."""
        policy = self._policy()

        np.testing.assert_allclose(policy.control(np.zeros(2), 100), [3.0])
        np.testing.assert_allclose(policy.control(np.zeros(2), -3), [0.0])

    def test_dimension_validation(self):
        """Feedforward shape must match the gains."""
        from optcon import FeedbackPolicy, DimensionError

        with pytest.raises(DimensionError, match="feedforward"):
            FeedbackPolicy(np.zeros((3, 1, 2)), np.zeros((2, 1)), np.zeros((3, 2)))

        with pytest.raises(DimensionError, match="3D"):
            FeedbackPolicy(np.zeros((1, 2)), np.zeros((1, 1)), np.zeros((1, 2)))

    def test_from_trajectory(self):
        """Pure feedforward policy reproduces the trajectory controls."""
        from optcon import FeedbackPolicy

        traj = _trajectory(N=5)
        policy = FeedbackPolicy.from_trajectory(traj)

        assert policy.horizon == 5
        np.testing.assert_allclose(policy.gains, 0.0)
        for n in range(5):
            np.testing.assert_allclose(policy.control(traj.states[n] + 3.0, n), traj.controls[n])

    def test_zero_shift(self):
        """Zero shift returns an equal policy."""
        policy = self._policy()
        shifted = policy.shift(0.0)

        np.testing.assert_array_equal(shifted.gains, policy.gains)
        np.testing.assert_array_equal(shifted.feedforward, policy.feedforward)

    def test_shift(self):
        """Shift drops the first entries."""
        policy = self._policy(N=4)
        shifted = policy.shift(0.2, interpolation="zoh")

        assert shifted.horizon == 4
        assert shifted.t0 == pytest.approx(0.2)
        np.testing.assert_allclose(shifted.feedforward[:, 0], [2.0, 3.0, 3.0, 3.0])


class TestInterpolation:
    """Test interpolate_samples."""

    def test_linear(self):
        from optcon.trajectory import interpolate_samples

        values = np.array([[0.0], [1.0], [4.0]])
        out = interpolate_samples(values, 0.0, 1.0, [0.5, 1.5])

        np.testing.assert_allclose(out[:, 0], [0.5, 2.5])

    def test_clamped(self):
        from optcon.trajectory import interpolate_samples

        values = np.array([[0.0], [1.0]])
        out = interpolate_samples(values, 0.0, 1.0, [-1.0, 5.0])

        np.testing.assert_allclose(out[:, 0], [0.0, 1.0])

    def test_matrix_samples(self):
        """Works for stacked matrices (policy gains)."""
        from optcon.trajectory import interpolate_samples

        values = np.stack([np.zeros((2, 3)), np.ones((2, 3))])
        out = interpolate_samples(values, 0.0, 0.1, [0.05])

        assert out.shape == (1, 2, 3)
        np.testing.assert_allclose(out[0], 0.5)
