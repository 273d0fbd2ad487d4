"""
Tests for the NLOC backend.

Tests covering:
1. End-to-end point-mass solve (N=20, dt=0.1)
2. LQ problems converge after one step
3. Monotonic cost decrease on nonlinear problems
4. Single- and multi-threaded runs are equal
5. Termination reasons: DIVERGED, LINE_SEARCH_FAILED, ITERATION_LIMIT
6. Abort requests and time limits
7. Input validation and settings
"""

import pytest
import numpy as np


def _wrong_sign_problem():
    """Point mass whose Jacobian has the wrong input sign; no step can decrease the cost."""
    from optcon import DiscreteSystem, OptConProblem, QuadraticCost

    system = DiscreteSystem(
        lambda x, u, n: x + 0.1 * u,
        n_states=1,
        n_inputs=1,
        jacobian=lambda x, u, n: (np.eye(1), -0.1 * np.eye(1)),
    )
    cost = QuadraticCost(Q=np.eye(1), R=0.1 * np.eye(1), Qf=10.0 * np.eye(1), x_ref=np.array([1.0]))
    return OptConProblem(system, cost)


class TestPointMass:
    """End-to-end solve of the velocity-controlled point mass."""

    def test_converges(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend, TerminationReason

        backend = NLOCBackend(point_mass_problem, nloc_settings)
        result = backend.solve(np.array([0.0]))

        assert result.reason == TerminationReason.CONVERGED
        assert result.iterations <= nloc_settings.max_iterations
        assert result.reason.is_successful
        # Final state close to the target
        assert 0.5 * 10.0 * (result.final_state[0] - 1.0) ** 2 < 0.05
        assert result.cost < result.initial_cost

    def test_exactly_n_entries(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend

        result = NLOCBackend(point_mass_problem, nloc_settings).solve(np.array([0.0]))

        assert result.horizon == 20
        assert result.trajectory.states.shape == (21, 1)
        assert result.trajectory.controls.shape == (20, 1)
        assert result.policy.horizon == 20
        assert result.policy.gains.shape == (20, 1, 1)

    def test_lq_problem_solved_in_one_step(self, point_mass_problem, nloc_settings, finite_horizon_lqr):
        """On linear dynamics with quadratic cost the first full step is optimal."""
        from optcon import NLOCBackend

        result = NLOCBackend(point_mass_problem, nloc_settings).solve(np.array([0.0]))

        assert len(result.cost_history) == 2
        assert result.iteration_info[0].alpha == 1.0
        assert result.iteration_info[0].n_backtracks == 0

        # Policy gains are the LQR gains
        system, cost = point_mass_problem.dynamics, point_mass_problem.cost
        K = finite_horizon_lqr(system.A, system.B, cost.Q, cost.R, cost.Qf, 20)
        np.testing.assert_allclose(result.policy.gains, K, rtol=1e-8)

    def test_already_optimal(self, point_mass_problem, nloc_settings):
        """Starting at the target converges without any step."""
        from optcon import NLOCBackend, TerminationReason

        result = NLOCBackend(point_mass_problem, nloc_settings).solve(np.array([1.0]))

        assert result.reason == TerminationReason.CONVERGED
        assert result.iterations == 1
        assert result.cost == pytest.approx(0.0)
        np.testing.assert_allclose(result.trajectory.controls, 0.0)

    def test_policy_reproduces_trajectory(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend

        result = NLOCBackend(point_mass_problem, nloc_settings).solve(np.array([0.0]))
        traj, policy = result.trajectory, result.policy

        for n in range(traj.horizon):
            np.testing.assert_allclose(policy.control(traj.states[n], n), traj.controls[n])

    def test_time_offset_matches_reference_window(self):
        """Solving at an offset equals solving against the windowed reference."""
        from optcon import NLOCBackend, NLOptConSettings, OptConProblem, QuadraticCost, point_mass_1d
        from optcon.costs import ramp_reference

        ref = ramp_reference(np.zeros(1), 4.0 * np.ones(1), horizon=41)
        settings = NLOptConSettings(horizon=10, dt=0.1, max_iterations=10)

        def problem(x_ref):
            cost = QuadraticCost(Q=np.eye(1), R=0.01 * np.eye(1), Qf=10.0 * np.eye(1), x_ref=x_ref)
            return OptConProblem(point_mass_1d(dt=0.1), cost)

        x0 = np.array([0.5])
        shifted = NLOCBackend(problem(ref), settings).solve(x0, time_offset=5)
        windowed = NLOCBackend(problem(ref.get_window(5, 11)), settings).solve(x0)

        np.testing.assert_allclose(shifted.trajectory.states, windowed.trajectory.states, atol=1e-10)
        assert shifted.cost == pytest.approx(windowed.cost)
        assert shifted.problem_info["time_offset"] == 5
        # Final state heads for ref[15] = 1.5, not the end of the ramp
        assert abs(shifted.final_state[0] - 1.5) < 0.1

    def test_negative_time_offset(self, point_mass_problem, nloc_settings):
        from optcon import InvalidInputError, NLOCBackend

        with pytest.raises(InvalidInputError, match="time_offset"):
            NLOCBackend(point_mass_problem, nloc_settings).solve(np.array([0.0]), time_offset=-1)

    def test_summary(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend

        result = NLOCBackend(point_mass_problem, nloc_settings).solve(np.array([0.0]))
        text = result.summary()

        assert "converged" in text
        assert "Horizon:" in text
        assert result.problem_info["horizon"] == 20
        assert result.problem_info["lq_solver"] == "riccati"
        assert result.solve_time > 0


class TestNonlinear:
    """Pendulum swing to 1 rad."""

    @pytest.fixture
    def settings(self):
        from optcon import NLOptConSettings

        return NLOptConSettings(horizon=40, dt=0.05, max_iterations=50)

    def test_converges(self, pendulum_problem, settings):
        from optcon import NLOCBackend, TerminationReason

        result = NLOCBackend(pendulum_problem, settings).solve(np.zeros(2))

        assert result.reason == TerminationReason.CONVERGED
        assert result.iterations > 1
        assert abs(result.final_state[0] - 1.0) < 0.1

    def test_monotonic_cost(self, pendulum_problem, settings):
        from optcon import NLOCBackend

        result = NLOCBackend(pendulum_problem, settings).solve(np.zeros(2))
        history = np.array(result.cost_history)

        assert len(history) == len([i for i in result.iteration_info if i.accepted]) + 1
        assert np.all(np.diff(history) <= 0.0)
        assert result.cost == history[-1]

    def test_trajectory_is_consistent(self, pendulum_problem, settings):
        """Returned trajectory satisfies the dynamics from the initial state."""
        from optcon import NLOCBackend

        x0 = np.array([0.1, 0.0])
        result = NLOCBackend(pendulum_problem, settings).solve(x0)
        traj = result.trajectory

        np.testing.assert_allclose(traj.states[0], x0)
        for n in range(traj.horizon):
            np.testing.assert_allclose(
                pendulum_problem.dynamics.propagate(traj.states[n], traj.controls[n], n),
                traj.states[n + 1],
                atol=1e-12,
            )

    def test_single_and_multi_threaded_equal(self, pendulum_problem, settings):
        from optcon import NLOCBackend

        st = NLOCBackend(pendulum_problem, settings).solve(np.zeros(2))
        mt = NLOCBackend(pendulum_problem, settings.replace(n_threads=4)).solve(np.zeros(2))

        assert st.reason == mt.reason
        assert st.iterations == mt.iterations
        np.testing.assert_allclose(mt.trajectory.states, st.trajectory.states, rtol=0, atol=1e-12)
        np.testing.assert_allclose(mt.trajectory.controls, st.trajectory.controls, rtol=0, atol=1e-12)
        np.testing.assert_allclose(mt.policy.gains, st.policy.gains, rtol=0, atol=1e-12)
        assert mt.cost == pytest.approx(st.cost, abs=1e-12)
        assert mt.problem_info["n_threads"] == 4

    def test_condensed_qp_backend(self, pendulum_problem, settings):
        from optcon import NLOCBackend

        ref = NLOCBackend(pendulum_problem, settings).solve(np.zeros(2))
        result = NLOCBackend(pendulum_problem, settings.replace(lq_solver="condensed_qp")).solve(np.zeros(2))

        assert result.reason.has_solution
        assert result.problem_info["lq_solver"] == "condensed_qp"
        assert result.cost == pytest.approx(ref.cost, rel=1e-2)

    def test_control_bounds(self, settings):
        """Saturated torque stays within bounds along the whole trajectory."""
        from optcon import ControlConstraints, NLOCBackend, OptConProblem, QuadraticCost, pendulum

        cost = QuadraticCost(
            Q=np.diag([10.0, 1.0]), R=np.array([[0.01]]), Qf=np.diag([100.0, 10.0]),
            x_ref=np.array([1.0, 0.0]),
        )
        problem = OptConProblem(
            pendulum(dt=0.05), cost,
            control_constraints=ControlConstraints.from_bounds(-5.0, 5.0, n_inputs=1),
        )
        result = NLOCBackend(problem, settings).solve(np.zeros(2))

        assert result.cost <= result.initial_cost
        assert np.all(np.abs(result.trajectory.controls) <= 5.0 + 1e-9)


class TestTermination:
    """Failure and budget termination reasons."""

    def test_diverged_on_nan_cost(self, nloc_settings):
        from optcon import FunctionCost, NLOCBackend, OptConProblem, SolverState, TerminationReason, point_mass_1d

        problem = OptConProblem(point_mass_1d(dt=0.1), FunctionCost(lambda x, u, n: np.nan))
        backend = NLOCBackend(problem, nloc_settings)

        result = backend.solve(np.array([0.0]))

        assert result.reason == TerminationReason.DIVERGED
        assert result.iterations == 0
        assert not result.reason.has_solution
        assert backend.state == SolverState.DIVERGED
        assert result.horizon == 20

    def test_diverged_on_nan_jacobian(self, nloc_settings):
        """Non-finite linearization is reported, not raised."""
        from optcon import DiscreteSystem, NLOCBackend, OptConProblem, QuadraticCost, TerminationReason

        system = DiscreteSystem(
            lambda x, u, n: x + 0.1 * u,
            1, 1,
            jacobian=lambda x, u, n: (np.full((1, 1), np.nan), 0.1 * np.eye(1)),
        )
        problem = OptConProblem(system, QuadraticCost(Q=np.eye(1), R=np.eye(1), x_ref=[1.0]))

        result = NLOCBackend(problem, nloc_settings).solve(np.array([0.0]))

        assert result.reason == TerminationReason.DIVERGED
        assert result.iterations == 1
        assert "time index" in result.message
        assert np.isfinite(result.cost)

    def test_line_search_failed(self, nloc_settings):
        from optcon import NLOCBackend, SolverState, TerminationReason

        backend = NLOCBackend(_wrong_sign_problem(), nloc_settings)
        result = backend.solve(np.array([0.0]))

        assert result.reason == TerminationReason.LINE_SEARCH_FAILED
        assert result.iterations == 1
        assert not result.iteration_info[0].accepted
        assert backend.state == SolverState.DIVERGED
        # Best-so-far (initial) trajectory is returned
        np.testing.assert_allclose(result.trajectory.controls, 0.0)
        assert result.cost == result.initial_cost

    def test_accept_best_without_candidate(self, nloc_settings):
        """Accept-best still fails when no candidate is non-increasing."""
        from optcon import LineSearchSettings, NLOCBackend, TerminationReason

        settings = nloc_settings.replace(line_search=LineSearchSettings(accept_best_on_failure=True))
        result = NLOCBackend(_wrong_sign_problem(), settings).solve(np.array([0.0]))

        assert result.reason == TerminationReason.LINE_SEARCH_FAILED

    def test_iteration_limit(self, pendulum_problem):
        from optcon import NLOCBackend, NLOptConSettings, SolverState, TerminationReason

        settings = NLOptConSettings(horizon=40, dt=0.05, max_iterations=1)
        backend = NLOCBackend(pendulum_problem, settings)
        result = backend.solve(np.zeros(2))

        assert result.reason == TerminationReason.ITERATION_LIMIT
        assert result.iterations == 1
        assert not result.aborted
        assert result.reason.has_solution
        assert result.message == "iteration limit reached"
        assert backend.state == SolverState.ITERATION_LIMIT

    def test_line_search_inactive(self, point_mass_problem, nloc_settings):
        from optcon import LineSearchSettings, NLOCBackend, TerminationReason

        settings = nloc_settings.replace(line_search=LineSearchSettings(active=False))
        result = NLOCBackend(point_mass_problem, settings).solve(np.array([0.0]))

        assert result.reason == TerminationReason.CONVERGED
        assert result.iteration_info[0].alpha == 1.0


class TestCancellation:
    """Abort requests and time limits."""

    def test_abort_from_callback(self, pendulum_problem):
        from optcon import NLOCBackend, NLOptConSettings, TerminationReason

        backend = NLOCBackend(pendulum_problem, NLOptConSettings(horizon=40, dt=0.05, max_iterations=50))
        calls = []

        def callback(info, trajectory):
            calls.append(info.iteration)
            backend.request_abort()

        backend.iteration_callback = callback
        result = backend.solve(np.zeros(2))

        assert calls == [1]
        assert result.reason == TerminationReason.ITERATION_LIMIT
        assert result.aborted
        assert result.iterations == 1
        assert result.message == "abort requested"
        assert len(result.cost_history) == 2
        assert result.cost < result.initial_cost

    def test_abort_cleared_between_solves(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend, TerminationReason

        backend = NLOCBackend(point_mass_problem, nloc_settings)
        backend.request_abort()
        assert backend.abort_requested

        result = backend.solve(np.array([0.0]))

        assert result.reason == TerminationReason.CONVERGED
        assert not result.aborted
        assert not backend.abort_requested

    def test_time_limit(self, pendulum_problem):
        from optcon import NLOCBackend, NLOptConSettings, TerminationReason

        settings = NLOptConSettings(horizon=40, dt=0.05, max_iterations=50, time_limit=1e-9)
        result = NLOCBackend(pendulum_problem, settings).solve(np.zeros(2))

        assert result.reason == TerminationReason.ITERATION_LIMIT
        assert result.aborted
        assert result.iterations == 1
        assert result.message == "time limit reached"


class TestInitialization:
    """Initial guesses, warm start policies and validation."""

    def test_guess_rolled_out_from_initial_state(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend, Trajectory

        guess = Trajectory(states=np.full((21, 1), 5.0), controls=np.ones((20, 1)), dt=0.1)
        backend = NLOCBackend(point_mass_problem, nloc_settings.replace(max_iterations=1))

        result = backend.solve(np.array([0.0]), initial_guess=guess)

        np.testing.assert_allclose(result.trajectory.states[0], [0.0])
        assert result.cost_history[0] == pytest.approx(
            point_mass_problem.total_cost(Trajectory.from_controls(point_mass_problem.dynamics, [0.0], guess.controls, dt=0.1))
        )

    def test_warm_start_policy(self, point_mass_problem, nloc_settings):
        """Initial rollout uses the warm start policy."""
        from optcon import FeedbackPolicy, NLOCBackend, Trajectory

        policy = FeedbackPolicy(
            gains=-np.ones((20, 1, 1)), feedforward=np.zeros((20, 1)),
            reference_states=np.ones((20, 1)), dt=0.1,
        )
        backend = NLOCBackend(point_mass_problem, nloc_settings)
        result = backend.solve(np.array([0.0]), warm_start_policy=policy)

        # u_n = 1 - x_n
        controls = np.zeros((20, 1))
        x = np.zeros(1)
        for n in range(20):
            controls[n] = 1.0 - x
            x = x + 0.1 * controls[n]
        expected = Trajectory.from_controls(point_mass_problem.dynamics, [0.0], controls, dt=0.1)

        assert result.cost_history[0] == pytest.approx(point_mass_problem.total_cost(expected))

    def test_wrong_state_dimension(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend, DimensionError

        with pytest.raises(DimensionError, match="initial_state"):
            NLOCBackend(point_mass_problem, nloc_settings).solve(np.zeros(2))

    def test_horizon_mismatch(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend, Trajectory, DimensionError

        guess = Trajectory.zeros(1, 1, horizon=10, dt=0.1)

        with pytest.raises(DimensionError, match="horizon"):
            NLOCBackend(point_mass_problem, nloc_settings).solve(np.zeros(1), initial_guess=guess)

    def test_policy_mismatch(self, point_mass_problem, nloc_settings):
        from optcon import FeedbackPolicy, NLOCBackend, DimensionError

        policy = FeedbackPolicy(np.zeros((5, 1, 1)), np.zeros((5, 1)), np.zeros((5, 1)))

        with pytest.raises(DimensionError, match="warm start policy"):
            NLOCBackend(point_mass_problem, nloc_settings).solve(np.zeros(1), warm_start_policy=policy)

    def test_dt_mismatch(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend, Trajectory, InvalidInputError

        guess = Trajectory.zeros(1, 1, horizon=20, dt=0.2)

        with pytest.raises(InvalidInputError, match="dt"):
            NLOCBackend(point_mass_problem, nloc_settings).solve(np.zeros(1), initial_guess=guess)

    def test_missing_problem(self):
        from optcon import NLOCBackend, InvalidInputError

        with pytest.raises(InvalidInputError, match="problem"):
            NLOCBackend(None)

    def test_per_call_settings(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend

        backend = NLOCBackend(point_mass_problem, nloc_settings)
        result = backend.solve(np.array([0.0]), settings=nloc_settings.replace(horizon=7))

        assert result.horizon == 7
        assert backend.settings.horizon == 20


class TestSettings:
    """Test NLOptConSettings."""

    def test_defaults(self):
        from optcon import NLOptConSettings

        settings = NLOptConSettings()

        assert settings.horizon == 20
        assert settings.lq_solver == "riccati"
        assert not settings.is_multi_threaded
        assert settings.time_horizon == pytest.approx(2.0)

    def test_frozen(self):
        import dataclasses

        from optcon import NLOptConSettings

        with pytest.raises(dataclasses.FrozenInstanceError):
            NLOptConSettings().horizon = 5

    @pytest.mark.parametrize("kwargs", [
        {"horizon": 0},
        {"dt": 0.0},
        {"max_iterations": 0},
        {"n_threads": 0},
        {"lq_solver": "unknown"},
        {"time_limit": -1.0},
        {"min_update_norm": -1e-3},
    ])
    def test_validation(self, kwargs):
        from optcon import NLOptConSettings, InvalidInputError

        with pytest.raises(InvalidInputError):
            NLOptConSettings(**kwargs)

    def test_line_search_validation(self):
        from optcon import LineSearchSettings, InvalidInputError

        with pytest.raises(InvalidInputError, match="backtracking_factor"):
            LineSearchSettings(backtracking_factor=1.0)
        with pytest.raises(InvalidInputError, match="armijo"):
            LineSearchSettings(armijo=1.0)

    def test_replace_validates(self):
        from optcon import NLOptConSettings, InvalidInputError

        with pytest.raises(InvalidInputError):
            NLOptConSettings().replace(horizon=-1)

    def test_from_dict_aliases(self):
        from optcon import NLOptConSettings

        settings = NLOptConSettings.from_dict({
            "max_iters": 7,
            "threads": 3,
            "solver": "condensed_qp",
            "tol": 1e-6,
            "horizon": 15,
            "line_search": {"max_backtracks": 4},
            "regularization": {"initial": 1e-4},
        })

        assert settings.max_iterations == 7
        assert settings.n_threads == 3
        assert settings.lq_solver == "condensed_qp"
        assert settings.min_cost_improvement == 1e-6
        assert settings.min_update_norm == 1e-6
        assert settings.horizon == 15
        assert settings.line_search.max_backtracks == 4
        assert settings.regularization.initial == 1e-4

    def test_from_dict_unknown_key(self):
        from optcon import NLOptConSettings, InvalidInputError

        with pytest.raises(InvalidInputError, match="Unknown settings"):
            NLOptConSettings.from_dict({"step_size": 0.1})

    def test_repr(self, point_mass_problem, nloc_settings):
        from optcon import NLOCBackend

        text = repr(NLOCBackend(point_mass_problem, nloc_settings))

        assert "horizon=20" in text
        assert "n_threads=1" in text
