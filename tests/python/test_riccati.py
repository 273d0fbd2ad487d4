"""
Tests for the LQ solvers.

Tests covering:
1. Riccati solution equals finite-horizon LQR on linear problems
2. Predicted cost change matches the rollout
3. Regularization of singular / indefinite control Hessians
4. Control-constrained steps (box and polytope)
5. Condensed QP solver agreement with Riccati
6. Solver selection by name
"""

import pytest
import numpy as np


def _build(problem, x0, N=20, dt=0.1):
    from optcon import Trajectory
    from optcon.lq import LQProblemBuilder

    traj = Trajectory.from_controls(problem.dynamics, x0, np.zeros((N, problem.n_inputs)), dt=dt)
    return traj, LQProblemBuilder(problem).build(traj)


def _scalar_lq(Quu, qu=1.0, N=3):
    """LQ problem with a given (possibly singular) control Hessian."""
    from optcon.lq import LinearDynamicsSegment, LQProblem, QuadraticCostSegment

    dynamics = [LinearDynamicsSegment(A=np.eye(1), B=np.zeros((1, 1)), b=np.zeros(1)) for _ in range(N)]
    costs = [
        QuadraticCostSegment(
            q=0.0, qx=np.zeros(1), qu=np.array([qu]),
            Qxx=np.eye(1), Quu=np.array([[Quu]]), Qux=np.zeros((1, 1)),
        )
        for _ in range(N)
    ]
    terminal = QuadraticCostSegment(
        q=0.0, qx=np.zeros(1), qu=np.zeros(0),
        Qxx=np.eye(1), Quu=np.zeros((0, 0)), Qux=np.zeros((0, 1)),
    )
    return LQProblem(dynamics, costs, terminal)


class TestRiccatiSolver:
    """Test the Riccati backward recursion."""

    def test_matches_finite_horizon_lqr(self, double_integrator_problem, finite_horizon_lqr):
        from optcon.lq import RiccatiSolver

        problem = double_integrator_problem
        _, lq = _build(problem, np.array([1.0, 0.0]))
        solution = RiccatiSolver().solve_lq(lq)

        cost = problem.cost
        expected = finite_horizon_lqr(problem.dynamics.A, problem.dynamics.B, cost.Q, cost.R, cost.Qf, 20)

        assert solution.gains.shape == (20, 1, 2)
        assert solution.feedforward.shape == (20, 1)
        np.testing.assert_allclose(solution.gains, expected, rtol=1e-8, atol=1e-10)

    def test_first_feedforward_is_lqr_control(self, double_integrator_problem, finite_horizon_lqr):
        """Around a zero-control nominal, k_0 = K_0 x_0."""
        from optcon.lq import RiccatiSolver

        problem = double_integrator_problem
        x0 = np.array([1.0, -0.5])
        _, lq = _build(problem, x0)
        solution = RiccatiSolver().solve_lq(lq)

        cost = problem.cost
        K = finite_horizon_lqr(problem.dynamics.A, problem.dynamics.B, cost.Q, cost.R, cost.Qf, 20)
        np.testing.assert_allclose(solution.feedforward[0], K[0] @ x0, rtol=1e-8)

    def test_cost_to_go_matches_rollout(self, double_integrator_problem):
        """For linear dynamics the full step reaches the predicted cost."""
        from optcon.lq import RiccatiSolver
        from optcon.nloc import rollout

        problem = double_integrator_problem
        traj, lq = _build(problem, np.array([1.0, 0.5]))
        solution = RiccatiSolver().solve_lq(lq)
        nominal_cost = problem.total_cost(traj)

        optimal = rollout(problem, traj, solution, 1.0)

        assert solution.expected_decrease(1.0) > 0
        assert problem.total_cost(optimal) == pytest.approx(nominal_cost + solution.expected_change(1.0), rel=1e-9)
        assert solution.cost_to_go == pytest.approx(problem.total_cost(optimal), rel=1e-9)

        # The LQ model is exact for linear dynamics and quadratic cost
        du = optimal.controls - traj.controls
        dx = optimal.states - traj.states
        np.testing.assert_allclose(lq.simulate(du), dx, atol=1e-12)
        assert lq.cost_of(dx, du) == pytest.approx(problem.total_cost(optimal), rel=1e-9)

    def test_expected_change(self):
        from optcon.lq import LQSolution

        solution = LQSolution(gains=np.zeros((1, 1, 1)), feedforward=np.zeros((1, 1)), dv1=-2.0, dv2=1.0)

        assert solution.expected_change(0.5) == pytest.approx(-0.75)
        assert solution.expected_decrease(1.0) == pytest.approx(1.0)
        assert solution.horizon == 1
        assert np.isnan(solution.cost_to_go)

    def test_value_functions(self, double_integrator_problem):
        from optcon.lq import RiccatiSolver

        _, lq = _build(double_integrator_problem, np.array([1.0, 0.0]))
        solution = RiccatiSolver().solve_lq(lq)

        assert len(solution.value_functions) == 21
        np.testing.assert_allclose(solution.value_functions[-1].S, double_integrator_problem.cost.Qf)
        for vf in solution.value_functions:
            np.testing.assert_allclose(vf.S, vf.S.T)
            assert np.all(np.linalg.eigvalsh(vf.S) > 0)

    def test_defect_is_closed(self, double_integrator_problem):
        """A full step on an inconsistent linear nominal removes the defects."""
        from optcon.lq import LQProblemBuilder, RiccatiSolver
        from optcon.nloc import rollout

        problem = double_integrator_problem
        traj, _ = _build(problem, np.array([1.0, 0.0]))
        traj.states[1:] += 0.3
        lq = LQProblemBuilder(problem).build(traj)
        solution = RiccatiSolver().solve_lq(lq)

        new = rollout(problem, traj, solution, 1.0)

        assert solution.cost_to_go == pytest.approx(problem.total_cost(new), rel=1e-9)


class TestRegularization:
    """Test regularization of the control Hessian."""

    def test_singular_hessian(self):
        """Zero Quu is regularized, finite, and reported as degraded."""
        from optcon import LQStatus
        from optcon.lq import RiccatiSolver

        solution = RiccatiSolver().solve_lq(_scalar_lq(Quu=0.0))

        assert np.all(np.isfinite(solution.gains))
        assert np.all(np.isfinite(solution.feedforward))
        assert solution.status == LQStatus.DEGRADED
        assert solution.max_regularization > 0

    def test_near_singular_hessian(self):
        """A Cholesky factor with a vanishing pivot is not accepted as is."""
        from optcon import LQStatus
        from optcon.lq import RiccatiSolver

        solution = RiccatiSolver().solve_lq(_scalar_lq(Quu=1e-18))

        assert solution.status == LQStatus.DEGRADED
        assert solution.max_regularization == pytest.approx(1e-6)
        assert np.all(np.isfinite(solution.feedforward))
        # k = -qu / (Quu + mu) instead of -qu / Quu = -1e18
        np.testing.assert_allclose(solution.feedforward[:, 0], -1e6, rtol=1e-9)

    def test_pd_tolerance(self):
        from optcon import RegularizationSettings, InvalidInputError
        from optcon.lq import regularize

        H = np.diag([1.0, 1e-14])

        strict = regularize(H, RegularizationSettings())
        assert strict.mu == pytest.approx(1e-6)
        assert not strict.clamped

        relaxed = regularize(H, RegularizationSettings(pd_tolerance=0.0))
        assert relaxed.mu == 0.0
        np.testing.assert_allclose(relaxed.matrix, H)

        with pytest.raises(InvalidInputError, match="pd_tolerance"):
            RegularizationSettings(pd_tolerance=-1.0)

    def test_indefinite_hessian(self):
        from optcon import LQStatus
        from optcon.lq import RiccatiSolver

        solution = RiccatiSolver().solve_lq(_scalar_lq(Quu=-1.0))

        assert solution.status == LQStatus.DEGRADED
        assert solution.max_regularization == pytest.approx(10.0)
        assert np.all(np.isfinite(solution.feedforward))
        # Shifted Hessian is 9, so k = -1/9
        np.testing.assert_allclose(solution.feedforward[:, 0], -1.0 / 9.0)

    def test_positive_definite_untouched(self):
        from optcon import LQStatus
        from optcon.lq import RiccatiSolver

        solution = RiccatiSolver().solve_lq(_scalar_lq(Quu=2.0))

        assert solution.status == LQStatus.OK
        assert solution.max_regularization == 0.0
        np.testing.assert_allclose(solution.feedforward[:, 0], -0.5)

    def test_threshold(self):
        """Small shifts below the threshold are not degraded."""
        from optcon import LQStatus, RegularizationSettings
        from optcon.lq import RiccatiSolver

        settings = RegularizationSettings(degraded_threshold=1e-3)
        solution = RiccatiSolver(settings).solve_lq(_scalar_lq(Quu=0.0))

        assert solution.status == LQStatus.OK
        assert solution.max_regularization == pytest.approx(1e-6)

    def test_eigenvalue_clamping(self):
        """Without shift attempts the clamping fallback is used."""
        from optcon import RegularizationSettings
        from optcon.lq import regularize

        settings = RegularizationSettings(max_attempts=0)
        reg = regularize(np.array([[1.0, 0.0], [0.0, -3.0]]), settings)

        assert reg.clamped
        assert reg.is_degraded(settings)
        assert np.all(np.linalg.eigvalsh(reg.matrix) > 0)
        np.testing.assert_allclose(reg.solve(np.array([1.0, 0.0])), [1.0, 0.0])

    def test_settings_validation(self):
        from optcon import RegularizationSettings, InvalidInputError

        with pytest.raises(InvalidInputError, match="factor"):
            RegularizationSettings(factor=1.0)
        with pytest.raises(InvalidInputError, match="initial"):
            RegularizationSettings(initial=0.0)


class TestConstrainedRiccati:
    """Control-constrained LQ steps."""

    def _problem(self, control_constraints):
        from optcon import OptConProblem, QuadraticCost, double_integrator

        cost = QuadraticCost(Q=np.diag([10.0, 1.0]), R=np.array([[0.1]]), Qf=np.diag([100.0, 10.0]))
        return OptConProblem(double_integrator(dt=0.1), cost, control_constraints=control_constraints)

    def test_box_respected(self):
        from optcon import ControlConstraints
        from optcon.lq import RiccatiSolver

        problem = self._problem(ControlConstraints.from_bounds(-0.5, 0.5, n_inputs=1))
        _, lq = _build(problem, np.array([1.0, 0.0]))
        solution = RiccatiSolver().solve_lq(lq)

        assert solution.n_constrained > 0
        assert np.all(solution.feedforward <= 0.5 + 1e-6)
        assert np.all(solution.feedforward >= -0.5 - 1e-6)
        # Saturated first step carries no feedback
        np.testing.assert_allclose(solution.feedforward[0], [-0.5], atol=1e-6)
        np.testing.assert_allclose(solution.gains[0], 0.0, atol=1e-9)

    def test_polytope_respected(self):
        from optcon import ControlConstraints, PolytopeConstraints
        from optcon.lq import RiccatiSolver

        poly = PolytopeConstraints(np.array([[1.0], [-1.0]]), np.array([0.3, 0.3]))
        problem = self._problem(ControlConstraints(polytope=poly))
        _, lq = _build(problem, np.array([-1.0, 0.0]))
        solution = RiccatiSolver().solve_lq(lq)

        assert solution.n_constrained > 0
        assert np.all(np.abs(solution.feedforward) <= 0.3 + 1e-6)

    def test_inactive_constraints_match_unconstrained(self):
        from optcon import ControlConstraints
        from optcon.lq import LQProblem, RiccatiSolver

        problem = self._problem(ControlConstraints.from_bounds(-100.0, 100.0, n_inputs=1))
        _, lq = _build(problem, np.array([0.1, 0.0]))
        constrained = RiccatiSolver().solve_lq(lq)
        free = RiccatiSolver().solve_lq(LQProblem(lq.dynamics, lq.costs, lq.terminal))

        assert constrained.n_constrained == 0
        np.testing.assert_allclose(constrained.feedforward, free.feedforward)
        np.testing.assert_allclose(constrained.gains, free.gains)


class TestCondensedQPSolver:
    """Test the condensed QP LQ backend."""

    def test_condense_shapes(self, double_integrator_problem):
        from optcon.lq import condense

        _, lq = _build(double_integrator_problem, np.array([1.0, 0.0]), N=5)
        P, q, G, g = condense(lq)

        assert P.shape == (5, 5)
        assert q.shape == (5,)
        assert G.shape == (12, 5)
        np.testing.assert_allclose(P, P.T)
        np.testing.assert_allclose(g, 0.0, atol=1e-14)

    def test_matches_riccati_unconstrained(self, double_integrator_problem):
        from optcon.lq import CondensedQPSolver, RiccatiSolver

        _, lq = _build(double_integrator_problem, np.array([1.0, -0.5]))
        riccati = RiccatiSolver().solve_lq(lq)
        condensed = CondensedQPSolver().solve_lq(lq)

        np.testing.assert_allclose(condensed.gains, riccati.gains)
        np.testing.assert_allclose(condensed.feedforward, riccati.feedforward, atol=1e-8)
        assert condensed.expected_change(1.0) == pytest.approx(riccati.expected_change(1.0), rel=1e-8)

    def test_box_respected(self):
        from optcon import ControlConstraints, OptConProblem, QuadraticCost, double_integrator
        from optcon.lq import CondensedQPSolver
        from optcon.nloc import rollout

        cost = QuadraticCost(Q=np.diag([10.0, 1.0]), R=np.array([[0.1]]), Qf=np.diag([100.0, 10.0]))
        problem = OptConProblem(
            double_integrator(dt=0.1), cost,
            control_constraints=ControlConstraints.from_bounds(-0.5, 0.5, n_inputs=1),
        )
        traj, lq = _build(problem, np.array([1.0, 0.0]), N=10)
        solution = CondensedQPSolver().solve_lq(lq)
        new = rollout(problem, traj, solution, 1.0)

        assert np.all(np.abs(new.controls) <= 0.5 + 1e-6)
        assert problem.total_cost(new) < problem.total_cost(traj)


class TestSolverSelection:
    """Test make_lq_solver."""

    def test_by_name(self):
        from optcon.lq import CondensedQPSolver, RiccatiSolver, make_lq_solver

        assert isinstance(make_lq_solver("riccati"), RiccatiSolver)
        assert isinstance(make_lq_solver("condensed_qp"), CondensedQPSolver)

    def test_unknown_name(self):
        from optcon import InvalidInputError
        from optcon.lq import make_lq_solver

        with pytest.raises(InvalidInputError, match="Unknown LQ solver"):
            make_lq_solver("hpipm")
