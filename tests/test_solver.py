# test_solver.py
"""
Tests for the solver: configuration state machine, initial guesses, backend
selection and the end-to-end point-to-point scenarios.
"""

import numpy as np
import pytest

from kinetolab import (
    ConfigurationError,
    DataIntegrityError,
    Iterate,
    NotInitializedError,
    Problem,
    Solution,
    SolveError,
    Solver,
    SolverState,
    StateType,
    UserFunctionError,
    VariableCategory,
)
from kinetolab.autodiff import DifferentiableFunctionAdapter
from kinetolab.backends import (
    CyipoptBackend,
    ScipySLSQPBackend,
    ScipyTrustConstrBackend,
    _IpoptCallbacks,
    create_backend,
)
from kinetolab.utils.constants import DEFAULT_RANDOM_RANGE


def build_point_to_point_problem(initialize: bool = True) -> Problem:
    problem = Problem("Point to point")
    problem.set_time_bounds(0.0, 1.0)
    problem.add_state("x", StateType.COORDINATE, bounds=(-10, 10), initial_bounds=0.0)
    problem.add_control("u", bounds=(-50, 50))
    problem.set_dynamics_function(lambda t, x, u, p: u)
    problem.set_endpoint_cost_function(lambda tf, xf, p: (xf[0] - 5) ** 2)
    if initialize:
        problem.initialize()
    return problem


def build_mixed_bounds_problem() -> Problem:
    problem = Problem("Mixed bounds")
    problem.set_time_bounds(0.0, (2.0, 4.0))
    problem.add_state("lower_only", bounds=(2.0, None))
    problem.add_state("upper_only", bounds=(None, 3.0))
    problem.add_state("free")
    problem.add_control("u", bounds=(-1.0, 5.0))
    problem.add_parameter("k")
    problem.set_dynamics_function(lambda t, x, u, p: [u[0], u[0], p[0]])
    problem.initialize()
    return problem


def configured_solver(problem: Problem, num_mesh_points: int = 10) -> Solver:
    solver = Solver(problem)
    solver.set_num_mesh_points(num_mesh_points)
    solver.set_transcription_scheme("trapezoidal")
    return solver


class TestSolverConfiguration:
    def test_requires_initialized_problem(self):
        with pytest.raises(NotInitializedError):
            Solver(build_point_to_point_problem(initialize=False))

    def test_state_machine(self):
        solver = Solver(build_point_to_point_problem())
        assert solver.state is SolverState.UNCONFIGURED

        solver.set_num_mesh_points(5)
        assert solver.state is SolverState.UNCONFIGURED

        solver.set_transcription_scheme("trapezoidal")
        assert solver.state is SolverState.CONFIGURED
        assert solver.is_configured()

    def test_getters_reflect_configuration(self):
        solver = configured_solver(build_point_to_point_problem(), 7)
        solver.set_optim_solver("scipy-slsqp")
        solver.set_plugin_options({"tol": 1e-10})
        solver.set_solver_options({"maxiter": 50})

        assert solver.get_num_mesh_points() == 7
        np.testing.assert_allclose(solver.get_mesh(), np.linspace(0, 1, 7))
        assert solver.get_transcription_scheme() == "trapezoidal"
        assert solver.get_optim_solver() == "scipy-slsqp"
        assert solver.get_plugin_options() == {"tol": 1e-10}
        assert solver.get_solver_options() == {"maxiter": 50}

    def test_default_backend_is_ipopt(self):
        assert Solver(build_point_to_point_problem()).get_optim_solver() == "ipopt"

    def test_non_uniform_mesh(self):
        solver = Solver(build_point_to_point_problem())
        solver.set_mesh([0.0, 0.1, 0.5, 1.0])
        assert solver.get_num_mesh_points() == 4

    @pytest.mark.parametrize("num_mesh_points", [0, 1, 2.5, "10"])
    def test_invalid_mesh_point_count(self, num_mesh_points):
        with pytest.raises(ConfigurationError):
            Solver(build_point_to_point_problem()).set_num_mesh_points(num_mesh_points)

    def test_unknown_scheme(self):
        with pytest.raises(ConfigurationError, match="Unknown transcription scheme"):
            Solver(build_point_to_point_problem()).set_transcription_scheme("euler")

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="Unknown NLP backend"):
            Solver(build_point_to_point_problem()).set_optim_solver("snopt")

    def test_options_must_be_dicts(self):
        solver = Solver(build_point_to_point_problem())
        with pytest.raises(ConfigurationError):
            solver.set_solver_options([("max_iter", 10)])
        with pytest.raises(ConfigurationError):
            solver.set_plugin_options({1: "x"})

    def test_solve_before_configuration(self):
        solver = Solver(build_point_to_point_problem())
        solver.set_num_mesh_points(10)
        with pytest.raises(SolveError, match="Cannot solve"):
            solver.solve()

    def test_guess_before_configuration(self):
        with pytest.raises(ConfigurationError):
            Solver(build_point_to_point_problem()).create_initial_guess_from_bounds()


class TestInitialGuesses:
    def test_guess_from_bounds_is_deterministic(self):
        solver = configured_solver(build_mixed_bounds_problem(), 5)
        first = solver.create_initial_guess_from_bounds()
        second = solver.create_initial_guess_from_bounds()

        for category in VariableCategory:
            np.testing.assert_array_equal(first.variables[category], second.variables[category])

    def test_guess_from_bounds_values(self):
        guess = configured_solver(build_mixed_bounds_problem(), 5).create_initial_guess_from_bounds()

        assert guess.initial_time == 0.0
        assert guess.final_time == 3.0
        np.testing.assert_array_equal(guess.get_state("lower_only"), 2.0)
        np.testing.assert_array_equal(guess.get_state("upper_only"), 3.0)
        np.testing.assert_array_equal(guess.get_state("free"), 0.0)
        np.testing.assert_array_equal(guess.get_control("u"), 2.0)
        assert guess.get_parameter("k") == 0.0
        np.testing.assert_allclose(guess.times, np.linspace(0.0, 3.0, 5))

    def test_random_iterate_is_reproducible(self):
        solver = configured_solver(build_mixed_bounds_problem(), 5)
        first = solver.create_random_iterate_within_bounds(seed=42)
        second = solver.create_random_iterate_within_bounds(seed=42)
        other = solver.create_random_iterate_within_bounds(seed=7)

        np.testing.assert_array_equal(first.states, second.states)
        np.testing.assert_array_equal(first.controls, second.controls)
        assert not np.array_equal(first.states, other.states)

    def test_random_iterate_respects_bounds(self):
        iterate = configured_solver(build_mixed_bounds_problem(), 20).create_random_iterate_within_bounds(
            seed=3
        )

        assert iterate.initial_time == 0.0
        assert 2.0 <= iterate.final_time <= 4.0
        lower_only = iterate.get_state("lower_only")
        upper_only = iterate.get_state("upper_only")
        assert np.all((lower_only >= 2.0) & (lower_only <= 2.0 + DEFAULT_RANDOM_RANGE))
        assert np.all((upper_only <= 3.0) & (upper_only >= 3.0 - DEFAULT_RANDOM_RANGE))
        assert np.all(np.abs(iterate.get_state("free")) <= DEFAULT_RANDOM_RANGE)
        assert np.all((iterate.controls >= -1.0) & (iterate.controls <= 5.0))


class TestEndToEnd:
    def test_point_to_point_with_ipopt(self):
        solver = configured_solver(build_point_to_point_problem(), 10)
        solution = solver.solve()

        assert isinstance(solution, Solution)
        assert solution.success, solution.status
        assert solution.get_state("x")[0] == pytest.approx(0.0, abs=1e-8)
        assert solution.get_state("x")[-1] == pytest.approx(5.0, abs=1e-5)
        assert solution.objective == pytest.approx(0.0, abs=1e-8)
        assert solution.num_iterations > 0
        assert solver.state is SolverState.SOLVED

    def test_round_trip_shape_and_names(self):
        problem = build_point_to_point_problem()
        solution = configured_solver(problem, 10).solve()

        assert solution.states.shape == (1, 10)
        assert solution.controls.shape == (1, 10)
        assert solution.state_names == problem.get_state_names()
        assert solution.control_names == problem.get_control_names()
        np.testing.assert_allclose(solution.times, np.linspace(0.0, 1.0, 10))

    def test_trajectory_satisfies_dynamics(self):
        solution = configured_solver(build_point_to_point_problem(), 10).solve()

        x = solution.get_state("x")
        u = solution.get_control("u")
        h = np.diff(solution.times)
        np.testing.assert_allclose(np.diff(x), 0.5 * h * (u[:-1] + u[1:]), atol=1e-7)

    def test_point_to_point_with_slsqp(self):
        solver = configured_solver(build_point_to_point_problem(), 10)
        solver.set_optim_solver("scipy-slsqp")
        solver.set_solver_options({"ftol": 1e-12})
        solution = solver.solve()

        assert solution.success, solution.status
        assert solution.get_state("x")[-1] == pytest.approx(5.0, abs=1e-4)

    def test_guess_on_other_mesh_is_resampled(self):
        coarse = configured_solver(build_point_to_point_problem(), 4)
        guess = coarse.create_random_iterate_within_bounds(seed=1)

        solution = configured_solver(build_point_to_point_problem(), 10).solve(guess)

        assert solution.success, solution.status
        assert solution.states.shape == (1, 10)

    def test_guess_with_same_count_on_other_mesh_is_resampled(self):
        solver = configured_solver(build_point_to_point_problem(), 3)
        transcription = solver._transcription()
        guess = Iterate(
            variables={
                VariableCategory.STATES: np.array([[0.0, 1.0, 5.0]]),
                VariableCategory.CONTROLS: np.full((1, 3), 5.0),
            },
            times=np.array([0.0, 0.2, 1.0]),
            state_names=["x"],
            control_names=["u"],
        )

        on_mesh = solver._guess_on_mesh(guess, transcription)

        np.testing.assert_allclose(on_mesh.times, [0.0, 0.5, 1.0])
        np.testing.assert_allclose(on_mesh.get_state("x"), [0.0, 2.5, 5.0])

    def test_guess_on_configured_mesh_is_used_as_is(self):
        solver = configured_solver(build_point_to_point_problem(), 4)
        guess = solver.create_initial_guess_from_bounds()
        assert solver._guess_on_mesh(guess, solver._transcription()) is guess

    def test_backend_failure_returns_unsuccessful_solution(self):
        solver = configured_solver(build_point_to_point_problem(), 10)
        solver.set_solver_options({"max_iter": 0})
        solution = solver.solve()

        assert not solution.success
        assert solution.status
        assert solution.states.shape == (1, 10)
        assert solver.state is SolverState.FAILED

    def test_backend_exception_becomes_solve_error(self):
        solver = configured_solver(build_point_to_point_problem(), 5)
        solver.set_optim_solver("scipy-slsqp")
        solver.set_plugin_options({"not_a_minimize_argument": True})

        with pytest.raises(SolveError, match="scipy-slsqp"):
            solver.solve()
        assert solver.state is SolverState.FAILED

    def test_user_callback_error_propagates(self):
        def dynamics(t, x, u, p):
            raise ZeroDivisionError("inertia is zero")

        problem = Problem("Broken dynamics")
        problem.add_state("x")
        problem.set_dynamics_function(dynamics)
        problem.initialize()
        solver = configured_solver(problem, 5)

        with pytest.raises(UserFunctionError, match="inertia is zero"):
            solver.solve()

    def test_guess_with_nan_is_rejected(self):
        solver = configured_solver(build_point_to_point_problem(), 5)
        guess = solver.create_initial_guess_from_bounds()
        guess.variables[VariableCategory.CONTROLS][0, 2] = np.nan

        with pytest.raises(DataIntegrityError, match="Initial guess"):
            solver.solve(guess)

    def test_conflicting_bounds_fail_before_solve(self):
        problem = build_point_to_point_problem(initialize=False)
        problem.add_control("w", bounds=(1.0, -1.0))

        with pytest.raises(ConfigurationError):
            problem.initialize()
        with pytest.raises(NotInitializedError):
            Solver(problem)


class TestScipyBackends:
    """Backends driven directly with a small equality-constrained NLP."""

    @staticmethod
    def solve_with(backend):
        def objective(x):
            return (x[0] - 1) ** 2 + (x[1] - 2) ** 2

        def constraints(x):
            return [x[0] + x[1]]

        bounds = (np.full(2, -np.inf), np.full(2, np.inf))
        with DifferentiableFunctionAdapter(objective, constraints, 2) as adapter:
            return backend.solve(adapter, np.zeros(2), bounds, (np.ones(1), np.ones(1)))

    def test_slsqp(self):
        result = self.solve_with(ScipySLSQPBackend())
        assert result.success
        np.testing.assert_allclose(result.x, [0.0, 1.0], atol=1e-5)

    def test_trust_constr_uses_exact_hessians(self):
        result = self.solve_with(ScipyTrustConstrBackend(solver_options={"gtol": 1e-10}))
        np.testing.assert_allclose(result.x, [0.0, 1.0], atol=1e-4)
        assert result.objective == pytest.approx(2.0, abs=1e-4)

    def test_create_backend_by_name(self):
        assert isinstance(create_backend("scipy-trust-constr"), ScipyTrustConstrBackend)
        with pytest.raises(ConfigurationError):
            create_backend("")


class TestCyipoptBackend:
    """IPOPT driven through the adapter's callbacks and cached sparsity."""

    @staticmethod
    def small_adapter():
        def objective(x):
            return (x[0] - 1) ** 2 + x[0] * x[1] ** 2

        def constraints(x):
            return [x[0] * x[1]]

        return DifferentiableFunctionAdapter(objective, constraints, 2)

    def test_structures_come_from_adapter_sparsity(self):
        with self.small_adapter() as adapter:
            callbacks = _IpoptCallbacks(adapter)
            jacobian_pattern, hessian_pattern = adapter.sparsity()

            np.testing.assert_array_equal(callbacks.jacobianstructure()[0], jacobian_pattern.rows)
            np.testing.assert_array_equal(callbacks.jacobianstructure()[1], jacobian_pattern.cols)
            np.testing.assert_array_equal(callbacks.hessianstructure()[0], hessian_pattern.rows)
            np.testing.assert_array_equal(callbacks.hessianstructure()[1], hessian_pattern.cols)

    def test_callbacks_return_adapter_values(self):
        x = np.array([2.0, -1.0])
        with self.small_adapter() as adapter:
            callbacks = _IpoptCallbacks(adapter)

            assert callbacks.objective(x) == pytest.approx(3.0)
            np.testing.assert_allclose(callbacks.gradient(x), [3.0, -4.0])
            np.testing.assert_allclose(callbacks.constraints(x), [-2.0])
            np.testing.assert_allclose(callbacks.jacobian(x), adapter.jacobian(x))
            np.testing.assert_allclose(
                callbacks.hessian(x, np.array([0.5]), 2.0),
                adapter.hessian_lagrangian(x, 2.0, [0.5]),
            )

    def test_registered_by_name(self):
        assert isinstance(create_backend("cyipopt"), CyipoptBackend)

    def test_point_to_point_calls_adapter_derivatives(self, monkeypatch):
        pytest.importorskip("cyipopt")
        calls = {"gradient": 0, "jacobian": 0, "hessian_lagrangian": 0}

        for method in calls:
            original = getattr(DifferentiableFunctionAdapter, method)

            def counted(self, *args, _original=original, _method=method, **kwargs):
                calls[_method] += 1
                return _original(self, *args, **kwargs)

            monkeypatch.setattr(DifferentiableFunctionAdapter, method, counted)

        solver = configured_solver(build_point_to_point_problem(), 10)
        solver.set_optim_solver("cyipopt")
        solution = solver.solve()

        assert solution.success, solution.status
        assert solution.get_state("x")[-1] == pytest.approx(5.0, abs=1e-5)
        assert solution.num_iterations > 0
        assert all(count > 0 for count in calls.values()), calls
