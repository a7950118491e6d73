# test_problem.py
"""
Tests for the problem builder: sealing by initialize(), naming rules,
bound validation and callback handling.
"""

import casadi as ca
import pytest

from kinetolab import (
    ConfigurationError,
    NotInitializedError,
    Problem,
    StateType,
    UserFunctionError,
)


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


class TestProblemSealing:
    def test_add_state_after_initialize_fails(self):
        problem = build_point_to_point_problem()
        with pytest.raises(ConfigurationError, match="after initialize"):
            problem.add_state("y")

    def test_add_control_after_initialize_fails(self):
        problem = build_point_to_point_problem()
        with pytest.raises(ConfigurationError):
            problem.add_control("w")

    def test_setters_after_initialize_fail(self):
        problem = build_point_to_point_problem()
        with pytest.raises(ConfigurationError):
            problem.add_parameter("m")
        with pytest.raises(ConfigurationError):
            problem.set_dynamics_function(lambda t, x, u, p: -x)
        with pytest.raises(ConfigurationError):
            problem.set_time_bounds(0.0, 2.0)

    def test_initialize_is_idempotent(self):
        problem = build_point_to_point_problem()
        counts = (
            problem.get_num_states(),
            problem.get_num_controls(),
            problem.get_num_coordinates(),
            problem.get_num_speeds(),
            problem.get_num_auxiliary_states(),
        )
        problem.initialize()
        assert counts == (
            problem.get_num_states(),
            problem.get_num_controls(),
            problem.get_num_coordinates(),
            problem.get_num_speeds(),
            problem.get_num_auxiliary_states(),
        )
        assert problem.is_initialized()


class TestProblemValidation:
    def test_duplicate_state_name(self):
        problem = Problem()
        problem.add_state("x")
        with pytest.raises(ConfigurationError, match="already exists"):
            problem.add_state("x")

    def test_duplicate_control_name(self):
        problem = Problem()
        problem.add_control("u")
        with pytest.raises(ConfigurationError):
            problem.add_control("u")

    def test_state_and_control_may_share_a_name(self):
        problem = Problem()
        problem.add_state("q")
        problem.add_control("q")

    def test_empty_name_rejected(self):
        with pytest.raises(ConfigurationError):
            Problem().add_state("  ")

    def test_coordinate_after_auxiliary_rejected(self):
        problem = Problem()
        problem.add_state("q", StateType.COORDINATE)
        problem.add_state("z", StateType.AUXILIARY)
        with pytest.raises(ConfigurationError, match="auxiliary"):
            problem.add_state("u", StateType.SPEED)

    def test_state_type_from_string(self):
        problem = Problem()
        problem.add_state("q", "coordinate")
        problem.add_state("qd", "speed")
        problem.add_state("z", "auxiliary")
        problem.set_dynamics_function(lambda t, x, u, p: [x[1], 0.0, 0.0])
        problem.initialize()

        assert problem.get_num_coordinates() == 1
        assert problem.get_num_speeds() == 1
        assert problem.get_num_auxiliary_states() == 1

    def test_unknown_state_type_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown state type"):
            Problem().add_state("x", "angle")

    def test_initialize_requires_a_state(self):
        problem = Problem()
        problem.set_dynamics_function(lambda t, x, u, p: x)
        with pytest.raises(ConfigurationError, match="at least one state"):
            problem.initialize()

    def test_initialize_requires_dynamics(self):
        problem = Problem()
        problem.add_state("x")
        with pytest.raises(ConfigurationError, match="dynamics"):
            problem.initialize()

    def test_conflicting_bounds_fail_at_initialize(self):
        problem = Problem("Conflicting bounds")
        problem.add_state("x", bounds=(5.0, -5.0))
        problem.set_dynamics_function(lambda t, x, u, p: x)

        with pytest.raises(ConfigurationError, match="Lower bound"):
            problem.initialize()
        assert not problem.is_initialized()

    def test_conflicting_final_bounds_fail_at_initialize(self):
        problem = build_point_to_point_problem(initialize=False)
        problem.add_state("y", final_bounds=(1.0, 0.0))
        with pytest.raises(ConfigurationError):
            problem.initialize()


class TestProblemQueries:
    def test_queries_before_initialize_fail(self):
        problem = build_point_to_point_problem(initialize=False)
        with pytest.raises(NotInitializedError):
            problem.get_num_states()
        with pytest.raises(NotInitializedError):
            problem.get_state_infos()
        with pytest.raises(NotInitializedError):
            problem.get_multibody_system()
        with pytest.raises(NotInitializedError):
            problem.get_time_final_bounds()

    def test_names_keep_registration_order(self):
        problem = Problem()
        problem.add_state("q1")
        problem.add_state("q2")
        problem.add_state("w", StateType.SPEED)
        problem.add_control("torque")
        problem.add_control("force")
        problem.add_parameter("mass", (1.0, 2.0))
        problem.set_dynamics_function(lambda t, x, u, p: [x[2], x[2], u[0]])
        problem.initialize()

        assert problem.get_state_names() == ["q1", "q2", "w"]
        assert problem.get_control_names() == ["torque", "force"]
        assert problem.get_parameter_names() == ["mass"]
        assert problem.get_num_parameters() == 1

    def test_multipliers_and_derivatives_are_empty(self):
        problem = build_point_to_point_problem()
        assert problem.get_num_multipliers() == 0
        assert problem.get_num_derivatives() == 0
        assert problem.get_multiplier_names() == []
        assert problem.get_derivative_names() == []

    def test_unset_costs_default_to_zero(self):
        problem = Problem()
        problem.add_state("x")
        problem.set_dynamics_function(lambda t, x, u, p: -x)
        problem.initialize()

        endpoint_cost = problem.get_endpoint_cost()
        assert float(endpoint_cost(1.0, 3.0, ca.DM.zeros(0, 1))) == 0.0
        assert problem.get_path_constraints() is None


class TestProblemCallbacks:
    def test_setter_replaces_previous_callback(self):
        def first(t, x, u, p):
            return x

        def second(t, x, u, p):
            return -x

        problem = Problem()
        problem.add_state("x")
        problem.set_dynamics_function(first)
        problem.set_dynamics_function(second)
        problem.initialize()

        assert problem.get_multibody_system().callback is second

    def test_dynamics_evaluate_numerically(self):
        problem = build_point_to_point_problem()
        dynamics = problem.get_multibody_system()
        value = dynamics(0.0, 1.0, 2.5, ca.DM.zeros(0, 1))
        assert float(value) == pytest.approx(2.5)

    def test_callback_error_keeps_message(self):
        def failing_dynamics(t, x, u, p):
            raise ValueError("mass matrix is singular")

        problem = Problem()
        problem.add_state("x")
        problem.set_dynamics_function(failing_dynamics)
        problem.initialize()

        with pytest.raises(UserFunctionError, match="mass matrix is singular"):
            problem.get_multibody_system().casadi_function()

    def test_dynamics_output_count_checked(self):
        problem = Problem()
        problem.add_state("x")
        problem.set_dynamics_function(lambda t, x, u, p: [x[0], x[0]])
        problem.initialize()

        with pytest.raises(UserFunctionError, match="expected 1"):
            problem.get_multibody_system().casadi_function()

    def test_path_constraint_bounds_fix_output_count(self):
        problem = build_point_to_point_problem(initialize=False)
        problem.set_path_constraints_function(
            lambda t, x, u, p: [x[0] + u[0], u[0]], [(-1.0, 1.0), (None, 0.0)]
        )
        problem.initialize()

        assert problem.get_num_path_constraints() == 2
        assert problem.get_path_constraints().num_outputs == 2

    @pytest.mark.parametrize("bounds", [(-1.0, 1.0), [], [None]])
    def test_invalid_path_constraint_bounds(self, bounds):
        problem = build_point_to_point_problem(initialize=False)
        with pytest.raises(ConfigurationError):
            problem.set_path_constraints_function(lambda t, x, u, p: x, bounds)
