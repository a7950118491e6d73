# test_variables.py
"""
Tests for bound handling and the expansion of bounds across the mesh.
"""

import math

import numpy as np
import pytest

from kinetolab import ConfigurationError
from kinetolab.problem.variables import (
    Bounds,
    BoundsTable,
    ControlInfo,
    StateInfo,
    StateType,
    VariableCategory,
    as_bounds,
)


class TestBounds:
    def test_default_bounds_are_unset(self):
        bounds = Bounds()
        assert not bounds.is_set()
        assert bounds.to_nlp() == (-math.inf, math.inf)

    @pytest.mark.parametrize(
        "lower, upper",
        [(-1.0, 1.0), (0.0, 0.0), (-math.inf, 2.0), (3.0, math.inf), (-5.0, -4.0)],
    )
    def test_ordered_bounds_are_set(self, lower, upper):
        bounds = Bounds(lower, upper)
        assert bounds.is_set()
        bounds.validate("ordered bounds")
        assert bounds.to_nlp() == (lower, upper)

    def test_half_specified_bounds_are_unset(self):
        assert not Bounds(1.0).is_set()
        assert not Bounds(math.nan, 1.0).is_set()

    def test_inverted_bounds_fail_validation(self):
        with pytest.raises(ConfigurationError, match="Lower bound"):
            Bounds(2.0, 1.0).validate("inverted bounds")

    def test_unset_bounds_compare_equal(self):
        assert Bounds() == Bounds()
        assert hash(Bounds()) == hash(Bounds())
        assert Bounds(0.0, 1.0) != Bounds()


class TestAsBounds:
    def test_none_is_unset(self):
        assert not as_bounds(None, "test").is_set()

    def test_number_is_equality(self):
        assert as_bounds(2.5, "test") == Bounds(2.5, 2.5)

    def test_tuple_with_none_is_one_sided(self):
        assert as_bounds((None, 3), "test") == Bounds(-math.inf, 3.0)
        assert as_bounds((1, None), "test") == Bounds(1.0, math.inf)

    def test_tuple_of_nones_is_unset(self):
        assert not as_bounds((None, None), "test").is_set()

    def test_initial_tuple_of_nones_falls_back_to_general_bounds(self):
        info = StateInfo(
            "x", StateType.COORDINATE, Bounds(-10.0, 10.0), as_bounds((None, None), "test")
        )
        table = BoundsTable.from_infos([info], 3)

        np.testing.assert_array_equal(table.lower, [[-10.0, -10.0, -10.0]])
        np.testing.assert_array_equal(table.upper, [[10.0, 10.0, 10.0]])

    def test_bounds_pass_through(self):
        bounds = Bounds(-1.0, 1.0)
        assert as_bounds(bounds, "test") is bounds

    @pytest.mark.parametrize("value", [(1, 2, 3), "abc", math.nan, (0, "x"), True])
    def test_invalid_inputs_rejected(self, value):
        with pytest.raises(ConfigurationError):
            as_bounds(value, "test")

    def test_inverted_tuple_is_accepted_until_validation(self):
        bounds = as_bounds((5, -5), "test")
        with pytest.raises(ConfigurationError):
            bounds.validate("test")


class TestBoundsTable:
    def test_initial_bounds_override_first_column(self):
        info = StateInfo("x", StateType.COORDINATE, Bounds(-10.0, 10.0), Bounds(0.0, 0.0))
        table = BoundsTable.from_infos([info], 4)

        np.testing.assert_array_equal(table.lower, [[0.0, -10.0, -10.0, -10.0]])
        np.testing.assert_array_equal(table.upper, [[0.0, 10.0, 10.0, 10.0]])

    def test_final_bounds_override_last_column(self):
        info = ControlInfo("u", Bounds(-1.0, 1.0), final_bounds=Bounds(0.5, 0.5))
        table = BoundsTable.from_infos([info], 3)

        np.testing.assert_array_equal(table.lower, [[-1.0, -1.0, 0.5]])
        np.testing.assert_array_equal(table.upper, [[1.0, 1.0, 0.5]])

    def test_unset_bounds_are_infinite(self):
        table = BoundsTable.from_infos([StateInfo("v", StateType.SPEED)], 2)

        assert np.all(np.isneginf(table.lower))
        assert np.all(np.isposinf(table.upper))

    def test_rows_follow_info_order(self):
        infos = [
            StateInfo("a", StateType.COORDINATE, Bounds(1.0, 2.0)),
            StateInfo("b", StateType.SPEED, Bounds(3.0, 4.0)),
        ]
        table = BoundsTable.from_infos(infos, 2)

        assert table.shape == (2, 2)
        np.testing.assert_array_equal(table.lower[:, 0], [1.0, 3.0])
        np.testing.assert_array_equal(table.upper[:, 1], [2.0, 4.0])

    def test_empty_tables_keep_column_count(self):
        assert BoundsTable.from_bounds([], 3).shape == (0, 3)
        assert BoundsTable.empty(5).shape == (0, 5)


class TestVariableCategory:
    def test_decision_vector_order(self):
        assert list(VariableCategory) == [
            VariableCategory.INITIAL_TIME,
            VariableCategory.FINAL_TIME,
            VariableCategory.STATES,
            VariableCategory.CONTROLS,
            VariableCategory.MULTIPLIERS,
            VariableCategory.DERIVATIVES,
            VariableCategory.PARAMETERS,
        ]

    def test_time_varying_categories(self):
        assert VariableCategory.STATES.is_time_varying
        assert VariableCategory.DERIVATIVES.is_time_varying
        assert not VariableCategory.PARAMETERS.is_time_varying
        assert not VariableCategory.FINAL_TIME.is_time_varying
