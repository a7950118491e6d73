"""
Direct transcription of a problem onto a time mesh.

The decision vector is the concatenation, in ``VariableCategory`` order, of
initial time, final time, states, controls, multipliers, derivatives and
parameters. Matrix-valued categories are stored column-major (all
quantities at mesh point 0, then mesh point 1, ...). This layout is the
single source of truth for bounds, guesses, derivative tapes and solutions.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

import casadi as ca
import numpy as np

from ..exceptions import ConfigurationError, DataIntegrityError, NotInitializedError
from ..input_validation import validate_normalized_mesh
from ..iterate import Iterate
from ..kl_types import FloatArray, NumericArrayLike, ProblemProtocol
from ..problem.variables import BoundsTable, VariableCategory


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryLayout:
    """Position of one category inside the flat decision vector."""

    category: VariableCategory
    offset: int
    rows: int
    cols: int

    @property
    def size(self) -> int:
        return self.rows * self.cols

    @property
    def slice(self) -> slice:
        return slice(self.offset, self.offset + self.size)


class Transcription(ABC):
    """
    Base class for transcription schemes.

    Subclasses choose how an interval's defect and the integral-cost
    quadrature are formed from the values at its two end points.

    Args:
        problem: Initialized problem to transcribe (borrowed, not owned)
        mesh: Normalized mesh on [0, 1]; non-uniform spacing is allowed
    """

    scheme: ClassVar[str]

    def __init__(self, problem: ProblemProtocol, mesh: NumericArrayLike) -> None:
        if not problem.is_initialized():
            raise NotInitializedError(
                f"Problem '{problem.name}' must be initialized before transcription"
            )
        self.problem = problem
        self.mesh = validate_normalized_mesh(mesh)
        self.num_mesh_points = int(self.mesh.size)

        self.layout = self._build_layout()
        self.num_variables = sum(entry.size for entry in self.layout.values())

        self.num_defects = problem.get_num_states() * (self.num_mesh_points - 1)
        self.num_path_constraints = problem.get_num_path_constraints() * self.num_mesh_points
        self.num_constraints = self.num_defects + self.num_path_constraints

        logger.info(
            "Transcribed '%s' with %s scheme: mesh_points=%d, variables=%d, constraints=%d",
            problem.name,
            self.scheme,
            self.num_mesh_points,
            self.num_variables,
            self.num_constraints,
        )

    def _category_shape(self, category: VariableCategory) -> tuple[int, int]:
        problem = self.problem
        n = self.num_mesh_points
        shapes = {
            VariableCategory.INITIAL_TIME: (1, 1),
            VariableCategory.FINAL_TIME: (1, 1),
            VariableCategory.STATES: (problem.get_num_states(), n),
            VariableCategory.CONTROLS: (problem.get_num_controls(), n),
            VariableCategory.MULTIPLIERS: (problem.get_num_multipliers(), n),
            VariableCategory.DERIVATIVES: (problem.get_num_derivatives(), n),
            VariableCategory.PARAMETERS: (problem.get_num_parameters(), 1),
        }
        return shapes[category]

    def _build_layout(self) -> dict[VariableCategory, CategoryLayout]:
        layout = {}
        offset = 0
        for category in VariableCategory:
            rows, cols = self._category_shape(category)
            layout[category] = CategoryLayout(category, offset, rows, cols)
            offset += rows * cols
        return layout

    # ------------------------------------------------------------------
    # Layout conversions
    # ------------------------------------------------------------------

    def unpack(self, x: Any) -> dict[VariableCategory, Any]:
        """Split a symbolic or numeric CasADi column into category matrices."""
        matrix_type = type(x)
        unpacked = {}
        for category, entry in self.layout.items():
            if entry.size == 0:
                unpacked[category] = matrix_type(entry.rows, entry.cols)
            else:
                unpacked[category] = ca.reshape(x[entry.offset : entry.offset + entry.size], entry.rows, entry.cols)
        return unpacked

    def flatten(self, iterate: Iterate) -> FloatArray:
        """Decision vector holding the values of ``iterate``."""
        x = np.empty(self.num_variables, dtype=np.float64)
        for category, entry in self.layout.items():
            values = iterate.variables[category]
            if values.shape != (entry.rows, entry.cols):
                raise ConfigurationError(
                    f"Iterate {category.value} has shape {values.shape}, "
                    f"expected {(entry.rows, entry.cols)}",
                    f"{self.scheme} transcription with {self.num_mesh_points} mesh points",
                )
            x[entry.slice] = values.ravel(order="F")
        return x

    def unflatten(self, x: NumericArrayLike) -> dict[VariableCategory, FloatArray]:
        values = np.asarray(x, dtype=np.float64).ravel()
        if values.size != self.num_variables:
            raise DataIntegrityError(
                f"Decision vector has {values.size} entries, expected {self.num_variables}"
            )
        return {
            category: values[entry.slice].reshape((entry.rows, entry.cols), order="F")
            for category, entry in self.layout.items()
        }

    def mesh_times(self, initial_time: float, final_time: float) -> FloatArray:
        return initial_time + (final_time - initial_time) * self.mesh

    def create_iterate(self, x: NumericArrayLike, iterate_type: type[Iterate] = Iterate, **extra: Any) -> Iterate:
        """Labeled trajectory for a decision vector; ``extra`` goes to ``iterate_type``."""
        variables = self.unflatten(x)
        times = self.mesh_times(
            float(variables[VariableCategory.INITIAL_TIME][0, 0]),
            float(variables[VariableCategory.FINAL_TIME][0, 0]),
        )
        problem = self.problem
        return iterate_type(
            variables=variables,
            times=times,
            state_names=[info.name for info in problem.get_state_infos()],
            control_names=[info.name for info in problem.get_control_infos()],
            multiplier_names=[],
            derivative_names=[],
            parameter_names=[info.name for info in problem.get_parameter_infos()],
            **extra,
        )

    # ------------------------------------------------------------------
    # Bounds
    # ------------------------------------------------------------------

    def _bounds_tables(self) -> dict[VariableCategory, BoundsTable]:
        problem = self.problem
        n = self.num_mesh_points
        return {
            VariableCategory.INITIAL_TIME: BoundsTable.from_bounds([problem.get_time_initial_bounds()]),
            VariableCategory.FINAL_TIME: BoundsTable.from_bounds([problem.get_time_final_bounds()]),
            VariableCategory.STATES: BoundsTable.from_infos(problem.get_state_infos(), n),
            VariableCategory.CONTROLS: BoundsTable.from_infos(problem.get_control_infos(), n),
            VariableCategory.MULTIPLIERS: BoundsTable.empty(n),
            VariableCategory.DERIVATIVES: BoundsTable.empty(n),
            VariableCategory.PARAMETERS: BoundsTable.from_bounds(
                [info.bounds for info in problem.get_parameter_infos()]
            ),
        }

    def variable_bounds(self) -> tuple[FloatArray, FloatArray]:
        """Lower and upper bounds of every decision variable; unset bounds are infinite."""
        lower = np.empty(self.num_variables, dtype=np.float64)
        upper = np.empty(self.num_variables, dtype=np.float64)
        tables = self._bounds_tables()
        for category, entry in self.layout.items():
            table = tables[category]
            if table.shape != (entry.rows, entry.cols):
                raise DataIntegrityError(
                    f"{category.value} bounds have shape {table.shape}, expected "
                    f"{(entry.rows, entry.cols)}"
                )
            lower[entry.slice] = table.lower.ravel(order="F")
            upper[entry.slice] = table.upper.ravel(order="F")
        return lower, upper

    def constraint_bounds(self) -> tuple[FloatArray, FloatArray]:
        """Defects are equalities to zero; path constraints use their registered bounds."""
        path_table = BoundsTable.from_bounds(
            self.problem.get_path_constraint_bounds(), self.num_mesh_points
        )
        lower = np.concatenate([np.zeros(self.num_defects), path_table.lower.ravel(order="F")])
        upper = np.concatenate([np.zeros(self.num_defects), path_table.upper.ravel(order="F")])
        return lower, upper

    # ------------------------------------------------------------------
    # NLP functions
    # ------------------------------------------------------------------

    def _points(self, x: Any) -> tuple[list[Any], Any, Any, Any]:
        if isinstance(x, np.ndarray | list | tuple):
            x = ca.DM(np.asarray(x, dtype=np.float64).ravel())
        variables = self.unpack(x)
        initial_time = variables[VariableCategory.INITIAL_TIME]
        final_time = variables[VariableCategory.FINAL_TIME]
        duration = final_time - initial_time
        times = [initial_time + float(tau) * duration for tau in self.mesh]
        return (
            times,
            variables[VariableCategory.STATES],
            variables[VariableCategory.CONTROLS],
            variables[VariableCategory.PARAMETERS],
        )

    def objective(self, x: Any) -> Any:
        """Endpoint cost plus quadrature of the integral cost over the mesh."""
        times, states, controls, parameters = self._points(x)
        integrand = self.problem.get_integral_cost_integrand()
        endpoint_cost = self.problem.get_endpoint_cost()

        integrand_values = [
            integrand(times[i], states[:, i], controls[:, i], parameters)
            for i in range(self.num_mesh_points)
        ]
        steps = [times[i + 1] - times[i] for i in range(self.num_mesh_points - 1)]
        integral = self._quadrature(steps, integrand_values)
        return endpoint_cost(times[-1], states[:, -1], parameters) + integral

    def constraints(self, x: Any) -> Any:
        """Defects for every interval followed by path constraints at every mesh point."""
        times, states, controls, parameters = self._points(x)
        dynamics = self.problem.get_multibody_system()
        path_constraints = self.problem.get_path_constraints()
        n = self.num_mesh_points

        derivatives = [dynamics(times[i], states[:, i], controls[:, i], parameters) for i in range(n)]
        defects = [
            self._defect(
                times[i + 1] - times[i],
                states[:, i],
                states[:, i + 1],
                derivatives[i],
                derivatives[i + 1],
            )
            for i in range(n - 1)
        ]

        path_values = []
        if path_constraints is not None:
            path_values = [
                path_constraints(times[i], states[:, i], controls[:, i], parameters)
                for i in range(n)
            ]
        return ca.vertcat(*defects, *path_values)

    @abstractmethod
    def _defect(self, step: Any, state: Any, next_state: Any, rate: Any, next_rate: Any) -> Any:
        """Residual of the discretized dynamics over one interval."""

    @abstractmethod
    def _quadrature(self, steps: list[Any], values: list[Any]) -> Any:
        """Approximate integral of ``values`` sampled at the mesh points."""
