"""
Labeled trajectories: candidate iterates and solver solutions.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from .exceptions import DataIntegrityError, InterpolationError
from .kl_types import FloatArray, NumericArrayLike
from .problem.variables import VariableCategory
from .utils.constants import RESAMPLE_TOLERANCE


if TYPE_CHECKING:
    from matplotlib.figure import Figure


logger = logging.getLogger(__name__)

_NAME_FIELDS: dict[VariableCategory, str] = {
    VariableCategory.STATES: "state_names",
    VariableCategory.CONTROLS: "control_names",
    VariableCategory.MULTIPLIERS: "multiplier_names",
    VariableCategory.DERIVATIVES: "derivative_names",
    VariableCategory.PARAMETERS: "parameter_names",
}


@dataclass
class Iterate:
    """
    One trajectory: a value per category per mesh point plus the time vector.

    Time-varying categories hold arrays shaped (quantities, len(times)).
    Initial and final time are (1, 1) arrays, parameters are (num_parameters, 1).
    Categories missing from ``variables`` are filled in: empty arrays for
    quantity categories and the ends of ``times`` for the time categories.
    """

    variables: dict[VariableCategory, FloatArray]
    times: FloatArray
    state_names: list[str] = field(default_factory=list)
    control_names: list[str] = field(default_factory=list)
    multiplier_names: list[str] = field(default_factory=list)
    derivative_names: list[str] = field(default_factory=list)
    parameter_names: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.times = np.asarray(self.times, dtype=np.float64).ravel()
        num_times = self.times.size
        if num_times == 0:
            raise DataIntegrityError("Iterate needs at least one time point")

        variables: dict[VariableCategory, FloatArray] = {}
        for category in VariableCategory:
            if category in self.variables:
                values = np.asarray(self.variables[category], dtype=np.float64)
                if category is VariableCategory.PARAMETERS and values.ndim == 1:
                    values = values.reshape(-1, 1)
                variables[category] = np.array(values, ndmin=2)
            elif category is VariableCategory.INITIAL_TIME:
                variables[category] = np.array([[self.times[0]]])
            elif category is VariableCategory.FINAL_TIME:
                variables[category] = np.array([[self.times[-1]]])
            else:
                num_columns = num_times if category.is_time_varying else 1
                variables[category] = np.empty((0, num_columns))
        self.variables = variables
        self._validate_shapes()

    def _validate_shapes(self) -> None:
        for category, values in self.variables.items():
            if category in (VariableCategory.INITIAL_TIME, VariableCategory.FINAL_TIME):
                expected = (1, 1)
            else:
                num_columns = self.times.size if category.is_time_varying else 1
                expected = (len(self.names(category)), num_columns)
            if values.shape != expected:
                raise DataIntegrityError(
                    f"{category.value} has shape {values.shape}, expected {expected}",
                    "Iterate shape mismatch",
                )

    def names(self, category: VariableCategory) -> list[str]:
        attribute = _NAME_FIELDS.get(category)
        return [] if attribute is None else getattr(self, attribute)

    def labeled_rows(self) -> dict[str, FloatArray]:
        """
        Rows of every time-varying quantity, keyed by name.

        A name used in more than one category (a state and a control both
        called ``"a"``) is qualified with its category: ``"states/a"``.
        """
        entries = [
            (category, name, row)
            for category in VariableCategory
            if category.is_time_varying
            for name, row in zip(self.names(category), self.variables[category])
        ]
        counts = Counter(name for _, name, _ in entries)
        return {
            name if counts[name] == 1 else f"{category.value}/{name}": row
            for category, name, row in entries
        }

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def initial_time(self) -> float:
        return float(self.variables[VariableCategory.INITIAL_TIME][0, 0])

    @property
    def final_time(self) -> float:
        return float(self.variables[VariableCategory.FINAL_TIME][0, 0])

    @property
    def num_times(self) -> int:
        return int(self.times.size)

    @property
    def states(self) -> FloatArray:
        return self.variables[VariableCategory.STATES]

    @property
    def controls(self) -> FloatArray:
        return self.variables[VariableCategory.CONTROLS]

    @property
    def multipliers(self) -> FloatArray:
        return self.variables[VariableCategory.MULTIPLIERS]

    @property
    def derivatives(self) -> FloatArray:
        return self.variables[VariableCategory.DERIVATIVES]

    @property
    def parameters(self) -> FloatArray:
        return self.variables[VariableCategory.PARAMETERS]

    def _row(self, category: VariableCategory, name: str) -> FloatArray:
        names = self.names(category)
        if name not in names:
            raise KeyError(f"No {category.value[:-1]} named '{name}'; available: {names}")
        return self.variables[category][names.index(name)].copy()

    def get_state(self, name: str) -> FloatArray:
        return self._row(VariableCategory.STATES, name)

    def get_control(self, name: str) -> FloatArray:
        return self._row(VariableCategory.CONTROLS, name)

    def get_parameter(self, name: str) -> float:
        return float(self._row(VariableCategory.PARAMETERS, name)[0])

    # ------------------------------------------------------------------
    # Resampling
    # ------------------------------------------------------------------

    def resample(self, new_times: NumericArrayLike) -> Iterate:
        """
        Linearly interpolate every time-varying category onto ``new_times``.

        Parameters are copied unchanged; initial and final time become the
        ends of ``new_times``.

        Raises:
            InterpolationError: If ``new_times`` is not strictly increasing or
                leaves the time span of this iterate
        """
        targets = np.asarray(new_times, dtype=np.float64).ravel()
        if targets.size == 0:
            raise InterpolationError("Cannot resample onto an empty time vector")
        if targets.size > 1 and not np.all(np.diff(targets) > 0):
            raise InterpolationError("Resampling times must be strictly increasing")
        if self.times.size < 2:
            raise InterpolationError("Cannot resample an iterate with a single time point")

        span = self.times[-1] - self.times[0]
        slack = RESAMPLE_TOLERANCE * max(1.0, abs(span))
        if targets[0] < self.times[0] - slack or targets[-1] > self.times[-1] + slack:
            raise InterpolationError(
                f"Resampling times [{targets[0]}, {targets[-1]}] outside iterate span "
                f"[{self.times[0]}, {self.times[-1]}]"
            )

        variables: dict[VariableCategory, FloatArray] = {}
        for category, values in self.variables.items():
            if category.is_time_varying:
                resampled = np.empty((values.shape[0], targets.size))
                for row in range(values.shape[0]):
                    resampled[row] = np.interp(targets, self.times, values[row])
                variables[category] = resampled
            else:
                variables[category] = values.copy()
        variables[VariableCategory.INITIAL_TIME] = np.array([[targets[0]]])
        variables[VariableCategory.FINAL_TIME] = np.array([[targets[-1]]])

        logger.debug("Resampled iterate from %d to %d time points", self.times.size, targets.size)
        return Iterate(
            variables=variables,
            times=targets,
            state_names=list(self.state_names),
            control_names=list(self.control_names),
            multiplier_names=list(self.multiplier_names),
            derivative_names=list(self.derivative_names),
            parameter_names=list(self.parameter_names),
        )

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_dataframe(self) -> pd.DataFrame:
        """Time-varying quantities as columns, indexed by time."""
        frame = pd.DataFrame(self.labeled_rows(), index=pd.Index(self.times, name="time"))
        for name, value in zip(self.parameter_names, self.parameters[:, 0]):
            frame.attrs[name] = float(value)
        return frame

    def plot(self, show: bool = True) -> Figure:
        from .plot import plot_iterate

        return plot_iterate(self, show=show)


@dataclass
class Solution(Iterate):
    """An iterate returned by the solver, with backend diagnostics."""

    success: bool = False
    status: str = "Solver not run yet."
    num_iterations: int = 0
    objective: float = math.nan
    stats: dict[str, Any] = field(default_factory=dict)
