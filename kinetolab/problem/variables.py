"""
Variable catalog and bounds for trajectory decision variables.

Every entry of the NLP decision vector belongs to exactly one
``VariableCategory``; the enum order is the decision-vector order.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from ..exceptions import ConfigurationError
from ..input_validation import validate_bound_value, validate_bounds_order
from ..kl_types import FloatArray


class VariableCategory(Enum):
    """Slices of the decision vector, listed in decision-vector order."""

    INITIAL_TIME = "initial_time"
    FINAL_TIME = "final_time"
    STATES = "states"
    CONTROLS = "controls"
    MULTIPLIERS = "multipliers"
    DERIVATIVES = "derivatives"
    PARAMETERS = "parameters"

    @property
    def is_time_varying(self) -> bool:
        return self in _TIME_VARYING_CATEGORIES


_TIME_VARYING_CATEGORIES = frozenset(
    {
        VariableCategory.STATES,
        VariableCategory.CONTROLS,
        VariableCategory.MULTIPLIERS,
        VariableCategory.DERIVATIVES,
    }
)


class StateType(Enum):
    """Classification of a state; coordinates and speeds precede auxiliary states."""

    COORDINATE = "coordinate"
    SPEED = "speed"
    AUXILIARY = "auxiliary"


@dataclass(frozen=True, eq=False)
class Bounds:
    """Lower/upper bound pair; NaN on either side means unset."""

    lower: float = math.nan
    upper: float = math.nan

    def is_set(self) -> bool:
        return not math.isnan(self.lower) and not math.isnan(self.upper)

    def validate(self, context: str) -> None:
        if self.is_set():
            validate_bounds_order(self.lower, self.upper, context)

    def to_nlp(self) -> tuple[float, float]:
        """Bounds as handed to the NLP; unset means unbounded."""
        if not self.is_set():
            return (-math.inf, math.inf)
        return (self.lower, self.upper)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bounds):
            return NotImplemented
        return _same_bound(self.lower, other.lower) and _same_bound(self.upper, other.upper)

    def __hash__(self) -> int:
        return hash((_hashable_bound(self.lower), _hashable_bound(self.upper)))

    def __repr__(self) -> str:
        if not self.is_set():
            return "Bounds(unset)"
        return f"Bounds(lower={self.lower}, upper={self.upper})"


def _same_bound(a: float, b: float) -> bool:
    return (math.isnan(a) and math.isnan(b)) or a == b


def _hashable_bound(value: float) -> float | None:
    return None if math.isnan(value) else value


def as_bounds(value: Any, context: str) -> Bounds:
    """Coerce builder input (Bounds, number, (lower, upper) tuple or None) to Bounds.

    ``None`` and ``(None, None)`` both mean unset, so initial and final bounds
    given that way fall back to the general bounds.

    Ordering (lower <= upper) is not checked here; ``Problem.initialize()``
    validates every registered bound at once.
    """
    if value is None:
        return Bounds()
    if isinstance(value, Bounds):
        return value
    if isinstance(value, tuple | list):
        if len(value) != 2:
            raise ConfigurationError(
                f"Bounds tuple must have 2 elements, got {len(value)}", context
            )
        lower, upper = value
        if lower is None and upper is None:
            return Bounds()
        if lower is not None:
            validate_bound_value(lower, context)
        if upper is not None:
            validate_bound_value(upper, context)
        return Bounds(
            -math.inf if lower is None else float(lower),
            math.inf if upper is None else float(upper),
        )
    validate_bound_value(value, context)
    return Bounds(float(value), float(value))


@dataclass(frozen=True)
class StateInfo:
    name: str
    type: StateType
    bounds: Bounds = field(default_factory=Bounds)
    initial_bounds: Bounds = field(default_factory=Bounds)
    final_bounds: Bounds = field(default_factory=Bounds)

    def bounds_at(self, column: int, num_columns: int) -> Bounds:
        return _resolve_endpoint_bounds(self, column, num_columns)


@dataclass(frozen=True)
class ControlInfo:
    name: str
    bounds: Bounds = field(default_factory=Bounds)
    initial_bounds: Bounds = field(default_factory=Bounds)
    final_bounds: Bounds = field(default_factory=Bounds)

    def bounds_at(self, column: int, num_columns: int) -> Bounds:
        return _resolve_endpoint_bounds(self, column, num_columns)


@dataclass(frozen=True)
class ParameterInfo:
    name: str
    bounds: Bounds = field(default_factory=Bounds)


def _resolve_endpoint_bounds(info: StateInfo | ControlInfo, column: int, num_columns: int) -> Bounds:
    # First and last mesh points prefer their dedicated bounds when set
    if column == 0 and info.initial_bounds.is_set():
        return info.initial_bounds
    if column == num_columns - 1 and info.final_bounds.is_set():
        return info.final_bounds
    return info.bounds


@dataclass(frozen=True)
class BoundsTable:
    """NLP bounds for one variable category, shaped (quantities, mesh points)."""

    lower: FloatArray
    upper: FloatArray

    @classmethod
    def from_infos(
        cls, infos: Sequence[StateInfo | ControlInfo], num_columns: int
    ) -> BoundsTable:
        lower = np.empty((len(infos), num_columns), dtype=np.float64)
        upper = np.empty((len(infos), num_columns), dtype=np.float64)
        for row, info in enumerate(infos):
            for column in range(num_columns):
                lower[row, column], upper[row, column] = info.bounds_at(
                    column, num_columns
                ).to_nlp()
        return cls(lower, upper)

    @classmethod
    def from_bounds(cls, bounds: Sequence[Bounds], num_columns: int = 1) -> BoundsTable:
        pairs = np.array([b.to_nlp() for b in bounds], dtype=np.float64).reshape(-1, 2)
        lower = np.repeat(pairs[:, :1], num_columns, axis=1)
        upper = np.repeat(pairs[:, 1:], num_columns, axis=1)
        return cls(lower, upper)

    @classmethod
    def empty(cls, num_columns: int) -> BoundsTable:
        return cls(np.empty((0, num_columns)), np.empty((0, num_columns)))

    @property
    def shape(self) -> tuple[int, int]:
        return self.lower.shape
