# kinetolab/kl_types.py
"""
Core type definitions for the KinetoLab optimal control framework.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

import numpy as np
from numpy.typing import NDArray


if TYPE_CHECKING:
    from .problem.functions import (
        EndpointCost,
        IntegralCostIntegrand,
        MultibodySystem,
        PathConstraints,
    )
    from .problem.variables import Bounds, ControlInfo, ParameterInfo, StateInfo


# --- NUMERICAL TYPES ---
FloatArray: TypeAlias = NDArray[np.float64]
IntArray: TypeAlias = NDArray[np.int64]
NumericArrayLike: TypeAlias = (
    NDArray[np.floating[Any]]
    | NDArray[np.integer[Any]]
    | Sequence[float]
    | Sequence[int]
    | list[float]
    | list[int]
)

# --- USER API TYPES ---
BoundsInput: TypeAlias = "Bounds | float | int | tuple[float | int | None, float | int | None] | None"
"""
Type alias for bound specification accepted by the problem builder.

Supported input types:
- Bounds: used as is
- float/int: equality bound (lower == upper == value)
- tuple(lower, upper): range with None for unbounded sides
- None: unset
"""

UserCallback: TypeAlias = Callable[..., Any]
"""User cost, dynamics or path-constraint callback written with CasADi-compatible arithmetic."""

DecisionFunction: TypeAlias = Callable[[Any], Any]
"""Function of the flat decision vector, traced by the derivative adapter."""


# --- INTERNAL INTERFACE PROTOCOLS ---
class ProblemProtocol(Protocol):
    """Read-only query contract consumed by transcriptions and the solver."""

    name: str

    def is_initialized(self) -> bool: ...

    def get_num_states(self) -> int: ...

    def get_num_controls(self) -> int: ...

    def get_num_multipliers(self) -> int: ...

    def get_num_derivatives(self) -> int: ...

    def get_num_parameters(self) -> int: ...

    def get_num_path_constraints(self) -> int: ...

    def get_time_initial_bounds(self) -> Bounds: ...

    def get_time_final_bounds(self) -> Bounds: ...

    def get_state_infos(self) -> list[StateInfo]: ...

    def get_control_infos(self) -> list[ControlInfo]: ...

    def get_parameter_infos(self) -> list[ParameterInfo]: ...

    def get_path_constraint_bounds(self) -> list[Bounds]: ...

    def get_integral_cost_integrand(self) -> IntegralCostIntegrand: ...

    def get_endpoint_cost(self) -> EndpointCost: ...

    def get_multibody_system(self) -> MultibodySystem: ...

    def get_path_constraints(self) -> PathConstraints | None: ...
