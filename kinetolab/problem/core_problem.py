import logging
from collections.abc import Sequence

from ..exceptions import ConfigurationError, NotInitializedError
from ..input_validation import validate_string_not_empty
from ..kl_types import BoundsInput, UserCallback
from .functions import (
    EndpointCost,
    IntegralCostIntegrand,
    MultibodySystem,
    PathConstraints,
    ProblemFunction,
    zero_endpoint_cost,
    zero_integral_cost,
)
from .variables import Bounds, ControlInfo, ParameterInfo, StateInfo, StateType, as_bounds


logger = logging.getLogger(__name__)


def _register_name(name: str, existing: Sequence[str], context: str) -> None:
    validate_string_not_empty(name, f"{context} name")
    if name in existing:
        raise ConfigurationError(f"{context} '{name}' already exists", "Variable naming conflict")


def _as_state_type(value: StateType | str) -> StateType:
    if isinstance(value, StateType):
        return value
    try:
        return StateType(value)
    except ValueError as e:
        valid = ", ".join(t.value for t in StateType)
        raise ConfigurationError(f"Unknown state type {value!r}; expected one of: {valid}") from e


class Problem:
    """
    Multibody optimal control problem: variables, bounds and four callbacks.

    The problem is built incrementally and sealed by ``initialize()``. After
    that it is read-only: adding variables raises ``ConfigurationError`` and
    the query methods become available.

    Examples:
        >>> problem = Problem("Point to point")
        >>> problem.set_time_bounds(0.0, 1.0)
        >>> problem.add_state("x", StateType.COORDINATE, (-10, 10), 0.0)
        >>> problem.add_control("u", (-50, 50))
        >>> problem.set_dynamics_function(lambda t, x, u, p: u)
        >>> problem.set_endpoint_cost_function(lambda tf, xf, p: (xf[0] - 5) ** 2)
        >>> problem.initialize()
    """

    def __init__(self, name: str = "Optimal Control Problem") -> None:
        validate_string_not_empty(name, "Problem name")
        self.name = name

        self._time_initial_bounds = Bounds()
        self._time_final_bounds = Bounds()
        self._state_infos: list[StateInfo] = []
        self._control_infos: list[ControlInfo] = []
        self._parameter_infos: list[ParameterInfo] = []

        self._integral_cost: IntegralCostIntegrand | None = None
        self._endpoint_cost: EndpointCost | None = None
        self._multibody_system: MultibodySystem | None = None
        self._path_constraints: PathConstraints | None = None

        self._initialized = False
        self._num_coordinates = 0
        self._num_speeds = 0
        self._num_auxiliary_states = 0

        logger.debug("Created problem: '%s'", name)

    # ------------------------------------------------------------------
    # Builder interface
    # ------------------------------------------------------------------

    def _require_mutable(self, action: str) -> None:
        if self._initialized:
            raise ConfigurationError(
                f"Cannot {action} after initialize()", f"problem '{self.name}'"
            )

    def set_time_bounds(self, initial: BoundsInput, final: BoundsInput) -> None:
        self._require_mutable("set time bounds")
        self._time_initial_bounds = as_bounds(initial, "initial time bounds")
        self._time_final_bounds = as_bounds(final, "final time bounds")

    def add_state(
        self,
        name: str,
        type: StateType | str = StateType.COORDINATE,
        bounds: BoundsInput = None,
        initial_bounds: BoundsInput = None,
        final_bounds: BoundsInput = None,
    ) -> None:
        """Append a state. Coordinates and speeds must come before auxiliary states."""
        self._require_mutable("add state")
        _register_name(name, [info.name for info in self._state_infos], "State")
        state_type = _as_state_type(type)

        if state_type is not StateType.AUXILIARY and any(
            info.type is StateType.AUXILIARY for info in self._state_infos
        ):
            raise ConfigurationError(
                f"State '{name}' ({state_type.value}) added after an auxiliary state",
                "States must be added in the order coordinates, speeds, auxiliary",
            )

        context = f"state '{name}'"
        self._state_infos.append(
            StateInfo(
                name=name,
                type=state_type,
                bounds=as_bounds(bounds, context),
                initial_bounds=as_bounds(initial_bounds, f"{context} initial"),
                final_bounds=as_bounds(final_bounds, f"{context} final"),
            )
        )
        logger.debug("Added state '%s' (%s)", name, state_type.value)

    def add_control(
        self,
        name: str,
        bounds: BoundsInput = None,
        initial_bounds: BoundsInput = None,
        final_bounds: BoundsInput = None,
    ) -> None:
        self._require_mutable("add control")
        _register_name(name, [info.name for info in self._control_infos], "Control")

        context = f"control '{name}'"
        self._control_infos.append(
            ControlInfo(
                name=name,
                bounds=as_bounds(bounds, context),
                initial_bounds=as_bounds(initial_bounds, f"{context} initial"),
                final_bounds=as_bounds(final_bounds, f"{context} final"),
            )
        )
        logger.debug("Added control '%s'", name)

    def add_parameter(self, name: str, bounds: BoundsInput = None) -> None:
        """Append a time-invariant decision variable passed to every callback."""
        self._require_mutable("add parameter")
        _register_name(name, [info.name for info in self._parameter_infos], "Parameter")
        self._parameter_infos.append(
            ParameterInfo(name=name, bounds=as_bounds(bounds, f"parameter '{name}'"))
        )
        logger.debug("Added parameter '%s'", name)

    def _replace_function(self, attribute: str, function: ProblemFunction | None) -> None:
        previous = getattr(self, attribute)
        if previous is not None:
            previous.release()
        setattr(self, attribute, function)

    def set_integral_cost_function(self, callback: UserCallback) -> None:
        self._require_mutable("set integral cost")
        self._replace_function("_integral_cost", IntegralCostIntegrand(callback))

    def set_endpoint_cost_function(self, callback: UserCallback) -> None:
        self._require_mutable("set endpoint cost")
        self._replace_function("_endpoint_cost", EndpointCost(callback))

    def set_dynamics_function(self, callback: UserCallback) -> None:
        self._require_mutable("set dynamics")
        self._replace_function("_multibody_system", MultibodySystem(callback))

    def set_path_constraints_function(
        self, callback: UserCallback, bounds: Sequence[BoundsInput]
    ) -> None:
        """Set the path constraints; ``bounds`` holds one entry per callback output."""
        self._require_mutable("set path constraints")
        # A bare (lower, upper) pair is ambiguous with two equality outputs
        bare_pair = isinstance(bounds, tuple) and all(
            entry is None or isinstance(entry, int | float) for entry in bounds
        )
        if isinstance(bounds, Bounds) or bare_pair or not bounds:
            raise ConfigurationError(
                "Path constraint bounds must be a non-empty list with one entry per output"
            )
        resolved = []
        for i, entry in enumerate(bounds):
            if entry is None:
                raise ConfigurationError(f"Path constraint {i} bounds cannot be unset")
            resolved.append(as_bounds(entry, f"path constraint {i}"))
        self._replace_function("_path_constraints", PathConstraints(callback, resolved))

    def initialize(self) -> None:
        """Validate the problem and freeze derived counts. Idempotent."""
        if self._initialized:
            logger.debug("Problem '%s' already initialized", self.name)
            return

        if not self._state_infos:
            raise ConfigurationError("Problem must have at least one state", self.name)
        if self._multibody_system is None:
            raise ConfigurationError(
                "Problem must have dynamics - call set_dynamics_function()", self.name
            )

        self._validate_bounds()

        if self._integral_cost is None:
            self._integral_cost = zero_integral_cost()
        if self._endpoint_cost is None:
            self._endpoint_cost = zero_endpoint_cost()

        self._num_coordinates = sum(i.type is StateType.COORDINATE for i in self._state_infos)
        self._num_speeds = sum(i.type is StateType.SPEED for i in self._state_infos)
        self._num_auxiliary_states = sum(
            i.type is StateType.AUXILIARY for i in self._state_infos
        )

        for function in self._functions():
            function.bind(self)

        self._initialized = True
        logger.info(
            "Initialized problem '%s': states=%d (q=%d, u=%d, z=%d), controls=%d, parameters=%d",
            self.name,
            len(self._state_infos),
            self._num_coordinates,
            self._num_speeds,
            self._num_auxiliary_states,
            len(self._control_infos),
            len(self._parameter_infos),
        )

    def _validate_bounds(self) -> None:
        self._time_initial_bounds.validate("initial time bounds")
        self._time_final_bounds.validate("final time bounds")
        for info in self._state_infos + self._control_infos:
            info.bounds.validate(f"'{info.name}' bounds")
            info.initial_bounds.validate(f"'{info.name}' initial bounds")
            info.final_bounds.validate(f"'{info.name}' final bounds")
        for parameter in self._parameter_infos:
            parameter.bounds.validate(f"parameter '{parameter.name}' bounds")
        if self._path_constraints is not None:
            for i, bounds in enumerate(self._path_constraints.bounds):
                bounds.validate(f"path constraint {i} bounds")

    def _functions(self) -> list[ProblemFunction]:
        functions: list[ProblemFunction | None] = [
            self._integral_cost,
            self._endpoint_cost,
            self._multibody_system,
            self._path_constraints,
        ]
        return [f for f in functions if f is not None]

    # ------------------------------------------------------------------
    # Query interface
    # ------------------------------------------------------------------

    def _require_initialized(self, query: str) -> None:
        if not self._initialized:
            raise NotInitializedError(
                f"Problem '{self.name}' queried before initialize()", query
            )

    def is_initialized(self) -> bool:
        return self._initialized

    # Raw counts for callback binding; available while building
    @property
    def _num_states(self) -> int:
        return len(self._state_infos)

    @property
    def _num_controls(self) -> int:
        return len(self._control_infos)

    @property
    def _num_parameters(self) -> int:
        return len(self._parameter_infos)

    def get_num_states(self) -> int:
        self._require_initialized("get_num_states")
        return self._num_states

    def get_num_controls(self) -> int:
        self._require_initialized("get_num_controls")
        return self._num_controls

    def get_num_parameters(self) -> int:
        self._require_initialized("get_num_parameters")
        return self._num_parameters

    def get_num_multipliers(self) -> int:
        # Kinematic constraints are not modeled; the category stays empty
        self._require_initialized("get_num_multipliers")
        return 0

    def get_num_derivatives(self) -> int:
        self._require_initialized("get_num_derivatives")
        return 0

    def get_num_coordinates(self) -> int:
        """Number of generalized coordinates, which may exceed the number of speeds."""
        self._require_initialized("get_num_coordinates")
        return self._num_coordinates

    def get_num_speeds(self) -> int:
        self._require_initialized("get_num_speeds")
        return self._num_speeds

    def get_num_auxiliary_states(self) -> int:
        self._require_initialized("get_num_auxiliary_states")
        return self._num_auxiliary_states

    def get_num_path_constraints(self) -> int:
        self._require_initialized("get_num_path_constraints")
        return 0 if self._path_constraints is None else len(self._path_constraints.bounds)

    def get_time_initial_bounds(self) -> Bounds:
        self._require_initialized("get_time_initial_bounds")
        return self._time_initial_bounds

    def get_time_final_bounds(self) -> Bounds:
        self._require_initialized("get_time_final_bounds")
        return self._time_final_bounds

    def get_state_infos(self) -> list[StateInfo]:
        self._require_initialized("get_state_infos")
        return list(self._state_infos)

    def get_control_infos(self) -> list[ControlInfo]:
        self._require_initialized("get_control_infos")
        return list(self._control_infos)

    def get_parameter_infos(self) -> list[ParameterInfo]:
        self._require_initialized("get_parameter_infos")
        return list(self._parameter_infos)

    def get_path_constraint_bounds(self) -> list[Bounds]:
        self._require_initialized("get_path_constraint_bounds")
        return [] if self._path_constraints is None else list(self._path_constraints.bounds)

    def get_state_names(self) -> list[str]:
        return [info.name for info in self.get_state_infos()]

    def get_control_names(self) -> list[str]:
        return [info.name for info in self.get_control_infos()]

    def get_parameter_names(self) -> list[str]:
        return [info.name for info in self.get_parameter_infos()]

    def get_multiplier_names(self) -> list[str]:
        self._require_initialized("get_multiplier_names")
        return []

    def get_derivative_names(self) -> list[str]:
        self._require_initialized("get_derivative_names")
        return []

    def get_integral_cost_integrand(self) -> IntegralCostIntegrand:
        self._require_initialized("get_integral_cost_integrand")
        assert self._integral_cost is not None
        return self._integral_cost

    def get_endpoint_cost(self) -> EndpointCost:
        self._require_initialized("get_endpoint_cost")
        assert self._endpoint_cost is not None
        return self._endpoint_cost

    def get_multibody_system(self) -> MultibodySystem:
        self._require_initialized("get_multibody_system")
        assert self._multibody_system is not None
        return self._multibody_system

    def get_path_constraints(self) -> PathConstraints | None:
        self._require_initialized("get_path_constraints")
        return self._path_constraints
