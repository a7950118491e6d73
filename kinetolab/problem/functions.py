"""
CasADi wrappers around the four user callbacks of a problem.

Each wrapper traces its callback once with SX symbols of a fixed signature
and afterwards behaves like the resulting ``casadi.Function``: calling it
with symbolic arguments inlines the recorded graph, calling it with numbers
evaluates it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, ClassVar

import casadi as ca

from ..exceptions import DataIntegrityError, KinetoLabBaseError, UserFunctionError
from ..input_validation import validate_callable
from ..kl_types import UserCallback
from ..utils.casadi_utils import as_casadi_column
from .variables import Bounds


if TYPE_CHECKING:
    from .core_problem import Problem


logger = logging.getLogger(__name__)


class ProblemFunction(ABC):
    """A user callback with a signature fixed by the problem dimensions."""

    kind: ClassVar[str]
    input_names: ClassVar[tuple[str, ...]]

    def __init__(self, callback: UserCallback) -> None:
        validate_callable(callback, f"{self.kind} callback")
        self.callback = callback
        self._input_sizes: tuple[int, ...] | None = None
        self._num_outputs: int | None = None
        self._function: ca.Function | None = None

    @abstractmethod
    def signature(self, problem: Problem) -> tuple[tuple[int, ...], int]:
        """Input sizes and output count implied by the problem."""

    def bind(self, problem: Problem) -> None:
        input_sizes, num_outputs = self.signature(problem)
        if (input_sizes, num_outputs) != (self._input_sizes, self._num_outputs):
            self._function = None
        self._input_sizes = input_sizes
        self._num_outputs = num_outputs

    @property
    def num_outputs(self) -> int:
        if self._num_outputs is None:
            raise DataIntegrityError(f"{self.kind} used before being bound to a problem")
        return self._num_outputs

    def casadi_function(self) -> ca.Function:
        """The traced function, recording the callback on first use."""
        if self._function is None:
            self._function = self._trace()
        return self._function

    def _trace(self) -> ca.Function:
        if self._input_sizes is None or self._num_outputs is None:
            raise DataIntegrityError(f"{self.kind} used before being bound to a problem")

        inputs = [
            ca.SX.sym(name, size) for name, size in zip(self.input_names, self._input_sizes)
        ]
        try:
            output = as_casadi_column(self.callback(*inputs))
        except KinetoLabBaseError:
            raise
        except Exception as e:
            raise UserFunctionError(str(e), f"{self.kind} callback") from e

        if output.numel() != self._num_outputs:
            raise UserFunctionError(
                f"returned {output.numel()} value(s), expected {self._num_outputs}",
                f"{self.kind} callback",
            )

        logger.debug(
            "Traced %s: inputs=%s, outputs=%d", self.kind, self._input_sizes, self._num_outputs
        )
        return ca.Function(self.kind, inputs, [output], list(self.input_names), ["out"])

    def __call__(self, *args: Any) -> Any:
        return self.casadi_function()(*args)

    def release(self) -> None:
        self._function = None


class IntegralCostIntegrand(ProblemFunction):
    """``(time, states, controls, parameters) -> scalar`` integrated over the mesh."""

    kind = "integral_cost_integrand"
    input_names = ("time", "states", "controls", "parameters")

    def signature(self, problem: Problem) -> tuple[tuple[int, ...], int]:
        return (1, problem._num_states, problem._num_controls, problem._num_parameters), 1


class EndpointCost(ProblemFunction):
    """``(final_time, final_states, parameters) -> scalar`` evaluated once."""

    kind = "endpoint_cost"
    input_names = ("final_time", "final_states", "parameters")

    def signature(self, problem: Problem) -> tuple[tuple[int, ...], int]:
        return (1, problem._num_states, problem._num_parameters), 1


class MultibodySystem(ProblemFunction):
    """``(time, states, controls, parameters) -> state derivatives``.

    Outputs follow state order: coordinate rates, speed rates, auxiliary rates.
    """

    kind = "multibody_system"
    input_names = ("time", "states", "controls", "parameters")

    def signature(self, problem: Problem) -> tuple[tuple[int, ...], int]:
        return (1, problem._num_states, problem._num_controls, problem._num_parameters), (
            problem._num_states
        )


class PathConstraints(ProblemFunction):
    """``(time, states, controls, parameters) -> vector`` enforced at every mesh point."""

    kind = "path_constraints"
    input_names = ("time", "states", "controls", "parameters")

    def __init__(self, callback: UserCallback, bounds: Sequence[Bounds]) -> None:
        super().__init__(callback)
        self.bounds = list(bounds)

    def signature(self, problem: Problem) -> tuple[tuple[int, ...], int]:
        return (1, problem._num_states, problem._num_controls, problem._num_parameters), len(
            self.bounds
        )


def _zero_callback(*args: Any) -> float:
    return 0.0


def zero_integral_cost() -> IntegralCostIntegrand:
    return IntegralCostIntegrand(_zero_callback)


def zero_endpoint_cost() -> EndpointCost:
    return EndpointCost(_zero_callback)
