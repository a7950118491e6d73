"""
Exact sparse derivatives of an NLP described by two decision-vector functions.

The adapter records three independent tapes (objective, constraints and the
Lagrangian ``obj_factor * f(x) + lambda . g(x)``) the first time each is
needed, analyses Jacobian and Hessian sparsity once, and afterwards only
replays the recorded graphs. It implements the five-callback contract of
interior-point/SQP solvers.

An adapter is single-threaded: evaluating it from two threads at once raises
``EvaluationError``. Independent problems should each use their own adapter.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import casadi as ca
import numpy as np
import scipy.sparse as sp

from ..exceptions import EvaluationError
from ..input_validation import validate_positive_integer, validate_vector_length
from ..kl_types import DecisionFunction, FloatArray, NumericArrayLike
from ..utils.casadi_utils import as_casadi_column
from .tape import SparsityPattern, Tape


logger = logging.getLogger(__name__)


def _gradient(inputs: list[ca.SX], output: ca.SX) -> ca.SX:
    return ca.densify(ca.gradient(output, inputs[0]))


def _jacobian(inputs: list[ca.SX], output: ca.SX) -> ca.SX:
    return ca.jacobian(output, inputs[0])


def _hessian_lower(inputs: list[ca.SX], output: ca.SX) -> ca.SX:
    hessian, _ = ca.hessian(output, inputs[0])
    return ca.tril(hessian)


def _no_constraints(x: Any) -> ca.SX:
    return ca.SX(0, 1)


class DifferentiableFunctionAdapter:
    """Traced objective/constraint functions with cached sparsity.

    Args:
        objective: Scalar function of the flat decision vector
        constraints: Vector function of the flat decision vector (None for no constraints)
        num_variables: Length of the decision vector
        name: Prefix used for tape names in logs
    """

    def __init__(
        self,
        objective: DecisionFunction,
        constraints: DecisionFunction | None,
        num_variables: int,
        name: str = "nlp",
    ) -> None:
        validate_positive_integer(num_variables, "number of decision variables")
        self.name = name
        self.num_variables = int(num_variables)
        self._objective_fn = objective
        self._constraints_fn = constraints if constraints is not None else _no_constraints

        self._tapes: dict[str, Tape] = {}
        self._cache: dict[Any, Any] = {}
        self._last_x: FloatArray | None = None
        self._lock = threading.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    # Tape ownership
    # ------------------------------------------------------------------

    def _tape(self, key: str) -> Tape:
        if self._closed:
            raise EvaluationError(f"Adapter '{self.name}' was closed")
        if key not in self._tapes:
            self._tapes[key] = self._record(key)
        return self._tapes[key]

    def _record(self, key: str) -> Tape:
        n = self.num_variables
        tape_name = f"{self.name}_{key}"
        if key == "objective":
            return Tape.record(tape_name, self._objective_fn, [("x", n)])
        if key == "constraints":
            return Tape.record(tape_name, self._constraints_fn, [("x", n)])
        if key == "lagrangian":
            m = self.num_constraints

            def lagrangian(x: ca.SX, obj_factor: ca.SX, lambda_: ca.SX) -> ca.SX:
                objective_value = as_casadi_column(self._objective_fn(x))
                constraint_values = as_casadi_column(self._constraints_fn(x))
                return obj_factor * objective_value + ca.dot(lambda_, constraint_values)

            return Tape.record(tape_name, lagrangian, [("x", n), ("obj_factor", 1), ("lambda", m)])
        raise EvaluationError(f"Unknown tape '{key}'")

    @property
    def num_constraints(self) -> int:
        return self._tape("constraints").num_outputs

    def close(self) -> None:
        """Release every tape and cached buffer owned by this adapter."""
        for tape in self._tapes.values():
            tape.release()
        self._tapes.clear()
        self._cache.clear()
        self._last_x = None
        self._closed = True

    def __enter__(self) -> DifferentiableFunctionAdapter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __copy__(self) -> DifferentiableFunctionAdapter:
        raise TypeError("DifferentiableFunctionAdapter owns live tapes and cannot be copied")

    def __deepcopy__(self, memo: dict[int, Any]) -> DifferentiableFunctionAdapter:
        raise TypeError("DifferentiableFunctionAdapter owns live tapes and cannot be copied")

    # ------------------------------------------------------------------
    # Point caching
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise EvaluationError(
                f"Adapter '{self.name}' evaluated from two threads at once",
                "Use one adapter per thread",
            )
        try:
            yield
        finally:
            self._lock.release()

    def _as_point(self, x: NumericArrayLike) -> FloatArray:
        point = np.asarray(x, dtype=np.float64)
        if point.ndim == 2 and 1 in point.shape:
            point = point.ravel()
        validate_vector_length(point, self.num_variables, "Decision vector")
        return point

    def _cached(
        self,
        key: Any,
        x: NumericArrayLike,
        new_x: bool,
        compute: Callable[[FloatArray], Any],
        discard: str | None = None,
    ) -> Any:
        point = self._as_point(x)
        with self._exclusive():
            # Only trust new_x=False when the point really is unchanged
            if new_x or self._last_x is None or not np.array_equal(point, self._last_x):
                self._cache.clear()
                self._last_x = point.copy()
            if discard is not None:
                for stale in [k for k in self._cache if isinstance(k, tuple) and k[0] == discard]:
                    del self._cache[stale]
            if key not in self._cache:
                self._cache[key] = compute(point)
            value = self._cache[key]
        return value.copy() if isinstance(value, np.ndarray) else value

    # ------------------------------------------------------------------
    # Five-callback contract
    # ------------------------------------------------------------------

    def objective(self, x: NumericArrayLike, new_x: bool = True) -> float:
        return self._cached(
            "objective", x, new_x, lambda p: float(self._tape("objective").evaluate(p)[0])
        )

    def constraints(self, x: NumericArrayLike, new_x: bool = True) -> FloatArray:
        return self._cached("constraints", x, new_x, lambda p: self._tape("constraints").evaluate(p))

    def gradient(self, x: NumericArrayLike, new_x: bool = True) -> FloatArray:
        return self._cached(
            "gradient",
            x,
            new_x,
            lambda p: self._tape("objective").evaluate_dense("gradient", _gradient, p),
        )

    def jacobian(self, x: NumericArrayLike, new_x: bool = True) -> FloatArray:
        """Constraint Jacobian nonzeros aligned with ``jacobian_sparsity()``."""
        return self._cached(
            "jacobian",
            x,
            new_x,
            lambda p: self._tape("constraints").evaluate_nonzeros("jacobian", _jacobian, p),
        )

    def hessian_lagrangian(
        self,
        x: NumericArrayLike,
        obj_factor: float,
        lambda_: NumericArrayLike,
        new_x: bool = True,
        new_lambda: bool = True,
    ) -> FloatArray:
        """Lower-triangle nonzeros of ``obj_factor * H_f + sum(lambda_i * H_gi)``.

        Values are aligned with ``hessian_sparsity()``.
        """
        multipliers = np.asarray(lambda_, dtype=np.float64).ravel()
        if multipliers.shape[0] != self.num_constraints:
            raise EvaluationError(
                f"Multiplier vector has {multipliers.shape[0]} entries, "
                f"expected {self.num_constraints}",
                "Multiplier size mismatch",
            )
        sigma = float(obj_factor)
        key = ("hessian", sigma, multipliers.tobytes())
        return self._cached(
            key,
            x,
            new_x,
            lambda p: self._tape("lagrangian").evaluate_nonzeros(
                "hessian", _hessian_lower, p, sigma, multipliers
            ),
            discard="hessian" if new_lambda else None,
        )

    # ------------------------------------------------------------------
    # Sparsity
    # ------------------------------------------------------------------

    def jacobian_sparsity(self) -> SparsityPattern:
        _, pattern = self._tape("constraints").derivative("jacobian", _jacobian)
        return pattern

    def hessian_sparsity(self) -> SparsityPattern:
        _, pattern = self._tape("lagrangian").derivative("hessian", _hessian_lower)
        return pattern

    def sparsity(self) -> tuple[SparsityPattern, SparsityPattern]:
        """Jacobian and Hessian-of-Lagrangian patterns, discovered once."""
        return self.jacobian_sparsity(), self.hessian_sparsity()

    # ------------------------------------------------------------------
    # Conveniences for matrix-based backends
    # ------------------------------------------------------------------

    def jacobian_matrix(self, x: NumericArrayLike, new_x: bool = True) -> sp.csr_matrix:
        return self.jacobian_sparsity().to_scipy(self.jacobian(x, new_x))

    def hessian_matrix(
        self, x: NumericArrayLike, obj_factor: float, lambda_: NumericArrayLike
    ) -> sp.csr_matrix:
        """Full symmetric Hessian of the Lagrangian."""
        lower = self.hessian_sparsity().to_scipy(self.hessian_lagrangian(x, obj_factor, lambda_))
        return (lower + lower.T - sp.diags(lower.diagonal())).tocsr()

    def symbolic_objective(self, x: ca.SX | ca.MX) -> ca.SX | ca.MX:
        """Recorded objective graph applied to ``x``, for backends that take graphs."""
        return self._tape("objective").function(x)

    def symbolic_constraints(self, x: ca.SX | ca.MX) -> ca.SX | ca.MX:
        return self._tape("constraints").function(x)
