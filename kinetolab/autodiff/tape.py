"""
Recorded computational graphs ("tapes") and their cached sparsity patterns.

A tape is an explicit handle: it owns one CasADi SX graph recorded from a
callback plus every derivative graph and sparsity pattern derived from it.
There is no process-wide registry of tapes; releasing a tape drops all of
its buffers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import casadi as ca
import numpy as np
import scipy.sparse as sp

from ..exceptions import EvaluationError, KinetoLabBaseError, UserFunctionError
from ..kl_types import FloatArray, IntArray
from ..utils.casadi_utils import as_casadi_column, casadi_nonzeros, casadi_to_numpy


logger = logging.getLogger(__name__)

DerivativeBuilder = Callable[[list[ca.SX], ca.SX], ca.SX]


@dataclass(frozen=True)
class SparsityPattern:
    """Row/column indices of the structural nonzeros of a derivative matrix.

    Indices follow CasADi's column-major nonzero order, which is also the
    order of the values returned by ``Tape.evaluate_nonzeros``.
    """

    num_rows: int
    num_cols: int
    rows: IntArray
    cols: IntArray

    @classmethod
    def from_casadi(cls, sparsity: ca.Sparsity) -> SparsityPattern:
        rows, cols = sparsity.get_triplet()
        row_array = np.asarray(rows, dtype=np.int64)
        col_array = np.asarray(cols, dtype=np.int64)
        row_array.setflags(write=False)
        col_array.setflags(write=False)
        return cls(sparsity.size1(), sparsity.size2(), row_array, col_array)

    @property
    def nnz(self) -> int:
        return int(self.rows.size)

    def to_scipy(self, values: FloatArray) -> sp.csr_matrix:
        if values.shape != (self.nnz,):
            raise EvaluationError(
                f"Got {values.size} nonzero values for a pattern with {self.nnz} entries"
            )
        return sp.coo_matrix(
            (values, (self.rows, self.cols)), shape=(self.num_rows, self.num_cols)
        ).tocsr()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparsityPattern):
            return NotImplemented
        return (
            self.num_rows == other.num_rows
            and self.num_cols == other.num_cols
            and np.array_equal(self.rows, other.rows)
            and np.array_equal(self.cols, other.cols)
        )

    def __hash__(self) -> int:
        return hash((self.num_rows, self.num_cols, self.rows.tobytes(), self.cols.tobytes()))


class Tape:
    """One recorded callback graph, replayed at numeric points."""

    def __init__(self, name: str, inputs: list[ca.SX], output: ca.SX) -> None:
        self.name = name
        self._inputs: list[ca.SX] | None = inputs
        self._output: ca.SX | None = output
        self._function: ca.Function | None = ca.Function(name, inputs, [output])
        self._derivatives: dict[str, tuple[ca.Function, SparsityPattern]] = {}

    @classmethod
    def record(
        cls, name: str, callback: Callable[..., Any], input_sizes: Sequence[tuple[str, int]]
    ) -> Tape:
        """Execute ``callback`` once with SX symbols and keep the resulting graph."""
        inputs = [ca.SX.sym(input_name, size) for input_name, size in input_sizes]
        try:
            output = as_casadi_column(callback(*inputs))
        except KinetoLabBaseError:
            raise
        except Exception as e:
            raise UserFunctionError(str(e), f"recording tape '{name}'") from e

        tape = cls(name, inputs, output)
        logger.debug(
            "Recorded tape '%s': inputs=%s, outputs=%d, operations=%d",
            name,
            [size for _, size in input_sizes],
            output.numel(),
            tape.function.n_instructions(),
        )
        return tape

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    @property
    def is_live(self) -> bool:
        return self._function is not None

    def release(self) -> None:
        """Drop the recorded graph, derivative graphs and sparsity buffers."""
        if self._function is not None:
            logger.debug("Releasing tape '%s'", self.name)
        self._function = None
        self._inputs = None
        self._output = None
        self._derivatives.clear()

    def __enter__(self) -> Tape:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __copy__(self) -> Tape:
        raise TypeError("Tape owns its recorded graph and cannot be copied")

    def __deepcopy__(self, memo: dict[int, Any]) -> Tape:
        raise TypeError("Tape owns its recorded graph and cannot be copied")

    def _require_live(self) -> None:
        if self._function is None:
            raise EvaluationError(f"Tape '{self.name}' was released")

    # ------------------------------------------------------------------
    # Graph access
    # ------------------------------------------------------------------

    @property
    def function(self) -> ca.Function:
        self._require_live()
        assert self._function is not None
        return self._function

    @property
    def num_outputs(self) -> int:
        self._require_live()
        assert self._output is not None
        return int(self._output.numel())

    def derivative(self, key: str, build: DerivativeBuilder) -> tuple[ca.Function, SparsityPattern]:
        """Derivative graph and its sparsity, analysed once and cached under ``key``."""
        self._require_live()
        if key not in self._derivatives:
            assert self._inputs is not None and self._output is not None
            expression = build(self._inputs, self._output)
            function = ca.Function(f"{self.name}_{key}", self._inputs, [expression])
            pattern = SparsityPattern.from_casadi(expression.sparsity())
            self._derivatives[key] = (function, pattern)
            logger.debug(
                "Tape '%s' %s sparsity: %dx%d, nnz=%d",
                self.name,
                key,
                pattern.num_rows,
                pattern.num_cols,
                pattern.nnz,
            )
        return self._derivatives[key]

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def evaluate(self, *args: Any) -> FloatArray:
        """Replay the recorded graph; dense column-major output."""
        return casadi_to_numpy(self._replay(self.function, args))

    def evaluate_nonzeros(self, key: str, build: DerivativeBuilder, *args: Any) -> FloatArray:
        """Replay a derivative graph; values aligned with its sparsity pattern."""
        function, _ = self.derivative(key, build)
        return casadi_nonzeros(self._replay(function, args))

    def evaluate_dense(self, key: str, build: DerivativeBuilder, *args: Any) -> FloatArray:
        function, _ = self.derivative(key, build)
        return casadi_to_numpy(self._replay(function, args))

    def _replay(self, function: ca.Function, args: Sequence[Any]) -> ca.DM:
        try:
            return function(*[ca.DM(np.asarray(arg, dtype=np.float64).reshape(-1, 1)) for arg in args])
        except RuntimeError as e:
            raise EvaluationError(str(e), f"replaying tape '{self.name}'") from e
