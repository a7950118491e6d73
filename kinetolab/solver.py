"""
Solver orchestration: mesh and backend configuration, initial guesses and solve.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import numpy as np

from .autodiff import DifferentiableFunctionAdapter
from .backends import create_backend, validate_optim_solver
from .exceptions import (
    ConfigurationError,
    DataIntegrityError,
    KinetoLabBaseError,
    NotInitializedError,
    SolveError,
)
from .input_validation import (
    validate_array_numerical_integrity,
    validate_normalized_mesh,
    validate_num_mesh_points,
    validate_options_mapping,
)
from .iterate import Iterate, Solution
from .kl_types import FloatArray, NumericArrayLike, ProblemProtocol
from .transcription import Transcription, create_transcription, validate_transcription_scheme
from .utils.constants import DEFAULT_OPTIM_SOLVER, DEFAULT_RANDOM_RANGE, RESAMPLE_TOLERANCE


logger = logging.getLogger(__name__)


class SolverState(Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    SOLVING = "solving"
    SOLVED = "solved"
    FAILED = "failed"


class Solver:
    """
    Transcribes an initialized problem and solves it with an NLP backend.

    The solver borrows the problem: it never modifies it, and the problem must
    stay alive and unchanged for as long as the solver is used. Each call to
    ``solve`` builds and discards its own transcription and derivative tapes.

    Args:
        problem: Problem on which ``initialize()`` has been called

    Raises:
        NotInitializedError: If the problem is not initialized

    Examples:
        >>> solver = Solver(problem)
        >>> solver.set_num_mesh_points(10)
        >>> solver.set_transcription_scheme("trapezoidal")
        >>> solution = solver.solve()
        >>> solution.success
        True
    """

    def __init__(self, problem: ProblemProtocol) -> None:
        if not problem.is_initialized():
            raise NotInitializedError(
                f"Problem '{problem.name}' must be initialized before creating a solver"
            )
        self.problem = problem
        self._mesh: FloatArray | None = None
        self._scheme: str | None = None
        self._optim_solver = DEFAULT_OPTIM_SOLVER
        self._plugin_options: dict[str, Any] = {}
        self._solver_options: dict[str, Any] = {}
        self._state = SolverState.UNCONFIGURED

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def state(self) -> SolverState:
        return self._state

    def is_configured(self) -> bool:
        return self._mesh is not None and self._scheme is not None

    def _configuration_changed(self) -> None:
        self._state = SolverState.CONFIGURED if self.is_configured() else SolverState.UNCONFIGURED

    def set_num_mesh_points(self, num_mesh_points: int) -> None:
        """Use a uniform mesh with ``num_mesh_points`` points (at least 2)."""
        validate_num_mesh_points(num_mesh_points)
        self._mesh = np.linspace(0.0, 1.0, int(num_mesh_points))
        self._configuration_changed()

    def set_mesh(self, mesh: NumericArrayLike) -> None:
        """Use an arbitrary normalized mesh: strictly increasing from 0 to 1."""
        self._mesh = validate_normalized_mesh(mesh)
        self._configuration_changed()

    def get_num_mesh_points(self) -> int | None:
        return None if self._mesh is None else int(self._mesh.size)

    def get_mesh(self) -> FloatArray | None:
        return None if self._mesh is None else self._mesh.copy()

    def set_transcription_scheme(self, scheme: str) -> None:
        validate_transcription_scheme(scheme)
        self._scheme = scheme
        self._configuration_changed()

    def get_transcription_scheme(self) -> str | None:
        return self._scheme

    def set_optim_solver(self, name: str) -> None:
        """Select the NLP backend: ``"ipopt"``, ``"cyipopt"``, ``"scipy-slsqp"`` or ``"scipy-trust-constr"``."""
        validate_optim_solver(name)
        self._optim_solver = name

    def get_optim_solver(self) -> str:
        return self._optim_solver

    def set_plugin_options(self, options: dict[str, Any]) -> None:
        """Options for the backend driver, passed through uninterpreted."""
        validate_options_mapping(options, "Plugin options")
        self._plugin_options = dict(options)

    def get_plugin_options(self) -> dict[str, Any]:
        return dict(self._plugin_options)

    def set_solver_options(self, options: dict[str, Any]) -> None:
        """Options for the numerical method (IPOPT options, SciPy ``options``)."""
        validate_options_mapping(options, "Solver options")
        self._solver_options = dict(options)

    def get_solver_options(self) -> dict[str, Any]:
        return dict(self._solver_options)

    def _transcription(self) -> Transcription:
        if self._mesh is None or self._scheme is None:
            raise ConfigurationError(
                "Mesh and transcription scheme must be set first",
                f"Solver state: {self._state.value}",
            )
        return create_transcription(self._scheme, self.problem, self._mesh)

    # ------------------------------------------------------------------
    # Initial guesses
    # ------------------------------------------------------------------

    def create_initial_guess_from_bounds(self) -> Iterate:
        """
        Deterministic iterate built from the variable bounds.

        Each entry is the midpoint when both bounds are finite, the finite
        bound when only one is, and zero when the entry is unbounded.
        """
        return self._guess_from_bounds(self._transcription())

    def _guess_from_bounds(self, transcription: Transcription) -> Iterate:
        lower, upper = transcription.variable_bounds()
        has_lower = np.isfinite(lower)
        has_upper = np.isfinite(upper)
        finite_lower = np.where(has_lower, lower, 0.0)
        finite_upper = np.where(has_upper, upper, 0.0)

        x = np.zeros_like(lower)
        x = np.where(has_lower & ~has_upper, finite_lower, x)
        x = np.where(has_upper & ~has_lower, finite_upper, x)
        x = np.where(has_lower & has_upper, 0.5 * (finite_lower + finite_upper), x)
        return transcription.create_iterate(x)

    def create_random_iterate_within_bounds(self, seed: int | None = None) -> Iterate:
        """
        Iterate drawn uniformly within the variable bounds.

        Unbounded sides are replaced by a range of ``DEFAULT_RANDOM_RANGE``
        around zero or around the finite bound. Pass ``seed`` for
        reproducible draws.
        """
        transcription = self._transcription()
        lower, upper = transcription.variable_bounds()
        has_lower = np.isfinite(lower)
        has_upper = np.isfinite(upper)

        low = np.where(has_lower, lower, np.where(has_upper, upper - DEFAULT_RANDOM_RANGE, -DEFAULT_RANDOM_RANGE))
        high = np.where(has_upper, upper, np.where(has_lower, lower + DEFAULT_RANDOM_RANGE, DEFAULT_RANDOM_RANGE))

        rng = np.random.default_rng(seed)
        return transcription.create_iterate(rng.uniform(low, high))

    def _guess_on_mesh(self, guess: Iterate, transcription: Transcription) -> Iterate:
        target_times = transcription.mesh_times(guess.initial_time, guess.final_time)
        if guess.num_times == target_times.size and np.allclose(
            guess.times, target_times, rtol=0.0, atol=RESAMPLE_TOLERANCE
        ):
            return guess
        logger.debug(
            "Resampling guess from %d to %d mesh points",
            guess.num_times,
            transcription.num_mesh_points,
        )
        return guess.resample(target_times)

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(self, guess: Iterate | None = None) -> Solution:
        """
        Transcribe the problem, run the NLP backend and return the solution.

        Args:
            guess: Starting iterate; defaults to ``create_initial_guess_from_bounds()``.
                A guess whose times differ from the mesh times is linearly resampled.

        Returns:
            Solution on the configured mesh. A backend that stops without
            converging yields ``success=False`` rather than an exception.

        Raises:
            SolveError: If the solver is not configured or the backend raises
            UserFunctionError: If a problem callback raises while being traced
        """
        if not self.is_configured():
            raise SolveError(
                "Cannot solve before the mesh and transcription scheme are set",
                f"Solver state: {self._state.value}",
            )

        logger.info(
            "Starting solve: problem='%s', scheme=%s, mesh_points=%d, backend=%s",
            self.problem.name,
            self._scheme,
            self.get_num_mesh_points(),
            self._optim_solver,
        )

        transcription = self._transcription()
        if guess is None:
            guess = self._guess_from_bounds(transcription)
        x0 = transcription.flatten(self._guess_on_mesh(guess, transcription))
        validate_array_numerical_integrity(x0, "Initial guess", "solve")
        backend = create_backend(self._optim_solver, self._plugin_options, self._solver_options)

        self._state = SolverState.SOLVING
        try:
            with DifferentiableFunctionAdapter(
                transcription.objective,
                transcription.constraints,
                transcription.num_variables,
                name=self.problem.name.replace(" ", "_"),
            ) as adapter:
                if adapter.num_constraints != transcription.num_constraints:
                    raise DataIntegrityError(
                        f"Traced {adapter.num_constraints} constraints, "
                        f"expected {transcription.num_constraints}"
                    )
                if logger.isEnabledFor(logging.DEBUG):
                    jacobian_pattern, hessian_pattern = adapter.sparsity()
                    logger.debug(
                        "NLP structure: variables=%d, constraints=%d, jacobian_nnz=%d, hessian_nnz=%d",
                        transcription.num_variables,
                        transcription.num_constraints,
                        jacobian_pattern.nnz,
                        hessian_pattern.nnz,
                    )
                result = backend.solve(
                    adapter,
                    x0,
                    transcription.variable_bounds(),
                    transcription.constraint_bounds(),
                )
        except KinetoLabBaseError:
            self._state = SolverState.FAILED
            raise
        except Exception as e:
            self._state = SolverState.FAILED
            raise SolveError(
                f"NLP backend '{backend.name}' raised: {e}", "Unrecoverable backend failure"
            ) from e

        solution = transcription.create_iterate(
            result.x,
            Solution,
            success=result.success,
            status=result.status,
            num_iterations=result.num_iterations,
            objective=result.objective,
            stats=result.stats,
        )

        if result.success:
            self._state = SolverState.SOLVED
            logger.info(
                "Solve completed successfully: objective=%.6e, iterations=%d",
                result.objective,
                result.num_iterations,
            )
        else:
            self._state = SolverState.FAILED
            logger.warning("Solve failed: %s", result.status)
        return solution
