"""
NLP backends consuming a transcribed problem.

Every backend receives the derivative adapter of one transcription together
with the starting point and the variable and constraint bounds, and returns
a ``BackendResult``. A backend reporting an unsuccessful run (infeasibility,
iteration limit, ...) is a normal outcome, never an exception.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

import casadi as ca
import numpy as np
from scipy import optimize

from .autodiff import DifferentiableFunctionAdapter
from .exceptions import ConfigurationError
from .input_validation import validate_options_mapping, validate_string_not_empty
from .kl_types import FloatArray
from .utils.casadi_utils import casadi_to_numpy
from .utils.constants import DEFAULT_IPOPT_OPTIONS, DEFAULT_NLPSOL_OPTIONS, DEFAULT_SCIPY_OPTIONS


logger = logging.getLogger(__name__)

BoundsPair = tuple[FloatArray, FloatArray]


@dataclass
class BackendResult:
    """Raw outcome of one NLP solve, in decision-vector layout."""

    x: FloatArray
    objective: float
    success: bool
    status: str
    num_iterations: int
    stats: dict[str, Any] = field(default_factory=dict)


class NLPBackend(ABC):
    """
    Base class for NLP backends.

    Args:
        plugin_options: Options for the backend driver itself
            (``casadi.nlpsol`` options or ``scipy.optimize.minimize`` keywords)
        solver_options: Options for the numerical method
            (IPOPT options or the SciPy ``options`` dictionary)
    """

    name: ClassVar[str]

    def __init__(
        self,
        plugin_options: dict[str, Any] | None = None,
        solver_options: dict[str, Any] | None = None,
    ) -> None:
        validate_options_mapping(plugin_options or {}, f"{self.name} plugin options")
        validate_options_mapping(solver_options or {}, f"{self.name} solver options")
        self.plugin_options = dict(plugin_options or {})
        self.solver_options = dict(solver_options or {})

    @abstractmethod
    def solve(
        self,
        adapter: DifferentiableFunctionAdapter,
        x0: FloatArray,
        variable_bounds: BoundsPair,
        constraint_bounds: BoundsPair,
    ) -> BackendResult:
        """Run the backend from ``x0`` and report where it stopped."""


class IpoptBackend(NLPBackend):
    """IPOPT through ``casadi.nlpsol``, fed the adapter's recorded graphs."""

    name = "ipopt"

    def solve(
        self,
        adapter: DifferentiableFunctionAdapter,
        x0: FloatArray,
        variable_bounds: BoundsPair,
        constraint_bounds: BoundsPair,
    ) -> BackendResult:
        x = ca.SX.sym("x", adapter.num_variables)
        nlp = {
            "x": x,
            "f": adapter.symbolic_objective(x),
            "g": adapter.symbolic_constraints(x),
        }
        options: dict[str, Any] = {**DEFAULT_NLPSOL_OPTIONS, **self.plugin_options}
        options["ipopt"] = {**DEFAULT_IPOPT_OPTIONS, **self.solver_options}
        logger.debug("IPOPT options: %s", options)

        try:
            solver = ca.nlpsol(f"{adapter.name}_ipopt", "ipopt", nlp, options)
        except RuntimeError as e:
            raise ConfigurationError(
                f"Failed to configure IPOPT: {e}", "Invalid plugin or solver options"
            ) from e

        lbx, ubx = variable_bounds
        lbg, ubg = constraint_bounds
        result = solver(x0=x0, lbx=lbx, ubx=ubx, lbg=lbg, ubg=ubg)
        stats = dict(solver.stats())

        return BackendResult(
            x=casadi_to_numpy(result["x"]).ravel(),
            objective=float(result["f"]),
            success=bool(stats.get("success", False)),
            status=str(stats.get("return_status", "unknown")),
            num_iterations=int(stats.get("iter_count", 0)),
            stats=stats,
        )


class _IpoptCallbacks:
    """Problem object handed to ``cyipopt.Problem``, forwarding to the adapter.

    IPOPT does not report whether a point is new, so every callback passes
    ``new_x=False`` and relies on the adapter comparing points.
    """

    def __init__(self, adapter: DifferentiableFunctionAdapter) -> None:
        self.adapter = adapter
        jacobian_pattern, hessian_pattern = adapter.sparsity()
        self._jacobian_structure = (np.array(jacobian_pattern.rows), np.array(jacobian_pattern.cols))
        self._hessian_structure = (np.array(hessian_pattern.rows), np.array(hessian_pattern.cols))
        self.iterations = 0

    def objective(self, x: FloatArray) -> float:
        return self.adapter.objective(x, new_x=False)

    def gradient(self, x: FloatArray) -> FloatArray:
        return self.adapter.gradient(x, new_x=False)

    def constraints(self, x: FloatArray) -> FloatArray:
        return self.adapter.constraints(x, new_x=False)

    def jacobian(self, x: FloatArray) -> FloatArray:
        return self.adapter.jacobian(x, new_x=False)

    def jacobianstructure(self) -> tuple[np.ndarray, np.ndarray]:
        return self._jacobian_structure

    def hessianstructure(self) -> tuple[np.ndarray, np.ndarray]:
        # Lower triangle, as IPOPT expects
        return self._hessian_structure

    def hessian(self, x: FloatArray, lagrange: FloatArray, obj_factor: float) -> FloatArray:
        return self.adapter.hessian_lagrangian(x, obj_factor, lagrange, new_x=False)

    def intermediate(self, alg_mod: int, iter_count: int, *args: Any) -> bool:
        self.iterations = int(iter_count)
        return True


class CyipoptBackend(NLPBackend):
    """
    IPOPT through ``cyipopt``, driven by the adapter's five callbacks.

    Sparsity structures come from the adapter's cached patterns. Plugin and
    solver options are both set with ``add_option``. Requires the optional
    ``cyipopt`` package (``pip install kinetolab[ipopt]``).
    """

    name = "cyipopt"
    SUCCESS_STATUSES: ClassVar[tuple[int, ...]] = (0, 1)

    def solve(
        self,
        adapter: DifferentiableFunctionAdapter,
        x0: FloatArray,
        variable_bounds: BoundsPair,
        constraint_bounds: BoundsPair,
    ) -> BackendResult:
        try:
            import cyipopt
        except ImportError as e:
            raise ConfigurationError(
                "The cyipopt backend needs the cyipopt package", "pip install kinetolab[ipopt]"
            ) from e

        callbacks = _IpoptCallbacks(adapter)
        lbx, ubx = variable_bounds
        lbg, ubg = constraint_bounds
        nlp = cyipopt.Problem(
            n=adapter.num_variables,
            m=adapter.num_constraints,
            problem_obj=callbacks,
            lb=lbx,
            ub=ubx,
            cl=lbg,
            cu=ubg,
        )

        options = {
            **DEFAULT_IPOPT_OPTIONS,
            "hessian_approximation": "exact",
            **self.plugin_options,
            **self.solver_options,
        }
        logger.debug("cyipopt options: %s", options)
        for key, value in options.items():
            try:
                nlp.add_option(key, value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Failed to configure IPOPT option '{key}': {e}", "Invalid solver options"
                ) from e

        x, info = nlp.solve(np.asarray(x0, dtype=np.float64))
        status_msg = info.get("status_msg", b"")
        if isinstance(status_msg, bytes):
            status_msg = status_msg.decode(errors="replace")

        return BackendResult(
            x=np.asarray(x, dtype=np.float64),
            objective=float(info["obj_val"]),
            success=int(info["status"]) in self.SUCCESS_STATUSES,
            status=str(status_msg),
            num_iterations=callbacks.iterations,
            stats={"status": int(info["status"]), "mult_g": np.asarray(info["mult_g"])},
        )


class _ScipyMinimizeBackend(NLPBackend):
    """Common driver for ``scipy.optimize.minimize`` methods."""

    method: ClassVar[str]

    def _nonlinear_constraint(
        self, adapter: DifferentiableFunctionAdapter, constraint_bounds: BoundsPair
    ) -> optimize.NonlinearConstraint:
        lower, upper = constraint_bounds
        return optimize.NonlinearConstraint(
            lambda x: adapter.constraints(x),
            lower,
            upper,
            jac=lambda x: adapter.jacobian_matrix(x, new_x=False).toarray(),
        )

    def _minimize_kwargs(self, adapter: DifferentiableFunctionAdapter) -> dict[str, Any]:
        return {}

    def solve(
        self,
        adapter: DifferentiableFunctionAdapter,
        x0: FloatArray,
        variable_bounds: BoundsPair,
        constraint_bounds: BoundsPair,
    ) -> BackendResult:
        lower, upper = variable_bounds
        constraints = []
        if adapter.num_constraints:
            constraints.append(self._nonlinear_constraint(adapter, constraint_bounds))

        options = {**DEFAULT_SCIPY_OPTIONS, **self.solver_options}
        logger.debug("scipy.optimize.minimize method=%s options=%s", self.method, options)

        result = optimize.minimize(
            lambda x: adapter.objective(x),
            np.asarray(x0, dtype=np.float64),
            jac=lambda x: adapter.gradient(x, new_x=False),
            method=self.method,
            bounds=optimize.Bounds(lower, upper),
            constraints=constraints,
            options=options,
            **self._minimize_kwargs(adapter),
            **self.plugin_options,
        )

        return BackendResult(
            x=np.asarray(result.x, dtype=np.float64),
            objective=float(result.fun),
            success=bool(result.success),
            status=str(result.message),
            num_iterations=int(getattr(result, "nit", 0)),
            stats={"nfev": int(getattr(result, "nfev", 0)), "njev": int(getattr(result, "njev", 0))},
        )


class ScipySLSQPBackend(_ScipyMinimizeBackend):
    """SLSQP with exact gradient and dense constraint Jacobian."""

    name = "scipy-slsqp"
    method = "SLSQP"


class ScipyTrustConstrBackend(_ScipyMinimizeBackend):
    """trust-constr with sparse Jacobian and exact Hessians of the Lagrangian."""

    name = "scipy-trust-constr"
    method = "trust-constr"

    def _nonlinear_constraint(
        self, adapter: DifferentiableFunctionAdapter, constraint_bounds: BoundsPair
    ) -> optimize.NonlinearConstraint:
        lower, upper = constraint_bounds
        return optimize.NonlinearConstraint(
            lambda x: adapter.constraints(x),
            lower,
            upper,
            jac=lambda x: adapter.jacobian_matrix(x, new_x=False),
            hess=lambda x, v: adapter.hessian_matrix(x, 0.0, v),
        )

    def _minimize_kwargs(self, adapter: DifferentiableFunctionAdapter) -> dict[str, Any]:
        no_multipliers = np.zeros(adapter.num_constraints)
        return {"hess": lambda x: adapter.hessian_matrix(x, 1.0, no_multipliers)}


NLP_BACKENDS: dict[str, type[NLPBackend]] = {
    IpoptBackend.name: IpoptBackend,
    CyipoptBackend.name: CyipoptBackend,
    ScipySLSQPBackend.name: ScipySLSQPBackend,
    ScipyTrustConstrBackend.name: ScipyTrustConstrBackend,
}


def validate_optim_solver(name: str) -> None:
    validate_string_not_empty(name, "NLP backend name")
    if name not in NLP_BACKENDS:
        available = ", ".join(sorted(NLP_BACKENDS))
        raise ConfigurationError(f"Unknown NLP backend '{name}'; available: {available}")


def create_backend(
    name: str,
    plugin_options: dict[str, Any] | None = None,
    solver_options: dict[str, Any] | None = None,
) -> NLPBackend:
    validate_optim_solver(name)
    return NLP_BACKENDS[name](plugin_options, solver_options)
