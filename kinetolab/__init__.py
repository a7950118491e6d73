"""
KinetoLab: direct transcription of multibody optimal control problems

This package turns an optimal control problem (states, controls, parameters,
costs, dynamics and path constraints) into a sparse nonlinear program with
exact derivatives, solves it with IPOPT or SciPy, and returns the result as a
labeled trajectory.

Logging:
By default, KinetoLab produces no output. To enable logging::

    import logging
    logging.basicConfig()
    logging.getLogger('kinetolab').setLevel(logging.INFO)  # Major operations
    logging.getLogger('kinetolab').setLevel(logging.DEBUG)  # Detailed debugging
"""

import logging

from kinetolab.autodiff import DifferentiableFunctionAdapter
from kinetolab.exceptions import (
    ConfigurationError,
    DataIntegrityError,
    EvaluationError,
    InterpolationError,
    KinetoLabBaseError,
    NotInitializedError,
    SolveError,
    UserFunctionError,
)
from kinetolab.iterate import Iterate, Solution
from kinetolab.problem import Bounds, Problem, StateType, VariableCategory
from kinetolab.solver import Solver, SolverState


__all__ = [
    "Bounds",
    "ConfigurationError",
    "DataIntegrityError",
    "DifferentiableFunctionAdapter",
    "EvaluationError",
    "InterpolationError",
    "Iterate",
    "KinetoLabBaseError",
    "NotInitializedError",
    "Problem",
    "Solution",
    "SolveError",
    "Solver",
    "SolverState",
    "StateType",
    "UserFunctionError",
    "VariableCategory",
]

__version__ = "0.1.0"


# PRODUCTION LOGGING: Silent by default, user controls everything
logging.getLogger(__name__).addHandler(logging.NullHandler())
