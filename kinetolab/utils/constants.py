from typing import TypeAlias


_Tolerance: TypeAlias = float
_Range: TypeAlias = float

ZERO_TOLERANCE: _Tolerance = 1e-18
"""Tolerance for considering floating point values as zero."""

MESH_TOLERANCE: _Tolerance = 1e-9
"""Minimum spacing required between normalized mesh points."""

RESAMPLE_TOLERANCE: _Tolerance = 1e-12
"""Slack allowed when resampling times touch the ends of an iterate."""

MINIMUM_MESH_POINTS: int = 2
"""A mesh needs at least one interval."""

DEFAULT_RANDOM_RANGE: _Range = 1.0
"""Half-width of the sampling range used for unbounded sides of random iterates."""

DEFAULT_OPTIM_SOLVER: str = "ipopt"
"""NLP backend selected when the user does not choose one."""

# IPOPT through CasADi - SINGLE SOURCE OF TRUTH
DEFAULT_NLPSOL_OPTIONS: dict[str, object] = {
    "print_time": 0,
    "error_on_fail": False,
}
"""Options passed to ``casadi.nlpsol`` itself."""

DEFAULT_IPOPT_OPTIONS: dict[str, object] = {
    "print_level": 0,
    "sb": "yes",
}
"""Options passed to IPOPT (the ``ipopt`` sub-dictionary of nlpsol options, or ``add_option`` for cyipopt)."""

DEFAULT_SCIPY_OPTIONS: dict[str, object] = {
    "maxiter": 500,
}
"""Options passed to ``scipy.optimize.minimize`` as its ``options`` argument."""
