# kinetolab/utils/__init__.py
"""
Utility functions and constants for KinetoLab.
"""

from .casadi_utils import as_casadi_column, casadi_to_numpy


__all__ = [
    "as_casadi_column",
    "casadi_to_numpy",
]
