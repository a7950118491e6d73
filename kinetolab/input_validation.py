import logging
import math
from typing import Any

import numpy as np

from .exceptions import ConfigurationError, DataIntegrityError, EvaluationError
from .kl_types import FloatArray, NumericArrayLike
from .utils.constants import MESH_TOLERANCE, MINIMUM_MESH_POINTS, ZERO_TOLERANCE


logger = logging.getLogger(__name__)


# ============================================================================
# CORE VALIDATION PRIMITIVES
# ============================================================================


def validate_positive_integer(value: Any, name: str, min_value: int = 1) -> None:
    """Single source for positive integer validation."""
    if isinstance(value, bool) or not isinstance(value, int | np.integer):
        raise ConfigurationError(f"{name} must be integer, got {type(value)}")
    if value < min_value:
        raise ConfigurationError(f"{name} must be >= {min_value}, got {value}")


def validate_string_not_empty(value: Any, name: str) -> None:
    """Single source for non-empty string validation."""
    if not isinstance(value, str):
        raise ConfigurationError(f"{name} must be string, got {type(value)}")
    if not value.strip():
        raise ConfigurationError(f"{name} cannot be empty")


def validate_callable(value: Any, name: str) -> None:
    if not callable(value):
        raise ConfigurationError(f"{name} must be callable, got {type(value)}")


def validate_options_mapping(value: Any, name: str) -> None:
    if not isinstance(value, dict):
        raise ConfigurationError(f"{name} must be a dict, got {type(value)}")
    for key in value:
        if not isinstance(key, str):
            raise ConfigurationError(f"{name} keys must be strings, got {key!r}")


def validate_array_numerical_integrity(
    array: FloatArray, name: str, context: str = "validation"
) -> None:
    """Single source for NaN/Inf validation."""
    if np.any(np.isnan(array)) or np.any(np.isinf(array)):
        raise DataIntegrityError(
            f"{name} contains NaN or Inf values", f"Numerical corruption in {context}"
        )


def validate_vector_length(vector: FloatArray, expected: int, name: str) -> None:
    """Dimension check at the derivative-adapter boundary."""
    if vector.ndim != 1 or vector.shape[0] != expected:
        raise EvaluationError(
            f"{name} has shape {vector.shape}, expected ({expected},)",
            "Decision vector size mismatch",
        )


# ============================================================================
# BOUNDS VALIDATION
# ============================================================================


def validate_bound_value(value: Any, context: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int | float | np.floating | np.integer):
        raise ConfigurationError(f"Bound must be numeric/None, got {type(value)}", context)
    if math.isnan(value):
        raise ConfigurationError("Bound cannot be NaN; leave it unset instead", context)


def validate_bounds_order(lower: float, upper: float, context: str) -> None:
    if lower > upper:
        raise ConfigurationError(f"Lower bound ({lower}) > upper bound ({upper})", context)


# ============================================================================
# MESH VALIDATION
# ============================================================================


def validate_num_mesh_points(num_mesh_points: Any) -> None:
    validate_positive_integer(num_mesh_points, "number of mesh points", MINIMUM_MESH_POINTS)


def validate_normalized_mesh(mesh: NumericArrayLike) -> FloatArray:
    """Validate a normalized mesh on [0, 1] and return it as a float array."""
    try:
        mesh_array = np.asarray(mesh, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Mesh must be numeric: {e}") from e

    if mesh_array.ndim != 1:
        raise ConfigurationError(f"Mesh must be one-dimensional, got shape {mesh_array.shape}")
    if mesh_array.size < MINIMUM_MESH_POINTS:
        raise ConfigurationError(
            f"Mesh needs at least {MINIMUM_MESH_POINTS} points, got {mesh_array.size}"
        )
    if not np.all(np.isfinite(mesh_array)):
        raise ConfigurationError("Mesh contains NaN or infinite values")
    if not np.isclose(mesh_array[0], 0.0, atol=ZERO_TOLERANCE):
        raise ConfigurationError(f"First mesh point must be 0.0, got {mesh_array[0]}")
    if not np.isclose(mesh_array[-1], 1.0, atol=ZERO_TOLERANCE):
        raise ConfigurationError(f"Last mesh point must be 1.0, got {mesh_array[-1]}")
    if not np.all(np.diff(mesh_array) > MESH_TOLERANCE):
        raise ConfigurationError(
            f"Mesh points must be strictly increasing with min spacing {MESH_TOLERANCE}"
        )
    return mesh_array
