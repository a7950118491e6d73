import logging
from typing import Any, cast

import casadi as ca
import numpy as np

from kinetolab.exceptions import DataIntegrityError
from kinetolab.kl_types import FloatArray


logger = logging.getLogger(__name__)


def as_casadi_column(value: Any) -> ca.SX:
    """Convert a callback return value into a symbolic column vector.

    Accepts CasADi matrices, NumPy arrays (numeric or object dtype holding
    symbolic entries), sequences of scalars, and plain scalars. Matrices are
    flattened column-major.

    Raises:
        TypeError: If the value cannot be represented as an SX column
    """
    if isinstance(value, ca.MX):
        raise TypeError("MX expressions are not supported in callbacks; use the SX inputs given")
    if isinstance(value, ca.SX | ca.DM):
        return ca.SX(ca.vec(value))

    if isinstance(value, np.ndarray):
        items = value.ravel(order="F").tolist()
    elif isinstance(value, list | tuple):
        items = list(value)
    else:
        items = [value]

    if not items:
        return ca.SX(0, 1)

    column = []
    for item in items:
        if isinstance(item, ca.SX | ca.DM):
            if item.numel() != 1:
                raise TypeError(f"Expected scalar entries, got a {item.shape} matrix")
            column.append(ca.SX(item))
        elif isinstance(item, int | float | np.floating | np.integer):
            column.append(ca.SX(float(item)))
        else:
            raise TypeError(f"Unsupported callback output entry of type {type(item).__name__}")
    return cast(ca.SX, ca.vertcat(*column))


def casadi_to_numpy(value: ca.DM | float) -> FloatArray:
    """Dense column-major flattening of a numeric CasADi result.

    Raises:
        DataIntegrityError: If the value is still symbolic
    """
    if isinstance(value, ca.SX | ca.MX):
        raise DataIntegrityError(
            "Expected a numeric CasADi result, got a symbolic expression",
            "CasADi result conversion",
        )
    if isinstance(value, ca.DM):
        return np.asarray(value.full(), dtype=np.float64).ravel(order="F")
    return np.atleast_1d(np.asarray(value, dtype=np.float64)).ravel()


def casadi_nonzeros(value: ca.DM) -> FloatArray:
    """Structural nonzeros of a sparse numeric result, in CasADi's column-major order."""
    return np.asarray(value.nonzeros(), dtype=np.float64)
