"""
Problem definition package for multibody optimal control problems.
"""

from .core_problem import Problem
from .functions import EndpointCost, IntegralCostIntegrand, MultibodySystem, PathConstraints
from .variables import (
    Bounds,
    BoundsTable,
    ControlInfo,
    ParameterInfo,
    StateInfo,
    StateType,
    VariableCategory,
)


__all__ = [
    "Bounds",
    "BoundsTable",
    "ControlInfo",
    "EndpointCost",
    "IntegralCostIntegrand",
    "MultibodySystem",
    "ParameterInfo",
    "PathConstraints",
    "Problem",
    "StateInfo",
    "StateType",
    "VariableCategory",
]
