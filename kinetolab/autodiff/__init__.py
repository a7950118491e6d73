"""
Automatic differentiation of NLP callbacks through recorded CasADi tapes.
"""

from .adapter import DifferentiableFunctionAdapter
from .tape import SparsityPattern, Tape


__all__ = [
    "DifferentiableFunctionAdapter",
    "SparsityPattern",
    "Tape",
]
