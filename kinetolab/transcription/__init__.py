"""
Transcription schemes that turn a problem and a mesh into an NLP.
"""

import logging

from ..exceptions import ConfigurationError
from ..input_validation import validate_string_not_empty
from ..kl_types import NumericArrayLike, ProblemProtocol
from .base import CategoryLayout, Transcription
from .trapezoidal import TrapezoidalTranscription


logger = logging.getLogger(__name__)

TRANSCRIPTION_SCHEMES: dict[str, type[Transcription]] = {
    TrapezoidalTranscription.scheme: TrapezoidalTranscription,
}


def validate_transcription_scheme(scheme: str) -> None:
    validate_string_not_empty(scheme, "Transcription scheme")
    if scheme not in TRANSCRIPTION_SCHEMES:
        available = ", ".join(sorted(TRANSCRIPTION_SCHEMES))
        raise ConfigurationError(
            f"Unknown transcription scheme '{scheme}'; available: {available}"
        )


def create_transcription(
    scheme: str, problem: ProblemProtocol, mesh: NumericArrayLike
) -> Transcription:
    validate_transcription_scheme(scheme)
    return TRANSCRIPTION_SCHEMES[scheme](problem, mesh)


__all__ = [
    "TRANSCRIPTION_SCHEMES",
    "CategoryLayout",
    "Transcription",
    "TrapezoidalTranscription",
    "create_transcription",
    "validate_transcription_scheme",
]
