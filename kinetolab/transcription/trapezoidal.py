from typing import Any

from .base import Transcription


class TrapezoidalTranscription(Transcription):
    """Trapezoidal rule: ``x[i+1] - x[i] - h/2 (f[i] + f[i+1]) = 0``.

    The integral cost uses the same rule, so each interval contributes
    ``h/2 (L[i] + L[i+1])``.
    """

    scheme = "trapezoidal"

    def _defect(self, step: Any, state: Any, next_state: Any, rate: Any, next_rate: Any) -> Any:
        return next_state - state - 0.5 * step * (rate + next_rate)

    def _quadrature(self, steps: list[Any], values: list[Any]) -> Any:
        total = 0
        for i, step in enumerate(steps):
            total = total + 0.5 * step * (values[i] + values[i + 1])
        return total
