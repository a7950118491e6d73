import logging


# Library logger - no configuration, user controls output
logger = logging.getLogger(__name__)


class KinetoLabBaseError(Exception):
    """
    Base class for all KinetoLab-specific errors.

    All KinetoLab exceptions inherit from this class, allowing users to catch
    any KinetoLab-specific error with a single except clause.

    Args:
        message: The error message describing what went wrong
        context: Optional additional context about where the error occurred
    """

    def __init__(self, message: str, context: str | None = None) -> None:
        self.message = message
        self.context = context

        # Library logs at DEBUG level - user can promote if needed
        logger.debug("KinetoLab exception: %s", self._format_message())
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with optional context."""
        if self.context:
            return f"{self.message} (Context: {self.context})"
        return self.message


class ConfigurationError(KinetoLabBaseError):
    """
    Raised when there is an invalid or incomplete problem or solver configuration.

    Detected eagerly while the problem is being built or the solver is being
    configured, never deferred to solve time.

    Examples:
        - Duplicate state or control names
        - Lower bound greater than upper bound
        - Fewer than two mesh points
        - Unknown transcription scheme or NLP backend
    """

    pass


class NotInitializedError(KinetoLabBaseError):
    """
    Raised when a problem is queried before ``Problem.initialize()`` was called.

    Derived counts (coordinates, speeds, auxiliary states) and callback
    signatures are only frozen by ``initialize()``.
    """

    pass


class EvaluationError(KinetoLabBaseError):
    """
    Raised when a derivative adapter cannot evaluate at the requested point.

    Examples:
        - Decision vector length differs from the problem size
        - Multiplier vector length differs from the constraint count
        - Evaluating an adapter whose tapes were already released
    """

    pass


class UserFunctionError(KinetoLabBaseError):
    """
    Raised when a user-supplied cost, dynamics or path-constraint callback fails.

    The original exception message is preserved verbatim in ``message`` and the
    original exception is chained as ``__cause__``.
    """

    pass


class SolveError(KinetoLabBaseError):
    """
    Raised when the solver is misused or the NLP backend crashes.

    A backend that *reports* a failed optimization (infeasible, iteration
    limit, ...) does not raise; it produces a ``Solution`` with
    ``success=False`` instead.
    """

    pass


class DataIntegrityError(KinetoLabBaseError):
    """
    Raised when internal data corruption or inconsistency is detected.

    This typically represents a bug in KinetoLab rather than user error.

    Examples:
        - Mismatched array dimensions in internal calculations
        - Backend returning a solution vector of the wrong size
    """

    pass


class InterpolationError(KinetoLabBaseError):
    """
    Raised when an iterate cannot be resampled onto a new time grid.

    Typically the requested times fall outside the span of the iterate or
    are not strictly increasing.
    """

    pass
