"""
Domain errors for the pairing and league engine.

All of them subclass ValueError so existing ``except ValueError`` handlers keep
working.
"""


class ValidationError(ValueError):
    """Raised when input is malformed (roster too small, tied score, bad box size)."""


class StateError(ValueError):
    """Raised when an operation is not allowed in the current league/tournament state."""


class NotFoundError(ValueError):
    """Raised when a referenced record does not exist."""


class ScheduleStructureError(ValueError):
    """
    Raised by the exhaustive pairing generator when the roster, format or court
    count does not fit a rotation. The round orchestrator catches it and falls
    back to the greedy generator; it is never surfaced to API callers.
    """
