"""Error taxonomy for the AutoFix engine.

Every error carries a stable ``code`` so request layers can map it to a
response without matching on class names.
"""

from __future__ import annotations


class FigFixError(Exception):
    """Base class for all engine errors."""

    code: str = "FIGFIX_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(FigFixError):
    """Unknown, foreign or already-fixed violation ids, or malformed options."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.ids = list(ids or [])


class UnsupportedFixError(FigFixError):
    """No catalog handler for a violation."""

    code = "UNSUPPORTED_FIX"

    def __init__(self, message: str, ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.ids = list(ids or [])


class ConflictError(FigFixError):
    """Lock contention with an in-flight batch. Nothing was mutated."""

    code = "CONFLICT"


class StaleStateError(FigFixError):
    """The live node no longer matches the planned ``before`` state."""

    code = "STALE_STATE"


class InvalidStateError(FigFixError):
    """Illegal history status transition."""

    code = "INVALID_STATE"


class CorruptHistoryError(FigFixError):
    """A stored history payload cannot be read (missing key or damaged row)."""

    code = "CORRUPT_HISTORY"


class ScoreOracleError(FigFixError):
    """The score oracle failed to produce a score."""

    code = "SCORE_ORACLE_ERROR"


class MutationError(FigFixError):
    """Base for failures reported by the mutation oracle.

    ``systemic`` errors mean the oracle itself is unusable, so remaining
    items in the batch are not attempted.
    """

    code = "MUTATION_ERROR"
    systemic: bool = False


class NodeNotFoundError(MutationError):
    """The target node no longer exists in the design file."""

    code = "NOT_FOUND"


class WritePermissionError(MutationError):
    """The caller lacks write access to the source design file."""

    code = "PERMISSION_DENIED"


class UnavailableError(MutationError):
    """The mutation oracle is unreachable."""

    code = "UNAVAILABLE"
    systemic = True
