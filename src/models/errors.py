"""Domain exceptions shared by the matcher, evaluators, and API layer.

Structural join failures subclass ValueError (bad input); evaluation
failures subclass RuntimeError (the collaborator, not the input, failed).
"""

from typing import TYPE_CHECKING

from src.models.dataset import ValidationError

if TYPE_CHECKING:
    from src.models.evaluation import EvaluationRun


class RecordMatchError(ValueError):
    """Terminal join failure. ``error`` holds the user-facing payload."""

    def __init__(self, error: ValidationError) -> None:
        self.error = error
        super().__init__(error.message)


class MissingKeyColumnError(RecordMatchError):
    """A non-empty dataset has no MSID column."""


class KeyParityError(RecordMatchError):
    """Key values present in one dataset but not the other."""


class DuplicateKeyError(RecordMatchError):
    """A dataset repeats a key value (strict join mode only)."""


class EvaluatorNotConfiguredError(RuntimeError):
    """No credential is configured for any scoring provider."""


class EvaluationFailedError(RuntimeError):
    """A single-record re-evaluation could not produce a valid result."""

    def __init__(self, msid: str, reason: str) -> None:
        self.msid = msid
        self.reason = reason
        super().__init__(f"Re-evaluation of MSID {msid} failed: {reason}")


class SystemicEvaluationError(RuntimeError):
    """A non-empty bulk run produced no valid score for any record."""

    def __init__(self, message: str, *, run: "EvaluationRun") -> None:
        self.run = run
        super().__init__(message)
