"""Dataset models: rows, joined records, and join diagnostics.

A Row is a plain ordered mapping (column name -> scalar). Rows are kept as
dicts rather than models so arbitrary uploaded columns survive untouched.
"""

from pydantic import ConfigDict, Field

from src.models.common import KEY_COLUMN, DatasetSide, KualiteeBase, ValidationErrorType

Scalar = str | int | float | bool | None
Row = dict[str, Scalar]


class JoinedRecord(KualiteeBase):
    """One source row paired with the target row sharing its key."""

    model_config = ConfigDict(frozen=True)

    source: Row
    target: Row

    @property
    def msid(self) -> str:
        return str(self.target.get(KEY_COLUMN, ""))


class DataMismatchEntry(KualiteeBase):
    """Advisory record of an empty field found while joining."""

    msid: str
    field: str = Field(description="Side-prefixed column name, e.g. SOURCE.title")
    issue: str = "Empty cell detected"


class KeyIssue(KualiteeBase):
    """A key value that breaks the join, tagged with the side it concerns."""

    msid: str
    side: DatasetSide = Field(
        description="For parity errors: the side the key is missing from. "
        "For duplicate errors: the side containing the duplicate.",
    )


class ValidationError(KualiteeBase):
    """Structured, user-facing description of a join failure."""

    error_type: ValidationErrorType
    message: str
    side: DatasetSide | None = None
    details: list[str] = Field(default_factory=list)
    key_issues: list[KeyIssue] = Field(default_factory=list)


class MatchResult(KualiteeBase):
    """Successful join output."""

    joined: list[JoinedRecord] = Field(default_factory=list)
    mismatches: list[DataMismatchEntry] = Field(default_factory=list)
